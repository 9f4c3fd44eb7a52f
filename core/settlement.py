"""
Payment settlement.

The client receives the full final offer. Agent commission and platform fee
are percentages of the same final offer and are collected on top from the
vendor, so the vendor pays total_payable = payout + commission + fee.
"""

import logging
from collections import namedtuple
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .conf import marketplace_setting
from .deductions import quantize_amount
from .exceptions import MarketplaceError, MissingArtifact
from .models import Settlement, Transaction
from .signals import emit

logger = logging.getLogger(__name__)


SettlementBreakdown = namedtuple(
    'SettlementBreakdown',
    [
        'final_offer',
        'client_payout',
        'agent_commission',
        'platform_fee',
        'commission_rate',
        'fee_rate',
        'total_payable',
    ]
)


def compute_settlement(final_offer, commission_rate=None, fee_rate=None):
    """
    Split a final offer into payout, commission and fee.

    Rates default to AGENT_COMMISSION_RATE and PLATFORM_FEE_RATE.

    Returns:
        SettlementBreakdown
    """
    if commission_rate is None:
        commission_rate = marketplace_setting('AGENT_COMMISSION_RATE')
    if fee_rate is None:
        fee_rate = marketplace_setting('PLATFORM_FEE_RATE')

    final_offer = quantize_amount(final_offer)
    commission_rate = Decimal(str(commission_rate))
    fee_rate = Decimal(str(fee_rate))

    if final_offer < 0:
        raise ValueError('Final offer cannot be negative.')

    client_payout = final_offer
    agent_commission = quantize_amount(final_offer * commission_rate)
    platform_fee = quantize_amount(final_offer * fee_rate)

    return SettlementBreakdown(
        final_offer=final_offer,
        client_payout=client_payout,
        agent_commission=agent_commission,
        platform_fee=platform_fee,
        commission_rate=commission_rate,
        fee_rate=fee_rate,
        total_payable=client_payout + agent_commission + platform_fee,
    )


def settle_transaction(tx, payment_method='upi', now=None):
    """
    Record the settlement for a transaction whose confirmations have passed.

    Calling this again for the same transaction returns the existing
    settlement unchanged.

    Raises:
        MissingArtifact: Final offer or either confirmation is missing
    """
    now = now or timezone.now()

    if payment_method not in dict(Settlement.PAYMENT_METHOD_CHOICES):
        raise MarketplaceError(f'Unsupported payment method "{payment_method}".')

    with transaction.atomic():
        tx = Transaction.objects.select_for_update().get(pk=tx.pk)

        existing = Settlement.objects.filter(transaction=tx).first()
        if existing is not None:
            logger.info(
                f"Settlement already recorded, returning existing. "
                f"Transaction ID: {tx.id}, Reference: {existing.reference}"
            )
            return existing

        if tx.final_offer is None:
            raise MissingArtifact('Final offer has not been calculated.')
        if tx.vendor_confirmed_at is None or tx.client_confirmed_at is None:
            raise MissingArtifact('Vendor and client must both confirm before settlement.')

        breakdown = compute_settlement(tx.final_offer)
        settlement = Settlement.objects.create(
            transaction=tx,
            payment_method=payment_method,
            settled_at=now,
            **breakdown._asdict()
        )

        emit(
            'payment_settled',
            transaction=tx,
            reference=str(settlement.reference),
            client_payout=str(settlement.client_payout),
            agent_commission=str(settlement.agent_commission),
            platform_fee=str(settlement.platform_fee),
        )

    logger.info(
        f"Transaction settled. "
        f"Transaction ID: {tx.id}, Reference: {settlement.reference}, "
        f"Payout: {settlement.client_payout}, Commission: {settlement.agent_commission}, "
        f"Fee: {settlement.platform_fee}"
    )
    return settlement
