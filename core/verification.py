"""
Pickup, verification and delivery workflow for a transaction.

Transaction.step moves strictly forward through Transaction.STEP_ORDER and
each step needs its own evidence: a pickup time, an ID photo, inspection
photos, or a confirmation code from the other party. Because the current
step is stored on the transaction, the workflow can be resumed at any point.

Confirmation codes are checked before the transaction row is locked, so a
wrong code still counts as an attempt when the step is refused.
"""

import logging

from django.db import transaction
from django.utils import timezone

from . import deductions
from .confirmation import issue_code, pending_code, verify_code
from .conf import marketplace_setting
from .exceptions import InvalidTransition, MarketplaceError, MissingArtifact, NotPermitted
from .models import CONDITION_CHOICES, AgentVerification, Deduction, Settlement, Transaction
from .settlement import settle_transaction
from .signals import emit

logger = logging.getLogger(__name__)


def advance_step(tx, new_step):
    """Move ``tx`` to ``new_step`` or raise InvalidTransition."""
    is_valid, error_message = tx.can_advance_to(new_step)
    if not is_valid:
        raise InvalidTransition(error_message)
    old_step = tx.step
    tx.step = new_step
    return old_step


def _check_step(tx, new_step):
    is_valid, error_message = tx.can_advance_to(new_step)
    if not is_valid:
        raise InvalidTransition(error_message)


def _move_listing(listing, new_status):
    is_valid, error_message = listing.can_transition_to(new_status)
    if not is_valid:
        raise InvalidTransition(error_message)
    listing.status = new_status
    listing.save()


def _lock(tx):
    return Transaction.objects.select_for_update().get(pk=tx.pk)


def _require_agent(tx, user):
    if tx.agent_id is None or tx.agent_id != user.id:
        logger.warning(
            f"Verification step by non-assigned user refused. "
            f"Transaction ID: {tx.id}, User ID: {user.id}"
        )
        raise NotPermitted('Only the assigned agent can perform this step.')


def _require_client(tx, user):
    if tx.client_id != user.id:
        raise NotPermitted('Only the client of this transaction can perform this step.')


def _require_vendor(tx, user):
    if tx.vendor_id != user.id:
        raise NotPermitted('Only the vendor of this transaction can perform this step.')


def _require_phone(user):
    if not user.phone_number:
        raise MissingArtifact(f'User {user.id} has no phone number to receive a confirmation code.')
    return user.phone_number


def _log_step(tx, old_step, user):
    logger.info(
        f"Transaction step advanced. "
        f"Transaction ID: {tx.id}, Old Step: {old_step}, New Step: {tx.step}, User ID: {user.id}"
    )


def schedule_pickup(tx, agent, scheduled_at, now=None):
    """Record the agreed pickup time. It must be in the future."""
    now = now or timezone.now()
    _require_agent(tx, agent)

    if scheduled_at is None or scheduled_at <= now:
        raise MissingArtifact('Pickup time must be in the future.')

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'pickup_scheduled')
        tx.scheduled_pickup_at = scheduled_at
        tx.save()
        _move_listing(tx.listing, 'pickup_scheduled')
        emit(
            'verification_step',
            transaction=tx,
            actor=agent,
            step=tx.step,
            scheduled_at=scheduled_at.isoformat(),
        )

    _log_step(tx, old_step, agent)
    return tx


def verify_identity(tx, agent, id_type, id_number, id_photo_ref, now=None):
    """
    Record that the agent checked the customer's ID.

    Only the last four characters of the ID number are stored.
    """
    now = now or timezone.now()
    _require_agent(tx, agent)

    if id_type not in dict(AgentVerification.ID_TYPE_CHOICES):
        raise MissingArtifact(f'Unsupported ID type "{id_type}".')
    id_number = (id_number or '').replace(' ', '')
    if len(id_number) < 4:
        raise MissingArtifact('ID number is required.')
    if not id_photo_ref:
        raise MissingArtifact('A photo of the customer ID is required.')

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'identity_verified')
        tx.save()

        verification = AgentVerification.objects.select_for_update().get(transaction=tx)
        verification.customer_id_verified = True
        verification.id_type = id_type
        verification.id_number_last4 = id_number[-4:]
        verification.id_photo_ref = id_photo_ref
        verification.identity_verified_at = now
        verification.save()

        _move_listing(tx.listing, 'verification_in_progress')
        emit('verification_step', transaction=tx, actor=agent, step=tx.step, id_type=id_type)

    _log_step(tx, old_step, agent)
    return tx


def inspect_device(tx, agent, actual_condition, battery_health, functional_issues=None,
                   cosmetic_issues=None, accessories_included=None, photo_refs=None,
                   notes='', now=None):
    """
    Record the physical inspection of the device.

    Requires at least INSPECTION_MIN_PHOTOS photos.
    """
    now = now or timezone.now()
    _require_agent(tx, agent)

    photo_refs = list(photo_refs or [])
    min_photos = marketplace_setting('INSPECTION_MIN_PHOTOS')
    if len(photo_refs) < min_photos:
        raise MissingArtifact(f'At least {min_photos} inspection photos are required.')
    if actual_condition not in dict(CONDITION_CHOICES):
        raise MissingArtifact(f'Unknown device condition "{actual_condition}".')
    if battery_health is None or not 0 <= battery_health <= 100:
        raise MissingArtifact('Battery health must be between 0 and 100.')

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'device_inspected')
        tx.save()

        verification = AgentVerification.objects.select_for_update().get(transaction=tx)
        verification.actual_condition = actual_condition
        verification.battery_health = battery_health
        verification.functional_issues = list(functional_issues or [])
        verification.cosmetic_issues = list(cosmetic_issues or [])
        verification.accessories_included = list(accessories_included or [])
        verification.photo_refs = photo_refs
        verification.inspection_notes = notes or ''
        verification.inspected_at = now
        verification.full_clean()
        verification.save()

        emit(
            'verification_step',
            transaction=tx,
            actor=agent,
            step=tx.step,
            actual_condition=actual_condition,
            battery_health=battery_health,
        )

    _log_step(tx, old_step, agent)
    return tx


def calculate_deductions(tx, agent, now=None):
    """
    Apply the deduction rules to the inspection results.

    Stores one Deduction row per rule that applied and sets total_deductions
    and final_offer on the transaction.

    Returns:
        deductions.DeductionResult
    """
    _require_agent(tx, agent)

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'deductions_calculated')
        verification = tx.verification

        result = deductions.calculate(
            tx.bid_amount,
            declared_condition=tx.listing.condition,
            actual_condition=verification.actual_condition,
            battery_health=verification.battery_health,
            functional_issues=verification.functional_issues,
            cosmetic_issues=verification.cosmetic_issues,
            accessories_included=verification.accessories_included,
        )

        tx.deductions.all().delete()
        Deduction.objects.bulk_create([
            Deduction(
                transaction=tx,
                category=line.category,
                description=line.description,
                rate=line.rate,
                amount=line.amount,
                severity=line.severity,
            )
            for line in result.lines
        ])

        tx.total_deductions = result.total
        tx.final_offer = result.final_offer
        tx.save()

        emit(
            'verification_step',
            transaction=tx,
            actor=agent,
            step=tx.step,
            total_deductions=str(result.total),
            final_offer=str(result.final_offer),
        )

    _log_step(tx, old_step, agent)
    return result


def send_final_offer(tx, agent, now=None):
    """Send the final offer to the client with an acceptance code."""
    now = now or timezone.now()
    _require_agent(tx, agent)

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'final_offer_sent')
        tx.save()

        issue_code(
            _require_phone(tx.client),
            'offer_acceptance',
            transaction=tx,
            amount=tx.final_offer,
            now=now,
        )
        emit('final_offer_sent', transaction=tx, actor=agent, final_offer=str(tx.final_offer))

    _log_step(tx, old_step, agent)
    return tx


def accept_final_offer(tx, client, code, now=None):
    """
    Accept the final offer with the code sent to the client.

    The verification record is final after this step.
    """
    now = now or timezone.now()
    _require_client(tx, client)
    _check_step(tx, 'customer_accepted')

    verify_code(
        _require_phone(tx.client),
        'offer_acceptance',
        code,
        transaction=tx,
        amount=tx.final_offer,
        now=now,
    )

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'customer_accepted')
        tx.save()

        verification = AgentVerification.objects.select_for_update().get(transaction=tx)
        verification.customer_accepted = True
        verification.accepted_at = now
        verification.save()

        emit('offer_accepted', transaction=tx, actor=client, final_offer=str(tx.final_offer))

    _log_step(tx, old_step, client)
    return tx


def decline_final_offer(tx, client, reason='', now=None):
    """
    Decline the final offer. Cancels the transaction and the listing.
    """
    now = now or timezone.now()
    _require_client(tx, client)

    with transaction.atomic():
        tx = _lock(tx)
        if tx.step != 'final_offer_sent' or tx.status in Transaction.TERMINAL_STATUSES:
            raise InvalidTransition('There is no open final offer to decline.')

        tx.status = 'cancelled'
        tx.save()
        tx.confirmation_codes.filter(status='issued').update(status='expired')
        _move_listing(tx.listing, 'cancelled')

        emit(
            'listing_cancelled',
            transaction=tx,
            actor=client,
            reason=reason or 'final offer declined',
            final_offer=str(tx.final_offer),
        )

    logger.info(
        f"Final offer declined. "
        f"Transaction ID: {tx.id}, Client ID: {client.id}, Final offer: {tx.final_offer}"
    )
    return tx


def hand_over_to_vendor(tx, agent, handover_photo_ref, now=None):
    """Record delivery to the vendor and send the vendor a receipt code."""
    now = now or timezone.now()
    _require_agent(tx, agent)

    if not handover_photo_ref:
        raise MissingArtifact('A handover photo is required.')

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'handed_over_to_vendor')
        tx.handover_photo_ref = handover_photo_ref
        tx.phase = 'completion'
        tx.save()

        issue_code(_require_phone(tx.vendor), 'vendor_receipt', transaction=tx, now=now)
        emit('verification_step', transaction=tx, actor=agent, step=tx.step)

    _log_step(tx, old_step, agent)
    return tx


def confirm_vendor_receipt(tx, vendor, code, now=None):
    """
    Vendor confirms receipt with their code.

    The client is then sent the code that completes the transaction.
    """
    now = now or timezone.now()
    _require_vendor(tx, vendor)
    _check_step(tx, 'vendor_confirmed')

    verify_code(_require_phone(tx.vendor), 'vendor_receipt', code, transaction=tx, now=now)

    with transaction.atomic():
        tx = _lock(tx)
        old_step = advance_step(tx, 'vendor_confirmed')
        tx.vendor_confirmed_at = now
        tx.save()

        issue_code(
            _require_phone(tx.client),
            'transaction_completion',
            transaction=tx,
            amount=tx.final_offer,
            now=now,
        )
        emit('vendor_confirmed', transaction=tx, actor=vendor)

    _log_step(tx, old_step, vendor)
    return tx


def confirm_completion(tx, client, code, payment_method='upi', now=None):
    """
    Client confirms completion with their code, which settles the payment.

    Returns:
        Settlement
    """
    now = now or timezone.now()
    _require_client(tx, client)
    _check_step(tx, 'paid')

    if payment_method not in dict(Settlement.PAYMENT_METHOD_CHOICES):
        raise MarketplaceError(f'Unsupported payment method "{payment_method}".')

    verify_code(
        _require_phone(tx.client),
        'transaction_completion',
        code,
        transaction=tx,
        amount=tx.final_offer,
        now=now,
    )

    with transaction.atomic():
        tx = _lock(tx)
        tx.client_confirmed_at = now
        tx.save()

        settlement = settle_transaction(tx, payment_method=payment_method, now=now)

        tx.refresh_from_db()
        old_step = advance_step(tx, 'paid')
        tx.status = 'completed'
        tx.completed_at = now
        tx.save()

        _move_listing(tx.listing, 'completed')

    _log_step(tx, old_step, client)
    return settlement


# Code purpose pending at each step, and who receives it.
PENDING_CODES = {
    'final_offer_sent': ('offer_acceptance', 'client', True),
    'handed_over_to_vendor': ('vendor_receipt', 'vendor', False),
    'vendor_confirmed': ('transaction_completion', 'client', True),
}


def resend_code(tx, user, purpose=None, now=None):
    """
    Send a new code for the confirmation the transaction is waiting on.

    Raises:
        InvalidTransition: No confirmation is pending, or ``purpose`` is not it
        ResendCooldown: The previous code was sent too recently
    """
    now = now or timezone.now()

    if not tx.is_party(user):
        raise NotPermitted('Only parties to this transaction can request a new code.')

    if tx.status in Transaction.TERMINAL_STATUSES or tx.step not in PENDING_CODES:
        raise InvalidTransition('No confirmation code is pending for this transaction.')

    pending_purpose, recipient_field, bind_amount = PENDING_CODES[tx.step]
    if purpose and purpose != pending_purpose:
        raise InvalidTransition(f'No {purpose} code is pending; this transaction awaits {pending_purpose}.')

    recipient = getattr(tx, recipient_field)
    amount = tx.final_offer if bind_amount else None
    phone_number = _require_phone(recipient)

    record, _code = issue_code(phone_number, pending_purpose, transaction=tx, amount=amount, now=now)

    logger.info(
        f"Confirmation code resent. "
        f"Transaction ID: {tx.id}, Purpose: {pending_purpose}, Requested by: {user.id}"
    )
    return record


def outstanding_code(tx):
    """The unverified code the transaction is waiting on, if any."""
    if tx.step not in PENDING_CODES:
        return None
    purpose, recipient_field, bind_amount = PENDING_CODES[tx.step]
    recipient = getattr(tx, recipient_field)
    if not recipient.phone_number:
        return None
    return pending_code(
        recipient.phone_number,
        purpose,
        transaction=tx,
        amount=tx.final_offer if bind_amount else None,
    )
