"""
One-time confirmation codes.

A code is bound to a phone number and a purpose, and optionally to a
transaction and an amount. It moves from issued to exactly one of verified,
expired or failed. Only a hash of the code is stored.
"""

import logging
import math
import secrets
from datetime import timedelta

from django.contrib.auth.hashers import make_password
from django.db import transaction as db_transaction
from django.utils import timezone

from .conf import marketplace_setting
from .exceptions import (
    CodeAlreadyUsed,
    CodeExpired,
    CodeInvalid,
    CodeLocked,
    CodeNotFound,
    ResendCooldown,
)
from .models import ConfirmationCode
from .notifications import get_code_sender
from .validators import normalize_phone_number

logger = logging.getLogger(__name__)


def generate_code(length=None):
    """Return a random numeric code, zero padded to ``length`` digits."""
    length = length or marketplace_setting('CONFIRMATION_CODE_LENGTH')
    return str(secrets.randbelow(10 ** length)).zfill(length)


def _binding(phone_number, purpose, transaction=None, amount=None):
    binding = {
        'phone_number': normalize_phone_number(phone_number),
        'purpose': purpose,
    }
    if transaction is None:
        binding['transaction__isnull'] = True
    else:
        binding['transaction'] = transaction
    if amount is None:
        binding['amount__isnull'] = True
    else:
        binding['amount'] = amount
    return binding


def issue_code(phone_number, purpose, transaction=None, amount=None, now=None):
    """
    Issue a new confirmation code and deliver it to ``phone_number``.

    A pending code for the same binding is replaced, but only once the resend
    cooldown has passed. The new code gets a fresh lifetime.

    Returns:
        tuple: (ConfirmationCode, plain code)

    Raises:
        ResendCooldown: If a code for this binding was issued too recently
    """
    now = now or timezone.now()
    cooldown = marketplace_setting('CONFIRMATION_RESEND_COOLDOWN_SECONDS')
    ttl = marketplace_setting('CONFIRMATION_CODE_TTL_SECONDS')
    binding = _binding(phone_number, purpose, transaction, amount)

    with db_transaction.atomic():
        pending = ConfirmationCode.objects.select_for_update().filter(
            status='issued', **binding
        ).first()

        if pending is not None:
            elapsed = (now - pending.created_at).total_seconds()
            if elapsed < cooldown:
                remaining = math.ceil(cooldown - elapsed)
                logger.warning(
                    f"Confirmation code resend refused during cooldown. "
                    f"Phone: {binding['phone_number']}, Purpose: {purpose}, "
                    f"Seconds remaining: {remaining}"
                )
                raise ResendCooldown(remaining)

            ConfirmationCode.objects.filter(
                status='issued', **binding
            ).update(status='expired')

        code = generate_code()
        record = ConfirmationCode.objects.create(
            phone_number=binding['phone_number'],
            purpose=purpose,
            transaction=transaction,
            amount=amount,
            code_hash=make_password(code),
            expires_at=now + timedelta(seconds=ttl),
            created_at=now,
        )

    get_code_sender().send(binding['phone_number'], code, purpose, amount=amount)

    logger.info(
        f"Confirmation code issued. "
        f"Code ID: {record.id}, Purpose: {purpose}, "
        f"Transaction ID: {getattr(transaction, 'id', None)}, "
        f"Expires: {record.expires_at}"
    )
    return record, code


def verify_code(phone_number, purpose, code, transaction=None, amount=None, now=None):
    """
    Verify ``code`` against the latest code issued for the binding.

    A code can be verified once. Each wrong guess counts as an attempt, and
    the code fails permanently after CONFIRMATION_MAX_ATTEMPTS of them.

    Returns:
        ConfirmationCode: The verified code

    Raises:
        CodeNotFound: No code was issued for this binding
        CodeAlreadyUsed: The code was already verified
        CodeExpired: The code lifetime has passed
        CodeLocked: Too many wrong attempts
        CodeInvalid: The code does not match
    """
    now = now or timezone.now()
    max_attempts = marketplace_setting('CONFIRMATION_MAX_ATTEMPTS')
    binding = _binding(phone_number, purpose, transaction, amount)
    error = None

    # State changes are committed before the error is raised.
    with db_transaction.atomic():
        record = ConfirmationCode.objects.select_for_update().filter(**binding).first()

        if record is None:
            error = CodeNotFound()
        elif record.status == 'verified':
            error = CodeAlreadyUsed()
        elif record.status == 'failed':
            error = CodeLocked()
        elif record.status == 'expired':
            error = CodeExpired()
        elif record.is_expired(now):
            record.status = 'expired'
            record.save(update_fields=['status'])
            error = CodeExpired()
        elif not record.matches(str(code)):
            record.attempts += 1
            if record.attempts >= max_attempts:
                record.status = 'failed'
                error = CodeLocked()
            else:
                error = CodeInvalid()
            record.save(update_fields=['attempts', 'status'])
        else:
            record.status = 'verified'
            record.verified_at = now
            record.save(update_fields=['status', 'verified_at'])

    if error is not None:
        logger.warning(
            f"Confirmation code rejected. "
            f"Phone: {binding['phone_number']}, Purpose: {purpose}, "
            f"Reason: {error.code}"
        )
        raise error

    logger.info(
        f"Confirmation code verified. "
        f"Code ID: {record.id}, Purpose: {purpose}, "
        f"Transaction ID: {record.transaction_id}"
    )
    return record


def expire_stale_codes(now=None):
    """Mark issued codes past their lifetime as expired. Returns the count."""
    now = now or timezone.now()
    count = ConfirmationCode.objects.filter(
        status='issued', expires_at__lte=now
    ).update(status='expired')
    if count:
        logger.info(f"Expired {count} stale confirmation codes.")
    return count


def pending_code(phone_number, purpose, transaction=None, amount=None):
    """Return the outstanding issued code for a binding, or None."""
    return ConfirmationCode.objects.filter(
        status='issued', **_binding(phone_number, purpose, transaction, amount)
    ).first()
