"""
Tests for one-time confirmation codes.

Tests cover:
- Issuing codes (hashing, lifetime, delivery)
- Verification outcomes (success, reuse, wrong code, lockout, expiry)
- Resend cooldown
- Binding to transaction and amount
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.test import override_settings
from django.utils import timezone

from core import confirmation
from core.exceptions import (
    CodeAlreadyUsed,
    CodeExpired,
    CodeInvalid,
    CodeLocked,
    CodeNotFound,
    ResendCooldown,
)
from core.models import ConfirmationCode
from core.notifications import LoggingCodeSender

PHONE = '+919876543210'


@pytest.fixture
def now():
    return timezone.now()


@pytest.mark.django_db
class TestIssueCode:

    def test_issue_stores_only_a_hash(self, now):
        record, code = confirmation.issue_code(PHONE, 'login', now=now)

        assert len(code) == 6
        assert code.isdigit()
        assert record.code_hash != code
        assert record.matches(code)
        assert record.status == 'issued'

    def test_issue_sets_ten_minute_lifetime(self, now):
        record, _code = confirmation.issue_code(PHONE, 'login', now=now)

        assert record.expires_at == now + timedelta(seconds=600)

    def test_issue_normalizes_phone_number(self, now):
        record, _code = confirmation.issue_code('+91 98765-43210', 'login', now=now)

        assert record.phone_number == PHONE

    def test_issue_delivers_code_through_sender(self, now):
        with mock.patch.object(LoggingCodeSender, 'send') as send:
            _record, code = confirmation.issue_code(PHONE, 'login', now=now)

        send.assert_called_once_with(PHONE, code, 'login', amount=None)

    def test_resend_within_cooldown_is_refused(self, now):
        confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(ResendCooldown) as excinfo:
            confirmation.issue_code(PHONE, 'login', now=now + timedelta(seconds=10))

        assert excinfo.value.seconds_remaining == 20
        assert ConfirmationCode.objects.count() == 1

    def test_resend_after_cooldown_replaces_pending_code(self, now):
        first, _code = confirmation.issue_code(PHONE, 'login', now=now)
        second, _code = confirmation.issue_code(PHONE, 'login', now=now + timedelta(seconds=31))

        first.refresh_from_db()
        assert first.status == 'expired'
        assert second.status == 'issued'
        assert second.expires_at == now + timedelta(seconds=631)

    def test_cooldown_is_per_purpose(self, now):
        confirmation.issue_code(PHONE, 'login', now=now)
        record, _code = confirmation.issue_code(PHONE, 'offer_acceptance', amount=Decimal('100.00'), now=now)

        assert record.status == 'issued'

    def test_generated_codes_are_zero_padded(self):
        with mock.patch('core.confirmation.secrets.randbelow', return_value=42):
            assert confirmation.generate_code(6) == '000042'


@pytest.mark.django_db
class TestVerifyCode:

    def test_correct_code_verifies(self, now):
        _record, code = confirmation.issue_code(PHONE, 'login', now=now)

        record = confirmation.verify_code(PHONE, 'login', code, now=now + timedelta(seconds=5))

        assert record.status == 'verified'
        assert record.verified_at == now + timedelta(seconds=5)

    def test_code_cannot_be_used_twice(self, now):
        _record, code = confirmation.issue_code(PHONE, 'login', now=now)
        confirmation.verify_code(PHONE, 'login', code, now=now)

        with pytest.raises(CodeAlreadyUsed):
            confirmation.verify_code(PHONE, 'login', code, now=now)

    def test_wrong_code_counts_an_attempt(self, now, fixed_code):
        record, _code = confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(CodeInvalid):
            confirmation.verify_code(PHONE, 'login', '000000', now=now)

        record.refresh_from_db()
        assert record.attempts == 1
        assert record.status == 'issued'

    def test_fifth_wrong_attempt_locks_code(self, now, fixed_code):
        record, _code = confirmation.issue_code(PHONE, 'login', now=now)

        for _attempt in range(4):
            with pytest.raises(CodeInvalid):
                confirmation.verify_code(PHONE, 'login', '000000', now=now)

        with pytest.raises(CodeLocked):
            confirmation.verify_code(PHONE, 'login', '000000', now=now)

        record.refresh_from_db()
        assert record.status == 'failed'
        assert record.attempts == 5

        # The right code no longer helps
        with pytest.raises(CodeLocked):
            confirmation.verify_code(PHONE, 'login', fixed_code, now=now)

    @override_settings(MARKETPLACE={'CONFIRMATION_MAX_ATTEMPTS': 2})
    def test_max_attempts_is_configurable(self, now, fixed_code):
        confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(CodeInvalid):
            confirmation.verify_code(PHONE, 'login', '000000', now=now)
        with pytest.raises(CodeLocked):
            confirmation.verify_code(PHONE, 'login', '000000', now=now)

    def test_expired_code_is_rejected(self, now):
        record, code = confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(CodeExpired):
            confirmation.verify_code(PHONE, 'login', code, now=now + timedelta(seconds=600))

        record.refresh_from_db()
        assert record.status == 'expired'

    def test_code_verifies_just_before_expiry(self, now):
        _record, code = confirmation.issue_code(PHONE, 'login', now=now)

        record = confirmation.verify_code(PHONE, 'login', code, now=now + timedelta(seconds=599))

        assert record.status == 'verified'

    def test_unknown_binding_is_not_found(self):
        with pytest.raises(CodeNotFound):
            confirmation.verify_code(PHONE, 'login', '123456')

    def test_replaced_code_no_longer_works(self, now):
        _first, old_code = confirmation.issue_code(PHONE, 'login', now=now)
        _second, new_code = confirmation.issue_code(PHONE, 'login', now=now + timedelta(seconds=31))

        if old_code != new_code:
            with pytest.raises(CodeInvalid):
                confirmation.verify_code(PHONE, 'login', old_code, now=now + timedelta(seconds=32))

        record = confirmation.verify_code(PHONE, 'login', new_code, now=now + timedelta(seconds=33))
        assert record.status == 'verified'


@pytest.mark.django_db
class TestCodeBinding:

    def test_code_is_bound_to_amount(self, now):
        _record, code = confirmation.issue_code(
            PHONE, 'offer_acceptance', amount=Decimal('50460.00'), now=now
        )

        with pytest.raises(CodeNotFound):
            confirmation.verify_code(
                PHONE, 'offer_acceptance', code, amount=Decimal('51000.00'), now=now
            )

        record = confirmation.verify_code(
            PHONE, 'offer_acceptance', code, amount=Decimal('50460.00'), now=now
        )
        assert record.status == 'verified'

    def test_code_is_bound_to_phone_number(self, now):
        _record, code = confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(CodeNotFound):
            confirmation.verify_code('+919812345678', 'login', code, now=now)

    def test_code_is_bound_to_purpose(self, now):
        _record, code = confirmation.issue_code(PHONE, 'login', now=now)

        with pytest.raises(CodeNotFound):
            confirmation.verify_code(PHONE, 'vendor_receipt', code, now=now)


@pytest.mark.django_db
class TestExpireStaleCodes:

    def test_only_past_codes_are_expired(self, now):
        confirmation.issue_code(PHONE, 'login', now=now - timedelta(minutes=20))
        confirmation.issue_code('+919812345678', 'login', now=now)

        count = confirmation.expire_stale_codes(now=now)

        assert count == 1
        assert ConfirmationCode.objects.filter(status='expired').count() == 1
        assert confirmation.pending_code('+919812345678', 'login') is not None
        assert confirmation.pending_code(PHONE, 'login') is None
