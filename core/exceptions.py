"""
Domain errors raised by the marketplace workflow modules.

Views translate these into HTTP responses using ``status_code`` and ``code``.
"""

from rest_framework import status


class MarketplaceError(Exception):
    """Base class for workflow errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'marketplace_error'
    default_detail = 'The request could not be processed.'

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def as_response_data(self):
        return {'detail': self.detail, 'code': self.code}


class NotPermitted(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'not_permitted'
    default_detail = 'You do not have permission to perform this action.'


class InvalidTransition(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = 'invalid_transition'
    default_detail = 'This action is not allowed in the current state.'


class MissingArtifact(MarketplaceError):
    code = 'missing_artifact'
    default_detail = 'Required evidence for this step is missing.'


class BiddingClosed(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = 'bidding_closed'
    default_detail = 'Bidding is not open for this listing.'


class BidTooLow(MarketplaceError):
    code = 'bid_too_low'
    default_detail = 'Bid must be higher than the current highest bid.'


class ConfirmationError(MarketplaceError):
    code = 'confirmation_failed'
    default_detail = 'Confirmation code could not be verified.'


class CodeNotFound(ConfirmationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'code_not_found'
    default_detail = 'No confirmation code has been issued for this request.'


class CodeInvalid(ConfirmationError):
    code = 'code_invalid'
    default_detail = 'Invalid confirmation code. Please try again.'


class CodeExpired(ConfirmationError):
    status_code = status.HTTP_410_GONE
    code = 'code_expired'
    default_detail = 'Confirmation code has expired. Please request a new one.'


class CodeAlreadyUsed(ConfirmationError):
    status_code = status.HTTP_409_CONFLICT
    code = 'code_already_used'
    default_detail = 'Confirmation code has already been used.'


class CodeLocked(ConfirmationError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'code_locked'
    default_detail = 'Too many failed attempts. Please request a new code.'


class ResendCooldown(ConfirmationError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = 'resend_cooldown'

    def __init__(self, seconds_remaining):
        self.seconds_remaining = seconds_remaining
        super().__init__(
            f'Please wait {seconds_remaining} seconds before requesting another code.'
        )
