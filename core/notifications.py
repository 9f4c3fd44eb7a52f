"""
Delivery of confirmation codes to users.

The sender class is configured with MARKETPLACE['CONFIRMATION_CODE_SENDER'].
The default sender writes the WhatsApp message to the log instead of
contacting a gateway.
"""

import logging

from django.utils.module_loading import import_string

from .conf import marketplace_setting

logger = logging.getLogger(__name__)


MESSAGE_TEMPLATES = {
    'login': 'Your CellFlip login code is {code}. Do not share it with anyone.',
    'offer_acceptance': 'Your final offer is Rs. {amount}. Share code {code} with the agent to accept it.',
    'vendor_receipt': 'Share code {code} with the agent to confirm you received the device.',
    'transaction_completion': 'Share code {code} to confirm the sale of your device is complete.',
}


class LoggingCodeSender:
    """Code sender that logs the message it would have delivered."""

    def send(self, phone_number, code, purpose, amount=None):
        message = MESSAGE_TEMPLATES[purpose].format(code=code, amount=amount)
        logger.info(
            f"WhatsApp message queued. "
            f"Phone: {phone_number}, Purpose: {purpose}, Message: {message}"
        )
        return message


def get_code_sender():
    """Instantiate the configured code sender."""
    sender_class = import_string(marketplace_setting('CONFIRMATION_CODE_SENDER'))
    return sender_class()
