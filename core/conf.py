"""
Access to marketplace business settings.

Values are read from settings.MARKETPLACE and fall back to the defaults below,
so tests can override a single key with override_settings(MARKETPLACE={...}).
"""

from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    'BIDDING_WINDOW_HOURS': 24,
    'AGENT_COMMISSION_RATE': '0.05',
    'PLATFORM_FEE_RATE': '0.02',
    'CONFIRMATION_CODE_LENGTH': 6,
    'CONFIRMATION_CODE_TTL_SECONDS': 600,
    'CONFIRMATION_RESEND_COOLDOWN_SECONDS': 30,
    'CONFIRMATION_MAX_ATTEMPTS': 5,
    'CONFIRMATION_CODE_SENDER': 'core.notifications.LoggingCodeSender',
    'INSPECTION_MIN_PHOTOS': 4,
    'BATTERY_HEALTH_THRESHOLD': 80,
}

DECIMAL_SETTINGS = {'AGENT_COMMISSION_RATE', 'PLATFORM_FEE_RATE'}


def marketplace_setting(name):
    """
    Return a marketplace setting by name.

    Rates are returned as Decimal regardless of how they were configured.

    Raises:
        KeyError: If the name is not a known marketplace setting
    """
    if name not in DEFAULTS:
        raise KeyError(f'Unknown marketplace setting: {name}')

    configured = getattr(settings, 'MARKETPLACE', {}) or {}
    value = configured.get(name, DEFAULTS[name])

    if name in DECIMAL_SETTINGS:
        return Decimal(str(value))
    return value
