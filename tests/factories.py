"""
Builders for test data shared by the fixtures and the test modules.
"""

from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework_simplejwt.tokens import RefreshToken

User = get_user_model()

VALID_IMEI = '490154203237518'
OTHER_VALID_IMEI = '356938035643809'
THIRD_VALID_IMEI = '352099001761481'

FIXED_CODE = '246810'

INSPECTION_PHOTOS = ['front.jpg', 'back.jpg', 'top.jpg', 'bottom.jpg']


def make_user(phone_number, role, **extra):
    return User.objects.create_user(
        username=phone_number,
        phone_number=phone_number,
        role=role,
        **extra
    )


def authenticate(api_client, user):
    """Attach a bearer token for ``user`` to the client."""
    token = RefreshToken.for_user(user).access_token
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
    return api_client


def listing_fields(**overrides):
    fields = {
        'brand': 'Apple',
        'device_model': 'iPhone 13',
        'storage_capacity': '128GB',
        'color': 'Midnight',
        'condition': 'good',
        'asking_price': Decimal('65000.00'),
        'imei1': VALID_IMEI,
        'pickup_street': '12 MG Road',
        'pickup_city': 'Bengaluru',
        'pickup_state': 'Karnataka',
        'pickup_pincode': '560001',
    }
    fields.update(overrides)
    return fields
