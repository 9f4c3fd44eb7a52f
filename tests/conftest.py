"""
Shared fixtures for the marketplace test suite.

Users for every role, listings at each stage of their lifecycle and
transactions at the start of the verification workflow.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from core import verification
from core.bidding import accept_bid, place_bid
from core.lifecycle import approve_listing, assign_agent, submit_listing

from .factories import FIXED_CODE, INSPECTION_PHOTOS, listing_fields, make_user


@pytest.fixture(autouse=True)
def clear_cache(db):
    """Clear Django cache before each test to reset throttle limits."""
    cache.clear()


@pytest.fixture
def api_client():
    """Provide API client for testing."""
    return APIClient()


@pytest.fixture
def client_user(db):
    return make_user('+919876543210', 'client', first_name='Asha', city='Bengaluru')


@pytest.fixture
def other_client(db):
    return make_user('+919876500000', 'client', first_name='Ravi', city='Mumbai')


@pytest.fixture
def vendor_user(db):
    return make_user(
        '+919812345678', 'vendor',
        business_name='Metro Mobiles', is_approved=True, city='Bengaluru'
    )


@pytest.fixture
def other_vendor(db):
    return make_user(
        '+919812300000', 'vendor',
        business_name='Phone Bazaar', is_approved=True, city='Bengaluru'
    )


@pytest.fixture
def unapproved_vendor(db):
    return make_user('+919812399999', 'vendor', business_name='New Shop', is_approved=False)


@pytest.fixture
def agent_user(db):
    return make_user('+919900011122', 'agent', is_approved=True, city='Bengaluru')


@pytest.fixture
def other_agent(db):
    return make_user('+919900033344', 'agent', is_approved=True, city='Mumbai')


@pytest.fixture
def marketplace_admin(db):
    return make_user('+919700000001', 'admin', is_staff=True)


@pytest.fixture
def fixed_code(monkeypatch):
    """Make every issued confirmation code predictable."""
    monkeypatch.setattr('core.confirmation.generate_code', lambda length=None: FIXED_CODE)
    return FIXED_CODE


@pytest.fixture
def submitted_listing(client_user):
    return submit_listing(client_user, **listing_fields())


@pytest.fixture
def open_listing(submitted_listing, marketplace_admin):
    """Approved listing with bidding open for the next 24 hours."""
    return approve_listing(submitted_listing, marketplace_admin)


@pytest.fixture
def accepted_transaction(open_listing, vendor_user):
    """Transaction created from a 58000 bid accepted before the asking price."""
    bid = place_bid(open_listing, vendor_user, Decimal('58000.00'))
    return accept_bid(bid)


@pytest.fixture
def assigned_transaction(accepted_transaction, agent_user, marketplace_admin):
    return assign_agent(accepted_transaction, agent_user, marketplace_admin)


@pytest.fixture
def offer_sent_transaction(assigned_transaction, agent_user, fixed_code):
    """
    Transaction whose final offer has been sent to the client.

    Inspection: same condition, battery 75%, only the box included, so the
    deductions are 4640 (battery) + 2900 (accessories) = 7540.
    """
    tx = verification.schedule_pickup(
        assigned_transaction, agent_user, timezone.now() + timedelta(hours=2)
    )
    tx = verification.verify_identity(tx, agent_user, 'aadhaar', '1234 5678 9012', 'id-front.jpg')
    tx = verification.inspect_device(
        tx,
        agent_user,
        actual_condition='good',
        battery_health=75,
        accessories_included=['box'],
        photo_refs=INSPECTION_PHOTOS,
    )
    verification.calculate_deductions(tx, agent_user)
    return verification.send_final_offer(tx, agent_user)
