"""
Tests for the marketplace signals.

Covers the lifecycle_event audit trail and the verification record created
for every new transaction, including rollback when a receiver fails.
"""

from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TransactionTestCase

from core.bidding import accept_bid, place_bid
from core.lifecycle import approve_listing, submit_listing
from core.models import AgentVerification, Bid, LifecycleEvent, Listing, Transaction
from core.signals import emit, lifecycle_event

User = get_user_model()


class SignalTestMixin:

    def setUp(self):
        """Set up an open listing with one bid on it."""
        self.client_user = User.objects.create_user(
            username='+919876543210',
            phone_number='+919876543210',
            role='client'
        )
        self.vendor = User.objects.create_user(
            username='+919812345678',
            phone_number='+919812345678',
            role='vendor',
            business_name='Metro Mobiles',
            is_approved=True
        )
        self.admin = User.objects.create_user(
            username='+919700000001',
            phone_number='+919700000001',
            role='admin',
            is_staff=True
        )

        listing = submit_listing(
            self.client_user,
            brand='Apple',
            device_model='iPhone 13',
            condition='good',
            asking_price=Decimal('65000.00'),
            imei1='490154203237518',
            pickup_street='12 MG Road',
            pickup_city='Bengaluru',
            pickup_state='Karnataka',
            pickup_pincode='560001',
        )
        self.listing = approve_listing(listing, self.admin)
        self.bid = place_bid(self.listing, self.vendor, Decimal('58000.00'))


class VerificationRecordSignalTests(SignalTestMixin, TransactionTestCase):

    def test_record_created_with_transaction(self):
        """Accepting a bid creates the transaction and its empty verification record."""
        tx = accept_bid(self.bid)

        verification = AgentVerification.objects.get(transaction=tx)
        self.assertFalse(verification.customer_id_verified)
        self.assertIsNone(verification.battery_health)
        self.assertFalse(verification.is_final)

    def test_record_not_duplicated_on_update(self):
        tx = accept_bid(self.bid)

        tx.total_deductions = Decimal('100.00')
        tx.save()

        self.assertEqual(AgentVerification.objects.filter(transaction=tx).count(), 1)

    def test_receiver_failure_rolls_back_acceptance(self):
        """If the record cannot be created, no transaction is left behind."""
        with mock.patch.object(
            AgentVerification.objects, 'get_or_create', side_effect=DatabaseError('disk full')
        ):
            with self.assertRaises(DatabaseError):
                accept_bid(self.bid)

        self.assertFalse(Transaction.objects.exists())
        self.assertEqual(Bid.objects.get(pk=self.bid.pk).status, 'active')
        self.assertEqual(Listing.objects.get(pk=self.listing.pk).status, 'bidding_active')
        self.assertFalse(
            LifecycleEvent.objects.filter(event_type='bid_accepted').exists()
        )

    def test_bid_can_be_accepted_after_failure(self):
        with mock.patch.object(
            AgentVerification.objects, 'get_or_create', side_effect=DatabaseError('disk full')
        ):
            with self.assertRaises(DatabaseError):
                accept_bid(self.bid)

        tx = accept_bid(self.bid)

        self.assertTrue(AgentVerification.objects.filter(transaction=tx).exists())


class LifecycleEventSignalTests(SignalTestMixin, TransactionTestCase):

    def test_workflow_records_events_in_order(self):
        accept_bid(self.bid)

        event_types = list(
            LifecycleEvent.objects.filter(listing=self.listing).values_list('event_type', flat=True)
        )
        self.assertEqual(event_types, [
            'listing_submitted',
            'listing_approved',
            'bid_placed',
            'bid_accepted',
            'bidding_ended',
        ])

    def test_event_payload_and_actor(self):
        event = LifecycleEvent.objects.get(event_type='bid_placed')

        self.assertEqual(event.actor, self.vendor)
        self.assertEqual(event.payload['amount'], '58000.00')
        self.assertEqual(event.payload['bid_id'], self.bid.id)

    def test_emit_derives_listing_from_transaction(self):
        tx = accept_bid(self.bid)

        emit('verification_step', transaction=tx, note='audit')

        event = LifecycleEvent.objects.get(event_type='verification_step')
        self.assertEqual(event.listing_id, self.listing.id)
        self.assertEqual(event.transaction_id, tx.id)
        self.assertIsNone(event.actor)
        self.assertEqual(event.payload, {'note': 'audit'})

    def test_other_receivers_are_notified(self):
        received = []

        def on_event(sender, event_type, **kwargs):
            received.append((event_type, kwargs['listing'].pk))

        lifecycle_event.connect(on_event)
        try:
            accept_bid(self.bid)
        finally:
            lifecycle_event.disconnect(on_event)

        self.assertEqual(received, [
            ('bid_accepted', self.listing.pk),
            ('bidding_ended', self.listing.pk),
        ])
