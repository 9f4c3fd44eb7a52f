"""
Tests for the listing lifecycle and the admin side of transactions.

Tests cover:
- Submission, review, approval and rejection
- Cancellation by the owner
- Listing search filters and sorting
- Agent suggestion and assignment
- Disputes
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from core import lifecycle
from core.bidding import close_expired_bidding, place_bid
from core.exceptions import InvalidTransition, MarketplaceError, MissingArtifact, NotPermitted
from core.models import Bid, ConfirmationCode, LifecycleEvent, Listing, Transaction
from core.verification import schedule_pickup

from .factories import OTHER_VALID_IMEI, THIRD_VALID_IMEI, listing_fields, make_user


@pytest.mark.django_db
class TestSubmitListing:

    def test_client_submits_listing(self, client_user):
        listing = lifecycle.submit_listing(client_user, **listing_fields())

        assert listing.status == 'submitted'
        assert listing.client == client_user
        assert LifecycleEvent.objects.filter(listing=listing, event_type='listing_submitted').exists()

    def test_vendor_cannot_submit_listing(self, vendor_user):
        with pytest.raises(NotPermitted):
            lifecycle.submit_listing(vendor_user, **listing_fields())

    def test_invalid_imei_is_rejected(self, client_user):
        with pytest.raises(ValidationError) as excinfo:
            lifecycle.submit_listing(client_user, **listing_fields(imei1='490154203237519'))

        assert 'imei1' in excinfo.value.message_dict
        assert not Listing.objects.exists()

    def test_duplicate_imeis_are_rejected(self, client_user):
        with pytest.raises(ValidationError) as excinfo:
            lifecycle.submit_listing(
                client_user, **listing_fields(imei2=listing_fields()['imei1'])
            )

        assert 'imei2' in excinfo.value.message_dict

    def test_warranty_requires_expiry(self, client_user):
        with pytest.raises(ValidationError):
            lifecycle.submit_listing(client_user, **listing_fields(has_warranty=True))


@pytest.mark.django_db
class TestReview:

    def test_start_review(self, submitted_listing, marketplace_admin):
        listing = lifecycle.start_review(submitted_listing, marketplace_admin)

        assert listing.status == 'under_review'
        assert listing.reviewed_by == marketplace_admin

    def test_approve_opens_24_hour_bidding_window(self, submitted_listing, marketplace_admin):
        now = timezone.now()

        listing = lifecycle.approve_listing(submitted_listing, marketplace_admin, comments='OK', now=now)

        assert listing.status == 'bidding_active'
        assert listing.bidding_starts_at == now
        assert listing.bidding_ends_at == now + timedelta(hours=24)
        assert listing.reviewed_at == now
        assert listing.review_comments == 'OK'

    def test_approve_after_review(self, submitted_listing, marketplace_admin):
        listing = lifecycle.start_review(submitted_listing, marketplace_admin)
        listing = lifecycle.approve_listing(listing, marketplace_admin)

        assert listing.status == 'bidding_active'

    def test_reject_requires_reason(self, submitted_listing, marketplace_admin):
        with pytest.raises(MissingArtifact):
            lifecycle.reject_listing(submitted_listing, marketplace_admin, '  ')

    def test_rejected_listing_is_terminal(self, submitted_listing, marketplace_admin):
        listing = lifecycle.reject_listing(submitted_listing, marketplace_admin, 'Blurry photos')

        assert listing.status == 'rejected'
        assert listing.rejection_reason == 'Blurry photos'

        with pytest.raises(InvalidTransition):
            lifecycle.approve_listing(listing, marketplace_admin)

    def test_non_admin_cannot_review(self, submitted_listing, client_user):
        with pytest.raises(NotPermitted):
            lifecycle.approve_listing(submitted_listing, client_user)

    def test_approved_listing_cannot_be_approved_again(self, open_listing, marketplace_admin):
        with pytest.raises(InvalidTransition):
            lifecycle.approve_listing(open_listing, marketplace_admin)


@pytest.mark.django_db
class TestCancelListing:

    def test_owner_cancels_and_active_bid_expires(self, open_listing, client_user, vendor_user):
        bid = place_bid(open_listing, vendor_user, Decimal('50000.00'))

        listing = lifecycle.cancel_listing(open_listing, client_user)

        assert listing.status == 'cancelled'
        bid.refresh_from_db()
        assert bid.status == 'expired'

    def test_other_user_cannot_cancel(self, open_listing, other_client):
        with pytest.raises(NotPermitted):
            lifecycle.cancel_listing(open_listing, other_client)

    def test_cannot_cancel_after_bid_accepted(self, accepted_transaction, client_user):
        with pytest.raises(InvalidTransition):
            lifecycle.cancel_listing(accepted_transaction.listing, client_user)

    def test_cancel_after_deadline_keeps_winning_bid(self, open_listing, client_user, vendor_user):
        bid = place_bid(open_listing, vendor_user, Decimal('58000.00'))
        after = open_listing.bidding_ends_at + timedelta(hours=1)

        with pytest.raises(InvalidTransition):
            lifecycle.cancel_listing(open_listing, client_user, now=after)

        bid.refresh_from_db()
        assert bid.status == 'accepted'
        assert Listing.objects.get(pk=open_listing.pk).status == 'bidding_ended'
        tx = Transaction.objects.get(listing=open_listing)
        assert tx.accepted_bid_id == bid.id
        assert tx.bid_amount == Decimal('58000.00')

    def test_cancel_after_window_without_bids(self, open_listing, client_user):
        after = open_listing.bidding_ends_at + timedelta(hours=1)

        listing = lifecycle.cancel_listing(open_listing, client_user, now=after)

        assert listing.status == 'cancelled'
        assert not Transaction.objects.exists()
        types = list(
            LifecycleEvent.objects.filter(listing=listing).values_list('event_type', flat=True)
        )
        assert types[-2:] == ['bidding_ended', 'listing_cancelled']

    def test_ended_listing_without_bids_can_be_cancelled(self, open_listing, client_user):
        close_expired_bidding(open_listing, now=open_listing.bidding_ends_at)

        listing = lifecycle.cancel_listing(open_listing, client_user)

        assert listing.status == 'cancelled'

    def test_cancelled_listing_cannot_be_cancelled_again(self, submitted_listing, client_user):
        listing = lifecycle.cancel_listing(submitted_listing, client_user)

        with pytest.raises(InvalidTransition):
            lifecycle.cancel_listing(listing, client_user)


@pytest.mark.django_db
class TestSearchListings:

    @pytest.fixture
    def catalogue(self, client_user, marketplace_admin):
        def listed(**overrides):
            listing = lifecycle.submit_listing(client_user, **listing_fields(**overrides))
            return lifecycle.approve_listing(listing, marketplace_admin)

        return {
            'iphone': listed(),
            'galaxy': listed(
                brand='Samsung', device_model='Galaxy S23', condition='excellent',
                asking_price=Decimal('52000.00'), imei1=OTHER_VALID_IMEI, pickup_city='Mumbai',
            ),
            'pixel': listed(
                brand='Google', device_model='Pixel 7', condition='fair',
                asking_price=Decimal('30000.00'), imei1=THIRD_VALID_IMEI,
            ),
        }

    def test_default_search_returns_open_listings(self, catalogue, submitted_listing):
        results = list(lifecycle.search_listings())

        assert set(results) == set(catalogue.values())

    def test_brand_filter_is_case_insensitive(self, catalogue):
        results = list(lifecycle.search_listings({'brand': 'samsung'}))

        assert results == [catalogue['galaxy']]

    def test_model_filter_matches_part(self, catalogue):
        results = list(lifecycle.search_listings({'device_model': 'pixel'}))

        assert results == [catalogue['pixel']]

    def test_condition_and_city_filters(self, catalogue):
        results = set(lifecycle.search_listings({'condition': ['fair', 'good']}))
        assert results == {catalogue['iphone'], catalogue['pixel']}
        assert list(lifecycle.search_listings({'city': 'mumbai'})) == [catalogue['galaxy']]

    def test_price_range(self, catalogue):
        results = list(lifecycle.search_listings({
            'min_price': Decimal('40000'), 'max_price': Decimal('60000'),
        }))

        assert results == [catalogue['galaxy']]

    def test_sort_by_price(self, catalogue):
        low = list(lifecycle.search_listings({'sort': 'price_low'}))
        high = list(lifecycle.search_listings({'sort': 'price_high'}))

        assert low == [catalogue['pixel'], catalogue['galaxy'], catalogue['iphone']]
        assert high == list(reversed(low))

    def test_highest_bid_annotation(self, catalogue, vendor_user, other_vendor):
        place_bid(catalogue['iphone'], vendor_user, Decimal('40000.00'))
        place_bid(catalogue['iphone'], other_vendor, Decimal('45000.00'))

        listing = lifecycle.search_listings({'brand': 'apple'}).get()

        assert listing.highest_bid == Decimal('45000.00')
        assert listing.bid_count == 2

    def test_status_filter(self, catalogue, submitted_listing):
        results = list(lifecycle.search_listings({'status': ['submitted']}))

        assert results == [submitted_listing]

    def test_expired_window_is_not_listed_as_open(self, catalogue):
        ends_at = max(listing.bidding_ends_at for listing in catalogue.values())

        results = set(lifecycle.search_listings(now=ends_at))

        assert results == set()

    def test_ending_soon_skips_expired_window(self, catalogue):
        iphone = catalogue['iphone']
        Listing.objects.filter(pk=iphone.pk).update(
            bidding_ends_at=timezone.now() - timedelta(minutes=1)
        )

        results = list(lifecycle.search_listings({'sort': 'ending_soon'}))

        assert iphone not in results
        assert results == [catalogue['galaxy'], catalogue['pixel']]


@pytest.mark.django_db
class TestAgentAssignment:

    def test_suggestions_prefer_pickup_city(self, accepted_transaction, agent_user, other_agent):
        suggestions = list(lifecycle.suggest_agents(accepted_transaction))

        assert suggestions == [agent_user, other_agent]

    def test_suggestions_skip_unavailable_and_unapproved(self, accepted_transaction, agent_user):
        make_user('+919900055566', 'agent', is_approved=False, city='Bengaluru')
        busy = make_user('+919900077788', 'agent', is_approved=True, city='Bengaluru')
        busy.is_available = False
        busy.save()

        assert list(lifecycle.suggest_agents(accepted_transaction)) == [agent_user]

    def test_assign_agent_moves_into_verification(self, accepted_transaction, agent_user, marketplace_admin):
        tx = lifecycle.assign_agent(accepted_transaction, agent_user, marketplace_admin)

        assert tx.agent == agent_user
        assert tx.step == 'agent_assigned'
        assert tx.phase == 'verification'
        assert tx.status == 'in_progress'

    def test_unavailable_agent_cannot_be_assigned(self, accepted_transaction, agent_user, marketplace_admin):
        agent_user.is_available = False
        agent_user.save()

        with pytest.raises(MarketplaceError):
            lifecycle.assign_agent(accepted_transaction, agent_user, marketplace_admin)

    def test_only_admin_assigns(self, accepted_transaction, agent_user, client_user):
        with pytest.raises(NotPermitted):
            lifecycle.assign_agent(accepted_transaction, agent_user, client_user)

    def test_agent_cannot_be_assigned_twice(self, assigned_transaction, other_agent, marketplace_admin):
        with pytest.raises(InvalidTransition):
            lifecycle.assign_agent(assigned_transaction, other_agent, marketplace_admin)


@pytest.mark.django_db
class TestDispute:

    def test_party_raises_dispute(self, assigned_transaction, vendor_user):
        tx = lifecycle.raise_dispute(assigned_transaction, vendor_user, ' Device swapped ')

        assert tx.status == 'disputed'
        assert tx.dispute_reason == 'Device swapped'
        assert LifecycleEvent.objects.filter(transaction=tx, event_type='dispute_raised').exists()

    def test_outsider_cannot_dispute(self, assigned_transaction, other_client):
        with pytest.raises(NotPermitted):
            lifecycle.raise_dispute(assigned_transaction, other_client, 'Not mine')

    def test_admin_can_dispute(self, assigned_transaction, marketplace_admin):
        tx = lifecycle.raise_dispute(assigned_transaction, marketplace_admin, 'Fraud check')

        assert tx.status == 'disputed'

    def test_disputed_transaction_cannot_advance(self, assigned_transaction, client_user, agent_user):
        lifecycle.raise_dispute(assigned_transaction, client_user, 'Changed my mind')
        assigned_transaction.refresh_from_db()

        with pytest.raises(InvalidTransition):
            schedule_pickup(assigned_transaction, agent_user, timezone.now() + timedelta(hours=1))

    def test_dispute_requires_reason(self, assigned_transaction, client_user):
        with pytest.raises(MissingArtifact):
            lifecycle.raise_dispute(assigned_transaction, client_user, '')

    def test_bids_untouched_by_dispute(self, assigned_transaction, client_user):
        lifecycle.raise_dispute(assigned_transaction, client_user, 'Late agent')

        assert Bid.objects.get(pk=assigned_transaction.accepted_bid_id).status == 'accepted'

    def test_dispute_cancels_listing(self, assigned_transaction, client_user):
        lifecycle.raise_dispute(assigned_transaction, client_user, 'Agent asked for cash')

        listing = Listing.objects.get(pk=assigned_transaction.listing_id)
        assert listing.status == 'cancelled'

    def test_dispute_during_verification_expires_pending_code(self, offer_sent_transaction, vendor_user):
        lifecycle.raise_dispute(offer_sent_transaction, vendor_user, 'Wrong device')

        assert not ConfirmationCode.objects.filter(
            transaction=offer_sent_transaction, status='issued'
        ).exists()
        listing = Listing.objects.get(pk=offer_sent_transaction.listing_id)
        assert listing.status == 'cancelled'
