"""
Listing lifecycle: submission, admin review, cancellation, search, and the
admin side of a transaction (agent assignment and disputes).
"""

import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import Case, Count, IntegerField, Max, Q, Value, When
from django.utils import timezone

from .bidding import close_expired_bidding
from .conf import marketplace_setting
from .exceptions import InvalidTransition, MarketplaceError, MissingArtifact, NotPermitted
from .models import Bid, Listing, Transaction, User
from .signals import emit
from .verification import advance_step

logger = logging.getLogger(__name__)


CANCELLABLE_STATUSES = {'submitted', 'under_review', 'approved', 'bidding_active', 'bidding_ended'}

OPEN_TRANSACTION_STATUSES = ['pending', 'in_progress']

SORT_ORDERS = {
    'price_low': ['asking_price', 'id'],
    'price_high': ['-asking_price', 'id'],
    'newest': ['-created_at', '-id'],
    'ending_soon': ['bidding_ends_at', 'id'],
}


def _require_admin(user, action):
    if not user.is_admin_user():
        logger.warning(f"Non-admin user attempted to {action}. User ID: {user.id}, Role: {user.role}")
        raise NotPermitted(f'Only admins can {action}.')


def _move_listing(listing, new_status):
    is_valid, error_message = listing.can_transition_to(new_status)
    if not is_valid:
        raise InvalidTransition(error_message)
    old_status = listing.status
    listing.status = new_status
    return old_status


def submit_listing(client, **fields):
    """
    Create a listing in the submitted state.

    Raises:
        NotPermitted: User is not a client
        django.core.exceptions.ValidationError: Listing fields are invalid
    """
    if not client.is_client():
        raise NotPermitted('Only clients can list devices.')

    with transaction.atomic():
        listing = Listing(client=client, status='submitted', **fields)
        listing.save()
        emit('listing_submitted', listing=listing, actor=client, asking_price=str(listing.asking_price))

    logger.info(
        f"Listing submitted. "
        f"Listing ID: {listing.id}, Client ID: {client.id}, "
        f"Device: {listing.brand} {listing.device_model}, Asking price: {listing.asking_price}"
    )
    return listing


def start_review(listing, admin, now=None):
    """Mark a submitted listing as under review by ``admin``."""
    _require_admin(admin, 'review listings')
    now = now or timezone.now()

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)
        old_status = _move_listing(listing, 'under_review')
        listing.reviewed_by = admin
        listing.save()
        emit('listing_review_started', listing=listing, actor=admin)

    logger.info(
        f"Listing review started. "
        f"Listing ID: {listing.id}, Old Status: {old_status}, Admin ID: {admin.id}"
    )
    return listing


def approve_listing(listing, admin, comments='', now=None):
    """
    Approve a listing and open bidding on it.

    The bidding window starts now and lasts BIDDING_WINDOW_HOURS.
    """
    _require_admin(admin, 'approve listings')
    now = now or timezone.now()
    window = timedelta(hours=marketplace_setting('BIDDING_WINDOW_HOURS'))

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)
        old_status = _move_listing(listing, 'approved')
        listing.reviewed_by = admin
        listing.reviewed_at = now
        listing.review_comments = comments or ''
        listing.save()

        _move_listing(listing, 'bidding_active')
        listing.bidding_starts_at = now
        listing.bidding_ends_at = now + window
        listing.save()

        emit(
            'listing_approved',
            listing=listing,
            actor=admin,
            bidding_ends_at=listing.bidding_ends_at.isoformat(),
        )

    logger.info(
        f"Listing approved, bidding open. "
        f"Listing ID: {listing.id}, Old Status: {old_status}, Admin ID: {admin.id}, "
        f"Bidding ends: {listing.bidding_ends_at}"
    )
    return listing


def reject_listing(listing, admin, reason, now=None):
    """Reject a listing. A reason is required."""
    _require_admin(admin, 'reject listings')
    now = now or timezone.now()

    if not reason or not reason.strip():
        raise MissingArtifact('A rejection reason is required.')

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)
        old_status = _move_listing(listing, 'rejected')
        listing.reviewed_by = admin
        listing.reviewed_at = now
        listing.rejection_reason = reason.strip()
        listing.save()
        emit('listing_rejected', listing=listing, actor=admin, reason=listing.rejection_reason)

    logger.info(
        f"Listing rejected. "
        f"Listing ID: {listing.id}, Old Status: {old_status}, Admin ID: {admin.id}"
    )
    return listing


def cancel_listing(listing, user, now=None):
    """
    Cancel a listing on behalf of its owner.

    Only possible until a bid has been accepted. A window that has already
    ended is closed first, so a winning bid still turns into a transaction.
    Active bids expire.
    """
    now = now or timezone.now()

    if listing.client_id != user.id:
        logger.warning(
            f"Listing cancellation by non-owner refused. "
            f"Listing ID: {listing.id}, User ID: {user.id}"
        )
        raise NotPermitted('Only the owner can cancel this listing.')

    close_expired_bidding(listing, now=now)

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)

        has_transaction = Transaction.objects.filter(listing=listing).exists()
        if listing.status not in CANCELLABLE_STATUSES or has_transaction:
            raise InvalidTransition(
                f'Listing is {listing.status} and can no longer be cancelled.'
            )

        old_status = _move_listing(listing, 'cancelled')
        listing.save()

        expired = Bid.objects.filter(listing=listing, status='active').update(
            status='expired', closed_at=now
        )
        emit('listing_cancelled', listing=listing, actor=user, expired_bids=expired)

    logger.info(
        f"Listing cancelled. "
        f"Listing ID: {listing.id}, Old Status: {old_status}, Expired bids: {expired}"
    )
    return listing


def search_listings(filters=None, now=None):
    """
    Filter and sort listings.

    Supported filters: brand, device_model, condition (list), min_price,
    max_price, city, status (list, defaults to bidding_active) and sort
    (price_low, price_high, newest, ending_soon).

    Listings whose bidding window has passed are left out until they are
    closed. Each listing is annotated with highest_bid and bid_count.
    """
    filters = filters or {}
    now = now or timezone.now()

    queryset = Listing.objects.select_related('client').annotate(
        highest_bid=Max('bids__amount', filter=Q(bids__status__in=['active', 'accepted'])),
        bid_count=Count('bids'),
    )

    queryset = queryset.filter(
        status__in=filters.get('status') or ['bidding_active']
    ).exclude(status='bidding_active', bidding_ends_at__lte=now)

    if filters.get('brand'):
        queryset = queryset.filter(brand__iexact=filters['brand'])
    if filters.get('device_model'):
        queryset = queryset.filter(device_model__icontains=filters['device_model'])
    if filters.get('condition'):
        queryset = queryset.filter(condition__in=filters['condition'])
    if filters.get('min_price') is not None:
        queryset = queryset.filter(asking_price__gte=filters['min_price'])
    if filters.get('max_price') is not None:
        queryset = queryset.filter(asking_price__lte=filters['max_price'])
    if filters.get('city'):
        queryset = queryset.filter(pickup_city__iexact=filters['city'])

    return queryset.order_by(*SORT_ORDERS[filters.get('sort') or 'newest'])


def suggest_agents(tx):
    """
    Agents who could take the pickup for ``tx``.

    Approved, available agents, in the pickup city first, then those with the
    fewest open transactions.
    """
    city = tx.listing.pickup_city

    return User.objects.filter(
        role='agent',
        is_approved=True,
        is_available=True,
        is_active=True,
    ).annotate(
        city_rank=Case(
            When(city__iexact=city, then=Value(0)),
            default=Value(1),
            output_field=IntegerField(),
        ),
        open_pickups=Count(
            'agent_transactions',
            filter=Q(agent_transactions__status__in=OPEN_TRANSACTION_STATUSES),
        ),
    ).order_by('city_rank', 'open_pickups', 'id')


def assign_agent(tx, agent, admin, now=None):
    """Assign a field agent to a transaction. Moves it into verification."""
    _require_admin(admin, 'assign agents')

    if not agent.is_agent() or not agent.is_approved or not agent.is_available:
        raise MarketplaceError('Selected user is not an approved, available agent.')

    with transaction.atomic():
        tx = Transaction.objects.select_for_update().get(pk=tx.pk)
        advance_step(tx, 'agent_assigned')
        tx.agent = agent
        tx.phase = 'verification'
        tx.status = 'in_progress'
        tx.save()
        emit('agent_assigned', transaction=tx, actor=admin, agent_id=agent.id)

    logger.info(
        f"Agent assigned. "
        f"Transaction ID: {tx.id}, Agent ID: {agent.id}, Admin ID: {admin.id}"
    )
    return tx


def raise_dispute(tx, user, reason, now=None):
    """
    Put a transaction into dispute.

    Any party to the transaction or an admin may do this until it is paid.
    The transaction stops where it is and the listing is cancelled.
    """
    if not tx.is_party(user) and not user.is_admin_user():
        raise NotPermitted('Only parties to this transaction can raise a dispute.')

    if not reason or not reason.strip():
        raise MissingArtifact('A dispute reason is required.')

    with transaction.atomic():
        tx = Transaction.objects.select_for_update().get(pk=tx.pk)

        if tx.status in Transaction.TERMINAL_STATUSES or tx.step == 'paid':
            raise InvalidTransition(f'Transaction is {tx.status} and cannot be disputed.')

        old_status = tx.status
        tx.status = 'disputed'
        tx.dispute_reason = reason.strip()
        tx.save()
        tx.confirmation_codes.filter(status='issued').update(status='expired')

        listing = Listing.objects.select_for_update().get(pk=tx.listing_id)
        _move_listing(listing, 'cancelled')
        listing.save()

        emit('dispute_raised', transaction=tx, actor=user, step=tx.step, reason=tx.dispute_reason)

    logger.warning(
        f"Transaction disputed. "
        f"Transaction ID: {tx.id}, Old Status: {old_status}, Step: {tx.step}, User ID: {user.id}"
    )
    return tx
