"""
Bidding engine.

All writes for a listing happen while holding a row lock on that listing, so
bids on the same listing are processed one at a time. At most one bid per
listing is active: it is always the highest. A bid at or above the asking
price is accepted immediately. The listing owner may accept or reject the
active bid while the window is open; otherwise the highest bid wins when the
bidding window ends.
"""

import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from .exceptions import BiddingClosed, BidTooLow, InvalidTransition, NotPermitted
from .models import Bid, Listing, Transaction
from .signals import emit

logger = logging.getLogger(__name__)


def highest_active_bid(listing):
    """Return the winning candidate: highest amount, then earliest placement."""
    return Bid.objects.filter(
        listing_id=listing.pk, status='active'
    ).order_by('-amount', 'placed_at', 'id').first()


def place_bid(listing, vendor, amount, message='', now=None):
    """
    Place a bid on a listing.

    Args:
        listing: Listing to bid on
        vendor: Approved vendor placing the bid
        amount: Bid amount
        message: Optional note for the client
        now: Current time, defaults to timezone.now()

    Returns:
        Bid: The new bid (status accepted if it met the asking price)

    Raises:
        NotPermitted: User is not an approved vendor
        BiddingClosed: Listing is not accepting bids
        BidTooLow: Amount is not above the current highest bid
    """
    now = now or timezone.now()

    if not vendor.is_vendor() or not vendor.is_approved:
        logger.warning(
            f"Bid refused for user without approved vendor account. "
            f"User ID: {vendor.id}, Role: {vendor.role}, Listing ID: {listing.pk}"
        )
        raise NotPermitted('Only approved vendors can place bids.')

    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        raise BidTooLow('Bid amount must be a number.')

    if not amount.is_finite():
        raise BidTooLow('Bid amount must be a number.')

    if amount <= 0:
        raise BidTooLow('Bid amount must be greater than 0.')

    # An elapsed window is settled before the new bid is considered.
    close_expired_bidding(listing, now=now)

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)

        if not listing.is_bidding_open(now):
            logger.warning(
                f"Bid refused on closed listing. "
                f"Listing ID: {listing.id}, Status: {listing.status}, Vendor ID: {vendor.id}"
            )
            raise BiddingClosed()

        current = highest_active_bid(listing)
        if current is not None and amount <= current.amount:
            logger.warning(
                f"Bid refused below current highest. "
                f"Listing ID: {listing.id}, Amount: {amount}, Highest: {current.amount}, "
                f"Vendor ID: {vendor.id}"
            )
            raise BidTooLow(f'Bid must be higher than the current highest bid of {current.amount}.')

        Bid.objects.filter(listing=listing, status='active').update(
            status='outbid', closed_at=now
        )

        bid = Bid(
            listing=listing,
            vendor=vendor,
            amount=amount,
            message=message or '',
            placed_at=now,
        )
        bid.save()

        emit(
            'bid_placed',
            listing=listing,
            actor=vendor,
            bid_id=bid.id,
            amount=str(bid.amount),
        )

        logger.info(
            f"Bid placed. "
            f"Bid ID: {bid.id}, Listing ID: {listing.id}, Amount: {amount}, Vendor ID: {vendor.id}"
        )

        if amount >= listing.asking_price:
            logger.info(
                f"Bid meets asking price, closing bidding. "
                f"Bid ID: {bid.id}, Asking price: {listing.asking_price}"
            )
            accept_bid(bid, now=now)
            bid.refresh_from_db()

    return bid


def accept_bid(bid, now=None, actor=None):
    """
    Accept ``bid``, close bidding on its listing and create the transaction.

    Every other active bid on the listing is rejected.

    Returns:
        Transaction: The transaction created for the accepted bid

    Raises:
        InvalidTransition: Bid is not active or the listing cannot end bidding
    """
    now = now or timezone.now()

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=bid.listing_id)
        bid = Bid.objects.select_for_update().get(pk=bid.pk)

        if bid.status != 'active':
            raise InvalidTransition(f'Only active bids can be accepted; this bid is {bid.status}.')

        is_valid, error_message = listing.can_transition_to('bidding_ended')
        if not is_valid:
            raise InvalidTransition(error_message)

        Bid.objects.filter(listing=listing, status='active').exclude(pk=bid.pk).update(
            status='rejected', closed_at=now
        )

        bid.status = 'accepted'
        bid.accepted_at = now
        bid.closed_at = now
        bid.save()

        listing.status = 'bidding_ended'
        listing.save()

        tx = Transaction(
            listing=listing,
            client=listing.client,
            vendor=bid.vendor,
            accepted_bid=bid,
            bid_amount=bid.amount,
        )
        tx.save()

        emit(
            'bid_accepted',
            listing=listing,
            transaction=tx,
            actor=actor,
            bid_id=bid.id,
            amount=str(bid.amount),
        )
        emit('bidding_ended', listing=listing, transaction=tx, winning_bid_id=bid.id)

    logger.info(
        f"Bid accepted. "
        f"Bid ID: {bid.id}, Listing ID: {listing.id}, Transaction ID: {tx.id}, "
        f"Vendor ID: {bid.vendor_id}, Amount: {bid.amount}"
    )
    return tx


def _require_owner(listing, client, action):
    if listing.client_id != client.id:
        logger.warning(
            f"Bid decision by non-owner refused. "
            f"Listing ID: {listing.pk}, User ID: {client.id}, Action: {action}"
        )
        raise NotPermitted('Only the owner of this listing can decide on its bids.')


def _decidable_bid(bid, listing, now):
    """Lock and return ``bid`` if the owner can still act on it."""
    bid = Bid.objects.select_for_update().get(pk=bid.pk)
    if bid.listing_id != listing.pk:
        raise InvalidTransition('Bid does not belong to this listing.')
    if not listing.is_bidding_open(now):
        raise BiddingClosed()
    if bid.status != 'active':
        raise InvalidTransition(f'Only active bids can be decided; this bid is {bid.status}.')
    return bid


def accept_bid_by_client(bid, client, now=None):
    """
    The listing owner accepts ``bid`` before the window ends.

    Returns:
        Transaction

    Raises:
        NotPermitted: User does not own the listing
        BiddingClosed: The window has ended or bidding is not open
        InvalidTransition: Bid is not the listing's active bid
    """
    now = now or timezone.now()
    _require_owner(bid.listing, client, 'accept')

    close_expired_bidding(bid.listing, now=now)

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=bid.listing_id)
        bid = _decidable_bid(bid, listing, now)
        tx = accept_bid(bid, now=now, actor=client)

    logger.info(
        f"Bid accepted by client. "
        f"Bid ID: {bid.id}, Listing ID: {listing.id}, Client ID: {client.id}"
    )
    return tx


def reject_bid(bid, client, now=None):
    """
    The listing owner turns down ``bid``. Bidding stays open.

    Returns:
        Bid
    """
    now = now or timezone.now()
    _require_owner(bid.listing, client, 'reject')

    close_expired_bidding(bid.listing, now=now)

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=bid.listing_id)
        bid = _decidable_bid(bid, listing, now)

        bid.status = 'rejected'
        bid.closed_at = now
        bid.save()

        emit('bid_rejected', listing=listing, actor=client, bid_id=bid.id, amount=str(bid.amount))

    logger.info(
        f"Bid rejected by client. "
        f"Bid ID: {bid.id}, Listing ID: {listing.id}, Client ID: {client.id}"
    )
    return bid


def close_expired_bidding(listing, now=None):
    """
    End bidding on ``listing`` if its window has passed.

    The highest active bid is accepted. A listing without bids moves to
    bidding_ended with no transaction.

    Returns:
        Transaction or None
    """
    now = now or timezone.now()

    with transaction.atomic():
        listing = Listing.objects.select_for_update().get(pk=listing.pk)

        if listing.status != 'bidding_active' or listing.bidding_ends_at is None:
            return None
        if now < listing.bidding_ends_at:
            return None

        winner = highest_active_bid(listing)
        if winner is not None:
            return accept_bid(winner, now=now)

        listing.status = 'bidding_ended'
        listing.save()
        emit('bidding_ended', listing=listing, winning_bid_id=None)

    logger.info(f"Bidding window ended without bids. Listing ID: {listing.id}")
    return None


def expired_listings(now=None):
    """Listings whose bidding window has passed but are still open."""
    now = now or timezone.now()
    return Listing.objects.filter(
        status='bidding_active', bidding_ends_at__lte=now
    ).order_by('bidding_ends_at', 'id')
