"""
Django signals for the marketplace workflow.

This module contains:
- lifecycle_event: sent by the workflow modules on every state change and
  persisted as a LifecycleEvent audit row
- a post_save receiver creating the AgentVerification record for each new
  Transaction
"""

import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import Signal, receiver

from .models import AgentVerification, LifecycleEvent, Transaction

logger = logging.getLogger(__name__)


# Sent with: event_type, listing, transaction, actor, payload
lifecycle_event = Signal()


def emit(event_type, sender=None, listing=None, transaction=None, actor=None, **payload):
    """Send lifecycle_event for a state change."""
    if listing is None and transaction is not None:
        listing = transaction.listing
    lifecycle_event.send(
        sender=sender or LifecycleEvent,
        event_type=event_type,
        listing=listing,
        transaction=transaction,
        actor=actor,
        payload=payload,
    )


@receiver(lifecycle_event)
def record_lifecycle_event(sender, event_type, listing=None, transaction=None,
                           actor=None, payload=None, **kwargs):
    """
    Persist a lifecycle event.

    Runs inside the caller's database transaction, so an event is only
    stored when the state change it describes is committed.
    """
    event = LifecycleEvent.objects.create(
        event_type=event_type,
        listing=listing,
        transaction=transaction,
        actor=actor if actor is not None and actor.pk else None,
        payload=payload or {},
    )
    logger.info(
        f"Lifecycle event recorded. "
        f"Event ID: {event.id}, Type: {event_type}, "
        f"Listing ID: {event.listing_id}, Transaction ID: {event.transaction_id}"
    )
    return event


@receiver(post_save, sender=Transaction)
def create_verification_record(sender, instance, created, **kwargs):
    """
    Create the AgentVerification record for a new transaction.

    If this fails the transaction creation is rolled back with it.

    Args:
        sender: The Transaction model class
        instance: The Transaction instance that was saved
        created: Boolean indicating if this is a new transaction
        **kwargs: Additional keyword arguments
    """
    if not created:
        return

    try:
        with transaction.atomic():
            AgentVerification.objects.get_or_create(transaction=instance)
            logger.info(
                f"Verification record created for transaction {instance.id}"
            )
    except Exception as e:
        logger.error(
            f"Error creating verification record for transaction {instance.id}: {e}",
            exc_info=True
        )
        # Re-raise so the transaction row is not left without its record
        raise
