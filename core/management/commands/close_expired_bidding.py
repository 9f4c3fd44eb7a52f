# Close Expired Bidding Management Command
from django.core.management.base import BaseCommand
from django.utils import timezone

from core.bidding import close_expired_bidding, expired_listings, highest_active_bid


class Command(BaseCommand):
    help = 'Ends bidding on listings whose window has passed and accepts the highest bid.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the listings that would be closed without changing them.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        now = timezone.now()

        self.stdout.write('Closing expired bidding windows...')
        closed = 0
        with_winner = 0

        for listing in expired_listings(now=now):
            if dry_run:
                winner = highest_active_bid(listing)
                amount = winner.amount if winner else 'no bids'
                self.stdout.write(f'  [DRY-RUN] Listing {listing.id} ({listing.brand} {listing.device_model}): {amount}')
                closed += 1
                continue

            tx = close_expired_bidding(listing, now=now)
            closed += 1
            if tx is not None:
                with_winner += 1
                self.stdout.write(f'  Listing {listing.id}: accepted bid {tx.accepted_bid_id}, transaction {tx.id}')
            else:
                self.stdout.write(f'  Listing {listing.id}: ended without bids')

        if dry_run:
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {closed} listing(s) would be closed.'))
        else:
            self.stdout.write(self.style.SUCCESS(
                f'Closed {closed} listing(s), {with_winner} with an accepted bid.'
            ))
