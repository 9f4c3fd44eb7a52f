# Expire Confirmation Codes Management Command
from django.core.management.base import BaseCommand
from django.utils import timezone

from core.confirmation import expire_stale_codes
from core.models import ConfirmationCode


class Command(BaseCommand):
    help = 'Marks issued confirmation codes past their lifetime as expired.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Count stale codes without changing them.',
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            count = ConfirmationCode.objects.filter(status='issued', expires_at__lte=now).count()
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {count} code(s) would be expired.'))
            return

        count = expire_stale_codes(now=now)
        self.stdout.write(self.style.SUCCESS(f'Expired {count} confirmation code(s).'))
