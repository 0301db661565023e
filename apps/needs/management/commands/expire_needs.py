"""
Management command to expire needs past their expiry time.

Safe to run repeatedly; schedule it from cron.

Usage:
    python manage.py expire_needs
    python manage.py expire_needs --dry-run
"""

from django.core.management.base import BaseCommand

from apps.needs.models import Need
from apps.needs.services import expire_needs, find_expired_needs


class Command(BaseCommand):
    help = 'Move active needs whose expiry time has passed to expired'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be expired without making changes',
        )

    def handle(self, *args, **options):
        if options['dry_run']:
            need_ids = find_expired_needs()
            if not need_ids:
                self.stdout.write(self.style.SUCCESS('No needs to expire.'))
                return

            self.stdout.write(f'\nFound {len(need_ids)} need(s) to expire:\n')
            for need in Need.objects.filter(id__in=need_ids).select_related('owner'):
                self.stdout.write(f'  - {need.title} | Owner: {need.owner.email} | Expired: {need.expires_at}')
            self.stdout.write(self.style.WARNING('\n--dry-run mode: No changes made.'))
            return

        expired = expire_needs()
        self.stdout.write(self.style.SUCCESS(f'Expired {expired} need(s).'))
