"""
Management command to close payments stuck in 3-D Secure or verification.

Safe to run repeatedly; schedule it from cron.

Usage:
    python manage.py reconcile_payments
    python manage.py reconcile_payments --dry-run
"""

from django.core.management.base import BaseCommand

from apps.payments.services import (
    find_abandoned_payments,
    find_stuck_verifications,
    reconcile_stale_payments,
)


class Command(BaseCommand):
    help = 'Fail abandoned 3-D Secure payments and re-verify stuck verifications'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be reconciled without making changes',
        )

    def handle(self, *args, **options):
        if options['dry_run']:
            abandoned = find_abandoned_payments()
            stuck = find_stuck_verifications()
            if not abandoned.exists() and not stuck.exists():
                self.stdout.write(self.style.SUCCESS('No stale payments. All good!'))
                return

            for payment in abandoned:
                self.stdout.write(f'  - abandoned {payment.id} | {payment.amount} {payment.currency} | {payment.status}')
            for payment in stuck:
                self.stdout.write(f'  - verifying {payment.id} | since {payment.verification_started_at}')
            self.stdout.write(self.style.WARNING('\n--dry-run mode: No changes made.'))
            return

        summary = reconcile_stale_payments()
        self.stdout.write(self.style.SUCCESS(
            f"Reconciled payments: {summary['abandoned']} abandoned, "
            f"{summary['succeeded']} succeeded, {summary['failed']} failed."
        ))
