"""
Management command to reconcile pending M-Pesa transactions
Run this periodically via cron job (see CRONJOBS in settings)
"""
from django.core.management.base import BaseCommand
from hotspot.tasks import check_pending_transactions


class Command(BaseCommand):
    help = "Resolve pending M-Pesa transactions whose callback never arrived"

    def handle(self, *args, **options):
        stats = check_pending_transactions()

        self.stdout.write(f"Checked {stats['checked']} pending transaction(s)")
        if stats["failed"]:
            self.stdout.write(self.style.WARNING(f"Failed: {stats['failed']}"))
        self.stdout.write(
            self.style.SUCCESS(
                f"Completed: {stats['completed']}, still pending: {stats['still_pending']}"
            )
        )
