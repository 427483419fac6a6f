"""
Management command to create or update the default hotspot plans and the
M-Pesa walled-garden domains.

Usage:
    python manage.py seed_hotspot          # Create/update plans and domains
    python manage.py seed_hotspot --reset  # Delete existing plans & recreate
"""

from django.core.management.base import BaseCommand
from hotspot.models import Plan, WalledGarden


PLANS = [
    {
        "name": "30 Minutes",
        "description": "Quick access for light browsing",
        "price": 10,
        "duration_seconds": 1800,
        "upload_limit": "1M",
        "download_limit": "2M",
        "simultaneous_use": 1,
        "sort_order": 1,
    },
    {
        "name": "1 Hour",
        "description": "Standard browsing session",
        "price": 20,
        "duration_seconds": 3600,
        "upload_limit": "2M",
        "download_limit": "5M",
        "simultaneous_use": 1,
        "sort_order": 2,
    },
    {
        "name": "Daily Pass",
        "description": "Full day unlimited access",
        "price": 100,
        "duration_seconds": 86400,
        "upload_limit": "5M",
        "download_limit": "10M",
        "simultaneous_use": 2,
        "sort_order": 3,
    },
    {
        "name": "Weekly Pass",
        "description": "Best value for regular users",
        "price": 500,
        "duration_seconds": 604800,
        "upload_limit": "10M",
        "download_limit": "20M",
        "simultaneous_use": 3,
        "sort_order": 4,
    },
]

WALLED_GARDENS = [
    ("safaricom.co.ke", "M-Pesa main domain"),
    ("sandbox.safaricom.co.ke", "M-Pesa sandbox for testing"),
    ("api.safaricom.co.ke", "M-Pesa API endpoint"),
]


class Command(BaseCommand):
    help = "Create or update the default hotspot plans and M-Pesa walled-garden domains"

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset",
            action="store_true",
            help="Delete all existing plans and recreate them from scratch.",
        )

    def handle(self, *args, **options):
        if options["reset"]:
            deleted, _ = Plan.objects.all().delete()
            self.stdout.write(self.style.WARNING(f"Deleted {deleted} existing plan(s)."))

        for plan_data in PLANS:
            plan, created = Plan.objects.update_or_create(
                name=plan_data["name"],
                defaults=plan_data,
            )
            action = "Created" if created else "Updated"
            self.stdout.write(
                self.style.SUCCESS(
                    f"  {action}: {plan.name} | KES {plan.price:,} | "
                    f"{plan.duration_display} | {plan.download_limit}/{plan.upload_limit}"
                )
            )

        for domain, description in WALLED_GARDENS:
            _, created = WalledGarden.objects.update_or_create(
                domain=domain,
                defaults={"description": description, "is_active": True},
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f"  Allowed: {domain}"))

        self.stdout.write(self.style.SUCCESS("\n✅ Hotspot plans and walled garden ready."))
