"""
Terminal rendition of the captive portal: pick a plan, pay with M-Pesa and
wait for confirmation, against a running hotspot API.

Usage:
    python manage.py captive_checkout
    python manage.py captive_checkout --base-url http://10.0.0.1:8000
"""

from django.core.management.base import BaseCommand, CommandError

from hotspot.checkout import (
    ENTER_PHONE,
    FAILED,
    PROCESSING,
    SELECT_PLAN,
    SUCCESS,
    PaymentFlow,
    PortalAPI,
    PortalAPIError,
)


class Command(BaseCommand):
    help = "Buy hotspot access from the terminal, the same way the captive portal does"

    def add_arguments(self, parser):
        parser.add_argument(
            "--base-url",
            help="Hotspot API base URL (defaults to PORTAL_API_BASE_URL)",
        )

    def handle(self, *args, **options):
        api = PortalAPI(base_url=options.get("base_url"))
        # Poll inline so submit_phone returns once the payment is final
        flow = PaymentFlow(api, background=False, on_change=self._on_change)

        self.stdout.write(self.style.SUCCESS("📶 MnetiFi: Connect to Wi-Fi with M-Pesa"))

        try:
            self._load(flow)
            self._run(flow)
        except (KeyboardInterrupt, EOFError):
            self.stdout.write("\nBye.")
        finally:
            flow.close()

    def _load(self, flow):
        try:
            flow.load_plans()
        except PortalAPIError as exc:
            raise CommandError(f"Could not load plans from {flow.api.base_url}: {exc}")

        try:
            flow.load_walled_gardens()
        except PortalAPIError as exc:
            self.stderr.write(f"Walled garden unavailable: {exc}")

    def _run(self, flow):
        while True:
            if flow.state == SELECT_PLAN:
                plan = self._choose_plan(flow)
                if plan is None:
                    return
                flow.select_plan(plan)

            elif flow.state == ENTER_PHONE:
                raw = input("M-Pesa Phone Number (b = back): ").strip()
                if raw.lower() == "b":
                    flow.back()
                    continue
                flow.submit_phone(raw)
                if flow.state == ENTER_PHONE and flow.notice:
                    self.stdout.write(self.style.ERROR(flow.notice))

            elif flow.state == SUCCESS:
                return

            elif flow.state == FAILED:
                answer = input("Try again? [Y/n]: ").strip().lower()
                if answer in ("n", "no"):
                    return
                flow.retry()

    def _choose_plan(self, flow):
        if not flow.plans:
            self.stdout.write("No plans available")
            return None

        self.stdout.write("\nChoose Your Plan")
        for index, plan in enumerate(flow.plans, start=1):
            line = f"  {index}. {plan.name:<20} {plan.price_display}"
            if plan.description:
                line += f"  ({plan.description})"
            self.stdout.write(line)

        if flow.walled_gardens:
            domains = ", ".join(garden.domain for garden in flow.walled_gardens)
            self.stdout.write(f"\nFree access: {domains}")

        while True:
            choice = input("\nPlan number (q = quit): ").strip().lower()
            if choice == "q":
                return None
            if choice.isdigit() and 1 <= int(choice) <= len(flow.plans):
                plan = flow.plans[int(choice) - 1]
                self.stdout.write(f"Selected Plan: {plan.name} {plan.price_display}")
                return plan
            self.stdout.write(self.style.WARNING("Please pick one of the listed plans."))

    def _on_change(self, flow):
        if flow.state == PROCESSING:
            self.stdout.write("\n⏳ Processing Payment")
            self.stdout.write("Please check your phone for the M-Pesa prompt")
            self.stdout.write("Enter your PIN to complete the payment")

        elif flow.state == SUCCESS:
            self.stdout.write(self.style.SUCCESS("\n✅ Payment Successful"))
            self.stdout.write("You are now connected to the internet")
            receipt = flow.transaction.mpesa_receipt_number if flow.transaction else None
            if receipt:
                self.stdout.write(f"Receipt: {receipt}")

        elif flow.state == FAILED:
            self.stdout.write(self.style.ERROR("\n❌ Payment Failed"))
            self.stdout.write(flow.failure_message)
