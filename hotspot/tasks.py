"""
Background tasks for MnetiFi Hotspot Billing
Reconciles pending M-Pesa transactions whose callback never arrived
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from .models import Transaction
from .mpesa import RESULT_CODE_CANCELLED, RESULT_CODE_SUCCESS, MpesaAPI
from .payments import apply_result_code, complete_transaction, fail_transaction

logger = logging.getLogger(__name__)

PAYMENT_TIMED_OUT = "Payment request timed out"


def check_pending_transactions(mpesa=None):
    """
    Resolve PENDING transactions.
    This should be run periodically (every minute via django-crontab).

    This function:
    1. Fails transactions pending longer than PENDING_TRANSACTION_TIMEOUT_MINUTES
    2. Queries M-Pesa for the rest (result 0 completes, 1032 cancels,
       any other code stays pending until the next run)
    3. Without M-Pesa credentials, completes transactions older than
       SIMULATED_CONFIRMATION_SECONDS with a simulated receipt

    Returns a dict of counts for logging / the management command.
    """
    mpesa = mpesa or MpesaAPI()
    now = timezone.now()
    timeout = timedelta(
        minutes=getattr(settings, "PENDING_TRANSACTION_TIMEOUT_MINUTES", 10)
    )
    simulated_after = timedelta(
        seconds=getattr(settings, "SIMULATED_CONFIRMATION_SECONDS", 20)
    )

    stats = {"checked": 0, "completed": 0, "failed": 0, "still_pending": 0}
    pending = Transaction.objects.filter(status=Transaction.STATUS_PENDING).order_by(
        "created_at"
    )

    logger.info(f"🔍 Found {pending.count()} pending transactions to reconcile")

    for transaction in pending:
        stats["checked"] += 1
        age = now - transaction.created_at

        if age >= timeout:
            fail_transaction(transaction, PAYMENT_TIMED_OUT)
            stats["failed"] += 1
            continue

        if not mpesa.is_configured:
            if age >= simulated_after:
                receipt = f"SIM{int(now.timestamp() * 1000)}"
                complete_transaction(
                    transaction, receipt, "Payment confirmed (simulated)"
                )
                stats["completed"] += 1
            else:
                stats["still_pending"] += 1
            continue

        if not transaction.checkout_request_id:
            stats["still_pending"] += 1
            continue

        result = mpesa.query_status(transaction.checkout_request_id)
        if not result.get("success"):
            # Daraja answers with an error while the customer is still on the prompt
            logger.info(
                f"Status query for {transaction.id} inconclusive: {result.get('message')}"
            )
            stats["still_pending"] += 1
            continue

        if result["result_code"] not in (RESULT_CODE_SUCCESS, RESULT_CODE_CANCELLED):
            logger.info(
                f"Status query for {transaction.id} returned {result['result_code']}: "
                f"{result['result_desc']}"
            )
            stats["still_pending"] += 1
            continue

        updated = apply_result_code(
            transaction, result["result_code"], result["result_desc"]
        )
        if updated.status == Transaction.STATUS_COMPLETED:
            stats["completed"] += 1
        else:
            stats["failed"] += 1

    logger.info(
        f"✅ Reconciliation done: {stats['completed']} completed, "
        f"{stats['failed']} failed, {stats['still_pending']} still pending"
    )
    return stats
