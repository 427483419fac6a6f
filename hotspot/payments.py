"""
Payment lifecycle for captive portal transactions.

Shared by the REST views (initiation, M-Pesa callback) and the background
reconciliation job so a transaction is finalized the same way whichever
path confirms it first.
"""

import logging
import secrets
import time

from django.db import transaction as db_transaction

from .models import Transaction
from .mpesa import MpesaAPI, RESULT_CODE_CANCELLED, RESULT_CODE_SUCCESS
from .sms import send_payment_receipt

logger = logging.getLogger(__name__)

AWAITING_CONFIRMATION = "Awaiting M-Pesa confirmation"
CANCELLED_BY_USER = "Transaction cancelled by user"


def simulated_request_ids():
    """Checkout / merchant request ids used when M-Pesa is not configured."""
    now_ms = int(time.time() * 1000)
    return f"ws_CO_{now_ms}_{secrets.token_hex(3)}", f"MR_{now_ms}"


def create_transaction(plan, phone, mac_address=None, nas_ip=None, mpesa=None):
    """
    Create a PENDING transaction for ``plan`` and push the STK prompt.

    Returns ``(transaction, error_message)``. When the STK push is rejected
    the transaction is marked FAILED and ``error_message`` is set.
    """
    mpesa = mpesa or MpesaAPI()

    transaction = Transaction.objects.create(
        plan=plan,
        user_phone=phone,
        amount=plan.price,
        status=Transaction.STATUS_PENDING,
        status_description=AWAITING_CONFIRMATION,
        mac_address=mac_address or None,
        nas_ip=nas_ip or None,
    )

    if not mpesa.is_configured:
        checkout_request_id, merchant_request_id = simulated_request_ids()
        transaction.checkout_request_id = checkout_request_id
        transaction.merchant_request_id = merchant_request_id
        transaction.save(
            update_fields=["checkout_request_id", "merchant_request_id", "updated_at"]
        )
        logger.info(
            f"[Payment] Simulated STK push for {phone} ({plan.name}, KES {plan.price}), "
            f"checkout {checkout_request_id}"
        )
        return transaction, None

    result = mpesa.stk_push(
        phone_number=phone,
        amount=plan.price,
        account_reference="MnetiFi",
        description=plan.name,
    )

    if not result.get("success"):
        message = result.get("message") or "Payment initiation failed"
        transaction.mark_failed(message)
        logger.error(f"[Payment] STK push to {phone} failed: {message}")
        return transaction, message

    transaction.checkout_request_id = result.get("checkout_request_id")
    transaction.merchant_request_id = result.get("merchant_request_id")
    transaction.save(
        update_fields=["checkout_request_id", "merchant_request_id", "updated_at"]
    )
    logger.info(
        f"[Payment] Initiated STK push for {phone}, checkout {transaction.checkout_request_id}"
    )
    return transaction, None


def complete_transaction(transaction, receipt_number=None, description=None):
    """Mark ``transaction`` completed and send the receipt SMS once."""
    with db_transaction.atomic():
        locked = Transaction.objects.select_for_update().get(pk=transaction.pk)
        changed = locked.mark_completed(receipt_number, description)

    if changed:
        logger.info(
            f"[Payment] Transaction {locked.id} completed, receipt {locked.mpesa_receipt_number}"
        )
        send_payment_receipt(locked)
    return locked


def fail_transaction(transaction, description=None):
    with db_transaction.atomic():
        locked = Transaction.objects.select_for_update().get(pk=transaction.pk)
        changed = locked.mark_failed(description)

    if changed:
        logger.info(f"[Payment] Transaction {locked.id} failed: {locked.status_description}")
    return locked


def apply_result_code(transaction, result_code, result_desc, receipt_number=None):
    """
    Apply a Daraja result code to a transaction.

    ``0`` completes it, ``1032`` fails it as cancelled by the user and any
    other code fails it with the provider's description.
    """
    if result_code == RESULT_CODE_SUCCESS:
        return complete_transaction(
            transaction, receipt_number, result_desc or "Payment received successfully"
        )
    if result_code == RESULT_CODE_CANCELLED:
        return fail_transaction(transaction, CANCELLED_BY_USER)
    return fail_transaction(transaction, result_desc or "Payment failed")
