"""
MnetiFi Captive Portal: Public API Views

These endpoints serve the captive portal page shown by the hotspot router.
They allow visitors to:
  1. Browse active plans
  2. See walled-garden domains reachable before payment
  3. Pay for a plan via M-Pesa STK push
  4. Poll the status of their payment

M-Pesa posts STK results to the callback endpoint.
"""

import logging

from rest_framework import status
from rest_framework.decorators import (
    api_view,
    authentication_classes,
    permission_classes,
)
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .exception_handler import error_payload
from .models import Plan, Transaction, WalledGarden
from .mpesa import RESULT_CODE_SUCCESS, parse_stk_callback
from .payments import apply_result_code, create_transaction
from .serializers import (
    InitiatePaymentSerializer,
    PlanSerializer,
    TransactionSerializer,
    WalledGardenSerializer,
)

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS_LIMIT = 100


# =========================================================================
# Plans & walled garden
# =========================================================================


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def plan_list(request):
    """
    GET /api/plans
    Returns every plan; the portal shows only those with isActive=true.
    """
    plans = Plan.objects.all()
    return Response(PlanSerializer(plans, many=True).data)


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def plan_detail(request, plan_id):
    try:
        plan = Plan.objects.get(id=plan_id)
    except Plan.DoesNotExist:
        return Response(error_payload("Plan not found"), status=status.HTTP_404_NOT_FOUND)
    return Response(PlanSerializer(plan).data)


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def walled_garden_list(request):
    """GET /api/walled-gardens"""
    domains = WalledGarden.objects.filter(is_active=True)
    return Response(WalledGardenSerializer(domains, many=True).data)


# =========================================================================
# Transactions
# =========================================================================


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def transaction_list(request):
    transactions = Transaction.objects.select_related("plan")[:RECENT_TRANSACTIONS_LIMIT]
    return Response(TransactionSerializer(transactions, many=True).data)


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def transaction_detail(request, transaction_id):
    """
    GET /api/transactions/<id>
    Polled by the portal every few seconds until status is final.
    """
    try:
        transaction = Transaction.objects.get(id=transaction_id)
    except Transaction.DoesNotExist:
        return Response(
            error_payload("Transaction not found"), status=status.HTTP_404_NOT_FOUND
        )
    return Response(TransactionSerializer(transaction).data)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def initiate_transaction(request):
    """
    Initiate an M-Pesa STK push for a plan.

    POST /api/transactions/initiate
    Body: {
        "planId": "<uuid>",
        "phone": "254712345678",
        "macAddress": "AA:BB:CC:DD:EE:FF",   (optional)
        "nasIp": "10.0.0.1"                  (optional)
    }
    Returns: 201 Transaction (status PENDING)
    """
    serializer = InitiatePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        plan = Plan.objects.get(id=data["planId"])
    except Plan.DoesNotExist:
        return Response(error_payload("Plan not found"), status=status.HTTP_404_NOT_FOUND)

    if not plan.is_active:
        return Response(
            error_payload("This plan is no longer available"),
            status=status.HTTP_400_BAD_REQUEST,
        )

    transaction, error_message = create_transaction(
        plan,
        data["phone"],
        mac_address=data.get("macAddress"),
        nas_ip=data.get("nasIp"),
    )

    if error_message:
        return Response(
            error_payload(f"Payment failed: {error_message}"),
            status=status.HTTP_502_BAD_GATEWAY,
        )

    return Response(TransactionSerializer(transaction).data, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def mpesa_callback(request):
    """
    M-Pesa STK callback webhook.

    POST /api/transactions/callback
    Body: { "Body": { "stkCallback": { "CheckoutRequestID": ..., "ResultCode": 0, ... } } }
    """
    result = parse_stk_callback(request.data)
    if result is None:
        return Response(
            error_payload("Invalid callback format"), status=status.HTTP_400_BAD_REQUEST
        )

    try:
        transaction = Transaction.objects.get(
            checkout_request_id=result["checkout_request_id"]
        )
    except Transaction.DoesNotExist:
        logger.warning(
            f"M-Pesa callback for unknown checkout {result['checkout_request_id']}"
        )
        return Response(
            error_payload("Transaction not found"), status=status.HTTP_404_NOT_FOUND
        )

    logger.info(
        f"M-Pesa callback for transaction {transaction.id}: "
        f"code={result['result_code']} desc={result['result_desc']}"
    )

    description = result["result_desc"]
    if result["result_code"] == RESULT_CODE_SUCCESS:
        description = "Payment received successfully"
    apply_result_code(
        transaction,
        result["result_code"],
        description,
        receipt_number=result["receipt_number"],
    )

    return Response({"ResultCode": 0, "ResultDesc": "Callback received"})
