"""
Serializers for the captive portal API.
Field names are camelCase to match the portal's JSON contract.
"""

from rest_framework import serializers

from .checkout.exceptions import InvalidPhoneNumber
from .checkout.phone import normalize_phone_number
from .models import Plan, Transaction, WalledGarden


def validate_phone_number_field(phone_number):
    """
    Validator for phone number fields in serializers
    """
    if not phone_number:
        raise serializers.ValidationError("Phone number is required")

    try:
        return normalize_phone_number(phone_number)
    except InvalidPhoneNumber as e:
        raise serializers.ValidationError(e.message)


class PlanSerializer(serializers.ModelSerializer):
    durationSeconds = serializers.IntegerField(source="duration_seconds")
    planType = serializers.CharField(source="plan_type")
    uploadLimit = serializers.CharField(source="upload_limit", allow_blank=True)
    downloadLimit = serializers.CharField(source="download_limit", allow_blank=True)
    simultaneousUse = serializers.IntegerField(source="simultaneous_use")
    isActive = serializers.BooleanField(source="is_active")
    sortOrder = serializers.IntegerField(source="sort_order")
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Plan
        fields = [
            "id",
            "name",
            "description",
            "price",
            "durationSeconds",
            "planType",
            "uploadLimit",
            "downloadLimit",
            "simultaneousUse",
            "isActive",
            "sortOrder",
            "createdAt",
        ]
        read_only_fields = ["id"]


class TransactionSerializer(serializers.ModelSerializer):
    planId = serializers.UUIDField(source="plan_id", read_only=True, allow_null=True)
    userPhone = serializers.CharField(source="user_phone", read_only=True)
    mpesaReceiptNumber = serializers.CharField(
        source="mpesa_receipt_number", read_only=True, allow_null=True
    )
    checkoutRequestId = serializers.CharField(
        source="checkout_request_id", read_only=True, allow_null=True
    )
    merchantRequestId = serializers.CharField(
        source="merchant_request_id", read_only=True, allow_null=True
    )
    statusDescription = serializers.CharField(
        source="status_description", read_only=True, allow_null=True
    )
    macAddress = serializers.CharField(source="mac_address", read_only=True, allow_null=True)
    nasIp = serializers.CharField(source="nas_ip", read_only=True, allow_null=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "planId",
            "userPhone",
            "amount",
            "mpesaReceiptNumber",
            "checkoutRequestId",
            "merchantRequestId",
            "status",
            "statusDescription",
            "macAddress",
            "nasIp",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = fields


class WalledGardenSerializer(serializers.ModelSerializer):
    isActive = serializers.BooleanField(source="is_active")

    class Meta:
        model = WalledGarden
        fields = ["id", "domain", "description", "isActive"]


class InitiatePaymentSerializer(serializers.Serializer):
    planId = serializers.UUIDField(
        error_messages={"required": "Plan ID and phone number are required"}
    )
    phone = serializers.CharField(
        max_length=20,
        error_messages={"required": "Plan ID and phone number are required"},
    )
    macAddress = serializers.CharField(
        max_length=17, required=False, allow_blank=True, allow_null=True
    )
    nasIp = serializers.IPAddressField(required=False, allow_blank=True, allow_null=True)

    def validate_phone(self, value):
        return validate_phone_number_field(value)
