"""
Models for the MnetiFi hotspot captive portal
"""

import logging
import uuid

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


class Plan(models.Model):
    """
    WiFi access plan sold on the captive portal.
    Price is in whole shillings.
    """

    PLAN_TYPE_CHOICES = [
        ("HOTSPOT", "Hotspot"),
        ("PPPOE", "PPPoE"),
        ("STATIC", "Static IP"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    price = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    duration_seconds = models.PositiveIntegerField(default=3600)
    plan_type = models.CharField(
        max_length=10, choices=PLAN_TYPE_CHOICES, default="HOTSPOT"
    )
    upload_limit = models.CharField(max_length=20, blank=True)  # e.g. "2M"
    download_limit = models.CharField(max_length=20, blank=True)  # e.g. "5M"
    simultaneous_use = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)
    sort_order = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["sort_order", "price"]

    def __str__(self):
        return f"{self.name} - KES {self.price}"

    @property
    def duration_display(self):
        hours = self.duration_seconds // 3600
        if hours >= 24:
            days = hours // 24
            return f"{days} day{'s' if days > 1 else ''}"
        if hours >= 1:
            return f"{hours} hour{'s' if hours > 1 else ''}"
        minutes = self.duration_seconds // 60
        return f"{minutes} minute{'s' if minutes != 1 else ''}"


class Transaction(models.Model):
    """
    One M-Pesa payment attempt from the captive portal.

    ``status`` is stored upper-case (PENDING / COMPLETED / FAILED); clients
    polling this record must treat other values as not yet final.
    """

    STATUS_PENDING = "PENDING"
    STATUS_COMPLETED = "COMPLETED"
    STATUS_FAILED = "FAILED"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan = models.ForeignKey(
        Plan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    user_phone = models.CharField(max_length=15, db_index=True)
    amount = models.PositiveIntegerField()
    mpesa_receipt_number = models.CharField(max_length=50, blank=True, null=True)
    checkout_request_id = models.CharField(
        max_length=100, unique=True, null=True, blank=True
    )
    merchant_request_id = models.CharField(max_length=100, blank=True, null=True)
    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True
    )
    status_description = models.CharField(max_length=255, blank=True, null=True)
    mac_address = models.CharField(max_length=17, blank=True, null=True)
    nas_ip = models.GenericIPAddressField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user_phone} - KES {self.amount} - {self.status}"

    @property
    def is_final(self):
        return self.status in (self.STATUS_COMPLETED, self.STATUS_FAILED)

    def mark_completed(self, receipt_number=None, description=None):
        """Mark transaction as completed (idempotent). Returns True if it changed."""
        if self.status == self.STATUS_COMPLETED:
            logger.info(
                f"Transaction {self.id} already completed, skipping duplicate confirmation"
            )
            return False

        self.status = self.STATUS_COMPLETED
        if receipt_number:
            self.mpesa_receipt_number = receipt_number
        self.status_description = description or "Payment received successfully"
        self.save(
            update_fields=[
                "status",
                "mpesa_receipt_number",
                "status_description",
                "updated_at",
            ]
        )
        return True

    def mark_failed(self, description=None):
        """Mark transaction as failed. A completed payment is never downgraded."""
        if self.status == self.STATUS_COMPLETED:
            logger.warning(
                f"Refusing to fail completed transaction {self.id}: {description}"
            )
            return False

        self.status = self.STATUS_FAILED
        self.status_description = description or "Payment failed"
        self.save(update_fields=["status", "status_description", "updated_at"])
        return True


class WalledGarden(models.Model):
    """Domains reachable before the visitor has paid (e.g. M-Pesa endpoints)"""

    domain = models.CharField(max_length=255, unique=True)
    description = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["domain"]

    def __str__(self):
        return self.domain


class SMSLog(models.Model):
    """
    Log of SMS notifications sent
    """

    SMS_TYPE_CHOICES = [
        ("payment", "Payment Confirmation"),
        ("payment_failed", "Payment Failed"),
        ("other", "Other"),
    ]

    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sms_logs",
    )
    phone_number = models.CharField(max_length=15, db_index=True)
    message = models.TextField()
    sms_type = models.CharField(
        max_length=20, choices=SMS_TYPE_CHOICES, default="other"
    )
    success = models.BooleanField(default=False)
    response_data = models.JSONField(null=True, blank=True)
    sent_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-sent_at"]

    def __str__(self):
        return f"{self.phone_number} - {self.sms_type} - {'Sent' if self.success else 'Failed'}"
