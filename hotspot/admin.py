"""
Django admin configuration for MnetiFi Hotspot Billing with Jazzmin
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import Plan, SMSLog, Transaction, WalledGarden
from .payments import complete_transaction, fail_transaction

STATUS_COLORS = {
    Transaction.STATUS_COMPLETED: "green",
    Transaction.STATUS_PENDING: "orange",
    Transaction.STATUS_FAILED: "red",
}


def _badge(color, text):
    return format_html(
        '<span style="background: {}; color: white; padding: 2px 8px; '
        'border-radius: 4px;">{}</span>',
        color,
        text,
    )


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "plan_type",
        "duration_display",
        "price_formatted",
        "is_active_badge",
        "sort_order",
        "transaction_count",
    ]
    list_filter = ["is_active", "plan_type"]
    search_fields = ["name", "description"]
    list_editable = ["sort_order"]
    ordering = ["sort_order", "price"]

    def duration_display(self, obj):
        return obj.duration_display

    duration_display.short_description = "Duration"

    def price_formatted(self, obj):
        return f"KES {obj.price:,}"

    price_formatted.short_description = "Price"

    def is_active_badge(self, obj):
        if obj.is_active:
            return _badge("green", "ACTIVE")
        return _badge("gray", "INACTIVE")

    is_active_badge.short_description = "Status"

    def transaction_count(self, obj):
        return obj.transactions.filter(status=Transaction.STATUS_COMPLETED).count()

    transaction_count.short_description = "Paid"


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = [
        "user_phone",
        "plan_name",
        "amount_formatted",
        "status_badge",
        "mpesa_receipt_number",
        "checkout_request_id",
        "created_at",
    ]
    list_filter = ["status", "plan", "created_at"]
    search_fields = [
        "user_phone",
        "mpesa_receipt_number",
        "checkout_request_id",
        "merchant_request_id",
    ]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-created_at"]
    actions = ["mark_as_completed", "mark_as_failed"]

    def plan_name(self, obj):
        return obj.plan.name if obj.plan else "-"

    plan_name.short_description = "Plan"

    def amount_formatted(self, obj):
        """Format amount with currency"""
        return f"KES {obj.amount:,}"

    amount_formatted.short_description = "Amount"

    def status_badge(self, obj):
        """Display status with color badges"""
        return _badge(STATUS_COLORS.get(obj.status, "gray"), obj.status.upper())

    status_badge.short_description = "Status"

    @admin.action(description="Mark selected pending transactions as completed")
    def mark_as_completed(self, request, queryset):
        count = 0
        for transaction in queryset.filter(status=Transaction.STATUS_PENDING):
            complete_transaction(transaction, description="Confirmed manually")
            count += 1
        self.message_user(request, f"{count} transaction(s) marked as completed.")

    @admin.action(description="Mark selected pending transactions as failed")
    def mark_as_failed(self, request, queryset):
        count = 0
        for transaction in queryset.filter(status=Transaction.STATUS_PENDING):
            fail_transaction(transaction, "Failed manually")
            count += 1
        self.message_user(request, f"{count} transaction(s) marked as failed.")


@admin.register(WalledGarden)
class WalledGardenAdmin(admin.ModelAdmin):
    list_display = ["domain", "description", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["domain", "description"]
    list_editable = ["is_active"]


@admin.register(SMSLog)
class SMSLogAdmin(admin.ModelAdmin):
    list_display = ["phone_number", "sms_type", "success_badge", "sent_at"]
    list_filter = ["sms_type", "success", "sent_at"]
    search_fields = ["phone_number", "message"]
    readonly_fields = ["sent_at", "response_data"]

    def success_badge(self, obj):
        if obj.success:
            return _badge("green", "SENT")
        return _badge("red", "FAILED")

    success_badge.short_description = "Status"
