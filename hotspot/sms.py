"""
SMS Integration
Sends payment receipts for MnetiFi hotspot purchases via Africa's Talking,
or logs them when SMS_PROVIDER is "mock".
"""

import logging

import requests
from django.conf import settings
from django.db import DatabaseError

from .checkout.exceptions import InvalidPhoneNumber
from .checkout.phone import normalize_phone_number

logger = logging.getLogger(__name__)

AFRICASTALKING_SANDBOX_URL = "https://api.sandbox.africastalking.com"
AFRICASTALKING_PRODUCTION_URL = "https://api.africastalking.com"


def payment_confirmation_message(amount, plan_name, receipt_number):
    return (
        f"Payment confirmed! KES {amount} received for {plan_name}. "
        f"M-Pesa receipt {receipt_number or 'N/A'}. "
        f"You are now connected to MnetiFi Wi-Fi."
    )


class SMSAPI:
    """
    SMS client for customer notifications
    """

    def __init__(self, provider=None, api_key=None, username=None, sender_id=None):
        self.provider = provider or getattr(settings, "SMS_PROVIDER", "mock")
        self.api_key = api_key or getattr(settings, "SMS_API_KEY", "")
        self.username = username or getattr(settings, "SMS_USERNAME", "sandbox")
        self.sender_id = sender_id or getattr(settings, "SMS_SENDER_ID", "")

        if self.username == "sandbox":
            self.base_url = AFRICASTALKING_SANDBOX_URL
        else:
            self.base_url = AFRICASTALKING_PRODUCTION_URL

    def send_sms(self, phone_number, message):
        """
        Send SMS to a single recipient

        Args:
            phone_number: Recipient phone number (any local format)
            message: SMS message text

        Returns:
            dict: Response with success status and message
        """
        try:
            phone_number = normalize_phone_number(phone_number)
        except InvalidPhoneNumber:
            logger.error(f"Not sending SMS to invalid number {phone_number!r}")
            return {"success": False, "message": "Invalid phone number"}

        if self.provider == "mock":
            logger.info(f"[SMS mock] to {phone_number}: {message}")
            return {"success": True, "message": "SMS logged (mock provider)"}

        if self.provider != "africastalking":
            logger.error(f"Unknown SMS provider {self.provider!r}")
            return {"success": False, "message": f"Unknown SMS provider {self.provider}"}

        if not self.api_key:
            return {"success": False, "message": "Africa's Talking API key not configured"}

        payload = {
            "username": self.username,
            "to": f"+{phone_number}",
            "message": message,
        }
        if self.sender_id:
            payload["from"] = self.sender_id

        headers = {
            "apiKey": self.api_key,
            "Accept": "application/json",
        }

        try:
            response = requests.post(
                f"{self.base_url}/version1/messaging",
                data=payload,
                headers=headers,
                timeout=10,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send SMS to {phone_number}: {str(e)}")
            return {"success": False, "message": "Failed to send SMS"}
        except ValueError:
            logger.error(f"SMS provider returned non-JSON response for {phone_number}")
            return {"success": False, "message": "Invalid response from SMS provider"}

        recipients = (result.get("SMSMessageData") or {}).get("Recipients") or []
        if recipients and recipients[0].get("status") == "Success":
            logger.info(f"SMS sent successfully to {phone_number}")
            return {
                "success": True,
                "message": "SMS sent successfully",
                "message_id": recipients[0].get("messageId"),
                "data": result,
            }

        error = (result.get("SMSMessageData") or {}).get("Message") or "Failed to send SMS"
        logger.error(f"SMS to {phone_number} rejected: {error}")
        return {"success": False, "message": error, "data": result}


def send_payment_receipt(transaction):
    """
    Send and log the receipt SMS for a completed transaction.
    Returns True when the SMS went out. Never raises into the payment path.
    """
    from .models import SMSLog

    try:
        plan_name = transaction.plan.name if transaction.plan else "Wi-Fi access"
    except DatabaseError as e:
        logger.error(f"Could not load plan for receipt of {transaction.id}: {str(e)}")
        plan_name = "Wi-Fi access"
    message = payment_confirmation_message(
        transaction.amount, plan_name, transaction.mpesa_receipt_number
    )
    result = SMSAPI().send_sms(transaction.user_phone, message)

    try:
        SMSLog.objects.create(
            transaction=transaction,
            phone_number=transaction.user_phone,
            message=message,
            sms_type="payment",
            success=result.get("success", False),
            response_data=result.get("data"),
        )
    except DatabaseError as e:
        logger.error(f"Failed to log receipt SMS for {transaction.id}: {str(e)}")
    return result.get("success", False)
