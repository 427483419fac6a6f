"""
M-Pesa Daraja API Integration (https://developer.safaricom.co.ke)
Handles Lipa na M-Pesa Online (STK push) for captive portal payments.

Supports:
  - OAuth client-credentials access tokens
  - STK push (CustomerPayBillOnline)
  - STK push status query
  - Parsing of STK callback payloads
"""

import base64
import logging
from datetime import datetime

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MPESA_SANDBOX_URL = "https://sandbox.safaricom.co.ke"
MPESA_PRODUCTION_URL = "https://api.safaricom.co.ke"

RESULT_CODE_SUCCESS = "0"
RESULT_CODE_CANCELLED = "1032"

TRANSACTION_TYPE = "CustomerPayBillOnline"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Daraja password: base64(shortcode + passkey + timestamp)."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def generate_timestamp(now: datetime | None = None) -> str:
    """Daraja timestamp in YYYYMMDDHHMMSS format."""
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def parse_stk_callback(payload: dict) -> dict | None:
    """
    Flatten an STK callback body.

    Returns None when the payload is not an STK callback, otherwise:
    ``checkout_request_id``, ``merchant_request_id``, ``result_code`` (str),
    ``result_desc``, ``receipt_number``, ``amount``, ``phone_number``.
    """
    if not isinstance(payload, dict):
        return None
    body = payload.get("Body") or {}
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not callback or not callback.get("CheckoutRequestID"):
        return None

    items = {}
    metadata = callback.get("CallbackMetadata") or {}
    for item in metadata.get("Item", []):
        if "Name" in item:
            items[item["Name"]] = item.get("Value")

    return {
        "checkout_request_id": callback["CheckoutRequestID"],
        "merchant_request_id": callback.get("MerchantRequestID"),
        "result_code": str(callback.get("ResultCode", "")),
        "result_desc": callback.get("ResultDesc", ""),
        "receipt_number": items.get("MpesaReceiptNumber"),
        "amount": items.get("Amount"),
        "phone_number": str(items["PhoneNumber"]) if items.get("PhoneNumber") else None,
    }


# ---------------------------------------------------------------------------
# MpesaAPI Client
# ---------------------------------------------------------------------------


class MpesaAPI:
    """
    Daraja API client.

    Can be constructed with explicit credentials or will fall back to
    Django settings.
    """

    def __init__(
        self,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        shortcode: str | None = None,
        passkey: str | None = None,
        sandbox: bool | None = None,
    ):
        self.consumer_key = consumer_key or getattr(settings, "MPESA_CONSUMER_KEY", "")
        self.consumer_secret = consumer_secret or getattr(
            settings, "MPESA_CONSUMER_SECRET", ""
        )
        self.shortcode = shortcode or getattr(settings, "MPESA_SHORTCODE", "")
        self.passkey = passkey or getattr(settings, "MPESA_PASSKEY", "")
        if sandbox is None:
            sandbox = getattr(settings, "MPESA_SANDBOX", True)
        self.base_url = MPESA_SANDBOX_URL if sandbox else MPESA_PRODUCTION_URL
        self.timeout = 30  # seconds

    @property
    def is_configured(self) -> bool:
        return all(
            [self.consumer_key, self.consumer_secret, self.shortcode, self.passkey]
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def get_access_token(self) -> str | None:
        credentials = base64.b64encode(
            f"{self.consumer_key}:{self.consumer_secret}".encode()
        ).decode()

        try:
            response = requests.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {credentials}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as exc:
            logger.error(f"M-Pesa access token request failed: {exc}")
            return None
        except ValueError:
            logger.error("M-Pesa access token response was not JSON")
            return None

        if not isinstance(body, dict):
            logger.error(f"M-Pesa access token response was not an object: {body!r}")
            return None
        return body.get("access_token")

    def _post(self, path: str, payload: dict) -> dict:
        """
        Authenticated POST to Daraja.

        Returns a dict with at least ``success`` (bool); the Daraja body is
        included under ``data``.
        """
        if not self.is_configured:
            return {
                "success": False,
                "message": "M-Pesa credentials not configured",
            }

        token = self.get_access_token()
        if not token:
            return {
                "success": False,
                "message": "Could not authenticate with M-Pesa.",
            }

        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            body = response.json()

            if not isinstance(body, dict):
                logger.error(
                    f"M-Pesa API returned unexpected body for {path} "
                    f"({response.status_code}): {body!r}"
                )
                return {
                    "success": False,
                    "status_code": response.status_code,
                    "message": "Invalid response from M-Pesa.",
                }

            if response.status_code == 200:
                return {"success": True, "data": body}

            logger.error(
                f"M-Pesa API error {path} -> {response.status_code} "
                f"{body.get('errorCode', '')}: {body.get('errorMessage', '')}"
            )
            return {
                "success": False,
                "status_code": response.status_code,
                "message": body.get("errorMessage", "M-Pesa request failed"),
                "data": body,
            }

        except requests.exceptions.Timeout:
            logger.error(f"M-Pesa API timeout: {path}")
            return {"success": False, "message": "Request timed out. Please try again."}
        except requests.exceptions.ConnectionError:
            logger.error(f"M-Pesa API connection error: {path}")
            return {"success": False, "message": "Could not connect to M-Pesa."}
        except requests.exceptions.RequestException as exc:
            logger.error(f"M-Pesa API request error: {exc}")
            return {"success": False, "message": str(exc)}
        except ValueError:
            logger.error(f"M-Pesa API returned non-JSON response for {path}")
            return {"success": False, "message": "Invalid response from M-Pesa."}

    # ======================================================================
    # STK push
    # ======================================================================

    def stk_push(
        self,
        phone_number: str,
        amount: int,
        account_reference: str,
        description: str,
        callback_url: str | None = None,
    ) -> dict:
        """
        Send a Lipa na M-Pesa Online prompt to the customer's phone.

        Args:
            phone_number:      Customer phone (254XXXXXXXXX)
            amount:            Whole shillings
            account_reference: Shown on the customer's prompt (max 12 chars)
            description:       Transaction description
            callback_url:      Where Daraja posts the result

        Returns:
            dict with ``success`` and, on success, ``checkout_request_id``,
            ``merchant_request_id`` and ``customer_message``.
        """
        timestamp = generate_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": generate_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": callback_url or getattr(settings, "MPESA_CALLBACK_URL", ""),
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }

        result = self._post("/mpesa/stkpush/v1/processrequest", payload)
        if not result["success"]:
            return result

        data = result["data"]
        if str(data.get("ResponseCode")) != RESULT_CODE_SUCCESS:
            return {
                "success": False,
                "message": data.get("ResponseDescription", "STK push rejected"),
                "data": data,
            }

        logger.info(
            f"STK push sent to {phone_number} for KES {amount} "
            f"(checkout {data.get('CheckoutRequestID')})"
        )
        return {
            "success": True,
            "checkout_request_id": data.get("CheckoutRequestID"),
            "merchant_request_id": data.get("MerchantRequestID"),
            "customer_message": data.get("CustomerMessage", ""),
            "data": data,
        }

    def query_status(self, checkout_request_id: str) -> dict:
        """
        Query the outcome of an STK push.

        Returns a dict with ``success`` and, on success, ``result_code``
        (str) and ``result_desc``.
        """
        timestamp = generate_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": generate_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        result = self._post("/mpesa/stkpushquery/v1/query", payload)
        if not result["success"]:
            return result

        data = result["data"]
        return {
            "success": True,
            "result_code": str(data.get("ResultCode", "")),
            "result_desc": data.get("ResultDesc", ""),
            "data": data,
        }
