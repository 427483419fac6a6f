"""
HTTP client for the hotspot collaborator API consumed by the captive portal.

Endpoints:
  - GET  /api/plans
  - GET  /api/plans/<id>
  - GET  /api/walled-gardens
  - POST /api/transactions/initiate
  - GET  /api/transactions/<id>
"""

import logging
from dataclasses import dataclass, field

import requests
from django.conf import settings

from .exceptions import (
    PaymentInitiationFailed,
    PollingTransientError,
    PortalAPIError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 15  # seconds

TRANSACTION_STATUS_PENDING = "PENDING"
TRANSACTION_STATUS_COMPLETED = "COMPLETED"
TRANSACTION_STATUS_FAILED = "FAILED"

TERMINAL_STATUSES = (TRANSACTION_STATUS_COMPLETED, TRANSACTION_STATUS_FAILED)


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: int
    is_active: bool = True
    description: str = ""
    duration_seconds: int | None = None
    plan_type: str = "HOTSPOT"

    @classmethod
    def from_api(cls, data: dict) -> "Plan":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            price=int(data.get("price") or 0),
            is_active=bool(data.get("isActive", True)),
            description=data.get("description") or "",
            duration_seconds=data.get("durationSeconds"),
            plan_type=data.get("planType") or "HOTSPOT",
        )

    @property
    def price_display(self) -> str:
        return f"KES {self.price:,}"


@dataclass(frozen=True)
class Transaction:
    """
    Snapshot of one payment attempt as reported by the server.

    ``status`` is kept as the raw server string; values other than
    COMPLETED / FAILED are treated as still in progress.
    """

    id: str
    status: str = TRANSACTION_STATUS_PENDING
    mpesa_receipt_number: str | None = None
    status_description: str | None = None
    amount: int | None = None
    plan_id: str | None = None
    user_phone: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "Transaction":
        return cls(
            id=str(data["id"]),
            status=str(data.get("status") or TRANSACTION_STATUS_PENDING),
            mpesa_receipt_number=data.get("mpesaReceiptNumber"),
            status_description=data.get("statusDescription"),
            amount=data.get("amount"),
            plan_id=data.get("planId"),
            user_phone=data.get("userPhone"),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == TRANSACTION_STATUS_COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == TRANSACTION_STATUS_FAILED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class WalledGarden:
    domain: str
    description: str = ""
    id: str | None = None
    is_active: bool = True

    @classmethod
    def from_api(cls, data: dict) -> "WalledGarden":
        return cls(
            domain=data.get("domain", ""),
            description=data.get("description") or "",
            id=str(data["id"]) if data.get("id") is not None else None,
            is_active=bool(data.get("isActive", True)),
        )


# ---------------------------------------------------------------------------
# PortalAPI Client
# ---------------------------------------------------------------------------


class PortalAPI:
    """
    Client for the captive portal endpoints.

    Can be constructed with an explicit base URL (e.g. the hotspot server
    reachable from the router) or will fall back to Django settings.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: int | None = None,
        http: requests.Session | None = None,
    ):
        self.base_url = (
            base_url or getattr(settings, "PORTAL_API_BASE_URL", DEFAULT_BASE_URL)
        ).rstrip("/")
        self.timeout = timeout or getattr(settings, "PORTAL_API_TIMEOUT", DEFAULT_TIMEOUT)
        self.http = http or requests.Session()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, json_data: dict | None = None) -> dict:
        """
        Generic HTTP request wrapper.

        Returns a dict with at least ``success`` (bool). On success the
        decoded body is under ``data``; on failure ``message`` is set.
        """
        url = f"{self.base_url}{path}"

        try:
            response = self.http.request(
                method,
                url,
                json=json_data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Portal API timeout: {method} {path}")
            return {"success": False, "message": "Request timed out. Please try again."}
        except requests.exceptions.ConnectionError:
            logger.error(f"Portal API connection error: {method} {path}")
            return {"success": False, "message": "Could not connect to the hotspot server."}
        except requests.exceptions.RequestException as exc:
            logger.error(f"Portal API request error: {exc}")
            return {"success": False, "message": str(exc)}

        try:
            body = response.json()
        except ValueError:
            body = None

        if 200 <= response.status_code < 300:
            if body is None:
                logger.error(f"Portal API returned non-JSON response for {method} {path}")
                return {
                    "success": False,
                    "status_code": response.status_code,
                    "message": "Invalid response from the hotspot server.",
                }
            return {"success": True, "status_code": response.status_code, "data": body}

        message = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or body.get("detail")
        logger.warning(
            f"Portal API error {method} {path} -> {response.status_code}: {message}"
        )
        return {
            "success": False,
            "status_code": response.status_code,
            "message": message,
            "raw": body,
        }

    # ======================================================================
    # Catalogue
    # ======================================================================

    def list_plans(self) -> list[Plan]:
        result = self._request("GET", "/api/plans")
        if not result["success"]:
            raise PortalAPIError(result.get("message"))
        return [Plan.from_api(item) for item in result["data"]]

    def get_plan(self, plan_id: str) -> Plan:
        result = self._request("GET", f"/api/plans/{plan_id}")
        if not result["success"]:
            raise PortalAPIError(result.get("message"))
        return Plan.from_api(result["data"])

    def list_walled_gardens(self) -> list[WalledGarden]:
        result = self._request("GET", "/api/walled-gardens")
        if not result["success"]:
            raise PortalAPIError(result.get("message"))
        return [WalledGarden.from_api(item) for item in result["data"]]

    # ======================================================================
    # Transactions
    # ======================================================================

    def initiate_payment(self, plan_id: str, phone: str) -> Transaction:
        """
        Ask the server to send an M-Pesa STK push for ``plan_id``.

        Args:
            plan_id: Plan identifier
            phone:   Canonical phone number (254XXXXXXXXX)

        Raises:
            PaymentInitiationFailed: network failure or non-2xx response
        """
        result = self._request(
            "POST",
            "/api/transactions/initiate",
            json_data={"planId": plan_id, "phone": phone},
        )
        if not result["success"]:
            raise PaymentInitiationFailed(
                result.get("message"), status_code=result.get("status_code")
            )

        try:
            transaction = Transaction.from_api(result["data"])
        except (KeyError, TypeError, AttributeError):
            logger.error(f"Malformed transaction payload: {result['data']}")
            raise PaymentInitiationFailed("Invalid response from the hotspot server.")

        logger.info(
            f"Payment initiated: transaction={transaction.id} plan={plan_id} "
            f"phone={phone} status={transaction.status}"
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> Transaction:
        """
        Fetch the current snapshot of a transaction.

        Raises:
            PollingTransientError: the status could not be fetched
        """
        result = self._request("GET", f"/api/transactions/{transaction_id}")
        if not result["success"]:
            raise PollingTransientError(result.get("message"))
        try:
            return Transaction.from_api(result["data"])
        except (KeyError, TypeError, AttributeError):
            raise PollingTransientError("Invalid transaction payload")
