"""
Captive portal checkout: plan selection, M-Pesa payment initiation and
transaction status polling against the hotspot API.
"""

from .client import Plan, PortalAPI, Transaction, WalledGarden
from .exceptions import (
    CheckoutError,
    InvalidPhoneNumber,
    InvalidTransition,
    PaymentInitiationFailed,
    PollingTimeout,
    PollingTransientError,
    PortalAPIError,
    ServerReportedFailure,
)
from .flow import (
    ENTER_PHONE,
    FAILED,
    PROCESSING,
    SELECT_PLAN,
    SUCCESS,
    CheckoutSession,
    PaymentFlow,
)
from .phone import normalize_phone_number
from .poller import TransactionPoller

__all__ = [
    "CheckoutError",
    "CheckoutSession",
    "ENTER_PHONE",
    "FAILED",
    "InvalidPhoneNumber",
    "InvalidTransition",
    "PROCESSING",
    "PaymentFlow",
    "PaymentInitiationFailed",
    "Plan",
    "PollingTimeout",
    "PollingTransientError",
    "PortalAPI",
    "PortalAPIError",
    "SELECT_PLAN",
    "SUCCESS",
    "ServerReportedFailure",
    "Transaction",
    "TransactionPoller",
    "WalledGarden",
    "normalize_phone_number",
]
