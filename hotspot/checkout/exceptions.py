"""
Errors raised by the captive portal checkout flow.

Only ``InvalidTransition`` and ``PortalAPIError`` are meant to reach callers
of ``PaymentFlow``; the payment errors are caught by the flow and exposed
through ``flow.error`` / ``flow.notice``.
"""


class CheckoutError(Exception):
    """Base class for checkout errors."""

    default_message = "Checkout error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidPhoneNumber(CheckoutError):
    default_message = "Please enter a valid phone number"


class PaymentInitiationFailed(CheckoutError):
    default_message = "Unable to initiate payment. Please try again."

    def __init__(self, message=None, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class PollingTransientError(CheckoutError):
    default_message = "Could not fetch transaction status"


class PollingTimeout(CheckoutError):
    default_message = "The payment could not be completed"

    def __init__(self, transaction_id, attempts):
        super().__init__()
        self.transaction_id = transaction_id
        self.attempts = attempts


class ServerReportedFailure(CheckoutError):
    default_message = "The payment could not be completed"

    def __init__(self, transaction):
        super().__init__(transaction.status_description)
        self.transaction = transaction


class InvalidTransition(CheckoutError):
    def __init__(self, action, state):
        super().__init__(f"Cannot {action} while in '{state}' state")
        self.action = action
        self.state = state


class PortalAPIError(CheckoutError):
    default_message = "Could not reach the hotspot server"
