"""
Captive portal payment flow.

    select-plan --select_plan--> enter-phone --submit_phone--> processing
         ^                          |                           |     |
         +----------back------------+                     success   failed
         +-----------------------------retry--------------------------+

Each portal visitor gets one ``PaymentFlow`` with its own
``CheckoutSession``. Only one transaction is polled at a time; results
from a poller whose transaction is no longer current are dropped.
"""

import logging
import threading
from dataclasses import dataclass

from .client import Plan, Transaction
from .exceptions import (
    InvalidPhoneNumber,
    InvalidTransition,
    PaymentInitiationFailed,
    PollingTimeout,
    ServerReportedFailure,
)
from .phone import normalize_phone_number
from .poller import TransactionPoller

logger = logging.getLogger(__name__)

SELECT_PLAN = "select-plan"
ENTER_PHONE = "enter-phone"
PROCESSING = "processing"
SUCCESS = "success"
FAILED = "failed"

FLOW_STATES = (SELECT_PLAN, ENTER_PHONE, PROCESSING, SUCCESS, FAILED)

DEFAULT_FAILURE_MESSAGE = "The payment could not be completed"


@dataclass
class CheckoutSession:
    """Per-visitor checkout state, passed explicitly instead of kept globally."""

    plan: Plan | None = None
    phone: str = ""
    transaction: Transaction | None = None

    def clear(self):
        self.plan = None
        self.phone = ""
        self.transaction = None


class PaymentFlow:
    def __init__(
        self,
        api,
        session=None,
        *,
        poller_class=TransactionPoller,
        poller_options=None,
        background=True,
        on_change=None,
    ):
        self.api = api
        self.session = session or CheckoutSession()
        self.poller_class = poller_class
        self.poller_options = poller_options or {}
        self.background = background
        self.on_change = on_change

        self.state = SELECT_PLAN
        self.plans = []
        self.walled_gardens = []
        self.notice = None
        self.error = None
        self.submitting = False

        # Bumped on every submit and reset; a reply for an older value is stale
        self._attempt = 0
        self._poller = None
        self._lock = threading.RLock()

    def __repr__(self):
        return f"<PaymentFlow state={self.state} session={self.session!r}>"

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def poller(self):
        return self._poller

    @property
    def transaction(self):
        return self.session.transaction

    @property
    def failure_message(self) -> str:
        transaction = self.session.transaction
        if transaction is not None and transaction.is_failed and transaction.status_description:
            return transaction.status_description
        return DEFAULT_FAILURE_MESSAGE

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def load_plans(self):
        """Fetch plans and keep only the active ones for display."""
        plans = [plan for plan in self.api.list_plans() if plan.is_active]
        self.plans = plans
        return plans

    def load_walled_gardens(self):
        self.walled_gardens = self.api.list_walled_gardens()
        return self.walled_gardens

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def select_plan(self, plan):
        with self._lock:
            self._require(SELECT_PLAN, "select a plan")
            if not plan.is_active:
                raise InvalidTransition("select an inactive plan", self.state)
            self.session.plan = plan
            self.notice = None
            self.error = None
            self._set_state(ENTER_PHONE)
        self._notify()

    def back(self):
        with self._lock:
            self._require(ENTER_PHONE, "go back")
            self.notice = None
            self.error = None
            self._set_state(SELECT_PLAN)
        self._notify()

    def submit_phone(self, raw_phone):
        """
        Validate ``raw_phone`` and request an STK push for the selected plan.

        Returns the new Transaction, or None when the submission was refused
        (invalid phone, server rejection, or a request already in flight).
        On refusal the flow stays in enter-phone with ``notice`` set.
        """
        with self._lock:
            self._require(ENTER_PHONE, "submit a phone number")
            if self.submitting:
                logger.info("Ignoring duplicate payment submission")
                return None

            plan = self.session.plan
            try:
                phone = normalize_phone_number(raw_phone)
            except InvalidPhoneNumber as exc:
                self._refuse(exc, f"Invalid Phone Number: {exc.message}")
                self._notify()
                return None

            self._attempt += 1
            attempt = self._attempt
            self.submitting = True
            self.notice = None
            self.error = None
        self._notify()

        try:
            transaction = self.api.initiate_payment(plan.id, phone)
        except PaymentInitiationFailed as exc:
            with self._lock:
                if attempt != self._attempt:
                    logger.info(f"Dropping initiation error for abandoned attempt: {exc.message}")
                    return None
                self.submitting = False
                self._refuse(exc, f"Payment Failed: {exc.message}")
            self._notify()
            return None

        with self._lock:
            if attempt != self._attempt or self.state != ENTER_PHONE:
                logger.warning(
                    f"Discarding transaction {transaction.id}: "
                    f"attempt abandoned while initiating (state={self.state})"
                )
                return None
            self.submitting = False

            # Never let an older poller outlive a new attempt
            self._cancel_poller()
            self.session.phone = phone
            self.session.transaction = transaction
            self._set_state(PROCESSING)
            poller = self.poller_class(
                self.api,
                transaction.id,
                self._on_poll_success,
                self._on_poll_failure,
                **self.poller_options,
            )
            self._poller = poller
        self._notify()

        poller.start(background=self.background)
        return transaction

    def retry(self):
        """Return to plan selection after a failed payment."""
        with self._lock:
            self._require(FAILED, "retry")
            self._reset()
        self._notify()

    def restart(self):
        """Abandon whatever is in progress and start over."""
        with self._lock:
            self._reset()
        self._notify()

    def close(self):
        with self._lock:
            self._cancel_poller()

    # ------------------------------------------------------------------
    # Poller callbacks
    # ------------------------------------------------------------------

    def _on_poll_success(self, transaction):
        with self._lock:
            if not self._is_current(transaction.id):
                return
            self.session.transaction = transaction
            self._poller = None
            self._set_state(SUCCESS)
        self._notify()

    def _on_poll_failure(self, transaction_id, error):
        with self._lock:
            if not self._is_current(transaction_id):
                return
            if isinstance(error, ServerReportedFailure):
                self.session.transaction = error.transaction
            elif isinstance(error, PollingTimeout):
                logger.info(f"Payment {transaction_id} timed out after {error.attempts} polls")
            self.error = error
            self.notice = self.failure_message
            self._poller = None
            self._set_state(FAILED)
        self._notify()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_current(self, transaction_id) -> bool:
        current = self.session.transaction
        if self.state != PROCESSING or current is None or current.id != transaction_id:
            logger.info(
                f"Ignoring stale poll result for transaction {transaction_id} (state={self.state})"
            )
            return False
        return True

    def _require(self, state, action):
        if self.state != state:
            raise InvalidTransition(action, self.state)

    def _refuse(self, exc, notice):
        logger.info(f"Payment submission refused: {exc.message}")
        self.error = exc
        self.notice = notice

    def _reset(self):
        self._attempt += 1
        self._cancel_poller()
        self.session.clear()
        self.notice = None
        self.error = None
        self.submitting = False
        self._set_state(SELECT_PLAN)

    def _cancel_poller(self):
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None

    def _set_state(self, state):
        if state != self.state:
            logger.debug(f"Payment flow {self.state} -> {state}")
        self.state = state

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self)
