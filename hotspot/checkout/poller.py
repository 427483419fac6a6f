"""
Transaction status poller.

Polls ``GET /api/transactions/<id>`` at a fixed interval until the server
reports COMPLETED or FAILED, or the attempt budget runs out. Exactly one
request is in flight at a time, so snapshots are consumed in send order.

The poller talks back only through its two callbacks:

    on_success(transaction)
    on_failure(transaction_id, error)   # ServerReportedFailure | PollingTimeout

Neither callback fires once ``cancel()`` has been called.
"""

import logging
import threading

from django.conf import settings

from .exceptions import PollingTimeout, PollingTransientError, ServerReportedFailure

logger = logging.getLogger(__name__)

MAX_POLL_ATTEMPTS = 30
POLL_INTERVAL_SECONDS = 3.0


class TransactionPoller:
    def __init__(
        self,
        api,
        transaction_id,
        on_success,
        on_failure,
        *,
        max_attempts=None,
        interval=None,
        sleep=None,
    ):
        self.api = api
        self.transaction_id = transaction_id
        self.on_success = on_success
        self.on_failure = on_failure
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else getattr(settings, "PAYMENT_POLL_MAX_ATTEMPTS", MAX_POLL_ATTEMPTS)
        )
        self.interval = (
            interval
            if interval is not None
            else getattr(settings, "PAYMENT_POLL_INTERVAL_SECONDS", POLL_INTERVAL_SECONDS)
        )
        self.attempt = 0

        self._cancelled = threading.Event()
        # Event.wait doubles as an interruptible sleep
        self._sleep = sleep or self._cancelled.wait
        self._thread = None
        self._started = False

    def __repr__(self):
        return (
            f"<TransactionPoller {self.transaction_id} "
            f"attempt={self.attempt}/{self.max_attempts} cancelled={self.cancelled}>"
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, background=True):
        """
        Begin polling. With ``background=False`` the loop runs in the
        calling thread and returns once the poller has resolved.
        """
        if self._started:
            raise RuntimeError(f"{self!r} already started")
        self._started = True

        if not background:
            self.run()
            return

        self._thread = threading.Thread(
            target=self.run,
            name=f"poll-{self.transaction_id}",
            daemon=True,
        )
        self._thread.start()

    def cancel(self):
        if not self.cancelled:
            logger.info(
                f"Cancelling poller for transaction {self.transaction_id} "
                f"after {self.attempt} attempt(s)"
            )
        self._cancelled.set()

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self):
        while not self.cancelled:
            if self.attempt >= self.max_attempts:
                logger.warning(
                    f"Transaction {self.transaction_id} still not final after "
                    f"{self.attempt} polls, giving up"
                )
                self.on_failure(
                    self.transaction_id,
                    PollingTimeout(self.transaction_id, self.attempt),
                )
                return

            self.attempt += 1
            transaction = self._poll_once()

            if self.cancelled:
                return

            if transaction is not None and transaction.is_completed:
                logger.info(
                    f"Transaction {self.transaction_id} completed on poll {self.attempt} "
                    f"(receipt {transaction.mpesa_receipt_number})"
                )
                self.on_success(transaction)
                return

            if transaction is not None and transaction.is_failed:
                logger.info(
                    f"Transaction {self.transaction_id} failed on poll {self.attempt}: "
                    f"{transaction.status_description}"
                )
                self.on_failure(self.transaction_id, ServerReportedFailure(transaction))
                return

            self._sleep(self.interval)

    def _poll_once(self):
        try:
            return self.api.get_transaction(self.transaction_id)
        except PollingTransientError as exc:
            logger.debug(
                f"Poll {self.attempt} for transaction {self.transaction_id} inconclusive: {exc}"
            )
            return None
