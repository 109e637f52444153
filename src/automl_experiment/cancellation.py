"""Cancellation token and the timers that stop a running experiment.

``CancellationToken`` is the externally settable flag a caller uses to ask
an experiment to stop. ``CancellationCoordinator`` owns the two background
timers of an experiment:

- the *budget timer* fires once when the wall-clock budget elapses, marks
  the budget as expired and, once at least one run has succeeded, cancels
  the active execution context;
- the *propagation timer* polls the external token on a fixed interval and
  forwards the first observed request to the active execution context,
  then disarms itself.

Both are cooperative: they only ever request cancellation, never kill a
thread.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from automl_experiment.context import ExecutionContext
    from automl_experiment.history import HistoryLedger

logger = logging.getLogger(__name__)

DEFAULT_PROPAGATION_INTERVAL_SECONDS = 1.0


class CancellationToken:
    """Thread-safe, set-once cooperative cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancellation_requested})"

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()


class CancellationCoordinator:
    """Budget and propagation timers for one experiment.

    The coordinator shares state with the experiment loop only through the
    set-once ``budget_expired`` flag and direct ``cancel()`` calls on the
    active execution context.

    Attributes:
        budget_expired: Set when the time budget has elapsed.
    """

    def __init__(
        self,
        history: HistoryLedger,
        token: CancellationToken,
        *,
        experiment_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            history: Ledger consulted to decide whether an expired budget
                may interrupt the in-flight run.
            token: External cancellation signal polled by the propagation
                timer.
            experiment_logger: Logger for coordinator warnings. Defaults to
                this module's logger.
        """
        self._history = history
        self._token = token
        self._logger = experiment_logger or logger
        self.budget_expired = threading.Event()
        self._budget_seconds = 0.0
        self._active: ExecutionContext | None = None
        self._active_lock = threading.Lock()
        self._budget_timer: threading.Timer | None = None
        self._propagation_thread: threading.Thread | None = None
        self._propagation_stop = threading.Event()

    # -- active context -----------------------------------------------------

    def activate(self, context: ExecutionContext) -> None:
        """Make *context* the target of future cancellation requests."""
        with self._active_lock:
            self._active = context

    @property
    def active_context(self) -> ExecutionContext | None:
        with self._active_lock:
            return self._active

    def _cancel_active(self) -> bool:
        """Cancel the active context, returning whether one existed."""
        with self._active_lock:
            context = self._active
        if context is None:
            return False
        context.cancel()
        return True

    # -- budget timer -------------------------------------------------------

    def start_budget_timer(self, seconds: float) -> None:
        """Arm the one-shot budget timer.

        A non-positive budget arms nothing and marks the budget as already
        expired, so exactly one iteration runs to completion.

        Args:
            seconds: Wall-clock budget for the whole experiment.
        """
        self._budget_seconds = seconds
        if seconds <= 0:
            self.budget_expired.set()
            return

        timer = threading.Timer(seconds, self._on_budget_expired)
        timer.daemon = True
        timer.name = "automl-budget-timer"
        self._budget_timer = timer
        timer.start()

    def _on_budget_expired(self) -> None:
        # Until a run has succeeded the in-flight iteration is left to finish.
        self.budget_expired.set()
        if self._history.any_succeeded():
            self._logger.warning(
                "Allocated time for experiment of %s seconds has elapsed with %d models run. "
                "Ending experiment...",
                self._budget_seconds,
                len(self._history),
            )
            self._cancel_active()

    # -- propagation timer --------------------------------------------------

    def start_propagation_timer(
        self,
        interval_seconds: float = DEFAULT_PROPAGATION_INTERVAL_SECONDS,
    ) -> None:
        """Start polling the external token every *interval_seconds*.

        Args:
            interval_seconds: Polling interval.

        Raises:
            ValueError: If *interval_seconds* is not positive.
        """
        if interval_seconds <= 0:
            msg = f"interval_seconds must be > 0, got {interval_seconds}"
            raise ValueError(msg)

        thread = threading.Thread(
            target=self._poll_token,
            args=(interval_seconds,),
            name="automl-cancel-propagation",
            daemon=True,
        )
        self._propagation_thread = thread
        thread.start()

    def _poll_token(self, interval_seconds: float) -> None:
        while not self._propagation_stop.wait(interval_seconds):
            if not self._token.is_cancellation_requested:
                continue
            if self._cancel_active():
                self._logger.warning("Experiment cancellation was requested. Ending experiment...")
                self._propagation_stop.set()
                return

    @property
    def propagation_armed(self) -> bool:
        thread = self._propagation_thread
        return thread is not None and thread.is_alive()

    # -- shutdown -----------------------------------------------------------

    def stop(self) -> None:
        """Disarm both timers. Safe to call more than once."""
        if self._budget_timer is not None:
            self._budget_timer.cancel()
        self._propagation_stop.set()
        thread = self._propagation_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
