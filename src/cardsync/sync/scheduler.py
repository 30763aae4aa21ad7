"""
Background scheduler driving a SyncEngine.

One worker thread waits on a condition variable for the earliest of two
deadlines: the debounced autosave and the next drift poll. Local edits
push the autosave deadline back; environment events (window focus, network
back online) pull the poll deadline forward.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from ..core.models import PollTrigger, SyncOutcome
from .engine import SyncEngine


logger = logging.getLogger(__name__)

# Outcomes after which a pending save is attempted again
_RETRY_SAVE = (SyncOutcome.BUSY, SyncOutcome.NETWORK_ERROR, SyncOutcome.SERVER_UNAVAILABLE)


@dataclass
class SchedulerConfig:
    """
    Configuration for the sync scheduler.

    Attributes:
        debounce_seconds: Quiet period after the last edit before autosave
        poll_interval_seconds: Period of timer-driven drift polls
        max_wait_seconds: Upper bound on a single worker wait
    """
    debounce_seconds: float = 3.0
    poll_interval_seconds: float = 30.0
    max_wait_seconds: float = 60.0


class SyncScheduler:
    """
    Runs autosave and drift polls for one engine on a worker thread.

    run_pending() performs whatever is due at the current clock reading and
    can be driven directly without starting the thread.
    """

    def __init__(
        self,
        engine: SyncEngine,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.config = config or SchedulerConfig()
        self.clock = clock

        self._cond = threading.Condition()
        self._save_due: Optional[float] = None
        self._poll_due: Optional[float] = None
        self._poll_trigger = PollTrigger.TIMER
        self._session_started = False
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self._unsubscribe = engine.holder.subscribe(self.notify_change)

    # --- Inputs ---

    def notify_change(self) -> None:
        """Restart the debounce period after a local edit."""
        with self._cond:
            self._save_due = self.clock() + self.config.debounce_seconds
            self._cond.notify()

    def trigger_poll(self, trigger: Union[PollTrigger, str] = PollTrigger.MANUAL) -> None:
        """
        Poll as soon as possible.

        Only the poll interval is bypassed; the engine still applies the
        typing guard.
        """
        with self._cond:
            self._poll_due = self.clock()
            self._poll_trigger = PollTrigger(trigger)
            self._cond.notify()

    # --- Work ---

    def run_pending(self) -> List[SyncOutcome]:
        """
        Run every action that is due.

        Returns:
            Outcomes of the engine operations that ran, in order
        """
        outcomes: List[SyncOutcome] = []
        now = self.clock()

        if not self._session_started:
            self._session_started = True
            with self._cond:
                self._poll_due = now + self.config.poll_interval_seconds
            outcomes.append(self._load(self.engine.start_session()))
            return outcomes

        with self._cond:
            save_due = self._save_due is not None and self._save_due <= now
            poll_due = self._poll_due is not None and self._poll_due <= now
            trigger = self._poll_trigger
            if save_due:
                self._save_due = None
            if poll_due:
                self._poll_due = now + self.config.poll_interval_seconds
                self._poll_trigger = PollTrigger.TIMER

        state = self.engine.state
        if not state.authenticated:
            return outcomes

        if not state.is_cloud_loaded:
            # Initial load failed earlier; retry at poll cadence
            if poll_due:
                outcomes.append(self._load(self.engine.initial_load()))
            return outcomes

        if save_due:
            outcome = self.engine.autosave()
            outcomes.append(outcome)
            logger.debug(f"Autosave: {outcome.value}",
                         extra={"instance_id": self.engine.instance_id, "outcome": outcome.value})
            if outcome in _RETRY_SAVE:
                self._schedule_save(self.config.debounce_seconds)

        if poll_due:
            outcome = self.engine.poll(trigger)
            outcomes.append(outcome)
            logger.debug(f"Poll ({trigger.value}): {outcome.value}",
                         extra={"instance_id": self.engine.instance_id,
                                "trigger": trigger.value, "outcome": outcome.value})
            if self.engine.needs_save:
                self._schedule_save(self.config.debounce_seconds)

        return outcomes

    def next_wakeup(self) -> float:
        """Seconds until the next deadline, bounded by max_wait_seconds."""
        with self._cond:
            return self._seconds_until_due()

    # --- Thread lifecycle ---

    def start(self) -> None:
        if self._thread is not None:
            return
        with self._cond:
            self._stopping = False
        self._thread = threading.Thread(target=self._run, name="cardsync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started", extra={"instance_id": self.engine.instance_id})

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the worker thread. An operation in flight is allowed to finish."""
        with self._cond:
            self._stopping = True
            self._cond.notify()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread did not stop in time")
            self._thread = None
        self._unsubscribe()
        logger.info("Sync scheduler stopped", extra={"instance_id": self.engine.instance_id})

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
            try:
                self.run_pending()
            except Exception:
                logger.exception("Unexpected error in sync scheduler")
            with self._cond:
                if self._stopping:
                    return
                self._cond.wait(timeout=self._seconds_until_due())

    # --- Internals ---

    def _load(self, outcome: SyncOutcome) -> SyncOutcome:
        if self.engine.needs_save:
            self._schedule_save(self.config.debounce_seconds)
        return outcome

    def _schedule_save(self, delay: float) -> None:
        with self._cond:
            due = self.clock() + delay
            if self._save_due is None or due < self._save_due:
                self._save_due = due
            self._cond.notify()

    def _seconds_until_due(self) -> float:
        deadlines = [d for d in (self._save_due, self._poll_due) if d is not None]
        if not self._session_started:
            return 0.0
        if not deadlines:
            return self.config.max_wait_seconds
        wait = min(deadlines) - self.clock()
        return max(0.0, min(wait, self.config.max_wait_seconds))
