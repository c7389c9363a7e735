"""Scheduling of executor passes: immediate, periodic and backoff retries."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from chat_sync.tasks.reachability import ReachabilityMonitor, ReachabilitySubscription

logger = logging.getLogger(__name__)

DEFAULT_PERIODIC_INTERVAL_SECONDS = 15 * 60
DEFAULT_BACKOFF_BASE_SECONDS = 10.0
DEFAULT_BACKOFF_MAX_SECONDS = 5 * 60 * 60.0
DEFAULT_MAX_PASS_ATTEMPTS = 3


class SyncScheduler(Protocol):
    """Contract the queue relies on to trigger executor passes."""

    def schedule_immediate(self, delay: float = 0.0) -> None: ...

    def schedule_periodic(self, interval: float) -> None: ...

    def cancel_all(self) -> None: ...


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class PassPurpose(str, Enum):
    IMMEDIATE = "immediate"
    PERIODIC = "periodic"


def thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class BackgroundSyncScheduler:
    """In-process scheduler backed by timer threads.

    - A new immediate request replaces an immediate run that has not started yet.
    - Requesting the periodic cadence while it is active keeps the existing one.
    - Every dispatch requires reachability; unreachable dispatches wait for the
      probe to report reachable again instead of failing.
    - A pass that raises is retried with exponential backoff up to
      `max_pass_attempts`.
    - Passes never overlap.
    """

    def __init__(  # noqa: PLR0913
        self,
        run_pass: Callable[[], object],
        reachability: ReachabilityMonitor,
        *,
        timer_factory: TimerFactory = thread_timer,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS,
        max_pass_attempts: int = DEFAULT_MAX_PASS_ATTEMPTS,
    ) -> None:
        self._run_pass = run_pass
        self.reachability = reachability
        self._timer_factory = timer_factory
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.max_pass_attempts = max(1, max_pass_attempts)
        self._lock = threading.RLock()
        self._run_lock = threading.Lock()
        self._epoch = 0
        self._immediate: TimerHandle | None = None
        self._immediate_token = 0
        self._periodic: TimerHandle | None = None
        self._periodic_interval: float | None = None
        self._retry_timers: set[TimerHandle] = set()
        self._deferred: dict[PassPurpose, int] = {}
        self._reachability_subscription: ReachabilitySubscription | None = None

    @property
    def pending_immediate(self) -> bool:
        return self._immediate is not None

    @property
    def periodic_active(self) -> bool:
        return self._periodic_interval is not None

    @property
    def deferred_purposes(self) -> tuple[PassPurpose, ...]:
        with self._lock:
            return tuple(self._deferred)

    def schedule_immediate(self, delay: float = 0.0) -> None:
        with self._lock:
            if self._immediate is not None:
                self._immediate.cancel()
            self._immediate_token += 1
            token = self._immediate_token
            epoch = self._epoch
            self._immediate = self._timer_factory(
                max(0.0, delay),
                lambda: self._on_immediate_fire(token=token, epoch=epoch),
            )
            self._immediate.start()
        logger.debug("Scheduled immediate sync pass with delay: %.1fs", delay)

    def schedule_periodic(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("Periodic sync interval must be > 0.")
        with self._lock:
            if self._periodic_interval is not None:
                logger.debug("Periodic sync already active, keeping existing cadence")
                return
            self._periodic_interval = interval
            self._arm_periodic(delay=0.0, epoch=self._epoch)
        logger.debug("Scheduled periodic sync every %.0fs", interval)

    def cancel_all(self) -> None:
        with self._lock:
            self._epoch += 1
            if self._immediate is not None:
                self._immediate.cancel()
                self._immediate = None
            if self._periodic is not None:
                self._periodic.cancel()
                self._periodic = None
            self._periodic_interval = None
            for timer in self._retry_timers:
                timer.cancel()
            self._retry_timers.clear()
            self._deferred.clear()
            subscription = self._reachability_subscription
            self._reachability_subscription = None
        if subscription is not None:
            subscription.close()
        logger.debug("Cancelled all sync work")

    def _on_immediate_fire(self, *, token: int, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch or token != self._immediate_token:
                return
            self._immediate = None
        self._dispatch(PassPurpose.IMMEDIATE, attempt=1, epoch=epoch)

    def _arm_periodic(self, *, delay: float, epoch: int) -> None:
        self._periodic = self._timer_factory(delay, lambda: self._on_periodic_fire(epoch=epoch))
        self._periodic.start()

    def _on_periodic_fire(self, *, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch or self._periodic_interval is None:
                return
            self._arm_periodic(delay=self._periodic_interval, epoch=epoch)
        self._dispatch(PassPurpose.PERIODIC, attempt=1, epoch=epoch)

    def _dispatch(self, purpose: PassPurpose, *, attempt: int, epoch: int) -> None:
        if not self.reachability.is_reachable():
            self._defer(purpose, attempt=attempt, epoch=epoch)
            return

        with self._run_lock:
            with self._lock:
                if epoch != self._epoch:
                    return
            try:
                self._run_pass()
            except Exception:  # noqa: BLE001
                logger.exception("Sync pass failed (%s, attempt %d)", purpose.value, attempt)
                self._schedule_backoff(purpose, attempt=attempt, epoch=epoch)

    def _defer(self, purpose: PassPurpose, *, attempt: int, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch:
                return
            self._deferred[purpose] = attempt
            needs_subscription = self._reachability_subscription is None
        logger.debug("Network unreachable, deferring %s sync pass", purpose.value)
        if needs_subscription:
            subscription = self.reachability.observe(self._on_reachability_changed)
            with self._lock:
                if self._reachability_subscription is None:
                    self._reachability_subscription = subscription
                    return
            subscription.close()

    def _on_reachability_changed(self, reachable: bool) -> None:
        if not reachable:
            return
        with self._lock:
            deferred = dict(self._deferred)
            self._deferred.clear()
            epoch = self._epoch
            for purpose, attempt in deferred.items():
                self._start_retry_timer(
                    0.0,
                    lambda purpose=purpose, attempt=attempt: self._dispatch(
                        purpose,
                        attempt=attempt,
                        epoch=epoch,
                    ),
                )

    def _schedule_backoff(self, purpose: PassPurpose, *, attempt: int, epoch: int) -> None:
        if attempt >= self.max_pass_attempts:
            logger.error(
                "Sync pass failed %d times (%s), waiting for next trigger",
                attempt,
                purpose.value,
            )
            return
        delay = self.backoff_delay(attempt)
        with self._lock:
            if epoch != self._epoch:
                return
            self._start_retry_timer(
                delay,
                lambda: self._dispatch(purpose, attempt=attempt + 1, epoch=epoch),
            )
        logger.warning("Retrying %s sync pass in %.0fs", purpose.value, delay)

    def backoff_delay(self, attempt: int) -> float:
        return min(
            self.backoff_max_seconds,
            self.backoff_base_seconds * (2 ** max(attempt - 1, 0)),
        )

    def _start_retry_timer(self, delay: float, callback: Callable[[], None]) -> None:
        holder: list[TimerHandle] = []

        def _fire() -> None:
            with self._lock:
                self._retry_timers.discard(holder[0])
            callback()

        timer = self._timer_factory(delay, _fire)
        holder.append(timer)
        self._retry_timers.add(timer)
        timer.start()
