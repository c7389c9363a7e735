"""Sync pass: recover, execute, retry, sweep and re-arm."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from chat_sync.tasks.executor import SyncExecutor
from chat_sync.tasks.models import SyncPassSummary, SyncStatus
from chat_sync.tasks.repository import (
    COMPLETED_RETENTION,
    FAILED_RETENTION,
    SyncTaskRepository,
)
from chat_sync.tasks.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

DEFAULT_FOLLOWUP_DELAY_SECONDS = 5 * 60
DEFAULT_STALE_IN_PROGRESS_SECONDS = 10 * 60


class SyncWorker:
    """One background pass over the queue.

    A pass that raises leaves the scheduler in charge of backoff; nothing here
    swallows store errors.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: SyncTaskRepository,
        executor: SyncExecutor,
        scheduler: SyncScheduler | None = None,
        followup_delay_seconds: float = DEFAULT_FOLLOWUP_DELAY_SECONDS,
        stale_in_progress_seconds: float = DEFAULT_STALE_IN_PROGRESS_SECONDS,
        completed_retention: timedelta = COMPLETED_RETENTION,
        failed_retention: timedelta = FAILED_RETENTION,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.scheduler = scheduler
        self.followup_delay_seconds = followup_delay_seconds
        self.stale_in_progress_seconds = stale_in_progress_seconds
        self.completed_retention = completed_retention
        self.failed_retention = failed_retention
        self._stop = threading.Event()
        self._stop_signal_name: str | None = None

    def run_pass(self) -> SyncPassSummary:
        summary = SyncPassSummary()
        summary.recovered = self._recover_stale_tasks()
        summary.pending_succeeded = self.executor.execute_pending_tasks()
        summary.retried_succeeded = self.executor.retry_failed_tasks()
        summary.purged = self.repository.purge_terminal(
            completed_retention=self.completed_retention,
            failed_retention=self.failed_retention,
        )
        summary.remaining = self._remaining_work()
        if summary.remaining and self.scheduler is not None:
            self.scheduler.schedule_immediate(delay=self.followup_delay_seconds)
            summary.rescheduled = True
        logger.info(
            "Sync pass finished: pending_ok=%d retried_ok=%d purged=%d remaining=%d",
            summary.pending_succeeded,
            summary.retried_succeeded,
            summary.purged,
            summary.remaining,
        )
        return summary

    def serve(self) -> str | None:
        """Block until SIGINT/SIGTERM or `request_stop`; returns the signal name."""

        with self._signal_handlers():
            while not self._stop.wait(timeout=1.0):
                pass
        return self._stop_signal_name

    def request_stop(self, *, signal_name: str = "manual") -> None:
        self._stop_signal_name = signal_name
        self._stop.set()

    def _recover_stale_tasks(self) -> int:
        if self.stale_in_progress_seconds <= 0:
            return 0
        return self.repository.recover_stale_in_progress(
            stale_after=timedelta(seconds=self.stale_in_progress_seconds),
        )

    def _remaining_work(self) -> int:
        pending = len(self.repository.list_by_status(SyncStatus.PENDING))
        return pending + len(self.repository.list_retryable())

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            # Signal handlers can only be installed in main thread.
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping sync service", name)
            self.request_stop(signal_name=name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
