"""Process-level wiring of store, uploader, executor, scheduler and probe."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

import httpx

from chat_sync.config import Settings
from chat_sync.tasks.executor import SyncExecutor
from chat_sync.tasks.factory import SyncTaskFactory
from chat_sync.tasks.identity import InstallationIdentity, describe_device
from chat_sync.tasks.reachability import ReachabilityMonitor, ReachabilityState
from chat_sync.tasks.repository import SyncTaskRepository
from chat_sync.tasks.scheduler import BackgroundSyncScheduler, TimerFactory, thread_timer
from chat_sync.tasks.uploader import BatchUploader
from chat_sync.tasks.worker import SyncWorker

logger = logging.getLogger(__name__)


class SyncRuntime:
    """Owns every long-lived sync component for one process."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        repository: SyncTaskRepository,
        uploader: BatchUploader,
        executor: SyncExecutor,
        worker: SyncWorker,
        reachability: ReachabilityMonitor,
        scheduler: BackgroundSyncScheduler | None,
        factory: SyncTaskFactory,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.uploader = uploader
        self.executor = executor
        self.worker = worker
        self.reachability = reachability
        self.scheduler = scheduler
        self.factory = factory
        self._started = False

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        settings: Settings,
        *,
        with_scheduler: bool = True,
        reachability_check: Callable[[], ReachabilityState] | None = None,
        transport: httpx.BaseTransport | None = None,
        timer_factory: TimerFactory = thread_timer,
    ) -> SyncRuntime:
        settings.validate_for_network()
        repository = SyncTaskRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        identity = InstallationIdentity.load_or_create(repository)
        uploader = BatchUploader(
            base_url=settings.collector.url,
            identity=identity,
            batch_path=settings.collector.batch_path,
            device_info=describe_device(),
            app_version=settings.collector.app_version,
            timeout_seconds=settings.collector.request_timeout_seconds,
            terminal_on_client_error=settings.collector.terminal_on_client_error,
            transport=transport,
        )
        executor = SyncExecutor(
            repository=repository,
            uploader=uploader,
            batch_size=settings.queue.batch_size,
        )
        worker = SyncWorker(
            repository=repository,
            executor=executor,
            followup_delay_seconds=settings.schedule.followup_delay_seconds,
            stale_in_progress_seconds=settings.queue.stale_in_progress_seconds,
            completed_retention=timedelta(days=settings.queue.completed_retention_days),
            failed_retention=timedelta(days=settings.queue.failed_retention_days),
        )
        reachability = ReachabilityMonitor(
            reachability_check,
            check_url=settings.reachability.check_url,
            expected_status=settings.reachability.expected_status,
        )
        scheduler = None
        if with_scheduler:
            scheduler = BackgroundSyncScheduler(
                worker.run_pass,
                reachability,
                timer_factory=timer_factory,
                backoff_base_seconds=settings.schedule.backoff_base_seconds,
                backoff_max_seconds=settings.schedule.backoff_max_seconds,
                max_pass_attempts=settings.schedule.max_pass_attempts,
            )
            worker.scheduler = scheduler
        factory = SyncTaskFactory(
            repository=repository,
            scheduler=scheduler,
            reachability=reachability,
            max_retries=settings.queue.max_retries,
        )
        return cls(
            settings=settings,
            repository=repository,
            uploader=uploader,
            executor=executor,
            worker=worker,
            reachability=reachability,
            scheduler=scheduler,
            factory=factory,
        )

    def start(self, *, poll_reachability: bool = True) -> None:
        """Arm the periodic cadence and begin watching the network."""

        if self.scheduler is None:
            raise RuntimeError("Runtime was built without a scheduler.")
        if self._started:
            return
        self._started = True
        if poll_reachability:
            self.reachability.start_polling(self.settings.reachability.poll_seconds)
        self.scheduler.schedule_periodic(self.settings.schedule.periodic_interval_seconds)
        logger.info(
            "Sync service started: collector=%s interval=%.0fs",
            self.settings.collector.url,
            self.settings.schedule.periodic_interval_seconds,
        )

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_all()
        self.reachability.stop()
        self._started = False

    def close(self) -> None:
        self.stop()
        self.uploader.close()
        self.repository.close()

    def __enter__(self) -> SyncRuntime:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
