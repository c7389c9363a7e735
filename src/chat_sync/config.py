"""Runtime configuration for the sync queue."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from chat_sync import __version__
from chat_sync.tasks.reachability import DEFAULT_CHECK_URL, DEFAULT_EXPECTED_STATUS
from chat_sync.tasks.uploader import DEFAULT_BATCH_PATH


@dataclass(slots=True)
class CollectorSettings:
    """Remote collector endpoint settings."""

    url: str = ""
    batch_path: str = DEFAULT_BATCH_PATH
    request_timeout_seconds: float = 30.0
    terminal_on_client_error: bool = False
    app_version: str = __version__


@dataclass(slots=True)
class QueueSettings:
    """Retry budget, batching and retention settings."""

    max_retries: int = 3
    batch_size: int = 1
    stale_in_progress_seconds: int = 600
    completed_retention_days: int = 7
    failed_retention_days: int = 1


@dataclass(slots=True)
class ScheduleSettings:
    """Background pass cadence and backoff."""

    periodic_interval_seconds: float = 900.0
    followup_delay_seconds: float = 300.0
    backoff_base_seconds: float = 10.0
    backoff_max_seconds: float = 18_000.0
    max_pass_attempts: int = 3


@dataclass(slots=True)
class ReachabilitySettings:
    """Network validation probe."""

    check_url: str = DEFAULT_CHECK_URL
    expected_status: int = DEFAULT_EXPECTED_STATUS
    poll_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".chat_sync.db")
    sqlite_busy_timeout_ms: int = 5_000
    collector: CollectorSettings = field(default_factory=CollectorSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    reachability: ReachabilitySettings = field(default_factory=ReachabilitySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("CHAT_SYNC_DB_PATH", ".chat_sync.db")),
            sqlite_busy_timeout_ms=int(os.getenv("CHAT_SYNC_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            collector=CollectorSettings(
                url=os.getenv("CHAT_SYNC_COLLECTOR_URL", "").strip(),
                batch_path=os.getenv("CHAT_SYNC_BATCH_PATH", DEFAULT_BATCH_PATH).strip(),
                request_timeout_seconds=float(
                    os.getenv("CHAT_SYNC_REQUEST_TIMEOUT_SECONDS", "30"),
                ),
                terminal_on_client_error=_env_bool(
                    "CHAT_SYNC_TERMINAL_ON_CLIENT_ERROR",
                    default=False,
                ),
                app_version=os.getenv("CHAT_SYNC_APP_VERSION", __version__),
            ),
            queue=QueueSettings(
                max_retries=int(os.getenv("CHAT_SYNC_MAX_RETRIES", "3")),
                batch_size=int(os.getenv("CHAT_SYNC_BATCH_SIZE", "1")),
                stale_in_progress_seconds=int(
                    os.getenv("CHAT_SYNC_STALE_IN_PROGRESS_SECONDS", "600"),
                ),
                completed_retention_days=int(
                    os.getenv("CHAT_SYNC_COMPLETED_RETENTION_DAYS", "7"),
                ),
                failed_retention_days=int(os.getenv("CHAT_SYNC_FAILED_RETENTION_DAYS", "1")),
            ),
            schedule=ScheduleSettings(
                periodic_interval_seconds=float(
                    os.getenv("CHAT_SYNC_PERIODIC_INTERVAL_SECONDS", "900"),
                ),
                followup_delay_seconds=float(
                    os.getenv("CHAT_SYNC_FOLLOWUP_DELAY_SECONDS", "300"),
                ),
                backoff_base_seconds=float(os.getenv("CHAT_SYNC_BACKOFF_BASE_SECONDS", "10")),
                backoff_max_seconds=float(os.getenv("CHAT_SYNC_BACKOFF_MAX_SECONDS", "18000")),
                max_pass_attempts=int(os.getenv("CHAT_SYNC_MAX_PASS_ATTEMPTS", "3")),
            ),
            reachability=ReachabilitySettings(
                check_url=os.getenv("CHAT_SYNC_REACHABILITY_URL", DEFAULT_CHECK_URL).strip(),
                expected_status=int(
                    os.getenv(
                        "CHAT_SYNC_REACHABILITY_EXPECTED_STATUS",
                        str(DEFAULT_EXPECTED_STATUS),
                    ),
                ),
                poll_seconds=float(os.getenv("CHAT_SYNC_REACHABILITY_POLL_SECONDS", "30")),
            ),
        )

    def validate_queue(self) -> None:
        """Raise configuration error for settings used by local queue operations."""

        if self.queue.max_retries < 1:
            raise ValueError("CHAT_SYNC_MAX_RETRIES must be >= 1.")
        if self.queue.batch_size < 1:
            raise ValueError("CHAT_SYNC_BATCH_SIZE must be >= 1.")
        if self.queue.completed_retention_days < 0:
            raise ValueError("CHAT_SYNC_COMPLETED_RETENTION_DAYS must be >= 0.")
        if self.queue.failed_retention_days < 0:
            raise ValueError("CHAT_SYNC_FAILED_RETENTION_DAYS must be >= 0.")
        if self.queue.stale_in_progress_seconds < 0:
            raise ValueError("CHAT_SYNC_STALE_IN_PROGRESS_SECONDS must be >= 0.")

    def validate_for_network(self) -> None:
        """Raise configuration error if the collector or schedule is unusable."""

        self.validate_queue()
        if not self.collector.url:
            raise ValueError(
                "Collector URL is required. Set CHAT_SYNC_COLLECTOR_URL.",
            )
        _validate_http_url(self.collector.url, label="collector URL")
        _validate_http_url(self.reachability.check_url, label="reachability URL")
        if self.collector.request_timeout_seconds <= 0:
            raise ValueError("CHAT_SYNC_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.schedule.periodic_interval_seconds <= 0:
            raise ValueError("CHAT_SYNC_PERIODIC_INTERVAL_SECONDS must be > 0.")
        if self.schedule.followup_delay_seconds < 0:
            raise ValueError("CHAT_SYNC_FOLLOWUP_DELAY_SECONDS must be >= 0.")
        if self.schedule.backoff_base_seconds <= 0:
            raise ValueError("CHAT_SYNC_BACKOFF_BASE_SECONDS must be > 0.")
        if self.schedule.backoff_max_seconds < self.schedule.backoff_base_seconds:
            raise ValueError(
                "CHAT_SYNC_BACKOFF_MAX_SECONDS must be >= CHAT_SYNC_BACKOFF_BASE_SECONDS.",
            )
        if self.schedule.max_pass_attempts < 1:
            raise ValueError("CHAT_SYNC_MAX_PASS_ATTEMPTS must be >= 1.")
        if self.reachability.poll_seconds <= 0:
            raise ValueError("CHAT_SYNC_REACHABILITY_POLL_SECONDS must be > 0.")


def _validate_http_url(value: str, *, label: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {label}: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
