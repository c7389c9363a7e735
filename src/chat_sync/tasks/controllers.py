"""Controllers for sync queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from chat_sync.config import Settings
from chat_sync.tasks.factory import SyncTaskFactory
from chat_sync.tasks.models import SyncStatus
from chat_sync.tasks.repository import SyncTaskRepository
from chat_sync.tasks.runtime import SyncRuntime


@dataclass(slots=True)
class TasksEnqueueCommand:
    """CLI input for task creation."""

    db_path: Path | None
    payload_type: str
    data: str
    priority: int = 0


@dataclass(slots=True)
class TasksListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TasksInspectCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TasksDbCommand:
    """CLI input for commands that only need the store."""

    db_path: Path | None


@dataclass(slots=True)
class TasksRunCommand:
    """CLI input for one manual sync pass."""

    db_path: Path | None
    skip_reachability: bool = False


@dataclass(slots=True)
class TasksServeCommand:
    db_path: Path | None


class TasksCliController:
    """Coordinates queue inspection, manual passes and the background service."""

    def enqueue(self, command: TasksEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_queue()
        payload = _parse_payload(command.data)
        with _repository(settings) as repository:
            factory = SyncTaskFactory(
                repository=repository,
                max_retries=settings.queue.max_retries,
            )
            task_id = factory.create(command.payload_type, payload, priority=command.priority)
            task = repository.get(task_id)
        status = task.status.value if task is not None else "-"
        return [
            f"Task enqueued: task_id={task_id} type={command.payload_type} status={status}",
        ]

    def list_tasks(self, command: TasksListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_all(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} type={task.payload_type} status={task.status.value} "
                f"priority={task.priority} retries={task.retry_count}/{task.max_retries} "
                f"updated_at={task.updated_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: TasksInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.get(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        return [
            f"Task: {task.task_id}",
            f"Type: {task.payload_type}",
            f"Status: {task.status.value}",
            f"Priority: {task.priority}",
            f"Retries: {task.retry_count}/{task.max_retries}",
            f"Failure class: {task.failure_class.value if task.failure_class else '-'}",
            f"Error: {task.error_message or '-'}",
            f"Created: {task.created_at.isoformat()}",
            f"Updated: {task.updated_at.isoformat()}",
            f"Payload: {task.payload_json}",
        ]

    def stats(self, command: TasksDbCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            counts = repository.count_by_status()
            pending = repository.count_pending()
            retryable = len(repository.list_retryable())

        lines = [
            f"Active tasks: {pending}",
            f"Retryable failed tasks: {retryable}",
        ]
        lines.extend(f"  {status.value}: {counts[status]}" for status in SyncStatus)
        return lines

    def sweep(self, command: TasksDbCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_queue()
        with _repository(settings) as repository:
            purged = repository.purge_terminal(
                completed_retention=timedelta(days=settings.queue.completed_retention_days),
                failed_retention=timedelta(days=settings.queue.failed_retention_days),
            )
        return [f"Purged tasks: {purged}"]

    def recover(self, command: TasksDbCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_queue()
        with _repository(settings) as repository:
            recovered = repository.recover_stale_in_progress(
                stale_after=timedelta(seconds=settings.queue.stale_in_progress_seconds),
            )
        return [f"Recovered stale tasks: {recovered}"]

    def run_pass(self, command: TasksRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with SyncRuntime.build(settings, with_scheduler=False) as runtime:
            if not command.skip_reachability and not runtime.reachability.is_reachable():
                return ["Network unreachable, sync pass skipped."]
            summary = runtime.worker.run_pass()

        return [
            "Sync pass summary: "
            f"recovered={summary.recovered} pending_succeeded={summary.pending_succeeded} "
            f"retried_succeeded={summary.retried_succeeded} purged={summary.purged} "
            f"remaining={summary.remaining}",
        ]

    def serve(self, command: TasksServeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with SyncRuntime.build(settings) as runtime:
            runtime.start()
            signal_name = runtime.worker.serve()
        return [f"Sync service stopped: signal={signal_name or '-'}"]


def _parse_payload(raw: str) -> dict[str, object]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"Payload data is not valid JSON: {error.msg}") from error
    if not isinstance(payload, dict):
        raise ValueError("Payload data must be a JSON object.")
    return payload


def _parse_status(value: str | None) -> SyncStatus | None:
    if value is None:
        return None
    return SyncStatus(value.strip().upper())


@contextmanager
def _repository(settings: Settings) -> Iterator[SyncTaskRepository]:
    repository = SyncTaskRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
