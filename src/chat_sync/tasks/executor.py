"""Executes sync tasks against the collector and records their outcome."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime

from chat_sync.storage.common import utc_now
from chat_sync.tasks.models import (
    BatchItem,
    FailureClass,
    PayloadType,
    SyncStatus,
    SyncTaskView,
    UploadResult,
    record_failure,
)
from chat_sync.tasks.repository import SyncTaskRepository
from chat_sync.tasks.uploader import BatchUploader, batch_item_from_payload

logger = logging.getLogger(__name__)


class SyncExecutor:
    """Drives PENDING -> IN_PROGRESS -> COMPLETED | PENDING | FAILED transitions.

    Tasks are processed strictly one after another. Upload failures never escape
    `execute_task`; they become a `False` result plus persisted task state.
    Store errors do propagate, since nothing can be retried without durable state.
    """

    def __init__(
        self,
        *,
        repository: SyncTaskRepository,
        uploader: BatchUploader,
        batch_size: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1.")
        self.repository = repository
        self.uploader = uploader
        self.batch_size = batch_size
        self._clock = clock
        self._handlers: dict[PayloadType, Callable[[SyncTaskView], UploadResult]] = {
            PayloadType.MESSAGE: self._sync_message,
            PayloadType.CONVERSATION: self._sync_conversation,
            PayloadType.USER_ACTION: self._sync_user_action,
        }

    def execute_task(self, task_id: str) -> bool:
        """Run one task; returns whether it is delivered."""

        task = self.repository.get(task_id)
        if task is None:
            return False
        if not self._is_eligible(task):
            return task.status == SyncStatus.COMPLETED

        claimed = self.repository.claim(task_id, now=self._clock())
        if claimed is None:
            logger.debug("Sync task already claimed elsewhere: %s", task_id)
            return False
        try:
            result = self._dispatch(claimed)
        except Exception as error:  # noqa: BLE001
            logger.exception("Error executing sync task %s", task_id)
            result = _unexpected_error_result(error)
        return self._apply_result(claimed, result)

    def execute_pending_tasks(self) -> int:
        """Execute a snapshot of all PENDING tasks; returns the success count."""

        pending = self.repository.list_by_status(SyncStatus.PENDING)
        succeeded = self._execute_all(pending)
        logger.info("Executed %d tasks, %d succeeded", len(pending), succeeded)
        return succeeded

    def retry_failed_tasks(self) -> int:
        """Execute FAILED tasks still under their retry budget."""

        retryable = self.repository.list_retryable()
        succeeded = self._execute_all(retryable)
        logger.info("Retried %d tasks, %d succeeded", len(retryable), succeeded)
        return succeeded

    def execute_message_batch(self, task_ids: Sequence[str]) -> int:
        """Upload several MESSAGE tasks in one envelope; one outcome applies to all."""

        claimed: list[SyncTaskView] = []
        items: list[BatchItem] = []
        succeeded = 0
        for task_id in task_ids:
            task = self.repository.get(task_id)
            if task is None or not self._is_eligible(task):
                continue
            if task.payload_type != PayloadType.MESSAGE.value:
                succeeded += int(self.execute_task(task_id))
                continue
            in_progress = self.repository.claim(task_id, now=self._clock())
            if in_progress is None:
                continue
            try:
                item = batch_item_from_payload(in_progress.payload_type, in_progress.payload_json)
            except ValueError as error:
                self._apply_result(in_progress, _invalid_payload_result(error))
                continue
            claimed.append(in_progress)
            items.append(item)

        if not claimed:
            return succeeded
        try:
            result = self.uploader.upload(items)
        except Exception as error:  # noqa: BLE001
            logger.exception("Error uploading batch of %d sync tasks", len(claimed))
            result = _unexpected_error_result(error)
        for in_progress in claimed:
            if self._apply_result(in_progress, result):
                succeeded += 1
        return succeeded

    def _execute_all(self, tasks: list[SyncTaskView]) -> int:
        if self.batch_size == 1:
            return sum(1 for task in tasks if self.execute_task(task.task_id))

        succeeded = 0
        message_type = PayloadType.MESSAGE.value
        messages = [task.task_id for task in tasks if task.payload_type == message_type]
        others = [task.task_id for task in tasks if task.payload_type != message_type]
        for start in range(0, len(messages), self.batch_size):
            succeeded += self.execute_message_batch(messages[start : start + self.batch_size])
        succeeded += sum(1 for task_id in others if self.execute_task(task_id))
        return succeeded

    def _is_eligible(self, task: SyncTaskView) -> bool:
        if task.status == SyncStatus.PENDING:
            return True
        return task.is_retryable

    def _dispatch(self, task: SyncTaskView) -> UploadResult:
        try:
            payload_type = PayloadType(task.payload_type)
        except ValueError:
            logger.warning("Unknown payload type: %s", task.payload_type)
            return UploadResult(
                ok=False,
                failure_class=FailureClass.UNSUPPORTED_PAYLOAD,
                error=f"Unsupported payload type: {task.payload_type}",
            )
        return self._handlers[payload_type](task)

    def _apply_result(self, task: SyncTaskView, result: UploadResult) -> bool:
        if result.ok:
            self.repository.update(
                replace(task, status=SyncStatus.COMPLETED, updated_at=self._clock()),
            )
            logger.debug("Sync task completed: %s", task.task_id)
            return True

        failed = record_failure(
            task,
            error_message=result.error or "Sync execution failed",
            failure_class=result.failure_class or FailureClass.TRANSPORT,
            now=self._clock(),
            permanent=result.permanent,
        )
        self.repository.update(failed)
        if failed.status == SyncStatus.FAILED:
            logger.error(
                "Sync task permanently failed: %s, error: %s",
                task.task_id,
                failed.error_message,
            )
        else:
            logger.warning(
                "Sync task failed, will retry: %s, attempt: %d",
                task.task_id,
                failed.retry_count,
            )
        return False

    def _sync_message(self, task: SyncTaskView) -> UploadResult:
        try:
            item = batch_item_from_payload(task.payload_type, task.payload_json)
        except ValueError as error:
            return _invalid_payload_result(error)
        return self.uploader.upload([item])

    def _sync_conversation(self, task: SyncTaskView) -> UploadResult:
        logger.debug("Syncing conversation: %s", task.task_id)
        return UploadResult(ok=True)

    def _sync_user_action(self, task: SyncTaskView) -> UploadResult:
        logger.debug("Syncing user action: %s", task.task_id)
        return UploadResult(ok=True)


def _unexpected_error_result(error: Exception) -> UploadResult:
    return UploadResult(
        ok=False,
        failure_class=FailureClass.TRANSPORT,
        error=str(error) or "Unknown error",
    )


def _invalid_payload_result(error: ValueError) -> UploadResult:
    return UploadResult(
        ok=False,
        failure_class=FailureClass.UNSUPPORTED_PAYLOAD,
        permanent=True,
        error=f"Invalid payload: {error}",
    )
