"""Domain models for the sync task queue."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PayloadType(str, Enum):
    """Closed set of payload variants; the value doubles as the batch item type."""

    MESSAGE = "message"
    CONVERSATION = "conversation"
    USER_ACTION = "user_action"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    REMOTE_REJECTED = "remote_rejected"
    CLIENT_ERROR = "client_error"
    UNSUPPORTED_PAYLOAD = "unsupported_payload"
    INTERRUPTED = "interrupted"


DEFAULT_MAX_RETRIES = 3
ACTIVE_STATUSES = (SyncStatus.PENDING, SyncStatus.IN_PROGRESS)


@dataclass(slots=True)
class SyncTaskCreate:
    """Input payload for inserting a sync task."""

    task_id: str
    payload_type: PayloadType
    payload_json: str
    priority: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES


@dataclass(slots=True)
class SyncTaskView:
    """Readable task view shared by the store, executor and CLI."""

    task_id: str
    payload_type: str
    payload_json: str
    status: SyncStatus
    priority: int
    retry_count: int
    max_retries: int
    failure_class: FailureClass | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @property
    def is_retryable(self) -> bool:
        return self.status == SyncStatus.FAILED and not self.retries_exhausted

    @property
    def is_terminal(self) -> bool:
        return self.status == SyncStatus.COMPLETED or (
            self.status == SyncStatus.FAILED and self.retries_exhausted
        )


@dataclass(slots=True)
class BatchItem:
    """One typed entry of the batch envelope."""

    type: str
    data: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(slots=True)
class BatchEnvelope:
    """Request body accepted by the collector's batch endpoint."""

    user_id: str
    batch: list[BatchItem]
    device_info: str | None = None
    app_version: str | None = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "user_id": self.user_id,
            "batch": [item.to_wire() for item in self.batch],
        }
        if self.device_info is not None:
            body["device_info"] = self.device_info
        if self.app_version is not None:
            body["app_version"] = self.app_version
        return body


@dataclass(slots=True)
class BatchItemError:
    type: str
    error: str


@dataclass(slots=True)
class BatchResponse:
    """Parsed collector response."""

    success: bool
    message: str | None = None
    processed: int | None = None
    errors: int | None = None
    details: list[BatchItemError] = field(default_factory=list)


@dataclass(slots=True)
class UploadResult:
    """Outcome of one collector call; failures are values, not exceptions."""

    ok: bool
    status_code: int | None = None
    response: BatchResponse | None = None
    failure_class: FailureClass | None = None
    permanent: bool = False
    error: str | None = None


@dataclass(slots=True)
class SyncPassSummary:
    """Aggregate counters for one executor pass."""

    recovered: int = 0
    pending_succeeded: int = 0
    retried_succeeded: int = 0
    purged: int = 0
    remaining: int = 0
    rescheduled: bool = False


@dataclass(slots=True)
class MessageSyncData:
    """Message record in the shape the collector stores."""

    message_id: str
    conversation_id: str
    content: str
    is_from_user: bool
    timestamp: int
    tokens_in: int | None = None
    tokens_out: int | None = None
    model_name: str | None = None
    is_voice_input: bool = False
    asr_audio_path: str | None = None
    response_time_ms: int | None = None
    error_message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ConversationSyncData:
    """Conversation aggregate in the shape the collector stores."""

    conversation_id: str
    title: str | None = None
    message_count: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    is_archived: bool = False

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def record_failure(
    task: SyncTaskView,
    *,
    error_message: str,
    failure_class: FailureClass,
    now: datetime,
    permanent: bool = False,
) -> SyncTaskView:
    """Return the task state after one failed execution.

    The retry counter always advances; a permanent failure jumps it to the budget
    so the task is never selected as retryable again.
    """

    retry_count = task.retry_count + 1
    if permanent:
        retry_count = max(retry_count, task.max_retries)
    status = SyncStatus.FAILED if retry_count >= task.max_retries else SyncStatus.PENDING
    return SyncTaskView(
        task_id=task.task_id,
        payload_type=task.payload_type,
        payload_json=task.payload_json,
        status=status,
        priority=task.priority,
        retry_count=retry_count,
        max_retries=task.max_retries,
        failure_class=failure_class,
        error_message=error_message,
        created_at=task.created_at,
        updated_at=now,
    )
