"""Durable task store backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from pathlib import Path

from sqlalchemy import ColumnElement, and_, func, or_
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from chat_sync.storage.alembic_runner import upgrade_head
from chat_sync.storage.common import (
    build_sqlite_engine,
    connect_sqlite_with_policy,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from chat_sync.storage.sqlmodel_models import InstallationMetadata, SyncTaskRow
from chat_sync.tasks.models import (
    ACTIVE_STATUSES,
    FailureClass,
    SyncStatus,
    SyncTaskCreate,
    SyncTaskView,
    record_failure,
)

logger = logging.getLogger(__name__)

COMPLETED_RETENTION = timedelta(days=7)
FAILED_RETENTION = timedelta(days=1)
INTERRUPTED_ERROR_MESSAGE = "Interrupted while in progress"


class CountSubscription:
    """Handle returned by `observe_pending_count`; call `close()` to stop delivery."""

    def __init__(self, owner: SyncTaskRepository, callback: Callable[[int], None]) -> None:
        self._owner = owner
        self.callback = callback
        self.last_value: int | None = None
        self.closed = False

    def deliver(self, value: int) -> None:
        if self.closed or value == self.last_value:
            return
        self.last_value = value
        self.callback(value)

    def close(self) -> None:
        self.closed = True
        self._owner._remove_subscription(self)


class SyncTaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._connection = connect_sqlite_with_policy(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )
        self._subscriptions: list[CountSubscription] = []
        self._subscriptions_lock = threading.Lock()

    def close(self) -> None:
        """Close underlying DB resources."""

        with self._subscriptions_lock:
            self._subscriptions.clear()
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def insert(self, payload: SyncTaskCreate) -> SyncTaskView:
        """Persist a new PENDING task."""

        return self.insert_many([payload])[0]

    def insert_many(self, payloads: Iterable[SyncTaskCreate]) -> list[SyncTaskView]:
        """Persist several new PENDING tasks in one transaction."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            rows = [
                SyncTaskRow(
                    id=payload.task_id,
                    payload_type=payload.payload_type.value,
                    payload_json=payload.payload_json,
                    status=SyncStatus.PENDING.value,
                    priority=payload.priority,
                    retry_count=0,
                    max_retries=payload.max_retries,
                    created_at=now,
                    updated_at=now,
                )
                for payload in payloads
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
            views = [_to_task_view(row) for row in rows]
        self._notify_pending_count()
        return views

    def update(self, task: SyncTaskView) -> bool:
        """Replace every mutable column of the task with the given view."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(SyncTaskRow)
                .where(col(SyncTaskRow.id) == task.task_id)
                .values(
                    payload_type=task.payload_type,
                    payload_json=task.payload_json,
                    status=task.status.value,
                    priority=task.priority,
                    retry_count=task.retry_count,
                    max_retries=task.max_retries,
                    failure_class=(
                        task.failure_class.value if task.failure_class is not None else None
                    ),
                    error_message=task.error_message,
                    updated_at=to_db_datetime(task.updated_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        self._notify_pending_count()
        return True

    def claim(self, task_id: str, *, now: datetime | None = None) -> SyncTaskView | None:
        """Atomically move a runnable task to IN_PROGRESS.

        Returns the claimed task, or None when it is missing, terminal or already
        claimed by another worker.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(SyncTaskRow)
                .where(
                    col(SyncTaskRow.id) == task_id,
                    or_(
                        col(SyncTaskRow.status) == SyncStatus.PENDING.value,
                        and_(
                            col(SyncTaskRow.status) == SyncStatus.FAILED.value,
                            col(SyncTaskRow.retry_count) < col(SyncTaskRow.max_retries),
                        ),
                    ),
                )
                .values(
                    status=SyncStatus.IN_PROGRESS.value,
                    updated_at=to_db_datetime(now or utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            row = session.exec(select(SyncTaskRow).where(SyncTaskRow.id == task_id)).one()
            claimed = _to_task_view(row)
        self._notify_pending_count()
        return claimed

    def get(self, task_id: str) -> SyncTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(SyncTaskRow).where(SyncTaskRow.id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_by_status(self, status: SyncStatus) -> list[SyncTaskView]:
        """Tasks in one status, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncTaskRow)
                .where(SyncTaskRow.status == status.value)
                .order_by(col(SyncTaskRow.created_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_retryable(self) -> list[SyncTaskView]:
        """FAILED tasks still under their retry budget, least recently touched first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncTaskRow)
                .where(
                    SyncTaskRow.status == SyncStatus.FAILED.value,
                    col(SyncTaskRow.retry_count) < col(SyncTaskRow.max_retries),
                )
                .order_by(col(SyncTaskRow.updated_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_by_type(self, payload_type: str, status: SyncStatus) -> list[SyncTaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncTaskRow)
                .where(
                    SyncTaskRow.payload_type == payload_type,
                    SyncTaskRow.status == status.value,
                )
                .order_by(col(SyncTaskRow.created_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_all(self, *, status: SyncStatus | None = None, limit: int = 50) -> list[SyncTaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(SyncTaskRow).order_by(col(SyncTaskRow.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(SyncTaskRow.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def count_pending(self) -> int:
        """Number of PENDING and IN_PROGRESS tasks."""

        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(SyncTaskRow)
                .where(col(SyncTaskRow.status).in_([status.value for status in ACTIVE_STATUSES])),
            ).one()

    def count_by_status(self) -> dict[SyncStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncTaskRow.status, func.count()).group_by(SyncTaskRow.status),
            ).all()
        counts = dict.fromkeys(SyncStatus, 0)
        for status, count in rows:
            counts[SyncStatus(status)] = count
        return counts

    def observe_pending_count(self, callback: Callable[[int], None]) -> CountSubscription:
        """Push the active-task count now and after every write that changes it."""

        subscription = CountSubscription(self, callback)
        with self._subscriptions_lock:
            self._subscriptions.append(subscription)
        subscription.deliver(self.count_pending())
        return subscription

    def delete(self, task_id: str) -> bool:
        return self.delete_where(col(SyncTaskRow.id) == task_id) == 1

    def delete_where(self, *conditions: ColumnElement[bool]) -> int:
        """Delete every task matching all conditions in one statement."""

        if not conditions:
            raise ValueError("delete_where requires at least one condition.")
        with Session(self.engine) as session:
            result = session.exec(sa_delete(SyncTaskRow).where(*conditions))
            session.commit()
            deleted = result.rowcount or 0
        if deleted:
            self._notify_pending_count()
        return deleted

    def purge_terminal(
        self,
        *,
        now: datetime | None = None,
        completed_retention: timedelta = COMPLETED_RETENTION,
        failed_retention: timedelta = FAILED_RETENTION,
    ) -> int:
        """Retention sweep over COMPLETED and retry-exhausted FAILED tasks."""

        reference = now or utc_now()
        completed = self.delete_where(
            col(SyncTaskRow.status) == SyncStatus.COMPLETED.value,
            col(SyncTaskRow.updated_at) < to_db_datetime(reference - completed_retention),
        )
        failed = self.delete_where(
            col(SyncTaskRow.status) == SyncStatus.FAILED.value,
            col(SyncTaskRow.retry_count) >= col(SyncTaskRow.max_retries),
            col(SyncTaskRow.updated_at) < to_db_datetime(reference - failed_retention),
        )
        if completed or failed:
            logger.debug("Purged %d completed and %d failed sync tasks", completed, failed)
        return completed + failed

    def recover_stale_in_progress(
        self,
        *,
        stale_after: timedelta,
        now: datetime | None = None,
    ) -> int:
        """Count interrupted IN_PROGRESS tasks as a failed attempt and release them."""

        reference = now or utc_now()
        cutoff = to_db_datetime(reference - stale_after)
        recovered = 0
        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncTaskRow).where(
                    SyncTaskRow.status == SyncStatus.IN_PROGRESS.value,
                    col(SyncTaskRow.updated_at) < cutoff,
                ),
            ).all()
            for row in rows:
                failed = record_failure(
                    _to_task_view(row),
                    error_message=INTERRUPTED_ERROR_MESSAGE,
                    failure_class=FailureClass.INTERRUPTED,
                    now=reference,
                )
                result = session.exec(
                    sa_update(SyncTaskRow)
                    .where(
                        col(SyncTaskRow.id) == row.id,
                        col(SyncTaskRow.status) == SyncStatus.IN_PROGRESS.value,
                    )
                    .values(
                        status=failed.status.value,
                        retry_count=failed.retry_count,
                        failure_class=FailureClass.INTERRUPTED.value,
                        error_message=failed.error_message,
                        updated_at=to_db_datetime(reference),
                    ),
                )
                recovered += result.rowcount or 0
            session.commit()
        if recovered:
            logger.warning("Recovered %d stale in-progress sync tasks", recovered)
            self._notify_pending_count()
        return recovered

    def get_metadata(self, key: str) -> str | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(InstallationMetadata).where(InstallationMetadata.key == key),
            ).one_or_none()
            return row.value if row is not None else None

    def set_metadata_if_absent(self, key: str, value: str) -> str:
        """Store value under key unless present; return the effective value."""

        with Session(self.engine) as session:
            row = session.exec(
                select(InstallationMetadata).where(InstallationMetadata.key == key),
            ).one_or_none()
            if row is not None:
                return row.value
            session.add(
                InstallationMetadata(key=key, value=value, created_at=to_db_datetime(utc_now())),
            )
            session.commit()
        return value

    def _remove_subscription(self, subscription: CountSubscription) -> None:
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify_pending_count(self) -> None:
        with self._subscriptions_lock:
            subscriptions = list(self._subscriptions)
        if not subscriptions:
            return
        count = self.count_pending()
        for subscription in subscriptions:
            subscription.deliver(count)


def _to_task_view(row: SyncTaskRow) -> SyncTaskView:
    return SyncTaskView(
        task_id=row.id,
        payload_type=row.payload_type,
        payload_json=row.payload_json,
        status=SyncStatus(row.status),
        priority=row.priority,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        error_message=row.error_message,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
