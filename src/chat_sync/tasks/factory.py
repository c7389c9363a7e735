"""Creates sync tasks and nudges the scheduler when the collector is reachable."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from chat_sync.tasks.models import DEFAULT_MAX_RETRIES, PayloadType, SyncTaskCreate
from chat_sync.tasks.reachability import ReachabilityMonitor
from chat_sync.tasks.repository import SyncTaskRepository
from chat_sync.tasks.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


class SyncTaskFactory:
    """Persist-then-schedule entry point for new work.

    Only the persist step may raise to the caller. Scheduling is advisory: the
    periodic pass picks up the task even if the immediate request is lost.
    """

    def __init__(
        self,
        *,
        repository: SyncTaskRepository,
        scheduler: SyncScheduler | None = None,
        reachability: ReachabilityMonitor | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.reachability = reachability
        self.max_retries = max_retries

    def create(
        self,
        payload_type: PayloadType | str,
        payload_data: Mapping[str, Any],
        priority: int = 0,
    ) -> str:
        """Persist a PENDING task and return its id."""

        resolved_type = PayloadType(payload_type)
        task_id = str(uuid4())
        self.repository.insert(
            SyncTaskCreate(
                task_id=task_id,
                payload_type=resolved_type,
                payload_json=json.dumps(dict(payload_data), ensure_ascii=False),
                priority=priority,
                max_retries=self.max_retries,
            ),
        )
        logger.debug("Created sync task: %s, type: %s", task_id, resolved_type.value)
        self._request_immediate_sync()
        return task_id

    def _request_immediate_sync(self) -> None:
        if self.scheduler is None or self.reachability is None:
            return
        try:
            if self.reachability.reports_reachable():
                self.scheduler.schedule_immediate()
        except Exception as error:  # noqa: BLE001
            logger.warning("Failed to schedule immediate sync: %s", error)
