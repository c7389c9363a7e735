from __future__ import annotations

import json
import logging

import allure
import pytest
from sqlalchemy.exc import OperationalError

from chat_sync.tasks.factory import SyncTaskFactory
from chat_sync.tasks.models import ConversationSyncData, MessageSyncData, PayloadType, SyncStatus
from chat_sync.tasks.repository import SyncTaskRepository

pytestmark = [
    allure.epic("Sync Queue"),
    allure.feature("Task Factory"),
]


class _RecordingScheduler:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.immediate_requests = 0
        self.error = error

    def schedule_immediate(self, delay: float = 0.0) -> None:
        self.immediate_requests += 1
        if self.error is not None:
            raise self.error

    def schedule_periodic(self, interval: float) -> None:
        return None

    def cancel_all(self) -> None:
        return None


def test_create_persists_pending_task_and_requests_immediate_pass(
    repository: SyncTaskRepository,
    reachability,
) -> None:
    scheduler = _RecordingScheduler()
    factory = SyncTaskFactory(
        repository=repository,
        scheduler=scheduler,
        reachability=reachability,
    )

    task_id = factory.create(PayloadType.MESSAGE, {"text": "hi"}, priority=2)

    task = repository.get(task_id)
    assert task is not None
    assert task.status == SyncStatus.PENDING
    assert task.retry_count == 0
    assert task.priority == 2
    assert json.loads(task.payload_json) == {"text": "hi"}
    assert scheduler.immediate_requests == 1


def test_create_while_unreachable_skips_immediate_pass(
    repository: SyncTaskRepository,
    reachability,
    network,
) -> None:
    network.reachable = False
    scheduler = _RecordingScheduler()
    factory = SyncTaskFactory(
        repository=repository,
        scheduler=scheduler,
        reachability=reachability,
    )

    task_id = factory.create("message", {"text": "hi"})

    assert repository.get(task_id) is not None
    assert scheduler.immediate_requests == 0


def test_create_uses_last_known_reachability_without_a_network_check(
    repository: SyncTaskRepository,
    reachability,
    network,
) -> None:
    reachability.refresh()
    scheduler = _RecordingScheduler()
    factory = SyncTaskFactory(
        repository=repository,
        scheduler=scheduler,
        reachability=reachability,
    )

    for index in range(5):
        factory.create(PayloadType.MESSAGE, {"text": f"message {index}"})

    assert network.checks == 1
    assert scheduler.immediate_requests == 5


def test_scheduling_failure_does_not_fail_creation(
    repository: SyncTaskRepository,
    reachability,
    caplog,
) -> None:
    scheduler = _RecordingScheduler(error=RuntimeError("scheduler offline"))
    factory = SyncTaskFactory(
        repository=repository,
        scheduler=scheduler,
        reachability=reachability,
    )

    with caplog.at_level(logging.WARNING, logger="chat_sync.tasks.factory"):
        task_id = factory.create(PayloadType.USER_ACTION, {"action": "copy"})

    assert repository.get(task_id) is not None
    assert "Failed to schedule immediate sync" in caplog.text


def test_unknown_payload_type_is_rejected_before_persisting(
    repository: SyncTaskRepository,
) -> None:
    factory = SyncTaskFactory(repository=repository)

    with pytest.raises(ValueError, match="telemetry"):
        factory.create("telemetry", {"x": 1})

    assert repository.count_pending() == 0


def test_persist_failure_propagates_to_caller(repository: SyncTaskRepository) -> None:
    factory = SyncTaskFactory(repository=repository)
    repository._connection.execute("DROP TABLE sync_tasks")
    repository._connection.commit()

    with pytest.raises(OperationalError, match="sync_tasks"):
        factory.create(PayloadType.MESSAGE, {"text": "hi"})


def test_each_task_gets_a_unique_id_and_configured_budget(
    repository: SyncTaskRepository,
) -> None:
    factory = SyncTaskFactory(repository=repository, max_retries=5)

    first = factory.create(PayloadType.MESSAGE, {"text": "a"})
    second = factory.create(PayloadType.MESSAGE, {"text": "a"})

    assert first != second
    task = repository.get(first)
    assert task is not None
    assert task.max_retries == 5


def test_typed_sync_records_serialize_to_collector_fields(
    repository: SyncTaskRepository,
) -> None:
    factory = SyncTaskFactory(repository=repository)
    message = MessageSyncData(
        message_id="m-1",
        conversation_id="c-1",
        content="hello",
        is_from_user=True,
        timestamp=1_760_000_000_000,
        model_name="gemma-3n",
    )
    conversation = ConversationSyncData(conversation_id="c-1", title="Trip", message_count=2)

    message_id = factory.create(PayloadType.MESSAGE, message.to_payload())
    conversation_id = factory.create(PayloadType.CONVERSATION, conversation.to_payload())

    message_task = repository.get(message_id)
    conversation_task = repository.get(conversation_id)
    assert message_task is not None
    assert conversation_task is not None
    stored_message = json.loads(message_task.payload_json)
    assert stored_message["conversation_id"] == "c-1"
    assert stored_message["is_from_user"] is True
    assert stored_message["tokens_in"] is None
    assert json.loads(conversation_task.payload_json)["title"] == "Trip"
