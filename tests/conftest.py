"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from chat_sync.storage.common import to_db_datetime
from chat_sync.tasks.executor import SyncExecutor
from chat_sync.tasks.identity import InstallationIdentity
from chat_sync.tasks.reachability import ReachabilityMonitor, ReachabilityState
from chat_sync.tasks.repository import SyncTaskRepository
from chat_sync.tasks.uploader import BatchUploader

COLLECTOR_URL = "https://collector.test/api/"
ACCEPTED = (200, {"success": True, "message": "Processed 1 items", "processed": 1, "errors": 0})


class FakeCollector:
    """Scripted collector; each request consumes the next response.

    A response is a `(status, body)` pair or one of the strings "timeout" and
    "connect_error". Once the script is exhausted every request is accepted.
    """

    def __init__(self, responses: list[tuple[int, Any] | str] | None = None) -> None:
        self.responses = list(responses or [])
        self.bodies: list[dict[str, Any]] = []
        self.urls: list[str] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        self.bodies.append(json.loads(request.content))
        response = self.responses.pop(0) if self.responses else ACCEPTED
        if response == "timeout":
            raise httpx.ReadTimeout("collector too slow", request=request)
        if response == "connect_error":
            raise httpx.ConnectError("connection refused", request=request)
        status, body = response
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


class FakeTimerFactory:
    """Records timers instead of starting threads; tests fire them by hand."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def live(self) -> list[FakeTimer]:
        return [
            timer
            for timer in self.timers
            if timer.started and not timer.cancelled and not timer.fired
        ]

    def fire_live(self) -> None:
        for timer in self.live():
            timer.fire()


class SwitchableNetwork:
    """Reachability check whose answer tests flip at will."""

    def __init__(self, *, reachable: bool = True) -> None:
        self.reachable = reachable
        self.checks = 0

    def __call__(self) -> ReachabilityState:
        self.checks += 1
        return ReachabilityState(connected=self.reachable, validated=self.reachable)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SyncTaskRepository]:
    repo = SyncTaskRepository(tmp_path / "sync.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def collector() -> FakeCollector:
    return FakeCollector()


@pytest.fixture()
def identity() -> InstallationIdentity:
    return InstallationIdentity(user_id="user-1")


@pytest.fixture()
def uploader(collector: FakeCollector, identity: InstallationIdentity) -> Iterator[BatchUploader]:
    client = BatchUploader(
        base_url=COLLECTOR_URL,
        identity=identity,
        device_info='{"platform": "test"}',
        app_version="1.2.3",
        transport=collector.transport,
    )
    yield client
    client.close()


@pytest.fixture()
def executor(repository: SyncTaskRepository, uploader: BatchUploader) -> SyncExecutor:
    return SyncExecutor(repository=repository, uploader=uploader)


@pytest.fixture()
def network() -> SwitchableNetwork:
    return SwitchableNetwork()


@pytest.fixture()
def reachability(network: SwitchableNetwork) -> ReachabilityMonitor:
    return ReachabilityMonitor(network)


@pytest.fixture()
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture()
def backdate(repository: SyncTaskRepository) -> Callable[..., None]:
    """Rewrite task timestamps through the raw sqlite connection."""

    def _backdate(
        task_id: str,
        *,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        for column, value in (("created_at", created_at), ("updated_at", updated_at)):
            if value is None:
                continue
            repository._connection.execute(
                f"UPDATE sync_tasks SET {column} = ? WHERE id = ?",  # noqa: S608
                (to_db_datetime(value).isoformat(sep=" "), task_id),
            )
        repository._connection.commit()

    return _backdate
