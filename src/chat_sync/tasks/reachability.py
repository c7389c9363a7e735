"""Network reachability probe with de-duplicated change notifications."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CHECK_URL = "http://connectivitycheck.gstatic.com/generate_204"
DEFAULT_EXPECTED_STATUS = 204
DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class ReachabilityState:
    """Raw link connectivity plus validated internet access."""

    connected: bool
    validated: bool

    @property
    def reachable(self) -> bool:
        return self.connected and self.validated


UNREACHABLE = ReachabilityState(connected=False, validated=False)


class ReachabilitySubscription:
    def __init__(self, monitor: ReachabilityMonitor, callback: Callable[[bool], None]) -> None:
        self._monitor = monitor
        self.callback = callback

    def close(self) -> None:
        self._monitor._remove_listener(self)


class ReachabilityMonitor:
    """Reports whether the collector can currently be reached.

    A connected network that fails validation (for example a captive portal that
    answers the check URL with a login page) counts as unreachable.
    """

    def __init__(
        self,
        check: Callable[[], ReachabilityState] | None = None,
        *,
        check_url: str = DEFAULT_CHECK_URL,
        expected_status: int = DEFAULT_EXPECTED_STATUS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.check_url = check_url
        self.expected_status = expected_status
        self.timeout_seconds = timeout_seconds
        self._check = check or self._probe_network
        self._transport = transport
        self._lock = threading.Lock()
        self._state: ReachabilityState | None = None
        self._last_reachable: bool | None = None
        self._listeners: list[ReachabilitySubscription] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> ReachabilityState | None:
        return self._state

    def is_reachable(self) -> bool:
        """Point-in-time reachability.

        While the poller runs the last polled state is current enough; otherwise the
        network is checked now.
        """

        if self._thread is not None and self._state is not None:
            return self._state.reachable
        return self.refresh().reachable

    def reports_reachable(self) -> bool:
        """Last known reachability; checks the network only when nothing is known yet."""

        state = self._state
        if state is None:
            state = self.refresh()
        return state.reachable

    def refresh(self) -> ReachabilityState:
        try:
            state = self._check()
        except Exception:  # noqa: BLE001
            logger.debug("Reachability check failed", exc_info=True)
            state = UNREACHABLE
        self.publish(state)
        return state

    def publish(self, state: ReachabilityState) -> None:
        """Record a new state and notify listeners if reachability changed."""

        with self._lock:
            self._state = state
            changed = state.reachable != self._last_reachable
            if changed:
                self._last_reachable = state.reachable
            listeners = list(self._listeners) if changed else []
        if changed:
            logger.debug(
                "Reachability changed: connected=%s validated=%s",
                state.connected,
                state.validated,
            )
        for listener in listeners:
            listener.callback(state.reachable)

    def observe(self, callback: Callable[[bool], None]) -> ReachabilitySubscription:
        """Deliver the current value now and every later change."""

        if self._last_reachable is None:
            self.refresh()
        subscription = ReachabilitySubscription(self, callback)
        with self._lock:
            self._listeners.append(subscription)
            current = bool(self._last_reachable)
        callback(current)
        return subscription

    def start_polling(self, interval_seconds: float) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(interval_seconds,),
            daemon=True,
            name="reachability-poll",
        )
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=5)
        self._thread = None

    def _poll_loop(self, interval_seconds: float) -> None:
        while not self._stop.is_set():
            self.refresh()
            self._stop.wait(timeout=interval_seconds)

    def _remove_listener(self, subscription: ReachabilitySubscription) -> None:
        with self._lock:
            if subscription in self._listeners:
                self._listeners.remove(subscription)

    def _probe_network(self) -> ReachabilityState:
        parsed = urlparse(self.check_url)
        if not parsed.hostname:
            raise ValueError(f"Invalid reachability check URL: {self.check_url!r}")
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            with socket.create_connection((parsed.hostname, port), timeout=self.timeout_seconds):
                pass
        except OSError:
            return UNREACHABLE

        try:
            with httpx.Client(
                timeout=self.timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                response = client.get(self.check_url)
        except httpx.HTTPError as exc:
            logger.debug("Reachability validation failed: %s", exc)
            return ReachabilityState(connected=True, validated=False)
        return ReachabilityState(
            connected=True,
            validated=response.status_code == self.expected_status,
        )
