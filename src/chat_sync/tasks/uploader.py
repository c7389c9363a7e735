"""Collector client that wraps queued payloads in the batch envelope."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from chat_sync import __version__
from chat_sync.tasks.failure_classifier import classify_upload_failure
from chat_sync.tasks.identity import InstallationIdentity
from chat_sync.tasks.models import (
    BatchEnvelope,
    BatchItem,
    BatchItemError,
    BatchResponse,
    UploadResult,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_PATH = "log-batch"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = f"chat-sync/{__version__}"


class MalformedResponseError(ValueError):
    """Collector answered with a body that is not a batch response."""


class BatchUploader:
    """Sends batch envelopes to the collector and interprets the reply.

    Every call uses the same envelope shape: `batch` is a list even for a single
    item. Failures are returned as `UploadResult` values, never raised.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        identity: InstallationIdentity,
        batch_path: str = DEFAULT_BATCH_PATH,
        device_info: str | None = None,
        app_version: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        terminal_on_client_error: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.identity = identity
        self.batch_path = batch_path
        self.device_info = device_info
        self.app_version = app_version
        self.terminal_on_client_error = terminal_on_client_error
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            transport=transport,
        )

    def build_envelope(self, items: Sequence[BatchItem]) -> BatchEnvelope:
        return BatchEnvelope(
            user_id=self.identity.user_id,
            batch=list(items),
            device_info=self.device_info,
            app_version=self.app_version,
        )

    def upload(self, items: Sequence[BatchItem]) -> UploadResult:
        """Send all items in one request."""

        if not items:
            raise ValueError("Batch upload requires at least one item.")
        envelope = self.build_envelope(items)
        try:
            response = self._client.post(self.batch_path, json=envelope.to_wire())
        except httpx.TimeoutException:
            logger.warning("Timeout uploading batch of %d item(s)", len(items))
            return self._failure(status_code=None, timed_out=True, error="Request timed out")
        except httpx.HTTPError as exc:
            logger.warning("Transport error uploading batch: %s", exc)
            return self._failure(status_code=None, error=f"Transport error: {exc}")

        if not response.is_success:
            logger.warning("Batch upload rejected with HTTP %d", response.status_code)
            error = f"HTTP {response.status_code}"
            detail = _rejection_detail(response)
            if detail:
                error = f"{error}: {detail}"
            return self._failure(status_code=response.status_code, error=error)

        try:
            parsed = parse_batch_response(response.json())
        except ValueError as exc:
            return self._failure(
                status_code=response.status_code,
                error=f"Malformed collector response: {exc}",
            )
        if not parsed.success:
            return UploadResult(
                ok=False,
                status_code=response.status_code,
                response=parsed,
                failure_class=classify_upload_failure(
                    status_code=response.status_code,
                ).failure_class,
                error=parsed.message or "Collector reported success=false",
            )
        logger.debug("Batch upload accepted: %s", parsed.message)
        return UploadResult(ok=True, status_code=response.status_code, response=parsed)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BatchUploader:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _failure(
        self,
        *,
        status_code: int | None,
        error: str,
        timed_out: bool = False,
    ) -> UploadResult:
        classification = classify_upload_failure(
            status_code=status_code,
            timed_out=timed_out,
            terminal_on_client_error=self.terminal_on_client_error,
        )
        return UploadResult(
            ok=False,
            status_code=status_code,
            failure_class=classification.failure_class,
            permanent=classification.permanent,
            error=error,
        )


def batch_item_from_payload(payload_type: str, payload_json: str) -> BatchItem:
    """Decode a stored payload into a batch item; raises ValueError if not an object."""

    data = json.loads(payload_json)
    if not isinstance(data, dict):
        raise ValueError(f"Payload must be a JSON object, got {type(data).__name__}.")
    return BatchItem(type=payload_type, data=data)


def parse_batch_response(body: Any) -> BatchResponse:
    if not isinstance(body, dict):
        raise MalformedResponseError("response body is not an object")
    success = body.get("success")
    if not isinstance(success, bool):
        raise MalformedResponseError("missing boolean 'success' field")

    details: list[BatchItemError] = []
    raw_details = body.get("details")
    if isinstance(raw_details, list):
        details.extend(
            BatchItemError(type=str(entry.get("type", "")), error=str(entry.get("error", "")))
            for entry in raw_details
            if isinstance(entry, dict)
        )
    message = body.get("message")
    if not isinstance(message, str):
        message = body.get("error") if isinstance(body.get("error"), str) else None
    return BatchResponse(
        success=success,
        message=message,
        processed=body.get("processed") if isinstance(body.get("processed"), int) else None,
        errors=body.get("errors") if isinstance(body.get("errors"), int) else None,
        details=details,
    )


def _rejection_detail(response: httpx.Response) -> str | None:
    try:
        return parse_batch_response(response.json()).message
    except ValueError:
        return None
