"""Deterministic upload failure classification for executor retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from chat_sync.tasks.models import FailureClass

UPLOAD_FAILURE_CLASSIFIER_VERSION = 1

_TRANSIENT_CLIENT_STATUSES: frozenset[int] = frozenset({408, 425, 429})


@dataclass(slots=True)
class UploadFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    permanent: bool
    reason_code: str

    def to_details(self) -> dict[str, object]:
        return {
            "classifier_version": UPLOAD_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "permanent": self.permanent,
            "reason_code": self.reason_code,
        }


def classify_upload_failure(
    *,
    status_code: int | None,
    timed_out: bool = False,
    terminal_on_client_error: bool = False,
) -> UploadFailureClassification:
    """Classify a failed collector call into a retry class.

    `status_code` is None when no HTTP response was received.
    """

    if timed_out:
        return UploadFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            permanent=False,
            reason_code="request_timeout",
        )
    if status_code is None:
        return UploadFailureClassification(
            failure_class=FailureClass.TRANSPORT,
            permanent=False,
            reason_code="transport_error",
        )
    if 400 <= status_code < 500 and status_code not in _TRANSIENT_CLIENT_STATUSES:  # noqa: PLR2004
        return UploadFailureClassification(
            failure_class=FailureClass.CLIENT_ERROR,
            permanent=terminal_on_client_error,
            reason_code=f"http_{status_code}",
        )
    if 200 <= status_code < 300:  # noqa: PLR2004
        return UploadFailureClassification(
            failure_class=FailureClass.REMOTE_REJECTED,
            permanent=False,
            reason_code="application_rejected",
        )
    return UploadFailureClassification(
        failure_class=FailureClass.REMOTE_REJECTED,
        permanent=False,
        reason_code=f"http_{status_code}",
    )
