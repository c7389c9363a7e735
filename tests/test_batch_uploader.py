from __future__ import annotations

import allure
import pytest

from chat_sync.tasks.identity import InstallationIdentity
from chat_sync.tasks.models import BatchItem, BatchItemError, FailureClass
from chat_sync.tasks.uploader import (
    BatchUploader,
    MalformedResponseError,
    batch_item_from_payload,
    parse_batch_response,
)

pytestmark = [
    allure.epic("Sync Queue"),
    allure.feature("Batch Uploader"),
]


def test_single_and_multi_item_uploads_share_one_envelope_shape(
    uploader: BatchUploader,
    collector,
) -> None:
    uploader.upload([BatchItem(type="message", data={"text": "one"})])
    uploader.upload(
        [
            BatchItem(type="message", data={"text": "two"}),
            BatchItem(type="conversation", data={"conversation_id": "c-1"}),
        ],
    )

    single, multi = collector.bodies
    assert set(single) == set(multi) == {"user_id", "batch", "device_info", "app_version"}
    assert isinstance(single["batch"], list)
    assert len(single["batch"]) == 1
    assert len(multi["batch"]) == 2
    assert multi["batch"][1] == {"type": "conversation", "data": {"conversation_id": "c-1"}}


def test_envelope_omits_absent_optional_fields(collector) -> None:
    with BatchUploader(
        base_url="https://collector.test/",
        identity=InstallationIdentity(user_id="anon"),
        transport=collector.transport,
    ) as uploader:
        result = uploader.upload([BatchItem(type="message", data={})])

    assert result.ok is True
    assert collector.bodies == [{"user_id": "anon", "batch": [{"type": "message", "data": {}}]}]


def test_upload_requires_at_least_one_item(uploader: BatchUploader) -> None:
    with pytest.raises(ValueError, match="at least one item"):
        uploader.upload([])


def test_success_requires_2xx_and_success_flag(uploader: BatchUploader, collector) -> None:
    collector.responses = [
        (
            200,
            {
                "success": True,
                "message": "Processed 2 items",
                "processed": 2,
                "errors": 0,
                "details": [],
            },
        ),
    ]

    result = uploader.upload([BatchItem(type="message", data={"text": "hi"})])

    assert result.ok is True
    assert result.status_code == 200
    assert result.response is not None
    assert result.response.processed == 2
    assert result.response.message == "Processed 2 items"


@pytest.mark.parametrize(
    ("response", "failure_class", "permanent", "error"),
    [
        ((200, {"success": False, "message": "nope"}), FailureClass.REMOTE_REJECTED, False, "nope"),
        ((200, "not json"), FailureClass.REMOTE_REJECTED, False, None),
        ((200, {"processed": 1}), FailureClass.REMOTE_REJECTED, False, None),
        ((500, {"success": False}), FailureClass.REMOTE_REJECTED, False, "HTTP 500"),
        ((429, {"success": False}), FailureClass.REMOTE_REJECTED, False, "HTTP 429"),
        ((422, {"success": False}), FailureClass.CLIENT_ERROR, False, "HTTP 422"),
        (
            (400, {"success": False, "error": "Missing required fields"}),
            FailureClass.CLIENT_ERROR,
            False,
            "HTTP 400: Missing required fields",
        ),
        ((503, "Service Unavailable"), FailureClass.REMOTE_REJECTED, False, "HTTP 503"),
        ("timeout", FailureClass.TIMEOUT, False, "Request timed out"),
        ("connect_error", FailureClass.TRANSPORT, False, None),
    ],
)
def test_failures_are_returned_as_values(  # noqa: PLR0913
    uploader: BatchUploader,
    collector,
    response,
    failure_class: FailureClass,
    permanent: bool,
    error: str | None,
) -> None:
    collector.responses = [response]

    result = uploader.upload([BatchItem(type="message", data={"text": "hi"})])

    assert result.ok is False
    assert result.failure_class == failure_class
    assert result.permanent is permanent
    assert result.error
    if error is not None:
        assert result.error == error


def test_client_errors_fail_permanently_when_terminal_mode_is_on(collector) -> None:
    collector.responses = [(400, {"success": False, "error": "Missing required fields"})]
    with BatchUploader(
        base_url="https://collector.test/",
        identity=InstallationIdentity(user_id="anon"),
        terminal_on_client_error=True,
        transport=collector.transport,
    ) as uploader:
        result = uploader.upload([BatchItem(type="message", data={})])

    assert result.failure_class == FailureClass.CLIENT_ERROR
    assert result.permanent is True
    assert result.error == "HTTP 400: Missing required fields"


def test_custom_batch_path_is_used(collector) -> None:
    with BatchUploader(
        base_url="https://collector.test/api/",
        identity=InstallationIdentity(user_id="anon"),
        batch_path="v2/log-batch",
        transport=collector.transport,
    ) as uploader:
        uploader.upload([BatchItem(type="message", data={})])

    assert collector.urls == ["https://collector.test/api/v2/log-batch"]


def test_parse_batch_response_reads_details_and_error_field() -> None:
    parsed = parse_batch_response(
        {
            "success": False,
            "error": "Batch processing failed",
            "processed": 1,
            "errors": 1,
            "details": [{"type": "message", "error": "bad row"}, "ignored"],
        },
    )

    assert parsed.success is False
    assert parsed.message == "Batch processing failed"
    assert parsed.processed == 1
    assert parsed.errors == 1
    assert parsed.details == [BatchItemError(type="message", error="bad row")]


def test_parse_batch_response_rejects_malformed_bodies() -> None:
    with pytest.raises(MalformedResponseError):
        parse_batch_response(["success"])
    with pytest.raises(MalformedResponseError):
        parse_batch_response({"success": "yes"})


def test_batch_item_from_payload_requires_json_object() -> None:
    assert batch_item_from_payload("message", '{"text": "hi"}') == BatchItem(
        type="message",
        data={"text": "hi"},
    )
    with pytest.raises(ValueError, match="JSON object"):
        batch_item_from_payload("message", "[1, 2]")
