from __future__ import annotations

from pathlib import Path

import allure
import pytest

from chat_sync import __version__
from chat_sync.config import CollectorSettings, QueueSettings, ScheduleSettings, Settings

pytestmark = [
    allure.epic("Sync Queue"),
    allure.feature("Configuration"),
]


def _network_settings(**collector_overrides) -> Settings:
    return Settings(
        collector=CollectorSettings(url="https://collector.test/api/", **collector_overrides),
    )


def test_defaults_match_documented_policy() -> None:
    settings = Settings()

    assert settings.db_path == Path(".chat_sync.db")
    assert settings.collector.batch_path == "log-batch"
    assert settings.collector.terminal_on_client_error is False
    assert settings.collector.app_version == __version__
    assert settings.queue.max_retries == 3
    assert settings.queue.completed_retention_days == 7
    assert settings.queue.failed_retention_days == 1
    assert settings.schedule.periodic_interval_seconds == 900
    assert settings.schedule.followup_delay_seconds == 300
    assert settings.reachability.expected_status == 204


def test_from_env_reads_prefixed_variables(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHAT_SYNC_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("CHAT_SYNC_COLLECTOR_URL", " https://collector.test/api/ ")
    monkeypatch.setenv("CHAT_SYNC_MAX_RETRIES", "5")
    monkeypatch.setenv("CHAT_SYNC_BATCH_SIZE", "20")
    monkeypatch.setenv("CHAT_SYNC_PERIODIC_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("CHAT_SYNC_TERMINAL_ON_CLIENT_ERROR", "on")
    monkeypatch.setenv("CHAT_SYNC_APP_VERSION", "2.0.0")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.collector.url == "https://collector.test/api/"
    assert settings.collector.terminal_on_client_error is True
    assert settings.collector.app_version == "2.0.0"
    assert settings.queue.max_retries == 5
    assert settings.queue.batch_size == 20
    assert settings.schedule.periodic_interval_seconds == 60


def test_explicit_db_path_overrides_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHAT_SYNC_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("CHAT_SYNC_TERMINAL_ON_CLIENT_ERROR", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_validate_for_network_requires_collector_url() -> None:
    with pytest.raises(ValueError, match="Collector URL is required"):
        Settings().validate_for_network()


def test_validate_for_network_rejects_non_http_collector() -> None:
    settings = Settings(collector=CollectorSettings(url="ftp://collector.test/"))

    with pytest.raises(ValueError, match="Invalid collector URL"):
        settings.validate_for_network()


def test_validate_for_network_accepts_defaults_with_collector() -> None:
    _network_settings().validate_for_network()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (
            Settings(
                collector=CollectorSettings(url="https://collector.test/"),
                schedule=ScheduleSettings(periodic_interval_seconds=0),
            ),
            "PERIODIC_INTERVAL_SECONDS",
        ),
        (
            Settings(
                collector=CollectorSettings(url="https://collector.test/"),
                schedule=ScheduleSettings(backoff_base_seconds=60, backoff_max_seconds=10),
            ),
            "BACKOFF_MAX_SECONDS",
        ),
        (
            Settings(
                collector=CollectorSettings(url="https://collector.test/"),
                queue=QueueSettings(max_retries=0),
            ),
            "MAX_RETRIES",
        ),
        (
            Settings(
                collector=CollectorSettings(url="https://collector.test/"),
                queue=QueueSettings(batch_size=0),
            ),
            "BATCH_SIZE",
        ),
    ],
)
def test_validate_for_network_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate_for_network()


def test_request_timeout_must_be_positive() -> None:
    settings = _network_settings(request_timeout_seconds=0)

    with pytest.raises(ValueError, match="REQUEST_TIMEOUT_SECONDS"):
        settings.validate_for_network()
