"""Tests for configuration, settings, time helpers and logging setup."""

import logging
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from taskcal.core.config_manager import ConfigManager, get_config_value, parse_env_file
from taskcal.core.settings import EngineSettings
from taskcal.core.time_utils import (
    TEST_TIME_ENV,
    epoch_millis,
    floor_to_minute,
    now_local,
    parse_timestamp,
)
from taskcal.domain.event_service import EventService
from taskcal.logging_config import CorrelationIdFilter, configure_logging, get_logging_status
from taskcal.storage.backends import MemoryBackend

pytestmark = [pytest.mark.unit, pytest.mark.fast]

TASKCAL_VARS = (
    "TASKCAL_STORE_PATH",
    "TASKCAL_REMOTE_API_URL",
    "TASKCAL_USE_REMOTE_API",
    "TASKCAL_RECURRENCE_WINDOW_DAYS",
    "TASKCAL_MAX_INSTANCES_PER_PARENT",
    "TASKCAL_EXPANSION_TIME_BUDGET_MS",
    "TASKCAL_WRITE_DEBOUNCE_MS",
    "TASKCAL_SERVER_BIND",
    "TASKCAL_SERVER_PORT",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset all taskcal config variables; restored (unset) after the test."""
    for name in TASKCAL_VARS:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    return monkeypatch


class TestEnvFile:
    def test_parse_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text('# comment\n\nTASKCAL_SERVER_PORT=9000\nTASKCAL_STORE_PATH="/tmp/events.json"\nbogus line\n', encoding="utf-8")

        assert parse_env_file(env) == {"TASKCAL_SERVER_PORT": "9000", "TASKCAL_STORE_PATH": "/tmp/events.json"}

    def test_missing_env_file(self, tmp_path):
        assert parse_env_file(tmp_path / "nope") == {}
        assert ConfigManager(tmp_path / "nope").load_env_file() == []

    def test_env_file_does_not_override_environment(self, tmp_path, clean_env):
        env = tmp_path / ".env"
        env.write_text("TASKCAL_SERVER_PORT=9000\nTASKCAL_SERVER_BIND=0.0.0.0\n", encoding="utf-8")
        clean_env.setenv("TASKCAL_SERVER_PORT", "7000")

        cfg = ConfigManager(env).load_full_config()

        assert cfg["server_port"] == 7000
        assert cfg["server_bind"] == "0.0.0.0"


class TestBuildConfig:
    def test_maps_environment(self, tmp_path, clean_env):
        clean_env.setenv("TASKCAL_STORE_PATH", "/data/events.json")
        clean_env.setenv("TASKCAL_REMOTE_API_URL", "http://localhost:8080/api/")
        clean_env.setenv("TASKCAL_USE_REMOTE_API", "yes")
        clean_env.setenv("TASKCAL_RECURRENCE_WINDOW_DAYS", "90")
        clean_env.setenv("TASKCAL_MAX_INSTANCES_PER_PARENT", "50")
        clean_env.setenv("TASKCAL_EXPANSION_TIME_BUDGET_MS", "250")
        clean_env.setenv("TASKCAL_WRITE_DEBOUNCE_MS", "0")
        clean_env.setenv("TASKCAL_LOG_LEVEL", "debug")

        cfg = ConfigManager(tmp_path / ".env").build_config_from_env()

        assert cfg == {
            "store_path": "/data/events.json",
            "remote_api_url": "http://localhost:8080/api",
            "use_remote_api": True,
            "recurrence_window_days": 90,
            "max_instances_per_parent": 50,
            "expansion_time_budget_ms": 250,
            "write_debounce_ms": 0,
            "log_level": "DEBUG",
        }

    def test_invalid_integers_ignored(self, tmp_path, clean_env):
        clean_env.setenv("TASKCAL_SERVER_PORT", "eighty")

        assert "server_port" not in ConfigManager(tmp_path / ".env").build_config_from_env()

    def test_get_config_value(self):
        assert get_config_value({"a": 1}, "a") == 1
        assert get_config_value(SimpleNamespace(a=2), "a") == 2
        assert get_config_value(None, "a", 3) == 3


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()

        assert settings.recurrence_window_days == 365
        assert settings.half_window_days == 182
        assert settings.max_instances_per_parent == 500
        assert settings.write_debounce_ms == 50
        assert settings.expansion_time_budget_ms == 500

    def test_from_settings_dict(self):
        settings = EngineSettings.from_settings({"recurrence_window_days": 31, "server_port": "9001", "use_remote_api": True})

        assert settings.half_window_days == 15
        assert settings.server_port == 9001
        assert settings.use_remote_api is True
        assert settings.max_instances_per_parent == 500

    def test_from_env(self, tmp_path, clean_env):
        clean_env.setenv("TASKCAL_MAX_INSTANCES_PER_PARENT", "42")

        assert EngineSettings.from_env(tmp_path / ".env").max_instances_per_parent == 42

    def test_time_budget_reaches_generator(self):
        settings = EngineSettings.from_settings({"expansion_time_budget_ms": "75"})

        service = EventService.from_settings(settings, backend=MemoryBackend([]))

        assert settings.expansion_time_budget_ms == 75
        assert service.generator.time_budget_ms == 75


class TestTimeUtils:
    def test_now_local_honours_test_time(self, monkeypatch):
        monkeypatch.setenv(TEST_TIME_ENV, "2024-01-31T09:00:00Z")

        assert now_local() == datetime(2024, 1, 31, 9, 0)

    def test_now_local_ignores_invalid_test_time(self, monkeypatch):
        monkeypatch.setenv(TEST_TIME_ENV, "yesterday-ish")

        assert now_local().tzinfo is None

    def test_epoch_millis_reads_wall_clock_as_utc(self):
        assert epoch_millis(datetime(1970, 1, 1)) == 0
        assert epoch_millis(datetime(2024, 1, 1, 9, 0)) == 1704099600000
        assert epoch_millis(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)) == 1704099600000
        assert epoch_millis(datetime(2024, 1, 1, 9, 0, 0, 999000)) == 1704099600999

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-01-01T09:00:00", datetime(2024, 1, 1, 9, 0)),
            ("2024-01-01T09:00:00.000Z", datetime(2024, 1, 1, 9, 0)),
            ("Jan 5 2024 10:30", datetime(2024, 1, 5, 10, 30)),
            (date(2024, 1, 1), datetime(2024, 1, 1)),
            ("", None),
            ("garbage", None),
            (42, None),
            (None, None),
        ],
    )
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected

    def test_floor_to_minute(self):
        assert floor_to_minute(datetime(2024, 1, 1, 9, 5, 59, 123)) == datetime(2024, 1, 1, 9, 5)


class TestLoggingConfig:
    @pytest.fixture(autouse=True)
    def restore_levels(self):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers), {h: list(h.filters) for h in root.handlers})
        yield
        root.setLevel(saved[0])
        for handler in list(root.handlers):
            if handler not in saved[1]:
                root.removeHandler(handler)
        for handler, filters in saved[2].items():
            handler.filters = filters
        for name in ("taskcal", "httpx", "asyncio", "aiohttp.access"):
            logging.getLogger(name).setLevel(logging.NOTSET)

    def test_quiets_third_party_and_enables_debug(self):
        configure_logging(debug_mode=True)

        status = get_logging_status()
        assert status["taskcal"] == "DEBUG"
        assert status["httpx"] == "WARNING"
        assert status["aiohttp.access"] == "WARNING"

    def test_env_debug_override(self, monkeypatch):
        monkeypatch.setenv("TASKCAL_DEBUG", "true")

        configure_logging(debug_mode=False)

        assert logging.getLogger("taskcal").level == logging.DEBUG

    def test_force_debug_wins(self, monkeypatch):
        monkeypatch.setenv("TASKCAL_DEBUG", "1")

        configure_logging(force_debug=False)

        assert logging.getLogger("taskcal").level == logging.INFO

    def test_correlation_filter_stamps_records(self):
        record = logging.LogRecord("taskcal", logging.INFO, __file__, 1, "msg", None, None)

        assert CorrelationIdFilter().filter(record) is True
        assert record.request_id == "no-request-id"
