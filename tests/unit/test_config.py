"""Unit tests for the herald configuration system.

Tests cover loading configuration from file, handling missing/invalid files,
validation, singleton behavior, config migration, and save functionality.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from herald.config import (
    CONFIG_ENV_VAR,
    CONFIG_PATH,
    CONFIG_VERSION,
    DispatchConfig,
    HeraldConfig,
    QuietHoursConfig,
    RetryConfig,
    default_config_path,
    get_config,
    get_store_path,
    load_config,
    reset_config,
    save_config,
)


class TestHeraldConfig:
    """Tests for HeraldConfig model."""

    def test_default_values(self):
        """Test default configuration values."""
        config = HeraldConfig()
        assert config.config_version == CONFIG_VERSION
        assert config.dispatch.interval_seconds == 30.0
        assert config.dispatch.batch_size == 50
        assert config.dispatch.claim_timeout_seconds == 900.0
        assert config.retry.max_retries == 3
        assert config.retry.base_delay_minutes == 5.0
        assert config.retry.honor_retry_delay is False
        assert config.recurrence.horizon_days == 365
        assert config.quiet_hours.start == "22:00"
        assert config.quiet_hours.end == "08:00"
        assert config.store.backend == "memory"

    def test_batch_size_bounds(self):
        with pytest.raises(ValidationError):
            DispatchConfig(batch_size=0)

    def test_claim_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            DispatchConfig(claim_timeout_seconds=0)

    def test_max_retries_bounds(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=0)

    def test_quiet_hours_normalized(self):
        assert QuietHoursConfig(start="7:5").start == "07:05"

    def test_quiet_hours_rejects_bad_time(self):
        with pytest.raises(ValidationError):
            QuietHoursConfig(end="25:00")

    def test_store_backend_literal(self):
        with pytest.raises(ValidationError):
            HeraldConfig.model_validate({"store": {"backend": "redis"}})


class TestLoadConfig:
    """Tests for load_config function."""

    def test_returns_defaults_when_missing(self, tmp_path):
        config = load_config(tmp_path / "nope.json")
        assert config == HeraldConfig()

    def test_reads_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "config_version": CONFIG_VERSION,
                    "dispatch": {"interval_seconds": 5, "batch_size": 10},
                    "retry": {"honor_retry_delay": True},
                }
            )
        )

        config = load_config(path)

        assert config.dispatch.interval_seconds == 5
        assert config.dispatch.batch_size == 10
        assert config.retry.honor_retry_delay is True
        assert config.retry.max_retries == 3

    def test_handles_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{ invalid json }")
        assert load_config(path) == HeraldConfig()

    def test_invalid_values_fall_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"config_version": 2, "quiet_hours": {"start": "late"}}))
        assert load_config(path) == HeraldConfig()

    def test_migrates_v1_polling_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"process_interval_ms": 5000, "max_batch_size": 20}))

        config = load_config(path)

        assert config.dispatch.interval_seconds == 5.0
        assert config.dispatch.batch_size == 20

        # Migrated file is persisted
        saved = json.loads(path.read_text())
        assert saved["config_version"] == CONFIG_VERSION
        assert "process_interval_ms" not in saved
        assert saved["dispatch"]["batch_size"] == 20

    def test_env_var_overrides_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.json"
        save_config(HeraldConfig(default_timezone="Europe/Paris"), path)
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert default_config_path() == path
        assert load_config().default_timezone == "Europe/Paris"


class TestSaveConfig:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = HeraldConfig()
        config.retry.max_retries = 5

        assert save_config(config, path)
        assert load_config(path).retry.max_retries == 5


class TestGetConfig:
    """Tests for the config singleton."""

    def test_returns_singleton(self):
        assert get_config() is get_config()

    def test_reset_allows_reload(self, tmp_path, monkeypatch):
        first = get_config()
        path = tmp_path / "other.json"
        save_config(HeraldConfig(default_timezone="Asia/Tokyo"), path)
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        reset_config()
        second = get_config()

        assert second is not first
        assert second.default_timezone == "Asia/Tokyo"


class TestStorePath:
    def test_config_path_in_home(self):
        assert CONFIG_PATH == Path.home() / ".herald" / "config.json"

    def test_memory_without_path(self):
        assert get_store_path(HeraldConfig()) is None

    def test_sqlite_default_path(self):
        config = HeraldConfig.model_validate({"store": {"backend": "sqlite"}})
        assert get_store_path(config) == Path.home() / ".herald" / "queue.db"

    def test_explicit_path(self, tmp_path):
        config = HeraldConfig.model_validate(
            {"store": {"backend": "sqlite", "path": str(tmp_path / "q.db")}}
        )
        assert get_store_path(config) == tmp_path / "q.db"
