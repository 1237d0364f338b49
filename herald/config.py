"""herald Configuration System.

Loads and validates configuration from ~/.herald/config.json (or the path in
the HERALD_CONFIG environment variable). Uses Pydantic for schema validation
with sensible defaults.

Supports migration from older config versions while preserving existing values.

Usage:
    from herald.config import get_config, save_config

    config = get_config()
    print(config.dispatch.interval_seconds)

    # Modify and save
    config.retry.max_retries = 5
    save_config(config)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".herald" / "config.json"
CONFIG_ENV_VAR = "HERALD_CONFIG"

# Current config schema version for migration tracking
CONFIG_VERSION = 2

_HHMM_FORMAT = "HH:MM"


def _check_hhmm(value: str) -> str:
    """Validate a day-local HH:MM string."""
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"expected {_HHMM_FORMAT}, got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"time out of range: {value!r}")
    return f"{hour:02d}:{minute:02d}"


class DispatchConfig(BaseModel):
    """Dispatch loop settings.

    Attributes:
        interval_seconds: Seconds between dispatch ticks.
        batch_size: Maximum items dispatched per tick.
        claim_timeout_seconds: Age after which a processing claim is treated as
            abandoned and its item returned to pending.
    """

    interval_seconds: float = Field(default=30.0, gt=0)
    batch_size: int = Field(default=50, ge=1, le=10000)
    claim_timeout_seconds: float = Field(default=900.0, gt=0)


class RetryConfig(BaseModel):
    """Retry and backoff settings.

    Attributes:
        max_retries: Default retry ceiling for new notifications.
        base_delay_minutes: Base of the exponential backoff (delay = base * 2^n).
        honor_retry_delay: Use a notification's own retry_delay_minutes as the
            backoff base instead of base_delay_minutes.
    """

    max_retries: int = Field(default=3, ge=1, le=100)
    base_delay_minutes: float = Field(default=5.0, gt=0)
    honor_retry_delay: bool = False


class RecurrenceConfig(BaseModel):
    """Recurring schedule settings.

    Attributes:
        horizon_days: Expansion horizon when a pattern has no end date.
    """

    horizon_days: int = Field(default=365, ge=1, le=3660)


class QuietHoursConfig(BaseModel):
    """Fallback quiet hours for users whose preferences cannot be loaded."""

    enabled: bool = True
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"

    @field_validator("start", "end")
    @classmethod
    def _validate_hhmm(cls, value: str) -> str:
        return _check_hhmm(value)


class GatewayConfig(BaseModel):
    """HTTP delivery/tracking/preferences endpoint settings.

    Attributes:
        base_url: Base URL of the notification API.
        timeout_seconds: Per-request timeout; a timeout counts as a failed delivery.
        tracking_enabled: Whether delivery tracking events are posted.
    """

    base_url: str = "http://localhost:3000"
    timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    tracking_enabled: bool = True


class StoreConfig(BaseModel):
    """Queue store settings.

    Attributes:
        backend: "memory" for the in-process store, "sqlite" for the durable one.
        path: Snapshot file (memory) or database file (sqlite). None keeps the
            memory store purely in-process and puts sqlite under ~/.herald.
    """

    backend: Literal["memory", "sqlite"] = "memory"
    path: str | None = None


class HeraldConfig(BaseModel):
    """herald configuration schema.

    Attributes:
        config_version: Schema version for migration tracking.
        default_timezone: Zone used when neither the request nor the user sets one.
        dispatch: Dispatch loop settings.
        retry: Retry and backoff settings.
        recurrence: Recurring schedule settings.
        quiet_hours: Fallback quiet hours.
        gateway: HTTP endpoint settings.
        store: Queue store settings.
    """

    config_version: int = CONFIG_VERSION
    default_timezone: str = "UTC"
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    recurrence: RecurrenceConfig = Field(default_factory=RecurrenceConfig)
    quiet_hours: QuietHoursConfig = Field(default_factory=QuietHoursConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)


# Module-level singleton with thread safety
_config: HeraldConfig | None = None
_config_lock = threading.Lock()


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Migrate from v1 to v2: Move flat polling keys into the dispatch section."""
    dispatch = data.setdefault("dispatch", {})

    if "process_interval_ms" in data:
        interval_ms = data.pop("process_interval_ms")
        dispatch.setdefault("interval_seconds", interval_ms / 1000)
    if "max_batch_size" in data:
        dispatch.setdefault("batch_size", data.pop("max_batch_size"))

    return data


# Migration registry mapping target versions to migration functions
_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    2: _migrate_v1_to_v2,
}


def _migrate_config(data: dict[str, Any]) -> dict[str, Any]:
    """Migrate config data from older versions to current schema.

    Args:
        data: Raw config data loaded from file.

    Returns:
        Migrated config data compatible with current schema.
    """
    version = data.get("config_version", 1)

    for target_version in sorted(_MIGRATIONS.keys()):
        if version < target_version:
            logger.info(f"Migrating config from version {version} to {target_version}")
            data = _MIGRATIONS[target_version](data)
            version = target_version

    data["config_version"] = CONFIG_VERSION
    return data


def default_config_path() -> Path:
    """Resolve the config path, honoring the HERALD_CONFIG override."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return CONFIG_PATH


def load_config(config_path: Path | None = None) -> HeraldConfig:
    """Load configuration from file, return defaults if missing/invalid.

    Automatically migrates older config versions while preserving existing values.
    If migration occurs, the updated config is saved back to disk.

    Args:
        config_path: Optional path to config file. Defaults to ~/.herald/config.json.

    Returns:
        HeraldConfig instance with loaded or default values.
    """
    path = config_path or default_config_path()

    if not path.exists():
        logger.debug(f"Config file not found at {path}, using defaults")
        return HeraldConfig()

    try:
        with path.open() as f:
            data: dict[str, Any] = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in config file {path}: {e}, using defaults")
        return HeraldConfig()
    except OSError as e:
        logger.warning(f"Cannot read config file {path}: {e}, using defaults")
        return HeraldConfig()

    original_version = data.get("config_version", 1)
    data = _migrate_config(data)

    try:
        config = HeraldConfig.model_validate(data)

        # Persist migrated config so migration doesn't run on every startup
        if original_version < CONFIG_VERSION:
            logger.info(f"Persisting migrated config (v{original_version} -> v{CONFIG_VERSION})")
            save_config(config, path)

        return config
    except ValidationError as e:
        logger.warning(f"Config validation failed: {e}, using defaults")
        return HeraldConfig()


def save_config(config: HeraldConfig, config_path: Path | None = None) -> bool:
    """Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to config file. Defaults to ~/.herald/config.json.

    Returns:
        True if saved successfully, False otherwise.
    """
    path = config_path or default_config_path()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            json.dump(config.model_dump(), f, indent=2)

        logger.debug(f"Configuration saved to {path}")
        return True

    except OSError as e:
        logger.error(f"Failed to save config to {path}: {e}")
        return False


def get_config() -> HeraldConfig:
    """Get singleton configuration instance.

    Uses double-check locking for thread safety.

    Returns:
        Shared HeraldConfig instance.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton configuration for testing."""
    global _config
    with _config_lock:
        _config = None


def get_store_path(config: HeraldConfig) -> Path | None:
    """Resolve the configured store file, if any.

    The sqlite backend always needs a file and defaults to ~/.herald/queue.db.
    """
    if config.store.path:
        return Path(config.store.path).expanduser()
    if config.store.backend == "sqlite":
        return Path.home() / ".herald" / "queue.db"
    return None
