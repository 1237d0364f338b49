"""Pytest configuration for herald tests.

Provides a pinned clock, in-memory collaborators, and a scheduler wired to
them. Config loading is pointed at a temporary file so tests never read the
user's ~/.herald directory.
"""

from __future__ import annotations

import pytest

from herald.config import CONFIG_ENV_VAR, HeraldConfig, reset_config
from herald.preferences import StaticPreferenceProvider
from herald.scheduler.clock import ManualClock
from herald.scheduler.models import UserPreferences
from herald.scheduler.scheduler import NotificationScheduler
from herald.scheduler.store import InMemoryQueueStore
from herald.templates import TemplateRegistry
from tests.helpers import START, RecordingGateway, RecordingTrackingSink


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config loading at a temporary path and reset the singleton."""
    monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "config.json"))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def store() -> InMemoryQueueStore:
    return InMemoryQueueStore()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def tracking() -> RecordingTrackingSink:
    return RecordingTrackingSink()


@pytest.fixture
def preferences() -> StaticPreferenceProvider:
    """Preferences with every category on and no quiet hours."""
    return StaticPreferenceProvider(default=UserPreferences(enabled=True))


@pytest.fixture
def renderer(clock) -> TemplateRegistry:
    return TemplateRegistry.with_defaults(clock=clock)


@pytest.fixture
def config() -> HeraldConfig:
    return HeraldConfig()


@pytest.fixture
def scheduler(store, gateway, preferences, renderer, clock, tracking, config):
    scheduler = NotificationScheduler(
        store=store,
        gateway=gateway,
        preferences=preferences,
        renderer=renderer,
        clock=clock,
        tracking_sink=tracking,
        config=config,
    )
    yield scheduler
    scheduler.stop(timeout=2.0)
