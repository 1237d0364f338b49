"""User notification preference providers.

HttpPreferenceProvider reads preferences from the notification API and
falls back to defaults when the service is unreachable, so an outage of the
preference service never blocks scheduling.
"""

from __future__ import annotations

import copy
import logging
import threading

import requests

from herald.config import GatewayConfig, QuietHoursConfig
from herald.errors import ValidationError
from herald.scheduler.models import QuietHours, UserPreferences

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = {
    "articles": True,
    "comments": True,
    "system": True,
    "marketing": False,
    "engagement": True,
}


def default_preferences(quiet_hours: QuietHoursConfig | None = None) -> UserPreferences:
    """Preferences assumed for a user whose settings cannot be loaded.

    Args:
        quiet_hours: Fallback quiet hours (22:00-08:00 UTC if None).
    """
    quiet = quiet_hours or QuietHoursConfig()
    return UserPreferences(
        enabled=True,
        categories=dict(DEFAULT_CATEGORIES),
        quiet_hours=QuietHours(
            enabled=quiet.enabled,
            start=quiet.start,
            end=quiet.end,
            timezone=quiet.timezone,
        ),
    )


class StaticPreferenceProvider:
    """In-memory preferences keyed by user, with a shared default."""

    def __init__(
        self,
        preferences: dict[str, UserPreferences] | None = None,
        default: UserPreferences | None = None,
    ) -> None:
        self._preferences = dict(preferences or {})
        self._default = default or default_preferences()
        self._lock = threading.Lock()

    def set_preferences(self, user_id: str, preferences: UserPreferences) -> None:
        with self._lock:
            self._preferences[user_id] = preferences

    def get_preferences(self, user_id: str) -> UserPreferences:
        with self._lock:
            prefs = self._preferences.get(user_id, self._default)
            return copy.deepcopy(prefs)


class HttpPreferenceProvider:
    """Fetches preferences from ``GET {base_url}/api/users/{id}/notification-preferences``."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        fallback_quiet_hours: QuietHoursConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Endpoint settings (defaults if None).
            fallback_quiet_hours: Quiet hours used in the default preferences.
            session: Optional requests session to use.
        """
        self._config = config or GatewayConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._fallback_quiet_hours = fallback_quiet_hours
        self._session = session or requests.Session()

    def get_preferences(self, user_id: str) -> UserPreferences:
        url = f"{self._base_url}/api/users/{user_id}/notification-preferences"
        try:
            response = self._session.get(url, timeout=self._config.timeout_seconds)
            if response.ok:
                return UserPreferences.from_dict(response.json())
            logger.warning(
                f"Preference lookup for {user_id} returned HTTP {response.status_code}, "
                "using defaults"
            )
        except requests.RequestException as e:
            logger.error(f"Failed to get user preferences for {user_id}: {e}")
        except (ValidationError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Unreadable preferences for {user_id}: {e}")

        return default_preferences(self._fallback_quiet_hours)


__all__ = [
    "DEFAULT_CATEGORIES",
    "default_preferences",
    "StaticPreferenceProvider",
    "HttpPreferenceProvider",
]
