"""Tests for the HTTP preference, delivery and tracking adapters.

All HTTP traffic goes through a mocked requests session.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from herald.config import GatewayConfig, QuietHoursConfig
from herald.delivery import HttpDeliveryGateway, HttpTrackingSink, LoggingTrackingSink
from herald.preferences import (
    DEFAULT_CATEGORIES,
    HttpPreferenceProvider,
    StaticPreferenceProvider,
    default_preferences,
)
from herald.scheduler.models import NotificationPayload, TrackingEvent, UserPreferences
from tests.helpers import START

BASE_URL = "http://notify.test"


def _response(status: int = 200, body=None, reason: str = "OK") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(base_url=BASE_URL + "/", timeout_seconds=2.5)


class TestDefaultPreferences:
    def test_marketing_off(self) -> None:
        prefs = default_preferences()
        assert prefs.enabled
        assert prefs.categories == DEFAULT_CATEGORIES
        assert not prefs.is_category_enabled("marketing")
        assert prefs.quiet_hours.start == "22:00"

    def test_fallback_quiet_hours(self) -> None:
        prefs = default_preferences(QuietHoursConfig(start="21:00", timezone="Europe/Paris"))
        assert prefs.quiet_hours.start == "21:00"
        assert prefs.quiet_hours.timezone == "Europe/Paris"


class TestStaticPreferenceProvider:
    def test_per_user_and_default(self) -> None:
        provider = StaticPreferenceProvider(default=UserPreferences(enabled=True))
        provider.set_preferences("u2", UserPreferences(enabled=False))

        assert provider.get_preferences("u1").enabled
        assert not provider.get_preferences("u2").enabled

    def test_returns_copies(self) -> None:
        provider = StaticPreferenceProvider()
        provider.get_preferences("u1").categories["marketing"] = True
        assert not provider.get_preferences("u1").categories["marketing"]


class TestHttpPreferenceProvider:
    def test_parses_api_schedule_block(self, session, gateway_config) -> None:
        session.get.return_value = _response(
            body={
                "enabled": True,
                "categories": {"articles": False},
                "schedule": {
                    "quiet_hours_enabled": True,
                    "quiet_start": "23:00",
                    "quiet_end": "07:00",
                    "timezone": "America/New_York",
                },
            }
        )
        provider = HttpPreferenceProvider(gateway_config, session=session)

        prefs = provider.get_preferences("u1")

        session.get.assert_called_once_with(
            f"{BASE_URL}/api/users/u1/notification-preferences", timeout=2.5
        )
        assert not prefs.is_category_enabled("articles")
        assert prefs.quiet_hours.start == "23:00"
        assert prefs.quiet_hours.timezone == "America/New_York"

    def test_http_error_falls_back(self, session, gateway_config) -> None:
        session.get.return_value = _response(status=500, reason="Server Error")
        prefs = HttpPreferenceProvider(gateway_config, session=session).get_preferences("u1")
        assert prefs.categories == DEFAULT_CATEGORIES

    def test_network_error_falls_back(self, session, gateway_config) -> None:
        session.get.side_effect = requests.ConnectionError("refused")
        fallback = QuietHoursConfig(start="20:00")
        provider = HttpPreferenceProvider(gateway_config, fallback, session=session)

        prefs = provider.get_preferences("u1")

        assert prefs.enabled
        assert prefs.quiet_hours.start == "20:00"

    def test_bad_body_falls_back(self, session, gateway_config) -> None:
        session.get.return_value = _response(body=ValueError("not json"))
        prefs = HttpPreferenceProvider(gateway_config, session=session).get_preferences("u1")
        assert prefs.categories == DEFAULT_CATEGORIES

    def test_bad_quiet_hours_falls_back(self, session, gateway_config) -> None:
        session.get.return_value = _response(body={"quiet_hours": {"start": "late"}})
        prefs = HttpPreferenceProvider(gateway_config, session=session).get_preferences("u1")
        assert prefs.quiet_hours.start == "22:00"


class TestHttpDeliveryGateway:
    @pytest.fixture
    def payload(self) -> NotificationPayload:
        return NotificationPayload(title="Hi", body="There", tag="t")

    def test_success(self, session, gateway_config, payload) -> None:
        session.post.return_value = _response(body={"messageId": "m-42"})

        result = HttpDeliveryGateway(gateway_config, session).send("u1", payload)

        assert result.success
        assert result.message_id == "m-42"
        session.post.assert_called_once_with(
            f"{BASE_URL}/api/notifications/send",
            json={"userId": "u1", "payload": payload.to_dict()},
            timeout=2.5,
        )

    def test_http_failure(self, session, gateway_config, payload) -> None:
        session.post.return_value = _response(status=503, reason="Service Unavailable")

        result = HttpDeliveryGateway(gateway_config, session).send("u1", payload)

        assert not result.success
        assert result.error == "HTTP 503: Service Unavailable"

    def test_timeout_is_failure(self, session, gateway_config, payload) -> None:
        session.post.side_effect = requests.Timeout()

        result = HttpDeliveryGateway(gateway_config, session).send("u1", payload)

        assert not result.success
        assert result.error == "Timed out after 2.5s"

    def test_network_error(self, session, gateway_config, payload) -> None:
        session.post.side_effect = requests.ConnectionError()

        result = HttpDeliveryGateway(gateway_config, session).send("u1", payload)

        assert not result.success
        assert result.error == "Network error"

    def test_success_without_body(self, session, gateway_config, payload) -> None:
        session.post.return_value = _response(body=ValueError("empty"))

        result = HttpDeliveryGateway(gateway_config, session).send("u1", payload)

        assert result.success
        assert result.message_id is None


class TestTrackingSinks:
    def test_http_sink_posts_event(self, session, gateway_config) -> None:
        session.post.return_value = _response()
        event = TrackingEvent(item_id="notif_1", outcome="sent", timestamp=START, message_id="m-1")

        HttpTrackingSink(gateway_config, session).track(event)

        session.post.assert_called_once_with(
            f"{BASE_URL}/api/notifications/track",
            json={
                "notificationId": "notif_1",
                "action": "delivered",
                "messageId": "m-1",
                "timestamp": START.isoformat(),
            },
            timeout=2.5,
        )

    def test_http_sink_reports_failure_error(self, session, gateway_config) -> None:
        session.post.return_value = _response()
        event = TrackingEvent(item_id="notif_1", outcome="failed", timestamp=START, error="boom")

        HttpTrackingSink(gateway_config, session).track(event)

        body = session.post.call_args.kwargs["json"]
        assert body["action"] == "failed"
        assert body["error"] == "boom"

    def test_http_sink_swallows_network_errors(self, session, gateway_config) -> None:
        session.post.side_effect = requests.ConnectionError("down")
        event = TrackingEvent(item_id="notif_1", outcome="sent", timestamp=START)

        HttpTrackingSink(gateway_config, session).track(event)

    def test_tracking_disabled(self, session) -> None:
        config = GatewayConfig(base_url=BASE_URL, tracking_enabled=False)
        event = TrackingEvent(item_id="notif_1", outcome="sent", timestamp=START)

        HttpTrackingSink(config, session).track(event)

        session.post.assert_not_called()

    def test_logging_sink_keeps_events(self) -> None:
        sink = LoggingTrackingSink()
        event = TrackingEvent(item_id="notif_1", outcome="sent", timestamp=START)

        sink.track(event)

        assert sink.events == [event]
