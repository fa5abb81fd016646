"""Tests for log redaction and correlation id injection."""

import pytest
from asgi_correlation_id.context import correlation_id

from app.core.logging import REDACTED, add_correlation_id, redact_sensitive

pytestmark = pytest.mark.unit


class TestRedactSensitive:
    def test_top_level_keys_masked(self):
        event = redact_sensitive(
            None,
            "info",
            {"event": "startup", "auth_secret": "s3cr3t", "api_token": "tok", "user_id": "u1"},
        )

        assert event["auth_secret"] == REDACTED
        assert event["api_token"] == REDACTED
        assert event["user_id"] == "u1"
        assert event["event"] == "startup"

    def test_nested_values_masked(self):
        event = redact_sensitive(
            None,
            "info",
            {
                "event": "request",
                "headers": {"Authorization": "Bearer abc", "Accept": "application/json"},
                "attempts": [{"password": "hunter2", "ok": False}],
            },
        )

        assert event["headers"] == {"Authorization": REDACTED, "Accept": "application/json"}
        assert event["attempts"] == [{"password": REDACTED, "ok": False}]

    def test_event_name_never_masked(self):
        event = redact_sensitive(None, "warning", {"event": "lemon_squeezy_webhook_secret_unset"})
        assert event["event"] == "lemon_squeezy_webhook_secret_unset"


class TestAddCorrelationId:
    def test_injects_current_id(self):
        token = correlation_id.set("req-123")
        try:
            event = add_correlation_id(None, "info", {"event": "x"})
        finally:
            correlation_id.reset(token)

        assert event["correlation_id"] == "req-123"

    def test_absent_outside_request(self):
        assert "correlation_id" not in add_correlation_id(None, "info", {"event": "x"})
