"""
Tests for structured logging processors.

Tests cover:
- PII field detection by key token
- Redaction of values and nested dictionaries
- Request context binding
"""

import pytest

from config.logging import add_request_context, add_service_info, is_pii_field, pii_redactor, redact_value
from config.observability import clear_request_context, get_request_context, set_request_context


class TestPiiDetection:
    @pytest.mark.parametrize("key", ["email", "requester_email", "password", "date_of_birth", "patient_mrn", "ip"])
    def test_pii_keys(self, key):
        assert is_pii_field(key)

    @pytest.mark.parametrize("key", ["description", "action", "resource", "sequence_number", "record_hash", "zip"])
    def test_non_pii_keys(self, key):
        assert not is_pii_field(key)


class TestRedaction:
    def test_pattern_redaction_in_free_text(self):
        assert redact_value("contact jane@example.org") == "contact [EMAIL_REDACTED]"

    def test_mask_policy(self, settings):
        settings.AUDIT_PII_POLICY = "mask"
        event = pii_redactor(
            None,
            "info",
            {"event": "dsar_created", "requester_email": "jane@example.org", "form": "screening"},
        )
        assert event["requester_email"] == "[REDACTED]"
        assert event["form"] == "screening"

    def test_drop_policy(self, settings):
        settings.AUDIT_PII_POLICY = "drop"
        event = pii_redactor(None, "info", {"event": "x", "password": "hunter2", "action": "LOGIN"})
        assert "password" not in event
        assert event["action"] == "LOGIN"

    def test_nested_values(self, settings):
        settings.AUDIT_PII_POLICY = "mask"
        event = pii_redactor(None, "info", {"event": "x", "query_params": {"email": "a@b.org", "action": "LOGIN"}})
        assert event["query_params"] == {"email": "[REDACTED]", "action": "LOGIN"}

    def test_cleaned_data_masked(self, settings):
        settings.AUDIT_PII_POLICY = "mask"
        event = pii_redactor(None, "info", {"event": "x", "cleaned_data": {"age": 25}})
        assert event["cleaned_data"] == {"age": "[REDACTED]"}


class TestContext:
    def teardown_method(self):
        clear_request_context()

    def test_request_context_added(self):
        set_request_context(request_id="req-1", actor="coordinator", path="/api/v1/audit")
        event = add_request_context(None, "info", {"event": "x"})
        assert event["request_id"] == "req-1"
        assert event["trace_id"] == "req-1"
        assert event["actor"] == "coordinator"

    def test_explicit_values_win(self):
        set_request_context(request_id="req-1")
        event = add_request_context(None, "info", {"event": "x", "request_id": "other"})
        assert event["request_id"] == "other"

    def test_empty_values_dropped(self):
        set_request_context(request_id="req-1", actor="", form="screening")
        assert get_request_context() == {"request_id": "req-1", "trace_id": "req-1", "form": "screening"}

    def test_clear(self):
        set_request_context(request_id="req-1")
        clear_request_context()
        assert get_request_context() == {}

    def test_service_info(self):
        event = add_service_info(None, "info", {"event": "x"})
        assert event["service"] == "edc-api"
