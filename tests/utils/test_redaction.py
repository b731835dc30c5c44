"""Tests for log redaction and contact masking."""

from src.utils.redaction import mask_contact, redact_for_logging


class TestRedactForLogging:

    def test_redacts_qr_and_keys(self):
        data = {"event": "qr", "data": {"qr": "2@challenge"}, "api_key": "k"}
        result = redact_for_logging(data)
        assert result["data"]["qr"] == "***REDACTED***"
        assert result["api_key"] == "***REDACTED***"
        assert result["event"] == "qr"

    def test_preserves_non_sensitive(self):
        data = {"event": "message", "session": "default", "data": {"body": "hi"}}
        assert redact_for_logging(data) == data

    def test_handles_list_of_dicts(self):
        data = {"items": [{"session_key": "x", "id": 1}]}
        result = redact_for_logging(data)
        assert result["items"][0]["session_key"] == "***REDACTED***"
        assert result["items"][0]["id"] == 1

    def test_does_not_mutate_input(self):
        data = {"token": "abc"}
        redact_for_logging(data)
        assert data == {"token": "abc"}

    def test_empty_dict(self):
        assert redact_for_logging({}) == {}


class TestMaskContact:

    def test_masks_middle_digits(self):
        assert mask_contact("15551234567") == "155*****567"

    def test_short_ids_fully_masked(self):
        assert mask_contact("12345") == "*****"

    def test_missing(self):
        assert mask_contact(None) == "<none>"
        assert mask_contact("") == "<none>"
