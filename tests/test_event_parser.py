"""Tests for the report parser."""

import orjson
import pytest

from pulsewatch.receiver.event_parser import EventParser, ReportError, convert_timestamp


def _body(payload) -> bytes:
    return orjson.dumps(payload)


class TestEventParser:
    """Test cases for EventParser."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = EventParser()

    def test_missing_dsn(self):
        with pytest.raises(ReportError, match="dsn is required"):
            self.parser.parse(_body({"events": []}))

    def test_events_not_array(self):
        with pytest.raises(ReportError, match="events must be an array"):
            self.parser.parse(_body({"dsn": "shop", "events": {"type": "error"}}))

    def test_invalid_json(self):
        with pytest.raises(ReportError):
            self.parser.parse(b"{not json")

    def test_empty_body(self):
        with pytest.raises(ReportError):
            self.parser.parse(b"")

    def test_splits_errors_and_performance(self):
        """Errors carry type+message; performance samples carry url and no type."""
        report = self.parser.parse(_body({
            "dsn": "shop",
            "events": [
                {"type": "error", "message": "boom", "url": "https://shop.example/cart", "timestamp": 1700000000000},
                {"url": "https://shop.example/", "fcp": 812.5, "cls": 0.02, "domReady": 900},
            ],
        }))

        assert report.dsn == "shop"
        assert len(report.errors) == 1
        assert len(report.performance) == 1
        assert report.errors[0].timestamp == 1700000000000
        assert report.performance[0].layout_shift == 0.02
        assert report.performance[0].domReady == 900
        assert report.skipped == 0

    def test_invalid_events_are_skipped_and_counted(self):
        report = self.parser.parse(_body({
            "dsn": "shop",
            "events": [
                {"type": "weird", "message": "unknown type"},
                "not an object",
                {"foo": "bar"},
                {"type": "unhandledrejection", "message": "rejected"},
            ],
        }))

        assert len(report.errors) == 1
        assert report.errors[0].type == "unhandledrejection"
        assert report.skipped == 3

    def test_missing_timestamp_defaults_to_now(self):
        report = self.parser.parse(_body({"dsn": "shop", "events": [{"type": "error", "message": "x"}]}))

        assert report.errors[0].timestamp > 1_600_000_000_000

    def test_resource_error_keeps_resource_type(self):
        report = self.parser.parse(_body({
            "dsn": "shop",
            "events": [{
                "type": "resource",
                "message": "Resource load failed: https://cdn.example/app.js",
                "resourceType": "script",
                "url": "https://shop.example/",
            }],
        }))

        assert report.errors[0].resourceType == "script"


class TestConvertTimestamp:
    """Tests for timestamp conversion."""

    def test_int_passthrough(self):
        assert convert_timestamp(1700000000000) == 1700000000000

    def test_iso_string(self):
        assert convert_timestamp("2024-01-15T10:00:00Z") == 1705312800000

    def test_numeric_string(self):
        assert convert_timestamp("1700000000000") == 1700000000000

    def test_garbage(self):
        assert convert_timestamp("yesterday") is None
        assert convert_timestamp(None) is None
        assert convert_timestamp(True) is None
