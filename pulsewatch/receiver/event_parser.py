"""Report payload parser and event models."""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = structlog.get_logger(__name__)

ERROR_TYPES = ("error", "unhandledrejection", "resource")


class ReportError(ValueError):
    """Raised when a report body is not acceptable."""


def convert_timestamp(v: Any) -> Optional[int]:
    """Convert a timestamp to epoch milliseconds, handling ISO 8601 strings."""
    if v is None:
        return None
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return int(v)
    if isinstance(v, str):
        try:
            dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
            return int(dt.timestamp() * 1000)
        except ValueError:
            try:
                return int(float(v))
            except ValueError:
                return None
    return None


def now_ms() -> int:
    return int(time.time() * 1000)


class Breadcrumb(BaseModel):
    """Action recorded before an error."""

    model_config = {"extra": "allow"}

    type: str = "console"
    category: Optional[str] = None
    message: str = ""
    data: Optional[Dict[str, Any]] = None
    timestamp: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def preprocess_data(cls, data: Any) -> Any:
        if isinstance(data, dict) and "timestamp" in data:
            data = dict(data)
            data["timestamp"] = convert_timestamp(data["timestamp"])
        return data


class ErrorEvent(BaseModel):
    """Error event as sent by the SDK (camelCase wire names)."""

    model_config = {"extra": "allow", "populate_by_name": True}

    type: str
    message: str
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    timestamp: int
    url: str = ""
    breadcrumbs: List[Breadcrumb] = []
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    release: Optional[str] = None
    sessionReplay: Optional[Dict[str, Any]] = None
    resourceType: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def preprocess_data(cls, data: Any) -> Any:
        """Fill in the timestamp and coerce the message before validation."""
        if isinstance(data, dict):
            data = dict(data)
            data["timestamp"] = convert_timestamp(data.get("timestamp")) or now_ms()
            if data.get("message") is not None and not isinstance(data["message"], str):
                data["message"] = str(data["message"])
        return data

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in ERROR_TYPES:
            raise ValueError(f"unknown error type: {v}")
        return v


class PerformanceEvent(BaseModel):
    """Page performance sample."""

    model_config = {"extra": "allow", "populate_by_name": True}

    fp: Optional[float] = None
    fcp: Optional[float] = None
    lcp: Optional[float] = None
    fid: Optional[float] = None
    layout_shift: Optional[float] = Field(None, alias="cls")
    ttfb: Optional[float] = None
    domReady: Optional[float] = None
    load: Optional[float] = None
    longTasks: Optional[List[Dict[str, Any]]] = None
    resources: Optional[List[Dict[str, Any]]] = None
    networkQuality: Optional[Dict[str, Any]] = None
    timestamp: int
    url: str
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def preprocess_data(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["timestamp"] = convert_timestamp(data.get("timestamp")) or now_ms()
        return data


class ParsedReport(BaseModel):
    """A report body split into error and performance events."""

    dsn: str
    errors: List[ErrorEvent] = []
    performance: List[PerformanceEvent] = []
    skipped: int = 0


def is_error_event(event: Any) -> bool:
    return isinstance(event, dict) and "type" in event and "message" in event


def is_performance_event(event: Any) -> bool:
    return isinstance(event, dict) and "url" in event and "type" not in event


class EventParser:
    """Report JSON payload parser."""

    def load(self, payload: bytes) -> Tuple[str, List[Any]]:
        """
        Decode and validate the report envelope.

        Args:
            payload: Raw JSON bytes

        Returns:
            Tuple of (dsn, raw events)

        Raises:
            ReportError: If the body is not JSON, has no dsn or no events array
        """
        try:
            data = orjson.loads(payload) if payload and payload.strip() else {}
        except orjson.JSONDecodeError as e:
            raise ReportError(f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ReportError("report body must be an object")

        dsn = data.get("dsn")
        if not dsn or not isinstance(dsn, str):
            raise ReportError("dsn is required")

        events = data.get("events")
        if not isinstance(events, list):
            raise ReportError("events must be an array")

        return dsn, events

    def parse(self, payload: bytes) -> ParsedReport:
        """
        Parse a report body into typed events.

        Events that are neither errors nor performance samples, or that fail
        validation, are skipped and counted.

        Args:
            payload: Raw JSON bytes

        Returns:
            ParsedReport
        """
        dsn, events = self.load(payload)
        report = ParsedReport(dsn=dsn)

        for raw in events:
            try:
                if is_error_event(raw):
                    report.errors.append(ErrorEvent.model_validate(raw))
                elif is_performance_event(raw):
                    report.performance.append(PerformanceEvent.model_validate(raw))
                else:
                    report.skipped += 1
            except ValidationError as e:
                logger.warning("event_validation_failed", dsn=dsn, error=str(e))
                report.skipped += 1

        return report
