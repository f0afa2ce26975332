"""Stored records: error groups, occurrences, source maps and alerting."""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return uuid.uuid4().hex


class ErrorStatus(str, Enum):
    OPEN = "open"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class AlertRuleType(str, Enum):
    NEW_ERROR = "new_error"
    ERROR_THRESHOLD = "error_threshold"
    ERROR_SPIKE = "error_spike"


class Record(BaseModel):
    """
    Base for stored records.

    Documents are stored with snake_case keys (``model_dump()``) and
    exposed over HTTP with camelCase keys (``model_dump(by_alias=True)``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ErrorGroup(Record):
    """Aggregate of all occurrences sharing a (dsn, fingerprint)."""

    id: str
    dsn: str
    fingerprint: str
    type: str
    message: str
    normalized_message: str = ""
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    url: str = ""
    resource_type: Optional[str] = None
    breadcrumbs: List[Dict[str, Any]] = []
    session_replay: Optional[Dict[str, Any]] = None
    release: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    count: int = 1
    first_seen: int
    last_seen: int
    status: ErrorStatus = ErrorStatus.OPEN


class ErrorOccurrence(Record):
    """One physical occurrence of an error, keyed by server receive time."""

    id: str = Field(default_factory=new_id)
    dsn: str
    fingerprint: str
    group_id: str
    type: str
    url: str = ""
    timestamp: int


class PerformanceRecord(Record):
    id: str = Field(default_factory=new_id)
    dsn: str
    url: str
    timestamp: int
    fp: Optional[float] = None
    fcp: Optional[float] = None
    lcp: Optional[float] = None
    fid: Optional[float] = None
    layout_shift: Optional[float] = Field(None, alias="cls")
    ttfb: Optional[float] = None
    dom_ready: Optional[float] = None
    load: Optional[float] = None
    long_tasks: Optional[List[Dict[str, Any]]] = None
    resources: Optional[List[Dict[str, Any]]] = None
    network_quality: Optional[Dict[str, Any]] = None
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None


class SourceMapArtifact(Record):
    """Uploaded source map, unique per (dsn, version, filename)."""

    dsn: str
    version: str
    filename: str
    content: str
    size: int = 0
    created_at: int

    @property
    def key(self) -> str:
        return f"{self.dsn}/{self.version}/{self.filename}"

    def summary(self) -> Dict[str, Any]:
        """Listing view without the map body."""
        return self.model_dump(mode="json", by_alias=True, exclude={"content"})


class AlertRule(Record):
    id: str = Field(default_factory=new_id)
    dsn: str
    name: str
    type: AlertRuleType
    enabled: bool = True
    threshold: Optional[float] = None
    time_window: Optional[int] = None  # minutes
    recipients: List[str] = []
    cooldown_minutes: int = 30
    created_at: int
    updated_at: int


class AlertHistory(Record):
    id: str = Field(default_factory=new_id)
    rule_id: str
    rule_name: str = ""
    dsn: str
    fingerprint: str
    group_id: Optional[str] = None
    error_message: str = ""
    triggered_at: int
    email_sent: bool = False
    delivery_error: Optional[str] = None
