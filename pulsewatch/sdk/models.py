"""Wire models produced by the client SDK."""

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BreadcrumbType = Literal["click", "route", "console", "xhr", "fetch"]
ResourceType = Literal["script", "link", "img", "module", "other"]


def now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Frozen model serialized with camelCase keys and without empty fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Breadcrumb(WireModel):
    type: BreadcrumbType
    category: str
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: int = Field(default_factory=now_ms)


class ErrorEvent(WireModel):
    type: Literal["error", "unhandledrejection", "resource"] = "error"
    message: str
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    timestamp: int = Field(default_factory=now_ms)
    url: str = ""
    breadcrumbs: List[Breadcrumb] = Field(default_factory=list)
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    release: Optional[str] = None
    session_replay: Optional[Dict[str, Any]] = None
    resource_type: Optional[ResourceType] = None


class PerformanceEvent(WireModel):
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
    timestamp: int = Field(default_factory=now_ms)
    url: str = ""
    user: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None


class ResourceErrorEvent(WireModel):
    type: Literal["resource"] = "resource"
    resource_type: ResourceType = "other"
    url: str
    timestamp: int = Field(default_factory=now_ms)
    page_url: str = ""

    def to_error_event(self, breadcrumbs: Optional[List[Breadcrumb]] = None) -> ErrorEvent:
        """Convert to the ErrorEvent the server ingests."""
        return ErrorEvent(
            type="resource",
            message=f"Resource load failed: {self.url}",
            filename=self.url,
            timestamp=self.timestamp,
            url=self.page_url,
            resource_type=self.resource_type,
            breadcrumbs=list(breadcrumbs or []),
        )
