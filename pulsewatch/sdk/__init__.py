"""Pulsewatch client SDK."""

from .buffer import BreadcrumbBuffer
from .client import Monitor
from .config import ClientConfig, ConfigError
from .models import Breadcrumb, ErrorEvent, PerformanceEvent, ResourceErrorEvent
from .reporter import Reporter
from .transport import DeliveryError, HttpTransport
from .worker import WorkerReporter

__all__ = [
    "Breadcrumb",
    "BreadcrumbBuffer",
    "ClientConfig",
    "ConfigError",
    "DeliveryError",
    "ErrorEvent",
    "HttpTransport",
    "Monitor",
    "PerformanceEvent",
    "Reporter",
    "ResourceErrorEvent",
    "WorkerReporter",
]
