from .base import Integration, PatchIntegration
from .console import LoggingIntegration, WarningsIntegration
from .errors import AsyncioIntegration, ExceptHookIntegration, ThreadingExceptHookIntegration
from .network import AsyncHttpxIntegration, HttpxIntegration, RequestStats, UrllibResourceIntegration

__all__ = [
    "AsyncHttpxIntegration",
    "AsyncioIntegration",
    "ExceptHookIntegration",
    "HttpxIntegration",
    "Integration",
    "LoggingIntegration",
    "PatchIntegration",
    "RequestStats",
    "ThreadingExceptHookIntegration",
    "UrllibResourceIntegration",
    "WarningsIntegration",
]
