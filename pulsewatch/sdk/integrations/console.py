"""Log records and warnings as console breadcrumbs."""

import logging
import warnings

from ..models import Breadcrumb
from .base import PatchIntegration

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}

# Loggers whose records would describe the SDK itself
_IGNORED_PREFIXES = ("pulsewatch", "httpx", "httpcore")


class LoggingIntegration(PatchIntegration):
    """Turns stdlib log records at or above ``level`` into breadcrumbs."""

    name = "logging"
    target_attr = "callHandlers"

    def __init__(self, monitor, level: int = logging.INFO):
        super().__init__(monitor)
        self.level = level

    def target_owner(self):
        return logging.Logger

    def record(self, record: logging.LogRecord) -> None:
        if record.levelno < self.level or record.name.startswith(_IGNORED_PREFIXES):
            return

        level = _LEVEL_NAMES.get(record.levelno, record.levelname.lower())
        self.monitor.add_breadcrumb(
            Breadcrumb(
                type="console",
                category=f"console.{level}",
                message=record.getMessage(),
                data={"logger": record.name, "level": record.levelname},
                timestamp=int(record.created * 1000),
            )
        )

    def wrap(self, previous):
        def callHandlers(logger, record):
            self.observe(self.record, record)
            return previous(logger, record)

        return callHandlers


class WarningsIntegration(PatchIntegration):
    """Records ``warnings.warn`` output as breadcrumbs."""

    name = "warnings"
    target_attr = "showwarning"

    def target_owner(self):
        return warnings

    def record(self, message, category, filename, lineno) -> None:
        self.monitor.add_breadcrumb(
            Breadcrumb(
                type="console",
                category="console.warn",
                message=f"{category.__name__}: {message}",
                data={"filename": filename, "lineno": lineno},
            )
        )

    def wrap(self, previous):
        def showwarning(message, category, filename, lineno, file=None, line=None):
            self.observe(self.record, message, category, filename, lineno)
            return previous(message, category, filename, lineno, file, line)

        return showwarning
