"""Uncaught exception hooks."""

import asyncio
import sys
import threading
from typing import Any, Dict, Optional

from .base import Integration, PatchIntegration


class ExceptHookIntegration(PatchIntegration):
    """Reports exceptions that reach ``sys.excepthook``."""

    name = "excepthook"
    target_attr = "excepthook"

    def target_owner(self):
        return sys

    def wrap(self, previous):
        def excepthook(exc_type, exc_value, exc_tb):
            if not issubclass(exc_type, KeyboardInterrupt):
                self.observe(self.monitor.capture_exception, exc_value, tb=exc_tb)
            return previous(exc_type, exc_value, exc_tb)

        return excepthook


class ThreadingExceptHookIntegration(PatchIntegration):
    """Reports exceptions that escape a thread's ``run``."""

    name = "threading_excepthook"
    target_attr = "excepthook"

    def target_owner(self):
        return threading

    def wrap(self, previous):
        def excepthook(args):
            if args.exc_type is not SystemExit and args.exc_value is not None:
                context = {"thread": args.thread.name} if args.thread is not None else None
                self.observe(
                    self.monitor.capture_exception,
                    args.exc_value,
                    tb=args.exc_traceback,
                    context=context,
                )
            return previous(args)

        return excepthook


class AsyncioIntegration(Integration):
    """
    Reports errors passed to an event loop's exception handler, such as
    exceptions of tasks that were never awaited.
    """

    name = "asyncio"

    def __init__(self, monitor, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__(monitor)
        self.loop = loop

    def _loop(self) -> asyncio.AbstractEventLoop:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        return self.loop

    def get_target(self) -> Any:
        return self._loop().get_exception_handler()

    def set_target(self, value: Any) -> None:
        self._loop().set_exception_handler(value)

    def _capture(self, context: Dict[str, Any]) -> None:
        exception = context.get("exception")
        extra = {"asyncio": context.get("message", "")}
        if exception is not None:
            self.monitor.capture_exception(exception, error_type="unhandledrejection", context=extra)
        else:
            self.monitor.capture_message(
                context.get("message", "Unhandled asyncio error"),
                error_type="unhandledrejection",
            )

    def wrap(self, previous):
        def handler(loop, context):
            self.observe(self._capture, context)
            if previous is None:
                loop.default_exception_handler(context)
            else:
                previous(loop, context)

        return handler
