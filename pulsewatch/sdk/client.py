"""Monitor: the caller-owned entry point of the client SDK."""

import asyncio
import random
import traceback
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from .buffer import BreadcrumbBuffer
from .config import ClientConfig, matches
from .connectivity import ConnectivityMonitor
from .integrations import (
    AsyncHttpxIntegration,
    AsyncioIntegration,
    ExceptHookIntegration,
    HttpxIntegration,
    Integration,
    LoggingIntegration,
    ThreadingExceptHookIntegration,
    UrllibResourceIntegration,
    WarningsIntegration,
)
from .models import Breadcrumb, ErrorEvent, PerformanceEvent, ResourceErrorEvent
from .offline import OfflineStore
from .protocol import WorkerConfig
from .reporter import Reporter
from .transport import HttpTransport
from .worker import WorkerReporter

logger = structlog.get_logger(__name__)


def default_integrations(monitor: "Monitor") -> List[Integration]:
    """Adapters enabled by the monitor's configuration."""
    config = monitor.config
    integrations: List[Integration] = []

    if config.enable_error:
        integrations += [
            ExceptHookIntegration(monitor),
            ThreadingExceptHookIntegration(monitor),
            UrllibResourceIntegration(monitor),
        ]
    if config.enable_behavior:
        integrations += [
            LoggingIntegration(monitor),
            WarningsIntegration(monitor),
            HttpxIntegration(monitor),
            AsyncHttpxIntegration(monitor),
        ]

    return integrations


class Monitor:
    """
    Holds configuration, breadcrumbs, the reporter and the installed adapters
    of one monitored application. Several monitors may coexist.

    Usage:
        monitor = Monitor(dsn="my-app", report_url="https://collector/report")
        monitor.start()
        ...
        monitor.close()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[HttpTransport] = None,
        integrations: Optional[List[Integration]] = None,
        sampler: Callable[[], float] = random.random,
        **options: Any,
    ):
        """
        Args:
            config: Validated configuration; built from ``options`` when omitted
            transport: HTTP transport override
            integrations: Adapters to install instead of the defaults
            sampler: Returns a float in [0, 1) for sampling decisions
            **options: ClientConfig fields

        Raises:
            ConfigError: If the options are invalid
        """
        self.config = config or ClientConfig.create(**options)
        self.sampler = sampler
        self.url = ""
        self.user = self.config.user

        self.buffer = BreadcrumbBuffer(self.config.max_breadcrumbs)
        self.offline_store = OfflineStore(self.config.offline_path, self.config.max_offline_items)
        self.connectivity = ConnectivityMonitor(
            self.config.report_url,
            probe_interval=self.config.connectivity_probe_interval,
            on_online=self._on_reconnect,
        )
        self.transport = transport or HttpTransport(
            self.config.report_url, self.config.dsn, timeout=self.config.request_timeout
        )
        self.reporter = self._build_reporter()

        self.integrations = integrations if integrations is not None else default_integrations(self)
        self._started = False
        self._closed = False

    def _build_reporter(self) -> Union[Reporter, WorkerReporter]:
        config = self.config
        if config.use_worker:
            return WorkerReporter(
                WorkerConfig(
                    dsn=config.dsn,
                    report_url=config.report_url,
                    batch_size=config.batch_size,
                    report_interval=config.report_interval,
                    request_timeout=config.request_timeout,
                ),
                offline_store=self.offline_store,
                connectivity=self.connectivity,
                transport=self.transport,
            )

        return Reporter(
            dsn=config.dsn,
            report_url=config.report_url,
            batch_size=config.batch_size,
            report_interval=config.report_interval,
            transport=self.transport,
            offline_store=self.offline_store,
            connectivity=self.connectivity,
        )

    def _on_reconnect(self) -> None:
        self.reporter.on_online()

    def start(self) -> "Monitor":
        """Install the adapters. Also hooks the running event loop, if any."""
        if self._started:
            return self
        self._started = True

        for integration in self.integrations:
            try:
                integration.install()
            except Exception as e:
                logger.debug("integration_install_failed", integration=integration.name, error=str(e))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.config.enable_error:
            self.instrument_loop(loop)

        logger.debug("monitor_started", dsn=self.config.dsn, integrations=len(self.integrations))
        return self

    def instrument_loop(self, loop: asyncio.AbstractEventLoop) -> AsyncioIntegration:
        """Report unhandled errors of the given event loop."""
        integration = AsyncioIntegration(self, loop=loop)
        integration.install()
        self.integrations.append(integration)
        return integration

    def set_url(self, url: str) -> None:
        """URL attached to subsequent events (the page or request being served)."""
        self.url = url

    def set_user(self, user: Optional[Dict[str, Any]]) -> None:
        self.user = user

    def set_online(self, online: bool = True) -> None:
        """Tell the monitor about connectivity changes the host detected."""
        if online:
            self.connectivity.mark_online()
        else:
            self.reporter.on_offline()

    def add_breadcrumb(self, crumb: Optional[Breadcrumb] = None, **fields: Any) -> None:
        if crumb is None:
            crumb = Breadcrumb(**fields)
        self.buffer.add(crumb)

    def _context(self, extra: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        context: Dict[str, Any] = {}
        if self.config.environment:
            context["environment"] = self.config.environment
        if self.config.tags:
            context["tags"] = dict(self.config.tags)
        if extra:
            context.update(extra)
        return context or None

    def capture_exception(
        self,
        exc: BaseException,
        tb=None,
        error_type: str = "error",
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Report an exception with its traceback.

        Returns:
            True if the event was queued
        """
        tb = tb if tb is not None else exc.__traceback__
        frames = traceback.extract_tb(tb) if tb is not None else []
        last = frames[-1] if frames else None

        event = ErrorEvent(
            type=error_type,
            message=f"{type(exc).__name__}: {exc}",
            stack="".join(traceback.format_exception(type(exc), exc, tb)),
            filename=last.filename if last else None,
            lineno=last.lineno if last else None,
            colno=getattr(last, "colno", None) if last else None,
            url=self.url,
            breadcrumbs=list(self.buffer.snapshot()),
            user=self.user,
            context=self._context(context),
            release=self.config.release,
        )
        return self.capture_error(event)

    def capture_message(self, message: str, level: str = "info", error_type: str = "error") -> bool:
        event = ErrorEvent(
            type=error_type,
            message=f"[{level}] {message}",
            url=self.url,
            breadcrumbs=list(self.buffer.snapshot()),
            user=self.user,
            context=self._context(),
            release=self.config.release,
        )
        return self.capture_error(event)

    def capture_resource_error(self, event: ResourceErrorEvent) -> bool:
        if not event.page_url and self.url:
            event = event.model_copy(update={"page_url": self.url})
        error = event.to_error_event(list(self.buffer.snapshot()))
        error = error.model_copy(
            update={"user": self.user, "context": self._context(), "release": self.config.release}
        )
        return self.capture_error(error)

    def capture_error(self, event: ErrorEvent) -> bool:
        if not self.config.enable_error:
            return False
        if self.sampler() >= self.config.error_sample_rate:
            return False
        if matches(event.message, self.config.ignore_errors):
            return False

        urls = [u for u in (event.url, event.filename) if u]
        if any(matches(u, self.config.ignore_urls) for u in urls):
            return False
        if self.config.allow_urls and not any(matches(u, self.config.allow_urls) for u in urls):
            return False

        return self.report(event.to_wire())

    def capture_performance(self, sample: Optional[PerformanceEvent] = None, **metrics: Any) -> bool:
        """Report a performance sample, built from ``metrics`` when not given."""
        if not self.config.enable_performance:
            return False
        if self.sampler() >= self.config.performance_sample_rate:
            return False

        if sample is None:
            metrics.setdefault("url", self.url)
            metrics.setdefault("user", self.user)
            metrics.setdefault("context", self._context())
            sample = PerformanceEvent(**metrics)
        return self.report(sample.to_wire())

    def report(self, event: Dict[str, Any]) -> bool:
        """
        Apply global sampling and ``before_send``, then queue the event.

        Returns:
            True if the event was queued
        """
        if self._closed:
            return False
        if self.sampler() >= self.config.sample_rate:
            return False

        if self.config.before_send is not None:
            try:
                result = self.config.before_send(event)
            except Exception as e:
                logger.debug("before_send_failed", error=str(e))
                return False
            if result is None or result is False:
                return False
            if isinstance(result, dict):
                event = result

        self.reporter.push(event)
        return True

    def flush(self) -> None:
        self.reporter.flush()

    def close(self) -> None:
        """Uninstall adapters, deliver what is queued and stop background threads."""
        if self._closed:
            return
        self._closed = True

        for integration in reversed(self.integrations):
            integration.uninstall()
        self.reporter.destroy()
        self.connectivity.stop()
        logger.debug("monitor_closed", dsn=self.config.dsn)

    def __enter__(self) -> "Monitor":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()
