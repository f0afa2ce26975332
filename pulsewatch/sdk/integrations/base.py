"""Base class for instrumentation adapters."""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)


class Integration(ABC):
    """
    Replaces one entry point of the host runtime and observes its calls.

    ``install`` stores the replaced value in ``previous``; every intercepted
    call first observes, then invokes ``previous``. ``uninstall`` restores
    ``previous`` exactly. Installing twice is a no-op. Observation failures
    are logged at debug level and never reach the host.
    """

    name: str = "integration"

    def __init__(self, monitor):
        self.monitor = monitor
        self.previous: Any = None
        self._installed = False
        self._lock = Lock()

    @property
    def installed(self) -> bool:
        return self._installed

    @abstractmethod
    def get_target(self) -> Any:
        """Current value of the entry point."""

    @abstractmethod
    def set_target(self, value: Any) -> None:
        """Replace the entry point."""

    @abstractmethod
    def wrap(self, previous: Any) -> Any:
        """Build the replacement that observes and then calls ``previous``."""

    def install(self) -> None:
        with self._lock:
            if self._installed:
                return
            previous = self.get_target()
            self.set_target(self.wrap(previous))
            self.previous = previous
            self._installed = True
        logger.debug("integration_installed", integration=self.name)

    def uninstall(self) -> None:
        with self._lock:
            if not self._installed:
                return
            self.set_target(self.previous)
            self.previous = None
            self._installed = False
        logger.debug("integration_uninstalled", integration=self.name)

    def observe(self, func: Callable, *args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except Exception as e:
            logger.debug("integration_observe_failed", integration=self.name, error=str(e))


class PatchIntegration(Integration):
    """Integration whose entry point is an attribute of a module or class."""

    target_attr: str = ""

    @abstractmethod
    def target_owner(self) -> Any:
        """Module or class holding ``target_attr``."""

    def get_target(self) -> Any:
        return getattr(self.target_owner(), self.target_attr)

    def set_target(self, value: Any) -> None:
        setattr(self.target_owner(), self.target_attr, value)
