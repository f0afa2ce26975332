"""HTTP transport for report batches."""

from threading import Lock
from typing import Any, Dict, List, Optional

import httpx
import orjson
import structlog

logger = structlog.get_logger(__name__)

BEACON_READ_TIMEOUT = 0.05


class DeliveryError(Exception):
    """
    Raised when a batch could not be delivered.

    ``status_code`` is None when the request never got an HTTP response
    (connection refused, DNS failure, timeout), which callers treat as
    being offline.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


class HttpTransport:
    """POSTs ``{dsn, events}`` JSON bodies to the report URL."""

    def __init__(
        self,
        report_url: str,
        dsn: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            report_url: Ingestion endpoint
            dsn: Project identifier sent with every batch
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.report_url = report_url
        self.dsn = dsn
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._lock = Lock()

    def build_payload(self, events: List[Dict[str, Any]]) -> bytes:
        return orjson.dumps({"dsn": self.dsn, "events": events})

    def get_client(self) -> httpx.Client:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = httpx.Client(
                        timeout=self.timeout,
                        transport=self._transport,
                        headers={"Content-Type": "application/json"},
                    )
        return self._client

    def send(self, events: List[Dict[str, Any]]) -> int:
        """
        Deliver one batch and wait for the response.

        Returns:
            HTTP status code of the accepted response

        Raises:
            DeliveryError: On any transport failure or non-2xx response
        """
        try:
            response = self.get_client().post(self.report_url, content=self.build_payload(events))
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise DeliveryError(f"HTTP {response.status_code}", status_code=response.status_code)

        return response.status_code

    def send_beacon(self, events: List[Dict[str, Any]]) -> bool:
        """
        Best-effort send that does not wait for the response.

        The request is written and the read side is abandoned almost
        immediately, so a read timeout still counts as transmitted.

        Returns:
            True if the request was written, False if it could not be
        """
        if not events:
            return True

        timeout = httpx.Timeout(self.timeout, read=BEACON_READ_TIMEOUT)
        try:
            self.get_client().post(
                self.report_url,
                content=self.build_payload(events),
                timeout=timeout,
            )
        except httpx.ReadTimeout:
            return True
        except httpx.HTTPError as e:
            logger.debug("beacon_failed", error=str(e))
            return False

        return True

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
