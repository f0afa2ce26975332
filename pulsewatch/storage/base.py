"""Storage interface shared by the OpenSearch and in-memory backends."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    AlertHistory,
    AlertRule,
    ErrorGroup,
    ErrorOccurrence,
    ErrorStatus,
    PerformanceRecord,
    SourceMapArtifact,
)


class StorageError(RuntimeError):
    """Raised when a storage backend cannot complete an operation."""


class TelemetryStore(ABC):
    """
    Persistence for error groups, performance samples, source maps and alerts.

    ``upsert_error_group`` is the only write path for groups and must be
    atomic per (dsn, fingerprint): concurrent calls for the same pair yield
    exactly one creation and one increment per call.
    """

    # Error groups

    @abstractmethod
    def upsert_error_group(self, group: ErrorGroup) -> Tuple[ErrorGroup, bool]:
        """
        Create the group or fold one occurrence into it.

        Args:
            group: Group built from a single occurrence (count=1)

        Returns:
            Tuple of (stored group, is_new)
        """

    @abstractmethod
    def get_error_group(self, group_id: str) -> Optional[ErrorGroup]:
        ...

    @abstractmethod
    def list_error_groups(
        self,
        dsn: Optional[str] = None,
        error_type: Optional[str] = None,
        status: Optional[ErrorStatus] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[int, List[ErrorGroup]]:
        """Return (total, page of groups) ordered by last_seen descending."""

    @abstractmethod
    def update_error_status(self, group_id: str, status: ErrorStatus) -> Optional[ErrorGroup]:
        ...

    # Occurrences

    @abstractmethod
    def record_occurrence(self, occurrence: ErrorOccurrence) -> None:
        ...

    @abstractmethod
    def count_occurrences(
        self,
        dsn: str,
        since: int,
        until: Optional[int] = None,
        fingerprint: Optional[str] = None,
    ) -> int:
        """Count occurrences with since <= timestamp < until."""

    @abstractmethod
    def occurrence_trend(
        self,
        dsn: str,
        start_time: int,
        end_time: int,
        interval_ms: int = 3600 * 1000,
    ) -> List[Dict[str, Any]]:
        """Occurrence counts bucketed by interval: [{"timestamp", "count"}]."""

    # Performance

    @abstractmethod
    def save_performance(self, record: PerformanceRecord) -> None:
        ...

    @abstractmethod
    def list_performance(self, dsn: str, limit: int = 100) -> List[PerformanceRecord]:
        ...

    # Source maps

    @abstractmethod
    def save_sourcemap(self, artifact: SourceMapArtifact) -> None:
        """Store an artifact, replacing any with the same (dsn, version, filename)."""

    @abstractmethod
    def find_sourcemap(
        self,
        dsn: str,
        filename: str,
        version: Optional[str] = None,
    ) -> Optional[SourceMapArtifact]:
        """Exact (dsn, version, filename) match, else newest (dsn, filename) match."""

    @abstractmethod
    def list_sourcemaps(self, dsn: str) -> List[SourceMapArtifact]:
        ...

    @abstractmethod
    def delete_sourcemap(self, dsn: str, version: str, filename: str) -> bool:
        ...

    # Alert rules

    @abstractmethod
    def create_rule(self, rule: AlertRule) -> AlertRule:
        ...

    @abstractmethod
    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        ...

    @abstractmethod
    def update_rule(self, rule: AlertRule) -> AlertRule:
        ...

    @abstractmethod
    def delete_rule(self, rule_id: str) -> bool:
        ...

    @abstractmethod
    def list_rules(self, dsn: Optional[str] = None, enabled_only: bool = False) -> List[AlertRule]:
        ...

    # Alert history

    @abstractmethod
    def append_history(self, entry: AlertHistory) -> AlertHistory:
        ...

    @abstractmethod
    def set_history_delivery(
        self,
        history_id: str,
        email_sent: bool,
        delivery_error: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def list_history(self, dsn: Optional[str] = None, limit: int = 50) -> List[AlertHistory]:
        ...

    @abstractmethod
    def last_triggered(self, rule_id: str, fingerprint: str) -> Optional[int]:
        """Trigger time of the newest history row for (rule, fingerprint)."""

    # Lifecycle

    def delete_expired(self, retention_days: int) -> List[str]:
        """Drop time-partitioned data older than the retention period."""
        return []

    def health(self) -> Dict[str, Any]:
        return {"status": "ok"}

    def close(self) -> None:
        pass
