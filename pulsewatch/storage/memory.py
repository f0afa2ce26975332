"""In-process storage backend for development and tests."""

import time
from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Tuple

import structlog

from .base import TelemetryStore
from .models import (
    AlertHistory,
    AlertRule,
    ErrorGroup,
    ErrorOccurrence,
    ErrorStatus,
    PerformanceRecord,
    SourceMapArtifact,
)

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RECORDS = 100_000


class MemoryStore(TelemetryStore):
    """
    Dictionary-backed store.

    A single lock guards all collections, which makes the group upsert
    atomic within the process. Occurrences and performance records are
    capped at ``max_records`` each, oldest dropped first.
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        self._lock = Lock()
        self.max_records = max_records
        self._groups: Dict[str, ErrorGroup] = {}
        self._occurrences: Deque[ErrorOccurrence] = deque(maxlen=max_records)
        self._performance: Deque[PerformanceRecord] = deque(maxlen=max_records)
        self._sourcemaps: Dict[Tuple[str, str, str], SourceMapArtifact] = {}
        self._rules: Dict[str, AlertRule] = {}
        self._history: List[AlertHistory] = []

    def upsert_error_group(self, group: ErrorGroup) -> Tuple[ErrorGroup, bool]:
        with self._lock:
            existing = self._groups.get(group.id)

            if existing is None:
                stored = group.model_copy(update={"count": 1}, deep=True)
                self._groups[group.id] = stored
                return stored.model_copy(deep=True), True

            update: Dict[str, Any] = {
                "count": existing.count + 1,
                "first_seen": min(existing.first_seen, group.first_seen),
                "last_seen": max(existing.last_seen, group.last_seen),
            }
            if group.last_seen >= existing.last_seen:
                update["breadcrumbs"] = group.breadcrumbs
                if group.session_replay is not None:
                    update["session_replay"] = group.session_replay
                if group.release is not None:
                    update["release"] = group.release

            stored = existing.model_copy(update=update, deep=True)
            self._groups[group.id] = stored
            return stored.model_copy(deep=True), False

    def get_error_group(self, group_id: str) -> Optional[ErrorGroup]:
        with self._lock:
            group = self._groups.get(group_id)
            return group.model_copy(deep=True) if group else None

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
        with self._lock:
            groups = [
                g for g in self._groups.values()
                if (dsn is None or g.dsn == dsn)
                and (error_type is None or g.type == error_type)
                and (status is None or g.status == status)
                and (start_time is None or g.last_seen >= start_time)
                and (end_time is None or g.last_seen <= end_time)
            ]

        groups.sort(key=lambda g: g.last_seen, reverse=True)
        offset = (max(page, 1) - 1) * page_size
        return len(groups), [g.model_copy(deep=True) for g in groups[offset:offset + page_size]]

    def update_error_status(self, group_id: str, status: ErrorStatus) -> Optional[ErrorGroup]:
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            group = group.model_copy(update={"status": status})
            self._groups[group_id] = group
            return group.model_copy(deep=True)

    def record_occurrence(self, occurrence: ErrorOccurrence) -> None:
        with self._lock:
            self._occurrences.append(occurrence)

    def count_occurrences(
        self,
        dsn: str,
        since: int,
        until: Optional[int] = None,
        fingerprint: Optional[str] = None,
    ) -> int:
        with self._lock:
            return sum(
                1 for o in self._occurrences
                if o.dsn == dsn
                and o.timestamp >= since
                and (until is None or o.timestamp < until)
                and (fingerprint is None or o.fingerprint == fingerprint)
            )

    def occurrence_trend(
        self,
        dsn: str,
        start_time: int,
        end_time: int,
        interval_ms: int = 3600 * 1000,
    ) -> List[Dict[str, Any]]:
        buckets: Dict[int, int] = {}
        with self._lock:
            for o in self._occurrences:
                if o.dsn == dsn and start_time <= o.timestamp <= end_time:
                    bucket = o.timestamp - (o.timestamp % interval_ms)
                    buckets[bucket] = buckets.get(bucket, 0) + 1

        return [{"timestamp": ts, "count": buckets[ts]} for ts in sorted(buckets)]

    def save_performance(self, record: PerformanceRecord) -> None:
        with self._lock:
            self._performance.append(record)

    def list_performance(self, dsn: str, limit: int = 100) -> List[PerformanceRecord]:
        with self._lock:
            records = [r for r in self._performance if r.dsn == dsn]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[:limit]

    def save_sourcemap(self, artifact: SourceMapArtifact) -> None:
        with self._lock:
            self._sourcemaps[(artifact.dsn, artifact.version, artifact.filename)] = artifact

    def find_sourcemap(
        self,
        dsn: str,
        filename: str,
        version: Optional[str] = None,
    ) -> Optional[SourceMapArtifact]:
        with self._lock:
            if version is not None:
                exact = self._sourcemaps.get((dsn, version, filename))
                if exact is not None:
                    return exact

            candidates = [
                a for (a_dsn, _, a_name), a in self._sourcemaps.items()
                if a_dsn == dsn and a_name == filename
            ]

        if not candidates:
            return None
        return max(candidates, key=lambda a: a.created_at)

    def list_sourcemaps(self, dsn: str) -> List[SourceMapArtifact]:
        with self._lock:
            artifacts = [a for a in self._sourcemaps.values() if a.dsn == dsn]
        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    def delete_sourcemap(self, dsn: str, version: str, filename: str) -> bool:
        with self._lock:
            return self._sourcemaps.pop((dsn, version, filename), None) is not None

    def create_rule(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            self._rules[rule.id] = rule
        return rule

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def update_rule(self, rule: AlertRule) -> AlertRule:
        with self._lock:
            self._rules[rule.id] = rule
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def list_rules(self, dsn: Optional[str] = None, enabled_only: bool = False) -> List[AlertRule]:
        with self._lock:
            rules = [
                r for r in self._rules.values()
                if (dsn is None or r.dsn == dsn) and (not enabled_only or r.enabled)
            ]
        rules.sort(key=lambda r: r.created_at, reverse=True)
        return rules

    def append_history(self, entry: AlertHistory) -> AlertHistory:
        with self._lock:
            self._history.append(entry)
        return entry

    def set_history_delivery(
        self,
        history_id: str,
        email_sent: bool,
        delivery_error: Optional[str] = None,
    ) -> None:
        with self._lock:
            for index, entry in enumerate(self._history):
                if entry.id == history_id:
                    self._history[index] = entry.model_copy(
                        update={"email_sent": email_sent, "delivery_error": delivery_error}
                    )
                    return
        logger.warning("alert_history_not_found", history_id=history_id)

    def list_history(self, dsn: Optional[str] = None, limit: int = 50) -> List[AlertHistory]:
        with self._lock:
            entries = [h for h in self._history if dsn is None or h.dsn == dsn]
        entries.sort(key=lambda h: h.triggered_at, reverse=True)
        return entries[:limit]

    def last_triggered(self, rule_id: str, fingerprint: str) -> Optional[int]:
        with self._lock:
            times = [
                h.triggered_at for h in self._history
                if h.rule_id == rule_id and h.fingerprint == fingerprint
            ]
        return max(times) if times else None

    def delete_expired(self, retention_days: int) -> List[str]:
        cutoff = int(time.time() * 1000) - retention_days * 86400 * 1000
        with self._lock:
            before = len(self._occurrences)
            self._occurrences = deque((o for o in self._occurrences if o.timestamp >= cutoff), maxlen=self.max_records)
            self._performance = deque((p for p in self._performance if p.timestamp >= cutoff), maxlen=self.max_records)
            removed = before - len(self._occurrences)
        return [f"occurrences:{removed}"] if removed else []

    def health(self) -> Dict[str, Any]:
        return {"status": "ok", "backend": "memory", "groups": len(self._groups)}
