"""OpenSearch storage backend."""

import hashlib
import time
from typing import Any, Dict, List, Optional, Tuple

import structlog
from opensearchpy.exceptions import NotFoundError, OpenSearchException

from ..storage.base import StorageError, TelemetryStore
from ..storage.models import (
    AlertHistory,
    AlertRule,
    ErrorGroup,
    ErrorOccurrence,
    ErrorStatus,
    PerformanceRecord,
    SourceMapArtifact,
)
from .client import OpenSearchClient
from .mappings import index_names

logger = structlog.get_logger(__name__)

# Folds one occurrence into an existing group. Newer occurrences replace the
# breadcrumbs, replay and release; count always grows by exactly one.
UPSERT_GROUP_SCRIPT = """
ctx._source.count += 1;
if (params.ts >= ctx._source.last_seen) {
    ctx._source.last_seen = params.ts;
    ctx._source.breadcrumbs = params.breadcrumbs;
    if (params.session_replay != null) { ctx._source.session_replay = params.session_replay; }
    if (params.release != null) { ctx._source.release = params.release; }
}
if (params.ts < ctx._source.first_seen) { ctx._source.first_seen = params.ts; }
"""


def sourcemap_doc_id(dsn: str, version: str, filename: str) -> str:
    return hashlib.sha256(f"{dsn}\x00{version}\x00{filename}".encode("utf-8")).hexdigest()


def _hits(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [hit["_source"] for hit in response.get("hits", {}).get("hits", [])]


def _total(response: Dict[str, Any]) -> int:
    total = response.get("hits", {}).get("total", 0)
    if isinstance(total, dict):
        return total.get("value", 0)
    return total


class OpenSearchStore(TelemetryStore):
    """
    TelemetryStore on OpenSearch.

    Groups, source maps and alerting live in fixed indices; occurrences and
    performance samples go to daily indices so retention can drop whole days.
    """

    def __init__(self, client: OpenSearchClient, upsert_retries: int = 5):
        """
        Initialize the store.

        Args:
            client: OpenSearchClient wrapper
            upsert_retries: retry_on_conflict for the group upsert
        """
        self.client = client
        self.upsert_retries = upsert_retries
        self.indices = index_names(client.prefix)

    @property
    def os_client(self):
        return self.client.get_client()

    def _pattern(self, family: str) -> str:
        return f"{self.client.prefix}-{family}-*"

    # Error groups

    def upsert_error_group(self, group: ErrorGroup) -> Tuple[ErrorGroup, bool]:
        document = group.to_document()
        document["count"] = 1

        body = {
            "script": {
                "source": UPSERT_GROUP_SCRIPT,
                "lang": "painless",
                "params": {
                    "ts": group.last_seen,
                    "breadcrumbs": document["breadcrumbs"],
                    "session_replay": document["session_replay"],
                    "release": document["release"],
                },
            },
            "upsert": document,
        }

        try:
            response = self.os_client.update(
                index=self.indices["groups"],
                id=group.id,
                body=body,
                retry_on_conflict=self.upsert_retries,
                refresh="wait_for",
                _source=True,
            )
        except OpenSearchException as e:
            logger.error("group_upsert_failed", group_id=group.id, error=str(e))
            raise StorageError(f"failed to upsert error group {group.id}") from e

        is_new = response.get("result") == "created"
        source = response.get("get", {}).get("_source") or document
        return ErrorGroup.model_validate(source), is_new

    def get_error_group(self, group_id: str) -> Optional[ErrorGroup]:
        try:
            response = self.os_client.get(index=self.indices["groups"], id=group_id)
        except NotFoundError:
            return None
        return ErrorGroup.model_validate(response["_source"])

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
        filters: List[Dict[str, Any]] = []
        if dsn:
            filters.append({"term": {"dsn": dsn}})
        if error_type:
            filters.append({"term": {"type": error_type}})
        if status:
            filters.append({"term": {"status": ErrorStatus(status).value}})
        if start_time is not None or end_time is not None:
            bounds: Dict[str, int] = {}
            if start_time is not None:
                bounds["gte"] = start_time
            if end_time is not None:
                bounds["lte"] = end_time
            filters.append({"range": {"last_seen": bounds}})

        body = {
            "query": {"bool": {"filter": filters}},
            "sort": [{"last_seen": {"order": "desc"}}],
            "from": (max(page, 1) - 1) * page_size,
            "size": page_size,
            "track_total_hits": True,
        }

        try:
            response = self.os_client.search(index=self.indices["groups"], body=body)
        except NotFoundError:
            return 0, []
        return _total(response), [ErrorGroup.model_validate(doc) for doc in _hits(response)]

    def update_error_status(self, group_id: str, status: ErrorStatus) -> Optional[ErrorGroup]:
        try:
            response = self.os_client.update(
                index=self.indices["groups"],
                id=group_id,
                body={"doc": {"status": ErrorStatus(status).value}},
                refresh="wait_for",
                _source=True,
            )
        except NotFoundError:
            return None
        return ErrorGroup.model_validate(response["get"]["_source"])

    # Occurrences

    def record_occurrence(self, occurrence: ErrorOccurrence) -> None:
        self.os_client.index(
            index=self.client.daily_index("occurrences", occurrence.timestamp),
            id=occurrence.id,
            body=occurrence.to_document(),
            refresh="wait_for",
        )

    def count_occurrences(
        self,
        dsn: str,
        since: int,
        until: Optional[int] = None,
        fingerprint: Optional[str] = None,
    ) -> int:
        bounds: Dict[str, int] = {"gte": since}
        if until is not None:
            bounds["lt"] = until

        filters: List[Dict[str, Any]] = [
            {"term": {"dsn": dsn}},
            {"range": {"timestamp": bounds}},
        ]
        if fingerprint:
            filters.append({"term": {"fingerprint": fingerprint}})

        try:
            response = self.os_client.count(
                index=self._pattern("occurrences"),
                body={"query": {"bool": {"filter": filters}}},
                allow_no_indices=True,
                ignore_unavailable=True,
            )
        except NotFoundError:
            return 0
        return response.get("count", 0)

    def occurrence_trend(
        self,
        dsn: str,
        start_time: int,
        end_time: int,
        interval_ms: int = 3600 * 1000,
    ) -> List[Dict[str, Any]]:
        body = {
            "size": 0,
            "query": {
                "bool": {
                    "filter": [
                        {"term": {"dsn": dsn}},
                        {"range": {"timestamp": {"gte": start_time, "lte": end_time}}},
                    ]
                }
            },
            "aggs": {
                "trend": {
                    "date_histogram": {
                        "field": "timestamp",
                        "fixed_interval": f"{interval_ms}ms",
                        "min_doc_count": 1,
                    }
                }
            },
        }

        try:
            response = self.os_client.search(
                index=self._pattern("occurrences"),
                body=body,
                allow_no_indices=True,
                ignore_unavailable=True,
            )
        except NotFoundError:
            return []

        buckets = response.get("aggregations", {}).get("trend", {}).get("buckets", [])
        return [{"timestamp": b["key"], "count": b["doc_count"]} for b in buckets]

    # Performance

    def save_performance(self, record: PerformanceRecord) -> None:
        self.os_client.index(
            index=self.client.daily_index("performance", record.timestamp),
            id=record.id,
            body=record.to_document(),
            refresh=False,
        )

    def list_performance(self, dsn: str, limit: int = 100) -> List[PerformanceRecord]:
        body = {
            "query": {"bool": {"filter": [{"term": {"dsn": dsn}}]}},
            "sort": [{"timestamp": {"order": "desc"}}],
            "size": limit,
        }
        try:
            response = self.os_client.search(
                index=self._pattern("performance"),
                body=body,
                allow_no_indices=True,
                ignore_unavailable=True,
            )
        except NotFoundError:
            return []
        return [PerformanceRecord.model_validate(doc) for doc in _hits(response)]

    # Source maps

    def save_sourcemap(self, artifact: SourceMapArtifact) -> None:
        self.os_client.index(
            index=self.indices["sourcemaps"],
            id=sourcemap_doc_id(artifact.dsn, artifact.version, artifact.filename),
            body=artifact.to_document(),
            refresh="wait_for",
        )

    def find_sourcemap(
        self,
        dsn: str,
        filename: str,
        version: Optional[str] = None,
    ) -> Optional[SourceMapArtifact]:
        if version is not None:
            try:
                response = self.os_client.get(
                    index=self.indices["sourcemaps"],
                    id=sourcemap_doc_id(dsn, version, filename),
                )
                return SourceMapArtifact.model_validate(response["_source"])
            except NotFoundError:
                pass

        body = {
            "query": {
                "bool": {
                    "filter": [
                        {"term": {"dsn": dsn}},
                        {"term": {"filename": filename}},
                    ]
                }
            },
            "sort": [{"created_at": {"order": "desc"}}],
            "size": 1,
        }
        try:
            response = self.os_client.search(index=self.indices["sourcemaps"], body=body)
        except NotFoundError:
            return None

        docs = _hits(response)
        return SourceMapArtifact.model_validate(docs[0]) if docs else None

    def list_sourcemaps(self, dsn: str) -> List[SourceMapArtifact]:
        body = {
            "query": {"bool": {"filter": [{"term": {"dsn": dsn}}]}},
            "sort": [{"created_at": {"order": "desc"}}],
            "size": 1000,
        }
        try:
            response = self.os_client.search(index=self.indices["sourcemaps"], body=body)
        except NotFoundError:
            return []
        return [SourceMapArtifact.model_validate(doc) for doc in _hits(response)]

    def delete_sourcemap(self, dsn: str, version: str, filename: str) -> bool:
        try:
            self.os_client.delete(
                index=self.indices["sourcemaps"],
                id=sourcemap_doc_id(dsn, version, filename),
                refresh="wait_for",
            )
            return True
        except NotFoundError:
            return False

    # Alert rules

    def create_rule(self, rule: AlertRule) -> AlertRule:
        self.os_client.index(
            index=self.indices["alert_rules"],
            id=rule.id,
            body=rule.to_document(),
            refresh="wait_for",
        )
        return rule

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        try:
            response = self.os_client.get(index=self.indices["alert_rules"], id=rule_id)
        except NotFoundError:
            return None
        return AlertRule.model_validate(response["_source"])

    def update_rule(self, rule: AlertRule) -> AlertRule:
        return self.create_rule(rule)

    def delete_rule(self, rule_id: str) -> bool:
        try:
            self.os_client.delete(index=self.indices["alert_rules"], id=rule_id, refresh="wait_for")
            return True
        except NotFoundError:
            return False

    def list_rules(self, dsn: Optional[str] = None, enabled_only: bool = False) -> List[AlertRule]:
        filters: List[Dict[str, Any]] = []
        if dsn:
            filters.append({"term": {"dsn": dsn}})
        if enabled_only:
            filters.append({"term": {"enabled": True}})

        body = {
            "query": {"bool": {"filter": filters}},
            "sort": [{"created_at": {"order": "desc"}}],
            "size": 1000,
        }
        try:
            response = self.os_client.search(index=self.indices["alert_rules"], body=body)
        except NotFoundError:
            return []
        return [AlertRule.model_validate(doc) for doc in _hits(response)]

    # Alert history

    def append_history(self, entry: AlertHistory) -> AlertHistory:
        self.os_client.index(
            index=self.indices["alert_history"],
            id=entry.id,
            body=entry.to_document(),
            refresh="wait_for",
        )
        return entry

    def set_history_delivery(
        self,
        history_id: str,
        email_sent: bool,
        delivery_error: Optional[str] = None,
    ) -> None:
        try:
            self.os_client.update(
                index=self.indices["alert_history"],
                id=history_id,
                body={"doc": {"email_sent": email_sent, "delivery_error": delivery_error}},
                retry_on_conflict=3,
            )
        except NotFoundError:
            logger.warning("alert_history_not_found", history_id=history_id)

    def list_history(self, dsn: Optional[str] = None, limit: int = 50) -> List[AlertHistory]:
        filters = [{"term": {"dsn": dsn}}] if dsn else []
        body = {
            "query": {"bool": {"filter": filters}},
            "sort": [{"triggered_at": {"order": "desc"}}],
            "size": limit,
        }
        try:
            response = self.os_client.search(index=self.indices["alert_history"], body=body)
        except NotFoundError:
            return []
        return [AlertHistory.model_validate(doc) for doc in _hits(response)]

    def last_triggered(self, rule_id: str, fingerprint: str) -> Optional[int]:
        body = {
            "query": {
                "bool": {
                    "filter": [
                        {"term": {"rule_id": rule_id}},
                        {"term": {"fingerprint": fingerprint}},
                    ]
                }
            },
            "sort": [{"triggered_at": {"order": "desc"}}],
            "size": 1,
        }
        try:
            response = self.os_client.search(index=self.indices["alert_history"], body=body)
        except NotFoundError:
            return None

        docs = _hits(response)
        return docs[0]["triggered_at"] if docs else None

    # Lifecycle

    def delete_expired(self, retention_days: int) -> List[str]:
        return self.client.delete_old_indices(retention_days)

    def health(self) -> Dict[str, Any]:
        started = time.monotonic()
        health = self.client.health_check()
        return {
            "status": health.get("status", "unknown"),
            "cluster_name": health.get("cluster_name"),
            "number_of_nodes": health.get("number_of_nodes"),
            "latency_ms": round((time.monotonic() - started) * 1000, 1),
        }

    def close(self) -> None:
        self.client.close()
