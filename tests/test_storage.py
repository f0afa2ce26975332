"""Tests for the storage backends."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError
from opensearchpy.exceptions import NotFoundError

from pulsewatch.opensearch.store import OpenSearchStore, sourcemap_doc_id
from pulsewatch.storage.base import StorageError
from pulsewatch.storage.memory import MemoryStore
from pulsewatch.storage.models import (
    AlertHistory,
    AlertRule,
    AlertRuleType,
    ErrorGroup,
    ErrorOccurrence,
    ErrorStatus,
)


def _group(last_seen=1000, dsn="shop", fingerprint="abc123", **overrides) -> ErrorGroup:
    fields = dict(
        id=f"{dsn}-{fingerprint}",
        dsn=dsn,
        fingerprint=fingerprint,
        type="error",
        message="TypeError: boom",
        breadcrumbs=[{"type": "click", "message": f"at {last_seen}"}],
        first_seen=last_seen,
        last_seen=last_seen,
    )
    fields.update(overrides)
    return ErrorGroup(**fields)


class TestMemoryStoreGroups:
    """Tests for the in-memory group upsert."""

    def setup_method(self):
        self.store = MemoryStore()

    def test_first_upsert_creates(self):
        group, is_new = self.store.upsert_error_group(_group())

        assert is_new is True
        assert group.count == 1
        assert group.status == ErrorStatus.OPEN

    def test_second_upsert_updates(self):
        self.store.upsert_error_group(_group(last_seen=1000))
        group, is_new = self.store.upsert_error_group(_group(last_seen=2000, release="1.1.0"))

        assert is_new is False
        assert group.count == 2
        assert group.first_seen == 1000
        assert group.last_seen == 2000
        assert group.breadcrumbs == [{"type": "click", "message": "at 2000"}]
        assert group.release == "1.1.0"

    def test_older_occurrence_does_not_replace_breadcrumbs(self):
        self.store.upsert_error_group(_group(last_seen=2000))
        group, _ = self.store.upsert_error_group(_group(last_seen=1000))

        assert group.count == 2
        assert group.first_seen == 1000
        assert group.last_seen == 2000
        assert group.breadcrumbs == [{"type": "click", "message": "at 2000"}]

    def test_concurrent_upserts_count_every_occurrence(self):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: self.store.upsert_error_group(_group(last_seen=i)), range(200)))

        assert sum(1 for _, is_new in results if is_new) == 1
        assert self.store.get_error_group("shop-abc123").count == 200

    def test_returned_group_is_a_copy(self):
        group, _ = self.store.upsert_error_group(_group())
        group.breadcrumbs.append({"type": "route"})

        assert len(self.store.get_error_group(group.id).breadcrumbs) == 1

    def test_status_update(self):
        self.store.upsert_error_group(_group())

        updated = self.store.update_error_status("shop-abc123", ErrorStatus.RESOLVED)

        assert updated.status == ErrorStatus.RESOLVED
        assert self.store.update_error_status("missing", ErrorStatus.RESOLVED) is None

    def test_list_filters_and_pagination(self):
        for i in range(5):
            self.store.upsert_error_group(_group(last_seen=1000 + i, fingerprint=f"fp{i}"))
        self.store.upsert_error_group(_group(dsn="admin"))

        total, groups = self.store.list_error_groups(dsn="shop", page=1, page_size=2)

        assert total == 5
        assert [g.fingerprint for g in groups] == ["fp4", "fp3"]

        total, groups = self.store.list_error_groups(dsn="shop", page=3, page_size=2)
        assert [g.fingerprint for g in groups] == ["fp0"]


class TestMemoryStoreOccurrences:
    """Tests for occurrence counting."""

    def setup_method(self):
        self.store = MemoryStore()
        for ts, fp in [(1000, "a"), (2000, "a"), (3000, "b"), (4000, "a")]:
            self.store.record_occurrence(
                ErrorOccurrence(dsn="shop", fingerprint=fp, group_id=fp, type="error", timestamp=ts)
            )

    def test_count_window(self):
        assert self.store.count_occurrences("shop", since=2000) == 3
        assert self.store.count_occurrences("shop", since=1000, until=3000) == 2
        assert self.store.count_occurrences("shop", since=0, fingerprint="a") == 3
        assert self.store.count_occurrences("admin", since=0) == 0

    def test_oldest_dropped_past_cap(self):
        store = MemoryStore(max_records=3)
        for ts in (1000, 2000, 3000, 4000):
            store.record_occurrence(
                ErrorOccurrence(dsn="shop", fingerprint="a", group_id="a", type="error", timestamp=ts)
            )

        assert store.count_occurrences("shop", since=0) == 3
        assert store.count_occurrences("shop", since=0, until=2000) == 0

    def test_trend_buckets(self):
        trend = self.store.occurrence_trend("shop", 0, 5000, interval_ms=2000)
        assert trend == [
            {"timestamp": 0, "count": 1},
            {"timestamp": 2000, "count": 2},
            {"timestamp": 4000, "count": 1},
        ]


class TestMemoryStoreAlerting:
    """Tests for rules and history bookkeeping."""

    def setup_method(self):
        self.store = MemoryStore()

    def test_rules_by_dsn_and_enabled(self):
        self.store.create_rule(AlertRule(dsn="shop", name="a", type=AlertRuleType.NEW_ERROR, created_at=1, updated_at=1))
        self.store.create_rule(
            AlertRule(dsn="shop", name="b", type=AlertRuleType.NEW_ERROR, enabled=False, created_at=2, updated_at=2)
        )

        assert len(self.store.list_rules(dsn="shop")) == 2
        assert [r.name for r in self.store.list_rules(dsn="shop", enabled_only=True)] == ["a"]

    def test_history_delivery_and_last_triggered(self):
        entry = self.store.append_history(
            AlertHistory(rule_id="r1", rule_name="n", dsn="shop", fingerprint="fp", error_message="m", triggered_at=500)
        )
        self.store.append_history(
            AlertHistory(rule_id="r1", rule_name="n", dsn="shop", fingerprint="fp", error_message="m", triggered_at=900)
        )

        self.store.set_history_delivery(entry.id, email_sent=False, delivery_error="smtp down")

        assert self.store.last_triggered("r1", "fp") == 900
        assert self.store.last_triggered("r1", "other") is None
        stored = [h for h in self.store.list_history(dsn="shop") if h.id == entry.id][0]
        assert stored.email_sent is False
        assert stored.delivery_error == "smtp down"


class TestOpenSearchStore:
    """Tests for the OpenSearch backend against a mocked client."""

    def setup_method(self):
        self.os_client = MagicMock()
        client = MagicMock()
        client.prefix = "pulsewatch"
        client.get_client.return_value = self.os_client
        self.store = OpenSearchStore(client, upsert_retries=7)

    def test_upsert_is_a_single_scripted_update(self):
        group = _group(release="1.0.0")
        self.os_client.update.return_value = {
            "result": "created",
            "get": {"_source": group.to_document()},
        }

        stored, is_new = self.store.upsert_error_group(group)

        assert is_new is True
        assert stored.id == group.id
        self.os_client.update.assert_called_once()
        kwargs = self.os_client.update.call_args.kwargs
        assert kwargs["index"] == "pulsewatch-groups"
        assert kwargs["id"] == group.id
        assert kwargs["retry_on_conflict"] == 7
        assert kwargs["body"]["upsert"]["count"] == 1
        assert "ctx._source.count += 1" in kwargs["body"]["script"]["source"]
        assert kwargs["body"]["script"]["params"]["release"] == "1.0.0"

    def test_upsert_existing_group(self):
        group = _group()
        document = group.to_document()
        document["count"] = 5
        self.os_client.update.return_value = {"result": "updated", "get": {"_source": document}}

        stored, is_new = self.store.upsert_error_group(group)

        assert is_new is False
        assert stored.count == 5

    def test_upsert_failure_raises_storage_error(self):
        self.os_client.update.side_effect = OpenSearchConnectionError("N/A", "refused", None)

        with pytest.raises(StorageError):
            self.store.upsert_error_group(_group())

    def test_missing_group_is_none(self):
        self.os_client.get.side_effect = NotFoundError(404, "not_found", {})

        assert self.store.get_error_group("missing") is None

    def test_count_occurrences_query(self):
        self.os_client.count.return_value = {"count": 4}

        assert self.store.count_occurrences("shop", since=100, until=200, fingerprint="fp") == 4
        kwargs = self.os_client.count.call_args.kwargs
        assert kwargs["index"] == "pulsewatch-occurrences-*"
        filters = kwargs["body"]["query"]["bool"]["filter"]
        assert {"range": {"timestamp": {"gte": 100, "lt": 200}}} in filters
        assert {"term": {"fingerprint": "fp"}} in filters

    def test_sourcemap_doc_id_is_stable(self):
        assert sourcemap_doc_id("shop", "1.0", "a.js.map") == sourcemap_doc_id("shop", "1.0", "a.js.map")
        assert sourcemap_doc_id("shop", "1.0", "a.js.map") != sourcemap_doc_id("shop", "1.1", "a.js.map")
