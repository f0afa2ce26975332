"""OpenSearch index mappings and policies for monitoring data."""

from typing import Any, Dict

_KEYWORD_TEXT = {
    "type": "text",
    "analyzer": "standard",
    "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
}

_SINGLE_NODE_SETTINGS = {
    "number_of_shards": 1,
    "number_of_replicas": 0,
}

# Error groups, one document per (dsn, fingerprint)
ERROR_GROUPS_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "dsn": {"type": "keyword"},
            "fingerprint": {"type": "keyword"},
            "type": {"type": "keyword"},
            "message": _KEYWORD_TEXT,
            "normalized_message": _KEYWORD_TEXT,
            "stack": {"type": "text", "index": False},
            "filename": {"type": "keyword"},
            "lineno": {"type": "integer"},
            "colno": {"type": "integer"},
            "url": {"type": "keyword"},
            "resource_type": {"type": "keyword"},
            # Opaque payloads, stored but not indexed
            "breadcrumbs": {"type": "object", "enabled": False},
            "session_replay": {"type": "object", "enabled": False},
            "user": {"type": "object", "enabled": False},
            "context": {"type": "object", "enabled": False},
            "release": {"type": "keyword"},
            "count": {"type": "long"},
            "first_seen": {"type": "date", "format": "epoch_millis"},
            "last_seen": {"type": "date", "format": "epoch_millis"},
            "status": {"type": "keyword"},
        }
    },
    "settings": {**_SINGLE_NODE_SETTINGS, "refresh_interval": "1s"},
}

# Error occurrences, daily indices: {prefix}-occurrences-YYYY.MM.DD
OCCURRENCES_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "dsn": {"type": "keyword"},
            "fingerprint": {"type": "keyword"},
            "group_id": {"type": "keyword"},
            "type": {"type": "keyword"},
            "url": {"type": "keyword"},
            "timestamp": {"type": "date", "format": "epoch_millis"},
        }
    },
    "settings": {**_SINGLE_NODE_SETTINGS, "refresh_interval": "1s"},
}

# Performance samples, daily indices: {prefix}-performance-YYYY.MM.DD
PERFORMANCE_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "dsn": {"type": "keyword"},
            "url": {"type": "keyword"},
            "timestamp": {"type": "date", "format": "epoch_millis"},
            "fp": {"type": "float"},
            "fcp": {"type": "float"},
            "lcp": {"type": "float"},
            "fid": {"type": "float"},
            "layout_shift": {"type": "float"},
            "ttfb": {"type": "float"},
            "dom_ready": {"type": "float"},
            "load": {"type": "float"},
            "long_tasks": {"type": "object", "enabled": False},
            "resources": {"type": "object", "enabled": False},
            "network_quality": {"type": "object", "enabled": False},
            "user": {"type": "object", "enabled": False},
            "context": {"type": "object", "enabled": False},
        }
    },
    "settings": {**_SINGLE_NODE_SETTINGS, "refresh_interval": "5s"},
}

SOURCEMAPS_MAPPING = {
    "mappings": {
        "properties": {
            "dsn": {"type": "keyword"},
            "version": {"type": "keyword"},
            "filename": {"type": "keyword"},
            "content": {"type": "text", "index": False},
            "size": {"type": "long"},
            "created_at": {"type": "date", "format": "epoch_millis"},
        }
    },
    "settings": _SINGLE_NODE_SETTINGS,
}

ALERT_RULES_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "dsn": {"type": "keyword"},
            "name": _KEYWORD_TEXT,
            "type": {"type": "keyword"},
            "enabled": {"type": "boolean"},
            "threshold": {"type": "float"},
            "time_window": {"type": "integer"},
            "recipients": {"type": "keyword"},
            "cooldown_minutes": {"type": "integer"},
            "created_at": {"type": "date", "format": "epoch_millis"},
            "updated_at": {"type": "date", "format": "epoch_millis"},
        }
    },
    "settings": _SINGLE_NODE_SETTINGS,
}

ALERT_HISTORY_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "rule_id": {"type": "keyword"},
            "rule_name": {"type": "keyword"},
            "dsn": {"type": "keyword"},
            "fingerprint": {"type": "keyword"},
            "group_id": {"type": "keyword"},
            "error_message": _KEYWORD_TEXT,
            "triggered_at": {"type": "date", "format": "epoch_millis"},
            "email_sent": {"type": "boolean"},
            "delivery_error": {"type": "text"},
        }
    },
    "settings": _SINGLE_NODE_SETTINGS,
}


def index_names(prefix: str) -> Dict[str, str]:
    """Names of the fixed indices for an index prefix."""
    return {
        "groups": f"{prefix}-groups",
        "sourcemaps": f"{prefix}-sourcemaps",
        "alert_rules": f"{prefix}-alert-rules",
        "alert_history": f"{prefix}-alert-history",
    }


def fixed_indices(prefix: str) -> Dict[str, Dict[str, Any]]:
    """Fixed index name -> body."""
    names = index_names(prefix)
    return {
        names["groups"]: ERROR_GROUPS_MAPPING,
        names["sourcemaps"]: SOURCEMAPS_MAPPING,
        names["alert_rules"]: ALERT_RULES_MAPPING,
        names["alert_history"]: ALERT_HISTORY_MAPPING,
    }


def index_templates(prefix: str) -> Dict[str, Dict[str, Any]]:
    """Composable templates for the daily time-partitioned indices."""
    return {
        f"{prefix}-occurrences-template": {
            "index_patterns": [f"{prefix}-occurrences-*"],
            "template": OCCURRENCES_MAPPING,
            "priority": 100,
            "_meta": {"description": "Template for error occurrence indices"},
        },
        f"{prefix}-performance-template": {
            "index_patterns": [f"{prefix}-performance-*"],
            "template": PERFORMANCE_MAPPING,
            "priority": 100,
            "_meta": {"description": "Template for performance sample indices"},
        },
    }


def ism_policy(prefix: str, retention_days: int = 90) -> Dict[str, Any]:
    """
    ISM (Index State Management) policy for the daily indices.

    Daily indices are deleted once older than the retention period.
    """
    return {
        "policy": {
            "description": "Pulsewatch time-partitioned data lifecycle policy",
            "default_state": "hot",
            "states": [
                {
                    "name": "hot",
                    "actions": [],
                    "transitions": [
                        {
                            "state_name": "warm",
                            "conditions": {"min_index_age": "7d"},
                        }
                    ],
                },
                {
                    "name": "warm",
                    "actions": [{"force_merge": {"max_num_segments": 1}}],
                    "transitions": [
                        {
                            "state_name": "delete",
                            "conditions": {"min_index_age": f"{retention_days}d"},
                        }
                    ],
                },
                {
                    "name": "delete",
                    "actions": [{"delete": {}}],
                    "transitions": [],
                },
            ],
            "ism_template": {
                "index_patterns": [
                    f"{prefix}-occurrences-*",
                    f"{prefix}-performance-*",
                ],
                "priority": 100,
            },
        }
    }
