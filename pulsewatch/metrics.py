"""Prometheus metrics."""

from prometheus_client import Counter

events_received_total = Counter(
    "pulsewatch_events_received_total",
    "Events accepted by POST /report",
    ["kind"],
)

error_groups_created_total = Counter(
    "pulsewatch_error_groups_created_total",
    "Error groups created on first occurrence",
)

alerts_triggered_total = Counter(
    "pulsewatch_alerts_triggered_total",
    "Alert rule triggers after cooldown",
    ["rule_type"],
)

notifications_total = Counter(
    "pulsewatch_notifications_total",
    "Notification delivery attempts",
    ["channel", "success"],
)
