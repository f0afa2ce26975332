"""Alert rule evaluation with per-(rule, fingerprint) cooldown."""

import time
from collections import OrderedDict
from contextlib import contextmanager
from threading import Lock
from typing import Callable, Iterator, List, Optional, Tuple

import structlog

from ..metrics import alerts_triggered_total
from ..notifications.base import AlertNotification
from ..storage.base import TelemetryStore
from ..storage.models import AlertHistory, AlertRule, ErrorGroup
from .rules import MINUTE_MS, evaluate_condition

logger = structlog.get_logger(__name__)

CooldownKey = Tuple[str, str]

DEFAULT_MAX_COOLDOWN_ENTRIES = 10_000


def _now_ms() -> int:
    return int(time.time() * 1000)


class _CooldownSlot:
    __slots__ = ("lock", "last", "loaded", "users")

    def __init__(self):
        self.lock = Lock()
        self.last: Optional[int] = None
        self.loaded = False
        self.users = 0


class CooldownTracker:
    """
    Last trigger time per (rule id, fingerprint).

    State lives in process memory as an LRU of at most ``max_entries`` keys;
    a key seen for the first time, or evicted earlier, is seeded from the
    newest alert history row, so eviction and restarts keep honouring
    cooldowns. Keys being evaluated are never evicted.
    """

    def __init__(self, store: TelemetryStore, max_entries: int = DEFAULT_MAX_COOLDOWN_ENTRIES):
        self.store = store
        self.max_entries = max_entries
        self._slots: "OrderedDict[CooldownKey, _CooldownSlot]" = OrderedDict()
        self._guard = Lock()

    @contextmanager
    def hold(self, key: CooldownKey) -> Iterator[_CooldownSlot]:
        """Serialize evaluation of ``key``; yields its slot."""
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _CooldownSlot()
            self._slots.move_to_end(key)
            slot.users += 1

        try:
            with slot.lock:
                yield slot
        finally:
            with self._guard:
                slot.users -= 1
                self._evict()

    def _evict(self) -> None:
        """Caller must hold ``_guard``."""
        excess = len(self._slots) - self.max_entries
        if excess <= 0:
            return
        idle = [key for key, slot in self._slots.items() if slot.users == 0][:excess]
        for key in idle:
            del self._slots[key]

    def last_triggered(self, key: CooldownKey, slot: _CooldownSlot) -> Optional[int]:
        """Caller must be inside ``hold(key)``."""
        if not slot.loaded:
            slot.last = self.store.last_triggered(*key)
            slot.loaded = True
        return slot.last

    def forget_rule(self, rule_id: str) -> None:
        with self._guard:
            for key in [k for k, slot in self._slots.items() if k[0] == rule_id and slot.users == 0]:
                del self._slots[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @staticmethod
    def in_cooldown(last: Optional[int], cooldown_minutes: int, now: int) -> bool:
        return last is not None and now - last < cooldown_minutes * MINUTE_MS


class AlertEngine:
    """
    Evaluate every enabled rule of a dsn against a freshly aggregated group.

    Evaluation for one (rule, fingerprint) is serialized, so two concurrent
    ingestions of the same error cannot both pass the cooldown check.
    Rules never influence each other.
    """

    def __init__(
        self,
        store: TelemetryStore,
        clock: Callable[[], int] = _now_ms,
        dashboard_url: Optional[str] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Storage backend for rules, counts and history
            clock: Returns the current time in epoch milliseconds
            dashboard_url: Base URL used for links in notifications
        """
        self.store = store
        self.clock = clock
        self.dashboard_url = dashboard_url
        self.cooldowns = CooldownTracker(store)

    def evaluate(self, group: ErrorGroup, is_new: bool) -> List[AlertNotification]:
        """
        Evaluate rules for one ingested occurrence.

        Args:
            group: Group state after the upsert
            is_new: Whether the occurrence created the group

        Returns:
            Notifications to dispatch, one per triggered rule
        """
        triggered: List[AlertNotification] = []

        for rule in self.store.list_rules(dsn=group.dsn, enabled_only=True):
            notification = self.evaluate_rule(rule, group, is_new)
            if notification is not None:
                triggered.append(notification)

        return triggered

    def evaluate_rule(
        self,
        rule: AlertRule,
        group: ErrorGroup,
        is_new: bool,
    ) -> Optional[AlertNotification]:
        """Evaluate one rule; on trigger records history and returns the notification."""
        key: CooldownKey = (rule.id, group.fingerprint)

        with self.cooldowns.hold(key) as slot:
            now = self.clock()

            if not evaluate_condition(rule, group, is_new, self.store, now):
                return None

            last = self.cooldowns.last_triggered(key, slot)
            if self.cooldowns.in_cooldown(last, rule.cooldown_minutes, now):
                logger.debug(
                    "alert_suppressed_by_cooldown",
                    rule_id=rule.id,
                    fingerprint=group.fingerprint,
                    seconds_remaining=int((rule.cooldown_minutes * MINUTE_MS - (now - last)) / 1000),
                )
                return None

            slot.last = now
            history = self.store.append_history(
                AlertHistory(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    dsn=group.dsn,
                    fingerprint=group.fingerprint,
                    group_id=group.id,
                    error_message=group.message,
                    triggered_at=now,
                )
            )

        alerts_triggered_total.labels(rule_type=rule.type.value).inc()
        logger.info(
            "alert_triggered",
            rule_id=rule.id,
            rule_type=rule.type.value,
            dsn=group.dsn,
            fingerprint=group.fingerprint,
            history_id=history.id,
        )

        return AlertNotification(
            history_id=history.id,
            rule_id=rule.id,
            rule_name=rule.name,
            rule_type=rule.type.value,
            dsn=group.dsn,
            recipients=rule.recipients,
            fingerprint=group.fingerprint,
            group_id=group.id,
            error_type=group.type,
            error_message=group.message,
            count=group.count,
            url=group.url,
            first_seen=group.first_seen,
            last_seen=group.last_seen,
            triggered_at=now,
            dashboard_url=self.dashboard_url,
        )
