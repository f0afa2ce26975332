"""Alert rule schemas and trigger conditions."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..storage.base import TelemetryStore
from ..storage.models import AlertRule, AlertRuleType, ErrorGroup

MINUTE_MS = 60 * 1000
DEFAULT_SPIKE_WINDOW = 60


class _RuleFields(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("recipients", check_fields=False)
    @classmethod
    def validate_recipients(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        cleaned = [r.strip() for r in v if r and r.strip()]
        for recipient in cleaned:
            if "@" not in recipient:
                raise ValueError(f"invalid recipient address: {recipient}")
        return cleaned


class AlertRuleCreate(_RuleFields):
    """Body of POST /alerts/rules."""

    dsn: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: AlertRuleType
    enabled: bool = True
    threshold: Optional[float] = Field(None, gt=0)
    time_window: Optional[int] = Field(None, gt=0)
    recipients: List[str] = []
    cooldown_minutes: int = Field(30, ge=0)

    @model_validator(mode="after")
    def check_threshold(self) -> "AlertRuleCreate":
        if self.type != AlertRuleType.NEW_ERROR and self.threshold is None:
            raise ValueError(f"threshold is required for {self.type.value} rules")
        return self


class AlertRuleUpdate(_RuleFields):
    """Body of PATCH /alerts/rules/{id}; only the given fields change."""

    name: Optional[str] = Field(None, min_length=1)
    type: Optional[AlertRuleType] = None
    enabled: Optional[bool] = None
    threshold: Optional[float] = Field(None, gt=0)
    time_window: Optional[int] = Field(None, gt=0)
    recipients: Optional[List[str]] = None
    cooldown_minutes: Optional[int] = Field(None, ge=0)


def apply_update(rule: AlertRule, update: AlertRuleUpdate, now: int) -> AlertRule:
    """
    Return a copy of ``rule`` with the fields set in ``update``.

    Raises:
        ValueError: If the result is a threshold rule without a threshold
    """
    changes = update.model_dump(exclude_unset=True)
    changes["updated_at"] = now
    updated = rule.model_copy(update=changes)

    if updated.type != AlertRuleType.NEW_ERROR and updated.threshold is None:
        raise ValueError(f"threshold is required for {updated.type.value} rules")
    return updated


def evaluate_condition(
    rule: AlertRule,
    group: ErrorGroup,
    is_new: bool,
    store: TelemetryStore,
    now: int,
) -> bool:
    """
    Decide whether a rule's condition holds for the occurrence just ingested.

    Args:
        rule: Enabled rule for the group's dsn
        group: Group after the upsert
        is_new: Whether the upsert created the group
        store: Store used for windowed occurrence counts
        now: Evaluation time, epoch milliseconds

    Returns:
        True if the condition holds
    """
    if rule.type == AlertRuleType.NEW_ERROR:
        return is_new

    if rule.threshold is None:
        return False

    if rule.type == AlertRuleType.ERROR_THRESHOLD:
        if not rule.time_window:
            return group.count >= rule.threshold
        since = now - rule.time_window * MINUTE_MS
        return store.count_occurrences(group.dsn, since=since) >= rule.threshold

    if rule.type == AlertRuleType.ERROR_SPIKE:
        window = (rule.time_window or DEFAULT_SPIKE_WINDOW) * MINUTE_MS
        recent = store.count_occurrences(
            group.dsn, since=now - window, fingerprint=group.fingerprint
        )
        baseline = store.count_occurrences(
            group.dsn,
            since=now - 2 * window,
            until=now - window,
            fingerprint=group.fingerprint,
        )
        return recent / max(baseline, 1) >= rule.threshold

    return False
