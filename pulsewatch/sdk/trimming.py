"""Payload size trimming applied to each event before it is queued."""

from typing import Any, Dict, Optional

MAX_MESSAGE_LENGTH = 1000
MAX_STACK_LENGTH = 5000
MAX_RESOURCES = 50
MAX_RESOURCE_NAME_LENGTH = 200
MAX_LONG_TASKS = 20
MAX_BREADCRUMBS = 20
MAX_REPLAY_EVENTS = 500


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if not isinstance(value, str) or len(value) <= limit:
        return value
    return value[:limit] + "..."


def _trim_resource(resource: Dict[str, Any]) -> Dict[str, Any]:
    duration = resource.get("duration")
    return {
        "name": truncate(resource.get("name"), MAX_RESOURCE_NAME_LENGTH),
        "type": resource.get("type"),
        "duration": round(duration) if isinstance(duration, (int, float)) else duration,
        "size": resource.get("size"),
        "cached": resource.get("cached"),
    }


def trim_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a size-bounded copy of a wire event.

    The input is not modified. Fields that are absent stay absent.

    Args:
        event: Event in wire (camelCase) form

    Returns:
        New event dict
    """
    trimmed = dict(event)

    if "message" in trimmed:
        trimmed["message"] = truncate(trimmed["message"], MAX_MESSAGE_LENGTH)
    if "stack" in trimmed:
        trimmed["stack"] = truncate(trimmed["stack"], MAX_STACK_LENGTH)

    if isinstance(trimmed.get("resources"), list):
        trimmed["resources"] = [
            _trim_resource(r) for r in trimmed["resources"][:MAX_RESOURCES] if isinstance(r, dict)
        ]
    if isinstance(trimmed.get("longTasks"), list):
        trimmed["longTasks"] = trimmed["longTasks"][:MAX_LONG_TASKS]
    if isinstance(trimmed.get("breadcrumbs"), list):
        trimmed["breadcrumbs"] = trimmed["breadcrumbs"][-MAX_BREADCRUMBS:]

    replay = trimmed.get("sessionReplay")
    if isinstance(replay, dict) and isinstance(replay.get("events"), list):
        trimmed["sessionReplay"] = {**replay, "events": replay["events"][-MAX_REPLAY_EVENTS:]}

    return trimmed
