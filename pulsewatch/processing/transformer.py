"""Event transformer: report events to stored records."""

from typing import Any, Dict, List

from ..receiver.event_parser import ErrorEvent, PerformanceEvent
from ..storage.models import ErrorGroup, ErrorOccurrence, PerformanceRecord
from .fingerprint import DEFAULT_FRAME_COUNT, generate_fingerprint, group_id


class EventTransformer:
    """Transforms validated report events into storage records."""

    def __init__(self, frame_count: int = DEFAULT_FRAME_COUNT):
        """
        Initialize transformer.

        Args:
            frame_count: In-app frames taking part in the fingerprint
        """
        self.frame_count = frame_count

    def to_group(self, event: ErrorEvent, dsn: str) -> ErrorGroup:
        """
        Build a single-occurrence group from an error event.

        Args:
            event: Validated error event
            dsn: Project DSN

        Returns:
            ErrorGroup with count=1, ready for the upsert
        """
        result = generate_fingerprint(
            event.type,
            event.message,
            stack=event.stack,
            url=event.url,
            frame_count=self.frame_count,
        )

        return ErrorGroup(
            id=group_id(dsn, result.fingerprint),
            dsn=dsn,
            fingerprint=result.fingerprint,
            type=event.type,
            message=event.message,
            normalized_message=result.normalized_message,
            stack=event.stack,
            filename=event.filename,
            lineno=event.lineno,
            colno=event.colno,
            url=event.url,
            resource_type=event.resourceType,
            breadcrumbs=self._breadcrumbs(event),
            session_replay=event.sessionReplay,
            release=event.release,
            user=event.user,
            context=event.context,
            count=1,
            first_seen=event.timestamp,
            last_seen=event.timestamp,
        )

    def to_occurrence(self, group: ErrorGroup, received_at: int) -> ErrorOccurrence:
        """Occurrence row for windowed counts, stamped with server receive time."""
        return ErrorOccurrence(
            dsn=group.dsn,
            fingerprint=group.fingerprint,
            group_id=group.id,
            type=group.type,
            url=group.url,
            timestamp=received_at,
        )

    def to_performance(self, event: PerformanceEvent, dsn: str) -> PerformanceRecord:
        return PerformanceRecord(
            dsn=dsn,
            url=event.url,
            timestamp=event.timestamp,
            fp=event.fp,
            fcp=event.fcp,
            lcp=event.lcp,
            fid=event.fid,
            layout_shift=event.layout_shift,
            ttfb=event.ttfb,
            dom_ready=event.domReady,
            load=event.load,
            long_tasks=event.longTasks,
            resources=event.resources,
            network_quality=event.networkQuality,
            user=event.user,
            context=event.context,
        )

    def _breadcrumbs(self, event: ErrorEvent) -> List[Dict[str, Any]]:
        return [crumb.model_dump(exclude_none=True) for crumb in event.breadcrumbs]
