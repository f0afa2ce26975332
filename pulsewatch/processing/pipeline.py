"""Ingestion pipeline: fingerprint, aggregate, store, evaluate alerts."""

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import List, Optional

import structlog

from ..alerts.engine import AlertEngine
from ..config import settings
from ..metrics import error_groups_created_total, events_received_total
from ..notifications.base import AlertNotification
from ..receiver.event_parser import ParsedReport
from ..storage.base import TelemetryStore
from ..storage.factory import get_store
from .transformer import EventTransformer

logger = structlog.get_logger(__name__)

# Lock for thread-safe pipeline initialization
_pipeline_lock = Lock()


@dataclass
class PipelineResult:
    """Result of pipeline processing."""

    errors: int = 0
    performance: int = 0
    new_groups: int = 0
    failed: int = 0
    notifications: List[AlertNotification] = field(default_factory=list)


class IngestionPipeline:
    """
    Report processing pipeline.

    Orchestrates: Fingerprint -> Upsert group -> Record occurrence -> Alerts.
    Performance samples are stored as they are.
    """

    def __init__(
        self,
        store: TelemetryStore,
        transformer: EventTransformer,
        alert_engine: AlertEngine,
    ):
        """
        Initialize pipeline.

        Args:
            store: Storage backend
            transformer: Event transformer instance
            alert_engine: Alert engine evaluated after each upsert
        """
        self.store = store
        self.transformer = transformer
        self.alert_engine = alert_engine

    def process(self, report: ParsedReport) -> PipelineResult:
        """
        Process one report (synchronous, blocking storage I/O).

        Storage failures propagate to the caller; events processed before
        the failure stay committed.

        Args:
            report: Parsed report

        Returns:
            PipelineResult with counts and notifications to dispatch
        """
        result = PipelineResult()
        dsn = report.dsn

        for event in report.errors:
            group, is_new = self.store.upsert_error_group(self.transformer.to_group(event, dsn))
            received_at = int(time.time() * 1000)
            self.store.record_occurrence(self.transformer.to_occurrence(group, received_at))

            result.errors += 1
            if is_new:
                result.new_groups += 1
                error_groups_created_total.inc()
                logger.info(
                    "error_group_created",
                    dsn=dsn,
                    group_id=group.id,
                    fingerprint=group.fingerprint,
                )

            result.notifications.extend(self.alert_engine.evaluate(group, is_new))

        for event in report.performance:
            self.store.save_performance(self.transformer.to_performance(event, dsn))
            result.performance += 1

        events_received_total.labels(kind="error").inc(result.errors)
        events_received_total.labels(kind="performance").inc(result.performance)

        logger.debug(
            "report_processed",
            dsn=dsn,
            errors=result.errors,
            performance=result.performance,
            new_groups=result.new_groups,
            alerts=len(result.notifications),
        )
        return result


# Global pipeline instance
_pipeline: Optional[IngestionPipeline] = None


def get_pipeline() -> IngestionPipeline:
    """
    Get global pipeline instance.

    Thread-safe initialization of all components.

    Returns:
        IngestionPipeline instance
    """
    global _pipeline

    if _pipeline is None:
        with _pipeline_lock:
            # Double-check locking pattern
            if _pipeline is None:
                store = get_store(settings)
                _pipeline = IngestionPipeline(
                    store=store,
                    transformer=EventTransformer(frame_count=settings.fingerprint_frames),
                    alert_engine=AlertEngine(store, dashboard_url=settings.dashboard_url),
                )
                logger.info("pipeline_initialized")

    return _pipeline


def reset_pipeline() -> None:
    """Reset global pipeline instance."""
    global _pipeline
    with _pipeline_lock:
        _pipeline = None
