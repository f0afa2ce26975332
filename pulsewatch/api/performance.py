"""Performance sample endpoints."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ..storage.base import TelemetryStore
from ..storage.models import PerformanceRecord
from .deps import run_blocking, store_dependency

router = APIRouter()

_AVERAGED = {
    "avgFp": "fp",
    "avgFcp": "fcp",
    "avgLcp": "lcp",
    "avgTtfb": "ttfb",
    "avgDomReady": "dom_ready",
    "avgLoad": "load",
}


def average_metrics(records: List[PerformanceRecord]) -> Dict[str, Optional[int]]:
    """Rounded averages of the timing metrics, None where no sample has one."""
    stats: Dict[str, Optional[int]] = {}
    for key, attribute in _AVERAGED.items():
        values = [getattr(r, attribute) for r in records if getattr(r, attribute) is not None]
        stats[key] = round(sum(values) / len(values)) if values else None
    stats["count"] = len(records)
    return stats


@router.get("/performance")
async def list_performance(
    dsn: str = Query(..., min_length=1),
    limit: int = Query(100, ge=1, le=1000),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    records = await run_blocking(store.list_performance, dsn, limit)
    return {"list": [record.to_api() for record in records]}


@router.get("/performance/stats")
async def performance_stats(
    dsn: str = Query(..., min_length=1),
    limit: int = Query(1000, ge=1, le=10000),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """Averages over the most recent samples."""
    records = await run_blocking(store.list_performance, dsn, limit)
    return average_metrics(records)
