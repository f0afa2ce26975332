"""Error group endpoints: list, detail with resolved stack, status, trend."""

import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..storage.base import TelemetryStore
from ..storage.models import ErrorStatus
from .deps import get_resolver, run_blocking, store_dependency

logger = structlog.get_logger(__name__)

router = APIRouter()

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS


class StatusUpdate(BaseModel):
    status: str


@router.get("/errors")
async def list_errors(
    dsn: str = Query(..., min_length=1),
    type: Optional[str] = None,
    status: Optional[ErrorStatus] = None,
    startTime: Optional[int] = None,
    endTime: Optional[int] = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(20, ge=1, le=200),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """List error groups of a project, most recently seen first."""
    total, groups = await run_blocking(
        store.list_error_groups,
        dsn=dsn,
        error_type=type,
        status=status,
        start_time=startTime,
        end_time=endTime,
        page=page,
        page_size=pageSize,
    )

    return {
        "total": total,
        "list": [group.to_api() for group in groups],
        "page": page,
        "pageSize": pageSize,
    }


@router.get("/errors/stats/trend")
async def error_trend(
    dsn: str = Query(..., min_length=1),
    startTime: Optional[int] = None,
    endTime: Optional[int] = None,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """Hourly occurrence counts; defaults to the last 24 hours."""
    end_time = endTime if endTime is not None else int(time.time() * 1000)
    start_time = startTime if startTime is not None else end_time - DAY_MS
    if start_time > end_time:
        raise HTTPException(status_code=400, detail="startTime must not be after endTime")

    trend = await run_blocking(store.occurrence_trend, dsn, start_time, end_time, HOUR_MS)
    return {"trend": trend}


@router.get("/errors/{group_id}")
async def get_error(
    group_id: str,
    version: Optional[str] = None,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """
    Error group detail.

    When the group has a stack, ``parsedStack`` holds its frames resolved
    against the source maps uploaded for ``version`` (or the newest ones).
    """
    group = await run_blocking(store.get_error_group, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Error not found")

    detail = group.to_api()
    detail["parsedStack"] = None

    if group.stack:
        detail["parsedStack"] = await run_blocking(
            get_resolver().resolve_stack, group.stack, group.dsn, version
        )

    return detail


@router.patch("/errors/{group_id}/status")
async def update_error_status(
    group_id: str,
    update: StatusUpdate,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """Set the triage status of an error group."""
    try:
        status = ErrorStatus(update.status)
    except ValueError:
        allowed = ", ".join(s.value for s in ErrorStatus)
        raise HTTPException(status_code=400, detail=f"Invalid status. Must be one of: {allowed}")

    group = await run_blocking(store.update_error_status, group_id, status)
    if group is None:
        raise HTTPException(status_code=404, detail="Error not found")

    logger.info("error_status_updated", group_id=group_id, status=status.value)
    return group.to_api()
