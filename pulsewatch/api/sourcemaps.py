"""Source map artifact endpoints."""

import os
import time
from typing import List, Optional

import orjson
import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from ..config import settings
from ..sourcemap.consumer import SourceMapError, parse_source_map
from ..sourcemap.vlq import VLQDecodeError
from ..storage.base import TelemetryStore
from ..storage.models import SourceMapArtifact
from .deps import run_blocking, store_dependency

logger = structlog.get_logger(__name__)

router = APIRouter()


class InvalidSourceMap(ValueError):
    pass


async def read_artifact(dsn: str, version: str, upload: UploadFile) -> SourceMapArtifact:
    """
    Read and validate one uploaded source map.

    Raises:
        HTTPException: 413 if the file exceeds sourcemap_max_size
        InvalidSourceMap: If the file is not a JSON source map
    """
    filename = os.path.basename(upload.filename or "")
    if not filename:
        raise InvalidSourceMap("file has no name")
    if not filename.endswith(".map") and upload.content_type != "application/json":
        raise InvalidSourceMap("Only .map files are allowed")

    raw = await upload.read(settings.sourcemap_max_size + 1)
    if len(raw) > settings.sourcemap_max_size:
        raise HTTPException(
            status_code=413,
            detail=f"SourceMap too large. Maximum size: {settings.sourcemap_max_size} bytes",
        )

    try:
        content = raw.decode("utf-8")
        parsed = orjson.loads(content)
    except (UnicodeDecodeError, orjson.JSONDecodeError) as e:
        raise InvalidSourceMap("Invalid JSON") from e

    try:
        await run_blocking(parse_source_map, parsed)
    except (SourceMapError, VLQDecodeError) as e:
        raise InvalidSourceMap(str(e)) from e

    return SourceMapArtifact(
        dsn=dsn,
        version=version,
        filename=filename,
        content=content,
        size=len(raw),
        created_at=int(time.time() * 1000),
    )


@router.post("/sourcemap")
async def upload_sourcemap(
    dsn: str = Form(..., min_length=1),
    version: str = Form(..., min_length=1),
    file: UploadFile = File(...),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """Upload one source map; replaces an existing (dsn, version, filename)."""
    try:
        artifact = await read_artifact(dsn, version, file)
    except InvalidSourceMap as e:
        raise HTTPException(status_code=400, detail=f"Invalid SourceMap file: {e}")

    await run_blocking(store.save_sourcemap, artifact)
    logger.info("sourcemap_uploaded", dsn=dsn, version=version, filename=artifact.filename, size=artifact.size)

    return {
        "success": True,
        "message": "SourceMap uploaded successfully",
        "filename": artifact.filename,
        "version": version,
    }


@router.post("/sourcemap/batch")
async def upload_sourcemaps(
    dsn: str = Form(..., min_length=1),
    version: str = Form(..., min_length=1),
    files: List[UploadFile] = File(...),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    """Upload several source maps; each file succeeds or fails on its own."""
    results = []

    for upload in files:
        try:
            artifact = await read_artifact(dsn, version, upload)
        except InvalidSourceMap as e:
            results.append({"filename": upload.filename, "success": False, "error": str(e)})
            continue

        await run_blocking(store.save_sourcemap, artifact)
        results.append({"filename": artifact.filename, "success": True})

    uploaded = sum(1 for r in results if r["success"])
    logger.info("sourcemap_batch_uploaded", dsn=dsn, version=version, uploaded=uploaded, total=len(files))

    return {"success": True, "total": len(files), "uploaded": uploaded, "results": results}


@router.get("/sourcemap")
async def list_sourcemaps(
    dsn: str = Query(..., min_length=1),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    artifacts = await run_blocking(store.list_sourcemaps, dsn)
    return {"list": [artifact.summary() for artifact in artifacts]}


@router.delete("/sourcemap")
async def delete_sourcemap(
    dsn: Optional[str] = None,
    version: Optional[str] = None,
    filename: Optional[str] = None,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    if not (dsn and version and filename):
        raise HTTPException(status_code=400, detail="dsn, version and filename are required")

    deleted = await run_blocking(store.delete_sourcemap, dsn, version, filename)
    if not deleted:
        raise HTTPException(status_code=404, detail="SourceMap not found")

    logger.info("sourcemap_deleted", dsn=dsn, version=version, filename=filename)
    return {"success": True}
