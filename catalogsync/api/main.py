"""FastAPI application exposing sync operations to operators."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from catalogsync.ingest.errors import (
    CatalogSyncError,
    CategoryNotFoundError,
    ConfigurationError,
    ExternalError,
    SyncInProgressError,
)
from catalogsync.jobs.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.close()
        app.state.runtime = None


app = FastAPI(title="Catalog Sync API", lifespan=lifespan)

ERROR_STATUS = (
    (CategoryNotFoundError, 404),
    (ConfigurationError, 400),
    (SyncInProgressError, 409),
    (ExternalError, 502),
)


class SyncRequest(BaseModel):
    max_items_per_band: int | None = Field(default=None, ge=1)
    skip_existing: bool = False


class BatchSyncRequest(SyncRequest):
    category_ids: list[int] | None = None
    workers: int | None = Field(default=None, ge=1)


class PreviewRequest(BaseModel):
    max_items_per_band: int | None = Field(default=None, ge=1)


class PreviewResponse(BaseModel):
    category_id: int
    count: int
    products: list[dict[str, Any]]


class RefreshRequest(BaseModel):
    limit: int | None = Field(default=None, ge=0)


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        load_dotenv()
        runtime = build_runtime()
        request.app.state.runtime = runtime
    return runtime


@app.exception_handler(CatalogSyncError)
async def sync_error_handler(request: Request, exc: CatalogSyncError) -> JSONResponse:
    status = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status = code
            break
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, status, exc)
    return JSONResponse({"detail": str(exc), "error": exc.__class__.__name__}, status_code=status)


@app.post("/sync/categories/{category_id}")
async def sync_category(
    category_id: int,
    payload: SyncRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    payload = payload or SyncRequest()
    result = await runtime.orchestrator.run_sync(
        category_id,
        max_items_per_band=payload.max_items_per_band,
        skip_existing=payload.skip_existing,
    )
    return result.as_dict()


@app.post("/sync/categories")
async def sync_all_categories(
    payload: BatchSyncRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    payload = payload or BatchSyncRequest()
    batch = await runtime.orchestrator.run_all_categories_sync(
        category_ids=payload.category_ids,
        max_items_per_band=payload.max_items_per_band,
        skip_existing=payload.skip_existing,
        workers=payload.workers,
    )
    return batch.as_dict()


@app.post("/sync/categories/{category_id}/preview", response_model=PreviewResponse)
async def preview_category(
    category_id: int,
    payload: PreviewRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> PreviewResponse:
    payload = payload or PreviewRequest()
    candidates = await runtime.orchestrator.preview_category(
        category_id, max_items_per_band=payload.max_items_per_band
    )
    return PreviewResponse(
        category_id=category_id,
        count=len(candidates),
        products=[candidate.as_dict() for candidate in candidates],
    )


@app.post("/sync/products/refresh")
async def refresh_products(
    payload: RefreshRequest | None = None,
    runtime: Runtime = Depends(get_runtime),
) -> dict[str, Any]:
    payload = payload or RefreshRequest()
    result = await runtime.scheduler.refresh_stale_items(payload.limit)
    return result.as_dict()


@app.get("/sync/status")
async def sync_status(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.scheduler.get_status()


@app.post("/sync/stop")
async def stop_sync(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.scheduler.stop()
