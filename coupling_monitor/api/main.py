from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from coupling_monitor.config import Settings
from coupling_monitor.errors import StoreError
from coupling_monitor.models import GraphSnapshot, RunSummary
from coupling_monitor.pipeline import CollectionPipeline, build_pipeline
from coupling_monitor.scheduler import Scheduler
from coupling_monitor.storage import build_store

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[CollectionPipeline] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Status API around the collection scheduler.

    Run with ``uvicorn coupling_monitor.api.main:create_app --factory``.
    """
    if pipeline is None:
        settings = settings or Settings.from_env()
        logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
        pipeline = build_pipeline(settings, build_store(settings))

    interval = settings.tick_interval_seconds if settings else 60.0
    shutdown_timeout = settings.shutdown_timeout_seconds if settings else 30.0
    scheduler = Scheduler(pipeline, interval_seconds=interval, shutdown_timeout_seconds=shutdown_timeout)
    store = pipeline.store

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            store.close()

    app = FastAPI(
        title="Coupling Monitor",
        version="0.1.0",
        description="Periodic collector for weighted service dependency graphs.",
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    @app.exception_handler(StoreError)
    async def store_unavailable(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store error serving %s [%s]: %s", request.url.path, exc.kind, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc), "kind": exc.kind})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "scheduler": scheduler.health()}

    @app.get("/watermark")
    async def watermark() -> dict:
        return {"last_fetch_time": await asyncio.to_thread(store.latest)}

    @app.get("/runs/latest", response_model=RunSummary)
    async def latest_run() -> RunSummary:
        if scheduler.last_run is None:
            raise HTTPException(status_code=404, detail="No collection run has completed yet")
        return scheduler.last_run

    @app.get("/snapshots", response_model=List[GraphSnapshot])
    async def list_snapshots(
        limit: int = Query(10, ge=1, le=100, description="Maximum number of snapshots to return"),
    ) -> List[GraphSnapshot]:
        return await asyncio.to_thread(store.load_snapshots, limit)

    @app.post("/collect/run", response_model=RunSummary)
    async def trigger_collection() -> RunSummary:
        """Run the pipeline now, unless a run is already in progress."""
        summary = await scheduler.run_now()
        if summary is None:
            raise HTTPException(status_code=409, detail="A collection run is already in progress")
        return summary

    return app
