from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from klinesync.api import gaps, ingest, runs
from klinesync.api.ingest import IngestJob
from klinesync.config import Settings, get_settings
from klinesync.data.pipeline import SyncPipeline


def create_app(
    settings: Settings | None = None,
    pipeline: SyncPipeline | None = None,
) -> FastAPI:
    """Build the HTTP surface around one SyncPipeline.

    Tests pass a pipeline wired to a temp database and a mock transport;
    the server entry point builds one from settings.
    """
    settings = settings or get_settings()
    pipeline = pipeline or SyncPipeline.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pipeline.initialize()
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.pipeline   = pipeline
    app.state.ingest_job = IngestJob()

    app.include_router(ingest.router)
    app.include_router(gaps.router)
    app.include_router(runs.router)

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok", "app": settings.app_name, **pipeline.stats()}

    return app
