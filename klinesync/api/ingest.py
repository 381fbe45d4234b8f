"""Ingestion API endpoints.

POST /api/ingest/run     : launch an ingestion pass (async background task)
GET  /api/ingest/status  : running flag, last result, series stats
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request

from klinesync.api.deps import get_pipeline, optional_epoch, require_aligned
from klinesync.data.epochs import from_epoch, now_epoch
from klinesync.data.pipeline import SyncPipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/ingest", tags=["ingest"])


@dataclass
class IngestJob:
    """Guard against concurrent ingestion runs; one per app."""

    running:     bool = False
    started_at:  int | None = None
    finished_at: int | None = None
    last_result: dict | None = None
    last_error:  str | None = None


def get_job(request: Request) -> IngestJob:
    return request.app.state.ingest_job


async def _run_in_background(
    pipeline: SyncPipeline,
    job: IngestJob,
    start: int | None,
    end: int | None,
) -> None:
    try:
        result = await pipeline.ingest(start, end)
        job.last_result = result.as_dict()
        job.last_error  = None
        logger.info(
            "[Ingest] Background job finished: %s, %d inserted, %d unresolved",
            result.status, result.records_inserted, len(result.unresolved),
        )
    except Exception as exc:
        job.last_error = str(exc)
        logger.exception("[Ingest] Background job crashed")
    finally:
        job.running     = False
        job.finished_at = now_epoch()


@router.post("/run")
async def trigger_ingest(
    background_tasks: BackgroundTasks,
    start: datetime | None = Query(default=None, description="Range start (UTC). Default: configured global start"),
    end:   datetime | None = Query(default=None, description="Range end, exclusive (UTC). Default: configured global end"),
    pipeline: SyncPipeline = Depends(get_pipeline),
    job: IngestJob = Depends(get_job),
) -> dict:
    """Trigger an ingestion pass as a background task.

    The endpoint returns immediately; use GET /api/ingest/status to track
    progress.  Only one concurrent run is permitted.
    """
    if job.running:
        raise HTTPException(
            status_code=409,
            detail="An ingestion run is already in progress. Check /api/ingest/status.",
        )

    start_ep = optional_epoch(start)
    end_ep   = optional_epoch(end)
    require_aligned(pipeline, "start", start_ep)
    require_aligned(pipeline, "end", end_ep)

    eff_start = pipeline.settings.global_start_epoch if start_ep is None else start_ep
    eff_end   = pipeline.settings.global_end_epoch   if end_ep   is None else end_ep
    if eff_start >= eff_end:
        raise HTTPException(status_code=400, detail="'start' must be before 'end'")

    job.running    = True
    job.started_at = now_epoch()
    background_tasks.add_task(_run_in_background, pipeline, job, start_ep, end_ep)

    return {
        "message":    "Ingestion started in background",
        "series":     f"{pipeline.store.symbol}/{pipeline.store.interval}",
        "start":      from_epoch(eff_start),
        "end":        from_epoch(eff_end),
        "status_url": "/api/ingest/status",
    }


@router.get("/status")
def ingest_status(
    pipeline: SyncPipeline = Depends(get_pipeline),
    job: IngestJob = Depends(get_job),
) -> dict:
    return {
        "is_running":  job.running,
        "started_at":  from_epoch(job.started_at)  if job.started_at  else None,
        "finished_at": from_epoch(job.finished_at) if job.finished_at else None,
        "last_result": job.last_result,
        "last_error":  job.last_error,
        "series":      pipeline.stats(),
    }
