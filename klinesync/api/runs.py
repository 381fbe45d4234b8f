"""Run history endpoint.

GET /api/runs  : recent sync_run_log rows for the configured series, newest first
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from klinesync.api.deps import get_pipeline
from klinesync.data.pipeline import SyncPipeline

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.get("")
def list_runs(
    limit: int = Query(default=50, ge=1, le=500),
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict:
    rows = pipeline.runs(limit)
    return {"count": len(rows), "runs": rows}
