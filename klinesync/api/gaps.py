"""Gap API endpoints.

GET  /api/gaps       : live gap scan over the stored series
POST /api/gaps/fill  : interpolate every gap in range (runs to completion)
"""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from klinesync.api.deps import get_pipeline, optional_epoch
from klinesync.data.pipeline import SyncPipeline
from klinesync.exceptions import KlineSyncError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/gaps", tags=["gaps"])


@router.get("")
def list_gaps(
    start: datetime | None = Query(default=None, description="First open time to scan (UTC)"),
    end:   datetime | None = Query(default=None, description="Last open time to scan (UTC)"),
    reference: str = Query(
        default="open",
        pattern="^(open|close)$",
        description="'open' compares open-to-open; 'close' compares against the previous close boundary",
    ),
    limit: int = Query(default=1000, ge=1, le=100_000, description="Max gaps returned"),
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict:
    try:
        gaps = pipeline.report_gaps(optional_epoch(start), optional_epoch(end), reference)
    except KlineSyncError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    isecs = pipeline.store.interval_secs
    return {
        "symbol":    pipeline.store.symbol,
        "interval":  pipeline.store.interval,
        "reference": reference,
        "count":     len(gaps),
        "missing":   sum(g.missing_intervals(isecs, reference) for g in gaps),
        "gaps": [
            {**g.as_dict(), "message": g.describe()}
            for g in gaps[:limit]
        ],
    }


@router.post("/fill")
def fill_gaps(
    start: datetime | None = Query(default=None, description="First open time to repair (UTC)"),
    end:   datetime | None = Query(default=None, description="Last open time to repair (UTC)"),
    pipeline: SyncPipeline = Depends(get_pipeline),
) -> dict:
    """Run the gap filler synchronously and return its counters."""
    try:
        result = pipeline.fill_gaps(optional_epoch(start), optional_epoch(end))
    except KlineSyncError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return result.as_dict()
