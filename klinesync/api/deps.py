from __future__ import annotations

from datetime import datetime

from fastapi import HTTPException, Request

from klinesync.data.epochs import to_epoch
from klinesync.data.pipeline import SyncPipeline


def get_pipeline(request: Request) -> SyncPipeline:
    return request.app.state.pipeline


def optional_epoch(dt: datetime | None) -> int | None:
    return None if dt is None else to_epoch(dt)


def require_aligned(pipeline: SyncPipeline, label: str, ep: int | None) -> None:
    """400 when a user-supplied bound is not on an interval boundary."""
    if ep is not None and ep % pipeline.store.interval_secs != 0:
        raise HTTPException(
            status_code=400,
            detail=f"'{label}' must be aligned to the {pipeline.store.interval} interval",
        )
