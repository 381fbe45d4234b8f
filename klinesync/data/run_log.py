"""Audit trail for pipeline runs (``sync_run_log`` table)."""
from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.orm import Session, sessionmaker

from klinesync.data.database import session_scope
from klinesync.data.epochs import from_epoch, now_epoch
from klinesync.data.models import SyncRunLog

_COUNTERS = (
    "windows_total",
    "windows_failed",
    "records_inserted",
    "records_failed",
    "records_synthesized",
    "gaps_found",
    "unresolved",
)


def write_run_log(
    factory: sessionmaker[Session],
    *,
    symbol: str,
    interval: str,
    operation: str,
    status: str,
    duration_secs: float,
    error: str | None = None,
    **counters: int,
) -> None:
    """Persist one SyncRunLog row.  Unknown counter names raise TypeError."""
    unknown = set(counters) - set(_COUNTERS)
    if unknown:
        raise TypeError(f"Unknown run-log counters: {', '.join(sorted(unknown))}")

    with session_scope(factory) as session:
        session.add(
            SyncRunLog(
                symbol      = symbol,
                interval    = interval,
                operation   = operation,
                run_at      = now_epoch(),
                status      = status,
                duration_ms = int(duration_secs * 1000),
                error       = error,
                **counters,
            )
        )


def get_run_log(
    factory: sessionmaker[Session],
    symbol: str | None = None,
    interval: str | None = None,
    limit: int = 50,
) -> list[dict]:
    """Return recent SyncRunLog entries, newest first."""
    with session_scope(factory) as session:
        q = select(SyncRunLog)
        if symbol:
            q = q.where(SyncRunLog.symbol == symbol)
        if interval:
            q = q.where(SyncRunLog.interval == interval)
        q = q.order_by(desc(SyncRunLog.run_at), desc(SyncRunLog.id)).limit(limit)
        rows = session.execute(q).scalars().all()

        return [
            {
                "id":        r.id,
                "symbol":    r.symbol,
                "interval":  r.interval,
                "operation": r.operation,
                "run_at":    from_epoch(r.run_at),
                "status":    r.status,
                **{name: getattr(r, name) for name in _COUNTERS},
                "duration_ms": r.duration_ms,
                "error":       r.error,
            }
            for r in rows
        ]
