"""Epoch and interval helpers.

All stored timestamps are INTEGER epoch seconds (UTC).  Conversion goes
through calendar.timegm() so the host timezone never leaks in.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timezone

# ── Interval metadata ─────────────────────────────────────────────────────────

TF_SECONDS: dict[str, int] = {
    "1m":  60,
    "3m":  180,
    "5m":  300,
    "15m": 900,
    "30m": 1800,
    "1h":  3600,
    "2h":  7200,
    "4h":  14400,
    "6h":  21600,
    "12h": 43200,
    "1d":  86400,
}


def now_epoch() -> int:
    return calendar.timegm(datetime.now(timezone.utc).timetuple())


def to_epoch(dt: datetime) -> int:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    else:
        dt = dt.replace(tzinfo=timezone.utc)
    return calendar.timegm(dt.timetuple())


def from_epoch(ep: int) -> str:
    """UTC epoch -> ISO-8601 string with explicit +00:00 offset."""
    return datetime.fromtimestamp(ep, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def is_aligned(epoch_secs: int, interval_secs: int) -> bool:
    return epoch_secs % interval_secs == 0
