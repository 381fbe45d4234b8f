"""Gap filler: linear interpolation between the two records bounding a gap.

For consecutive stored records prev, cur with

    span    = cur.open_time - inclusive_close(prev)      (inclusive_close = open + I - 1)
    missing = span // I                                  when span > I

the filler writes *missing* synthetic records

    open_time_k = prev.open_time + k·I                       k = 1..missing
    price_k     = prev.close + k · (cur.close - prev.close) / (missing + 1)

with open = high = low = close = price_k, zero volume and trades, and
``synthetic=True``.  Interpolation is always between real neighbours; a
synthetic record never becomes the left anchor of the next step.

Example (I = 1 minute)
  prev close 100 @ T, cur close 130 @ T+4m  →  107.5, 115, 122.5

The pass is a single ascending walk over range_scan().  Synthetic rows land
strictly below the scan cursor, so the keyset pagination never yields them.
Every write is existence-checked, so re-running the filler over a repaired
series writes nothing.  Store errors abort the pass.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from klinesync.data.epochs import from_epoch
from klinesync.data.kline_store import KlineStore
from klinesync.data.locks import SeriesLockRegistry
from klinesync.data.types import StoredRecord
from klinesync.exceptions import OrderingError

logger = logging.getLogger(__name__)


@dataclass
class FillResult:
    symbol:              str
    interval:            str
    records_scanned:     int   = 0
    gaps_filled:         int   = 0
    records_synthesized: int   = 0
    duration_secs:       float = 0.0

    def as_dict(self) -> dict[str, object]:
        return {
            "symbol":              self.symbol,
            "interval":            self.interval,
            "records_scanned":     self.records_scanned,
            "gaps_filled":         self.gaps_filled,
            "records_synthesized": self.records_synthesized,
            "duration_secs":       round(self.duration_secs, 3),
        }


def interpolate_gap(
    previous: StoredRecord,
    current: StoredRecord,
    interval_secs: int,
) -> list[StoredRecord]:
    """Synthetic records strictly between *previous* and *current* (may be empty)."""
    span = current.open_time - previous.inclusive_close(interval_secs)
    if span <= interval_secs:
        return []
    missing = span // interval_secs
    increment = (current.close - previous.close) / (missing + 1)
    return [
        StoredRecord.interpolated(
            previous.open_time + k * interval_secs,
            interval_secs,
            previous.close + k * increment,
        )
        for k in range(1, missing + 1)
    ]


class GapFiller:
    def __init__(self, store: KlineStore, locks: SeriesLockRegistry) -> None:
        self._store = store
        self._locks = locks

    def fill(self, start: int | None = None, end: int | None = None) -> FillResult:
        store  = self._store
        isecs  = store.interval_secs
        lock   = self._locks.lock(store.symbol, store.interval)
        result = FillResult(symbol=store.symbol, interval=store.interval)
        t0     = time.monotonic()

        previous: StoredRecord | None = None
        for current in store.range_scan(start, end):
            result.records_scanned += 1
            if previous is not None:
                if current.open_time <= previous.open_time:
                    raise OrderingError(
                        f"Records out of order: {current.open_time} after {previous.open_time}"
                    )
                synthetic = interpolate_gap(previous, current, isecs)
                if synthetic:
                    with lock:
                        written = sum(store.save_record_if_absent(r) for r in synthetic)
                        store.save_record_if_absent(current)
                    result.gaps_filled         += 1
                    result.records_synthesized += written
                    logger.info(
                        "[GapFill] %s → %s: %d synthetic record(s)",
                        from_epoch(previous.open_time), from_epoch(current.open_time), written,
                    )
            previous = current

        result.duration_secs = time.monotonic() - t0
        logger.info(
            "[GapFill] %s/%s: scanned=%d gaps=%d synthesized=%d (%.1fs)",
            result.symbol, result.interval, result.records_scanned,
            result.gaps_filled, result.records_synthesized, result.duration_secs,
        )
        return result
