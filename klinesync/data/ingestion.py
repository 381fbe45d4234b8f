"""Ingestion driver: windowed bulk fetch followed by a reconciliation sweep.

Algorithm overview
──────────────────
                 ┌──────────────────────────────────────────┐
                 │  IngestionDriver.run(start, end)         │
                 └──────────────────┬───────────────────────┘
                                    │
               ┌────────────────────▼─────────────────────────┐
               │  0. Validate range (aligned, start < end)    │
               │     ensure_series_initialized()              │
               └────────────────────┬─────────────────────────┘
                                    │
               ┌────────────────────▼─────────────────────────┐
               │  1. Bulk phase                               │
               │     windows of W intervals, last one clipped │
               │     fetch [ws, we - 1 ms] limit=W            │
               │     bulk_insert_new under the series lock    │
               │     fetch error → log + skip window          │
               └────────────────────┬─────────────────────────┘
                                    │
               ┌────────────────────▼─────────────────────────┐
               │  2. Reconciliation phase                     │
               │     every boundary b in [start, end):        │
               │       exists(b)? → next                      │
               │       fetch [b, b + I - 1 ms] limit=1        │
               │       returned & open == b → upsert          │
               │       otherwise → unresolved                 │
               └──────────────────────────────────────────────┘

Idempotency
───────────
Both phases go through existence-checked writes, so re-running over a fully
populated range issues the fetches but inserts nothing.  Boundaries the
exchange never produced (outages) stay unresolved on every run; the gap
filler is what closes them.

Failure model
─────────────
Window and boundary failures are logged with their time range and counted;
they never abort the run.  Only a malformed range (ConfigurationError) or a
store that cannot be initialised (StoreError) is fatal.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from klinesync.data.binance_client import BinanceKlineClient, SleepFn
from klinesync.data.epochs import from_epoch, is_aligned
from klinesync.data.kline_store import KlineStore
from klinesync.data.locks import SeriesLockRegistry
from klinesync.data.progress import NullProgress, ProgressReporter
from klinesync.exceptions import ConfigurationError, KlineSyncError

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    symbol:             str
    interval:           str
    start:              int
    end:                int
    windows_total:      int   = 0
    windows_failed:     int   = 0
    records_inserted:   int   = 0
    records_skipped:    int   = 0
    record_failures:    int   = 0
    boundaries_checked: int   = 0
    backfilled:         int   = 0
    unresolved:         list[int] = field(default_factory=list)
    duration_secs:      float = 0.0

    @property
    def status(self) -> str:
        return "complete" if not self.unresolved else "partial"

    def as_dict(self) -> dict[str, object]:
        return {
            "symbol":             self.symbol,
            "interval":           self.interval,
            "start":              from_epoch(self.start),
            "end":                from_epoch(self.end),
            "status":             self.status,
            "windows_total":      self.windows_total,
            "windows_failed":     self.windows_failed,
            "records_inserted":   self.records_inserted,
            "records_skipped":    self.records_skipped,
            "record_failures":    self.record_failures,
            "boundaries_checked": self.boundaries_checked,
            "backfilled":         self.backfilled,
            "unresolved":         [from_epoch(b) for b in self.unresolved],
            "duration_secs":      round(self.duration_secs, 3),
        }


def plan_windows(start: int, end: int, interval_secs: int, window_size: int) -> list[tuple[int, int]]:
    """Partition [start, end) into half-open windows of *window_size* intervals.

    The last window is clipped to *end*, so a range that is not a whole
    number of windows still has its tail covered.
    """
    span = interval_secs * window_size
    return [(ws, min(ws + span, end)) for ws in range(start, end, span)]


class IngestionDriver:
    def __init__(
        self,
        client: BinanceKlineClient,
        store: KlineStore,
        locks: SeriesLockRegistry,
        *,
        window_size: int = 500,
        max_concurrency: int = 1,
        request_interval: float = 0.0,
        sleep: SleepFn | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        self._client           = client
        self._store            = store
        self._locks            = locks
        self._window_size      = window_size
        self._max_concurrency  = max(1, max_concurrency)
        self._request_interval = request_interval
        self._sleep            = sleep or asyncio.sleep
        self._progress         = progress or NullProgress()

    @property
    def _series_lock(self):
        return self._locks.lock(self._store.symbol, self._store.interval)

    def _validate_range(self, start: int, end: int) -> None:
        interval_secs = self._store.interval_secs
        if start >= end:
            raise ConfigurationError(
                f"Ingestion range is empty: start {from_epoch(start)} >= end {from_epoch(end)}"
            )
        for label, ep in (("start", start), ("end", end)):
            if not is_aligned(ep, interval_secs):
                raise ConfigurationError(
                    f"Ingestion {label} {from_epoch(ep)} is not aligned to {self._store.interval}"
                )

    async def _throttle(self) -> None:
        if self._request_interval > 0:
            await self._sleep(self._request_interval)

    # ── Phase 1: windowed bulk fetch ──────────────────────────────────────────

    async def _ingest_window(
        self,
        idx: int,
        ws: int,
        we: int,
        sem: asyncio.Semaphore,
        result: IngestionResult,
    ) -> None:
        store = self._store
        async with sem:
            if idx > 0:
                await self._throttle()
            try:
                candles = await self._client.fetch(
                    store.symbol, store.interval, ws * 1000, we * 1000 - 1,
                    limit=self._window_size,
                )
                with self._series_lock:
                    bulk = store.bulk_insert_new(candles)
            except KlineSyncError as exc:
                result.windows_failed += 1
                logger.warning(
                    "[Ingest] Window %s → %s skipped: %s",
                    from_epoch(ws), from_epoch(we), exc,
                )
                return
            finally:
                self._progress.advance()

        result.records_inserted += bulk.inserted
        result.records_skipped  += bulk.skipped_existing
        result.record_failures  += len(bulk.failures)
        for failure in bulk.failures:
            logger.warning(
                "[Ingest] Record @ %s ms rejected: %s", failure.open_time_ms, failure.error,
            )

    async def _bulk_phase(self, start: int, end: int, result: IngestionResult) -> None:
        windows = plan_windows(start, end, self._store.interval_secs, self._window_size)
        result.windows_total = len(windows)
        logger.info(
            "[Ingest] %s/%s: %d windows of %d between %s and %s",
            self._store.symbol, self._store.interval, len(windows), self._window_size,
            from_epoch(start), from_epoch(end),
        )

        self._progress.begin("Ingesting windows", len(windows))
        sem = asyncio.Semaphore(self._max_concurrency)
        await asyncio.gather(*(
            self._ingest_window(i, ws, we, sem, result)
            for i, (ws, we) in enumerate(windows)
        ))
        self._progress.finish(
            f"inserted={result.records_inserted} failed_windows={result.windows_failed}"
        )

    # ── Phase 2: per-boundary reconciliation ──────────────────────────────────

    async def _reconcile_boundary(self, boundary: int, fetched_before: bool) -> bool:
        """Return True when the boundary is resolved (present or backfilled)."""
        store = self._store
        interval_secs = store.interval_secs

        if fetched_before:
            await self._throttle()
        candles = await self._client.fetch(
            store.symbol, store.interval,
            boundary * 1000, (boundary + interval_secs) * 1000 - 1,
            limit=1,
        )
        match = next((c for c in candles if c.open_time == boundary), None)
        if match is None:
            logger.info("[Ingest] Boundary %s unavailable upstream", from_epoch(boundary))
            return False

        with self._series_lock:
            store.upsert_if_absent(match)
        return True

    async def _reconcile_phase(self, start: int, end: int, result: IngestionResult) -> None:
        store = self._store
        boundaries = range(start, end, store.interval_secs)
        self._progress.begin("Reconciling boundaries", len(boundaries))

        fetched = False
        for boundary in boundaries:
            result.boundaries_checked += 1
            try:
                if store.exists(boundary):
                    continue
                resolved = await self._reconcile_boundary(boundary, fetched)
                fetched = True
                if resolved:
                    result.backfilled += 1
                else:
                    result.unresolved.append(boundary)
            except KlineSyncError as exc:
                fetched = True
                result.unresolved.append(boundary)
                logger.warning(
                    "[Ingest] Boundary %s unresolved: %s", from_epoch(boundary), exc,
                )
            finally:
                self._progress.advance()

        self._progress.finish(
            f"backfilled={result.backfilled} unresolved={len(result.unresolved)}"
        )

    # ── Entry point ───────────────────────────────────────────────────────────

    async def run(self, start: int, end: int) -> IngestionResult:
        """Ingest every interval boundary in [start, end) (epoch seconds)."""
        self._validate_range(start, end)
        self._store.ensure_series_initialized()

        t0 = time.monotonic()
        result = IngestionResult(
            symbol=self._store.symbol, interval=self._store.interval, start=start, end=end,
        )

        await self._bulk_phase(start, end, result)
        await self._reconcile_phase(start, end, result)

        result.duration_secs = time.monotonic() - t0
        logger.info(
            "[Ingest] %s/%s %s: inserted=%d backfilled=%d unresolved=%d (%.1fs)",
            result.symbol, result.interval, result.status,
            result.records_inserted, result.backfilled, len(result.unresolved),
            result.duration_secs,
        )
        return result
