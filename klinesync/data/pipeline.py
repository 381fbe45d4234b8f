"""Pipeline facade: wires client, store, driver, analyzer and filler for one series.

Both operator surfaces (CLI in main.py, HTTP in klinesync.api) go through
SyncPipeline, so every operation is logged to ``sync_run_log`` the same
way regardless of how it was triggered.
"""
from __future__ import annotations

import logging
import time

from sqlalchemy.orm import Session, sessionmaker

from klinesync.config import Settings
from klinesync.data.binance_client import BinanceKlineClient, SleepFn
from klinesync.data.database import create_db_engine, make_session_factory
from klinesync.data.epochs import from_epoch
from klinesync.data.gap_filler import FillResult, GapFiller
from klinesync.data.gaps import GapAnalyzer
from klinesync.data.ingestion import IngestionDriver, IngestionResult
from klinesync.data.kline_store import KlineStore
from klinesync.data.locks import SeriesLockRegistry
from klinesync.data.progress import NullProgress, ProgressReporter
from klinesync.data.run_log import get_run_log, write_run_log
from klinesync.data.types import Gap

logger = logging.getLogger(__name__)


class SyncPipeline:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        client: BinanceKlineClient,
        *,
        locks: SeriesLockRegistry | None = None,
        sleep: SleepFn | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        self.settings = settings
        self.locks    = locks or SeriesLockRegistry()
        self._factory = session_factory
        self.client   = client
        self.store    = KlineStore(
            session_factory,
            settings.symbol,
            settings.interval,
            settings.interval_secs,
            chunk_size=settings.scan_chunk_size,
        )
        self._sleep    = sleep
        self._progress = progress or NullProgress()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        progress: ProgressReporter | None = None,
    ) -> "SyncPipeline":
        engine = create_db_engine(settings.database_url)
        return cls(
            settings,
            make_session_factory(engine),
            BinanceKlineClient.from_settings(settings),
            progress=progress,
        )

    def initialize(self) -> None:
        self.store.ensure_series_initialized()

    def _log_run(self, operation: str, status: str, t0: float, error: str | None = None, **counters: int) -> None:
        try:
            write_run_log(
                self._factory,
                symbol        = self.store.symbol,
                interval      = self.store.interval,
                operation     = operation,
                status        = status,
                duration_secs = time.monotonic() - t0,
                error         = error,
                **counters,
            )
        except Exception:
            logger.exception("[Pipeline] Failed to write run log for %s", operation)

    # ── Operations ────────────────────────────────────────────────────────────

    async def ingest(self, start: int | None = None, end: int | None = None) -> IngestionResult:
        s = self.settings
        start = s.global_start_epoch if start is None else start
        end   = s.global_end_epoch   if end   is None else end

        driver = IngestionDriver(
            self.client,
            self.store,
            self.locks,
            window_size      = s.window_size,
            max_concurrency  = s.max_concurrency,
            request_interval = s.request_interval,
            sleep            = self._sleep,
            progress         = self._progress,
        )

        t0 = time.monotonic()
        try:
            result = await driver.run(start, end)
        except Exception as exc:
            self._log_run("ingest", "error", t0, error=str(exc))
            raise

        self._log_run(
            "ingest", result.status, t0,
            windows_total    = result.windows_total,
            windows_failed   = result.windows_failed,
            records_inserted = result.records_inserted + result.backfilled,
            records_failed   = result.record_failures,
            unresolved       = len(result.unresolved),
        )
        return result

    def report_gaps(
        self,
        start: int | None = None,
        end: int | None = None,
        reference: str = "open",
    ) -> list[Gap]:
        t0 = time.monotonic()
        try:
            gaps = GapAnalyzer(self.store).report(start, end, reference)
        except Exception as exc:
            self._log_run("report_gaps", "error", t0, error=str(exc))
            raise
        self._log_run("report_gaps", "complete", t0, gaps_found=len(gaps))
        return gaps

    def fill_gaps(self, start: int | None = None, end: int | None = None) -> FillResult:
        t0 = time.monotonic()
        try:
            result = GapFiller(self.store, self.locks).fill(start, end)
        except Exception as exc:
            self._log_run("fill_gaps", "error", t0, error=str(exc))
            raise
        self._log_run(
            "fill_gaps", "complete", t0,
            gaps_found          = result.gaps_filled,
            records_synthesized = result.records_synthesized,
        )
        return result

    # ── Read-only views ───────────────────────────────────────────────────────

    def runs(self, limit: int = 50) -> list[dict]:
        return get_run_log(self._factory, self.store.symbol, self.store.interval, limit)

    def stats(self) -> dict[str, object]:
        bounds = self.store.bounds()
        return {
            "symbol":       self.store.symbol,
            "interval":     self.store.interval,
            "record_count": self.store.count(),
            "oldest":       from_epoch(bounds[0]) if bounds else None,
            "newest":       from_epoch(bounds[1]) if bounds else None,
        }
