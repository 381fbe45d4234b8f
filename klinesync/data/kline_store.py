"""Record store adapter for one (symbol, interval) series.

This module is the only code that touches the ``kline`` table.  Everything
above it (ingestion driver, gap analyzer, gap filler) works in terms of
Candle / StoredRecord and epoch seconds.

Write paths
───────────
  upsert_if_absent(candle)       single upstream candle, existence-checked
  save_record_if_absent(record)  single typed record (synthetic fills)
  bulk_insert_new(candles)       one upstream page; drops known open times
                                 with one keyed query, inserts the rest in
                                 batches, falls back to row-by-row when a
                                 batch fails

Every write goes through INSERT … ON CONFLICT DO NOTHING, so the composite
primary key is the final guard against duplicates even if two writers race
past the existence check.

Read paths
──────────
  exists(open_time)              PK point lookup
  range_scan(start, end)         ascending, keyset-paginated generator
  count(start, end), bounds()    metadata for reports and the API
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, Iterator

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from klinesync.data.database import initialize_schema, session_scope
from klinesync.data.models import Kline
from klinesync.data.types import Candle, StoredRecord
from klinesync.exceptions import AlignmentError, KlineSyncError, StoreError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5_000

# 13 bound parameters per row; 500 rows stays far below SQLite's variable cap.
INSERT_BATCH_SIZE = 500


@dataclass(frozen=True)
class RecordFailure:
    open_time_ms: int
    error:        KlineSyncError

    def __str__(self) -> str:
        return f"{self.open_time_ms}: {self.error}"


@dataclass
class BulkInsertResult:
    inserted:         int = 0
    skipped_existing: int = 0
    failures:         list[RecordFailure] = field(default_factory=list)


class KlineStore:
    """Persistence adapter bound to one series.

    Stateless apart from its configuration; every call opens its own
    session through the injected session factory.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        symbol: str,
        interval: str,
        interval_secs: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._factory      = session_factory
        self.symbol        = symbol
        self.interval      = interval
        self.interval_secs = interval_secs
        self.chunk_size    = chunk_size

    # ── Setup ─────────────────────────────────────────────────────────────────

    def ensure_series_initialized(self) -> None:
        """Create the series storage if absent.  Raises StoreError on failure."""
        with self._factory() as session:
            engine = session.get_bind()
        initialize_schema(engine)
        logger.info("[Store] Series %s/%s ready", self.symbol, self.interval)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _series(self, stmt):
        return (
            stmt.where(Kline.symbol   == self.symbol)
                .where(Kline.interval == self.interval)
        )

    def _to_row(self, record: StoredRecord) -> dict[str, object]:
        row = asdict(record)
        row["symbol"]   = self.symbol
        row["interval"] = self.interval
        return row

    def _insert_rows(self, session: Session, rows: list[dict[str, object]]) -> int:
        stmt   = sqlite_insert(Kline).values(rows).on_conflict_do_nothing()
        result = session.execute(stmt)
        return result.rowcount

    def _require_aligned(self, candle: Candle) -> None:
        if candle.open_time_ms % (self.interval_secs * 1000) != 0:
            raise AlignmentError(candle.open_time_ms, self.interval_secs)

    def _to_record(self, row: Kline) -> StoredRecord:
        return StoredRecord(
            open_time              = row.open_time,
            close_time             = row.close_time,
            open                   = row.open,
            high                   = row.high,
            low                    = row.low,
            close                  = row.close,
            volume                 = row.volume,
            quote_asset_volume     = row.quote_asset_volume,
            number_of_trades       = row.number_of_trades,
            taker_buy_base_volume  = row.taker_buy_base_volume,
            taker_buy_quote_volume = row.taker_buy_quote_volume,
            synthetic              = row.synthetic,
        )

    # ── Point operations ──────────────────────────────────────────────────────

    def exists(self, open_time: int) -> bool:
        with session_scope(self._factory) as session:
            found = session.execute(
                self._series(select(Kline.open_time))
                .where(Kline.open_time == open_time)
                .limit(1)
            ).first()
        return found is not None

    def upsert_if_absent(self, candle: Candle) -> bool:
        """Insert *candle* unless its open time is already stored.

        Raises AlignmentError / ParseError for invalid candles and
        StoreError when the insert itself fails.
        """
        self._require_aligned(candle)
        if self.exists(candle.open_time):
            return False
        return self.save_record_if_absent(StoredRecord.from_candle(candle, self.interval_secs))

    def save_record_if_absent(self, record: StoredRecord) -> bool:
        # Alignment holds for synthetic records too.
        if record.open_time % self.interval_secs != 0:
            raise AlignmentError(record.open_time * 1000, self.interval_secs)

        if self.exists(record.open_time):
            return False
        with session_scope(self._factory) as session:
            inserted = self._insert_rows(session, [self._to_row(record)])
        return inserted > 0

    # ── Bulk path ─────────────────────────────────────────────────────────────

    def _existing_open_times(self, lo: int, hi: int) -> set[int]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                self._series(select(Kline.open_time))
                .where(Kline.open_time >= lo)
                .where(Kline.open_time <= hi)
            ).scalars().all()
        return set(rows)

    def bulk_insert_new(self, candles: Iterable[Candle]) -> BulkInsertResult:
        """Insert every candle of one page whose open time is not yet stored."""
        result = BulkInsertResult()

        page: dict[int, Candle] = {}
        for candle in candles:
            # Alignment is checked before the existence filter.
            try:
                self._require_aligned(candle)
            except AlignmentError as exc:
                result.failures.append(RecordFailure(candle.open_time_ms, exc))
                continue
            if candle.open_time in page:
                result.skipped_existing += 1
                continue
            page[candle.open_time] = candle
        if not page:
            return result

        known = self._existing_open_times(min(page), max(page))

        records: list[StoredRecord] = []
        for open_time in sorted(page):
            candle = page[open_time]
            if open_time in known:
                result.skipped_existing += 1
                continue
            try:
                records.append(StoredRecord.from_candle(candle, self.interval_secs))
            except KlineSyncError as exc:
                result.failures.append(RecordFailure(candle.open_time_ms, exc))

        for i in range(0, len(records), INSERT_BATCH_SIZE):
            batch = records[i : i + INSERT_BATCH_SIZE]
            try:
                with session_scope(self._factory) as session:
                    result.inserted += self._insert_rows(session, [self._to_row(r) for r in batch])
            except StoreError as exc:
                logger.warning(
                    "[Store] Batch of %d failed (%s); retrying row by row", len(batch), exc,
                )
                self._insert_one_by_one(batch, result)

        return result

    def _insert_one_by_one(self, batch: list[StoredRecord], result: BulkInsertResult) -> None:
        for record in batch:
            try:
                with session_scope(self._factory) as session:
                    result.inserted += self._insert_rows(session, [self._to_row(record)])
            except StoreError as exc:
                result.failures.append(RecordFailure(record.open_time * 1000, exc))

    # ── Scans ─────────────────────────────────────────────────────────────────

    def range_scan(
        self,
        start: int | None = None,
        end: int | None = None,
        chunk_size: int | None = None,
    ) -> Iterator[StoredRecord]:
        """Yield records with start <= open_time <= end in ascending order.

        Keyset pagination on the clustered PK: each chunk is one query with
        ``open_time > :cursor``, so at most *chunk_size* rows are held at once
        and rows inserted behind the cursor never reappear.
        """
        size   = chunk_size or self.chunk_size
        cursor = (start if start is not None else 0) - 1

        while True:
            stmt = (
                self._series(select(Kline))
                .where(Kline.open_time > cursor)
                .order_by(Kline.open_time.asc())
                .limit(size)
            )
            if end is not None:
                stmt = stmt.where(Kline.open_time <= end)

            with session_scope(self._factory) as session:
                chunk = [self._to_record(r) for r in session.execute(stmt).scalars().all()]

            yield from chunk

            if len(chunk) < size:
                return
            cursor = chunk[-1].open_time

    def count(self, start: int | None = None, end: int | None = None) -> int:
        stmt = self._series(select(func.count()).select_from(Kline))
        if start is not None:
            stmt = stmt.where(Kline.open_time >= start)
        if end is not None:
            stmt = stmt.where(Kline.open_time <= end)
        with session_scope(self._factory) as session:
            return session.execute(stmt).scalar_one()

    def bounds(self) -> tuple[int, int] | None:
        """(oldest, newest) open_time, or None for an empty series."""
        with session_scope(self._factory) as session:
            row = session.execute(
                self._series(
                    select(func.min(Kline.open_time), func.max(Kline.open_time))
                )
            ).one()
        if row[0] is None:
            return None
        return int(row[0]), int(row[1])
