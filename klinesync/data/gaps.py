"""Gap detection over an ascending stream of stored records.

Two references are supported:

  open   current.open_time - previous.open_time > I
         (a single missing interval shows as one gap of 2·I)
  close  current.open_time - inclusive_close(previous) > I
         where inclusive_close = previous.open_time + I - 1, the last second
         the previous record covers (a single missing interval shows as
         one gap of I + 1 seconds)

Detection is a single lazy pass holding only the previous record, so it
runs in O(n) time and O(1) memory on any iterable, including the store's
keyset-paginated range_scan().
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator

from klinesync.data.kline_store import KlineStore
from klinesync.data.types import Gap, StoredRecord
from klinesync.exceptions import OrderingError

logger = logging.getLogger(__name__)

REFERENCES = ("open", "close")


def iter_gaps(
    records: Iterable[StoredRecord],
    interval_secs: int,
    reference: str = "open",
) -> Iterator[Gap]:
    if reference not in REFERENCES:
        raise ValueError(f"reference must be one of {REFERENCES}, got {reference!r}")

    previous: StoredRecord | None = None
    for current in records:
        if previous is not None:
            if current.open_time <= previous.open_time:
                raise OrderingError(
                    f"Records out of order: {current.open_time} after {previous.open_time}"
                )
            anchor = (
                previous.open_time
                if reference == "open"
                else previous.inclusive_close(interval_secs)
            )
            if current.open_time - anchor > interval_secs:
                yield Gap(start=anchor, end=current.open_time, duration=current.open_time - anchor)
        previous = current


class GapAnalyzer:
    """Streams a series out of the store and reports its gaps."""

    def __init__(self, store: KlineStore) -> None:
        self._store = store

    def scan(
        self,
        start: int | None = None,
        end: int | None = None,
        reference: str = "open",
    ) -> Iterator[Gap]:
        return iter_gaps(
            self._store.range_scan(start, end),
            self._store.interval_secs,
            reference,
        )

    def report(
        self,
        start: int | None = None,
        end: int | None = None,
        reference: str = "open",
    ) -> list[Gap]:
        """Scan and log one line per gap; returns the gaps found."""
        gaps: list[Gap] = []
        for gap in self.scan(start, end, reference):
            logger.info("[Gaps] %s", gap.describe())
            gaps.append(gap)
        logger.info(
            "[Gaps] %s/%s: %d gap(s) found",
            self._store.symbol, self._store.interval, len(gaps),
        )
        return gaps
