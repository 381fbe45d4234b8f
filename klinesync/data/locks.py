from __future__ import annotations

import threading


class SeriesLockRegistry:
    """One write lock per (symbol, interval) series.

    The ingestion driver and the gap filler share a registry so their write
    batches for the same series never interleave.  Locks are taken with
    ``with registry.lock(symbol, interval):`` around a synchronous store
    call and are never held across an ``await``.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    def lock(self, symbol: str, interval: str) -> threading.Lock:
        key = (symbol, interval)
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = self._locks[key] = threading.Lock()
            return lk
