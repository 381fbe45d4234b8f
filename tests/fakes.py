"""In-memory stand-ins for the klines endpoint, shared by the test modules."""
from __future__ import annotations

import httpx

T0 = 1_704_067_200          # 2024-01-01T00:00:00Z, aligned to every interval
MINUTE = 60


def kline_row(open_ms: int, close: str = "100.0", interval_secs: int = MINUTE) -> list:
    """One upstream kline row with a trailing ignored field."""
    return [
        open_ms, close, close, close, close, "1.5",
        open_ms + interval_secs * 1000 - 1,
        "150.0", 42, "0.7", "70.0", "0",
    ]


class FakeKlineServer:
    """Serves stored rows filtered by startTime / endTime / limit.

    rate_limits   Retry-After header values to answer with 429 first
                  (None means "no header").
    fail_once     startTime values answered once with HTTP 500.
    raw_once      startTime -> literal body answered once with HTTP 200.
    """

    def __init__(self, interval_secs: int = MINUTE) -> None:
        self.interval_secs = interval_secs
        self.rows: dict[int, list] = {}
        self.requests: list[dict[str, str]] = []
        self.rate_limits: list[str | None] = []
        self.fail_once: set[int] = set()
        self.raw_once: dict[int, str] = {}

    def add_series(self, start: int, count: int, skip: tuple[int, ...] = ()) -> None:
        for i in range(count):
            if i in skip:
                continue
            open_ms = (start + i * self.interval_secs) * 1000
            self.rows[open_ms] = kline_row(open_ms, f"{100 + i}.0", self.interval_secs)

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)

        if self.rate_limits:
            header = self.rate_limits.pop(0)
            headers = {"Retry-After": header} if header is not None else {}
            return httpx.Response(429, headers=headers, text="Too many requests")

        start = int(params["startTime"])
        if start in self.fail_once:
            self.fail_once.discard(start)
            return httpx.Response(500, text="upstream exploded")
        if start in self.raw_once:
            return httpx.Response(200, text=self.raw_once.pop(start))

        end   = int(params["endTime"])
        limit = int(params["limit"])
        rows = [row for ms, row in sorted(self.rows.items()) if start <= ms <= end]
        return httpx.Response(200, json=rows[:limit])

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
