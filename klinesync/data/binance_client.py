"""Async client for the Binance-style klines endpoint.

GET {base_url}/api/v3/klines?symbol=&interval=&startTime=&endTime=&limit=

startTime / endTime are inclusive epoch milliseconds.  Each row is a JSON
array:

    [openTime, open, high, low, close, volume, closeTime,
     quoteVolume, trades, takerBuyBase, takerBuyQuote, (ignored...)]

Prices and volumes arrive as decimal strings and are kept verbatim in
Candle; conversion to floats happens in StoredRecord.from_candle().

Rate limiting
─────────────
429 → sleep Retry-After seconds → re-issue the identical request.  There
is no retry cap unless ``max_rate_limit_retries`` is set, in which case
RateLimited is raised once it is exceeded.  Every other failure is raised
immediately; the ingestion driver decides what to skip.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable

import httpx

from klinesync.config import Settings
from klinesync.data.types import Candle
from klinesync.exceptions import DecodeError, RateLimited, UpstreamError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

MAX_LIMIT  = 1000
ROW_ARITY  = 11
_BODY_PREVIEW = 300

_HEADERS = {
    "User-Agent": "klinesync/1.0",
    "Accept":     "application/json",
}

# (index, field name, expected kind) for every positional field we keep.
_ROW_LAYOUT: tuple[tuple[int, str, str], ...] = (
    (0,  "open_time_ms",           "int"),
    (1,  "open",                   "str"),
    (2,  "high",                   "str"),
    (3,  "low",                    "str"),
    (4,  "close",                  "str"),
    (5,  "volume",                 "str"),
    (6,  "close_time_ms",          "int"),
    (7,  "quote_asset_volume",     "str"),
    (8,  "number_of_trades",       "number"),
    (9,  "taker_buy_base_volume",  "str"),
    (10, "taker_buy_quote_volume", "str"),
)


def _kind_ok(value: Any, kind: str) -> bool:
    if isinstance(value, bool):
        return False
    if kind == "int":
        return isinstance(value, int)
    if kind == "number":
        if isinstance(value, float):
            return math.isfinite(value)
        return isinstance(value, int)
    return isinstance(value, str)


def decode_klines(payload: Any) -> list[Candle]:
    """Validate and convert a decoded JSON payload into Candles.

    The whole payload is checked before any Candle is built, so a single
    bad element discards the page.
    """
    if not isinstance(payload, list):
        raise DecodeError(f"Expected a JSON array of klines, got {type(payload).__name__}")

    for idx, row in enumerate(payload):
        if not isinstance(row, list):
            raise DecodeError(f"Element {idx}: expected an array, got {type(row).__name__}")
        if len(row) < ROW_ARITY:
            raise DecodeError(
                f"Element {idx}: expected at least {ROW_ARITY} fields, got {len(row)}"
            )
        for pos, name, kind in _ROW_LAYOUT:
            if not _kind_ok(row[pos], kind):
                raise DecodeError(
                    f"Element {idx}: field '{name}' (position {pos}) has wrong type "
                    f"{type(row[pos]).__name__}"
                )

    return [
        Candle(
            open_time_ms           = row[0],
            open                   = row[1],
            high                   = row[2],
            low                    = row[3],
            close                  = row[4],
            volume                 = row[5],
            close_time_ms          = row[6],
            quote_asset_volume     = row[7],
            number_of_trades       = int(row[8]),
            taker_buy_base_volume  = row[9],
            taker_buy_quote_volume = row[10],
        )
        for row in payload
    ]


class BinanceKlineClient:
    """Stateless klines client; one httpx.AsyncClient per request."""

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        *,
        timeout: float = 20.0,
        default_retry_after: float = 1.0,
        max_rate_limit_retries: int | None = None,
        sleep: SleepFn | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint            = f"{base_url.rstrip('/')}/api/v3/klines"
        self._timeout             = timeout
        self._default_retry_after = default_retry_after
        self._max_retries         = max_rate_limit_retries
        self._sleep               = sleep or asyncio.sleep
        self._transport           = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "BinanceKlineClient":
        return cls(
            settings.base_url,
            timeout                = settings.http_timeout,
            default_retry_after    = settings.default_retry_after,
            max_rate_limit_retries = settings.max_rate_limit_retries,
            **kwargs,
        )

    def _retry_after(self, response: httpx.Response) -> float:
        raw = response.headers.get("Retry-After")
        if raw is not None:
            try:
                wait = float(raw)
                if wait >= 0:
                    return wait
            except ValueError:
                pass
        logger.warning(
            "[Binance] 429 with missing/invalid Retry-After %r; using %.1fs",
            raw, self._default_retry_after,
        )
        return self._default_retry_after

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                headers=_HEADERS,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                return await client.get(self._endpoint, params=params)
        except httpx.RequestError as exc:
            raise UpstreamError(None, f"{type(exc).__name__}: {exc}") from exc

    async def fetch(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = 500,
    ) -> list[Candle]:
        params = {
            "symbol":    symbol,
            "interval":  interval,
            "startTime": start_ms,
            "endTime":   end_ms,
            "limit":     max(1, min(limit, MAX_LIMIT)),
        }

        attempts = 0
        while True:
            response = await self._get(params)
            if response.status_code != 429:
                break

            attempts += 1
            wait = self._retry_after(response)
            if self._max_retries is not None and attempts > self._max_retries:
                raise RateLimited(wait, attempts)
            logger.warning(
                "[Binance] 429 for %s %s [%d..%d]: sleeping %.1fs (attempt %d)",
                symbol, interval, start_ms, end_ms, wait, attempts,
            )
            await self._sleep(wait)

        if response.status_code != 200:
            raise UpstreamError(response.status_code, response.text[:_BODY_PREVIEW])

        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodeError(f"Response body is not valid JSON: {exc}") from exc

        candles = decode_klines(payload)
        logger.debug(
            "[Binance] %s %s [%d..%d] → %d candles",
            symbol, interval, start_ms, end_ms, len(candles),
        )
        return candles
