"""Wire-level and persisted record types.

Candle        one upstream kline exactly as decoded (decimal strings kept).
StoredRecord  the persisted form: epoch seconds + floats, interval-aligned.
Gap           derived output of a scan; never persisted.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from klinesync.data.epochs import from_epoch
from klinesync.exceptions import AlignmentError, ParseError

# Decimal-string fields in wire order, paired with their StoredRecord name.
_DECIMAL_FIELDS: tuple[str, ...] = (
    "open",
    "high",
    "low",
    "close",
    "volume",
    "quote_asset_volume",
    "taker_buy_base_volume",
    "taker_buy_quote_volume",
)


@dataclass(frozen=True)
class Candle:
    open_time_ms:           int
    open:                   str
    high:                   str
    low:                    str
    close:                  str
    volume:                 str
    close_time_ms:          int
    quote_asset_volume:     str
    number_of_trades:       int
    taker_buy_base_volume:  str
    taker_buy_quote_volume: str

    @property
    def open_time(self) -> int:
        """Open time in epoch seconds."""
        return self.open_time_ms // 1000


def _parse_decimal(field_name: str, text: str) -> float:
    try:
        value = float(text)
    except (TypeError, ValueError):
        raise ParseError(field_name, text) from None
    if not math.isfinite(value):
        raise ParseError(field_name, text)
    return value


@dataclass(frozen=True)
class StoredRecord:
    open_time:              int     # epoch seconds UTC
    close_time:             int     # epoch seconds UTC
    open:                   float
    high:                   float
    low:                    float
    close:                  float
    volume:                 float = 0.0
    quote_asset_volume:     float = 0.0
    number_of_trades:       int   = 0
    taker_buy_base_volume:  float = 0.0
    taker_buy_quote_volume: float = 0.0
    synthetic:              bool  = False

    @classmethod
    def from_candle(cls, candle: Candle, interval_secs: int) -> "StoredRecord":
        """Validate alignment, parse decimals and convert to seconds.

        Raises AlignmentError before any field is parsed, then ParseError
        naming the first malformed field.
        """
        if candle.open_time_ms % (interval_secs * 1000) != 0:
            raise AlignmentError(candle.open_time_ms, interval_secs)

        parsed = {name: _parse_decimal(name, getattr(candle, name)) for name in _DECIMAL_FIELDS}
        return cls(
            open_time        = candle.open_time_ms // 1000,
            close_time       = candle.close_time_ms // 1000,
            number_of_trades = int(candle.number_of_trades),
            **parsed,
        )

    @classmethod
    def interpolated(cls, open_time: int, interval_secs: int, price: float) -> "StoredRecord":
        """A synthetic record: flat OHLC at *price*, no volume or trades."""
        return cls(
            open_time  = open_time,
            close_time = open_time + interval_secs,
            open       = price,
            high       = price,
            low        = price,
            close      = price,
            synthetic  = True,
        )

    def inclusive_close(self, interval_secs: int) -> int:
        """Last whole second covered by this record (open_time + interval - 1).

        Equals the stored close_time of an upstream record, whose end-inclusive
        millisecond close truncates to that second.  Derived from open_time so
        synthetic records (close_time = open_time + interval) behave the same.
        """
        return self.open_time + interval_secs - 1


@dataclass(frozen=True)
class Gap:
    start:    int   # reference boundary before the gap (epoch seconds)
    end:      int   # open_time of the first record after the gap
    duration: int   # end - start, seconds

    @property
    def duration_minutes(self) -> float:
        return self.duration / 60

    def missing_intervals(self, interval_secs: int, reference: str = "open") -> int:
        """Count of absent records inside the gap for the given scan reference."""
        steps = self.duration // interval_secs
        return steps - 1 if reference == "open" else steps

    def describe(self) -> str:
        return (
            f"Gap detected between {from_epoch(self.start)} and {from_epoch(self.end)}. "
            f"Gap is {self.duration_minutes:.0f} minutes"
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "start":            self.start,
            "end":              self.end,
            "start_iso":        from_epoch(self.start),
            "end_iso":          from_epoch(self.end),
            "duration_secs":    self.duration,
            "duration_minutes": self.duration_minutes,
        }
