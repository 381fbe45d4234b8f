"""Error taxonomy for the ingestion-and-repair pipeline.

UpstreamError     non-200 / non-429 response or transport failure (no retry)
RateLimited       429 retry budget exhausted (only raised when a cap is set)
DecodeError       malformed upstream payload; the whole page is discarded
AlignmentError    open time not on a whole-interval boundary (fatal per record)
ParseError        decimal-as-string field failed to parse (fatal per record)
StoreError        creation / insert / query failure from the persistence layer
ConfigurationError  malformed settings; fatal to the whole run
OrderingError     range scan delivered records out of ascending order
"""
from __future__ import annotations


class KlineSyncError(Exception):
    """Base class for every error raised by klinesync."""


class UpstreamError(KlineSyncError):
    def __init__(self, status: int | None, body: str) -> None:
        self.status = status
        self.body   = body
        label = f"HTTP {status}" if status is not None else "transport error"
        super().__init__(f"Upstream request failed ({label}): {body}")


class RateLimited(KlineSyncError):
    def __init__(self, retry_after: float, attempts: int) -> None:
        self.retry_after = retry_after
        self.attempts    = attempts
        super().__init__(
            f"Still rate limited after {attempts} attempts (last Retry-After {retry_after:g}s)"
        )


class DecodeError(KlineSyncError):
    pass


class AlignmentError(KlineSyncError):
    def __init__(self, open_time_ms: int, interval_secs: int) -> None:
        self.open_time_ms  = open_time_ms
        self.interval_secs = interval_secs
        super().__init__(
            f"Open time {open_time_ms} ms is not aligned to a whole {interval_secs}s interval"
        )


class ParseError(KlineSyncError):
    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Field '{field}' is not a valid decimal: {value!r}")


class StoreError(KlineSyncError):
    pass


class ConfigurationError(KlineSyncError):
    pass


class OrderingError(KlineSyncError):
    pass
