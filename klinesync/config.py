"""Runtime configuration loaded from environment variables / ``.env``.

Every component receives a ``Settings`` instance explicitly.  Only the
entry points (``main.py``, ``create_app``) call ``get_settings()``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from klinesync.data.epochs import TF_SECONDS, to_epoch


def _today_utc_midnight() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class Settings(BaseSettings):
    """Application settings; every field can be overridden as KLINESYNC_<NAME>."""

    model_config = SettingsConfigDict(
        env_prefix="KLINESYNC_",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "klinesync"
    app_host: str = "127.0.0.1"
    app_port: int = 8000
    log_level: str = "INFO"

    # ── Storage ───────────────────────────────────────────────────────────────
    db_path: Path = Path("data/klines.db")
    database_url: str | None = None

    # ── Series ────────────────────────────────────────────────────────────────
    symbol: str = "BTCUSDT"
    interval: str = "1m"

    # ── Upstream ──────────────────────────────────────────────────────────────
    base_url: str = "https://api.binance.com"
    http_timeout: float = 20.0
    default_retry_after: float = 1.0
    max_rate_limit_retries: int | None = None

    # ── Ingestion ─────────────────────────────────────────────────────────────
    window_size: int = Field(default=500, ge=1, le=1000)
    max_concurrency: int = Field(default=1, ge=1)
    request_interval: float = Field(default=0.25, ge=0.0)
    global_start: datetime = datetime(2018, 1, 1, tzinfo=timezone.utc)
    global_end: datetime = Field(default_factory=_today_utc_midnight)

    # ── Scans ─────────────────────────────────────────────────────────────────
    scan_chunk_size: int = Field(default=5_000, ge=1)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("interval")
    @classmethod
    def _known_interval(cls, v: str) -> str:
        if v not in TF_SECONDS:
            raise ValueError(
                f"Unsupported interval '{v}'. Use one of: {', '.join(TF_SECONDS)}"
            )
        return v

    @field_validator("global_start", "global_end")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _default_database_url(self) -> "Settings":
        if not self.database_url:
            self.database_url = f"sqlite:///{self.db_path}"
        return self

    @property
    def interval_secs(self) -> int:
        return TF_SECONDS[self.interval]

    @property
    def global_start_epoch(self) -> int:
        return to_epoch(self.global_start)

    @property
    def global_end_epoch(self) -> int:
        return to_epoch(self.global_end)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
