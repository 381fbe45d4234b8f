"""Settings validation and environment overrides."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from klinesync.config import Settings


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.symbol == "BTCUSDT"
        assert s.interval == "1m"
        assert s.interval_secs == 60
        assert s.window_size == 500
        assert s.global_start_epoch == 1_514_764_800  # 2018-01-01T00:00:00Z
        assert s.global_end_epoch % 86_400 == 0
        assert s.database_url == f"sqlite:///{Path('data/klines.db')}"
        assert s.max_rate_limit_retries is None

    def test_symbol_is_uppercased(self):
        assert Settings(_env_file=None, symbol=" ethusdt ").symbol == "ETHUSDT"

    def test_unknown_interval_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported interval"):
            Settings(_env_file=None, interval="7m")

    @pytest.mark.parametrize("size", [0, 1001])
    def test_window_size_bounds(self, size):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, window_size=size)

    def test_naive_datetimes_are_utc(self):
        s = Settings(_env_file=None, global_start=datetime(2024, 1, 1))
        assert s.global_start.tzinfo == timezone.utc
        assert s.global_start_epoch == 1_704_067_200

    def test_explicit_database_url_wins(self):
        s = Settings(_env_file=None, database_url="sqlite:///tmp/x.db")
        assert s.database_url == "sqlite:///tmp/x.db"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("KLINESYNC_SYMBOL", "solusdt")
        monkeypatch.setenv("KLINESYNC_INTERVAL", "1h")
        monkeypatch.setenv("KLINESYNC_MAX_RATE_LIMIT_RETRIES", "5")

        s = Settings(_env_file=None)

        assert s.symbol == "SOLUSDT"
        assert s.interval_secs == 3600
        assert s.max_rate_limit_retries == 5
