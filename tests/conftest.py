"""Shared fixtures: temp SQLite store, fake upstream, recorded sleeps."""
from __future__ import annotations

import pytest

from fakes import FakeKlineServer, SleepRecorder
from klinesync.data.binance_client import BinanceKlineClient
from klinesync.data.database import create_db_engine, initialize_schema, make_session_factory
from klinesync.data.kline_store import KlineStore
from klinesync.data.locks import SeriesLockRegistry


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'klines.db'}")
    initialize_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory) -> KlineStore:
    # Small chunk size so every multi-record scan crosses page boundaries.
    return KlineStore(session_factory, "BTCUSDT", "1m", 60, chunk_size=7)


@pytest.fixture
def locks() -> SeriesLockRegistry:
    return SeriesLockRegistry()


@pytest.fixture
def server() -> FakeKlineServer:
    return FakeKlineServer()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def client(server, sleeper) -> BinanceKlineClient:
    return BinanceKlineClient(
        "https://api.test",
        default_retry_after=1.0,
        sleep=sleeper,
        transport=server.transport,
    )
