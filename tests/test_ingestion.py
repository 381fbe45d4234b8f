"""End-to-end ingestion against the fake klines endpoint and a temp SQLite store."""
from __future__ import annotations

import io
import json

import pytest

from fakes import MINUTE, T0, kline_row
from klinesync.data.gaps import iter_gaps
from klinesync.data.ingestion import IngestionDriver, plan_windows
from klinesync.data.progress import ProgressReporter
from klinesync.exceptions import ConfigurationError


def make_driver(client, store, locks, sleeper, **kwargs) -> IngestionDriver:
    kwargs.setdefault("window_size", 500)
    return IngestionDriver(client, store, locks, sleep=sleeper, **kwargs)


class TestPlanWindows:
    def test_exact_multiple(self):
        windows = plan_windows(T0, T0 + 1000 * MINUTE, MINUTE, 500)
        assert windows == [
            (T0, T0 + 500 * MINUTE),
            (T0 + 500 * MINUTE, T0 + 1000 * MINUTE),
        ]

    def test_tail_is_clipped_not_dropped(self):
        windows = plan_windows(T0, T0 + 1100 * MINUTE, MINUTE, 500)
        assert len(windows) == 3
        assert windows[-1] == (T0 + 1000 * MINUTE, T0 + 1100 * MINUTE)

    def test_range_shorter_than_one_window(self):
        assert plan_windows(T0, T0 + 3 * MINUTE, MINUTE, 500) == [(T0, T0 + 3 * MINUTE)]


class TestIngestionDriver:
    @pytest.mark.asyncio
    async def test_thousand_minutes_in_two_pages(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 1000 * MINUTE)

        assert result.status == "complete"
        assert result.windows_total == 2
        assert result.records_inserted == 1000
        assert result.unresolved == []
        assert result.backfilled == 0
        assert result.boundaries_checked == 1000
        assert store.count() == 1000
        assert list(iter_gaps(store.range_scan(), MINUTE)) == []

        # Only the two window requests; reconciliation found nothing missing.
        assert [r["limit"] for r in server.requests] == ["500", "500"]
        assert server.requests[0]["endTime"] == str((T0 + 500 * MINUTE) * 1000 - 1)

    @pytest.mark.asyncio
    async def test_rerun_over_populated_range_inserts_nothing(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        driver = make_driver(client, store, locks, sleeper)
        await driver.run(T0, T0 + 1000 * MINUTE)

        again = await driver.run(T0, T0 + 1000 * MINUTE)

        assert again.records_inserted == 0
        assert again.backfilled == 0
        assert again.records_skipped == 1000
        assert store.count() == 1000

    @pytest.mark.asyncio
    async def test_clipped_tail_window_is_ingested(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1100)
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 1100 * MINUTE)

        assert result.windows_total == 3
        assert store.count() == 1100
        assert store.bounds() == (T0, T0 + 1099 * MINUTE)

    @pytest.mark.asyncio
    async def test_failed_window_is_recovered_by_reconciliation(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        server.fail_once = {(T0 + 500 * MINUTE) * 1000}
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 1000 * MINUTE)

        assert result.windows_failed == 1
        assert result.records_inserted == 500
        assert result.backfilled == 500
        assert result.status == "complete"
        assert store.count() == 1000
        single = [r for r in server.requests if r["limit"] == "1"]
        assert len(single) == 500

    @pytest.mark.asyncio
    async def test_non_finite_field_fails_only_its_window(self, client, server, store, locks, sleeper):
        server.add_series(T0, 4)
        bad = kline_row((T0 + 2 * MINUTE) * 1000)
        bad[8] = float("nan")
        server.raw_once = {(T0 + 2 * MINUTE) * 1000: json.dumps([bad])}
        driver = make_driver(client, store, locks, sleeper, window_size=2, max_concurrency=2)

        result = await driver.run(T0, T0 + 4 * MINUTE)

        assert result.windows_total == 2
        assert result.windows_failed == 1
        assert result.records_inserted == 2
        assert result.backfilled == 2
        assert result.status == "complete"
        assert store.count() == 4

    @pytest.mark.asyncio
    async def test_boundary_missing_upstream_stays_unresolved(self, client, server, store, locks, sleeper):
        server.add_series(T0, 20, skip=(10,))
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 20 * MINUTE)

        assert result.status == "partial"
        assert result.unresolved == [T0 + 10 * MINUTE]
        assert store.count() == 19

    @pytest.mark.asyncio
    async def test_rejected_record_is_counted(self, client, server, store, locks, sleeper):
        server.add_series(T0, 10)
        bad_ms = (T0 + 4 * MINUTE) * 1000
        server.rows[bad_ms] = kline_row(bad_ms, "not-a-number")
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 10 * MINUTE)

        assert result.record_failures == 1
        assert result.records_inserted == 9
        # Reconciliation refetches the same bad row and gives up on it.
        assert result.unresolved == [T0 + 4 * MINUTE]
        assert store.exists(T0 + 4 * MINUTE) is False

    @pytest.mark.asyncio
    async def test_request_interval_throttles_between_windows(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        driver = make_driver(client, store, locks, sleeper, request_interval=0.25)

        await driver.run(T0, T0 + 1000 * MINUTE)

        assert sleeper.calls == [0.25]

    @pytest.mark.asyncio
    async def test_rate_limited_window_still_completes(self, client, server, store, locks, sleeper):
        server.add_series(T0, 100)
        server.rate_limits = ["2"]
        driver = make_driver(client, store, locks, sleeper)

        result = await driver.run(T0, T0 + 100 * MINUTE)

        assert sleeper.calls == [2.0]
        assert result.status == "complete"
        assert store.count() == 100

    @pytest.mark.asyncio
    async def test_bounded_concurrency_gives_same_result(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        driver = make_driver(client, store, locks, sleeper, window_size=100, max_concurrency=4)

        result = await driver.run(T0, T0 + 1000 * MINUTE)

        assert result.windows_total == 10
        assert result.records_inserted == 1000
        assert result.status == "complete"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start, end",
        [
            (T0 + 30, T0 + 10 * MINUTE),
            (T0, T0 + 10 * MINUTE + 1),
            (T0 + 10 * MINUTE, T0),
            (T0, T0),
        ],
    )
    async def test_malformed_range_is_fatal(self, client, store, locks, sleeper, start, end):
        driver = make_driver(client, store, locks, sleeper)
        with pytest.raises(ConfigurationError):
            await driver.run(start, end)

    @pytest.mark.asyncio
    async def test_progress_lines(self, client, server, store, locks, sleeper):
        server.add_series(T0, 1000)
        out = io.StringIO()
        driver = make_driver(client, store, locks, sleeper, progress=ProgressReporter(out))

        await driver.run(T0, T0 + 1000 * MINUTE)

        lines = out.getvalue().splitlines()
        assert "Ingesting windows: 50.00% complete" in lines
        assert "Ingesting windows: 100.00% complete" in lines
        assert "Reconciling boundaries: 100.00% complete" in lines
