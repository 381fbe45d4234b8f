"""HTTP surface tests using FastAPI's TestClient."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from fakes import MINUTE, T0
from klinesync.app_factory import create_app
from klinesync.config import Settings
from klinesync.data.pipeline import SyncPipeline
from klinesync.data.types import StoredRecord


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url     = "sqlite://",
        symbol           = "btcusdt",
        interval         = "1m",
        global_start     = datetime(2024, 1, 1, tzinfo=timezone.utc),
        global_end       = datetime(2024, 1, 1, 0, 20, tzinfo=timezone.utc),
        request_interval = 0.0,
    )


@pytest.fixture
def pipeline(settings, session_factory, client, sleeper) -> SyncPipeline:
    return SyncPipeline(settings, session_factory, client, sleep=sleeper)


@pytest.fixture
def api(settings, pipeline):
    with TestClient(create_app(settings, pipeline)) as test_client:
        yield test_client


def seed(pipeline: SyncPipeline, offsets: dict[int, float]) -> None:
    for offset, close in offsets.items():
        t = T0 + offset * MINUTE
        pipeline.store.save_record_if_absent(
            StoredRecord(open_time=t, close_time=t + MINUTE - 1, open=close, high=close, low=close, close=close)
        )


class TestHealth:
    def test_health_reports_series(self, api):
        body = api.get("/health").json()
        assert body["status"] == "ok"
        assert body["symbol"] == "BTCUSDT"
        assert body["record_count"] == 0
        assert body["oldest"] is None


class TestIngestEndpoints:
    def test_run_ingests_configured_range(self, api, server):
        server.add_series(T0, 20)

        resp = api.post("/api/ingest/run")
        assert resp.status_code == 200
        assert resp.json()["start"] == "2024-01-01T00:00:00+00:00"

        status = api.get("/api/ingest/status").json()
        assert status["is_running"] is False
        assert status["last_error"] is None
        assert status["last_result"]["status"] == "complete"
        assert status["last_result"]["records_inserted"] == 20
        assert status["series"]["record_count"] == 20

    def test_partial_run_lists_unresolved(self, api, server):
        server.add_series(T0, 20, skip=(7,))

        api.post("/api/ingest/run")

        result = api.get("/api/ingest/status").json()["last_result"]
        assert result["status"] == "partial"
        assert result["unresolved"] == ["2024-01-01T00:07:00+00:00"]

    def test_explicit_range(self, api, server):
        server.add_series(T0, 20)

        api.post(
            "/api/ingest/run",
            params={"start": "2024-01-01T00:05:00Z", "end": "2024-01-01T00:10:00Z"},
        )

        assert api.get("/health").json()["record_count"] == 5

    def test_concurrent_run_rejected(self, api):
        api.app.state.ingest_job.running = True
        resp = api.post("/api/ingest/run")
        assert resp.status_code == 409

    def test_misaligned_start_rejected(self, api):
        resp = api.post("/api/ingest/run", params={"start": "2024-01-01T00:00:30Z"})
        assert resp.status_code == 400

    def test_empty_range_rejected(self, api):
        resp = api.post(
            "/api/ingest/run",
            params={"start": "2024-01-01T00:10:00Z", "end": "2024-01-01T00:10:00Z"},
        )
        assert resp.status_code == 400


class TestGapEndpoints:
    def test_list_gaps(self, api, pipeline):
        seed(pipeline, {0: 100.0, 4: 130.0, 5: 131.0})

        body = api.get("/api/gaps").json()

        assert body["count"] == 1
        assert body["missing"] == 3
        assert body["gaps"][0]["message"].endswith("Gap is 4 minutes")

    def test_invalid_reference(self, api):
        assert api.get("/api/gaps", params={"reference": "mid"}).status_code == 422

    def test_fill_then_no_gaps(self, api, pipeline):
        seed(pipeline, {0: 100.0, 4: 130.0})

        filled = api.post("/api/gaps/fill").json()

        assert filled["records_synthesized"] == 3
        assert api.get("/api/gaps").json()["count"] == 0
        assert api.get("/api/gaps", params={"reference": "close"}).json()["count"] == 0


class TestRunsEndpoint:
    def test_operations_are_logged(self, api, pipeline, server):
        server.add_series(T0, 20)
        api.post("/api/ingest/run")
        api.get("/api/gaps")
        api.post("/api/gaps/fill")

        runs = api.get("/api/runs").json()["runs"]

        assert {r["operation"] for r in runs} == {"ingest", "report_gaps", "fill_gaps"}
        ingest = next(r for r in runs if r["operation"] == "ingest")
        assert ingest["status"] == "complete"
        assert ingest["records_inserted"] == 20
