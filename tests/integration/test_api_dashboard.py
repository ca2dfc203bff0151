"""Integration tests for the dashboard, log and retention routes."""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from ledgersync.api.main import create_app
from ledgersync.db.engine import get_engine
from ledgersync.models.sync import SyncLog


@pytest.fixture(name="client")
def client_fixture(engine):
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c


def _seed(engine, *rows):
    with Session(engine) as s:
        for row in rows:
            s.add(row)
        s.commit()


@pytest.fixture(name="logs")
def logs_fixture(engine):
    now = datetime.utcnow()
    _seed(
        engine,
        SyncLog(timestamp=now - timedelta(hours=3), entity="CONTACTS", status="SUCCESS", duration=1000),
        SyncLog(timestamp=now - timedelta(hours=2), entity="INVOICES", status="ERROR", duration=3000),
        SyncLog(timestamp=now - timedelta(days=200), entity="CONTACTS", status="SUCCESS"),
        SyncLog(timestamp=now - timedelta(days=200), entity="PAYMENTS", status="ERROR"),
    )


class TestDashboard:
    def test_summary_and_cache_header(self, client, engine, logs):
        first = client.get("/sync/dashboard")

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        summary = first.json()["summary"]
        assert summary["total"] == 4
        assert summary["error"] == 2

        _seed(engine, SyncLog(entity="CONTACTS", status="SUCCESS"))
        second = client.get("/sync/dashboard")
        assert second.headers["X-Cache"] == "HIT"
        assert second.json()["summary"]["total"] == 4

    def test_filters_in_query(self, client, logs):
        body = client.get("/sync/dashboard", params={"entity": "CONTACTS", "limit": 1}).json()
        assert body["summary"]["total"] == 2
        assert len(body["logs"]) == 1
        assert body["pagination"]["totalPages"] == 2

    def test_summary_only(self, client, logs):
        body = client.get("/sync/dashboard", params={"summary_only": "true"}).json()
        assert body["summaryOnly"] is True
        assert body["logs"] == []

    def test_unknown_view(self, client):
        resp = client.get("/sync/dashboard", params={"view": "everything"})
        assert resp.status_code == 400


class TestRetention:
    def test_purge_keeps_errors_and_invalidates(self, client, engine, logs):
        assert client.get("/sync/dashboard").json()["summary"]["total"] == 4

        resp = client.delete("/sync/dashboard/logs", params={"days": 90})

        assert resp.json() == {"success": True, "deleted_count": 1}
        refreshed = client.get("/sync/dashboard")
        assert refreshed.headers["X-Cache"] == "MISS"
        assert refreshed.json()["summary"]["total"] == 3

    def test_acknowledge_errors(self, client, engine, logs):
        resp = client.delete("/sync/dashboard/errors")

        assert resp.json()["deleted_count"] == 2
        with Session(engine) as s:
            assert {log.status for log in s.exec(select(SyncLog)).all()} == {"SUCCESS"}


class TestLogsAndStats:
    def test_logs_paged(self, client, logs):
        body = client.get("/sync/logs", params={"status": "ERROR", "limit": 1}).json()
        assert body["total"] == 2
        assert body["logs"][0]["entity"] == "INVOICES"

    def test_stats(self, client, logs):
        body = client.get("/sync/stats", params={"days": 30}).json()
        assert body["total_syncs"] == 2
        assert body["successful_syncs"] == 1
        assert body["failed_syncs"] == 1
        assert body["average_duration"] == 2
        assert body["entity_stats"] == {"CONTACTS": 1, "INVOICES": 1}
