"""Tests for APScheduler job configuration and the job bodies."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session, select

from ledgersync.config import Settings
from ledgersync.models.sync import SyncLog
from ledgersync.scheduler.jobs import (
    _last_nightly_pull,
    _nightly_pull,
    _purge_logs,
    _refresh_token,
    build_scheduler,
)
from ledgersync.xero.token_store import TokenStore


def _job(scheduler, job_id):
    return next(j for j in scheduler.get_jobs() if j.id == job_id)


def _fields(job):
    return {f.name: str(f) for f in job.trigger.fields}


class TestBuildScheduler:
    def test_returns_unstarted_scheduler(self):
        scheduler = build_scheduler(MagicMock())
        assert isinstance(scheduler, AsyncIOScheduler)
        assert not scheduler.running

    def test_jobs_registered(self):
        scheduler = build_scheduler(MagicMock())
        assert {job.id for job in scheduler.get_jobs()} == {
            "nightly_pull",
            "token_refresh",
            "log_purge",
        }

    def test_schedule_from_settings(self):
        settings = Settings(_env_file=None, xero_sync_hour=4, token_refresh_interval_minutes=15)
        with patch("ledgersync.scheduler.jobs.get_settings", return_value=settings):
            scheduler = build_scheduler(MagicMock())

        nightly = _job(scheduler, "nightly_pull")
        assert nightly.trigger.__class__.__name__ == "CronTrigger"
        assert _fields(nightly)["hour"] == "4"

        refresh = _job(scheduler, "token_refresh")
        assert refresh.trigger.__class__.__name__ == "IntervalTrigger"
        assert refresh.trigger.interval == timedelta(minutes=15)

        purge = _fields(_job(scheduler, "log_purge"))
        assert purge["day_of_week"] == "sun"
        assert purge["hour"] == "5"

    def test_purge_hour_wraps_midnight(self):
        settings = Settings(_env_file=None, xero_sync_hour=23)
        with patch("ledgersync.scheduler.jobs.get_settings", return_value=settings):
            scheduler = build_scheduler(MagicMock())
        assert _fields(_job(scheduler, "log_purge"))["hour"] == "0"


# ─── Nightly pull ─────────────────────────────────────────────────────────────

def _seed_run(engine, status, timestamp, entity="ALL"):
    with Session(engine) as s:
        s.add(SyncLog(entity=entity, direction="PULL", status=status, timestamp=timestamp))
        s.commit()


class TestNightlyPull:
    def test_watermark_is_last_successful_full_pull(self, engine):
        assert _last_nightly_pull(engine) is None

        _seed_run(engine, "SUCCESS", datetime(2025, 6, 1, 2))
        _seed_run(engine, "SUCCESS", datetime(2025, 6, 2, 2))
        _seed_run(engine, "ERROR", datetime(2025, 6, 3, 2))
        _seed_run(engine, "SUCCESS", datetime(2025, 6, 4, 2), entity="CONTACTS")

        assert _last_nightly_pull(engine) == datetime(2025, 6, 2, 2)

    async def test_runs_incremental_full_pull(self, engine):
        _seed_run(engine, "SUCCESS", datetime(2025, 6, 2, 2))
        client = AsyncMock()
        client_cls = MagicMock()
        client_cls.return_value.__aenter__.return_value = client
        service = MagicMock()
        service.run_full_pull = AsyncMock(return_value={"message": "Pulled everything"})

        with patch("ledgersync.xero.auth.XeroAuth"), \
             patch("ledgersync.xero.client.XeroClient", client_cls), \
             patch("ledgersync.xero.sync_service.XeroPullService", return_value=service) as service_cls:
            await _nightly_pull(engine=engine)

        service_cls.assert_called_once_with(client=client, engine=engine)
        assert service.run_full_pull.await_args.kwargs["modified_since"] == datetime(2025, 6, 2, 2)

    async def test_swallows_errors(self, engine):
        client_cls = MagicMock()
        client_cls.return_value.__aenter__.side_effect = RuntimeError("not connected")

        with patch("ledgersync.xero.auth.XeroAuth"), \
             patch("ledgersync.xero.client.XeroClient", client_cls):
            await _nightly_pull(engine=engine)


# ─── Token refresh ────────────────────────────────────────────────────────────

def _store_token(engine, expires_in):
    TokenStore(engine).store(
        tenant_id="tenant-1",
        access_token="at",
        refresh_token="rt",
        expires_at=datetime.utcnow() + expires_in,
        reconnect=True,
    )


class TestRefreshToken:
    async def test_no_connection_is_noop(self, engine):
        with patch("ledgersync.xero.auth.XeroAuth.refresh_access_token", new_callable=AsyncMock) as refresh:
            await _refresh_token(engine=engine)
        refresh.assert_not_awaited()
        with Session(engine) as s:
            assert s.exec(select(SyncLog)).all() == []

    async def test_fresh_token_left_alone(self, engine):
        _store_token(engine, timedelta(minutes=25))
        with patch("ledgersync.xero.auth.XeroAuth.refresh_access_token", new_callable=AsyncMock) as refresh:
            await _refresh_token(engine=engine)
        refresh.assert_not_awaited()

    async def test_refreshes_near_expiry_and_logs(self, engine):
        _store_token(engine, timedelta(minutes=2))
        with patch("ledgersync.xero.auth.XeroAuth.refresh_access_token", new_callable=AsyncMock) as refresh:
            await _refresh_token(engine=engine)

        refresh.assert_awaited_once()
        with Session(engine) as s:
            log = s.exec(select(SyncLog)).one()
        assert log.entity == "TOKEN_REFRESH"
        assert log.direction == "BOTH"
        assert log.status == "SUCCESS"

    async def test_failed_refresh_is_logged_not_raised(self, engine):
        _store_token(engine, timedelta(minutes=2))
        with patch(
            "ledgersync.xero.auth.XeroAuth.refresh_access_token",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            await _refresh_token(engine=engine)

        with Session(engine) as s:
            assert s.exec(select(SyncLog)).one().status == "ERROR"


# ─── Log purge ────────────────────────────────────────────────────────────────

class TestPurgeLogs:
    async def test_removes_old_non_error_entries(self, engine):
        old = datetime.utcnow() - timedelta(days=400)
        _seed_run(engine, "SUCCESS", old, entity="CONTACTS")
        _seed_run(engine, "ERROR", old, entity="CONTACTS")

        await _purge_logs(engine=engine)

        with Session(engine) as s:
            assert [log.status for log in s.exec(select(SyncLog)).all()] == ["ERROR"]
