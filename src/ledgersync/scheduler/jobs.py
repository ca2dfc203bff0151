"""
APScheduler jobs for background sync.

  nightly_pull    cron at XERO_SYNC_HOUR: contacts -> invoices -> payments,
                  incremental from the last successful nightly run
  token_refresh   every TOKEN_REFRESH_INTERVAL_MINUTES: refresh the token set
                  before it crosses the expiry margin, logged as TOKEN_REFRESH
  log_purge       weekly: drop non-ERROR log entries past LOG_RETENTION_DAYS

Job bodies catch everything so one failure never stops the scheduler.
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session, col, select

from ledgersync.config import get_settings
from ledgersync.models.sync import LogEntity, SyncDirection, SyncLog, SyncStatus

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to every job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_pull,
        trigger="cron",
        hour=settings.xero_sync_hour,
        minute=0,
        id="nightly_pull",
        replace_existing=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _refresh_token,
        trigger="interval",
        minutes=settings.token_refresh_interval_minutes,
        id="token_refresh",
        replace_existing=True,
        kwargs={"engine": engine},
    )
    scheduler.add_job(
        _purge_logs,
        trigger="cron",
        day_of_week="sun",
        hour=(settings.xero_sync_hour + 1) % 24,
        minute=30,
        id="log_purge",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


def _last_nightly_pull(engine) -> Optional[datetime]:
    """Start time of the last clean ALL pull, used as the watermark."""
    with Session(engine) as s:
        log = s.exec(
            select(SyncLog)
            .where(
                SyncLog.entity == LogEntity.ALL.value,
                SyncLog.direction == SyncDirection.PULL.value,
                SyncLog.status == SyncStatus.SUCCESS.value,
            )
            .order_by(col(SyncLog.timestamp).desc())
        ).first()
    return log.timestamp if log else None


async def _nightly_pull(engine) -> None:
    """Nightly job: incremental pull of every entity type."""
    from ledgersync.xero.auth import XeroAuth
    from ledgersync.xero.client import XeroClient
    from ledgersync.xero.sync_service import XeroPullService
    from ledgersync.xero.token_store import TokenStore

    settings = get_settings()
    logger.info("Nightly Xero pull starting at %s", datetime.utcnow().isoformat())

    try:
        since = _last_nightly_pull(engine)
        async with XeroClient(XeroAuth(TokenStore(engine))) as client:
            service = XeroPullService(client=client, engine=engine)
            outcome = await service.run_full_pull(modified_since=since, user_id=settings.user_id)
        logger.info("Nightly Xero pull finished: %s", outcome["message"])
    except Exception as exc:
        logger.error("Nightly Xero pull failed: %s", exc)


async def _refresh_token(engine) -> None:
    """Keep the stored token set ahead of its expiry margin."""
    from ledgersync.xero.auth import XeroAuth
    from ledgersync.xero.sync_logger import SyncLogger
    from ledgersync.xero.token_store import TokenStore

    store = TokenStore(engine)
    token_set = store.get_active()
    if token_set is None:
        return

    auth = XeroAuth(store)
    try:
        if not auth.needs_refresh(token_set):
            return
        outcome = await SyncLogger(engine).run_logged(
            lambda: auth.refresh_access_token(token_set),
            entity=LogEntity.TOKEN_REFRESH,
            direction=SyncDirection.BOTH,
            operation_name="Token refresh",
            user_id=get_settings().user_id,
        )
        if not outcome["success"]:
            logger.warning("Scheduled token refresh failed: %s", outcome["error"]["message"])
    except Exception as exc:
        logger.error("Token refresh job failed: %s", exc)
    finally:
        await auth.aclose()


async def _purge_logs(engine) -> None:
    """Weekly retention purge. ERROR entries are kept."""
    from ledgersync.xero.sync_logger import SyncLogger

    try:
        deleted = SyncLogger(engine).purge_old_logs(get_settings().log_retention_days)
        logger.info("Log purge removed %d entries", deleted)
    except Exception as exc:
        logger.error("Log purge failed: %s", exc)
