"""Sync dashboard, log listing and retention routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ledgersync.api.deps import get_dashboard, get_sync_logger
from ledgersync.config import get_settings
from ledgersync.xero.dashboard import DashboardAggregator, DashboardFilters
from ledgersync.xero.sync_logger import SyncLogger

router = APIRouter()


@router.get("/dashboard")
def dashboard(
    response: Response,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = None,
    entity: Optional[str] = None,
    direction: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
    view: str = "all",
    summary_only: bool = False,
    aggregator: DashboardAggregator = Depends(get_dashboard),
):
    filters = DashboardFilters(
        page=page,
        limit=limit,
        status=status,
        entity=entity,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
        search=search,
        view=view,
        summary_only=summary_only,
    )
    try:
        payload, cache_hit = aggregator.get_dashboard_summary(filters)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    response.headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    return payload


@router.delete("/dashboard/logs")
def purge_logs(
    days: Optional[int] = Query(None, ge=1),
    sync_logger: SyncLogger = Depends(get_sync_logger),
    aggregator: DashboardAggregator = Depends(get_dashboard),
):
    """Delete non-ERROR log entries older than `days` (default LOG_RETENTION_DAYS)."""
    deleted = sync_logger.purge_old_logs(days or get_settings().log_retention_days)
    aggregator.invalidate()
    return {"success": True, "deleted_count": deleted}


@router.delete("/dashboard/errors")
def acknowledge_errors(
    days: int = Query(0, ge=0),
    sync_logger: SyncLogger = Depends(get_sync_logger),
    aggregator: DashboardAggregator = Depends(get_dashboard),
):
    """Delete ERROR entries older than `days` once an operator has reviewed them."""
    deleted = sync_logger.purge_error_logs(days)
    aggregator.invalidate()
    return {"success": True, "deleted_count": deleted}


@router.get("/logs")
def list_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = None,
    entity: Optional[str] = None,
    direction: Optional[str] = None,
    user_id: Optional[str] = None,
    sync_logger: SyncLogger = Depends(get_sync_logger),
):
    return sync_logger.get_sync_logs(
        user_id=user_id, page=page, limit=limit, status=status, entity=entity, direction=direction
    )


@router.get("/stats")
def stats(days: int = Query(30, ge=1), sync_logger: SyncLogger = Depends(get_sync_logger)):
    return sync_logger.get_sync_stats(days=days)
