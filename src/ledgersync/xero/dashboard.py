"""
Sync dashboard aggregation.

Builds the payload behind GET /sync/dashboard from the SyncLog and
SyncConflict tables:

    {
        "summary":         {total, success, error, warning, inProgress,
                            pendingConflicts, skipped, lastSync, successRate},
        "entityBreakdown": {"CONTACTS": {"success": 3, "error": 1, ..., "total": 4}, ...},
        "logs":            [...],   # newest first, one page
        "conflicts":       [...],   # only for view="conflicts"
        "pagination":      {page, limit, total, totalPages},
    }

Responses are cached per full filter set: 60 s for summary-only requests,
30 s for detailed ones. Writers that change the log store call
`invalidate()`.
"""
import json
import logging
import math
from dataclasses import astuple, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlmodel import Session, col, func, select

from ledgersync.cache import TTLCache
from ledgersync.models.sync import ConflictStatus, SyncConflict, SyncLog, SyncStatus
from ledgersync.xero.sync_logger import log_to_dict

logger = logging.getLogger(__name__)

SUMMARY_CACHE_TTL = 60  # seconds
DETAILS_CACHE_TTL = 30
CONFLICTS_VIEW_LIMIT = 50
VIEWS = ("all", "conflicts", "errors")


@dataclass(frozen=True)
class DashboardFilters:
    page: int = 1
    limit: int = 50
    status: Optional[str] = None
    entity: Optional[str] = None
    direction: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None
    view: str = "all"
    summary_only: bool = False

    def cache_key(self) -> Tuple:
        return astuple(self)


def conflict_to_dict(conflict: SyncConflict) -> Dict[str, Any]:
    data = conflict.model_dump()
    for key in ("local_data", "remote_data"):
        data[key] = json.loads(data[key]) if data[key] else None
    return data


class DashboardAggregator:
    """Computes (and caches) the sync dashboard payload."""

    def __init__(self, engine, cache: Optional[TTLCache] = None):
        self.engine = engine
        self.cache = cache if cache is not None else TTLCache()

    def invalidate(self) -> None:
        self.cache.clear()

    def get_dashboard_summary(self, filters: DashboardFilters) -> Tuple[Dict[str, Any], bool]:
        """
        Return (payload, cache_hit).

        Raises:
            ValueError: for an unknown view.
        """
        if filters.view not in VIEWS:
            raise ValueError(f"Unknown dashboard view {filters.view!r}; expected one of {VIEWS}")

        self.cache.evict_expired()
        key = filters.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            return cached, True

        payload = self._compute(filters)
        ttl = SUMMARY_CACHE_TTL if filters.summary_only else DETAILS_CACHE_TTL
        self.cache.set(key, payload, ttl)
        return payload, False

    # ── Queries ───────────────────────────────────────────────────────────────

    def _log_filters(self, f: DashboardFilters) -> List[Any]:
        conditions: List[Any] = []
        if f.status:
            conditions.append(SyncLog.status == f.status)
        if f.entity:
            conditions.append(SyncLog.entity == f.entity)
        if f.direction:
            conditions.append(SyncLog.direction == f.direction)
        if f.date_from:
            conditions.append(SyncLog.timestamp >= f.date_from)
        if f.date_to:
            conditions.append(SyncLog.timestamp <= f.date_to)
        if f.view in ("errors", "conflicts"):
            conditions.append(SyncLog.status == SyncStatus.ERROR.value)
        if f.view == "conflicts":
            with_conflicts = select(SyncConflict.log_id).where(col(SyncConflict.log_id).is_not(None))
            conditions.append(col(SyncLog.id).in_(with_conflicts))
        if f.search:
            pattern = f"%{f.search}%"
            conditions.append(
                or_(col(SyncLog.message).ilike(pattern), col(SyncLog.entity).ilike(pattern))
            )
        return conditions

    def _compute(self, f: DashboardFilters) -> Dict[str, Any]:
        with Session(self.engine) as s:
            where = self._log_filters(f)
            total = s.exec(select(func.count()).select_from(SyncLog).where(*where)).one()
            status_rows = s.exec(
                select(SyncLog.status, func.count()).where(*where).group_by(SyncLog.status)
            ).all()
            entity_rows = s.exec(
                select(SyncLog.entity, SyncLog.status, func.count())
                .where(*where)
                .group_by(SyncLog.entity, SyncLog.status)
            ).all()
            pending_conflicts = s.exec(
                select(func.count())
                .select_from(SyncConflict)
                .where(SyncConflict.status == ConflictStatus.PENDING.value)
            ).one()
            last = s.exec(
                select(SyncLog).where(*where).order_by(col(SyncLog.timestamp).desc()).limit(1)
            ).first()

            logs: List[Dict[str, Any]] = []
            conflicts: List[Dict[str, Any]] = []
            if not f.summary_only:
                rows = s.exec(
                    select(SyncLog)
                    .where(*where)
                    .order_by(col(SyncLog.timestamp).desc())
                    .offset((f.page - 1) * f.limit)
                    .limit(f.limit)
                ).all()
                logs = [log_to_dict(r) for r in rows]
                if f.view == "conflicts":
                    conflicts = [conflict_to_dict(c) for c in self._pending_conflicts(s, f.search)]

        counts = {status: n for status, n in status_rows}
        success = counts.get(SyncStatus.SUCCESS.value, 0)
        summary = {
            "total": total,
            "success": success,
            "error": counts.get(SyncStatus.ERROR.value, 0),
            "warning": counts.get(SyncStatus.WARNING.value, 0),
            "inProgress": counts.get(SyncStatus.IN_PROGRESS.value, 0),
            "pendingConflicts": pending_conflicts,
            "skipped": 0,
            "lastSync": {"timestamp": last.timestamp, "status": last.status} if last else None,
            "successRate": f"{success / total * 100:.1f}" if total else "0",
        }

        breakdown: Dict[str, Dict[str, int]] = {}
        for entity, status, n in entity_rows:
            bucket = breakdown.setdefault(entity, {"success": 0, "error": 0, "warning": 0, "total": 0})
            bucket[status.lower()] = n
            bucket["total"] += n

        payload: Dict[str, Any] = {
            "summary": summary,
            "entityBreakdown": breakdown,
            "logs": logs,
            "conflicts": conflicts,
            "pagination": {
                "page": 1 if f.summary_only else f.page,
                "limit": 0 if f.summary_only else f.limit,
                "total": total,
                "totalPages": 0 if f.summary_only else math.ceil(total / f.limit) if f.limit else 0,
            },
        }
        if f.summary_only:
            payload["summaryOnly"] = True
        return payload

    def _pending_conflicts(self, s: Session, search: Optional[str]) -> List[SyncConflict]:
        query = select(SyncConflict).where(SyncConflict.status == ConflictStatus.PENDING.value)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    col(SyncConflict.entity_name).ilike(pattern),
                    col(SyncConflict.entity_type).ilike(pattern),
                )
            )
        return list(
            s.exec(query.order_by(col(SyncConflict.created_at).desc()).limit(CONFLICTS_VIEW_LIMIT)).all()
        )
