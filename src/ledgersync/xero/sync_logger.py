"""
Append-only audit log of Xero sync operations.

Every pull, push request and token refresh writes one SyncLog row: created
IN_PROGRESS when the run starts, updated in place while it runs, finalized
with its counts and outcome. The dashboard reads nothing else.

Retention: `purge_old_logs()` never deletes ERROR entries; those stay until
an operator acknowledges them through `purge_error_logs()`.
"""
import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from sqlalchemy import delete, update
from sqlmodel import Session, col, func, select

from ledgersync.models.sync import SyncConflict, SyncDirection, SyncLog, SyncStatus
from ledgersync.models.tasks import Task
from ledgersync.xero.errors import (
    RateLimitError,
    RemoteAPIError,
    TokenRefreshError,
    ValidationError,
    XeroAuthError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    user_friendly_message: str
    is_retryable: bool
    suggested_action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ERROR_CODES: Dict[str, ErrorInfo] = {
    "TOKEN_EXPIRED": ErrorInfo(
        "TOKEN_EXPIRED",
        "Xero access token has expired",
        "Your Xero connection has expired. Please reconnect your Xero account.",
        False,
        "Reconnect Xero account from Finance Settings",
    ),
    "TOKEN_INVALID": ErrorInfo(
        "TOKEN_INVALID",
        "Xero access token is invalid",
        "Your Xero connection is no longer valid. Please reconnect your account.",
        False,
        "Reconnect Xero account from Finance Settings",
    ),
    "RATE_LIMIT": ErrorInfo(
        "RATE_LIMIT",
        "Xero API rate limit exceeded",
        "Too many requests to Xero. Please wait a moment before trying again.",
        True,
        "Wait 60 seconds and try again",
    ),
    "NETWORK_ERROR": ErrorInfo(
        "NETWORK_ERROR",
        "Network connection to Xero failed",
        "Unable to connect to Xero. Please check your internet connection.",
        True,
        "Check internet connection and try again",
    ),
    "PERMISSION_DENIED": ErrorInfo(
        "PERMISSION_DENIED",
        "Insufficient permissions for Xero operation",
        "Your Xero account doesn't have the required permissions for this operation.",
        False,
        "Contact your Xero administrator to grant necessary permissions",
    ),
    "SYNC_CONFLICT": ErrorInfo(
        "SYNC_CONFLICT",
        "Data conflict during sync",
        "Some records have been updated in both systems and require manual review.",
        False,
        "Review conflicts in the Sync Log and resolve manually",
    ),
    "VALIDATION_ERROR": ErrorInfo(
        "VALIDATION_ERROR",
        "Data validation failed",
        "Some data doesn't meet Xero's requirements and couldn't be synced.",
        False,
        "Check data format and required fields",
    ),
    "UNKNOWN_ERROR": ErrorInfo(
        "UNKNOWN_ERROR",
        "An unexpected error occurred",
        "Something went wrong with the Xero sync. Please try again.",
        True,
        "Contact support if the problem persists",
    ),
}


def get_error_info(exc: BaseException) -> ErrorInfo:
    """Map an exception onto a user-facing ErrorInfo."""
    if isinstance(exc, TokenRefreshError) and exc.permanent:
        return ERROR_CODES["TOKEN_INVALID"]
    if isinstance(exc, XeroAuthError):
        return ERROR_CODES["TOKEN_EXPIRED"]
    if isinstance(exc, RateLimitError):
        return ERROR_CODES["RATE_LIMIT"]
    if isinstance(exc, ValidationError):
        return ERROR_CODES["VALIDATION_ERROR"]
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError)):
        return ERROR_CODES["NETWORK_ERROR"]
    if isinstance(exc, RemoteAPIError):
        if exc.status_code is None:
            return ERROR_CODES["NETWORK_ERROR"]
        if exc.status_code == 401:
            return ERROR_CODES["TOKEN_INVALID"]
        if exc.status_code == 403:
            return ERROR_CODES["PERMISSION_DENIED"]
        if exc.status_code == 400:
            return ERROR_CODES["VALIDATION_ERROR"]

    text = str(exc).lower()
    if "token" in text and ("expired" in text or "invalid" in text):
        return ERROR_CODES["TOKEN_EXPIRED"]
    if "rate limit" in text or "too many requests" in text:
        return ERROR_CODES["RATE_LIMIT"]
    if "network" in text or "connection" in text or "timeout" in text:
        return ERROR_CODES["NETWORK_ERROR"]
    if "permission" in text or "unauthorized" in text:
        return ERROR_CODES["PERMISSION_DENIED"]
    if "validation" in text or "invalid" in text:
        return ERROR_CODES["VALIDATION_ERROR"]
    return ERROR_CODES["UNKNOWN_ERROR"]


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SyncLogger:
    """Writes and queries SyncLog rows."""

    def __init__(self, engine, now: Callable[[], datetime] = datetime.utcnow):
        self.engine = engine
        self._now = now

    # ── Writes ────────────────────────────────────────────────────────────────

    def log_sync_operation(
        self,
        *,
        entity,
        direction=SyncDirection.PULL,
        status=SyncStatus.IN_PROGRESS,
        user_id: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        records_processed: int = 0,
        records_succeeded: int = 0,
        records_failed: int = 0,
    ) -> str:
        """Create a log entry and return its id."""
        now = self._now()
        log = SyncLog(
            timestamp=now,
            updated_at=now,
            user_id=user_id,
            entity=_enum_value(entity),
            direction=_enum_value(direction),
            status=_enum_value(status),
            message=message,
            details=json.dumps(details, default=str) if details is not None else None,
            records_processed=records_processed,
            records_succeeded=records_succeeded,
            records_failed=records_failed,
        )
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        logger.debug("Opened sync log %s (%s %s)", log.id, log.direction, log.entity)
        return log.id

    def update_log_entry(self, log_id: str, **changes: Any) -> None:
        """
        Apply a partial update to a log entry.

        `details` may be a dict (serialised to JSON); enum values are stored
        by value. Unknown log ids are logged and ignored.
        """
        with Session(self.engine) as s:
            log = s.get(SyncLog, log_id)
            if log is None:
                logger.warning("Sync log %s not found for update", log_id)
                return
            for key, value in changes.items():
                if key == "details" and value is not None and not isinstance(value, str):
                    value = json.dumps(value, default=str)
                setattr(log, key, _enum_value(value))
            log.updated_at = self._now()
            s.add(log)
            s.commit()

    def finalize(
        self,
        log_id: str,
        *,
        status,
        message: str,
        processed: int = 0,
        succeeded: int = 0,
        failed: int = 0,
        duration: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Write the terminal state of a run. None leaves a column untouched."""
        changes: Dict[str, Any] = dict(
            status=status,
            message=message,
            records_processed=processed,
            records_succeeded=succeeded,
            records_failed=failed,
            finished_at=self._now(),
        )
        for key, value in (
            ("duration", duration),
            ("details", details),
            ("error_message", error_message),
        ):
            if value is not None:
                changes[key] = value
        self.update_log_entry(log_id, **changes)

    async def run_logged(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        entity,
        direction=SyncDirection.BOTH,
        operation_name: str,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run `operation` inside its own log entry.

        Returns {"success", "data", "error", "log_id"}; errors are logged and
        reported, not raised.
        """
        started = time.monotonic()
        log_id = self.log_sync_operation(
            entity=entity,
            direction=direction,
            user_id=user_id,
            message=f"Starting {operation_name}",
        )
        try:
            data = await operation()
        except Exception as exc:
            info = get_error_info(exc)
            logger.exception("%s failed", operation_name)
            self.finalize(
                log_id,
                status=SyncStatus.ERROR,
                message=f"{operation_name} failed: {info.user_friendly_message}",
                duration=int((time.monotonic() - started) * 1000),
                details={"error_code": info.code},
                error_message=str(exc),
            )
            return {"success": False, "data": None, "error": info.to_dict(), "log_id": log_id}
        self.finalize(
            log_id,
            status=SyncStatus.SUCCESS,
            message=f"{operation_name} completed successfully",
            processed=1,
            succeeded=1,
            duration=int((time.monotonic() - started) * 1000),
        )
        return {"success": True, "data": data, "error": None, "log_id": log_id}

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, log_id: str) -> Optional[SyncLog]:
        with Session(self.engine) as s:
            return s.get(SyncLog, log_id)

    def has_run_in_progress(
        self,
        entity,
        direction=SyncDirection.PULL,
        stale_after: timedelta = timedelta(minutes=5),
    ) -> bool:
        """True if a non-stale IN_PROGRESS entry exists for entity + direction."""
        cutoff = self._now() - stale_after
        with Session(self.engine) as s:
            row = s.exec(
                select(SyncLog).where(
                    SyncLog.entity == _enum_value(entity),
                    SyncLog.direction == _enum_value(direction),
                    SyncLog.status == SyncStatus.IN_PROGRESS.value,
                    SyncLog.timestamp >= cutoff,
                )
            ).first()
        return row is not None

    def get_sync_logs(
        self,
        *,
        user_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        status=None,
        entity=None,
        direction=None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Newest-first page of log entries with parsed details."""
        filters = []
        if user_id:
            filters.append(SyncLog.user_id == user_id)
        if status:
            filters.append(SyncLog.status == _enum_value(status))
        if entity:
            filters.append(SyncLog.entity == _enum_value(entity))
        if direction:
            filters.append(SyncLog.direction == _enum_value(direction))
        if date_from:
            filters.append(SyncLog.timestamp >= date_from)
        if date_to:
            filters.append(SyncLog.timestamp <= date_to)

        with Session(self.engine) as s:
            total = s.exec(select(func.count()).select_from(SyncLog).where(*filters)).one()
            rows = s.exec(
                select(SyncLog)
                .where(*filters)
                .order_by(col(SyncLog.timestamp).desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        return {
            "logs": [log_to_dict(r) for r in rows],
            "total": total,
            "page": page,
            "limit": limit,
        }

    def get_sync_stats(self, days: int = 30, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counts over the last `days` days."""
        since = self._now() - timedelta(days=days)
        with Session(self.engine) as s:
            query = select(SyncLog).where(SyncLog.timestamp >= since)
            if user_id:
                query = query.where(SyncLog.user_id == user_id)
            logs = s.exec(query).all()

        durations = [log.duration or 0 for log in logs]
        entity_stats: Dict[str, int] = {}
        for log in logs:
            entity_stats[log.entity] = entity_stats.get(log.entity, 0) + 1
        return {
            "total_syncs": len(logs),
            "successful_syncs": sum(1 for log in logs if log.status == SyncStatus.SUCCESS.value),
            "failed_syncs": sum(1 for log in logs if log.status == SyncStatus.ERROR.value),
            "average_duration": round(sum(durations) / len(durations) / 1000) if durations else 0,
            "last_sync": max((log.timestamp for log in logs), default=None),
            "entity_stats": entity_stats,
        }

    # ── Retention ─────────────────────────────────────────────────────────────

    def purge_old_logs(self, days: int = 90) -> int:
        """Delete non-ERROR entries older than `days`. Returns rows deleted."""
        cutoff = self._now() - timedelta(days=days)
        return self._purge(
            SyncLog.timestamp < cutoff,
            SyncLog.status != SyncStatus.ERROR.value,
        )

    def purge_error_logs(self, days: int = 0) -> int:
        """Delete acknowledged ERROR entries older than `days`."""
        cutoff = self._now() - timedelta(days=days)
        return self._purge(
            SyncLog.timestamp < cutoff,
            SyncLog.status == SyncStatus.ERROR.value,
        )

    def _purge(self, *conditions) -> int:
        with Session(self.engine) as s:
            ids: List[str] = list(s.exec(select(SyncLog.id).where(*conditions)).all())
            if not ids:
                return 0
            # Detach conflicts and tasks that point at the doomed entries
            s.execute(update(SyncConflict).where(col(SyncConflict.log_id).in_(ids)).values(log_id=None))
            s.execute(update(Task).where(col(Task.log_id).in_(ids)).values(log_id=None))
            s.execute(delete(SyncLog).where(col(SyncLog.id).in_(ids)))
            s.commit()
        logger.info("Purged %d sync log entries", len(ids))
        return len(ids)


def log_to_dict(log: SyncLog) -> Dict[str, Any]:
    """Serialise a SyncLog with its details parsed back into a dict."""
    data = log.model_dump()
    data["details"] = json.loads(log.details) if log.details else None
    return data
