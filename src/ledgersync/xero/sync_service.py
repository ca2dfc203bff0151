"""
XeroPullService: pulls contacts, invoices and payments from Xero into the ERP.

Flow for one pull run:
  1. Refuse to start if a pull for the same entity is already IN_PROGRESS
  2. Create SyncLog (status=IN_PROGRESS)
  3. For page 1..max_pages (200 ms apart):
       fetch page -> validate each record -> handler.process() in its own
       session -> add the page's PullStats into the running total
  4. Finalize SyncLog: SUCCESS (no failures), WARNING (some records made it),
     ERROR (nothing did)

Rate limits: a 429 sleeps for Retry-After seconds and re-requests the same
page; it never counts as a failure. Other page errors are retried
`sync_page_retries` times and then the page is skipped, unless
stop_on_error is set, in which case the run halts.

The whole run sits under a wall-clock ceiling (`sync_run_timeout_seconds`);
on timeout the log is finalized ERROR with whatever was counted so far.

On any other exception: finalize SyncLog (status=ERROR) and re-raise.
"""
import asyncio
import logging
import time
from dataclasses import astuple, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlmodel import Session

from ledgersync.config import Settings, get_settings
from ledgersync.models.sync import EntityType, LogEntity, SyncDirection, SyncStatus
from ledgersync.xero.client import RemotePage, XeroClient
from ledgersync.xero.conflicts import ConflictResolver
from ledgersync.xero.errors import (
    RateLimitError,
    RemoteAPIError,
    SyncInProgressError,
    ValidationError,
)
from ledgersync.xero.handlers import Outcome, PullHandler, get_handler
from ledgersync.xero.state import SyncStateTracker
from ledgersync.xero.sync_logger import SyncLogger, get_error_info

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

PROGRESS_EVERY_PAGES = 5
LOG_ERROR_LIMIT = 50
# Contacts first so invoices can link to them, invoices before payments.
FULL_PULL_ORDER = (EntityType.CONTACT, EntityType.INVOICE, EntityType.PAYMENT)


@dataclass(frozen=True)
class PullStats:
    """Counts for one page (or a whole run, once pages are added together)."""

    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0
    pages: int = 0

    def __add__(self, other: "PullStats") -> "PullStats":
        return PullStats(*(a + b for a, b in zip(astuple(self), astuple(other))))

    def to_dict(self, duration_ms: int = 0) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "pages": self.pages,
            "duration": duration_ms,
        }


@dataclass
class PullResult:
    success: bool
    message: str
    stats: Dict[str, int]
    errors: List[str] = field(default_factory=list)
    log_id: Optional[str] = None
    status: str = SyncStatus.SUCCESS.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "stats": self.stats,
            "errors": self.errors,
            "log_id": self.log_id,
            "status": self.status,
        }


@dataclass
class _Run:
    """Mutable bookkeeping for one run; survives a timeout cancellation."""

    log_id: str
    totals: PullStats = field(default_factory=PullStats)
    errors: List[str] = field(default_factory=list)
    error_count: int = 0
    skipped_pages: List[int] = field(default_factory=list)

    def note(self, message: str, limit: int) -> None:
        self.error_count += 1
        if len(self.errors) < limit:
            self.errors.append(message)


class XeroPullService:
    """Orchestrates Xero -> DB pulls for one entity type at a time."""

    def __init__(
        self,
        client: XeroClient,
        engine,
        resolver: Optional[ConflictResolver] = None,
        sync_logger: Optional[SyncLogger] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            client: XeroClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            resolver: ConflictResolver used to record conflicts.
            sync_logger: SyncLogger for the audit log.
            settings: Settings; defaults to get_settings().
            sleep: Awaitable sleep, injectable so tests can observe waits.
            clock: Monotonic clock in seconds, used for durations.
        """
        self.client = client
        self.engine = engine
        self.state = SyncStateTracker(engine)
        self.resolver = resolver or ConflictResolver(engine, client=client, state=self.state)
        self.sync_logger = sync_logger or SyncLogger(engine)
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock

    async def run_pull(
        self,
        entity_type,
        modified_since: Optional[datetime] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        stop_on_error: bool = False,
        user_id: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ) -> PullResult:
        """
        Pull every page of one entity type from Xero.

        Args:
            entity_type: EntityType or "contacts" / "invoices" / "payments".
            modified_since: Only records changed after this (If-Modified-Since).
            page_size: Records per page; defaults to SYNC_PAGE_SIZE.
            max_pages: Hard page cap; defaults to SYNC_MAX_PAGES.
            stop_on_error: Halt on the first record or page failure.
            user_id: Attributed in the log.
            timeout_seconds: Wall-clock ceiling; defaults to SYNC_RUN_TIMEOUT_SECONDS.

        Returns:
            PullResult with aggregate stats and the first errors.

        Raises:
            SyncInProgressError: another pull of this entity is running.
            XeroAuthError: no usable Xero connection (after logging ERROR).
            RemoteAPIError / ValidationError: with stop_on_error (after logging ERROR).
        """
        handler = get_handler(entity_type)
        log_entity = handler.entity_type.log_entity
        page_size = page_size or self.settings.sync_page_size
        max_pages = max_pages or self.settings.sync_max_pages
        timeout = timeout_seconds or self.settings.sync_run_timeout_seconds

        if self.sync_logger.has_run_in_progress(
            log_entity, SyncDirection.PULL, stale_after=timedelta(seconds=timeout)
        ):
            raise SyncInProgressError(f"A {log_entity.value} pull is already in progress")

        log_id = self.sync_logger.log_sync_operation(
            entity=log_entity,
            direction=SyncDirection.PULL,
            user_id=user_id,
            message=f"Pulling {log_entity.value.lower()} from Xero",
            details={
                "modified_since": modified_since,
                "page_size": page_size,
                "max_pages": max_pages,
                "stop_on_error": stop_on_error,
            },
        )
        run = _Run(log_id=log_id)
        started = self._clock()
        logger.info("Xero %s pull starting (log %s)", log_entity.value, log_id)

        try:
            await asyncio.wait_for(
                self._pull_pages(handler, run, modified_since, page_size, max_pages, stop_on_error),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            duration = self._elapsed_ms(started)
            message = f"{log_entity.value} pull timed out after {timeout}s"
            logger.error("%s (log %s)", message, log_id)
            self._finalize(run, SyncStatus.ERROR, message, duration, error_message=message)
            return self._result(run, SyncStatus.ERROR, message, duration)
        except Exception as exc:
            duration = self._elapsed_ms(started)
            info = get_error_info(exc)
            logger.error("Xero %s pull failed: %s", log_entity.value, exc)
            self._finalize(
                run,
                SyncStatus.ERROR,
                f"{log_entity.value} pull failed: {info.user_friendly_message}",
                duration,
                error_message=str(exc),
                error_code=info.code,
            )
            raise

        duration = self._elapsed_ms(started)
        status = self._final_status(run)
        message = self._summary(log_entity, run.totals)
        self._finalize(run, status, message, duration)
        logger.info("Xero %s pull finished: %s (%s)", log_entity.value, status.value, message)
        return self._result(run, status, message, duration)

    async def run_full_pull(
        self,
        modified_since: Optional[datetime] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        user_id: Optional[str] = None,
        full_history: bool = False,
        timeout_seconds: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Pull contacts, invoices and payments in dependency order.

        One entity failing does not stop the others. A parent log entry
        (ALL, or FULL_HISTORY for backfills) summarises the three runs.
        """
        parent_entity = LogEntity.FULL_HISTORY if full_history else LogEntity.ALL
        parent_id = self.sync_logger.log_sync_operation(
            entity=parent_entity,
            direction=SyncDirection.PULL,
            user_id=user_id,
            message="Full history pull from Xero" if full_history else "Pulling all entities from Xero",
        )
        started = self._clock()
        results: Dict[str, Dict[str, Any]] = {}
        totals = PullStats()
        errors: List[str] = []

        for entity_type in FULL_PULL_ORDER:
            key = entity_type.log_entity.value
            try:
                result = await self.run_pull(
                    entity_type,
                    modified_since=modified_since,
                    page_size=page_size,
                    max_pages=max_pages,
                    user_id=user_id,
                    timeout_seconds=timeout_seconds,
                )
            except Exception as exc:
                logger.error("Full pull: %s failed: %s", key, exc)
                errors.append(f"{key}: {exc}")
                results[key] = {"success": False, "message": str(exc), "errors": [str(exc)]}
                continue
            results[key] = result.to_dict()
            stats = {k: v for k, v in result.stats.items() if k != "duration"}
            totals = totals + PullStats(**stats)
            errors.extend(f"{key}: {e}" for e in result.errors)

        succeeded = [r for r in results.values() if r.get("success")]
        if len(succeeded) == len(results) and totals.failed == 0:
            status = SyncStatus.SUCCESS
        elif succeeded:
            status = SyncStatus.WARNING
        else:
            status = SyncStatus.ERROR
        message = self._summary(parent_entity, totals)
        self.sync_logger.finalize(
            parent_id,
            status=status,
            message=message,
            processed=totals.processed,
            succeeded=totals.succeeded,
            failed=totals.failed,
            duration=self._elapsed_ms(started),
            details={"stats": totals.to_dict(), "errors": errors[:LOG_ERROR_LIMIT]},
        )
        return {
            "success": status != SyncStatus.ERROR,
            "status": status.value,
            "message": message,
            "log_id": parent_id,
            "results": results,
            "errors": errors[: self.settings.sync_error_report_limit],
        }

    # ── Page loop ─────────────────────────────────────────────────────────────

    async def _pull_pages(
        self,
        handler: PullHandler,
        run: _Run,
        modified_since: Optional[datetime],
        page_size: int,
        max_pages: int,
        stop_on_error: bool,
    ) -> None:
        await self.client.connect()
        delay = self.settings.sync_inter_page_delay_ms / 1000.0

        for page in range(1, max_pages + 1):
            if page > 1 and delay > 0:
                await self._sleep(delay)

            fetched = await self._fetch_page(handler, run, modified_since, page, page_size, stop_on_error)
            if fetched is None:
                continue

            self._process_page(handler, run, fetched, stop_on_error)
            if run.totals.pages % PROGRESS_EVERY_PAGES == 0:
                self.sync_logger.update_log_entry(
                    run.log_id,
                    records_processed=run.totals.processed,
                    records_succeeded=run.totals.succeeded,
                    records_failed=run.totals.failed,
                    message=f"Processed {run.totals.pages} pages",
                )
            if fetched.is_last:
                return

        logger.warning("Stopped %s pull at max_pages=%d", handler.entity_type.value, max_pages)

    async def _fetch_page(
        self,
        handler: PullHandler,
        run: _Run,
        modified_since: Optional[datetime],
        page: int,
        page_size: int,
        stop_on_error: bool,
    ) -> Optional[RemotePage]:
        """Fetch one page, waiting out 429s. Returns None if the page is skipped."""
        failures = 0
        while True:
            try:
                return await handler.fetch_page(self.client, modified_since, page, page_size)
            except RateLimitError as exc:
                logger.warning(
                    "Rate limited on %s page %d (%s); waiting %ss",
                    handler.entity_type.value,
                    page,
                    exc.problem,
                    exc.retry_after,
                )
                await self._sleep(exc.retry_after)
            except RemoteAPIError as exc:
                if stop_on_error:
                    logger.error("%s page %d failed: %s", handler.entity_type.value, page, exc)
                    run.note(f"Page {page}: {exc}", self.settings.sync_error_report_limit)
                    raise
                failures += 1
                if failures > self.settings.sync_page_retries:
                    logger.error("Skipping %s page %d: %s", handler.entity_type.value, page, exc)
                    run.note(f"Page {page}: {exc}", self.settings.sync_error_report_limit)
                    run.skipped_pages.append(page)
                    return None
                logger.warning(
                    "Page %d of %s failed (attempt %d): %s",
                    page,
                    handler.entity_type.value,
                    failures,
                    exc,
                )
                backoff = self.settings.sync_inter_page_delay_ms / 1000.0 * failures
                if backoff > 0:
                    await self._sleep(backoff)

    def _process_page(self, handler: PullHandler, run: _Run, fetched: RemotePage, stop_on_error: bool) -> None:
        """Process a page's records in order, adding its PullStats to the run total."""
        counts = {"processed": 0, "succeeded": 0, "skipped": 0, "failed": 0, "conflicts": 0}
        kind = handler.entity_type.value
        limit = self.settings.sync_error_report_limit
        try:
            for raw in fetched.records:
                counts["processed"] += 1
                remote_id = handler.remote_id_of(raw) or "unknown"

                problems = handler.validate(raw)
                if problems:
                    counts["failed"] += 1
                    run.note(f"{kind} {remote_id}: {'; '.join(problems)}", limit)
                    if stop_on_error:
                        raise ValidationError(problems, raw)
                    continue

                try:
                    with Session(self.engine) as s:
                        outcome = handler.process(
                            s, raw, state=self.state, resolver=self.resolver, log_id=run.log_id
                        )
                        s.commit()
                except Exception as exc:
                    counts["failed"] += 1
                    run.note(f"{kind} {remote_id}: {exc}", limit)
                    logger.warning("Failed to store %s %s: %s", kind, remote_id, exc)
                    if stop_on_error:
                        raise
                    continue

                counts[outcome.counter] += 1
                if outcome is Outcome.CONFLICT:
                    counts["conflicts"] += 1
        finally:
            run.totals = run.totals + PullStats(pages=1, **counts)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    @staticmethod
    def _final_status(run: _Run) -> SyncStatus:
        totals = run.totals
        if totals.failed == 0 and not run.skipped_pages:
            return SyncStatus.SUCCESS
        if totals.succeeded + totals.skipped > 0:
            return SyncStatus.WARNING
        return SyncStatus.ERROR

    @staticmethod
    def _summary(entity: LogEntity, totals: PullStats) -> str:
        message = (
            f"Pulled {totals.processed} {entity.value.lower()}: {totals.succeeded} succeeded, "
            f"{totals.skipped} skipped, {totals.failed} failed"
        )
        if totals.conflicts:
            message += f" ({totals.conflicts} conflicts need review)"
        return message

    def _finalize(
        self,
        run: _Run,
        status: SyncStatus,
        message: str,
        duration: int,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {
            "stats": run.totals.to_dict(duration),
            "errors": run.errors[:LOG_ERROR_LIMIT],
            "error_count": run.error_count,
            "skipped_pages": run.skipped_pages,
        }
        if run.totals.conflicts:
            details["error_code"] = "SYNC_CONFLICT"
        if error_code:
            details["error_code"] = error_code
        self.sync_logger.finalize(
            run.log_id,
            status=status,
            message=message,
            processed=run.totals.processed,
            succeeded=run.totals.succeeded,
            failed=run.totals.failed,
            duration=duration,
            details=details,
            error_message=error_message,
        )

    def _result(self, run: _Run, status: SyncStatus, message: str, duration: int) -> PullResult:
        return PullResult(
            success=status != SyncStatus.ERROR,
            message=message,
            stats=run.totals.to_dict(duration),
            errors=run.errors[: self.settings.sync_error_report_limit],
            log_id=run.log_id,
            status=status.value,
        )
