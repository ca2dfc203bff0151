"""
Conflict recording and resolution.

A conflict is recorded when a pulled record and its local counterpart both
changed since the last clean sync. It stays PENDING until a person picks
one of three resolutions:

  use_local   keep the ERP version; write it to Xero (contacts) or file a
              request for finance to apply it (invoices, payments)
  use_remote  overwrite the ERP record with Xero's snapshot
  manual      apply hand-merged field values locally, optionally pushing
              them the same way as use_local

Resolving a conflict that is not PENDING raises ConflictNotFoundError; a
resolved conflict is never silently overwritten.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session, col, select

from ledgersync.models.sync import ConflictStatus, EntityType, SyncConflict, SyncStateStatus
from ledgersync.xero import normalizer
from ledgersync.xero.errors import (
    ConflictNotFoundError,
    InvalidResolutionError,
    NotConnectedError,
)
from ledgersync.xero.handlers import get_handler
from ledgersync.xero.state import SyncStateTracker

logger = logging.getLogger(__name__)

USE_LOCAL = "use_local"
USE_REMOTE = "use_remote"
MANUAL = "manual"
RESOLUTIONS = (USE_LOCAL, USE_REMOTE, MANUAL)


class ConflictResolver:
    """Records SyncConflicts during pulls and resolves them on request."""

    def __init__(self, engine, client=None, requests=None, state: Optional[SyncStateTracker] = None):
        """
        Args:
            engine: SQLAlchemy engine.
            client: XeroClient used to write writable entities back to Xero.
            requests: RemoteRequestService used for pull-only entities.
            state: SyncStateTracker; defaults to one on `engine`.
        """
        self.engine = engine
        self.client = client
        self.requests = requests
        self.state = state or SyncStateTracker(engine)

    # ── Recording ─────────────────────────────────────────────────────────────

    def get_pending(
        self, entity_type: str, entity_id: int, session: Optional[Session] = None
    ) -> Optional[SyncConflict]:
        query = select(SyncConflict).where(
            SyncConflict.entity_type == EntityType(entity_type).value,
            SyncConflict.entity_id == entity_id,
            SyncConflict.status == ConflictStatus.PENDING.value,
        )
        if session is not None:
            return session.exec(query).first()
        with Session(self.engine) as s:
            return s.exec(query).first()

    def record_conflict(
        self,
        s: Session,
        *,
        entity_type: str,
        entity_id: int,
        remote_id: Optional[str],
        entity_name: Optional[str],
        local_data: Dict[str, Any],
        remote_data: Dict[str, Any],
        log_id: Optional[str] = None,
    ) -> SyncConflict:
        """
        Record a conflict inside the caller's session, at most one PENDING per record.

        Returns the existing PENDING conflict when there already is one.
        """
        existing = self.get_pending(entity_type, entity_id, session=s)
        if existing is not None:
            return existing
        conflict = SyncConflict(
            entity_type=EntityType(entity_type).value,
            entity_id=entity_id,
            remote_id=remote_id,
            entity_name=entity_name,
            local_data=normalizer.to_json(local_data),
            remote_data=normalizer.to_json(remote_data),
            log_id=log_id,
        )
        s.add(conflict)
        self.state.mark(
            s, entity_type, entity_id, status=SyncStateStatus.CONFLICT, remote_id=remote_id
        )
        return conflict

    def list_pending(self, entity_type: Optional[str] = None) -> List[SyncConflict]:
        with Session(self.engine) as s:
            query = select(SyncConflict).where(SyncConflict.status == ConflictStatus.PENDING.value)
            if entity_type:
                query = query.where(SyncConflict.entity_type == EntityType(entity_type).value)
            return list(s.exec(query.order_by(col(SyncConflict.created_at).desc())).all())

    # ── Resolution ────────────────────────────────────────────────────────────

    async def resolve_conflict_by_id(self, conflict_id: int, resolution: str, **kwargs) -> SyncConflict:
        """Resolve by SyncConflict.id (the API surface)."""
        _check_resolution(resolution, kwargs.get("manual_data"))
        with Session(self.engine) as s:
            conflict = s.get(SyncConflict, conflict_id)
            if conflict is None or conflict.status != ConflictStatus.PENDING.value:
                raise ConflictNotFoundError(f"No pending conflict with id {conflict_id}")
            entity_type, entity_id = conflict.entity_type, conflict.entity_id
        return await self.resolve_conflict(entity_type, entity_id, resolution, **kwargs)

    async def resolve_conflict(
        self,
        entity_type: str,
        entity_id: int,
        resolution: str,
        manual_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
        push_remote: bool = True,
    ) -> SyncConflict:
        """
        Apply a resolution to the PENDING conflict for one record.

        Raises:
            InvalidResolutionError: unknown resolution, or manual without data.
            ConflictNotFoundError: no PENDING conflict (or local record) exists.
            RemoteAPIError: the write to Xero failed; the conflict stays PENDING.
        """
        _check_resolution(resolution, manual_data)
        handler = get_handler(entity_type)
        kind = handler.entity_type.value

        # Work out the winning version first; remote writes happen outside
        # any open session.
        with Session(self.engine) as s:
            conflict = self.get_pending(kind, entity_id, session=s)
            if conflict is None:
                raise ConflictNotFoundError(f"No pending conflict for {kind} {entity_id}")
            row = s.get(handler.model, entity_id)
            if row is None:
                raise ConflictNotFoundError(f"{kind} {entity_id} no longer exists locally")
            conflict_id = conflict.id
            remote_id = conflict.remote_id
            entity_name = conflict.entity_name
            if resolution == USE_REMOTE:
                final = normalizer.from_json(conflict.remote_data, handler.fields)
            elif resolution == USE_LOCAL:
                final = normalizer.snapshot(row, handler.fields)
            else:
                merged = normalizer.snapshot(row, handler.fields)
                merged.update(
                    normalizer.coerce_dates(
                        {k: v for k, v in manual_data.items() if k in handler.fields}
                    )
                )
                final = normalizer.syncable(merged, handler.fields)

        pushed = False
        if resolution == USE_LOCAL or (resolution == MANUAL and push_remote):
            await self._push(handler, remote_id, entity_name, final, user_id)
            pushed = handler.writable

        with Session(self.engine) as s:
            conflict = s.get(SyncConflict, conflict_id)
            if conflict is None or conflict.status != ConflictStatus.PENDING.value:
                raise ConflictNotFoundError(f"Conflict {conflict_id} was resolved concurrently")
            if resolution != USE_LOCAL:
                handler.apply(s, s.get(handler.model, entity_id), final)

            version = normalizer.version_hash(final)
            if pushed or resolution == USE_REMOTE:
                self.state.mark_synced(s, kind, entity_id, remote_id, version)
            else:
                # Xero still holds its snapshot until someone applies the change,
                # so the next pull sees a local-only edit rather than a remote one.
                self.state.mark(
                    s,
                    kind,
                    entity_id,
                    status=SyncStateStatus.SYNCED,
                    remote_id=remote_id,
                    local_hash=version,
                    remote_hash=normalizer.version_hash(
                        normalizer.from_json(conflict.remote_data, handler.fields)
                    ),
                )

            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolution = resolution
            conflict.resolution_notes = notes
            conflict.resolved_by = user_id
            conflict.resolved_at = datetime.utcnow()
            if resolution == MANUAL:
                conflict.local_data = normalizer.to_json(final)
            s.add(conflict)
            s.commit()
            s.refresh(conflict)

        logger.info("Resolved %s %s conflict with %s", kind, entity_id, resolution)
        return conflict

    async def _push(self, handler, remote_id, entity_name, data: Dict[str, Any], user_id) -> None:
        if handler.writable:
            if self.client is None:
                raise NotConnectedError()
            await handler.push(self.client, remote_id, data)
            return
        if self.requests is None:
            raise InvalidResolutionError(
                f"{handler.entity_type.value} is pull-only and no request service is configured"
            )
        await self.requests.request_remote_change(
            entity_type=handler.entity_type,
            remote_id=remote_id,
            entity_name=entity_name,
            data=json.loads(normalizer.to_json(data)),
            user_id=user_id,
        )


def _check_resolution(resolution: str, manual_data: Optional[Dict[str, Any]]) -> None:
    if resolution not in RESOLUTIONS:
        raise InvalidResolutionError(
            f"Unknown resolution {resolution!r}; expected one of {', '.join(RESOLUTIONS)}"
        )
    if resolution == MANUAL and not manual_data:
        raise InvalidResolutionError("Manual resolution requires manual_data")
