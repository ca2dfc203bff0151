"""
Per-record sync state and divergence classification.

Each local record that has been pulled at least once has a SyncState row
holding the version hashes both sides had at the last clean sync. Comparing
the current hashes against that baseline tells us which side moved:

    local == remote                      -> UNCHANGED
    no baseline                          -> BOTH (cannot tell who is right)
    only remote moved                    -> REMOTE_ONLY (safe to apply)
    only local moved                     -> LOCAL_ONLY (awaiting push)
    both moved                           -> BOTH (conflict)
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sqlmodel import Session, func, select

from ledgersync.models.sync import SyncState, SyncStateStatus

logger = logging.getLogger(__name__)


class Divergence(str, Enum):
    UNCHANGED = "UNCHANGED"
    REMOTE_ONLY = "REMOTE_ONLY"
    LOCAL_ONLY = "LOCAL_ONLY"
    BOTH = "BOTH"


def classify(state: Optional[SyncState], local_hash: str, remote_hash: str) -> Divergence:
    """Decide which side changed since the last clean sync."""
    if local_hash == remote_hash:
        return Divergence.UNCHANGED
    if state is None or not state.local_version_hash or not state.remote_version_hash:
        return Divergence.BOTH
    local_changed = local_hash != state.local_version_hash
    remote_changed = remote_hash != state.remote_version_hash
    if remote_changed and not local_changed:
        return Divergence.REMOTE_ONLY
    if remote_changed and local_changed:
        return Divergence.BOTH
    # Remote still at baseline; whatever differs is a local edit not yet pushed
    return Divergence.LOCAL_ONLY


class SyncStateTracker:
    """Reads and upserts SyncState rows keyed by (entity_type, entity_id)."""

    def __init__(self, engine):
        self.engine = engine

    def get(
        self, entity_type: str, entity_id: int, session: Optional[Session] = None
    ) -> Optional[SyncState]:
        query = select(SyncState).where(
            SyncState.entity_type == entity_type, SyncState.entity_id == entity_id
        )
        if session is not None:
            return session.exec(query).first()
        with Session(self.engine) as s:
            return s.exec(query).first()

    def mark(
        self,
        session: Session,
        entity_type: str,
        entity_id: int,
        *,
        status: SyncStateStatus,
        remote_id: Optional[str] = None,
        local_hash: Optional[str] = None,
        remote_hash: Optional[str] = None,
    ) -> SyncState:
        """
        Create or update the state row inside the caller's session.

        Hashes left as None keep their stored value, so marking a record
        PENDING does not move its baseline. The caller commits.
        """
        state = self.get(entity_type, entity_id, session=session)
        if state is None:
            state = SyncState(entity_type=entity_type, entity_id=entity_id)
        if remote_id is not None:
            state.remote_id = remote_id
        if local_hash is not None:
            state.local_version_hash = local_hash
        if remote_hash is not None:
            state.remote_version_hash = remote_hash
        state.status = SyncStateStatus(status).value
        state.updated_at = datetime.utcnow()
        session.add(state)
        return state

    def mark_synced(
        self, session: Session, entity_type: str, entity_id: int, remote_id: str, version: str
    ) -> SyncState:
        """Record a clean sync: both sides now at `version`."""
        return self.mark(
            session,
            entity_type,
            entity_id,
            status=SyncStateStatus.SYNCED,
            remote_id=remote_id,
            local_hash=version,
            remote_hash=version,
        )

    def list_by_status(self, status: SyncStateStatus, entity_type: Optional[str] = None) -> List[SyncState]:
        with Session(self.engine) as s:
            query = select(SyncState).where(SyncState.status == SyncStateStatus(status).value)
            if entity_type:
                query = query.where(SyncState.entity_type == entity_type)
            return list(s.exec(query).all())

    def counts(self) -> Dict[str, int]:
        """Number of tracked records per status."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncState.status, func.count()).group_by(SyncState.status)
            ).all()
        return {status: count for status, count in rows}
