"""Sync audit log, per-record sync state and conflict models."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel, UniqueConstraint


class SyncDirection(str, Enum):
    PULL = "PULL"
    PUSH = "PUSH"
    BOTH = "BOTH"


class SyncStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogEntity(str, Enum):
    CONTACTS = "CONTACTS"
    INVOICES = "INVOICES"
    PAYMENTS = "PAYMENTS"
    ALL = "ALL"
    FULL_HISTORY = "FULL_HISTORY"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    INVOICE_REQUEST = "INVOICE_REQUEST"
    CONTACT_REQUEST = "CONTACT_REQUEST"
    PAYMENT_REQUEST = "PAYMENT_REQUEST"


class EntityType(str, Enum):
    """Record kinds tracked in SyncState and SyncConflict."""

    CONTACT = "CONTACT"
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"

    @property
    def log_entity(self) -> "LogEntity":
        return LogEntity(f"{self.value}S")

    @property
    def request_entity(self) -> "LogEntity":
        return LogEntity(f"{self.value}_REQUEST")


class SyncStateStatus(str, Enum):
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    CONFLICT = "CONFLICT"


class ConflictStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


def _new_id() -> str:
    return uuid.uuid4().hex


class SyncLog(SQLModel, table=True):
    """Records each sync attempt for audit and the dashboard."""

    id: str = Field(default_factory=_new_id, primary_key=True)
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)
    user_id: Optional[str] = None
    direction: str = Field(default=SyncDirection.PULL.value, index=True)
    entity: str = Field(index=True)
    status: str = Field(default=SyncStatus.IN_PROGRESS.value, index=True)
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    message: Optional[str] = None
    details: Optional[str] = None  # JSON text
    error_message: Optional[str] = None
    duration: Optional[int] = None  # ms
    finished_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncState(SQLModel, table=True):
    """Last-known sync position of one local record against its remote twin."""

    __table_args__ = (UniqueConstraint("entity_type", "entity_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: int = Field(index=True)
    remote_id: Optional[str] = Field(default=None, index=True)
    local_version_hash: Optional[str] = None
    remote_version_hash: Optional[str] = None
    status: str = SyncStateStatus.SYNCED.value
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncConflict(SQLModel, table=True):
    """A record that changed on both sides since the last sync."""

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: int = Field(index=True)
    remote_id: Optional[str] = None
    entity_name: Optional[str] = None
    local_data: str  # JSON text
    remote_data: str  # JSON text
    status: str = Field(default=ConflictStatus.PENDING.value, index=True)
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    log_id: Optional[str] = Field(default=None, foreign_key="synclog.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
