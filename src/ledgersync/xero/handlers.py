"""
Per-entity pull handlers.

A PullHandler knows how to fetch, validate, normalize and persist one kind of
Xero record. XeroPullService drives the page loop and counting; the handler
decides what a single record means for the local ledger:

    absent locally              -> create                    (CREATED)
    same version on both sides  -> nothing to do             (UNCHANGED)
    pending conflict exists     -> leave it for a human      (CONFLICT_EXISTS)
    only Xero changed           -> apply Xero's version      (UPDATED)
    only the ERP changed        -> mark PENDING for push     (PENDING_LOCAL)
    both changed / no baseline  -> record a SyncConflict     (CONFLICT)

Handlers never commit; the caller owns the per-record session.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from sqlmodel import Session, SQLModel, select

from ledgersync.models.ledger import Contact, Invoice, Payment
from ledgersync.models.sync import EntityType, SyncStateStatus
from ledgersync.xero import normalizer
from ledgersync.xero.client import RemotePage, XeroClient
from ledgersync.xero.state import Divergence, SyncStateTracker, classify

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"
    SKIPPED = "SKIPPED"
    PENDING_LOCAL = "PENDING_LOCAL"
    CONFLICT = "CONFLICT"
    CONFLICT_EXISTS = "CONFLICT_EXISTS"

    @property
    def counter(self) -> str:
        """Which PullStats counter this outcome increments."""
        if self in (Outcome.CREATED, Outcome.UPDATED):
            return "succeeded"
        if self is Outcome.CONFLICT:
            return "failed"
        return "skipped"


class PullHandler:
    """Base class; subclasses set the class attributes and override hooks."""

    entity_type: EntityType
    model: Type[SQLModel]
    remote_key: str  # id key in the Xero record, e.g. "ContactID"
    remote_id_field: str  # local column holding it, e.g. "xero_contact_id"
    fields: Tuple[str, ...]
    writable = False  # can we write this entity back to Xero?

    _validator: Callable[[Dict[str, Any]], List[str]]
    _normalizer: Callable[[Dict[str, Any]], Dict[str, Any]]

    def validate(self, raw: Dict[str, Any]) -> List[str]:
        return self._validator(raw)

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        return self._normalizer(raw)

    async def fetch_page(
        self,
        client: XeroClient,
        modified_since: Optional[datetime],
        page: int,
        page_size: int,
    ) -> RemotePage:
        raise NotImplementedError

    async def push(self, client: XeroClient, remote_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError(f"{self.entity_type.value} is pull-only")

    def remote_id_of(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get(self.remote_key)

    def describe(self, data: Dict[str, Any]) -> str:
        """Human label for conflicts and tasks."""
        return str(data.get(self.remote_id_field) or "")

    def skip_new(self, data: Dict[str, Any]) -> bool:
        """True if a record absent locally should not be created."""
        return False

    def find_local(self, s: Session, remote_id: str) -> Optional[SQLModel]:
        column = getattr(self.model, self.remote_id_field)
        return s.exec(select(self.model).where(column == remote_id)).first()

    def resolve_refs(self, s: Session, data: Dict[str, Any]) -> Dict[str, Any]:
        """Local foreign keys derived from remote ids. Default: none."""
        return {}

    def create_local(self, s: Session, data: Dict[str, Any]) -> SQLModel:
        row = self.model(**data, **self.resolve_refs(s, data), last_synced_at=datetime.utcnow())
        s.add(row)
        s.flush()
        return row

    def apply(self, s: Session, row: SQLModel, data: Dict[str, Any]) -> None:
        """Overwrite the syncable fields of `row` from `data`."""
        for name in self.fields:
            if name in data:
                setattr(row, name, data[name])
        for name, value in self.resolve_refs(s, data).items():
            setattr(row, name, value)
        row.last_synced_at = datetime.utcnow()
        s.add(row)

    # ── Record processing ─────────────────────────────────────────────────────

    def process(
        self,
        s: Session,
        raw: Dict[str, Any],
        *,
        state: SyncStateTracker,
        resolver,
        log_id: Optional[str] = None,
    ) -> Outcome:
        """
        Reconcile one validated remote record with the local ledger.

        Args:
            s: Open session; the caller commits or rolls back.
            raw: Xero record that already passed validate().
            state: SyncStateTracker for baseline hashes.
            resolver: ConflictResolver used to record conflicts.
            log_id: SyncLog id the conflict is attributed to.
        """
        data = self.normalize(raw)
        remote_id = data[self.remote_id_field]
        remote = normalizer.syncable(data, self.fields)
        remote_hash = normalizer.version_hash(remote)
        kind = self.entity_type.value

        row = self.find_local(s, remote_id)
        if row is None:
            if self.skip_new(data):
                return Outcome.SKIPPED
            row = self.create_local(s, data)
            state.mark_synced(s, kind, row.id, remote_id, remote_hash)
            return Outcome.CREATED

        if resolver.get_pending(kind, row.id, session=s) is not None:
            return Outcome.CONFLICT_EXISTS

        local = normalizer.snapshot(row, self.fields)
        local_hash = normalizer.version_hash(local)
        divergence = classify(state.get(kind, row.id, session=s), local_hash, remote_hash)

        if divergence is Divergence.UNCHANGED:
            state.mark_synced(s, kind, row.id, remote_id, remote_hash)
            return Outcome.UNCHANGED
        if divergence is Divergence.REMOTE_ONLY:
            self.apply(s, row, data)
            state.mark_synced(s, kind, row.id, remote_id, remote_hash)
            return Outcome.UPDATED
        if divergence is Divergence.LOCAL_ONLY:
            state.mark(s, kind, row.id, status=SyncStateStatus.PENDING, remote_id=remote_id)
            return Outcome.PENDING_LOCAL

        resolver.record_conflict(
            s,
            entity_type=kind,
            entity_id=row.id,
            remote_id=remote_id,
            entity_name=self.describe(data),
            local_data=local,
            remote_data=remote,
            log_id=log_id,
        )
        logger.info("Conflict on %s %s (%s)", kind, row.id, remote_id)
        return Outcome.CONFLICT


# ── Entity handlers ───────────────────────────────────────────────────────────

class ContactHandler(PullHandler):
    entity_type = EntityType.CONTACT
    model = Contact
    remote_key = "ContactID"
    remote_id_field = "xero_contact_id"
    fields = normalizer.CONTACT_FIELDS
    writable = True
    _validator = staticmethod(normalizer.validate_contact)
    _normalizer = staticmethod(normalizer.normalize_contact)

    async def fetch_page(self, client, modified_since, page, page_size):
        return await client.list_contacts(None, modified_since, page, page_size)

    async def push(self, client, remote_id, data):
        await client.update_contact(None, remote_id, normalizer.contact_to_xero(data))

    def describe(self, data):
        return data.get("name") or super().describe(data)


class InvoiceHandler(PullHandler):
    entity_type = EntityType.INVOICE
    model = Invoice
    remote_key = "InvoiceID"
    remote_id_field = "xero_invoice_id"
    fields = normalizer.INVOICE_FIELDS
    _validator = staticmethod(normalizer.validate_invoice)
    _normalizer = staticmethod(normalizer.normalize_invoice)

    async def fetch_page(self, client, modified_since, page, page_size):
        return await client.list_invoices(None, modified_since, page, page_size)

    def describe(self, data):
        return data.get("invoice_number") or super().describe(data)

    def skip_new(self, data):
        # Voided drafts are deleted in Xero; no point importing them
        return data.get("status") == "DELETED"

    def resolve_refs(self, s, data):
        contact = s.exec(
            select(Contact).where(Contact.xero_contact_id == data.get("xero_contact_id"))
        ).first()
        return {"contact_id": contact.id if contact else None}


class PaymentHandler(PullHandler):
    entity_type = EntityType.PAYMENT
    model = Payment
    remote_key = "PaymentID"
    remote_id_field = "xero_payment_id"
    fields = normalizer.PAYMENT_FIELDS
    _validator = staticmethod(normalizer.validate_payment)
    _normalizer = staticmethod(normalizer.normalize_payment)

    async def fetch_page(self, client, modified_since, page, page_size):
        return await client.list_payments(None, modified_since, page, page_size)

    def describe(self, data):
        return data.get("reference") or super().describe(data)

    def resolve_refs(self, s, data):
        if data.get("target_type") != "INVOICE":
            return {"invoice_id": None}
        invoice = s.exec(
            select(Invoice).where(Invoice.xero_invoice_id == data.get("target_remote_id"))
        ).first()
        return {"invoice_id": invoice.id if invoice else None}


HANDLERS: Dict[EntityType, PullHandler] = {
    EntityType.CONTACT: ContactHandler(),
    EntityType.INVOICE: InvoiceHandler(),
    EntityType.PAYMENT: PaymentHandler(),
}


def get_handler(entity_type) -> PullHandler:
    """Look up a handler by EntityType or its string value (case-insensitive)."""
    if isinstance(entity_type, str) and not isinstance(entity_type, EntityType):
        key = entity_type.upper().rstrip("S")
        entity_type = EntityType(key)
    return HANDLERS[entity_type]
