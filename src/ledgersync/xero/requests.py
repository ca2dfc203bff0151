"""
Push requests for pull-only entities.

The integration runs Xero in pull-only mode for invoices and payments: we
never create or edit them through the API. When the ERP needs a change on
the Xero side, this service files a request instead:

  1. A PUSH log entry (IN_PROGRESS) carrying the request details.
  2. One HIGH priority task per active SUPERADMIN / FINANCE operator, or a
     single unassigned task when there are none, so the request is never lost.
  3. A TASK_ASSIGNED notification per assigned task, plus a Telegram nudge
     for operators with a chat id.

A finance admin makes the change in Xero; the next pull brings it back.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session, col, select

from ledgersync.config import get_settings
from ledgersync.models.sync import EntityType, LogEntity, SyncDirection, SyncLog, SyncStatus
from ledgersync.models.tasks import (
    Operator,
    OperatorRole,
    Task,
    TaskNotification,
    TaskPriority,
    TaskStatus,
)
from ledgersync.notify.telegram import TelegramNotifier
from ledgersync.xero.errors import ValidationError
from ledgersync.xero.sync_logger import SyncLogger, log_to_dict

logger = logging.getLogger(__name__)

ADMIN_ROLES = (OperatorRole.SUPERADMIN.value, OperatorRole.FINANCE.value)
DEFAULT_DUE_DAYS = 7
OPEN_REQUEST_STATUSES = (SyncStatus.IN_PROGRESS.value, SyncStatus.WARNING.value)
REQUEST_ENTITIES = (
    LogEntity.INVOICE_REQUEST.value,
    LogEntity.CONTACT_REQUEST.value,
    LogEntity.PAYMENT_REQUEST.value,
)
INVOICE_NEXT_STEPS = [
    "Finance team will review this request",
    "Invoice will be created in Xero manually",
    "Run a Xero invoice pull to bring the invoice in once created",
]


@dataclass
class RequestResult:
    success: bool
    message: str
    notified_admins: int
    next_steps: List[str] = field(default_factory=list)
    log_id: Optional[str] = None
    task_ids: List[int] = field(default_factory=list)


class RemoteRequestService:
    """Files human tasks for changes that must be made in Xero by hand."""

    def __init__(
        self,
        engine,
        sync_logger: Optional[SyncLogger] = None,
        notifier: Optional[TelegramNotifier] = None,
    ):
        self.engine = engine
        self.sync_logger = sync_logger or SyncLogger(engine)
        self.notifier = notifier or TelegramNotifier()

    async def request_invoice(
        self,
        *,
        user_id: Optional[str],
        requested_by: Optional[str],
        customer_name: Optional[str],
        total_amount: Any,
        currency: Optional[str] = None,
        customer_id: Optional[str] = None,
        project_name: Optional[str] = None,
        po_number: Optional[str] = None,
        due_date: Optional[datetime] = None,
        description: Optional[str] = None,
        line_items: Optional[List[Dict[str, Any]]] = None,
    ) -> RequestResult:
        """
        Ask finance to create an invoice in Xero.

        Raises:
            ValidationError: if customer_name or total_amount is missing or
                total_amount is not a number.
        """
        errors = []
        if not customer_name:
            errors.append("Customer name is required")
        amount = None
        if total_amount in (None, ""):
            errors.append("Total amount is required")
        else:
            try:
                amount = float(total_amount)
            except (TypeError, ValueError):
                errors.append(f"Total amount must be a number, got {total_amount!r}")
        if errors:
            raise ValidationError(errors)

        currency = currency or get_settings().default_currency
        pretty_amount = f"{currency} {amount:.2f}"
        details = {
            "customer_id": customer_id,
            "customer_name": customer_name,
            "project_name": project_name,
            "po_number": po_number,
            "total_amount": f"{amount:.2f}",
            "currency": currency,
            "due_date": due_date,
            "description": description,
            "line_items": line_items or [],
            "requested_by": requested_by,
            "requested_at": datetime.utcnow(),
        }
        body = (
            f"Invoice creation requested by {requested_by or 'unknown'}\n\n"
            f"Customer: {customer_name}\n"
            f"Amount: {pretty_amount}\n"
            f"Project: {project_name or 'N/A'}\n"
            f"PO: {po_number or 'N/A'}\n\n"
            "Please create this invoice in Xero, then run a Xero invoice pull "
            "to bring it into the ERP."
        )
        log_id, task_ids, notified = await self._file_request(
            entity=LogEntity.INVOICE_REQUEST,
            user_id=user_id,
            log_message=f"Invoice creation requested for {customer_name}",
            details=details,
            title=f"Create Invoice in Xero for {customer_name}",
            description=body,
            notification=f"Invoice creation requested for {customer_name} ({pretty_amount})",
            due_date=due_date,
        )
        return RequestResult(
            success=True,
            message=(
                "Invoice creation request submitted successfully. "
                "Finance team will create the invoice in Xero."
            ),
            notified_admins=notified,
            next_steps=list(INVOICE_NEXT_STEPS),
            log_id=log_id,
            task_ids=task_ids,
        )

    async def request_remote_change(
        self,
        *,
        entity_type: EntityType,
        remote_id: Optional[str],
        entity_name: Optional[str],
        data: Dict[str, Any],
        user_id: Optional[str] = None,
        reason: str = "Local version chosen during conflict resolution",
    ) -> RequestResult:
        """Ask finance to apply a local version of a pull-only record in Xero."""
        entity_type = EntityType(entity_type)
        label = entity_type.value.lower()
        name = entity_name or remote_id or "record"
        fields_text = "\n".join(f"{k}: {v}" for k, v in sorted(data.items()))
        log_id, task_ids, notified = await self._file_request(
            entity=entity_type.request_entity,
            user_id=user_id,
            log_message=f"Xero {label} update requested for {name}",
            details={"remote_id": remote_id, "entity_name": entity_name, "data": data, "reason": reason},
            title=f"Update {label} {name} in Xero",
            description=(
                f"{reason}.\n\nXero ID: {remote_id or 'N/A'}\n\n{fields_text}\n\n"
                f"Please apply these values in Xero, then run a Xero {label} pull."
            ),
            notification=f"Xero {label} update requested for {name}",
            due_date=None,
        )
        return RequestResult(
            success=True,
            message=f"Update request for {label} {name} filed for the finance team.",
            notified_admins=notified,
            next_steps=[
                f"Finance team will update the {label} in Xero",
                f"Run a Xero {label} pull once the change is made",
            ],
            log_id=log_id,
            task_ids=task_ids,
        )

    def list_requests(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Open (IN_PROGRESS or WARNING) requests, newest first."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncLog)
                .where(
                    col(SyncLog.entity).in_(REQUEST_ENTITIES),
                    col(SyncLog.status).in_(OPEN_REQUEST_STATUSES),
                )
                .order_by(col(SyncLog.timestamp).desc())
                .limit(limit)
            ).all()
        requests = []
        for row in rows:
            data = log_to_dict(row)
            details = data.get("details") or {}
            requests.append(
                {
                    "id": row.id,
                    "entity": row.entity,
                    "timestamp": row.timestamp,
                    "status": row.status,
                    "message": row.message,
                    "details": details,
                    "requested_by": details.get("requested_by") or "Unknown",
                }
            )
        return requests

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _file_request(
        self,
        *,
        entity: LogEntity,
        user_id: Optional[str],
        log_message: str,
        details: Dict[str, Any],
        title: str,
        description: str,
        notification: str,
        due_date: Optional[datetime],
    ):
        log_id = self.sync_logger.log_sync_operation(
            entity=entity,
            direction=SyncDirection.PUSH,
            status=SyncStatus.IN_PROGRESS,
            user_id=user_id,
            message=log_message,
            details=details,
            records_processed=1,
        )
        due = due_date or datetime.utcnow() + timedelta(days=DEFAULT_DUE_DAYS)

        with Session(self.engine) as s:
            admins = s.exec(
                select(Operator).where(
                    col(Operator.role).in_(ADMIN_ROLES),
                    Operator.is_active == True,  # noqa: E712
                )
            ).all()
            tasks = []
            for admin in admins or [None]:
                task = Task(
                    title=title,
                    description=description,
                    priority=TaskPriority.HIGH.value,
                    status=TaskStatus.TODO.value,
                    due_date=due,
                    assignee_id=admin.id if admin else None,
                    assigner_id=user_id,
                    entity=entity.value,
                    log_id=log_id,
                )
                s.add(task)
                s.flush()
                if admin is not None:
                    s.add(
                        TaskNotification(
                            operator_id=admin.id,
                            task_id=task.id,
                            type="TASK_ASSIGNED",
                            message=notification,
                        )
                    )
                tasks.append(task)
            s.commit()
            task_ids = [t.id for t in tasks]
            chat_ids = [a.telegram_chat_id for a in admins if a.telegram_chat_id]

        if not admins:
            logger.warning("No finance admins found; filed unassigned task for %s", entity.value)
        if chat_ids:
            await self.notifier.broadcast(chat_ids, notification)
        logger.info("Filed %s request %s (%d task(s))", entity.value, log_id, len(task_ids))
        return log_id, task_ids, len(admins)
