"""Xero connection and invoice-request routes."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ledgersync.api.deps import get_request_service, get_xero_auth, http_error
from ledgersync.db.engine import get_engine
from ledgersync.xero.auth import XeroAuth
from ledgersync.xero.errors import XeroSyncError
from ledgersync.xero.requests import RemoteRequestService
from ledgersync.xero.state import SyncStateTracker

router = APIRouter()


class InvoiceRequestBody(BaseModel):
    customer_name: Optional[str] = None
    total_amount: Optional[Union[float, str]] = None
    currency: Optional[str] = None
    customer_id: Optional[str] = None
    project_name: Optional[str] = None
    po_number: Optional[str] = None
    due_date: Optional[datetime] = None
    description: Optional[str] = None
    line_items: Optional[List[Dict[str, Any]]] = None
    user_id: Optional[str] = None
    requested_by: Optional[str] = None


@router.get("/authorize")
def authorize(user_id: Optional[str] = None, auth: XeroAuth = Depends(get_xero_auth)):
    """Return the Xero consent URL to send the user to."""
    try:
        return {"auth_url": auth.get_authorization_url(user_id)}
    except XeroSyncError as exc:
        raise http_error(exc)


@router.get("/callback")
async def callback(code: str, state: Optional[str] = None, auth: XeroAuth = Depends(get_xero_auth)):
    """OAuth redirect target: exchange the code and store the token set."""
    try:
        token_set = await auth.exchange_code(code)
    except XeroSyncError as exc:
        raise http_error(exc)
    return {
        "success": True,
        "tenant_id": token_set.tenant_id,
        "tenant_name": token_set.tenant_name,
    }


@router.get("/status")
def status(auth: XeroAuth = Depends(get_xero_auth), engine=Depends(get_engine)):
    """Connection health plus how many records sit in each sync state."""
    health = auth.connection_health()
    health["sync_state"] = SyncStateTracker(engine).counts()
    return health


@router.post("/disconnect")
def disconnect(auth: XeroAuth = Depends(get_xero_auth)):
    count = auth.disconnect()
    return {"success": True, "disconnected": count}


@router.post("/request-invoice")
async def request_invoice(
    body: InvoiceRequestBody,
    service: RemoteRequestService = Depends(get_request_service),
):
    """File an invoice-creation request for the finance team."""
    try:
        result = await service.request_invoice(
            user_id=body.user_id,
            requested_by=body.requested_by,
            customer_name=body.customer_name,
            total_amount=body.total_amount,
            currency=body.currency,
            customer_id=body.customer_id,
            project_name=body.project_name,
            po_number=body.po_number,
            due_date=body.due_date,
            description=body.description,
            line_items=body.line_items,
        )
    except XeroSyncError as exc:
        raise http_error(exc)
    return {
        "success": result.success,
        "message": result.message,
        "notified_admins": result.notified_admins,
        "next_steps": result.next_steps,
        "log_id": result.log_id,
    }


@router.get("/request-invoice")
def list_requests(limit: int = 50, service: RemoteRequestService = Depends(get_request_service)):
    return {"requests": service.list_requests(limit=limit)}
