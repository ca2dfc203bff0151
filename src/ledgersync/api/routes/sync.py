"""Pull trigger and conflict routes."""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ledgersync.api.deps import get_pull_service, get_resolver, http_error
from ledgersync.xero.conflicts import ConflictResolver
from ledgersync.xero.dashboard import conflict_to_dict
from ledgersync.xero.errors import XeroSyncError
from ledgersync.xero.handlers import get_handler
from ledgersync.xero.sync_service import XeroPullService

router = APIRouter()

FULL_PULL = "all"


class PullRequest(BaseModel):
    modified_since: Optional[datetime] = None
    page_size: Optional[int] = Field(default=None, ge=1, le=1000)
    max_pages: Optional[int] = Field(default=None, ge=1)
    stop_on_error: bool = False
    user_id: Optional[str] = None


class ResolveRequest(BaseModel):
    resolution: str
    manual_data: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    user_id: Optional[str] = None
    push_remote: bool = True


@router.post("/{entity}/pull")
async def pull(
    entity: str,
    request: Optional[PullRequest] = None,
    service: XeroPullService = Depends(get_pull_service),
):
    """
    Pull one entity type ("contacts", "invoices", "payments") from Xero, or
    all three in dependency order with "all". Runs to completion and
    returns the result.
    """
    request = request or PullRequest()
    try:
        if entity.lower() == FULL_PULL:
            return await service.run_full_pull(
                modified_since=request.modified_since,
                page_size=request.page_size,
                max_pages=request.max_pages,
                user_id=request.user_id,
            )
        try:
            handler = get_handler(entity)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown entity {entity!r}")
        result = await service.run_pull(
            handler.entity_type,
            modified_since=request.modified_since,
            page_size=request.page_size,
            max_pages=request.max_pages,
            stop_on_error=request.stop_on_error,
            user_id=request.user_id,
        )
    except XeroSyncError as exc:
        raise http_error(exc)
    return result.to_dict()


@router.get("/conflicts")
def list_conflicts(entity_type: Optional[str] = None, resolver: ConflictResolver = Depends(get_resolver)):
    """Pending conflicts, newest first."""
    try:
        conflicts = resolver.list_pending(entity_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown entity type {entity_type!r}")
    return {"conflicts": [conflict_to_dict(c) for c in conflicts]}


@router.post("/conflicts/{conflict_id}/resolve")
async def resolve_conflict(
    conflict_id: int,
    request: ResolveRequest,
    resolver: ConflictResolver = Depends(get_resolver),
):
    try:
        conflict = await resolver.resolve_conflict_by_id(
            conflict_id,
            request.resolution,
            manual_data=request.manual_data,
            user_id=request.user_id,
            notes=request.notes,
            push_remote=request.push_remote,
        )
    except XeroSyncError as exc:
        raise http_error(exc)
    return {
        "success": True,
        "message": f"Conflict resolved with {conflict.resolution}",
        "conflict_id": conflict.id,
        "resolution": conflict.resolution,
    }
