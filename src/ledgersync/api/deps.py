"""
FastAPI dependency providers.

Everything is built from `get_engine`, so tests override that one provider
(plus `get_xero_client` when they need a fake Xero) and the rest follows.
"""
from typing import AsyncGenerator

from fastapi import Depends, HTTPException

from ledgersync.db.engine import get_engine
from ledgersync.xero.auth import XeroAuth
from ledgersync.xero.client import XeroClient
from ledgersync.xero.conflicts import ConflictResolver
from ledgersync.xero.dashboard import DashboardAggregator
from ledgersync.xero.errors import (
    ConfigurationError,
    ConflictNotFoundError,
    InvalidResolutionError,
    RateLimitError,
    RemoteAPIError,
    SyncInProgressError,
    ValidationError,
    XeroAuthError,
    XeroSyncError,
)
from ledgersync.xero.requests import RemoteRequestService
from ledgersync.xero.sync_logger import SyncLogger
from ledgersync.xero.sync_service import XeroPullService
from ledgersync.xero.token_store import TokenStore

_dashboard = None


async def get_xero_auth(engine=Depends(get_engine)) -> AsyncGenerator[XeroAuth, None]:
    auth = XeroAuth(TokenStore(engine))
    try:
        yield auth
    finally:
        await auth.aclose()


async def get_xero_client(auth: XeroAuth = Depends(get_xero_auth)) -> AsyncGenerator[XeroClient, None]:
    client = XeroClient(auth)
    try:
        yield client
    finally:
        await client.aclose()


def get_sync_logger(engine=Depends(get_engine)) -> SyncLogger:
    return SyncLogger(engine)


def get_request_service(engine=Depends(get_engine)) -> RemoteRequestService:
    return RemoteRequestService(engine)


def get_resolver(
    engine=Depends(get_engine),
    client: XeroClient = Depends(get_xero_client),
    requests: RemoteRequestService = Depends(get_request_service),
) -> ConflictResolver:
    return ConflictResolver(engine, client=client, requests=requests)


def get_pull_service(
    engine=Depends(get_engine),
    client: XeroClient = Depends(get_xero_client),
    resolver: ConflictResolver = Depends(get_resolver),
) -> XeroPullService:
    return XeroPullService(client, engine, resolver=resolver)


def get_dashboard(engine=Depends(get_engine)) -> DashboardAggregator:
    """Process-wide aggregator so its cache survives between requests."""
    global _dashboard
    if _dashboard is None or _dashboard.engine is not engine:
        _dashboard = DashboardAggregator(engine)
    return _dashboard


def http_error(exc: XeroSyncError) -> HTTPException:
    """Map a sync engine error onto the HTTP status the API reports."""
    if isinstance(exc, SyncInProgressError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, XeroAuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, ConflictNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=exc.errors)
    if isinstance(exc, InvalidResolutionError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RateLimitError):
        return HTTPException(
            status_code=429, detail=str(exc), headers={"Retry-After": str(exc.retry_after)}
        )
    if isinstance(exc, RemoteAPIError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
