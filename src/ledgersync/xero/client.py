"""
Async client for the Xero Accounting API.

Wraps httpx.AsyncClient. Every request asks XeroAuth for a valid token, so a
token that crosses the refresh margin mid-run is refreshed before the next
call instead of being sent stale.

Xero list endpoints are 1-based and return a `pagination` block when a
`pageSize` is sent:

    {"Contacts": [...], "pagination": {"page": 1, "pageSize": 100,
                                        "pageCount": 3, "itemCount": 250}}

Rate limiting: Xero answers 429 with a `Retry-After` header (seconds) and an
`X-Rate-Limit-Problem` header naming the limit that tripped (minute, day,
concurrent). Callers decide how long to wait; this client only reports it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ledgersync.config import Settings, get_settings
from ledgersync.models.token import OAuthTokenSet
from ledgersync.xero.auth import XeroAuth
from ledgersync.xero.errors import RateLimitError, RemoteAPIError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60


@dataclass(frozen=True)
class RemotePage:
    """One page of records returned by a Xero list endpoint."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    page: int = 1
    page_size: int = 100
    page_count: Optional[int] = None
    item_count: Optional[int] = None

    @property
    def is_last(self) -> bool:
        if len(self.records) < self.page_size:
            return True
        return self.page_count is not None and self.page >= self.page_count


class XeroClient:
    """
    Thin async wrapper over the Xero Accounting API.

    Call connect() once before data methods to fail fast when Xero is not
    connected. Usable as an async context manager.
    """

    def __init__(
        self,
        auth: XeroAuth,
        http: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self._auth = auth
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self.settings = settings or get_settings()
        self.tenant_id: Optional[str] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def connect(self) -> OAuthTokenSet:
        """
        Obtain a valid token set and remember its tenant.

        Raises:
            NotConnectedError: if Xero has never been connected.
            TokenRefreshError: if the stored token cannot be refreshed.
        """
        token_set = await self._auth.get_valid_token()
        self.tenant_id = token_set.tenant_id
        return token_set

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        tenant_id: Optional[str] = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        modified_since: Optional[datetime] = None,
        allow_404: bool = False,
    ) -> Optional[Dict[str, Any]]:
        token_set = await self._auth.get_valid_token()
        tenant = tenant_id or self.tenant_id or token_set.tenant_id
        headers = {
            "Authorization": f"Bearer {token_set.access_token}",
            "Xero-tenant-id": tenant,
            "Accept": "application/json",
        }
        if modified_since is not None:
            headers["If-Modified-Since"] = modified_since.strftime("%Y-%m-%dT%H:%M:%S")

        url = f"{self.settings.xero_api_base_url}/{path}"
        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("Xero %s %s transport error: %s", method, path, exc)
            raise RemoteAPIError(f"Network error talking to Xero: {exc}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                int(retry_after) if retry_after and retry_after.isdigit() else DEFAULT_RETRY_AFTER,
                response.headers.get("X-Rate-Limit-Problem"),
            )
        if response.status_code == 404 and allow_404:
            return None
        if response.status_code >= 400:
            logger.error("Xero %s %s failed: HTTP %s", method, path, response.status_code)
            raise RemoteAPIError(
                f"Xero API error {response.status_code} on {method} {path}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.json()

    async def _list(
        self,
        collection: str,
        tenant_id: Optional[str],
        modified_since: Optional[datetime],
        page: int,
        page_size: int,
    ) -> RemotePage:
        body = await self._request(
            "GET",
            collection,
            tenant_id,
            params={"page": page, "pageSize": page_size},
            modified_since=modified_since,
        )
        pagination = body.get("pagination") or {}
        return RemotePage(
            records=body.get(collection) or [],
            page=page,
            page_size=page_size,
            page_count=pagination.get("pageCount"),
            item_count=pagination.get("itemCount"),
        )

    async def _get_one(
        self, collection: str, tenant_id: Optional[str], remote_id: str
    ) -> Optional[Dict[str, Any]]:
        body = await self._request("GET", f"{collection}/{remote_id}", tenant_id, allow_404=True)
        if not body:
            return None
        records = body.get(collection) or []
        return records[0] if records else None

    # ── Contacts ──────────────────────────────────────────────────────────────

    async def list_contacts(
        self,
        tenant_id: Optional[str] = None,
        modified_since: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> RemotePage:
        return await self._list("Contacts", tenant_id, modified_since, page, page_size)

    async def get_contact(self, tenant_id: Optional[str], contact_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_one("Contacts", tenant_id, contact_id)

    async def update_contact(
        self, tenant_id: Optional[str], contact_id: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """POST a partial contact to Xero and return the updated record."""
        body = await self._request(
            "POST",
            f"Contacts/{contact_id}",
            tenant_id,
            json={"Contacts": [{**payload, "ContactID": contact_id}]},
        )
        records = (body or {}).get("Contacts") or []
        return records[0] if records else {}

    # ── Payments ──────────────────────────────────────────────────────────────

    async def list_payments(
        self,
        tenant_id: Optional[str] = None,
        modified_since: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> RemotePage:
        return await self._list("Payments", tenant_id, modified_since, page, page_size)

    async def get_payment(self, tenant_id: Optional[str], payment_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_one("Payments", tenant_id, payment_id)

    # ── Invoices ──────────────────────────────────────────────────────────────

    async def list_invoices(
        self,
        tenant_id: Optional[str] = None,
        modified_since: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> RemotePage:
        return await self._list("Invoices", tenant_id, modified_since, page, page_size)

    async def get_invoice(self, tenant_id: Optional[str], invoice_id: str) -> Optional[Dict[str, Any]]:
        return await self._get_one("Invoices", tenant_id, invoice_id)
