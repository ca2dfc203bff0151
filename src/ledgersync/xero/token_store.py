"""Database-backed persistence for Xero OAuth token sets."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from ledgersync.models.token import OAuthTokenSet

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Reads and writes OAuthTokenSet rows.

    Only XeroAuth should call `store()`; every other component goes through
    `get_active()`.
    """

    def __init__(self, engine):
        self.engine = engine

    def get_active(self) -> Optional[OAuthTokenSet]:
        """Return the most recently connected active token set, or None."""
        with Session(self.engine) as s:
            return s.exec(
                select(OAuthTokenSet)
                .where(OAuthTokenSet.is_active == True)  # noqa: E712
                .order_by(OAuthTokenSet.connected_at.desc())
            ).first()

    def get_by_tenant(self, tenant_id: str) -> Optional[OAuthTokenSet]:
        with Session(self.engine) as s:
            return s.exec(
                select(OAuthTokenSet).where(OAuthTokenSet.tenant_id == tenant_id)
            ).first()

    def list_active(self) -> List[OAuthTokenSet]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(OAuthTokenSet).where(OAuthTokenSet.is_active == True)  # noqa: E712
                ).all()
            )

    def store(
        self,
        *,
        tenant_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        tenant_name: Optional[str] = None,
        scopes: str = "",
        reconnect: bool = False,
    ) -> OAuthTokenSet:
        """
        Upsert the token set for a tenant and mark it active.

        Args:
            reconnect: True for a fresh authorization; resets connected_at so
                the tenant becomes the default connection.

        Returns:
            The persisted OAuthTokenSet row.
        """
        now = datetime.utcnow()
        with Session(self.engine) as s:
            row = s.exec(
                select(OAuthTokenSet).where(OAuthTokenSet.tenant_id == tenant_id)
            ).first()
            if row is None:
                row = OAuthTokenSet(
                    tenant_id=tenant_id,
                    access_token=access_token,
                    refresh_token=refresh_token,
                    expires_at=expires_at,
                    connected_at=now,
                )
            else:
                row.access_token = access_token
                row.refresh_token = refresh_token
                row.expires_at = expires_at
                if reconnect:
                    row.connected_at = now
            if tenant_name is not None:
                row.tenant_name = tenant_name
            if scopes:
                row.scopes = scopes
            row.is_active = True
            row.updated_at = now
            s.add(row)
            s.commit()
            s.refresh(row)
            logger.debug("Stored token set for tenant %s (expires %s)", tenant_id, expires_at)
            return row

    def deactivate(self, tenant_id: str) -> None:
        """Mark one tenant's token set inactive. No-op if unknown."""
        with Session(self.engine) as s:
            row = s.exec(
                select(OAuthTokenSet).where(OAuthTokenSet.tenant_id == tenant_id)
            ).first()
            if row is None:
                return
            row.is_active = False
            row.updated_at = datetime.utcnow()
            s.add(row)
            s.commit()
        logger.warning("Deactivated Xero connection for tenant %s", tenant_id)

    def deactivate_all(self) -> int:
        """Mark every active token set inactive. Returns the number changed."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(OAuthTokenSet).where(OAuthTokenSet.is_active == True)  # noqa: E712
            ).all()
            for row in rows:
                row.is_active = False
                row.updated_at = datetime.utcnow()
                s.add(row)
            s.commit()
            return len(rows)
