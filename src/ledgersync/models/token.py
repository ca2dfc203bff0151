"""OAuth token persistence model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class OAuthTokenSet(SQLModel, table=True):
    """One row per connected Xero organisation (tenant).

    Only the OAuth session manager writes these rows; everything else reads
    the active set through the token store.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(unique=True, index=True)
    tenant_name: Optional[str] = None
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: str = ""  # space separated, as granted
    is_active: bool = Field(default=True, index=True)
    connected_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
