"""
Xero OAuth2 session management.

Authorization-code flow:

    auth = XeroAuth(TokenStore(engine))
    url = auth.get_authorization_url(user_id)   # send the user here
    token_set = await auth.exchange_code(code)  # from the redirect callback

After that, `get_valid_token()` returns the stored token set, refreshing it
first when it expires within the safety margin (never less than five
minutes). Xero access tokens live for 30 minutes; refresh tokens rotate on
every refresh, so each successful refresh is persisted immediately.

A refresh rejected by Xero (invalid_grant, invalid_client,
unauthorized_client, or a bare 400/401) means the user revoked access or the
refresh token expired. The tenant is then deactivated and the user must run
`python -m ledgersync setup` (or the /xero/authorize flow) again. Network
errors and 5xx responses are treated as transient and leave the connection
active.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from ledgersync.config import Settings, get_settings
from ledgersync.models.token import OAuthTokenSet
from ledgersync.xero.errors import (
    RECONNECT_HINT,
    AuthExchangeError,
    ConfigurationError,
    NotConnectedError,
    TokenRefreshError,
)
from ledgersync.xero.token_store import TokenStore

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

DEFAULT_EXPIRES_IN = 1800  # seconds, when Xero omits expires_in
PERMANENT_REFRESH_ERRORS = {"invalid_grant", "invalid_client", "unauthorized_client"}
EXCHANGE_ERROR_MESSAGES = {
    "invalid_grant": "Authorization code expired or already used. Please try connecting again.",
    "unauthorized_client": (
        "OAuth configuration mismatch. Please verify the redirect URI "
        "in the Xero Developer Portal."
    ),
}


def _error_code(response: httpx.Response) -> Optional[str]:
    """Extract the OAuth `error` field from a token endpoint response."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("error")
    return None


# ── Main class ────────────────────────────────────────────────────────────────

class XeroAuth:
    """
    Owns the OAuth token lifecycle for the Xero integration.

    The only writer of OAuthTokenSet rows (through TokenStore).
    """

    def __init__(
        self,
        store: TokenStore,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Args:
            store: TokenStore used to persist token sets.
            settings: Settings instance. Defaults to get_settings().
            http: httpx.AsyncClient for the identity endpoints (tests pass one
                  built on httpx.MockTransport).
            now: Clock returning naive UTC datetimes.
        """
        self.store = store
        self.settings = settings or get_settings()
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self._now = now

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def token_url(self) -> str:
        return f"{self.settings.xero_identity_url}/connect/token"

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(minutes=self.settings.refresh_margin_minutes)

    def _require_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("XERO_CLIENT_ID", self.settings.xero_client_id),
                ("XERO_CLIENT_SECRET", self.settings.xero_client_secret),
                ("XERO_REDIRECT_URI", self.settings.xero_redirect_uri),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Xero is not configured: set {', '.join(missing)} in the environment."
            )

    # ── Authorization code flow ───────────────────────────────────────────────

    def get_authorization_url(self, user_id: Optional[str] = None) -> str:
        """
        Build the Xero consent URL.

        The state parameter is a random nonce suffixed with the user id so the
        callback can attribute the connection.

        Raises:
            ConfigurationError: if client id, secret or redirect URI is unset.
        """
        self._require_credentials()
        state = secrets.token_urlsafe(16)
        if user_id:
            state = f"{state}.{user_id}"
        params = {
            "response_type": "code",
            "client_id": self.settings.xero_client_id,
            "redirect_uri": self.settings.xero_redirect_uri,
            "scope": " ".join(self.settings.scope_list),
            "state": state,
        }
        return f"{self.settings.xero_login_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokenSet:
        """
        Exchange an authorization code for tokens and persist them.

        Returns:
            The stored OAuthTokenSet for the first connected tenant.

        Raises:
            ConfigurationError: if credentials are missing.
            AuthExchangeError: if Xero rejects the code or no tenant is connected.
        """
        self._require_credentials()
        try:
            response = await self._http.post(
                self.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.settings.xero_redirect_uri,
                },
                headers={"Accept": "application/json"},
                auth=(self.settings.xero_client_id, self.settings.xero_client_secret),
            )
        except httpx.HTTPError as exc:
            raise AuthExchangeError(f"Connection failed: {exc}") from exc

        if response.status_code >= 400:
            code_name = _error_code(response)
            logger.error(
                "Xero code exchange failed: HTTP %s %s", response.status_code, code_name
            )
            raise AuthExchangeError(
                EXCHANGE_ERROR_MESSAGES.get(
                    code_name, f"Connection failed: HTTP {response.status_code}"
                )
            )

        payload = response.json()
        if not payload.get("access_token") or not payload.get("refresh_token"):
            raise AuthExchangeError("Invalid token response from Xero - missing tokens")

        tenant = await self._first_tenant(payload["access_token"])
        token_set = self.store.store(
            tenant_id=tenant["tenantId"],
            tenant_name=tenant.get("tenantName"),
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=self._expiry(payload),
            scopes=payload.get("scope", self.settings.xero_scopes),
            reconnect=True,
        )
        logger.info("Connected to Xero tenant %s (%s)", token_set.tenant_name, token_set.tenant_id)
        return token_set

    async def _first_tenant(self, access_token: str) -> Dict[str, Any]:
        try:
            response = await self._http.get(
                self.settings.xero_connections_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise AuthExchangeError(f"Could not list Xero organisations: {exc}") from exc
        if response.status_code >= 400:
            raise AuthExchangeError(
                f"Could not list Xero organisations: HTTP {response.status_code}"
            )
        tenants = response.json() or []
        if not tenants:
            raise AuthExchangeError(
                "No Xero organisation was authorised. Please select an organisation when connecting."
            )
        return tenants[0]

    def _expiry(self, payload: Dict[str, Any]) -> datetime:
        return self._now() + timedelta(seconds=int(payload.get("expires_in") or DEFAULT_EXPIRES_IN))

    # ── Refresh ───────────────────────────────────────────────────────────────

    def needs_refresh(self, token_set: OAuthTokenSet) -> bool:
        return token_set.expires_at - self._now() <= self.refresh_margin

    async def refresh_access_token(self, token_set: OAuthTokenSet) -> OAuthTokenSet:
        """
        Use the refresh token to obtain a new token set and persist it.

        Raises:
            TokenRefreshError: permanent=True after deactivating the tenant when
                Xero rejects the refresh token; permanent=False for transient
                failures.
        """
        try:
            response = await self._http.post(
                self.token_url,
                data={"grant_type": "refresh_token", "refresh_token": token_set.refresh_token},
                headers={"Accept": "application/json"},
                auth=(self.settings.xero_client_id, self.settings.xero_client_secret),
            )
        except httpx.HTTPError as exc:
            logger.warning("Token refresh for %s failed transiently: %s", token_set.tenant_id, exc)
            raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

        if response.status_code >= 400:
            code_name = _error_code(response)
            permanent = code_name in PERMANENT_REFRESH_ERRORS or response.status_code in (400, 401)
            if permanent:
                self.store.deactivate(token_set.tenant_id)
                logger.error(
                    "Xero rejected refresh token for %s (%s); connection deactivated",
                    token_set.tenant_id,
                    code_name or response.status_code,
                )
                raise TokenRefreshError(
                    f"Xero connection expired or was revoked. {RECONNECT_HINT}",
                    permanent=True,
                )
            logger.warning(
                "Token refresh for %s failed: HTTP %s", token_set.tenant_id, response.status_code
            )
            raise TokenRefreshError(f"Token refresh failed: HTTP {response.status_code}")

        payload = response.json()
        refreshed = self.store.store(
            tenant_id=token_set.tenant_id,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or token_set.refresh_token,
            expires_at=self._expiry(payload),
            scopes=payload.get("scope", ""),
        )
        logger.info("Refreshed Xero token for %s, expires %s", refreshed.tenant_id, refreshed.expires_at)
        return refreshed

    async def ensure_fresh_token(self, token_set: OAuthTokenSet) -> OAuthTokenSet:
        """Return `token_set`, refreshed first if it expires within the margin."""
        if self.needs_refresh(token_set):
            return await self.refresh_access_token(token_set)
        return token_set

    async def get_valid_token(self) -> OAuthTokenSet:
        """
        Return the active token set, fresh enough to use.

        Raises:
            NotConnectedError: if no active connection exists.
            TokenRefreshError: if a needed refresh fails.
        """
        token_set = self.store.get_active()
        if token_set is None:
            raise NotConnectedError()
        return await self.ensure_fresh_token(token_set)

    # ── Health ────────────────────────────────────────────────────────────────

    def connection_health(self) -> Dict[str, Any]:
        """Summarise the stored connection without touching the network."""
        token_set = self.store.get_active()
        if token_set is None:
            return {
                "is_connected": False,
                "token_expires_in": None,
                "tenant_id": None,
                "tenant_name": None,
                "needs_refresh": False,
                "needs_reconnect": True,
            }
        expires_in = int((token_set.expires_at - self._now()).total_seconds())
        return {
            "is_connected": True,
            "token_expires_in": max(expires_in, 0),
            "tenant_id": token_set.tenant_id,
            "tenant_name": token_set.tenant_name,
            "needs_refresh": self.needs_refresh(token_set),
            "needs_reconnect": False,
        }

    def disconnect(self) -> int:
        """Deactivate every stored connection. Returns how many were active."""
        count = self.store.deactivate_all()
        logger.info("Disconnected %d Xero connection(s)", count)
        return count
