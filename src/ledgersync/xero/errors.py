"""
Exception hierarchy for the Xero sync engine.

Every error raised by ledgersync.xero derives from XeroSyncError so callers
(API routes, scheduler jobs, the CLI) can catch the whole family in one place
and map the subclasses onto HTTP status codes or operator messages.
"""
from typing import Any, Dict, List, Optional

RECONNECT_HINT = "Please reconnect to Xero."


class XeroSyncError(RuntimeError):
    """Base class for all sync engine errors."""


class ConfigurationError(XeroSyncError):
    """Raised when Xero credentials or redirect URI are missing from settings."""


# ── Auth ──────────────────────────────────────────────────────────────────────

class XeroAuthError(XeroSyncError):
    """Raised when no usable token set can be produced."""


class AuthExchangeError(XeroAuthError):
    """Raised when an authorization code cannot be exchanged for tokens."""


class TokenRefreshError(XeroAuthError):
    """
    Raised when a refresh attempt fails.

    `permanent` is True when Xero rejected the refresh token itself; the
    integration has then been deactivated and the user must reconnect.
    """

    def __init__(self, message: str, *, permanent: bool = False):
        super().__init__(message)
        self.permanent = permanent


class NotConnectedError(XeroAuthError):
    """Raised when there is no active Xero connection."""

    def __init__(self, message: str = f"Xero is not connected. {RECONNECT_HINT}"):
        super().__init__(message)


# ── Remote API ────────────────────────────────────────────────────────────────

class RemoteAPIError(XeroSyncError):
    """Raised for non-2xx responses and transport failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(RemoteAPIError):
    """Raised on HTTP 429. Callers should wait `retry_after` seconds and retry."""

    def __init__(self, retry_after: int, problem: Optional[str] = None):
        super().__init__(
            f"Xero rate limit hit ({problem or 'unspecified'}); retry after {retry_after}s",
            status_code=429,
        )
        self.retry_after = retry_after
        self.problem = problem


# ── Records & conflicts ───────────────────────────────────────────────────────

class ValidationError(XeroSyncError):
    """Raised when a remote record or a request payload fails validation."""

    def __init__(self, errors: List[str], record: Optional[Dict[str, Any]] = None):
        super().__init__("; ".join(errors))
        self.errors = errors
        self.record = record


class ConflictNotFoundError(XeroSyncError):
    """Raised when no PENDING conflict exists for the requested record."""


class InvalidResolutionError(XeroSyncError):
    """Raised for an unknown resolution strategy or a manual one without data."""


class SyncInProgressError(XeroSyncError):
    """Raised when a pull for the same entity type is already running."""
