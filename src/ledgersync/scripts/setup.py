"""
Interactive setup wizard for the Xero connection.

Prints the Xero consent URL, waits for the user to paste back the `code`
from the redirect (or the whole redirect URL), exchanges it for tokens and
stores them in the database. Only the token set is persisted; the client
secret stays in the environment.

Usage:
    python -m ledgersync setup
    python -m ledgersync.scripts.setup   (direct invocation)

Re-run any time the connection is revoked or the refresh token expires
(60 days without use).
"""
import asyncio
import sys
from typing import Optional
from urllib.parse import parse_qs, urlparse

from ledgersync.db.engine import get_engine
from ledgersync.xero.auth import XeroAuth
from ledgersync.xero.errors import XeroSyncError
from ledgersync.xero.token_store import TokenStore


def extract_code(answer: str) -> Optional[str]:
    """Accept either a bare code or the full redirect URL."""
    answer = answer.strip()
    if not answer:
        return None
    if "://" in answer or answer.startswith("?"):
        codes = parse_qs(urlparse(answer).query).get("code")
        return codes[0] if codes else None
    return answer


async def _exchange(auth: XeroAuth, code: str):
    try:
        return await auth.exchange_code(code)
    finally:
        await auth.aclose()


def run_setup() -> None:
    store = TokenStore(get_engine())
    auth = XeroAuth(store)

    print("\nledgersync: Xero setup\n")

    existing = store.get_active()
    if existing is not None:
        print(f"An active connection to {existing.tenant_name or existing.tenant_id} was found.")
        overwrite = input("Reconnect anyway? [y/N] ").strip().lower()
        if overwrite != "y":
            print("Setup cancelled. Existing connection unchanged.")
            sys.exit(0)

    try:
        url = auth.get_authorization_url()
    except XeroSyncError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print("Open this URL in a browser and approve access:\n")
    print(f"  {url}\n")
    code = extract_code(input("Paste the redirect URL (or just the code): "))
    if not code:
        print("Error: no authorization code found.")
        sys.exit(1)

    print("\nExchanging code with Xero...")
    try:
        token_set = asyncio.run(_exchange(auth, code))
    except XeroSyncError as exc:
        print(f"\nConnection failed: {exc}")
        sys.exit(1)

    print(f"\nConnected to {token_set.tenant_name or token_set.tenant_id}.")
    print(f"Access token valid until {token_set.expires_at:%Y-%m-%d %H:%M} UTC; it refreshes automatically.")
    print("If the connection is ever revoked, just re-run:  python -m ledgersync setup\n")


if __name__ == "__main__":
    run_setup()
