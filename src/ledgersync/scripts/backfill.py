"""
Backfill script: pull the full Xero history of contacts, invoices and payments.

Usage:
    python -m ledgersync.scripts.backfill
    python -m ledgersync.scripts.backfill --since 2023-01-01 --max-pages 500

Runs contacts -> invoices -> payments without a watermark (or from --since),
logged as one FULL_HISTORY entry. Records already in the DB come back as
skipped, so the backfill is safe to re-run.
"""
import argparse
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

BACKFILL_MAX_PAGES = 1000
BACKFILL_TIMEOUT_SECONDS = 3600  # per entity type


async def _backfill(
    since: Optional[datetime],
    max_pages: int,
    page_size: Optional[int],
    timeout: int = BACKFILL_TIMEOUT_SECONDS,
) -> Dict[str, Any]:
    from ledgersync.config import get_settings
    from ledgersync.db.engine import get_engine
    from ledgersync.xero.auth import XeroAuth
    from ledgersync.xero.client import XeroClient
    from ledgersync.xero.sync_service import XeroPullService
    from ledgersync.xero.token_store import TokenStore

    engine = get_engine()
    logger.info("Connecting to Xero (using stored token set)...")
    async with XeroClient(XeroAuth(TokenStore(engine))) as client:
        service = XeroPullService(client=client, engine=engine)
        outcome = await service.run_full_pull(
            modified_since=since,
            page_size=page_size,
            max_pages=max_pages,
            user_id=get_settings().user_id,
            full_history=True,
            timeout_seconds=timeout,
        )

    for entity, result in outcome["results"].items():
        logger.info("%s: %s", entity, result["message"])
    logger.info("Backfill complete: %s", outcome["message"])
    return outcome


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Backfill Xero history")
    parser.add_argument(
        "--since",
        type=_parse_date,
        default=None,
        help="Only records modified since this date (default: everything)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=BACKFILL_MAX_PAGES,
        help=f"Page cap per entity type (default: {BACKFILL_MAX_PAGES})",
    )
    parser.add_argument("--page-size", type=int, default=None, help="Records per page")
    parser.add_argument(
        "--timeout",
        type=int,
        default=BACKFILL_TIMEOUT_SECONDS,
        help=f"Seconds allowed per entity type (default: {BACKFILL_TIMEOUT_SECONDS})",
    )
    args = parser.parse_args(argv)
    asyncio.run(_backfill(args.since, args.max_pages, args.page_size, args.timeout))


if __name__ == "__main__":
    main()
