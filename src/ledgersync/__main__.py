"""
Main entrypoint: the Xero setup wizard, one-shot pulls and the scheduler.

FastAPI runs separately under uvicorn.

Usage:
    python -m ledgersync setup               # one-time Xero OAuth connection
    python -m ledgersync pull contacts       # one-shot pull (contacts|invoices|payments|all)
    python -m ledgersync backfill            # full history pull, see scripts/backfill
    python -m ledgersync                     # starts the scheduler
    uvicorn ledgersync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

from ledgersync.config import get_settings

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from ledgersync.scripts.setup import run_setup
    run_setup()


async def _run_pull(entity: str) -> int:
    from ledgersync.db.engine import get_engine
    from ledgersync.xero.auth import XeroAuth
    from ledgersync.xero.client import XeroClient
    from ledgersync.xero.errors import XeroSyncError
    from ledgersync.xero.sync_service import XeroPullService
    from ledgersync.xero.token_store import TokenStore

    engine = get_engine()
    try:
        async with XeroClient(XeroAuth(TokenStore(engine))) as client:
            service = XeroPullService(client=client, engine=engine)
            if entity == "all":
                outcome = await service.run_full_pull(user_id=get_settings().user_id)
                logger.info(outcome["message"])
                return 0 if outcome["success"] else 1
            result = await service.run_pull(entity, user_id=get_settings().user_id)
    except (XeroSyncError, ValueError) as exc:
        logger.error("Pull failed: %s", exc)
        return 1

    logger.info(result.message)
    for error in result.errors[:10]:
        logger.warning("  %s", error)
    return 0 if result.success else 1


async def _run_scheduler() -> None:
    from ledgersync.db.engine import get_engine
    from ledgersync.scheduler.jobs import build_scheduler
    from ledgersync.xero.token_store import TokenStore

    settings = get_settings()
    engine = get_engine()

    if TokenStore(engine).get_active() is None:
        logger.error("Xero is not connected. Run `python -m ledgersync setup` first.")
        sys.exit(1)

    scheduler = build_scheduler(engine)
    scheduler.start()
    logger.info(
        "Scheduler started (nightly pull at %02d:00 UTC, token check every %d min)",
        settings.xero_sync_hour,
        settings.token_refresh_interval_minutes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


def main(argv=None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else None

    if command == "setup":
        _run_setup()
    elif command == "pull":
        if len(argv) < 2:
            print("Usage: python -m ledgersync pull contacts|invoices|payments|all")
            sys.exit(2)
        sys.exit(asyncio.run(_run_pull(argv[1].lower())))
    elif command == "backfill":
        from ledgersync.scripts.backfill import main as backfill_main
        backfill_main(argv[1:])
    elif command is None:
        asyncio.run(_run_scheduler())
    else:
        print(f"Unknown command {command!r}. Try: setup, pull <entity>, backfill")
        sys.exit(2)


if __name__ == "__main__":
    main()
