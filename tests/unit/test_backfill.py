"""Tests for the backfill script.

_backfill() imports its collaborators lazily, so they are patched at their
source module paths.
"""
import argparse
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ledgersync.scripts.backfill import (
    BACKFILL_MAX_PAGES,
    BACKFILL_TIMEOUT_SECONDS,
    _backfill,
    _parse_date,
    main,
)

OUTCOME = {
    "success": True,
    "message": "Full history pull: 3 succeeded",
    "results": {
        "CONTACTS": {"message": "Pulled 2 contacts"},
        "INVOICES": {"message": "Pulled 1 invoices"},
        "PAYMENTS": {"message": "Pulled 0 payments"},
    },
}


class TestBackfill:
    async def test_runs_full_history_pull(self, engine):
        client = AsyncMock()
        client_cls = MagicMock()
        client_cls.return_value.__aenter__.return_value = client
        service = MagicMock()
        service.run_full_pull = AsyncMock(return_value=OUTCOME)

        with patch("ledgersync.db.engine.get_engine", return_value=engine), \
             patch("ledgersync.xero.auth.XeroAuth"), \
             patch("ledgersync.xero.client.XeroClient", client_cls), \
             patch("ledgersync.xero.sync_service.XeroPullService", return_value=service):
            outcome = await _backfill(datetime(2024, 1, 1), 500, 50)

        assert outcome is OUTCOME
        kwargs = service.run_full_pull.await_args.kwargs
        assert kwargs["full_history"] is True
        assert kwargs["modified_since"] == datetime(2024, 1, 1)
        assert kwargs["max_pages"] == 500
        assert kwargs["page_size"] == 50
        assert kwargs["timeout_seconds"] == BACKFILL_TIMEOUT_SECONDS


class TestArguments:
    def test_parse_date(self):
        assert _parse_date("2023-05-01") == datetime(2023, 5, 1)

    def test_parse_date_rejects_other_formats(self):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_date("01/05/2023")

    def test_defaults(self):
        with patch("ledgersync.scripts.backfill._backfill", new_callable=MagicMock) as backfill, \
             patch("ledgersync.scripts.backfill.asyncio.run") as run:
            main([])
        backfill.assert_called_once_with(None, BACKFILL_MAX_PAGES, None, BACKFILL_TIMEOUT_SECONDS)
        run.assert_called_once()

    def test_flags(self):
        with patch("ledgersync.scripts.backfill._backfill", new_callable=MagicMock) as backfill, \
             patch("ledgersync.scripts.backfill.asyncio.run"):
            main(["--since", "2024-02-01", "--max-pages", "20", "--page-size", "50", "--timeout", "60"])
        backfill.assert_called_once_with(datetime(2024, 2, 1), 20, 50, 60)
