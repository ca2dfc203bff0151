"""Tests for the setup wizard helpers."""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from ledgersync.scripts.setup import extract_code, run_setup
from ledgersync.xero.token_store import TokenStore


@pytest.mark.parametrize(
    "answer, expected",
    [
        ("abc123", "abc123"),
        ("  abc123\n", "abc123"),
        ("https://erp.example.com/xero/callback?code=xyz&state=s1", "xyz"),
        ("https://erp.example.com/xero/callback?state=s1", None),
        ("?code=q1&scope=openid", "q1"),
        ("", None),
    ],
)
def test_extract_code(answer, expected):
    assert extract_code(answer) == expected


def test_keeps_existing_connection_when_declined(engine, settings):
    TokenStore(engine).store(
        tenant_id="tenant-1",
        tenant_name="Acme Builders",
        access_token="at",
        refresh_token="rt",
        expires_at=datetime.utcnow() + timedelta(minutes=30),
        reconnect=True,
    )
    with patch("ledgersync.scripts.setup.get_engine", return_value=engine), \
         patch("ledgersync.xero.auth.get_settings", return_value=settings), \
         patch("builtins.input", return_value="n"):
        with pytest.raises(SystemExit) as excinfo:
            run_setup()

    assert excinfo.value.code == 0
    assert TokenStore(engine).get_active().access_token == "at"
