"""Shared test fixtures."""
import math
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from ledgersync.models.ledger import Contact, Invoice, Payment  # noqa: F401
from ledgersync.models.sync import SyncConflict, SyncLog, SyncState  # noqa: F401
from ledgersync.models.tasks import Operator, Task, TaskNotification  # noqa: F401
from ledgersync.models.token import OAuthTokenSet

from ledgersync.config import Settings
from ledgersync.xero.client import RemotePage


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings with Xero credentials and no inter-page delay."""
    return Settings(
        _env_file=None,
        xero_client_id="client-id",
        xero_client_secret="client-secret",
        xero_redirect_uri="https://erp.example.com/xero/callback",
        sync_inter_page_delay_ms=0,
    )


@pytest.fixture(name="active_token")
def active_token_fixture(engine) -> OAuthTokenSet:
    """A persisted, comfortably valid Xero token set."""
    token = OAuthTokenSet(
        tenant_id="tenant-1",
        tenant_name="Acme Builders",
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime.utcnow() + timedelta(minutes=30),
    )
    with Session(engine) as s:
        s.add(token)
        s.commit()
        s.refresh(token)
    return token


# ─── Xero record factories ────────────────────────────────────────────────────

@pytest.fixture(name="contact_record")
def contact_record_fixture():
    def make(i: int, **overrides):
        record = {
            "ContactID": f"c-{i}",
            "Name": f"Contact {i}",
            "EmailAddress": f"contact{i}@example.com",
            "IsCustomer": True,
            "IsSupplier": False,
            "ContactStatus": "ACTIVE",
        }
        record.update(overrides)
        return record
    return make


@pytest.fixture(name="invoice_record")
def invoice_record_fixture():
    def make(i: int, contact_id: str = "c-1", **overrides):
        record = {
            "InvoiceID": f"i-{i}",
            "InvoiceNumber": f"INV-{i:04d}",
            "Type": "ACCREC",
            "Contact": {"ContactID": contact_id},
            "Status": "AUTHORISED",
            "Reference": f"PO-{i}",
            "Date": "/Date(1705276800000+0000)/",
            "DueDate": "2024-02-14T00:00:00",
            "CurrencyCode": "SGD",
            "SubTotal": 100,
            "TotalTax": 9,
            "Total": 109,
            "AmountDue": 109,
            "AmountPaid": 0,
        }
        record.update(overrides)
        return record
    return make


@pytest.fixture(name="payment_record")
def payment_record_fixture():
    def make(i: int, invoice_id: str = "i-1", **overrides):
        record = {
            "PaymentID": f"p-{i}",
            "Date": "2024-01-20T00:00:00",
            "Amount": 109,
            "Invoice": {"InvoiceID": invoice_id},
            "Status": "AUTHORISED",
            "PaymentType": "ACCRECPAYMENT",
            "Reference": f"Transfer {i}",
            "Account": {"AccountID": "acct-1", "Code": "090"},
        }
        record.update(overrides)
        return record
    return make


def paged(records, with_meta: bool = True):
    """side_effect for a fake list_* method that slices `records` into pages."""
    async def fetch(tenant_id, modified_since, page, page_size):
        chunk = records[(page - 1) * page_size: page * page_size]
        return RemotePage(
            records=chunk,
            page=page,
            page_size=page_size,
            page_count=math.ceil(len(records) / page_size) if with_meta else None,
            item_count=len(records) if with_meta else None,
        )
    return fetch


@pytest.fixture(name="make_client")
def make_client_fixture():
    """Build an AsyncMock XeroClient serving the given records."""
    def make(contacts=(), invoices=(), payments=(), with_meta: bool = True):
        client = AsyncMock()
        client.list_contacts = AsyncMock(side_effect=paged(list(contacts), with_meta))
        client.list_invoices = AsyncMock(side_effect=paged(list(invoices), with_meta))
        client.list_payments = AsyncMock(side_effect=paged(list(payments), with_meta))
        return client
    return make


@pytest.fixture(name="paged")
def paged_fixture():
    """The `paged` side_effect builder, for tests that swap remote data mid-test."""
    return paged
