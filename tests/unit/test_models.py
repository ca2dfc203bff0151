"""Tests for DB models."""
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ledgersync.models.ledger import Contact, Invoice
from ledgersync.models.sync import EntityType, LogEntity, SyncLog, SyncState
from ledgersync.models.tasks import Operator, Task


class TestEntityType:
    @pytest.mark.parametrize(
        "entity_type, log_entity, request_entity",
        [
            (EntityType.CONTACT, LogEntity.CONTACTS, LogEntity.CONTACT_REQUEST),
            (EntityType.INVOICE, LogEntity.INVOICES, LogEntity.INVOICE_REQUEST),
            (EntityType.PAYMENT, LogEntity.PAYMENTS, LogEntity.PAYMENT_REQUEST),
        ],
    )
    def test_log_entities(self, entity_type, log_entity, request_entity):
        assert entity_type.log_entity is log_entity
        assert entity_type.request_entity is request_entity


class TestSyncLog:
    def test_defaults(self):
        log = SyncLog(entity="CONTACTS")
        assert len(log.id) == 32
        assert log.direction == "PULL"
        assert log.status == "IN_PROGRESS"
        assert log.records_processed == 0
        assert log.finished_at is None

    def test_ids_are_unique(self):
        assert SyncLog(entity="CONTACTS").id != SyncLog(entity="CONTACTS").id


class TestSyncState:
    def test_one_row_per_record(self, test_session: Session):
        test_session.add(SyncState(entity_type="CONTACT", entity_id=1))
        test_session.add(SyncState(entity_type="CONTACT", entity_id=1))
        with pytest.raises(IntegrityError):
            test_session.commit()

    def test_same_id_different_type(self, test_session: Session):
        test_session.add(SyncState(entity_type="CONTACT", entity_id=1))
        test_session.add(SyncState(entity_type="INVOICE", entity_id=1))
        test_session.commit()
        assert len(test_session.exec(select(SyncState)).all()) == 2


class TestLedger:
    def test_xero_ids_are_unique(self, test_session: Session):
        test_session.add(Contact(xero_contact_id="c-1", name="Acme"))
        test_session.add(Contact(xero_contact_id="c-1", name="Acme again"))
        with pytest.raises(IntegrityError):
            test_session.commit()

    def test_invoice_links_contact(self, test_session: Session):
        contact = Contact(xero_contact_id="c-1", name="Acme")
        test_session.add(contact)
        test_session.commit()
        test_session.refresh(contact)

        invoice = Invoice(
            xero_invoice_id="i-1",
            invoice_type="ACCREC",
            contact_id=contact.id,
            xero_contact_id="c-1",
            date=datetime(2024, 1, 15),
            total=109.0,
        )
        test_session.add(invoice)
        test_session.commit()

        stored = test_session.exec(select(Invoice)).one()
        assert stored.contact_id == contact.id
        assert stored.status == "DRAFT"
        assert stored.amount_due == 0.0


class TestTasks:
    def test_operator_defaults(self):
        operator = Operator(name="Sam")
        assert operator.role == "STAFF"
        assert operator.is_active is True

    def test_task_defaults(self, test_session: Session):
        test_session.add(Task(title="Create invoice"))
        test_session.commit()
        task = test_session.exec(select(Task)).one()
        assert task.priority == "MEDIUM"
        assert task.status == "TODO"
        assert task.assignee_id is None
