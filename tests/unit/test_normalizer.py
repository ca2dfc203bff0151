"""Unit tests for Xero record validation, normalization and version hashing."""
from datetime import datetime

import pytest

from ledgersync.xero import normalizer
from ledgersync.xero.normalizer import (
    CONTACT_FIELDS,
    INVOICE_FIELDS,
    normalize_contact,
    normalize_invoice,
    normalize_payment,
    parse_xero_date,
    validate_contact,
    validate_invoice,
    validate_payment,
    version_hash,
)


class TestParseXeroDate:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("/Date(0+0000)/", datetime(1970, 1, 1)),
            ("/Date(86400000)/", datetime(1970, 1, 2)),
            ("/Date(1705276800000+0000)/", datetime(2024, 1, 15)),
            ("2024-01-15T00:00:00", datetime(2024, 1, 15)),
            ("2024-01-15T10:30:00.123Z", datetime(2024, 1, 15, 10, 30)),
            ("2024-01-15T10:30:00+08:00", datetime(2024, 1, 15, 2, 30)),
            ("2024-01-15T22:30:00-0330", datetime(2024, 1, 16, 2, 0)),
            ("2024-01-15T10:30:00.5+00:00", datetime(2024, 1, 15, 10, 30)),
            ("2024-01-15 10:30:00", datetime(2024, 1, 15, 10, 30)),
            ("2024-01-15", datetime(2024, 1, 15)),
        ],
    )
    def test_formats(self, value, expected):
        assert parse_xero_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable_is_none(self, value):
        assert parse_xero_date(value) is None

    def test_datetime_passthrough(self):
        dt = datetime(2024, 3, 1, 9, 0)
        assert parse_xero_date(dt) is dt


class TestContact:
    def test_valid(self):
        assert validate_contact({"ContactID": "c-1", "Name": "Acme"}) == []

    def test_blank_name(self):
        errors = validate_contact({"ContactID": "c-1", "Name": "   "})
        assert errors == ["Missing contact Name"]

    def test_missing_everything(self):
        assert len(validate_contact({})) == 2

    def test_normalize_picks_default_phone(self):
        raw = {
            "ContactID": "c-1",
            "Name": " Acme Builders ",
            "Phones": [
                {"PhoneType": "MOBILE", "PhoneNumber": "9999 0000"},
                {"PhoneType": "DEFAULT", "PhoneCountryCode": "65", "PhoneNumber": "6123 4567"},
            ],
            "IsSupplier": True,
        }
        data = normalize_contact(raw)
        assert data["name"] == "Acme Builders"
        assert data["phone"] == "65 6123 4567"
        assert data["is_supplier"] is True
        assert data["is_customer"] is False
        assert data["contact_status"] == "ACTIVE"
        assert data["email"] is None

    def test_contact_to_xero(self):
        payload = normalizer.contact_to_xero({"name": "Acme", "email": "a@example.com", "phone": None})
        assert payload == {"Name": "Acme", "EmailAddress": "a@example.com"}


class TestInvoice:
    RAW = {
        "InvoiceID": "i-1",
        "InvoiceNumber": "INV-0001",
        "Type": "ACCPAY",
        "Contact": {"ContactID": "c-1"},
        "DateString": "2024-01-15T00:00:00",
        "DueDate": "/Date(1707868800000+0000)/",
        "SubTotal": "100.004",
        "TotalTax": 9,
        "Total": 109.004,
        "AmountDue": None,
    }

    def test_valid(self):
        assert validate_invoice(self.RAW) == []

    def test_bad_type_and_contact(self):
        errors = validate_invoice({"InvoiceID": "i-1", "Type": "QUOTE"})
        assert "Invalid invoice Type: 'QUOTE'" in errors
        assert "Missing Contact.ContactID" in errors

    def test_normalize(self):
        data = normalize_invoice(self.RAW)
        assert data["xero_contact_id"] == "c-1"
        assert data["date"] == datetime(2024, 1, 15)
        assert data["due_date"] == datetime(2024, 2, 14)
        assert data["subtotal"] == 100.0
        assert data["total"] == 109.0
        assert data["amount_due"] == 0.0
        assert data["status"] == "DRAFT"


class TestPayment:
    RAW = {
        "PaymentID": "p-1",
        "Date": "2024-01-20T00:00:00",
        "Amount": 50,
        "Invoice": {"InvoiceID": "i-1"},
        "CurrencyRate": "1.000000",
        "Account": {"AccountID": "acct-1", "Code": "090"},
    }

    def test_valid(self):
        assert validate_payment(self.RAW) == []

    def test_requires_a_target(self):
        raw = {k: v for k, v in self.RAW.items() if k != "Invoice"}
        assert any("no target document" in e for e in validate_payment(raw))

    def test_rejects_two_targets(self):
        raw = dict(self.RAW, Prepayment={"PrepaymentID": "pp-1"})
        assert any("more than one target" in e for e in validate_payment(raw))

    @pytest.mark.parametrize("amount", [0, -5, None, "abc"])
    def test_rejects_non_positive_amount(self, amount):
        raw = dict(self.RAW, Amount=amount)
        assert any("Invalid payment Amount" in e for e in validate_payment(raw))

    def test_rejects_deleted(self):
        assert "Payment is DELETED" in validate_payment(dict(self.RAW, Status="DELETED"))

    def test_credit_note_target(self):
        raw = {k: v for k, v in self.RAW.items() if k != "Invoice"}
        raw["CreditNote"] = {"CreditNoteID": "cn-1"}
        data = normalize_payment(raw)
        assert data["target_type"] == "CREDIT_NOTE"
        assert data["target_remote_id"] == "cn-1"

    def test_normalize(self):
        data = normalize_payment(self.RAW)
        assert data["target_type"] == "INVOICE"
        assert data["amount"] == 50.0
        assert data["currency_rate"] == 1.0
        assert data["bank_account_code"] == "090"
        assert data["status"] == "AUTHORISED"


class TestVersionHash:
    def test_key_order_irrelevant(self):
        assert version_hash({"a": 1, "b": 2}) == version_hash({"b": 2, "a": 1})

    def test_value_change_changes_hash(self):
        assert version_hash({"name": "A"}) != version_hash({"name": "B"})

    def test_is_sha256_hex(self):
        assert len(version_hash({"name": "A"})) == 64

    def test_local_row_and_remote_record_agree(self):
        remote = normalize_contact({"ContactID": "c-1", "Name": "Acme", "IsCustomer": True})

        class Row:
            pass

        row = Row()
        for name in CONTACT_FIELDS:
            setattr(row, name, remote[name])
        assert version_hash(normalizer.snapshot(row, CONTACT_FIELDS)) == version_hash(
            normalizer.syncable(remote, CONTACT_FIELDS)
        )

    def test_stored_snapshot_decodes_dates(self):
        data = normalizer.syncable(
            normalize_invoice(TestInvoice.RAW), INVOICE_FIELDS
        )
        decoded = normalizer.from_json(normalizer.to_json(data), INVOICE_FIELDS)
        assert decoded["date"] == datetime(2024, 1, 15)
        assert version_hash(decoded) == version_hash(data)
