"""
Xero API record normalizer.

Converts raw Xero JSON dicts into clean field dicts that map directly onto
the local SQLModel columns, validates them, and computes version hashes. No
DB access here; the pull handlers handle persistence.

All functions return plain dicts or lists so they're easy to test without
any SQLModel or DB dependencies.

Xero serialises dates two ways depending on the endpoint and API version:

  - Microsoft JSON dates: "/Date(1690484980033+0000)/"  (ms since epoch, UTC)
  - ISO 8601 strings:     "2024-01-15T00:00:00"

Both are handled by parse_xero_date() and come back as naive UTC datetimes.

Version hashes are sha256 digests of the syncable fields serialised as JSON
with sorted keys. A local row and a remote record describe the same version
exactly when their hashes match.
"""
import hashlib
import json
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

# Syncable fields per entity, shared by the local snapshot and the remote
# normalizer so both sides hash the same key set.
CONTACT_FIELDS = (
    "name",
    "email",
    "phone",
    "is_customer",
    "is_supplier",
    "contact_status",
)
INVOICE_FIELDS = (
    "invoice_number",
    "invoice_type",
    "xero_contact_id",
    "status",
    "reference",
    "date",
    "due_date",
    "currency",
    "subtotal",
    "total_tax",
    "total",
    "amount_due",
    "amount_paid",
)
PAYMENT_FIELDS = (
    "target_type",
    "target_remote_id",
    "amount",
    "date",
    "reference",
    "payment_type",
    "status",
    "currency_rate",
    "bank_account_id",
    "bank_account_code",
)

INVOICE_TYPES = ("ACCREC", "ACCPAY")
DATE_FIELDS = ("date", "due_date")

# Xero payment object key -> (id key, local target_type)
PAYMENT_TARGETS = {
    "Invoice": ("InvoiceID", "INVOICE"),
    "CreditNote": ("CreditNoteID", "CREDIT_NOTE"),
    "Overpayment": ("OverpaymentID", "OVERPAYMENT"),
    "Prepayment": ("PrepaymentID", "PREPAYMENT"),
}

_MS_DATE_RE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")
_ISO_OFFSET_RE = re.compile(r"([+-])(\d{2}):?(\d{2})$")
_EPOCH = datetime(1970, 1, 1)


# ── Parsing helpers ───────────────────────────────────────────────────────────

def parse_xero_date(value: Any) -> Optional[datetime]:
    """Parse either Xero date format into a naive UTC datetime.

    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    s = str(value).strip()
    match = _MS_DATE_RE.match(s)
    if match:
        return _EPOCH + timedelta(milliseconds=int(match.group(1)))
    # ISO 8601; fractional seconds are dropped, offsets folded into UTC
    offset = timedelta(0)
    if s.endswith("Z"):
        s = s[:-1]
    elif "T" in s:
        zone = _ISO_OFFSET_RE.search(s)
        if zone:
            sign = -1 if zone.group(1) == "-" else 1
            offset = sign * timedelta(hours=int(zone.group(2)), minutes=int(zone.group(3)))
            s = s[: zone.start()]
    base = s.split(".")[0]
    for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(base, fmt) - offset
        except ValueError:
            continue
    return None


def _money(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    return round(float(value), 2)


def _optional_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return round(float(value), 6)


def _default_phone(phones: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """Pick the DEFAULT phone (falling back to any) and join its parts."""
    if not phones:
        return None
    ordered = sorted(phones, key=lambda p: p.get("PhoneType") != "DEFAULT")
    for phone in ordered:
        number = phone.get("PhoneNumber")
        if number:
            parts = [phone.get("PhoneCountryCode"), phone.get("PhoneAreaCode"), number]
            return " ".join(p for p in parts if p)
    return None


def payment_targets(raw: Dict[str, Any]) -> List[Dict[str, str]]:
    """Return every target document referenced by a Xero payment."""
    targets = []
    for key, (id_key, target_type) in PAYMENT_TARGETS.items():
        doc = raw.get(key)
        if isinstance(doc, dict) and doc.get(id_key):
            targets.append({"target_type": target_type, "target_remote_id": doc[id_key]})
    return targets


# ── Validation ────────────────────────────────────────────────────────────────

def validate_contact(raw: Dict[str, Any]) -> List[str]:
    errors = []
    if not raw.get("ContactID"):
        errors.append("Missing ContactID")
    if not (raw.get("Name") or "").strip():
        errors.append("Missing contact Name")
    return errors


def validate_invoice(raw: Dict[str, Any]) -> List[str]:
    errors = []
    if not raw.get("InvoiceID"):
        errors.append("Missing InvoiceID")
    if raw.get("Type") not in INVOICE_TYPES:
        errors.append(f"Invalid invoice Type: {raw.get('Type')!r}")
    if not (raw.get("Contact") or {}).get("ContactID"):
        errors.append("Missing Contact.ContactID")
    return errors


def validate_payment(raw: Dict[str, Any]) -> List[str]:
    """Check a Xero payment before it is allowed near the local ledger.

    A payment must carry an id, a date, a positive amount and reference
    exactly one target document. Deleted payments are rejected.
    """
    errors = []
    if not raw.get("PaymentID"):
        errors.append("Missing PaymentID")
    if not raw.get("Date"):
        errors.append("Missing payment Date")
    try:
        amount = float(raw.get("Amount"))
    except (TypeError, ValueError):
        amount = None
    if amount is None or amount <= 0:
        errors.append(f"Invalid payment Amount: {raw.get('Amount')!r}")
    targets = payment_targets(raw)
    if not targets:
        errors.append("Payment has no target document (Invoice, CreditNote, Overpayment or Prepayment)")
    elif len(targets) > 1:
        kinds = ", ".join(t["target_type"] for t in targets)
        errors.append(f"Payment references more than one target document: {kinds}")
    if raw.get("Status") == "DELETED":
        errors.append("Payment is DELETED")
    return errors


# ── Normalizers ───────────────────────────────────────────────────────────────

def normalize_contact(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a Xero Contact into Contact model fields."""
    return {
        "xero_contact_id": raw["ContactID"],
        "name": raw["Name"].strip(),
        "email": raw.get("EmailAddress") or None,
        "phone": _default_phone(raw.get("Phones")),
        "is_customer": bool(raw.get("IsCustomer", False)),
        "is_supplier": bool(raw.get("IsSupplier", False)),
        "contact_status": raw.get("ContactStatus") or "ACTIVE",
    }


def normalize_invoice(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a Xero Invoice into Invoice model fields.

    `contact_id` (the local FK) is resolved by the caller from
    `xero_contact_id`.
    """
    return {
        "xero_invoice_id": raw["InvoiceID"],
        "invoice_number": raw.get("InvoiceNumber") or None,
        "invoice_type": raw["Type"],
        "xero_contact_id": raw["Contact"]["ContactID"],
        "status": raw.get("Status") or "DRAFT",
        "reference": raw.get("Reference") or None,
        "date": parse_xero_date(raw.get("Date") or raw.get("DateString")),
        "due_date": parse_xero_date(raw.get("DueDate") or raw.get("DueDateString")),
        "currency": raw.get("CurrencyCode") or None,
        "subtotal": _money(raw.get("SubTotal")),
        "total_tax": _money(raw.get("TotalTax")),
        "total": _money(raw.get("Total")),
        "amount_due": _money(raw.get("AmountDue")),
        "amount_paid": _money(raw.get("AmountPaid")),
    }


def normalize_payment(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a validated Xero Payment into Payment model fields."""
    target = payment_targets(raw)[0]
    account = raw.get("Account") or {}
    return {
        "xero_payment_id": raw["PaymentID"],
        "target_type": target["target_type"],
        "target_remote_id": target["target_remote_id"],
        "amount": _money(raw.get("Amount")),
        "date": parse_xero_date(raw.get("Date")),
        "reference": raw.get("Reference") or None,
        "payment_type": raw.get("PaymentType") or None,
        "status": raw.get("Status") or "AUTHORISED",
        "currency_rate": _optional_float(raw.get("CurrencyRate")),
        "bank_account_id": account.get("AccountID") or None,
        "bank_account_code": account.get("Code") or None,
    }


def contact_to_xero(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Build the writable part of a Xero Contact from local fields."""
    payload: Dict[str, Any] = {"Name": fields["name"]}
    if fields.get("email") is not None:
        payload["EmailAddress"] = fields["email"]
    if fields.get("phone") is not None:
        payload["Phones"] = [{"PhoneType": "DEFAULT", "PhoneNumber": fields["phone"]}]
    return payload


# ── Version hashing ───────────────────────────────────────────────────────────

def syncable(data: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Project `data` onto the syncable field set, rounding money values."""
    out = {}
    for name in fields:
        value = data.get(name)
        if isinstance(value, float):
            value = round(value, 6)
        out[name] = value
    return out


def snapshot(row: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """Read the syncable fields off a local SQLModel row."""
    return syncable({name: getattr(row, name) for name in fields}, fields)


def version_hash(data: Dict[str, Any]) -> str:
    """sha256 of the JSON form of `data` with sorted keys."""
    encoded = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def to_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, default=str)


def coerce_dates(data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn date strings (from stored JSON or API input) back into datetimes."""
    out = dict(data)
    for name in DATE_FIELDS:
        if isinstance(out.get(name), str):
            out[name] = parse_xero_date(out[name])
    return out


def from_json(text: Optional[str], fields: Iterable[str]) -> Dict[str, Any]:
    """Decode a stored snapshot back into a syncable field dict."""
    data = json.loads(text) if text else {}
    return syncable(coerce_dates(data), fields)
