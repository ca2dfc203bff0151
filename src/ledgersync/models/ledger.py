"""Local ERP records that mirror Xero contacts, invoices and payments."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Contact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    xero_contact_id: str = Field(unique=True, index=True)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_customer: bool = False
    is_supplier: bool = False
    contact_status: str = "ACTIVE"
    last_synced_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Invoice(SQLModel, table=True):
    """Customer (ACCREC) or supplier (ACCPAY) invoice."""

    id: Optional[int] = Field(default=None, primary_key=True)
    xero_invoice_id: str = Field(unique=True, index=True)
    invoice_number: Optional[str] = None
    invoice_type: str  # ACCREC | ACCPAY
    contact_id: Optional[int] = Field(default=None, foreign_key="contact.id")
    xero_contact_id: Optional[str] = None
    status: str = "DRAFT"
    reference: Optional[str] = None
    date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    currency: Optional[str] = None
    subtotal: float = 0.0
    total_tax: float = 0.0
    total: float = 0.0
    amount_due: float = 0.0
    amount_paid: float = 0.0
    last_synced_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Payment(SQLModel, table=True):
    """Payment applied to exactly one invoice, credit note, overpayment or prepayment."""

    id: Optional[int] = Field(default=None, primary_key=True)
    xero_payment_id: str = Field(unique=True, index=True)
    invoice_id: Optional[int] = Field(default=None, foreign_key="invoice.id")
    target_type: str  # INVOICE | CREDIT_NOTE | OVERPAYMENT | PREPAYMENT
    target_remote_id: str
    amount: float
    date: Optional[datetime] = None
    reference: Optional[str] = None
    payment_type: Optional[str] = None
    status: str = "AUTHORISED"
    currency_rate: Optional[float] = None
    bank_account_id: Optional[str] = None
    bank_account_code: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
