# govflow/models.py
from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


InvoiceStatus = Literal["PAID", "UNPAID", "CANCELLED"]
SupplierStatus = Literal["ACTIVE", "INACTIVE"]
UserRole = Literal["ADMIN", "MANAGER", "AUDITOR"]
UserStatus = Literal["ACTIVE", "INACTIVE"]
UrgencyBucket = Literal["OVERDUE", "CRITICAL", "WARNING", "PLANNING", "NONE"]
ImportErrorType = Literal["INVALID_FORMAT", "AI_FAILURE", "SYSTEM"]


class HistoryEntry(BaseModel):
    timestamp: datetime
    action: str
    user: str


class Invoice(BaseModel):
    id: str
    budget_unit: str
    supplier: str
    commitment_number: str = "---"
    invoice_number: str = "---"
    amount: float = Field(ge=0)
    due_date: date
    payment_date: Optional[date] = None
    status: InvoiceStatus = "UNPAID"

    history: list[HistoryEntry] = []

    @model_validator(mode="after")
    def _check_payment_date(self) -> "Invoice":
        if self.status == "PAID" and self.payment_date is None:
            raise ValueError("PAID invoices require a payment_date")
        if self.status == "UNPAID" and self.payment_date is not None:
            raise ValueError("UNPAID invoices cannot carry a payment_date")
        return self


class Supplier(BaseModel):
    id: str
    legal_name: str
    trade_name: str = ""
    tax_id: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    status: SupplierStatus = "ACTIVE"
    registered_at: datetime


class SupplierPayload(BaseModel):
    """Partial supplier data found next to an invoice during extraction."""

    tax_id: Optional[str] = None
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class ImportCandidate(BaseModel):
    budget_unit: Optional[str] = None
    supplier: Optional[str] = None
    commitment_number: Optional[str] = None
    invoice_number: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    status: Optional[InvoiceStatus] = None

    supplier_data: Optional[SupplierPayload] = None


class User(BaseModel):
    id: str
    name: str
    email: str
    password_hash: str
    role: UserRole = "MANAGER"
    status: UserStatus = "ACTIVE"
    last_login: Optional[datetime] = None


class ImportErrorLog(BaseModel):
    id: str
    date: datetime
    file_name: str
    error_type: ImportErrorType
    details: str
    user_email: str


class SystemSetting(BaseModel):
    key: str
    value: str = ""
