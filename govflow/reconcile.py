"""Batch import reconciliation.

Turns freshly extracted candidates into invoices ready to persist and works
out which suppliers have to be created, without touching existing ones.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from govflow.models import HistoryEntry, ImportCandidate, Invoice, Supplier, SupplierPayload, User
from govflow.parse_utils import digits_only


DEFAULT_BUDGET_UNIT = "NÃO INFORMADA"
DEFAULT_SUPPLIER = "NÃO INFORMADO"
DEFAULT_DOCUMENT_NUMBER = "---"
DEFAULT_SUPPLIER_LEGAL_NAME = "FORNECEDOR NÃO IDENTIFICADO"
IMPORT_HISTORY_ACTION = "Importado em lote"
SYSTEM_ACTOR = "Sistema"


class ReconcileResult(BaseModel):
    invoices: list[Invoice]
    new_suppliers: list[Supplier]
    new_supplier_count: int


def new_id() -> str:
    return uuid.uuid4().hex


def actor_name(actor: Optional[User]) -> str:
    if actor is None or not actor.name:
        return SYSTEM_ACTOR
    return actor.name


def _normalize_invoice(
    candidate: ImportCandidate,
    actor: str,
    today: date,
    now: datetime,
    invoice_id: str,
) -> Invoice:
    status = candidate.status or "UNPAID"
    payment_date = candidate.payment_date
    if status == "PAID" and payment_date is None:
        payment_date = today
    elif status == "UNPAID":
        payment_date = None

    return Invoice(
        id=invoice_id,
        budget_unit=candidate.budget_unit or DEFAULT_BUDGET_UNIT,
        supplier=candidate.supplier or DEFAULT_SUPPLIER,
        commitment_number=candidate.commitment_number or DEFAULT_DOCUMENT_NUMBER,
        invoice_number=candidate.invoice_number or DEFAULT_DOCUMENT_NUMBER,
        amount=candidate.amount or 0.0,
        due_date=candidate.due_date or today,
        payment_date=payment_date,
        status=status,
        history=[HistoryEntry(timestamp=now, action=IMPORT_HISTORY_ACTION, user=actor)],
    )


def _new_supplier(payload: SupplierPayload, supplier_id: str, now: datetime) -> Supplier:
    return Supplier(
        id=supplier_id,
        legal_name=payload.legal_name or payload.trade_name or DEFAULT_SUPPLIER_LEGAL_NAME,
        trade_name=payload.trade_name or "",
        tax_id=payload.tax_id or "",
        email=payload.email or "",
        phone=payload.phone or "",
        address=payload.address or "",
        city=payload.city or "",
        state=payload.state or "",
        status="ACTIVE",
        registered_at=now,
    )


def reconcile_import(
    candidates: Optional[Sequence[ImportCandidate]],
    suppliers: Optional[Sequence[Supplier]],
    actor: Optional[User] = None,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> ReconcileResult:
    if candidates is None:
        raise ValueError("candidates must not be None")
    if suppliers is None:
        raise ValueError("suppliers must not be None")

    now = now or datetime.now()
    today = today or now.date()
    make_id = id_factory or new_id
    acting = actor_name(actor)

    invoices: list[Invoice] = []
    payloads: list[SupplierPayload] = []
    seen_tax_ids: set[str] = set()

    for candidate in candidates:
        invoices.append(_normalize_invoice(candidate, acting, today, now, make_id()))

        payload = candidate.supplier_data
        if payload is None or not payload.tax_id:
            continue
        # keyed on the raw string, not the digits-only form used below
        if payload.tax_id in seen_tax_ids:
            continue
        seen_tax_ids.add(payload.tax_id)
        payloads.append(payload)

    known_tax_ids = [digits_only(s.tax_id) for s in suppliers]
    new_suppliers: list[Supplier] = []
    for payload in payloads:
        key = digits_only(payload.tax_id)
        if key in known_tax_ids:
            continue
        supplier = _new_supplier(payload, make_id(), now)
        new_suppliers.append(supplier)
        known_tax_ids.append(key)

    return ReconcileResult(
        invoices=invoices,
        new_suppliers=new_suppliers,
        new_supplier_count=len(new_suppliers),
    )
