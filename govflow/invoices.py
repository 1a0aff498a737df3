from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from govflow.models import HistoryEntry, Invoice, InvoiceStatus, User
from govflow.parse_utils import normalize_status, parse_date, parse_money
from govflow.reconcile import (
    DEFAULT_BUDGET_UNIT,
    DEFAULT_DOCUMENT_NUMBER,
    DEFAULT_SUPPLIER,
    actor_name,
    new_id,
)


class InvoiceValidationError(ValueError):
    pass


_EDITABLE_FIELDS = (
    "budget_unit",
    "supplier",
    "commitment_number",
    "invoice_number",
    "amount",
    "due_date",
    "payment_date",
    "status",
)


def _entry(action: str, actor: Optional[User], now: Optional[datetime]) -> HistoryEntry:
    return HistoryEntry(timestamp=now or datetime.now(), action=action, user=actor_name(actor))


def _text(form: Dict[str, Any], key: str) -> str:
    value = form.get(key)
    return str(value).strip() if value is not None else ""


def _validated_fields(form: Dict[str, Any], today: date) -> Dict[str, Any]:
    invoice_number = _text(form, "invoice_number")
    if not invoice_number:
        raise InvoiceValidationError("O número da Nota Fiscal (NF) é obrigatório.")

    amount = parse_money(form.get("amount"))
    if amount is None or amount < 0:
        raise InvoiceValidationError("Valor financeiro inválido: informe um valor não negativo.")

    raw_status = form.get("status") or "UNPAID"
    status = normalize_status(str(raw_status))
    if status is None:
        raise InvoiceValidationError(f"Situação desconhecida: {raw_status}")

    due_date = parse_date(form.get("due_date")) if form.get("due_date") else today
    if due_date is None:
        raise InvoiceValidationError("Data de vencimento inválida.")

    payment_date = parse_date(form.get("payment_date")) if form.get("payment_date") else None
    if status == "PAID" and payment_date is None:
        raise InvoiceValidationError("A Data de Pagamento é obrigatória para notas com situação PAGO.")
    if status == "UNPAID":
        payment_date = None

    return {
        "budget_unit": _text(form, "budget_unit") or DEFAULT_BUDGET_UNIT,
        "supplier": _text(form, "supplier") or DEFAULT_SUPPLIER,
        "commitment_number": _text(form, "commitment_number") or DEFAULT_DOCUMENT_NUMBER,
        "invoice_number": invoice_number,
        "amount": amount,
        "due_date": due_date,
        "payment_date": payment_date,
        "status": status,
    }


def create_invoice(
    form: Dict[str, Any],
    actor: Optional[User] = None,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """Build a new invoice from a manual-entry form.

    Raises InvoiceValidationError when the NF number is blank, the amount is
    missing or negative, or a PAID invoice has no payment date.
    """
    now = now or datetime.now()
    fields = _validated_fields(form, today or now.date())
    return Invoice(
        id=new_id(),
        history=[_entry("Nota criada manualmente", actor, now)],
        **fields,
    )


def update_invoice(
    invoice: Invoice,
    form: Dict[str, Any],
    actor: Optional[User] = None,
    *,
    now: Optional[datetime] = None,
) -> Invoice:
    merged = {key: getattr(invoice, key) for key in _EDITABLE_FIELDS}
    merged.update({key: value for key, value in form.items() if key in _EDITABLE_FIELDS})
    now = now or datetime.now()
    fields = _validated_fields(merged, invoice.due_date)
    return Invoice(
        id=invoice.id,
        history=[*invoice.history, _entry("Nota editada manualmente", actor, now)],
        **fields,
    )


def toggle_status(
    invoice: Invoice,
    actor: Optional[User] = None,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    if invoice.status == "CANCELLED":
        raise InvoiceValidationError("Notas canceladas não podem ter a situação alterada.")

    now = now or datetime.now()
    new_status: InvoiceStatus = "PAID" if invoice.status == "UNPAID" else "UNPAID"
    payment_date = (today or now.date()) if new_status == "PAID" else None
    action = "Situação alterada para PAGO" if new_status == "PAID" else "Situação alterada para NÃO PAGO"
    return invoice.model_copy(
        update={
            "status": new_status,
            "payment_date": payment_date,
            "history": [*invoice.history, _entry(action, actor, now)],
        }
    )


def cancel_invoice(
    invoice: Invoice,
    actor: Optional[User] = None,
    *,
    now: Optional[datetime] = None,
) -> Invoice:
    if invoice.status == "CANCELLED":
        return invoice
    return invoice.model_copy(
        update={
            "status": "CANCELLED",
            "history": [*invoice.history, _entry("Nota cancelada", actor, now)],
        }
    )
