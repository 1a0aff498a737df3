from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel

from govflow.models import Invoice, InvoiceStatus


TOP_SUPPLIERS = 5


class InvoiceFilters(BaseModel):
    budget_unit: str = ""
    supplier: str = ""
    status: Optional[InvoiceStatus] = None
    due_month: Optional[int] = None


class NamedTotal(BaseModel):
    name: str
    value: float


class BudgetUnitShare(NamedTotal):
    percentage: float


class DashboardStats(BaseModel):
    invoice_count: int
    pending_count: int
    total_open: float
    total_paid: float
    top_suppliers: list[NamedTotal]
    budget_unit_distribution: list[BudgetUnitShare]


def apply_filters(invoices: Iterable[Invoice], filters: InvoiceFilters) -> list[Invoice]:
    budget_unit = filters.budget_unit.strip().lower()
    supplier = filters.supplier.strip().lower()

    results: list[Invoice] = []
    for invoice in invoices:
        if budget_unit and budget_unit not in invoice.budget_unit.lower():
            continue
        if supplier and supplier not in invoice.supplier.lower():
            continue
        if filters.status and invoice.status != filters.status:
            continue
        if filters.due_month and invoice.due_date.month != filters.due_month:
            continue
        results.append(invoice)
    return results


def _totals_by(invoices: list[Invoice], attribute: str) -> dict[str, float]:
    totals: dict[str, float] = {}
    for invoice in invoices:
        key = getattr(invoice, attribute)
        totals[key] = totals.get(key, 0.0) + invoice.amount
    return totals


def compute_stats(invoices: Iterable[Invoice]) -> DashboardStats:
    """Aggregate totals for the dashboard; cancelled invoices count for nothing."""
    invoices = list(invoices)
    active = [i for i in invoices if i.status != "CANCELLED"]

    total_open = sum(i.amount for i in active if i.status == "UNPAID")
    total_paid = sum(i.amount for i in active if i.status == "PAID")
    total_global = total_open + total_paid

    by_supplier = _totals_by(active, "supplier")
    top_suppliers = sorted(by_supplier.items(), key=lambda item: item[1], reverse=True)[:TOP_SUPPLIERS]

    distribution = [
        BudgetUnitShare(
            name=name,
            value=round(value, 2),
            percentage=round(value / total_global * 100, 2) if total_global > 0 else 0.0,
        )
        for name, value in _totals_by(active, "budget_unit").items()
    ]

    return DashboardStats(
        invoice_count=len(invoices),
        pending_count=sum(1 for i in active if i.status == "UNPAID"),
        total_open=round(total_open, 2),
        total_paid=round(total_paid, 2),
        top_suppliers=[NamedTotal(name=name, value=round(value, 2)) for name, value in top_suppliers],
        budget_unit_distribution=distribution,
    )
