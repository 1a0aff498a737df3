"""Due-date triage: urgency buckets for unpaid invoices.

Buckets are derived on every read from ``(due_date, today)`` and never stored.
The reminder panel and the notification list both group through
:func:`_group`, so an invoice always lands in the same group in both places.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from pydantic import BaseModel, computed_field

from govflow.models import Invoice, UrgencyBucket


CRITICAL_WINDOW_DAYS = 3
WARNING_DAYS = 5
PLANNING_DAYS = 15


class TriagedInvoice(BaseModel):
    invoice: Invoice
    days_until_due: int
    bucket: UrgencyBucket


class TriageGroups(BaseModel):
    urgent: list[TriagedInvoice] = []
    warning: list[TriagedInvoice] = []
    planning: list[TriagedInvoice] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pending(self) -> int:
        return len(self.urgent) + len(self.warning) + len(self.planning)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_until_due(due_date: date | datetime, today: date | datetime) -> int:
    """Whole calendar days from *today* to *due_date*; negative when overdue."""
    return (_as_date(due_date) - _as_date(today)).days


def bucket_for_days(days: int) -> UrgencyBucket:
    if days < 0:
        return "OVERDUE"
    if days <= CRITICAL_WINDOW_DAYS:
        return "CRITICAL"
    # 4, 6-14 and 16+ are deliberately left unclassified
    if days == WARNING_DAYS:
        return "WARNING"
    if days == PLANNING_DAYS:
        return "PLANNING"
    return "NONE"


def classify(invoice: Invoice, today: date | datetime) -> UrgencyBucket:
    if invoice.status != "UNPAID":
        return "NONE"
    return bucket_for_days(days_until_due(invoice.due_date, today))


def triage(invoices: Optional[Iterable[Invoice]], today: date | datetime) -> list[TriagedInvoice]:
    if invoices is None:
        raise ValueError("invoices must not be None")

    results: list[TriagedInvoice] = []
    for invoice in invoices:
        if invoice.status != "UNPAID":
            continue
        days = days_until_due(invoice.due_date, today)
        results.append(TriagedInvoice(invoice=invoice, days_until_due=days, bucket=bucket_for_days(days)))
    return results


def _group(invoices: Optional[Iterable[Invoice]], today: date | datetime) -> TriageGroups:
    groups = TriageGroups()
    for item in triage(invoices, today):
        if item.bucket in ("OVERDUE", "CRITICAL"):
            groups.urgent.append(item)
        elif item.bucket == "WARNING":
            groups.warning.append(item)
        elif item.bucket == "PLANNING":
            groups.planning.append(item)
    return groups


def reminder_panel(invoices: Optional[Iterable[Invoice]], today: date | datetime) -> TriageGroups:
    return _group(invoices, today)


def notification_list(invoices: Optional[Iterable[Invoice]], today: date | datetime) -> TriageGroups:
    return _group(invoices, today)
