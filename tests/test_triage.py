"""Tests for the due-date triage engine."""

from datetime import date, datetime, timedelta

import pytest

from govflow.models import Invoice
from govflow.triage import (
    bucket_for_days,
    classify,
    days_until_due,
    notification_list,
    reminder_panel,
    triage,
)

TODAY = date(2026, 3, 10)


def _invoice(offset: int, status: str = "UNPAID", invoice_id: str = "inv") -> Invoice:
    due = TODAY + timedelta(days=offset)
    return Invoice(
        id=invoice_id,
        budget_unit="SAÚDE",
        supplier="MED CORP",
        invoice_number="10293",
        amount=100.0,
        due_date=due,
        payment_date=TODAY if status == "PAID" else None,
        status=status,
    )


def _ids(items) -> list[str]:
    return [item.invoice.id for item in items]


# ---------------------------------------------------------------------------
# days_until_due
# ---------------------------------------------------------------------------

def test_days_until_due_future():
    assert days_until_due(date(2026, 3, 15), TODAY) == 5


def test_days_until_due_today():
    assert days_until_due(TODAY, TODAY) == 0


def test_days_until_due_overdue():
    assert days_until_due(date(2026, 3, 1), TODAY) == -9


def test_days_until_due_ignores_time_of_day():
    late_today = datetime(2026, 3, 10, 23, 59, 59)
    early_due = datetime(2026, 3, 11, 0, 0, 1)
    assert days_until_due(early_due, late_today) == 1
    assert days_until_due(datetime(2026, 3, 10, 8, 0), datetime(2026, 3, 10, 18, 0)) == 0


def test_days_until_due_across_month_boundary():
    assert days_until_due(date(2026, 4, 1), date(2026, 3, 31)) == 1


# ---------------------------------------------------------------------------
# bucket boundaries
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "offset, expected",
    [
        (-30, "OVERDUE"),
        (-1, "OVERDUE"),
        (0, "CRITICAL"),
        (3, "CRITICAL"),
        (4, "NONE"),
        (5, "WARNING"),
        (6, "NONE"),
        (14, "NONE"),
        (15, "PLANNING"),
        (16, "NONE"),
        (90, "NONE"),
    ],
)
def test_bucket_boundaries(offset, expected):
    assert bucket_for_days(offset) == expected
    assert classify(_invoice(offset), TODAY) == expected


@pytest.mark.parametrize("status", ["PAID", "CANCELLED"])
@pytest.mark.parametrize("offset", [-5, 0, 3, 5, 15])
def test_paid_and_cancelled_are_never_classified(status, offset):
    assert classify(_invoice(offset, status=status), TODAY) == "NONE"


def test_same_due_date_same_bucket_regardless_of_other_fields():
    a = _invoice(5, invoice_id="a")
    b = a.model_copy(update={"id": "b", "amount": 99999.0, "supplier": "OUTRO"})
    assert classify(a, TODAY) == classify(b, TODAY) == "WARNING"


# ---------------------------------------------------------------------------
# triage / grouping
# ---------------------------------------------------------------------------

def test_triage_keeps_input_order_and_skips_non_unpaid():
    invoices = [
        _invoice(15, invoice_id="p"),
        _invoice(0, status="PAID", invoice_id="paid"),
        _invoice(-2, invoice_id="o"),
        _invoice(8, invoice_id="gap"),
    ]
    results = triage(invoices, TODAY)
    assert _ids(results) == ["p", "o", "gap"]
    assert [r.days_until_due for r in results] == [15, -2, 8]
    assert [r.bucket for r in results] == ["PLANNING", "OVERDUE", "NONE"]


def test_triage_rejects_none():
    with pytest.raises(ValueError):
        triage(None, TODAY)


def test_reminder_panel_groups():
    invoices = [
        _invoice(-1, invoice_id="overdue"),
        _invoice(2, invoice_id="critical"),
        _invoice(4, invoice_id="gap4"),
        _invoice(5, invoice_id="warning"),
        _invoice(10, invoice_id="gap10"),
        _invoice(15, invoice_id="planning"),
        _invoice(1, status="CANCELLED", invoice_id="cancelled"),
    ]
    groups = reminder_panel(invoices, TODAY)
    assert _ids(groups.urgent) == ["overdue", "critical"]
    assert _ids(groups.warning) == ["warning"]
    assert _ids(groups.planning) == ["planning"]
    assert groups.total_pending == 4


def test_reminder_panel_and_notifications_agree():
    invoices = [_invoice(offset, invoice_id=str(offset)) for offset in range(-3, 20)]
    panel = reminder_panel(invoices, TODAY)
    bell = notification_list(invoices, TODAY)
    assert _ids(panel.urgent) == _ids(bell.urgent)
    assert _ids(panel.warning) == _ids(bell.warning)
    assert _ids(panel.planning) == _ids(bell.planning)
    assert panel.total_pending == bell.total_pending == 7 + 1 + 1


def test_total_pending_in_serialized_groups():
    dumped = notification_list([_invoice(0)], TODAY).model_dump(mode="json")
    assert dumped["total_pending"] == 1


# ---------------------------------------------------------------------------
# End-to-end: warning invoice then marked paid
# ---------------------------------------------------------------------------

class TestWarningInvoiceLifecycle:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.invoice = _invoice(5, invoice_id="nf-5")

    def test_unpaid_only_in_warning(self):
        groups = notification_list([self.invoice], TODAY)
        assert _ids(groups.warning) == ["nf-5"]
        assert groups.urgent == []
        assert groups.planning == []

    def test_paid_appears_nowhere(self):
        paid = self.invoice.model_copy(update={"status": "PAID", "payment_date": TODAY})
        groups = reminder_panel([paid], TODAY)
        assert groups.total_pending == 0
