"""Tests for the shared money/date/tax-id helpers in parse_utils."""

from datetime import date, datetime

from govflow.parse_utils import (
    digits_only,
    format_currency,
    format_date_br,
    normalize_status,
    parse_date,
    parse_money,
)


# ---------------------------------------------------------------------------
# parse_money
# ---------------------------------------------------------------------------

def test_parse_money_brazilian():
    assert parse_money("1.234,56") == 1234.56


def test_parse_money_with_real_symbol():
    assert parse_money("R$ 25.000,50") == 25000.50


def test_parse_money_plain_decimal_point():
    assert parse_money("1,466.93") == 1466.93


def test_parse_money_decimal_comma_only():
    assert parse_money("118,09") == 118.09


def test_parse_money_thousands_dot_only():
    assert parse_money("150.000") == 150000.0


def test_parse_money_number_passthrough():
    assert parse_money(42) == 42.0


def test_parse_money_none():
    assert parse_money(None) is None


def test_parse_money_garbage():
    assert parse_money("sem valor") is None


# ---------------------------------------------------------------------------
# parse_date
# ---------------------------------------------------------------------------

def test_parse_date_dd_mm_yyyy():
    d = parse_date("03/02/2026")
    assert d == date(2026, 2, 3)


def test_parse_date_iso_is_not_day_first():
    assert parse_date("2026-02-03") == date(2026, 2, 3)


def test_parse_date_nfe_timestamp():
    assert parse_date("2024-03-10T10:15:00-03:00") == date(2024, 3, 10)


def test_parse_date_datetime_input():
    assert parse_date(datetime(2026, 5, 1, 23, 59)) == date(2026, 5, 1)


def test_parse_date_none():
    assert parse_date(None) is None


def test_parse_date_blank():
    assert parse_date("   ") is None


def test_parse_date_invalid():
    assert parse_date("not a date") is None


# ---------------------------------------------------------------------------
# digits_only / normalize_status
# ---------------------------------------------------------------------------

def test_digits_only_cnpj():
    assert digits_only("12.345.678/0001-99") == "12345678000199"


def test_digits_only_none():
    assert digits_only(None) == ""


def test_normalize_status_portuguese_labels():
    assert normalize_status("PAGO") == "PAID"
    assert normalize_status("não pago") == "UNPAID"
    assert normalize_status("NAO  PAGO") == "UNPAID"
    assert normalize_status("Cancelado") == "CANCELLED"


def test_normalize_status_unknown():
    assert normalize_status("talvez") is None
    assert normalize_status(None) is None


# ---------------------------------------------------------------------------
# formatting
# ---------------------------------------------------------------------------

def test_format_currency():
    assert format_currency(25000.5) == "R$ 25.000,50"


def test_format_date_br():
    assert format_date_br(date(2026, 2, 3)) == "03/02/2026"
    assert format_date_br(None) == "-"
