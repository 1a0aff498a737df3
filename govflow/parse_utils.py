from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

from govflow.models import InvoiceStatus


_MONEY_RE = re.compile(r"-?[\d.,]*\d")
_NON_DIGIT_RE = re.compile(r"\D")


def parse_money(value: str | float | int | None) -> Optional[float]:
    """Parse an amount written in Brazilian ("1.234,56") or plain ("1234.56") notation."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = value.strip().replace("R$", "").replace("\u00a0", "").replace(" ", "")
    match = _MONEY_RE.search(cleaned)
    if not match:
        return None

    number = match.group(0)
    if "," in number and "." in number:
        # whichever separator comes last is the decimal one
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        number = number.replace(",", ".") if re.search(r",\d{1,2}$", number) else number.replace(",", "")
    elif number.count(".") > 1 or re.search(r"^-?\d{1,3}\.\d{3}$", number):
        number = number.replace(".", "")

    try:
        return float(number)
    except ValueError:
        return None


def parse_date(value: str | date | None, dayfirst: bool = True) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    cleaned = value.strip()
    if not cleaned:
        return None

    if re.match(r"^\d{4}-\d{2}-\d{2}", cleaned):
        # ISO dates (and NFe dhEmi timestamps) are never day-first
        dayfirst = False

    try:
        parsed = date_parser.parse(cleaned, dayfirst=dayfirst)
    except (ValueError, TypeError, OverflowError):
        return None

    return parsed.date()


def digits_only(value: str | None) -> str:
    return _NON_DIGIT_RE.sub("", value or "")


_STATUS_ALIASES: dict[str, InvoiceStatus] = {
    "PAID": "PAID",
    "PAGO": "PAID",
    "PAGA": "PAID",
    "UNPAID": "UNPAID",
    "NÃO PAGO": "UNPAID",
    "NAO PAGO": "UNPAID",
    "NÃO PAGA": "UNPAID",
    "EM ABERTO": "UNPAID",
    "PENDENTE": "UNPAID",
    "CANCELLED": "CANCELLED",
    "CANCELADO": "CANCELLED",
    "CANCELADA": "CANCELLED",
}


def normalize_status(value: str | None) -> Optional[InvoiceStatus]:
    if not value:
        return None
    return _STATUS_ALIASES.get(" ".join(value.strip().upper().split()))


def format_currency(value: float) -> str:
    """Format as BRL, e.g. ``R$ 25.000,50``."""
    text = f"{abs(value):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-R$ {text}" if value < 0 else f"R$ {text}"


def format_date_br(value: date | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")
