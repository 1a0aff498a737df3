"""Import workflow: extract candidates, reconcile them, persist the result.

Failures are recorded in the import error log before being raised as
:class:`ImportFailed`, so the error log view shows every failed batch.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Literal, Optional

from pydantic import BaseModel

from govflow.documents import UnsupportedDocument, document_text
from govflow.extraction import ExtractionError, extract_candidates
from govflow.models import ImportCandidate, ImportErrorLog, ImportErrorType, Invoice, Supplier, User
from govflow.nfe import NFeParseError, looks_like_nfe, parse_nfe
from govflow.parse_utils import format_currency, format_date_br
from govflow.reconcile import new_id, reconcile_import
from govflow.storage import DataService

logger = logging.getLogger(__name__)

Extractor = Callable[[str], list[ImportCandidate]]


class ImportFailed(RuntimeError):
    def __init__(self, log: ImportErrorLog) -> None:
        super().__init__(log.details)
        self.log = log


class AIDisabledError(RuntimeError):
    pass


class ImportResult(BaseModel):
    source: Literal["nfe", "ai"]
    invoices: list[Invoice]
    new_suppliers: list[Supplier]
    new_supplier_count: int


def _fail(
    service: DataService,
    error_type: ImportErrorType,
    details: str,
    file_name: str,
    actor: Optional[User],
) -> ImportFailed:
    log = ImportErrorLog(
        id=new_id(),
        date=datetime.now(),
        file_name=file_name,
        error_type=error_type,
        details=details,
        user_email=actor.email if actor else "",
    )
    logger.warning("Import of %s failed (%s): %s", file_name, error_type, details)
    service.save_import_error(log)
    return ImportFailed(log)


def ai_enabled(service: DataService) -> bool:
    return service.get_setting("ai_enabled", "true").strip().lower() in {"1", "true", "yes", "on"}


def import_text(
    service: DataService,
    raw_text: str,
    actor: Optional[User] = None,
    *,
    file_name: str = "texto colado",
    extractor: Optional[Extractor] = None,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> ImportResult:
    if not raw_text or not raw_text.strip():
        raise _fail(service, "INVALID_FORMAT", "Conteúdo vazio", file_name, actor)

    source: Literal["nfe", "ai"]
    if looks_like_nfe(raw_text):
        source = "nfe"
        try:
            candidates = parse_nfe(raw_text)
        except NFeParseError as exc:
            raise _fail(service, "INVALID_FORMAT", str(exc), file_name, actor) from exc
    else:
        source = "ai"
        if not ai_enabled(service):
            raise AIDisabledError("AI import is disabled in the system settings")
        try:
            candidates = (extractor or extract_candidates)(raw_text)
        except ExtractionError as exc:
            raise _fail(service, "AI_FAILURE", str(exc), file_name, actor) from exc

    if not candidates:
        raise _fail(service, "INVALID_FORMAT", "Nenhuma nota fiscal identificada no conteúdo", file_name, actor)

    result = reconcile_import(candidates, service.list_suppliers(), actor, today=today, now=now)

    if not dry_run:
        try:
            for supplier in result.new_suppliers:
                service.save_supplier(supplier)
            for invoice in result.invoices:
                service.save_invoice(invoice)
        except OSError as exc:
            raise _fail(service, "SYSTEM", f"Falha ao gravar importação: {exc}", file_name, actor) from exc

    logger.info(
        "Imported %d invoices from %s (%s), %d new suppliers",
        len(result.invoices),
        file_name,
        source,
        result.new_supplier_count,
    )
    return ImportResult(
        source=source,
        invoices=result.invoices,
        new_suppliers=result.new_suppliers,
        new_supplier_count=result.new_supplier_count,
    )


def import_summary(result: ImportResult) -> dict:
    """Human-readable digest of an import, with amounts and dates in Brazilian notation."""
    return {
        "source": result.source,
        "imported": len(result.invoices),
        "total_amount": format_currency(sum(i.amount for i in result.invoices)),
        "new_supplier_count": result.new_supplier_count,
        "new_suppliers": [s.legal_name for s in result.new_suppliers],
        "invoices": [
            {
                "nf": i.invoice_number,
                "supplier": i.supplier,
                "amount": format_currency(i.amount),
                "due_date": format_date_br(i.due_date),
                "payment_date": format_date_br(i.payment_date),
            }
            for i in result.invoices
        ],
    }


def import_document(
    service: DataService,
    raw: bytes,
    actor: Optional[User] = None,
    *,
    file_name: str = "upload",
    content_type: Optional[str] = None,
    extractor: Optional[Extractor] = None,
    dry_run: bool = False,
) -> ImportResult:
    try:
        text = document_text(raw, file_name=file_name, content_type=content_type)
    except UnsupportedDocument as exc:
        raise _fail(service, "INVALID_FORMAT", str(exc), file_name, actor) from exc
    except RuntimeError as exc:
        raise _fail(service, "SYSTEM", str(exc), file_name, actor) from exc
    return import_text(service, text, actor, file_name=file_name, extractor=extractor, dry_run=dry_run)
