from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterable, Optional

import requests
from google.cloud import secretmanager
from pydantic import ValidationError

from govflow.models import ImportCandidate, Invoice, SupplierPayload
from govflow.parse_utils import normalize_status, parse_date, parse_money

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"
logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    pass


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


def _get_api_key() -> str:
    secret_name = _get_env("GEMINI_API_KEY_SECRET")
    if secret_name:
        client = secretmanager.SecretManagerServiceClient()
        version = client.access_secret_version(name=f"{secret_name}/versions/latest")
        return version.payload.data.decode("utf-8").strip()
    api_key = _get_env("GEMINI_API_KEY")
    if not api_key:
        raise ExtractionError("Missing GEMINI_API_KEY")
    return api_key


def _model() -> str:
    return _get_env("GEMINI_MODEL") or DEFAULT_MODEL


_STRING = {"type": "STRING", "nullable": True}

_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "budget_unit": _STRING,
            "supplier": _STRING,
            "commitment_number": _STRING,
            "invoice_number": _STRING,
            "amount": {"type": "NUMBER", "nullable": True},
            "due_date": _STRING,
            "payment_date": _STRING,
            "status": _STRING,
            "supplier_tax_id": _STRING,
            "supplier_legal_name": _STRING,
            "supplier_trade_name": _STRING,
        },
        "required": ["budget_unit", "supplier", "amount"],
    },
}

_EXTRACTION_PROMPT = """Você é um Analista de Dados Governamentais especializado em Notas Fiscais.
Abaixo está um conteúdo que pode ser um texto colado, um CSV de planilha, o texto de um PDF
ou o conteúdo bruto de um XML de NFe (Nota Fiscal Eletrônica).

INSTRUÇÕES:
1. Extraia os dados para um array JSON estruturado, um objeto por nota fiscal.
2. budget_unit é a SECRETARIA (destinatário), supplier é o FORNECEDOR (emitente),
   commitment_number é a NE (nota de empenho), invoice_number é a NF.
3. No caso de XML NFe: <xNome> do <emit> é o fornecedor, <CNPJ> do <emit> é supplier_tax_id,
   <xNome> do <dest> é a secretaria, <nNF> é a NF, <vNF> é o valor e <dhEmi> é a data base do vencimento.
4. amount deve ser numérico; due_date e payment_date no formato YYYY-MM-DD.
5. status deve ser PAGO, NÃO PAGO ou CANCELADO.

CONTEÚDO PARA ANÁLISE:
"""

_INSIGHTS_PROMPT = """Atue como um Especialista em Gestão de Finanças Públicas. Analise estes dados de
notas fiscais e forneça um breve resumo executivo (máximo 3 parágrafos) com pontos de atenção sobre
fluxo de caixa, secretarias mais onerosas e sugestões de governança.

Dados: """

# Portuguese column names show up when the model echoes spreadsheet headers
_ALIASES = {
    "secretaria": "budget_unit",
    "fornecedor": "supplier",
    "ne": "commitment_number",
    "nf": "invoice_number",
    "valor": "amount",
    "vcto": "due_date",
    "pgto": "payment_date",
    "situacao": "status",
    "cnpj": "supplier_tax_id",
    "razaoSocial": "supplier_legal_name",
    "nomeFantasia": "supplier_trade_name",
}


def _generate(prompt: str, response_schema: Optional[Dict[str, Any]] = None) -> str:
    payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
    if response_schema is not None:
        payload["generationConfig"] = {
            "responseMimeType": "application/json",
            "responseSchema": response_schema,
        }

    try:
        resp = requests.post(
            f"{GEMINI_API_BASE}/models/{_model()}:generateContent",
            json=payload,
            headers={"x-goog-api-key": _get_api_key(), "Content-Type": "application/json"},
            timeout=120,
        )
        resp.raise_for_status()
        data = resp.json()
    except requests.RequestException as exc:
        raise ExtractionError(f"Gemini request failed: {exc}") from exc
    except ValueError as exc:
        raise ExtractionError("Gemini returned a non-JSON envelope") from exc

    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ExtractionError(f"Unexpected Gemini response: {str(data)[:500]}") from exc
    return "".join(part.get("text", "") for part in parts)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def candidate_from_raw(item: Dict[str, Any]) -> ImportCandidate:
    """Map one extracted JSON object onto an ImportCandidate, normalizing loose values."""
    item = {_ALIASES.get(key, key): value for key, value in item.items()}

    supplier_data = None
    tax_id = _clean(item.get("supplier_tax_id"))
    if tax_id:
        supplier_data = SupplierPayload(
            tax_id=tax_id,
            legal_name=_clean(item.get("supplier_legal_name")),
            trade_name=_clean(item.get("supplier_trade_name")) or _clean(item.get("supplier")),
        )

    amount = parse_money(item.get("amount"))
    return ImportCandidate(
        budget_unit=_clean(item.get("budget_unit")),
        supplier=_clean(item.get("supplier")),
        commitment_number=_clean(item.get("commitment_number")),
        invoice_number=_clean(item.get("invoice_number")),
        amount=amount if amount is not None and amount >= 0 else None,
        due_date=parse_date(_clean(item.get("due_date"))),
        payment_date=parse_date(_clean(item.get("payment_date"))),
        status=normalize_status(_clean(item.get("status"))),
        supplier_data=supplier_data,
    )


def parse_extraction_response(text: str) -> list[ImportCandidate]:
    try:
        items = json.loads(text)
    except ValueError:
        logger.error("Gemini response was not valid JSON: %s", text[:500])
        return []
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        logger.error("Gemini response was not a JSON array")
        return []

    candidates: list[ImportCandidate] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("Skipping extracted item %d: not an object", index)
            continue
        try:
            candidates.append(candidate_from_raw(item))
        except ValidationError as exc:
            logger.warning("Skipping extracted item %d: %s", index, exc)
    return candidates


def extract_candidates(raw_text: str) -> list[ImportCandidate]:
    """Ask the model to turn free text, CSV or XML into import candidates."""
    if not raw_text or not raw_text.strip():
        return []
    text = _generate(_EXTRACTION_PROMPT + raw_text, _RESPONSE_SCHEMA)
    candidates = parse_extraction_response(text)
    logger.info("Extracted %d candidate invoices", len(candidates))
    return candidates


def generate_financial_insights(invoices: Iterable[Invoice]) -> str:
    summary = [
        {
            "sec": invoice.budget_unit,
            "val": invoice.amount,
            "sit": invoice.status,
            "vcto": invoice.due_date.isoformat(),
        }
        for invoice in invoices
    ]
    return _generate(_INSIGHTS_PROMPT + json.dumps(summary, ensure_ascii=False)).strip()
