# govflow/nfe.py
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Optional

from govflow.models import ImportCandidate, SupplierPayload
from govflow.parse_utils import parse_date, parse_money


# Nota de empenho numbers look like 2023NE000123
_COMMITMENT_RE = re.compile(r"\b(\d{4}\s*NE\s*\d+)\b", re.IGNORECASE)


class NFeParseError(ValueError):
    pass


def looks_like_nfe(text: str) -> bool:
    head = (text or "").lstrip()[:4000]
    if not head.startswith("<"):
        return False
    return "portalfiscal.inf.br/nfe" in head or "<infNFe" in head or "<nfeProc" in head


def _find(node: Optional[ET.Element], path: str) -> Optional[str]:
    if node is None:
        return None
    # {*} matches the NFe namespace as well as un-namespaced exports
    found = node.find("/".join(f"{{*}}{part}" for part in path.split("/")))
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def _child(node: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if node is None:
        return None
    return node.find(f"{{*}}{name}")


def _address(emit: Optional[ET.Element]) -> Optional[str]:
    street = _find(emit, "enderEmit/xLgr")
    number = _find(emit, "enderEmit/nro")
    if not street:
        return None
    return f"{street}, {number}" if number else street


def _parse_inf_nfe(inf: ET.Element) -> ImportCandidate:
    ide = _child(inf, "ide")
    emit = _child(inf, "emit")
    dest = _child(inf, "dest")

    due_raw = _find(inf, "cobr/dup/dVenc") or _find(ide, "dhEmi") or _find(ide, "dEmi")

    commitment = None
    complement = _find(inf, "infAdic/infCpl")
    if complement:
        match = _COMMITMENT_RE.search(complement)
        if match:
            commitment = re.sub(r"\s+", "", match.group(1)).upper()

    tax_id = _find(emit, "CNPJ") or _find(emit, "CPF")
    supplier_name = _find(emit, "xNome")
    supplier_data = None
    if tax_id:
        supplier_data = SupplierPayload(
            tax_id=tax_id,
            legal_name=supplier_name,
            trade_name=_find(emit, "xFant"),
            phone=_find(emit, "enderEmit/fone"),
            address=_address(emit),
            city=_find(emit, "enderEmit/xMun"),
            state=_find(emit, "enderEmit/UF"),
        )

    return ImportCandidate(
        budget_unit=_find(dest, "xNome"),
        supplier=supplier_name,
        commitment_number=commitment,
        invoice_number=_find(ide, "nNF"),
        amount=parse_money(_find(inf, "total/ICMSTot/vNF")),
        due_date=parse_date(due_raw),
        supplier_data=supplier_data,
    )


def parse_nfe(text: str) -> list[ImportCandidate]:
    """Parse an NFe XML document (nfeProc, NFe or a wrapper holding several)."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as exc:
        raise NFeParseError(f"Invalid NFe XML: {exc}") from exc

    nodes = [el for el in root.iter() if el.tag.rsplit("}", 1)[-1] == "infNFe"]
    if not nodes:
        raise NFeParseError("No infNFe element found")
    return [_parse_inf_nfe(node) for node in nodes]
