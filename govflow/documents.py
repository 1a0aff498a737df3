from __future__ import annotations

from io import BytesIO
from typing import Optional

import pdfplumber


class UnsupportedDocument(ValueError):
    pass


def extract_text_from_image(image_bytes: bytes) -> str:
    """OCR a photographed or scanned DANFE through Cloud Vision."""
    from google.cloud import vision  # type: ignore[import]

    response = vision.ImageAnnotatorClient().document_text_detection(
        image=vision.Image(content=image_bytes)
    )
    if response.error.message:
        raise RuntimeError(f"Falha no OCR do documento: {response.error.message}")
    return (response.full_text_annotation.text or "").strip()


def extract_text_from_pdf(pdf_bytes: bytes) -> str:
    # Only the text layer; a scanned PDF comes back empty and is rejected as an empty import
    if not pdf_bytes:
        return ""
    with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
        pages = [(page.extract_text() or "").replace("\u00a0", " ").strip() for page in pdf.pages]
    return "\n\n".join(page for page in pages if page)


def decode_text(raw: bytes) -> str:
    # NFe XML from older emitters is often latin-1
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _kind(file_name: str, content_type: Optional[str], raw: bytes) -> str:
    name = (file_name or "").lower()
    ctype = (content_type or "").split(";", 1)[0].strip().lower()

    if raw.startswith(b"%PDF") or ctype == "application/pdf" or name.endswith(".pdf"):
        return "pdf"
    if ctype.startswith("image/") or name.endswith((".png", ".jpg", ".jpeg", ".tif", ".tiff")):
        return "image"
    if ctype.startswith("text/") or ctype in {"application/xml", "application/json", "text/csv", ""}:
        return "text"
    if name.endswith((".xml", ".csv", ".txt", ".tsv")):
        return "text"
    return "unknown"


def document_text(raw: bytes, file_name: str = "", content_type: Optional[str] = None) -> str:
    """Turn an uploaded document (PDF, image, XML, CSV or plain text) into text."""
    kind = _kind(file_name, content_type, raw)
    if kind == "pdf":
        return extract_text_from_pdf(raw)
    if kind == "image":
        return extract_text_from_image(raw)
    if kind == "text":
        return decode_text(raw)
    raise UnsupportedDocument(f"Unsupported document type: {content_type or file_name}")
