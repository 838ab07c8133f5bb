"""
Extração local (sem OpenAI) de metadados de um PDF.

Heurísticas simples sobre o texto do documento: maior valor com moeda, primeira
data ISO ou europeia, tipo de documento por palavras-chave e pista de conta
(IBAN, contexto indicado pelo utilizador ou "conta ...").
"""

import io
import re
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

import pdfplumber

from expense_models import DocumentExtraction
from extraction_parser import normalize_account_hint
from recurring_expenses import to_iso_utc


LOCAL_NOTES_PREFIX = "Extraído localmente"
NOTES_PREVIEW_WORDS = 20

_AMOUNT = r"(?P<amount>\d{1,3}(?:[.\s]\d{3})*(?:[,.]\d{2})?|\d+(?:[,.]\d{2})?)"
_CURRENCY = r"(?:(?P<symbol>€)|\b(?P<code>[A-Z]{3})\b)"
_LEADING_AMOUNT_RE = re.compile(_CURRENCY + r"\s*" + _AMOUNT)
_TRAILING_AMOUNT_RE = re.compile(_AMOUNT + r"\s*" + _CURRENCY)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_EUROPEAN_DATE_RE = re.compile(r"\b(\d{1,2})[/.-](\d{1,2})[/.-](\d{2,4})\b")
_IBAN_RE = re.compile(r"\b([A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{0,16})\b")
_ACCOUNT_LABEL_RE = re.compile(r"conta[\s:]+([\w-]+)", re.IGNORECASE)
_THOUSANDS_DOT_RE = re.compile(r"\.(?=\d{3}(?:[.,]|$))")


def _parse_amount(value: str) -> Optional[float]:
    cleaned = _THOUSANDS_DOT_RE.sub("", re.sub(r"\s", "", value)).replace(",", ".", 1)
    try:
        return float(cleaned)
    except ValueError:
        return None


def find_amount(text: str) -> Optional[Tuple[float, Optional[str]]]:
    """Maior valor acompanhado de moeda (símbolo antes ou depois)."""
    best = None
    for pattern in (_LEADING_AMOUNT_RE, _TRAILING_AMOUNT_RE):
        for match in pattern.finditer(text):
            value = _parse_amount(match.group("amount"))
            if value is None:
                continue
            currency = match.group("code") or ("EUR" if match.group("symbol") else None)
            if best is None or value > best[0]:
                best = (value, currency)
    return best


def _iso_midnight(year: int, month: int, day: int) -> Optional[str]:
    try:
        return to_iso_utc(datetime(year, month, day, tzinfo=timezone.utc))
    except ValueError:
        return None


def find_due_date(text: str) -> Optional[str]:
    iso = _ISO_DATE_RE.search(text)
    if iso:
        return _iso_midnight(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    european = _EUROPEAN_DATE_RE.search(text)
    if european:
        day, month, year = european.groups()
        full_year = int(f"20{year}") if len(year) == 2 else int(year)
        return _iso_midnight(full_year, int(month), int(day))
    return None


def detect_source_type(text: str) -> str:
    lower = text.lower()
    if "extracto" in lower or "extrato" in lower or "statement" in lower:
        return "extracto"
    if "recibo" in lower or "receipt" in lower:
        return "recibo"
    return "fatura"


def find_account_hint(text: str, account_context: Optional[str] = None) -> Optional[str]:
    iban = _IBAN_RE.search(text)
    if iban:
        return iban.group(1)
    if account_context and account_context.lower() in text.lower():
        return account_context
    label = _ACCOUNT_LABEL_RE.search(text)
    if label:
        return label.group(1)
    return None


def build_local_notes(extraction: DocumentExtraction, text: str) -> str:
    summary = [LOCAL_NOTES_PREFIX]
    if not extraction.amount:
        summary.append("valor por identificar")
    if not extraction.due_date:
        summary.append("data não encontrada")
    if text:
        preview = " ".join(text.split()[:NOTES_PREVIEW_WORDS])
        summary.append(f'trecho: "{preview}…"')
    return " · ".join(summary)


def infer_metadata_from_text(text: str, account_context: Optional[str] = None) -> DocumentExtraction:
    amount = find_amount(text)
    extraction = DocumentExtraction(
        source_type=detect_source_type(text),
        amount=amount[0] if amount else None,
        currency=amount[1] if amount else None,
        due_date=find_due_date(text),
        account_hint=normalize_account_hint(find_account_hint(text, account_context)),
    )
    extraction.notes = build_local_notes(extraction, text)
    return extraction


def extract_pdf_text(source: Union[str, bytes]) -> str:
    """Texto de todas as páginas, uma linha por página."""
    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    with pdfplumber.open(handle) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def extract_metadata_locally(source: Union[str, bytes], account_context: Optional[str] = None) -> DocumentExtraction:
    return infer_metadata_from_text(extract_pdf_text(source), account_context)
