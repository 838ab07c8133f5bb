import math
import re
from typing import Iterable, Optional, Union

from expense_models import DocumentMetadata, RecurringExpenseCandidate
from identifiers import normalize_identifier, strip_accents


Component = Union[str, int, float, None]

KEY_DELIMITER = "|"
_MASK32 = 0xFFFFFFFF
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _normalize_component(value: Component) -> Optional[str]:
    # bool é subclasse de int, mas não é um montante
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return f"{value:.2f}"
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        cleaned = re.sub(r"\s+", " ", trimmed)
        return strip_accents(cleaned).lower()
    return None


def build_deduplication_key(components: Iterable[Component]) -> Optional[str]:
    """Chave composta a partir de campos semânticos normalizados.

    Componentes ausentes são descartados (sem marcador vazio), por isso dois
    documentos que só diferem nos campos opcionais presentes podem colidir.
    """
    segments = [s for s in (_normalize_component(c) for c in components) if s]
    if not segments:
        return None
    return KEY_DELIMITER.join(segments)


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def compute_stable_hash(value: str) -> str:
    """Hash de 53 bits (duas palavras de 32 bits com avalanche) em base 36.

    Os ids gerados são referenciados externamente: não alterar as constantes.
    """
    # unidades UTF-16, como charCodeAt
    encoded = value.encode("utf-16-le")
    units = [int.from_bytes(encoded[i:i + 2], "little") for i in range(0, len(encoded), 2)]
    length = len(units)

    h1 = (0xDEADBEEF ^ length) & _MASK32
    h2 = (0x41C6CE57 ^ length) & _MASK32
    for ch in units:
        h1 = _imul(h1 ^ ch, 2654435761)
        h2 = _imul(h2 ^ ch, 1597334677)

    h1 = _imul(h1 ^ (h1 >> 16), 2246822507)
    h1 ^= _imul(h2 ^ (h2 >> 13), 3266489909)
    h2 = _imul(h2 ^ (h2 >> 16), 2246822507)
    h2 ^= _imul(h1 ^ (h1 >> 13), 3266489909)

    combined = (h2 & 0x1FFFFF) * 4294967296 + (h1 & _MASK32)
    return _to_base36(combined)


def build_expense_id(prefix: str, deduplication_key: str) -> str:
    normalized = normalize_identifier(deduplication_key)
    return f"{prefix}-{compute_stable_hash(normalized or deduplication_key)}"


def build_document_expense_key(metadata: DocumentMetadata) -> Optional[str]:
    return build_deduplication_key([
        metadata.source_type or "fatura",
        metadata.company_name if metadata.company_name is not None else metadata.original_name,
        metadata.amount,
        metadata.currency,
        metadata.due_date,
        metadata.account_hint,
        metadata.supplier_tax_id,
    ])


def build_recurring_expense_key(candidate: RecurringExpenseCandidate, document: DocumentMetadata) -> Optional[str]:
    return build_deduplication_key([
        document.source_type or "extracto",
        document.statement_account_iban if document.statement_account_iban is not None else document.account_hint,
        candidate.description,
        candidate.average_amount,
        candidate.currency,
        candidate.account_hint,
        candidate.day_of_month,
    ])
