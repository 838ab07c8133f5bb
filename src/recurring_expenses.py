import math
from datetime import datetime, timezone
from typing import Optional

from dedup_keys import build_expense_id, build_recurring_expense_key
from expense_models import DocumentMetadata, Expense, RecurringExpenseCandidate
from identifiers import normalize_identifier


RECURRING_CATEGORY = "Despesas Fixas"
RECURRING_STATUS = "em-analise"
MIN_MONTHS_OBSERVED = 2
MAX_DUE_DAY = 28


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_iso_utc(value: datetime) -> str:
    """Formato de toISOString: 2024-06-12T00:00:00.000Z"""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _add_month(year: int, month: int):
    return (year + 1, 1) if month == 12 else (year, month + 1)


def compute_next_due_date(
    day_of_month: Optional[float],
    reference_iso: Optional[str] = None,
    existing_due_date: Optional[str] = None,
) -> Optional[str]:
    """Próximo vencimento a partir do dia do mês observado no extracto.

    O dia é limitado a 1..28 para existir em todos os meses. Se a data no mês
    de referência já passou (ou é a própria referência), avança um mês.
    """
    if existing_due_date:
        return existing_due_date

    if reference_iso:
        reference = parse_iso_datetime(reference_iso)
        if reference is None:
            return None
    else:
        reference = datetime.now(timezone.utc)

    safe_day = None
    if isinstance(day_of_month, (int, float)) and not isinstance(day_of_month, bool) and math.isfinite(day_of_month):
        safe_day = min(max(int(round(day_of_month)), 1), MAX_DUE_DAY)
    day = safe_day if safe_day is not None else min(reference.day, MAX_DUE_DAY)

    candidate = datetime(reference.year, reference.month, day, tzinfo=timezone.utc)
    if candidate <= reference:
        year, month = _add_month(reference.year, reference.month)
        candidate = candidate.replace(year=year, month=month)
    return to_iso_utc(candidate)


def build_recurring_expense_id(document_id: str, description: str) -> str:
    doc_segment = normalize_identifier(document_id)[-12:] or "doc"
    description_segment = normalize_identifier(description)[:24] or "item"
    return f"doc-exp-{doc_segment}-{description_segment}"


def recurring_expense_id(candidate: RecurringExpenseCandidate, document: DocumentMetadata) -> str:
    key = build_recurring_expense_key(candidate, document)
    if key:
        return build_expense_id("exp", key)
    return build_recurring_expense_id(document.id, candidate.description)


def build_recurring_expense(
    candidate: RecurringExpenseCandidate,
    document: DocumentMetadata,
    account_id: str,
    existing_expense: Optional[Expense] = None,
) -> Optional[Expense]:
    """Materializa uma despesa fixa detetada num extracto.

    Só se considera recorrente com pelo menos dois meses observados.
    """
    months = [m for m in (candidate.months_observed or []) if m]
    if len(months) < MIN_MONTHS_OBSERVED:
        return existing_expense

    amount = None
    avg = candidate.average_amount
    if isinstance(avg, (int, float)) and not isinstance(avg, bool) and math.isfinite(avg):
        amount = float(avg)
    elif existing_expense is not None:
        amount = existing_expense.amount
    if amount is None:
        return existing_expense

    due_date = compute_next_due_date(
        candidate.day_of_month,
        document.upload_date,
        existing_expense.due_date if existing_expense else None,
    )
    key = build_recurring_expense_key(candidate, document)

    return Expense(
        id=existing_expense.id if existing_expense else recurring_expense_id(candidate, document),
        document_id=document.id,
        account_id=account_id,
        description=existing_expense.description if existing_expense else candidate.description,
        category=existing_expense.category if existing_expense else RECURRING_CATEGORY,
        amount=amount,
        currency=candidate.currency or document.currency or (existing_expense.currency if existing_expense else None) or "EUR",
        due_date=due_date or document.due_date or (existing_expense.due_date if existing_expense else None) or document.upload_date,
        recurrence="mensal",
        fixed=True,
        status=existing_expense.status if existing_expense else RECURRING_STATUS,
        supplier_id=existing_expense.supplier_id if existing_expense else None,
        deduplication_key=(existing_expense.deduplication_key if existing_expense else None) or key,
    )
