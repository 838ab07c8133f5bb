from typing import Optional

from expense_models import Expense, TimelineEntry


TIMELINE_ENTRY_TYPE = "despesa"


def timeline_entry_id(expense_id: str) -> str:
    return f"doc-timeline-{expense_id}"


def derive_timeline_entry_from_expense(
    expense: Expense,
    existing_entry: Optional[TimelineEntry] = None,
) -> Optional[TimelineEntry]:
    # sem vencimento não há onde pôr a entrada; a existente fica intacta
    if not expense.due_date:
        return existing_entry

    return TimelineEntry(
        id=existing_entry.id if existing_entry else timeline_entry_id(expense.id),
        date=expense.due_date,
        type=TIMELINE_ENTRY_TYPE,
        description=existing_entry.description if existing_entry and existing_entry.description else expense.description,
        amount=expense.amount,
        currency=expense.currency,
        linked_expense_id=expense.id,
    )
