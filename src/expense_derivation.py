from typing import Optional, Sequence

from account_resolver import resolve_account_id
from dedup_keys import build_document_expense_key, build_expense_id
from expense_models import Account, DocumentMetadata, Expense
from identifiers import humanize_document_name


DEFAULT_CATEGORY = "Outros"
DEFAULT_CURRENCY = "EUR"
DEFAULT_STATUS = "planeado"
EXPENSE_ID_PREFIX = "exp"


def fallback_expense_id(document_id: str) -> str:
    return f"doc-exp-{document_id}"


def _first_present(*values):
    for value in values:
        if value is not None:
            return value
    return None


def derive_expense_from_document(
    metadata: DocumentMetadata,
    accounts: Sequence[Account],
    existing_expense: Optional[Expense] = None,
    supplier_id_override: Optional[str] = None,
) -> Optional[Expense]:
    """Cria ou atualiza a despesa associada a um documento extraído.

    Campos presentes nos metadados substituem os da despesa existente; os
    ausentes são preservados. Sem conta resolvida não há despesa nova.

    Returns:
        Expense, a despesa existente inalterada, ou None quando faltam dados.
    """
    existing = existing_expense
    account_id = resolve_account_id(metadata.account_hint, accounts, existing.account_id if existing else None)
    amount = _first_present(metadata.amount, existing.amount if existing else None)
    due_date = _first_present(metadata.due_date, existing.due_date if existing else None, metadata.upload_date)

    # uma chave já atribuída tem prioridade sobre a recalculada
    dedup_key = existing.deduplication_key if existing and existing.deduplication_key else None
    if dedup_key is None:
        dedup_key = build_document_expense_key(metadata)

    if existing is None and (amount is None or not metadata.due_date):
        return None
    if not account_id:
        return existing
    if amount is None:
        return existing

    if existing is not None and existing.id:
        expense_id = existing.id
    elif dedup_key:
        expense_id = build_expense_id(EXPENSE_ID_PREFIX, dedup_key)
    else:
        expense_id = fallback_expense_id(metadata.id)

    return Expense(
        id=expense_id,
        document_id=metadata.id,
        account_id=account_id,
        description=_first_present(
            existing.description if existing else None,
            metadata.company_name,
            humanize_document_name(metadata.original_name),
        ),
        category=_first_present(existing.category if existing else None, metadata.expense_type, DEFAULT_CATEGORY),
        amount=amount,
        currency=_first_present(metadata.currency, existing.currency if existing else None, DEFAULT_CURRENCY),
        due_date=due_date,
        recurrence=existing.recurrence if existing else None,
        fixed=_first_present(existing.fixed if existing else None, True),
        status=_first_present(existing.status if existing else None, DEFAULT_STATUS),
        supplier_id=_first_present(supplier_id_override, metadata.supplier_id, existing.supplier_id if existing else None),
        deduplication_key=dedup_key,
    )
