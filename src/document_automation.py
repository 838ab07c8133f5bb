import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from account_resolver import find_account_by_hint
from expense_derivation import derive_expense_from_document, fallback_expense_id
from expense_models import Account, DocumentMetadata, Expense, TimelineEntry
from identifiers import normalize_identifier
from recurring_expenses import build_recurring_expense, build_recurring_expense_id, recurring_expense_id
from timeline_derivation import derive_timeline_entry_from_expense, timeline_entry_id


AUTO_ACCOUNT_PREFIX = "acc-auto-"
AUTO_ACCOUNT_STATUS = "validacao-manual"


@dataclass
class ProcessingCallbacks:
    on_account_upsert: Optional[Callable[[Account], None]] = None
    on_expense_upsert: Optional[Callable[[Expense], None]] = None
    on_timeline_upsert: Optional[Callable[[TimelineEntry], None]] = None


@dataclass
class ProcessingResult:
    accounts: List[Account]
    expenses: List[Expense]
    timeline_entries: List[TimelineEntry]
    created_account_ids: List[str] = field(default_factory=list)
    upserted_expense_ids: List[str] = field(default_factory=list)


@dataclass
class EnsuredAccount:
    account: Optional[Account]
    accounts: List[Account]
    created: bool


def build_auto_account_id(base: Optional[str], document_id: str, existing_accounts: List[Account]) -> str:
    base_identifier = normalize_identifier(base or "") or normalize_identifier(document_id) or uuid.uuid4().hex
    trimmed = base_identifier[-24:]
    taken = {a.id for a in existing_accounts}
    candidate = f"{AUTO_ACCOUNT_PREFIX}{trimmed}"
    counter = 1
    while candidate in taken:
        suffix = f"-{counter}"
        counter += 1
        candidate = f"{AUTO_ACCOUNT_PREFIX}{trimmed[:max(4, 24 - len(suffix))]}{suffix}"
    return candidate


def _auto_account_metadata(account_hint: Optional[str], document: DocumentMetadata) -> Dict:
    metadata: Dict = {}
    hints: List[str] = []
    if account_hint:
        metadata["identifier"] = account_hint
        metadata["number"] = account_hint
        metadata["iban"] = account_hint
        hints.append(account_hint)
    for value in (document.company_name, document.original_name):
        if value and value not in hints:
            hints.append(value)
    if hints:
        metadata["hints"] = hints
    return metadata


def ensure_account(
    document: DocumentMetadata,
    existing_accounts: List[Account],
    account_hint: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> EnsuredAccount:
    """Conta para o documento: por pista, depois por nome, senão cria uma por validar."""
    if account_hint:
        matched = find_account_by_hint(account_hint, existing_accounts)
        if matched:
            return EnsuredAccount(matched, existing_accounts, False)

    trimmed_fallback = (fallback_name or "").strip()
    if trimmed_fallback:
        for account in existing_accounts:
            if account.name.lower() == trimmed_fallback.lower():
                return EnsuredAccount(account, existing_accounts, False)

    if trimmed_fallback:
        name = trimmed_fallback
    elif account_hint:
        name = f"Conta {account_hint}"
    elif document.company_name:
        name = f"{document.company_name} (validar)"
    else:
        name = "Conta por validar"

    new_account = Account(
        id=build_auto_account_id(account_hint or trimmed_fallback or document.id, document.id, existing_accounts),
        name=name,
        type="outro",
        balance=0.0,
        currency=document.currency or "EUR",
        validation_status=AUTO_ACCOUNT_STATUS,
        metadata=_auto_account_metadata(account_hint, document),
    )
    accounts = [new_account] + [a for a in existing_accounts if a.id != new_account.id]
    return EnsuredAccount(new_account, accounts, True)


_EXPENSE_COMPARED_FIELDS = (
    "account_id", "description", "category", "amount", "currency",
    "due_date", "recurrence", "fixed", "status",
)
_TIMELINE_COMPARED_FIELDS = ("date", "description", "amount", "currency", "linked_expense_id")


def has_expense_changed(existing: Optional[Expense], candidate: Expense) -> bool:
    if existing is None:
        return True
    return any(getattr(existing, f) != getattr(candidate, f) for f in _EXPENSE_COMPARED_FIELDS)


def has_timeline_changed(existing: Optional[TimelineEntry], candidate: TimelineEntry) -> bool:
    if existing is None:
        return True
    return any(getattr(existing, f) != getattr(candidate, f) for f in _TIMELINE_COMPARED_FIELDS)


def _upsert(items: list, item) -> list:
    return [item] + [i for i in items if i.id != item.id]


class _DocumentRun:
    """Estado mutável de um processamento; os snapshots de entrada não são alterados."""

    def __init__(self, document, accounts, expenses, timeline_entries, callbacks):
        self.document = document
        self.accounts = list(accounts)
        self.expenses = list(expenses)
        self.timeline = list(timeline_entries)
        self.callbacks = callbacks or ProcessingCallbacks()
        self.created_account_ids: List[str] = []
        self.upserted_expense_ids: List[str] = []

    def take_account(self, ensured: EnsuredAccount) -> Optional[Account]:
        self.accounts = ensured.accounts
        if ensured.account is None:
            return None
        if ensured.created:
            self.created_account_ids.append(ensured.account.id)
        if self.callbacks.on_account_upsert:
            self.callbacks.on_account_upsert(ensured.account)
        return ensured.account

    def store_expense(self, existing: Optional[Expense], derived: Optional[Expense], legacy_timeline_id=None):
        if derived is None or not has_expense_changed(existing, derived):
            return
        self.expenses = _upsert(self.expenses, derived)
        self.upserted_expense_ids.append(derived.id)
        if self.callbacks.on_expense_upsert:
            self.callbacks.on_expense_upsert(derived)

        wanted = {timeline_entry_id(derived.id)}
        if legacy_timeline_id:
            wanted.add(legacy_timeline_id)
        existing_entry = next(
            (e for e in self.timeline if e.linked_expense_id == derived.id or e.id in wanted),
            None,
        )
        entry = derive_timeline_entry_from_expense(derived, existing_entry)
        if entry is not None and has_timeline_changed(existing_entry, entry):
            self.timeline = _upsert(self.timeline, entry)
            if self.callbacks.on_timeline_upsert:
                self.callbacks.on_timeline_upsert(entry)

    def result(self) -> ProcessingResult:
        return ProcessingResult(
            accounts=self.accounts,
            expenses=self.expenses,
            timeline_entries=self.timeline,
            created_account_ids=self.created_account_ids,
            upserted_expense_ids=self.upserted_expense_ids,
        )


def _process_invoice(run: _DocumentRun) -> None:
    document = run.document
    run.take_account(ensure_account(
        document,
        run.accounts,
        account_hint=document.account_hint,
        fallback_name=document.company_name,
    ))

    legacy_id = fallback_expense_id(document.id)
    existing = next((e for e in run.expenses if e.document_id == document.id or e.id == legacy_id), None)
    derived = derive_expense_from_document(document, run.accounts, existing)
    run.store_expense(existing, derived, legacy_timeline_id=timeline_entry_id(document.id))


def _process_statement(run: _DocumentRun) -> None:
    document = run.document
    for candidate in document.recurring_expenses or []:
        if not candidate or not isinstance(candidate.description, str) or not candidate.description.strip():
            continue

        account = run.take_account(ensure_account(
            document,
            run.accounts,
            account_hint=candidate.account_hint or document.account_hint,
            fallback_name=document.company_name or candidate.description,
        ))
        if account is None:
            continue

        ids = {
            recurring_expense_id(candidate, document),
            build_recurring_expense_id(document.id, candidate.description),
        }
        existing = next((e for e in run.expenses if e.id in ids), None)
        derived = build_recurring_expense(candidate, document, account.id, existing)
        run.store_expense(existing, derived)


def process_document(
    document: DocumentMetadata,
    accounts: List[Account],
    expenses: List[Expense],
    timeline_entries: List[TimelineEntry],
    callbacks: Optional[ProcessingCallbacks] = None,
) -> ProcessingResult:
    """Deriva contas, despesas e entradas de cronograma de um documento processado.

    Extractos materializam as despesas recorrentes detetadas; faturas e recibos
    dão origem (ou atualizam) uma única despesa. A persistência é do chamador.
    """
    run = _DocumentRun(document, accounts, expenses, timeline_entries, callbacks)
    if document.source_type == "extracto":
        _process_statement(run)
    else:
        _process_invoice(run)
    return run.result()
