from typing import List, Optional, Sequence

from expense_models import ACCOUNT_ALIAS_KEYS, ACCOUNT_IDENTIFIER_KEYS, Account
from identifiers import normalize_identifier


# comprimento mínimo (de ambos os lados) para aceitar correspondência parcial
MIN_SUBSTRING_LENGTH = 4


def extract_account_candidates(account: Account) -> List[str]:
    """Todos os textos que identificam a conta, sem repetidos e pela ordem de recolha."""
    values: List[str] = [account.id, account.name]

    for key in ACCOUNT_IDENTIFIER_KEYS:
        value = getattr(account, key, None)
        if isinstance(value, str):
            values.append(value)

    metadata = account.metadata if isinstance(account.metadata, dict) else {}
    for key in ACCOUNT_IDENTIFIER_KEYS:
        value = metadata.get(key)
        if isinstance(value, str):
            values.append(value)
    for key in ACCOUNT_ALIAS_KEYS:
        items = metadata.get(key)
        if isinstance(items, (list, tuple)):
            values.extend(item for item in items if isinstance(item, str))

    seen = set()
    out: List[str] = []
    for value in values:
        if not isinstance(value, str) or not value.strip() or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _candidate_matches(candidate: str, normalized_hint: str) -> bool:
    if candidate == normalized_hint:
        return True
    if len(candidate) < MIN_SUBSTRING_LENGTH or len(normalized_hint) < MIN_SUBSTRING_LENGTH:
        return False
    return normalized_hint in candidate or candidate in normalized_hint


def _account_matches(account: Account, normalized_hint: str) -> bool:
    for raw in extract_account_candidates(account):
        candidate = normalize_identifier(raw)
        if candidate and _candidate_matches(candidate, normalized_hint):
            return True
    return False


def _single_account_default(accounts: Sequence[Account]) -> Optional[str]:
    return accounts[0].id if len(accounts) == 1 else None


def resolve_account_id(
    account_hint: Optional[str],
    accounts: Sequence[Account],
    existing_account_id: Optional[str] = None,
) -> Optional[str]:
    """Decide a conta de uma despesa a partir da pista extraída.

    Uma conta já atribuída nunca é trocada. Sem pista (ou sem correspondência),
    só se assume a conta quando existe exatamente uma.
    """
    if existing_account_id:
        return existing_account_id
    if not accounts:
        return None
    if not account_hint or not account_hint.strip():
        return _single_account_default(accounts)

    normalized_hint = normalize_identifier(account_hint)
    if not normalized_hint:
        return _single_account_default(accounts)

    # a primeira conta que corresponder ganha, sem pontuação
    for account in accounts:
        if _account_matches(account, normalized_hint):
            return account.id

    return _single_account_default(accounts)


def find_account_by_hint(account_hint: Optional[str], accounts: Sequence[Account]) -> Optional[Account]:
    if not account_hint or not account_hint.strip():
        return None
    normalized_hint = normalize_identifier(account_hint)
    if not normalized_hint:
        return None
    for account in accounts:
        if _account_matches(account, normalized_hint):
            return account
    return None
