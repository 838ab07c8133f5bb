import re
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from expense_models import Expense, StatementSettlement
from identifiers import strip_accents


PAID_STATUS = "pago"


def _normalize_name(text: Optional[str]) -> str:
    if not text:
        return ""
    s = strip_accents(text).upper()
    s = re.sub(r"\b(LDA|S\.?A|UNIPESSOAL|SGPS)\b\.?", "", s)
    s = re.sub(r"[^A-Z0-9]", "", s)
    return s


def _similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.normalized_similarity(a, b)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return None


def score_settlement(settlement: StatementSettlement, expense: Expense, cfg: Dict) -> Tuple[int, List[str]]:
    reasons: List[str] = []
    weights = cfg.get("weights", {"amount": 0.5, "date": 0.2, "name": 0.3})
    tol = cfg.get("tolerances", {"amount": 0.01, "days": 5})

    # amount
    if settlement.amount is not None:
        amount_diff = abs(abs(settlement.amount) - abs(expense.amount))
        amount_score = 100 if amount_diff <= tol["amount"] else 0
        reasons.append("amount≈" if amount_score else f"amount_diff={amount_diff:.2f}(tol={tol['amount']})")
    else:
        amount_score = 0
        reasons.append("amount_missing")

    # date
    settled_on = _parse_date(settlement.settled_on)
    due = _parse_date(expense.due_date)
    if settled_on and due:
        date_diff = abs((settled_on - due).days)
        date_score = 100 if date_diff <= tol["days"] else 0
        reasons.append("date≈" if date_score else f"date_diff={date_diff}days(tol={tol['days']})")
    else:
        date_score = 0
        reasons.append("date_missing")

    # name
    s = _normalize_name(settlement.supplier_name or settlement.description)
    e = _normalize_name(expense.description)
    name_score = int(_similarity(s, e) * 100)
    reasons.append(f"name~{name_score}")

    total = int(
        amount_score * weights.get("amount", 0.5)
        + date_score * weights.get("date", 0.2)
        + name_score * weights.get("name", 0.3)
    )
    return max(0, min(100, total)), reasons


def _hinted_expense(settlement: StatementSettlement, expenses: List[Expense]) -> Optional[Expense]:
    for expense in expenses:
        if settlement.expense_id_hint and expense.id == settlement.expense_id_hint:
            return expense
    for expense in expenses:
        if settlement.document_id_hint and expense.document_id == settlement.document_id_hint:
            return expense
    return None


def match_settlements(settlements: List[StatementSettlement], expenses: List[Expense], cfg: Dict) -> List[Dict]:
    """Melhor despesa em aberto para cada liquidação encontrada no extracto.

    Cada despesa é atribuída no máximo uma vez; pistas explícitas de id ganham
    sem pontuação.
    """
    auto = cfg.get("thresholds", {}).get("auto", 80)
    open_expenses = [e for e in expenses if e.status != PAID_STATUS]
    taken = set()
    matches: List[Dict] = []

    for index, settlement in enumerate(settlements):
        available = [e for e in open_expenses if e.id not in taken]
        hinted = _hinted_expense(settlement, available)
        if hinted is not None:
            taken.add(hinted.id)
            matches.append({"settlement_index": index, "expense_id": hinted.id, "score": 100, "reasons": ["id_hint"]})
            continue

        candidates = []
        for expense in available:
            score, reasons = score_settlement(settlement, expense, cfg)
            candidates.append({"settlement_index": index, "expense_id": expense.id, "score": score, "reasons": reasons})
        if not candidates:
            continue
        candidates.sort(key=lambda x: x["score"], reverse=True)
        best = candidates[0]
        if best["score"] >= auto:
            taken.add(best["expense_id"])
            matches.append(best)

    return matches


def apply_settlements(matches: List[Dict], expenses: List[Expense]) -> List[Expense]:
    """Cópias das despesas liquidadas com estado `pago`."""
    by_id = {e.id: e for e in expenses}
    return [replace(by_id[m["expense_id"]], status=PAID_STATUS) for m in matches if m["expense_id"] in by_id]
