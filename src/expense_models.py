from concurrent.futures import Future
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional


ACCOUNT_IDENTIFIER_KEYS = ("iban", "iban_number", "account_number", "number", "identifier")
ACCOUNT_ALIAS_KEYS = ("hints", "account_hints", "aliases")

# camelCase vindo do armazenamento original -> atributos snake_case
_CAMEL_TO_SNAKE = {
    "originalName": "original_name",
    "uploadDate": "upload_date",
    "sourceType": "source_type",
    "dueDate": "due_date",
    "accountHint": "account_hint",
    "companyName": "company_name",
    "expenseType": "expense_type",
    "supplierId": "supplier_id",
    "supplierTaxId": "supplier_tax_id",
    "statementAccountIban": "statement_account_iban",
    "recurringExpenses": "recurring_expenses",
    "statementSettlements": "statement_settlements",
    "extractedAt": "extracted_at",
    "averageAmount": "average_amount",
    "dayOfMonth": "day_of_month",
    "monthsObserved": "months_observed",
    "settledOn": "settled_on",
    "documentIdHint": "document_id_hint",
    "expenseIdHint": "expense_id_hint",
    "supplierName": "supplier_name",
    "documentId": "document_id",
    "accountId": "account_id",
    "deduplicationKey": "deduplication_key",
    "linkedExpenseId": "linked_expense_id",
    "validationStatus": "validation_status",
    "ibanNumber": "iban_number",
    "accountNumber": "account_number",
    "accountHints": "account_hints",
}


def _snake_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_TO_SNAKE.get(k, k): v for k, v in (data or {}).items()}


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in _snake_keys(data).items() if k in names}


@dataclass
class Account:
    id: str
    name: str
    type: str = "outro"  # corrente|poupanca|cartao|outro
    balance: float = 0.0
    currency: str = "EUR"
    validation_status: Optional[str] = None
    iban: Optional[str] = None
    iban_number: Optional[str] = None
    account_number: Optional[str] = None
    number: Optional[str] = None
    identifier: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        values = _known_fields(cls, data)
        metadata = values.get("metadata")
        values["metadata"] = _snake_keys(metadata) if isinstance(metadata, dict) else {}
        return cls(**values)


@dataclass
class RecurringExpenseCandidate:
    description: str
    average_amount: Optional[float] = None
    currency: Optional[str] = None
    day_of_month: Optional[int] = None
    account_hint: Optional[str] = None
    months_observed: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurringExpenseCandidate":
        return cls(**_known_fields(cls, data))


@dataclass
class StatementSettlement:
    description: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    settled_on: Optional[str] = None
    document_id_hint: Optional[str] = None
    expense_id_hint: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_tax_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatementSettlement":
        return cls(**_known_fields(cls, data))


@dataclass
class DocumentMetadata:
    id: str
    original_name: str
    upload_date: str
    source_type: Optional[str] = None  # fatura|recibo|extracto
    amount: Optional[float] = None
    currency: Optional[str] = None
    due_date: Optional[str] = None
    account_hint: Optional[str] = None
    company_name: Optional[str] = None
    expense_type: Optional[str] = None
    notes: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_tax_id: Optional[str] = None
    statement_account_iban: Optional[str] = None
    recurring_expenses: List[RecurringExpenseCandidate] = field(default_factory=list)
    statement_settlements: List[StatementSettlement] = field(default_factory=list)
    extracted_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentMetadata":
        values = _known_fields(cls, data)
        values["recurring_expenses"] = [
            item if isinstance(item, RecurringExpenseCandidate) else RecurringExpenseCandidate.from_dict(item)
            for item in values.get("recurring_expenses") or []
        ]
        values["statement_settlements"] = [
            item if isinstance(item, StatementSettlement) else StatementSettlement.from_dict(item)
            for item in values.get("statement_settlements") or []
        ]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Expense:
    id: str
    account_id: str
    description: str
    category: str
    amount: float
    currency: str
    due_date: str
    document_id: Optional[str] = None
    recurrence: Optional[str] = None  # mensal|anual|semestral|pontual
    fixed: bool = True
    status: str = "planeado"  # planeado|pago|em-analise
    supplier_id: Optional[str] = None
    deduplication_key: Optional[str] = None


@dataclass
class TimelineEntry:
    id: str
    date: str
    description: str
    amount: float
    currency: str
    type: str = "despesa"
    linked_expense_id: Optional[str] = None


@dataclass
class DocumentExtraction:
    """Resultado validado de uma extração remota."""
    source_type: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    due_date: Optional[str] = None
    account_hint: Optional[str] = None
    company_name: Optional[str] = None
    expense_type: Optional[str] = None
    notes: Optional[str] = None
    recurring_expenses: List[RecurringExpenseCandidate] = field(default_factory=list)
    supplier_tax_id: Optional[str] = None
    statement_account_iban: Optional[str] = None
    statement_settlements: List[StatementSettlement] = field(default_factory=list)
    raw_response: Any = None
    # remoção do ficheiro remoto, agendada à parte
    cleanup: Optional[Future] = field(default=None, repr=False, compare=False)


@dataclass
class ConnectionConfig:
    api_key: str
    base_url: Optional[str] = None
    model: Optional[str] = None


@dataclass
class CreditBalance:
    total_granted: float
    total_used: float
    total_available: float
    currency: str = "USD"
    expires_at: Optional[int] = None


@dataclass
class ValidationResult:
    success: bool
    message: str
    model: str
    latency_ms: Optional[int] = None
    balance: Optional[CreditBalance] = None
    balance_error: Optional[str] = None


@dataclass
class IntegrationLogEntry:
    timestamp: float
    message: str
