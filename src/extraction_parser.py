"""
Leitura defensiva das respostas da API Responses.

Mesmo pedindo saída estruturada, nenhum campo é confiado sem verificar o tipo:
qualquer valor inesperado passa a ausente.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from expense_models import DocumentExtraction, RecurringExpenseCandidate, StatementSettlement


SOURCE_TYPES = ("fatura", "recibo", "extracto")
MAX_GENERIC_HINT_LENGTH = 32

_FULL_IBAN_RE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{11,30}$")
_MASKED_IBAN_RE = re.compile(r"^([A-Z]{2}\d{2})[A-Z0-9*xX•.]*?[*xX•.]+[A-Z0-9*xX•.]*?(\d{4,})$")
_MASK_RUN_RE = re.compile(r"[*X•.]{3,}")
_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")


def extract_text_from_payload(payload: Any) -> Optional[str]:
    """Texto gerado, seja no formato Responses (`output[].content[]`) ou Chat (`choices`)."""
    if not isinstance(payload, dict):
        return None

    output = payload.get("output")
    if isinstance(output, list):
        chunks: List[str] = []
        for item in output:
            contents = item.get("content") if isinstance(item, dict) else None
            if not isinstance(contents, list):
                continue
            for content in contents:
                if not isinstance(content, dict):
                    continue
                text = content.get("text")
                if isinstance(text, str) and text:
                    chunks.append(text)
        if chunks:
            return "\n".join(chunks)

    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") if isinstance(first.get("message"), dict) else {}
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            chunks = []
            for part in content:
                if isinstance(part, str):
                    chunks.append(part)
                elif isinstance(part, dict):
                    text = part.get("text", part.get("content"))
                    if isinstance(text, str):
                        chunks.append(text)
            if chunks:
                return "\n".join(chunks)

    if isinstance(payload.get("output_text"), str):
        return payload["output_text"]
    if isinstance(payload.get("content"), str):
        return payload["content"]
    return None


def extract_json_from_payload(payload: Any) -> Any:
    """JSON do texto gerado; se não for JSON válido devolve o texto cru."""
    text = extract_text_from_payload(payload)
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        print(f"⚠️ Resposta OpenAI não é JSON válido, a devolver texto cru: {e}")
        return text


def _string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.strip().replace(" ", "")
        if "," in cleaned and "." in cleaned:
            # 1.234,56 ou 1,234.56: o último separador é o decimal
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _currency(value: Any) -> Optional[str]:
    text = _string(value)
    if text and _CURRENCY_RE.match(text):
        return text.upper()
    return None


def _source_type(value: Any) -> Optional[str]:
    text = _string(value)
    if text and text.lower() in SOURCE_TYPES:
        return text.lower()
    return None


def normalize_account_hint(value: Any) -> Optional[str]:
    """Pista de conta estável para comparação.

    IBAN completo fica tal como está (compacto, maiúsculas); IBAN mascarado ou
    parcial fica prefixo + últimos 4-8 dígitos; o resto é truncado.
    """
    text = _string(value)
    if not text:
        return None

    compact = re.sub(r"[\s-]+", "", text).upper()
    # máscaras em "X" também casam com [A-Z0-9]
    if _FULL_IBAN_RE.match(compact) and not _MASK_RUN_RE.search(compact):
        return compact

    masked = _MASKED_IBAN_RE.match(compact)
    if masked:
        prefix, digits = masked.group(1), masked.group(2)
        return f"{prefix} {digits[-8:]}"

    collapsed = re.sub(r"\s+", " ", text)
    return collapsed[:MAX_GENERIC_HINT_LENGTH].strip()


def _months(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    seen = []
    for item in value:
        text = _string(item)
        if text and _MONTH_RE.match(text) and text not in seen:
            seen.append(text)
    return seen


def _day_of_month(value: Any) -> Optional[int]:
    number = _number(value)
    if number is None or number != int(number):
        return None
    day = int(number)
    return day if 1 <= day <= 31 else None


def normalize_recurring_expenses(value: Any) -> List[RecurringExpenseCandidate]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if not isinstance(item, dict):
            continue
        description = _string(item.get("description"))
        if not description:
            continue
        out.append(RecurringExpenseCandidate(
            description=description,
            average_amount=_number(item.get("averageAmount")),
            currency=_currency(item.get("currency")),
            day_of_month=_day_of_month(item.get("dayOfMonth")),
            account_hint=normalize_account_hint(item.get("accountHint")),
            months_observed=_months(item.get("monthsObserved")),
            notes=_string(item.get("notes")),
        ))
    return out


def normalize_statement_settlements(value: Any) -> List[StatementSettlement]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if not isinstance(item, dict):
            continue
        settlement = StatementSettlement(
            description=_string(item.get("description")),
            amount=_number(item.get("amount")),
            currency=_currency(item.get("currency")),
            settled_on=_string(item.get("settledOn")),
            document_id_hint=_string(item.get("documentIdHint")),
            expense_id_hint=_string(item.get("expenseIdHint")),
            supplier_name=_string(item.get("supplierName")),
            supplier_tax_id=_string(item.get("supplierTaxId")),
        )
        if settlement.description is None and settlement.amount is None and settlement.supplier_name is None:
            continue
        out.append(settlement)
    return out


def parse_document_extraction(parsed: Any, raw_payload: Any) -> DocumentExtraction:
    if not isinstance(parsed, dict):
        return DocumentExtraction(raw_response=raw_payload)

    iban = _string(parsed.get("statementAccountIban"))
    return DocumentExtraction(
        source_type=_source_type(parsed.get("sourceType")),
        amount=_number(parsed.get("amount")),
        currency=_currency(parsed.get("currency")),
        due_date=_string(parsed.get("dueDate")),
        account_hint=normalize_account_hint(parsed.get("accountHint")),
        company_name=_string(parsed.get("companyName")),
        expense_type=_string(parsed.get("expenseType")),
        notes=_string(parsed.get("notes")),
        recurring_expenses=normalize_recurring_expenses(parsed.get("recurringExpenses")),
        supplier_tax_id=_string(parsed.get("supplierTaxId")),
        statement_account_iban=re.sub(r"\s+", "", iban).upper() if iban else None,
        statement_settlements=normalize_statement_settlements(parsed.get("statementSettlements")),
        raw_response=raw_payload,
    )


def build_document_schema() -> Dict[str, Any]:
    nullable_string = {"type": ["string", "null"]}
    nullable_number = {"type": ["number", "null"]}
    recurring_item = {
        "type": "object",
        "properties": {
            "description": {"type": "string"},
            "averageAmount": nullable_number,
            "currency": nullable_string,
            "dayOfMonth": {"type": ["integer", "null"]},
            "accountHint": nullable_string,
            "monthsObserved": {"type": "array", "items": {"type": "string"}},
            "notes": nullable_string,
        },
        "required": ["description", "averageAmount", "currency", "dayOfMonth", "accountHint", "monthsObserved", "notes"],
        "additionalProperties": False,
    }
    settlement_item = {
        "type": "object",
        "properties": {
            "description": nullable_string,
            "amount": nullable_number,
            "currency": nullable_string,
            "settledOn": nullable_string,
            "documentIdHint": nullable_string,
            "expenseIdHint": nullable_string,
            "supplierName": nullable_string,
            "supplierTaxId": nullable_string,
        },
        "required": [
            "description", "amount", "currency", "settledOn",
            "documentIdHint", "expenseIdHint", "supplierName", "supplierTaxId",
        ],
        "additionalProperties": False,
    }
    properties = {
        "sourceType": {"type": ["string", "null"], "enum": ["fatura", "recibo", "extracto", None]},
        "amount": nullable_number,
        "currency": nullable_string,
        "dueDate": nullable_string,
        "accountHint": nullable_string,
        "companyName": nullable_string,
        "expenseType": nullable_string,
        "notes": nullable_string,
        "recurringExpenses": {"type": "array", "items": recurring_item},
        "supplierTaxId": nullable_string,
        "statementAccountIban": nullable_string,
        "statementSettlements": {"type": "array", "items": settlement_item},
    }
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties.keys()),
        "additionalProperties": False,
    }
