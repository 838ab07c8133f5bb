import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from account_resolver import resolve_account_id
from expense_models import Account
from extraction_parser import (
    build_document_schema,
    extract_json_from_payload,
    extract_text_from_payload,
    normalize_account_hint,
    normalize_recurring_expenses,
    normalize_statement_settlements,
    parse_document_extraction,
)


def _responses_payload(obj):
    return {"output": [{"type": "message", "content": [{"type": "output_text", "text": json.dumps(obj)}]}]}


def test_extract_text_from_responses_and_chat_formats():
    assert extract_text_from_payload({"output": [{"content": [{"text": "a"}, {"text": "b"}]}]}) == "a\nb"
    assert extract_text_from_payload({"choices": [{"message": {"content": "olá"}}]}) == "olá"
    assert extract_text_from_payload({"choices": [{"message": {"content": [{"text": "x"}, "y"]}}]}) == "x\ny"
    assert extract_text_from_payload({"output_text": "z"}) == "z"
    assert extract_text_from_payload({"output": "nada"}) is None
    assert extract_text_from_payload("texto") is None


def test_invalid_json_degrades_to_raw_text(capsys):
    payload = {"output_text": "isto não é json"}
    assert extract_json_from_payload(payload) == "isto não é json"
    assert "⚠️" in capsys.readouterr().out
    assert extract_json_from_payload({}) is None


def test_account_hint_keeps_full_iban():
    assert normalize_account_hint("PT50 0002 0123 1234 5678 9015 4") == "PT50000201231234567890154"


def test_account_hint_reduces_masked_iban():
    assert normalize_account_hint("PT50 **** **** 1234") == "PT50 1234"
    assert normalize_account_hint("PT50 •••• 0012 3456 7890") == "PT50 34567890"
    assert normalize_account_hint("NL91 **** **** 4300") == "NL91 4300"


def test_account_hint_reduces_x_masked_iban():
    hint = normalize_account_hint("PT50 XXXX XXXX XXXX XXXX X123 4")
    assert hint == "PT50 1234"
    assert normalize_account_hint("pt50 xxxx xxxx xxxx 5678 9012 3") == "PT50 67890123"

    known = Account(id="acc-known", name="Conta", metadata={"hints": ["PT50 1234"]})
    other = Account(id="acc-other", name="Outra")
    assert resolve_account_id(hint, [other, known]) == "acc-known"


def test_account_hint_generic_truncation():
    assert normalize_account_hint("  Cartão   Visa  ") == "Cartão Visa"
    long_hint = "Conta conjunta do agregado familiar em Lisboa"
    assert normalize_account_hint(long_hint) == long_hint[:32].strip()
    assert normalize_account_hint("") is None
    assert normalize_account_hint(123) is None


def test_recurring_expenses_are_validated_field_by_field():
    items = normalize_recurring_expenses([
        {
            "description": " Ginásio ",
            "averageAmount": "29,90",
            "currency": "eur",
            "dayOfMonth": 8,
            "accountHint": "PT50 **** 5678",
            "monthsObserved": ["2024-01", "2024-02", "2024-02", "2024-13", 5],
            "notes": None,
        },
        {"description": "", "averageAmount": 10},
        {"description": "Luz", "averageAmount": True, "currency": "euro", "dayOfMonth": 40},
        "lixo",
    ])
    assert len(items) == 2
    gym, light = items
    assert gym.description == "Ginásio"
    assert gym.average_amount == 29.9
    assert gym.currency == "EUR"
    assert gym.day_of_month == 8
    assert gym.account_hint == "PT50 5678"
    assert gym.months_observed == ["2024-01", "2024-02"]
    assert gym.notes is None
    assert light.average_amount is None
    assert light.currency is None
    assert light.day_of_month is None


def test_statement_settlements_drop_empty_items():
    items = normalize_statement_settlements([
        {"description": "DD EDP", "amount": "1.234,56", "settledOn": "2024-03-05", "expenseIdHint": "exp-1"},
        {"documentIdHint": "doc-1"},
        None,
    ])
    assert len(items) == 1
    assert items[0].amount == 1234.56
    assert items[0].settled_on == "2024-03-05"
    assert items[0].expense_id_hint == "exp-1"


def test_parse_document_extraction():
    parsed = {
        "sourceType": "Fatura",
        "amount": 42,
        "currency": "eur",
        "dueDate": "2024-01-10",
        "accountHint": None,
        "companyName": "EDP Comercial",
        "expenseType": "Energia",
        "notes": "",
        "recurringExpenses": [],
        "supplierTaxId": "503504564",
        "statementAccountIban": "pt50 0002 0123",
        "statementSettlements": "não é lista",
    }
    payload = _responses_payload(parsed)
    extraction = parse_document_extraction(extract_json_from_payload(payload), payload)
    assert extraction.source_type == "fatura"
    assert extraction.amount == 42.0
    assert extraction.currency == "EUR"
    assert extraction.due_date == "2024-01-10"
    assert extraction.account_hint is None
    assert extraction.company_name == "EDP Comercial"
    assert extraction.notes is None
    assert extraction.statement_account_iban == "PT5000020123"
    assert extraction.statement_settlements == []
    assert extraction.raw_response is payload


def test_parse_non_object_keeps_raw_payload_only():
    extraction = parse_document_extraction("texto cru", {"id": "resp-1"})
    assert extraction.amount is None
    assert extraction.raw_response == {"id": "resp-1"}


def test_unknown_source_type_is_dropped():
    assert parse_document_extraction({"sourceType": "nota"}, None).source_type is None


def test_schema_is_strict_and_requires_all_fields():
    schema = build_document_schema()
    assert schema["additionalProperties"] is False
    assert set(schema["required"]) == set(schema["properties"])
    assert schema["properties"]["sourceType"]["enum"] == ["fatura", "recibo", "extracto", None]
    item = schema["properties"]["recurringExpenses"]["items"]
    assert set(item["required"]) == set(item["properties"])
