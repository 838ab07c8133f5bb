#!/usr/bin/env python
"""
Testa a ligação à OpenAI e, opcionalmente, a extração de um PDF.

Variáveis: OPENAI_API_KEY (obrigatória), OPENAI_BASE_URL, OPENAI_MODEL,
OPENAI_TEST_PDF, OPENAI_ACCOUNT_CONTEXT.
"""

import argparse
import os
import sys
from dataclasses import fields
from datetime import datetime, timezone
from pprint import pprint

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config_loader import load_app_config, load_connection_config
from integration_logger import IntegrationLogService, paginate_logs
from local_extractor import extract_metadata_locally
from openai_client import OpenAIClient
from openai_errors import OpenAIError
from state_store import KeyValueStore


def format_amount(amount: float, currency: str = None) -> str:
    return f"{amount:,.2f} {(currency or 'USD').upper()}".replace(",", " ")


def run_validation(client: OpenAIClient):
    print("▶️ A validar ligação à OpenAI...")
    result = client.validate_connection()
    if not result.success:
        print("⚠️ A API respondeu mas a validação falhou:")
        print(result.message)
        return False

    print(f"✅ Ligação validada ({result.model}) em {result.latency_ms if result.latency_ms is not None else '?'} ms")
    if result.balance:
        balance = result.balance
        print(
            f"   Saldo disponível: {format_amount(balance.total_available, balance.currency)} "
            f"(limite {format_amount(balance.total_granted, balance.currency)}, "
            f"utilizado {format_amount(balance.total_used, balance.currency)})."
        )
        if balance.expires_at is not None:
            expires = datetime.fromtimestamp(balance.expires_at, tz=timezone.utc).strftime("%d/%m/%Y")
            print(f"   Créditos expiram a {expires}.")
    elif result.balance_error:
        print(f"   Nota: {result.balance_error}")
    return True


def run_extraction(client: OpenAIClient, pdf_path: str, account_context: str = None):
    absolute_path = os.path.abspath(pdf_path)
    print(f"▶️ A carregar PDF em {absolute_path} para testar extração...")
    with open(absolute_path, "rb") as f:
        content = f.read()

    extraction = client.extract_document(os.path.basename(absolute_path), content, account_context)
    print("✅ Resposta de extração:")
    data = {f.name: getattr(extraction, f.name) for f in fields(extraction) if f.name not in ("cleanup", "raw_response")}
    pprint(data, sort_dicts=False, width=100)

    # não sair antes de remover o ficheiro remoto
    if extraction.cleanup is not None and not extraction.cleanup.result():
        print("⚠️ O ficheiro temporário pode ter ficado na OpenAI.")


def run_local_extraction(pdf_path: str, account_context: str = None):
    absolute_path = os.path.abspath(pdf_path)
    print(f"▶️ A extrair localmente {absolute_path} (sem OpenAI)...")
    extraction = extract_metadata_locally(absolute_path, account_context)
    print("✅ Metadados inferidos:")
    pprint({f.name: getattr(extraction, f.name) for f in fields(extraction) if f.name != "cleanup"}, sort_dicts=False, width=100)


def print_logs(log_service: IntegrationLogService, page_size: int, page: int):
    entries = list(reversed(log_service.get_logs()["openai"]))
    result = paginate_logs(entries, page_size, page)
    print(f"\n📋 Logs OpenAI ({result['range_start']}-{result['range_end']} de {result['total_items']}, "
          f"página {result['page']}/{result['total_pages']})")
    for entry in result["items"]:
        when = datetime.fromtimestamp(entry.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        print(f"  [{when}] {entry.message}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Testa a integração com a OpenAI")
    parser.add_argument("--pdf", default=os.getenv("OPENAI_TEST_PDF"), help="PDF a extrair (OPENAI_TEST_PDF)")
    parser.add_argument("--account-context", default=os.getenv("OPENAI_ACCOUNT_CONTEXT"), help="Conta de contexto")
    parser.add_argument("--local", action="store_true", help="Extrai o PDF localmente, sem contactar a OpenAI")
    parser.add_argument("--show-logs", action="store_true", help="Mostra os logs OpenAI no fim")
    parser.add_argument("--page", type=int, default=1, help="Página de logs a mostrar")
    args = parser.parse_args()

    if args.local:
        if not args.pdf:
            print("❌ --local precisa de --pdf (ou OPENAI_TEST_PDF)")
            return 1
        try:
            run_local_extraction(args.pdf, args.account_context)
        except OSError as e:
            print(f"❌ Não foi possível ler o PDF: {e}")
            return 1
        return 0

    cfg = load_app_config()
    try:
        connection = load_connection_config(cfg)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    log_service = IntegrationLogService(KeyValueStore()).initialize()
    try:
        with OpenAIClient(connection, log_service=log_service) as client:
            if not run_validation(client):
                return 1
            if args.pdf:
                run_extraction(client, args.pdf, args.account_context)
    except OpenAIError as e:
        print(f"❌ {e}")
        return 1
    except OSError as e:
        print(f"❌ Não foi possível ler o PDF: {e}")
        return 1
    finally:
        if args.show_logs:
            print_logs(log_service, cfg.get("logs", {}).get("page_size"), args.page)
        log_service.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
