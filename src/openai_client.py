"""
Cliente OpenAI (Files + Responses) para extrair metadados de PDFs.

Cada operação é independente: no máximo um pedido em curso por operação, sem
repetições automáticas. O cancelamento é cooperativo através de um
threading.Event passado como `signal` em todas as chamadas de rede.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests

from expense_models import ConnectionConfig, CreditBalance, DocumentExtraction, ValidationResult
from extraction_parser import build_document_schema, extract_json_from_payload, parse_document_extraction
from openai_base_url import normalize_openai_base_url
from openai_errors import (
    GENERIC_API_ERROR_MESSAGE,
    OpenAIAbortedError,
    OpenAIBalanceUnavailableError,
    OpenAIError,
    OpenAINetworkError,
    OpenAIRequestError,
)


DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
FILE_PURPOSE = "assistants"


def _check_signal(signal: Optional[threading.Event]):
    if signal is not None and signal.is_set():
        raise OpenAIAbortedError()


def parse_error_response(response: requests.Response) -> OpenAIRequestError:
    """Mensagem de erro do corpo (`error.message` ou `message`), com fallback no motivo HTTP."""
    reason = response.reason or GENERIC_API_ERROR_MESSAGE
    try:
        payload = response.json()
    except ValueError:
        return OpenAIRequestError(response.status_code, reason)

    message = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            message = error["message"]
        elif isinstance(error, str):
            message = error
        elif isinstance(payload.get("message"), str):
            message = payload["message"]
    return OpenAIRequestError(response.status_code, message or reason)


def build_extraction_prompt(account_context: Optional[str] = None) -> str:
    prompt = (
        'Analisa o PDF fornecido e devolve um JSON com os campos "sourceType", "amount", "currency", "dueDate", '
        '"accountHint", "companyName", "expenseType", "notes", "recurringExpenses", "supplierTaxId", '
        '"statementAccountIban" e "statementSettlements". '
        "sourceType deve ser um de: fatura, recibo ou extracto. amount deve ser número. "
        "dueDate deve estar em ISO 8601 se existir. "
        "Em extractos bancários, lista em recurringExpenses as despesas fixas que se repetem em vários meses "
        '(monthsObserved no formato "YYYY-MM") e em statementSettlements os pagamentos já liquidados. '
    )
    if account_context:
        prompt += f'A conta de contexto preferencial é "{account_context}". Considera-a ao interpretar o documento. '
    prompt += "Se um campo não existir, devolve null (ou lista vazia)."
    return prompt


class OpenAIClient:
    """Cliente síncrono sobre requests.Session.

    Args:
        config: chave, URL base e modelo.
        log_service: IntegrationLogService já inicializado (opcional).
        session: requests.Session a reutilizar (testes).
    """

    def __init__(self, config: ConnectionConfig, log_service=None, session: Optional[requests.Session] = None):
        self.api_key = config.api_key
        self.base_url = normalize_openai_base_url(config.base_url)
        self.model = config.model or DEFAULT_OPENAI_MODEL
        self.log_service = log_service
        self.session = session or requests.Session()
        self.headers = {"Authorization": f"Bearer {config.api_key}"}
        self._cleanup_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="openai-cleanup")
        self._pending_cleanups: List[Future] = []

    # transporte

    def _request(self, method: str, path: str, signal: Optional[threading.Event] = None, **kwargs) -> requests.Response:
        _check_signal(signal)
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, headers=self.headers, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            # se foi cancelado entretanto, o cancelamento prevalece
            _check_signal(signal)
            self._log("Falha de rede ao contactar a OpenAI.", {"method": method, "path": path, "error": str(e)})
            raise OpenAINetworkError(cause=e) from e
        _check_signal(signal)
        return response

    def _request_json(self, method: str, path: str, signal: Optional[threading.Event] = None, **kwargs) -> Any:
        response = self._request(method, path, signal, **kwargs)
        if not response.ok:
            error = parse_error_response(response)
            self._log("Erro devolvido pela API OpenAI.", {"path": path, "status": error.status, "message": error.detail})
            raise error
        try:
            return response.json()
        except ValueError:
            return response.text

    def _log(self, message: str, details: Any = None):
        if self.log_service is None:
            return
        try:
            self.log_service.log_openai(message, details)
        except Exception as e:
            print(f"⚠️ Não foi possível registar o evento OpenAI: {e}")

    # endpoints

    def upload_file(self, file_name: str, content: bytes, signal: Optional[threading.Event] = None) -> str:
        payload = self._request_json(
            "POST",
            "/files",
            signal,
            data={"purpose": FILE_PURPOSE},
            files={"file": (file_name, content, "application/pdf")},
        )
        file_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(file_id, str) or not file_id:
            raise OpenAIError("Resposta inesperada ao carregar o ficheiro para a OpenAI.")
        self._log("Ficheiro carregado para a OpenAI.", {"file": file_name, "file_id": file_id, "bytes": len(content)})
        return file_id

    def delete_file(self, file_id: str) -> bool:
        """Remoção best-effort: falhas são avisadas e registadas, nunca propagadas."""
        try:
            response = self._request("DELETE", f"/files/{file_id}")
            if not response.ok:
                error = parse_error_response(response)
                print(f"⚠️ Não foi possível remover o ficheiro temporário da OpenAI: {error}")
                self._log("Falha ao remover ficheiro temporário.", {"file_id": file_id, "error": str(error)})
                return False
            return True
        except Exception as e:
            print(f"⚠️ Não foi possível remover o ficheiro temporário da OpenAI: {e}")
            self._log("Falha ao remover ficheiro temporário.", {"file_id": file_id, "error": str(e)})
            return False

    def create_response(self, request: Dict[str, Any], signal: Optional[threading.Event] = None) -> Any:
        payload = self._request_json("POST", "/responses", signal, json=request)
        response_id = payload.get("id") if isinstance(payload, dict) else None
        self._log("Resposta recebida da OpenAI.", {"model": request.get("model"), "id": response_id})
        return payload

    def list_models(self, signal: Optional[threading.Event] = None) -> List[str]:
        payload = self._request_json("GET", "/models", signal)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return []
        return sorted({item["id"] for item in data if isinstance(item, dict) and isinstance(item.get("id"), str)})

    def fetch_credit_balance(self, signal: Optional[threading.Event] = None) -> CreditBalance:
        """Saldo de créditos (endpoint de faturação do dashboard).

        Este endpoint costuma exigir uma chave de sessão do browser; com uma
        chave de API normal devolve 401/403.
        """
        response = self._request("GET", "/dashboard/billing/credit_grants", signal)
        if response.status_code in (401, 403):
            error = parse_error_response(response)
            if "session" in error.detail.lower():
                raise OpenAIBalanceUnavailableError(
                    "session-key-required",
                    "O saldo só está disponível com uma chave de sessão do dashboard OpenAI.",
                )
            raise OpenAIBalanceUnavailableError("forbidden", f"Sem permissão para consultar o saldo ({error}).")
        if response.status_code == 404:
            raise OpenAIBalanceUnavailableError("not-found", "O endpoint de saldo não existe neste serviço.")
        if not response.ok:
            raise parse_error_response(response)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise OpenAIBalanceUnavailableError("unexpected-response", "Resposta de saldo inesperada.")

        totals = {}
        for key in ("total_granted", "total_used", "total_available"):
            value = payload.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise OpenAIBalanceUnavailableError("unexpected-response", "Resposta de saldo inesperada.")
            totals[key] = float(value)

        expires_at = None
        grants = payload.get("grants")
        grant_items = grants.get("data") if isinstance(grants, dict) else None
        if isinstance(grant_items, list):
            expiries = [g.get("expires_at") for g in grant_items if isinstance(g, dict)]
            expiries = [int(e) for e in expiries if isinstance(e, (int, float)) and not isinstance(e, bool)]
            if expiries:
                expires_at = min(expiries)

        currency = payload.get("currency") if isinstance(payload.get("currency"), str) else "USD"
        return CreditBalance(currency=currency.upper(), expires_at=expires_at, **totals)

    # operações

    def validate_connection(self, signal: Optional[threading.Event] = None) -> ValidationResult:
        started = time.perf_counter()
        payload = self.create_response(
            {
                "model": self.model,
                "input": [{
                    "role": "user",
                    "content": [{
                        "type": "input_text",
                        "text": 'Responde exactamente com a palavra "pong" para validar a ligação.',
                    }],
                }],
                "text": {
                    "format": {
                        "type": "json_schema",
                        "name": "ping_validation",
                        "strict": True,
                        "schema": {
                            "type": "object",
                            "properties": {"reply": {"type": "string", "enum": ["pong"]}},
                            "required": ["reply"],
                            "additionalProperties": False,
                        },
                    }
                },
            },
            signal,
        )
        latency_ms = int(round((time.perf_counter() - started) * 1000))

        parsed = extract_json_from_payload(payload)
        if not (isinstance(parsed, dict) and parsed.get("reply") == "pong"):
            self._log("Validação: formato de resposta inesperado.", {"model": self.model, "latency_ms": latency_ms})
            return ValidationResult(
                success=False,
                message="A API respondeu mas o formato não foi o esperado.",
                model=self.model,
                latency_ms=latency_ms,
            )

        result = ValidationResult(
            success=True,
            message="Ligação validada com sucesso.",
            model=self.model,
            latency_ms=latency_ms,
        )
        try:
            result.balance = self.fetch_credit_balance(signal)
        except OpenAIAbortedError:
            raise
        except OpenAIError as e:
            result.balance_error = str(e)
        self._log("Ligação validada.", {"model": self.model, "latency_ms": latency_ms})
        return result

    def extract_document(
        self,
        file_name: str,
        content: bytes,
        account_context: Optional[str] = None,
        signal: Optional[threading.Event] = None,
    ) -> DocumentExtraction:
        """Extrai os metadados de um PDF.

        O ficheiro remoto é sempre removido depois, numa tarefa à parte que não
        bloqueia o resultado; `DocumentExtraction.cleanup` permite esperar por ela.
        """
        file_id = self.upload_file(file_name, content, signal)
        cleanup: Optional[Future] = None
        try:
            payload = self.create_response(
                {
                    "model": self.model,
                    "input": [{
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": build_extraction_prompt(account_context)},
                            {"type": "input_file", "file_id": file_id},
                        ],
                    }],
                    "text": {
                        "format": {
                            "type": "json_schema",
                            "name": "document_metadata",
                            "strict": True,
                            "schema": build_document_schema(),
                        }
                    },
                },
                signal,
            )
            extraction = parse_document_extraction(extract_json_from_payload(payload), payload)
        finally:
            cleanup = self._schedule_cleanup(file_id)

        extraction.cleanup = cleanup
        self._log("Metadados extraídos.", {
            "file": file_name,
            "source_type": extraction.source_type,
            "amount": extraction.amount,
            "recurring": len(extraction.recurring_expenses),
            "settlements": len(extraction.statement_settlements),
        })
        return extraction

    # limpeza

    def _schedule_cleanup(self, file_id: str) -> Future:
        future = self._cleanup_executor.submit(self.delete_file, file_id)
        self._pending_cleanups = [f for f in self._pending_cleanups if not f.done()]
        self._pending_cleanups.append(future)
        return future

    def wait_for_cleanups(self, timeout: Optional[float] = None) -> List[bool]:
        """Espera pelas remoções pendentes (útil em testes e ao terminar o processo)."""
        pending, self._pending_cleanups = self._pending_cleanups, []
        return [future.result(timeout=timeout) for future in pending]

    def close(self):
        self.wait_for_cleanups()
        self._cleanup_executor.shutdown(wait=True)
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
