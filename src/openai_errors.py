from typing import Optional


NETWORK_ERROR_MESSAGE = "Não foi possível contactar o serviço OpenAI. Verifique a ligação e o URL base."
GENERIC_API_ERROR_MESSAGE = "Erro desconhecido ao comunicar com a API"


class OpenAIError(Exception):
    """Base de todos os erros do cliente OpenAI."""


class OpenAINetworkError(OpenAIError):
    """Falha de transporte (DNS, ligação recusada, timeout do transporte)."""

    def __init__(self, message: str = NETWORK_ERROR_MESSAGE, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class OpenAIAbortedError(OpenAIError):
    """Pedido cancelado pelo chamador. Não é sucesso nem falha: não registar nem repetir."""

    def __init__(self, message: str = "Pedido cancelado."):
        super().__init__(message)


class OpenAIRequestError(OpenAIError):
    """Erro reportado pela API (status HTTP + mensagem do corpo)."""

    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.detail = message


class OpenAIBalanceUnavailableError(OpenAIError):
    """Saldo indisponível; `reason` é legível por máquina.

    reason: session-key-required | forbidden | not-found | unexpected-response
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
