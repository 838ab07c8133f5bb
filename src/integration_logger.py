"""
Registo de eventos das integrações (OpenAI, automação de documentos).

O serviço é criado uma vez por processo, inicializado explicitamente e passado
a quem precisa de registar. Cada origem guarda no máximo MAX_INTEGRATION_LOGS
entradas; as mais antigas saem primeiro.
"""

import json
import math
import time
from typing import Any, Callable, Dict, List, Optional

from expense_models import IntegrationLogEntry


LOG_SOURCES = ("openai", "automation")
MAX_INTEGRATION_LOGS = 20
DEFAULT_LOGS_PAGE_SIZE = 5
MIN_LOGS_PAGE_SIZE = 1
LOGS_STORAGE_KEY = "ai-budget-integration-logs"

MAX_DETAILS_LENGTH = 800
MAX_DETAIL_VALUE_LENGTH = 160

LogsState = Dict[str, List[IntegrationLogEntry]]
Listener = Callable[[LogsState], None]


def _truncate(value: str, limit: int = MAX_DETAILS_LENGTH) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}…"


def _clip_values(value: Any) -> Any:
    if isinstance(value, str):
        return value if len(value) <= MAX_DETAIL_VALUE_LENGTH else f"{value[:MAX_DETAIL_VALUE_LENGTH - 3]}…"
    if isinstance(value, dict):
        return {k: _clip_values(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clip_values(v) for v in value]
    return value


def serialize_details(details: Any) -> Optional[str]:
    if details is None:
        return None
    if isinstance(details, str):
        return _truncate(details)
    try:
        return _truncate(json.dumps(_clip_values(details), ensure_ascii=False, indent=2, default=str))
    except (TypeError, ValueError) as e:
        print(f"⚠️ Não foi possível serializar detalhes de log: {e}")
        return _truncate(str(details))


def _empty_state() -> LogsState:
    return {source: [] for source in LOG_SOURCES}


def _clone(state: LogsState) -> LogsState:
    return {source: list(entries) for source, entries in state.items()}


def _trim(entries: List[IntegrationLogEntry]) -> List[IntegrationLogEntry]:
    if len(entries) <= MAX_INTEGRATION_LOGS:
        return entries
    return entries[-MAX_INTEGRATION_LOGS:]


def _sanitize_entry(value: Any) -> Optional[IntegrationLogEntry]:
    if not isinstance(value, dict):
        return None
    timestamp = value.get("timestamp")
    message = value.get("message")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
        return None
    if not isinstance(message, str):
        return None
    return IntegrationLogEntry(timestamp=timestamp, message=message)


def _sanitize_list(value: Any) -> List[IntegrationLogEntry]:
    if not isinstance(value, list):
        return []
    entries = [e for e in (_sanitize_entry(v) for v in value) if e is not None]
    entries.sort(key=lambda e: e.timestamp)
    return _trim(entries)


class IntegrationLogService:
    """Cache em memória dos logs de integração, persistida num armazenamento chave-valor.

    Args:
        storage: objeto com get/set/remove (ver state_store.KeyValueStore); None
            mantém os logs apenas em memória.
    """

    def __init__(self, storage=None, clock: Callable[[], float] = time.time):
        self.storage = storage
        self.clock = clock
        self._state: Optional[LogsState] = None
        self._listeners: List[Listener] = []

    # ciclo de vida

    def initialize(self) -> "IntegrationLogService":
        self._state = self._load()
        return self

    def close(self):
        if self._state is not None:
            self._persist(self._state)
        self._state = None
        self._listeners.clear()

    def __enter__(self):
        return self.initialize()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def initialized(self) -> bool:
        return self._state is not None

    # leitura

    def get_logs(self) -> LogsState:
        return _clone(self._require_state())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.get_logs())

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # escrita

    def append(self, source: str, message: str, details: Any = None, timestamp: Optional[float] = None) -> IntegrationLogEntry:
        if source not in LOG_SOURCES:
            raise ValueError(f"Origem de log desconhecida: {source}")
        state = self._require_state()

        serialized = serialize_details(details)
        full_message = f"{message}\nDetalhes: {serialized}" if serialized else message
        entry = IntegrationLogEntry(
            timestamp=timestamp if timestamp is not None else self.clock() * 1000,
            message=full_message,
        )

        next_state = _clone(state)
        if MAX_INTEGRATION_LOGS > 0:
            next_state[source] = _trim(next_state[source] + [entry])
        self._state = next_state
        self._persist(next_state)
        self._notify(next_state)
        return entry

    def log_openai(self, message: str, details: Any = None) -> IntegrationLogEntry:
        return self.append("openai", message, details)

    def log_automation(self, message: str, details: Any = None) -> IntegrationLogEntry:
        return self.append("automation", message, details)

    def clear(self):
        self._state = _empty_state()
        if self.storage is not None:
            try:
                self.storage.remove(LOGS_STORAGE_KEY)
            except Exception as e:
                print(f"⚠️ Não foi possível remover os logs persistidos: {e}")
        self._notify(self._state)

    # interno

    def _require_state(self) -> LogsState:
        if self._state is None:
            raise RuntimeError("IntegrationLogService não foi inicializado (chame initialize()).")
        return self._state

    def _load(self) -> LogsState:
        if self.storage is None:
            return _empty_state()
        try:
            raw = self.storage.get(LOGS_STORAGE_KEY)
            if not raw:
                return _empty_state()
            parsed = json.loads(raw)
        except Exception as e:
            print(f"⚠️ Não foi possível ler os logs persistidos: {e}")
            self._remove_persisted()
            return _empty_state()
        if not isinstance(parsed, dict):
            self._remove_persisted()
            return _empty_state()
        return {source: _sanitize_list(parsed.get(source)) for source in LOG_SOURCES}

    def _remove_persisted(self):
        try:
            self.storage.remove(LOGS_STORAGE_KEY)
        except Exception as e:
            print(f"⚠️ Não foi possível remover os logs persistidos: {e}")

    def _persist(self, state: LogsState):
        if self.storage is None:
            return
        payload = {
            source: [{"timestamp": e.timestamp, "message": e.message} for e in _trim(entries)]
            for source, entries in state.items()
        }
        try:
            self.storage.set(LOGS_STORAGE_KEY, payload)
        except Exception as e:
            print(f"⚠️ Não foi possível guardar os logs de integração: {e}")

    def _notify(self, state: LogsState):
        for listener in list(self._listeners):
            try:
                listener(_clone(state))
            except Exception as e:
                print(f"⚠️ Listener de logs falhou: {e}")


def normalize_logs_per_page(value: Any = None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_LOGS_PAGE_SIZE
    rounded = math.floor(value)
    if rounded < MIN_LOGS_PAGE_SIZE:
        return DEFAULT_LOGS_PAGE_SIZE
    if rounded > MAX_INTEGRATION_LOGS:
        return MAX_INTEGRATION_LOGS
    return rounded


def paginate_logs(items: List[Any], page_size: Any, page: Any) -> Dict[str, Any]:
    total_items = len(items)
    size = normalize_logs_per_page(page_size)
    total_pages = 1 if total_items == 0 else max(1, math.ceil(total_items / size))

    try:
        requested = math.floor(page) or 1
    except (TypeError, ValueError, OverflowError):
        requested = 1
    safe_page = min(max(requested, 1), total_pages)

    if total_items == 0:
        return {
            "items": [], "page": 1, "page_size": size, "total_items": 0, "total_pages": 1,
            "range_start": 0, "range_end": 0, "has_multiple_pages": False,
        }

    start = (safe_page - 1) * size
    page_items = list(items[start:min(start + size, total_items)])
    return {
        "items": page_items,
        "page": safe_page,
        "page_size": size,
        "total_items": total_items,
        "total_pages": total_pages,
        "range_start": start + 1,
        "range_end": start + len(page_items),
        "has_multiple_pages": total_pages > 1,
    }
