import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from integration_logger import DEFAULT_LOGS_PAGE_SIZE, MAX_INTEGRATION_LOGS


SETTINGS_STORAGE_KEY = "ai-budget-settings"


@dataclass
class AppSettings:
    open_ai_api_key: Optional[str] = None
    open_ai_base_url: Optional[str] = None
    open_ai_model: Optional[str] = None
    auto_detect_fixed_expenses: bool = True
    integration_logs_page_size: int = DEFAULT_LOGS_PAGE_SIZE


def sanitize_settings(raw: Any) -> Optional[Dict[str, Any]]:
    """Só os campos conhecidos e com o tipo certo; None se nada sobrar."""
    if not isinstance(raw, dict):
        return None
    result: Dict[str, Any] = {}
    for key in ("open_ai_api_key", "open_ai_base_url", "open_ai_model"):
        if isinstance(raw.get(key), str):
            result[key] = raw[key]
    if isinstance(raw.get("auto_detect_fixed_expenses"), bool):
        result["auto_detect_fixed_expenses"] = raw["auto_detect_fixed_expenses"]
    page_size = raw.get("integration_logs_page_size")
    if isinstance(page_size, int) and not isinstance(page_size, bool) and 1 <= page_size <= MAX_INTEGRATION_LOGS:
        result["integration_logs_page_size"] = page_size
    return result or None


class SettingsStore:
    def __init__(self, storage):
        self.storage = storage

    def load(self) -> AppSettings:
        try:
            raw = self.storage.get(SETTINGS_STORAGE_KEY)
            if not raw:
                return AppSettings()
            parsed = json.loads(raw)
        except Exception as e:
            print(f"⚠️ Não foi possível ler as definições guardadas: {e}")
            self.clear()
            return AppSettings()

        sanitized = sanitize_settings(parsed)
        if sanitized is None:
            self.clear()
            return AppSettings()
        return AppSettings(**sanitized)

    def persist(self, settings: AppSettings):
        sanitized = sanitize_settings(asdict(settings)) or {}
        try:
            self.storage.set(SETTINGS_STORAGE_KEY, sanitized)
        except Exception as e:
            print(f"⚠️ Não foi possível guardar as definições: {e}")

    def clear(self):
        try:
            self.storage.remove(SETTINGS_STORAGE_KEY)
        except Exception as e:
            print(f"⚠️ Não foi possível remover as definições guardadas: {e}")
