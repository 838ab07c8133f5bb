import os
import yaml
from dotenv import load_dotenv

from expense_models import ConnectionConfig
from openai_base_url import DEFAULT_OPENAI_BASE_URL, normalize_openai_base_url
from openai_client import DEFAULT_OPENAI_MODEL


DEFAULTS = {
    "openai": {"base_url": DEFAULT_OPENAI_BASE_URL, "model": DEFAULT_OPENAI_MODEL},
    "logs": {"page_size": 5},
    "thresholds": {"auto": 80},
    "tolerances": {"amount": 0.01, "days": 5},
    "weights": {"amount": 0.5, "date": 0.2, "name": 0.3},
}


def _config_path() -> str:
    return os.getenv(
        "AI_BUDGET_CONFIG",
        os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "extraction.yml"),
    )


def _merge_over_defaults(overrides: dict) -> dict:
    """Fusão de um nível: secções dict são atualizadas, o resto substituído."""
    merged = {section: dict(values) for section, values in DEFAULTS.items()}
    for section, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(section), dict):
            merged[section].update(value)
        else:
            merged[section] = value
    return merged


def load_app_config() -> dict:
    try:
        with open(_config_path(), "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}
    if not isinstance(cfg, dict):
        print(f"⚠️ Configuração inválida em {_config_path()}, a usar valores por omissão.")
        cfg = {}
    return _merge_over_defaults(cfg)


def load_connection_config(cfg: dict = None) -> ConnectionConfig:
    """Ligação OpenAI a partir do ambiente (.env incluído); o YAML só dá os valores por omissão."""
    load_dotenv()
    cfg = cfg or load_app_config()
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY é obrigatório para comunicar com a OpenAI.")
    openai_cfg = cfg.get("openai", {})
    return ConnectionConfig(
        api_key=api_key,
        base_url=normalize_openai_base_url(os.getenv("OPENAI_BASE_URL") or openai_cfg.get("base_url")),
        model=os.getenv("OPENAI_MODEL") or openai_cfg.get("model") or DEFAULT_OPENAI_MODEL,
    )
