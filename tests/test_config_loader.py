import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import config_loader
from config_loader import DEFAULTS, load_app_config, load_connection_config


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("AI_BUDGET_CONFIG", str(tmp_path / "nao-existe.yml"))
    cfg = load_app_config()
    assert cfg == DEFAULTS
    assert cfg["weights"] is not DEFAULTS["weights"]


def test_yaml_is_shallow_merged(tmp_path, monkeypatch):
    path = tmp_path / "extraction.yml"
    path.write_text("thresholds:\n  auto: 90\nopenai:\n  model: gpt-4o\nextra: 1\n", encoding="utf-8")
    monkeypatch.setenv("AI_BUDGET_CONFIG", str(path))
    cfg = load_app_config()
    assert cfg["thresholds"]["auto"] == 90
    assert cfg["openai"]["model"] == "gpt-4o"
    assert cfg["openai"]["base_url"] == DEFAULTS["openai"]["base_url"]
    assert cfg["extra"] == 1


@patch.object(config_loader, "load_dotenv")
def test_connection_config_from_environment(_load_dotenv, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8787/v1/")
    monkeypatch.delenv("OPENAI_MODEL", raising=False)
    connection = load_connection_config({"openai": {"model": "gpt-4.1-mini"}})
    assert connection.api_key == "sk-env"
    assert connection.base_url == "http://localhost:8787/v1"
    assert connection.model == "gpt-4.1-mini"


@patch.object(config_loader, "load_dotenv")
def test_connection_config_requires_api_key(_load_dotenv, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        load_connection_config(dict(DEFAULTS))
