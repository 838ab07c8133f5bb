import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional


def _get_db_path() -> str:
    """Caminho da BD lido do ambiente em cada ligação (segue o monkeypatch dos testes)."""
    return os.getenv("AI_BUDGET_STATE_DB", "ai_budget_state.db")


@contextmanager
def _conn():
    con = sqlite3.connect(_get_db_path())
    con.execute("PRAGMA journal_mode=WAL;")
    try:
        yield con
        con.commit()
    finally:
        con.close()


def init_db():
    with _conn() as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
              key TEXT PRIMARY KEY,
              value_json TEXT,
              updated_at TEXT
            );
            """
        )


def kv_get(key: str) -> Optional[str]:
    """Valor cru (texto JSON) guardado em `key`, ou None."""
    with _conn() as con:
        cur = con.execute("SELECT value_json FROM kv_store WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None


def kv_set(key: str, value: Any):
    payload = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    with _conn() as con:
        con.execute(
            "INSERT OR REPLACE INTO kv_store(key, value_json, updated_at) VALUES (?,?,?)",
            (key, payload, datetime.utcnow().isoformat()),
        )


def kv_remove(key: str):
    with _conn() as con:
        con.execute("DELETE FROM kv_store WHERE key=?", (key,))


class KeyValueStore:
    """get/set/remove sobre o kv_store, para injetar nos serviços."""

    def __init__(self, auto_init: bool = True):
        if auto_init:
            init_db()

    def get(self, key: str) -> Optional[str]:
        return kv_get(key)

    def set(self, key: str, value: Any):
        kv_set(key, value)

    def remove(self, key: str):
        kv_remove(key)
