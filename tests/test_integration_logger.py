import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from integration_logger import (
    DEFAULT_LOGS_PAGE_SIZE,
    LOGS_STORAGE_KEY,
    MAX_INTEGRATION_LOGS,
    MIN_LOGS_PAGE_SIZE,
    IntegrationLogService,
    normalize_logs_per_page,
    paginate_logs,
    serialize_details,
)


class MemoryStorage:
    def __init__(self, initial=None):
        self.data = dict(initial or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value if isinstance(value, str) else json.dumps(value)

    def remove(self, key):
        self.data.pop(key, None)


class BrokenStorage(MemoryStorage):
    def set(self, key, value):
        raise IOError("disco cheio")


def make_clock(start=1000.0):
    ticks = iter(range(10_000))
    return lambda: start + next(ticks)


def test_requires_initialize():
    service = IntegrationLogService()
    with pytest.raises(RuntimeError):
        service.log_openai("x")
    assert not service.initialized


def test_append_adds_details_and_persists():
    storage = MemoryStorage()
    with IntegrationLogService(storage, clock=make_clock()) as service:
        entry = service.log_openai("Ficheiro carregado.", {"file": "a.pdf", "bytes": 10})
        assert entry.timestamp == 1000.0 * 1000
        assert entry.message.startswith("Ficheiro carregado.\nDetalhes: {")
        assert '"file": "a.pdf"' in entry.message
        assert service.get_logs()["automation"] == []

    stored = json.loads(storage.data[LOGS_STORAGE_KEY])
    assert stored["openai"][0]["message"] == entry.message


def test_unknown_source_is_rejected():
    service = IntegrationLogService().initialize()
    with pytest.raises(ValueError):
        service.append("firebase", "x")


def test_oldest_entries_are_evicted():
    service = IntegrationLogService(clock=make_clock()).initialize()
    for i in range(MAX_INTEGRATION_LOGS + 5):
        service.log_automation(f"evento {i}")
    entries = service.get_logs()["automation"]
    assert len(entries) == MAX_INTEGRATION_LOGS
    assert entries[0].message == "evento 5"
    assert entries[-1].message == f"evento {MAX_INTEGRATION_LOGS + 4}"


def test_load_sanitizes_persisted_entries():
    persisted = {
        "openai": [
            {"timestamp": 3, "message": "c"},
            {"timestamp": 1, "message": "a"},
            {"timestamp": "x", "message": "inválido"},
            {"timestamp": 2},
            "lixo",
        ],
        "automation": "não é lista",
    }
    storage = MemoryStorage({LOGS_STORAGE_KEY: json.dumps(persisted)})
    service = IntegrationLogService(storage).initialize()
    logs = service.get_logs()
    assert [e.message for e in logs["openai"]] == ["a", "c"]
    assert logs["automation"] == []


def test_corrupt_payload_is_removed(capsys):
    storage = MemoryStorage({LOGS_STORAGE_KEY: "{isto não é json"})
    service = IntegrationLogService(storage).initialize()
    assert service.get_logs() == {"openai": [], "automation": []}
    assert LOGS_STORAGE_KEY not in storage.data
    assert "⚠️" in capsys.readouterr().out


def test_persist_failure_only_warns(capsys):
    service = IntegrationLogService(BrokenStorage()).initialize()
    service.log_openai("ok")
    assert len(service.get_logs()["openai"]) == 1
    assert "disco cheio" in capsys.readouterr().out


def test_subscribe_and_unsubscribe():
    service = IntegrationLogService().initialize()
    seen = []
    unsubscribe = service.subscribe(lambda state: seen.append(len(state["openai"])))
    service.log_openai("um")
    unsubscribe()
    service.log_openai("dois")
    assert seen == [0, 1]


def test_failing_listener_does_not_break_append(capsys):
    service = IntegrationLogService().initialize()
    calls = []

    def listener(state):
        calls.append(state)
        if len(calls) > 1:
            raise RuntimeError("ups")

    service.subscribe(listener)
    service.log_openai("x")
    assert len(service.get_logs()["openai"]) == 1
    assert "ups" in capsys.readouterr().out


def test_get_logs_returns_copies():
    service = IntegrationLogService().initialize()
    service.log_openai("x")
    service.get_logs()["openai"].clear()
    assert len(service.get_logs()["openai"]) == 1


def test_clear_removes_persisted_logs():
    storage = MemoryStorage()
    service = IntegrationLogService(storage).initialize()
    service.log_automation("x")
    service.clear()
    assert service.get_logs()["automation"] == []
    assert LOGS_STORAGE_KEY not in storage.data


def test_serialize_details_clips_long_values():
    text = serialize_details({"message": "a" * 500})
    assert "a" * 157 + "…" in text
    assert "a" * 158 not in text
    assert len(serialize_details("b" * 2000)) == 801
    assert serialize_details(None) is None


class TestNormalizeLogsPerPage:
    def test_invalid_values_use_default(self):
        assert normalize_logs_per_page(None) == DEFAULT_LOGS_PAGE_SIZE
        assert normalize_logs_per_page(float("nan")) == DEFAULT_LOGS_PAGE_SIZE
        assert normalize_logs_per_page("7") == DEFAULT_LOGS_PAGE_SIZE

    def test_rounds_and_clamps(self):
        assert normalize_logs_per_page(1.8) == 1
        assert normalize_logs_per_page(0) == DEFAULT_LOGS_PAGE_SIZE
        assert normalize_logs_per_page(-10) == DEFAULT_LOGS_PAGE_SIZE
        assert normalize_logs_per_page(1000) == MAX_INTEGRATION_LOGS


class TestPaginateLogs:
    @staticmethod
    def build_items(total):
        return list(range(1, total + 1))

    def test_empty(self):
        result = paginate_logs([], DEFAULT_LOGS_PAGE_SIZE, 2)
        assert result["items"] == []
        assert result["page"] == 1
        assert result["total_items"] == 0
        assert result["total_pages"] == 1
        assert result["has_multiple_pages"] is False

    def test_first_page_ranges(self):
        result = paginate_logs(self.build_items(12), DEFAULT_LOGS_PAGE_SIZE, 1)
        assert result["items"] == [1, 2, 3, 4, 5]
        assert result["range_start"] == 1
        assert result["range_end"] == 5
        assert result["total_pages"] == 3
        assert result["has_multiple_pages"] is True

    def test_page_past_the_end_is_clamped(self):
        result = paginate_logs(self.build_items(9), 4, 5)
        assert result["page"] == 3
        assert result["items"] == [9]
        assert result["range_start"] == 9
        assert result["range_end"] == 9

    def test_minimum_page_is_one(self):
        assert paginate_logs(self.build_items(3), DEFAULT_LOGS_PAGE_SIZE, -10)["page"] == 1

    def test_out_of_range_page_size(self):
        result = paginate_logs(self.build_items(30), MIN_LOGS_PAGE_SIZE - 10, 1)
        assert result["page_size"] > 0
        assert len(result["items"]) == result["page_size"]
