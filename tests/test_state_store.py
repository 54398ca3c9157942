import json

import pytest

from circuitgate.core.config import BreakerConfig
from circuitgate.core.errors import StateStoreError
from circuitgate.core.schemas import CircuitState
from circuitgate.orchestration.circuit_breaker import create_circuit_breaker
from circuitgate.storage.state_store import InMemoryStateStore, JsonFileStateStore, state_key


def test_state_key_prefix():
    assert state_key("unified-ai") == "circuit_breaker_unified-ai"


def test_file_store_persists_breaker_across_instances(tmp_path):
    path = tmp_path / "state" / "breakers.json"
    config = BreakerConfig(failure_threshold=2, reset_timeout_ms=30000)
    breaker = create_circuit_breaker("gemini", config, JsonFileStateStore(path), clock=lambda: 5000)
    breaker.record_failure(RuntimeError("quota"))
    breaker.record_failure(RuntimeError("quota"))

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk == {
        "circuit_breaker_gemini": {
            "state": "OPEN",
            "failureCount": 2,
            "lastFailureTime": 5000,
            "nextAttemptTime": 35000,
        }
    }

    revived = create_circuit_breaker("gemini", config, JsonFileStateStore(path), clock=lambda: 6000)
    assert revived.state == CircuitState.open
    assert revived.get_status().time_until_retry == 29000


def test_file_store_missing_file_is_empty(tmp_path):
    store = JsonFileStateStore(tmp_path / "missing.json")
    assert store.get("circuit_breaker_openai") is None
    assert store.keys() == []


def test_file_store_rejects_corrupt_file(tmp_path):
    path = tmp_path / "breakers.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStateStore(path)
    with pytest.raises(StateStoreError):
        store.get("circuit_breaker_openai")


def test_file_store_delete_keeps_other_keys(tmp_path):
    store = JsonFileStateStore(tmp_path / "breakers.json")
    store.set("a", {"state": "CLOSED"})
    store.set("b", {"state": "OPEN"})
    store.delete("a")
    store.delete("never-there")
    assert store.keys() == ["b"]


def test_memory_store_returns_copies():
    store = InMemoryStateStore()
    record = {"state": "CLOSED", "failureCount": 0}
    store.set("k", record)
    record["failureCount"] = 9
    fetched = store.get("k")
    fetched["state"] = "OPEN"
    assert store.get("k") == {"state": "CLOSED", "failureCount": 0}
