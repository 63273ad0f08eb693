import hashlib
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from resumable_upload import main
from resumable_upload.coordination import MemoryCoordinationStore
from resumable_upload.coordinator import build_coordinator
from resumable_upload.registry import MemoryFileRegistry
from resumable_upload.storage import LocalBlobStore


def _events_from_caplog(caplog, logger_name: str) -> list[dict]:
    events: list[dict] = []
    for record in caplog.records:
        if record.name != logger_name:
            continue
        try:
            events.append(json.loads(record.getMessage()))
        except json.JSONDecodeError:
            continue
    return events


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    coordinator = build_coordinator(
        storage=LocalBlobStore(str(tmp_path)),
        store=MemoryCoordinationStore(),
        registry=MemoryFileRegistry(),
    )
    monkeypatch.setattr(main, "coordinator", coordinator)
    monkeypatch.setattr(main.settings, "registry_backend", "memory")
    with TestClient(main.app) as test_client:
        yield test_client


def test_request_completed_log_contains_request_id(client: TestClient, caplog) -> None:
    caplog.set_level("INFO", logger="rus.request")
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "req-123"

    events = _events_from_caplog(caplog, "rus.request")
    completed = [e for e in events if e.get("event") == "request_completed" and e.get("path") == "/health"]
    assert completed
    assert completed[-1]["request_id"] == "req-123"
    assert completed[-1]["status_code"] == 200
    assert "trace_id" in completed[-1]


def test_request_error_log_contains_file_hash_and_error_code(client: TestClient, caplog) -> None:
    caplog.set_level("INFO", logger="rus.request")
    response = client.put(
        f"/v1/uploads/{'feedface' * 4}/fragments/7",
        content=b"data",
        headers={"X-Total-Count": "2", "X-Fragment-Hash": "x"},
    )
    assert response.status_code == 400

    events = _events_from_caplog(caplog, "rus.request")
    errors = [e for e in events if e.get("event") == "request_error"]
    assert errors
    assert errors[-1]["file_hash"] == "feedface" * 4
    assert errors[-1]["error_code"] == "invalid_fragment_index"
    assert errors[-1]["error_class"] == "client_error"


def test_fragment_acceptance_is_audited(client: TestClient, caplog) -> None:
    caplog.set_level("INFO", logger="rus.audit")
    payload = b"only fragment"
    file_hash = "0" * 32
    response = client.put(
        f"/v1/uploads/{file_hash}/fragments/0",
        content=payload,
        headers={"X-Total-Count": "2", "X-Fragment-Hash": hashlib.md5(payload).hexdigest()},
    )
    assert response.status_code == 202

    events = _events_from_caplog(caplog, "rus.audit")
    accepted = [e for e in events if e.get("action") == "fragment_accepted"]
    assert accepted
    assert accepted[-1]["file_hash"] == file_hash
    assert accepted[-1]["arrived_count"] == 1
    assert accepted[-1]["total_count"] == 2
