from __future__ import annotations

import time

from fastapi.testclient import TestClient
import pytest

from backoffice.api.http_app import build_app
from backoffice.repositories.stub import InMemoryDocumentRepository
from backoffice.roles import validate_role
from backoffice.services.bootstrap import build_runtime_container
from backoffice.settings import OcrSettings


@pytest.mark.integration
def test_worker_role_processes_enqueued_document(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATABASE_URL", "OCR_PROVIDER", "OPENAI_API_KEY", "OPS_KILL_SWITCH_OCR"):
        monkeypatch.delenv(name, raising=False)
    container = build_runtime_container(
        validate_role("worker-ocr"),
        ocr_settings=OcrSettings(poll_interval_ms=10),
    )
    assert isinstance(container.documents, InMemoryDocumentRepository)
    container.documents.add_document("doc-A", application_id="app-1", document_type="tax_return")
    container.documents.add_version(
        "doc-A",
        content="JVBERi0xLjc=",
        metadata={"mimeType": "application/pdf", "fileName": "return.pdf"},
    )
    app = build_app(
        role="worker-ocr",
        run_id="integration-worker",
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
    )

    with TestClient(app) as client:
        assert client.post("/ocr/documents/doc-A/enqueue").status_code == 202

        status = {}
        for _ in range(200):
            status = client.get("/ocr/documents/doc-A/status").json()
            if status["status"] == "succeeded":
                break
            time.sleep(0.01)

        assert status["status"] == "succeeded"
        result = client.get("/ocr/documents/doc-A/result").json()
        assert result["provider"] == "stub"
        assert result["text"] == "Business Name: Stub Holdings LLC"

        ready = client.get("/ready").json()
        assert ready["mode"] == "worker"
        assert ready["worker_loop_enabled"] is True
        assert ready["worker_loop_ready"] is True
        assert ready["worker_metrics"]["claims_total"] >= 1


@pytest.mark.integration
def test_worker_role_exhausts_budget_for_rejected_storage_url(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATABASE_URL", "OCR_PROVIDER", "OPENAI_API_KEY", "OPS_KILL_SWITCH_OCR"):
        monkeypatch.delenv(name, raising=False)
    container = build_runtime_container(
        validate_role("worker-ocr"),
        ocr_settings=OcrSettings(poll_interval_ms=10, max_attempts=2, retry_base_delay_ms=1, retry_max_delay_ms=5),
    )
    assert isinstance(container.documents, InMemoryDocumentRepository)
    container.documents.add_document("doc-http", application_id="app-1")
    container.documents.add_version(
        "doc-http",
        content="http://files.example/doc.pdf",
        metadata={"mimeType": "application/pdf"},
    )
    app = build_app(
        role="worker-ocr",
        run_id="integration-worker",
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
    )

    with TestClient(app) as client:
        client.post("/ocr/documents/doc-http/enqueue")
        status = {}
        for _ in range(300):
            status = client.get("/ocr/documents/doc-http/status").json()
            if status["status"] == "canceled":
                break
            time.sleep(0.01)

    assert status["status"] == "canceled"
    assert status["attempt_count"] == 2
    assert status["last_error"] == "invalid_ocr_storage_url"
