"""
FastAPI endpoint tests for the Extraction Consensus API.

Uses httpx + FastAPI TestClient — no real server needed, no LLM calls.
"""

from __future__ import annotations

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from extraction_consensus.store import InMemoryStore

client = TestClient(app)


@pytest.fixture(autouse=True)
def _wire_pipeline() -> None:
    """Fresh store + processor for every test (bypasses lifespan)."""
    api._store = InMemoryStore()
    api._processor = api.build_processor(api._store)
    yield  # type: ignore[misc]
    api._store = None
    api._processor = None


# ─── Sample data ────────────────────────────────────────────────────

OCR_TEXT = (
    "PATENTE DE COMERCIO DE EMPRESA\n"
    "Número de Patente: 778899\n"
    "Nombre de la Entidad: Librería El Cóndor\n"
    "Número de Registro: 12345\n"
    "Titular: José Ramón Pérez Muñoz\n"
    "Fecha de Inscripción: 15/03/2019"
)

OCR_BLOCKS = [
    {"text": line, "page": 1, "top": 0.05 + i * 0.1, "left": 0.1, "block_type": "LINE"}
    for i, line in enumerate(OCR_TEXT.splitlines())
]

SOURCE_A = {
    "numero_patente": "778899",
    "nombre_entidad": "Librería El Cóndor",
    "numero_registro": "12345",
    "titular": "José Ramón Pérez Muñoz",
    "fecha_inscripcion_dia": "15",
    "fecha_inscripcion_mes": "03",
    "fecha_inscripcion_ano": "2019",
}


def _consensus(source_b: dict, **extra) -> dict:
    body = {"doc_type": "patente_empresa", "source_a": SOURCE_A, "source_b": source_b, **extra}
    return client.post("/consensus", json=body).json()


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["document_types"] == ["patente_empresa", "patente_sociedad"]


class TestConsensusEndpoint:
    def test_agreement(self) -> None:
        data = _consensus(dict(SOURCE_A))
        assert data["confidence"] == "CONSENSUS"
        assert data["discrepancies"] == []
        assert data["consensus"]["fecha_inscripcion"] == "15/03/2019"

    def test_critical_disagreement(self) -> None:
        data = _consensus({**SOURCE_A, "numero_registro": "1234S"})
        assert data["confidence"] == "REVIEW_REQUIRED"
        assert data["discrepancies"] == ["numero_registro"]
        assert data["consensus"]["numero_registro"] == "12345"

    def test_null_and_sentinel_values(self) -> None:
        data = _consensus({**SOURCE_A, "titular": None}, source_a={**SOURCE_A, "titular": "[VACÍO]"})
        assert data["consensus"]["titular"] == ""
        assert data["confidence"] == "CONSENSUS"

    def test_fields_carry_labels_and_words(self) -> None:
        fields = {f["name"]: f for f in _consensus(dict(SOURCE_A))["fields"]}
        assert fields["numero_registro"]["label"] == "Número de Registro"
        assert fields["fecha_inscripcion"]["value_in_words"] == "quince de marzo de dos mil diecinueve"

    def test_ocr_verification_escalates(self) -> None:
        agreed = {**SOURCE_A, "numero_registro": "54321"}
        body = {
            "doc_type": "patente_empresa",
            "source_a": agreed,
            "source_b": agreed,
            "ocr_blocks": OCR_BLOCKS,
        }
        data = client.post("/consensus", json=body).json()
        assert data["confidence"] == "REVIEW_REQUIRED"
        assert data["discrepancies"] == ["numero_registro"]
        statuses = {v["field"]: v["status"] for v in data["verifications"]}
        assert statuses["numero_registro"] == "NOT_FOUND"
        assert statuses["numero_patente"] == "CONFIRMED"

    def test_unsupported_type_returns_400(self) -> None:
        resp = client.post(
            "/consensus", json={"doc_type": "otros", "source_a": {}, "source_b": {}}
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "UNSUPPORTED_DOCUMENT_TYPE"

    def test_missing_body_returns_422(self) -> None:
        resp = client.post("/consensus", json={})
        assert resp.status_code == 422


class TestJobEndpoints:
    def _create(self, doc_type: str = "patente_empresa") -> str:
        resp = client.post("/jobs", json={"doc_type": doc_type, "filename": "patente.pdf"})
        assert resp.status_code == 201
        return resp.json()["job"]["id"]

    def test_create_job_is_pending(self) -> None:
        job_id = self._create()
        data = client.get(f"/jobs/{job_id}").json()
        assert data["job"]["status"] == "PENDING"
        assert data["fields"] == []

    def test_process_job(self) -> None:
        job_id = self._create()
        resp = client.post(f"/jobs/{job_id}/process", json={"text": OCR_TEXT, "blocks": OCR_BLOCKS})
        assert resp.status_code == 200
        data = resp.json()
        assert data["job"]["status"] == "COMPLETED"
        fields = {f["name"]: f for f in data["fields"]}
        assert fields["numero_registro"]["value"] == "12345"
        assert fields["nombre_entidad"]["value"] == "Librería El Cóndor"

    def test_poll_after_processing(self) -> None:
        job_id = self._create()
        client.post(f"/jobs/{job_id}/process", json={"text": OCR_TEXT})
        data = client.get(f"/jobs/{job_id}").json()
        assert data["job"]["status"] == "COMPLETED"
        assert data["job"]["extraction_result_id"]
        assert data["fields"]

    def test_unsupported_type_fails_job(self) -> None:
        job_id = self._create("otros")
        resp = client.post(f"/jobs/{job_id}/process", json={"text": OCR_TEXT})
        assert resp.status_code == 422
        job = resp.json()["job"]
        assert job["status"] == "FAILED"
        assert job["error_details"]["code"] == "UNSUPPORTED_DOCUMENT_TYPE"

    def test_reprocessing_returns_409(self) -> None:
        job_id = self._create()
        client.post(f"/jobs/{job_id}/process", json={"text": OCR_TEXT})
        resp = client.post(f"/jobs/{job_id}/process", json={"text": OCR_TEXT})
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "INVALID_JOB_TRANSITION"

    def test_unknown_job_returns_404(self) -> None:
        assert client.get("/jobs/missing").status_code == 404
        assert client.post("/jobs/missing/process", json={"text": ""}).status_code == 404


class TestUninitialised:
    def test_returns_503_without_store(self) -> None:
        api._store = None
        resp = client.post("/jobs", json={"doc_type": "patente_empresa"})
        assert resp.status_code == 503
