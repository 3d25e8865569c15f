"""
Persistence and provenance contracts, plus an in-memory implementation.

The orchestrator only talks to the ``JobStore`` and ``ProvenanceRecorder``
protocols. ``InMemoryStore`` implements both for the API layer, the CLI
demo and the test suite; a database-backed store implements the same
methods.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .exceptions import InvalidJobTransition, JobNotFound
from .models import (
    ConfidenceTier,
    Document,
    ExtractedField,
    ExtractionJob,
    ExtractionRecord,
    JobStatus,
    StructuredExtraction,
    utcnow,
)

logger = logging.getLogger(__name__)


# ─── Contracts ───────────────────────────────────────────────────────


class JobStore(Protocol):
    async def get_job(self, job_id: str) -> ExtractionJob: ...

    async def get_document(self, document_id: str) -> Document: ...

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str,
        error_details: Optional[dict] = None,
        extraction_result_id: Optional[str] = None,
    ) -> ExtractionJob: ...

    async def create_extraction_result(
        self,
        document_id: str,
        source_a_result: StructuredExtraction,
        source_b_result: StructuredExtraction,
        consensus: dict[str, str],
        confidence: ConfidenceTier,
        discrepancies: list[str],
    ) -> str: ...

    async def insert_extracted_fields(self, result_id: str, fields: list[ExtractedField]) -> None: ...


class ProvenanceRecorder(Protocol):
    async def record(
        self,
        result_id: str,
        source: str,
        system_version_id: Optional[str],
        user_version_id: Optional[str],
    ) -> None: ...


# ─── In-Memory Store ─────────────────────────────────────────────────


class InMemoryStore:
    """Dict-backed JobStore + ProvenanceRecorder.

    Status writes enforce the job state machine: a job never moves
    backwards and never leaves COMPLETED or FAILED.
    """

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.jobs: dict[str, ExtractionJob] = {}
        self.extractions: dict[str, ExtractionRecord] = {}
        self.fields: dict[str, list[ExtractedField]] = {}
        self.provenance: dict[tuple[str, str], dict[str, Optional[str]]] = {}

    # ── Setup helpers (request-handling layer) ──────────────────────

    def create_document(self, doc_type: str | None, filename: str = "") -> Document:
        document = Document(doc_type=doc_type, filename=filename)
        self.documents[document.id] = document
        return document

    def create_job(self, document_id: str) -> ExtractionJob:
        if document_id not in self.documents:
            raise KeyError(f"Unknown document {document_id!r}")
        job = ExtractionJob(document_id=document_id, status_message="Waiting for text detection")
        self.jobs[job.id] = job
        return job

    def get_extraction(self, result_id: str) -> ExtractionRecord | None:
        return self.extractions.get(result_id)

    def get_fields(self, result_id: str) -> list[ExtractedField]:
        return list(self.fields.get(result_id, []))

    # ── JobStore ────────────────────────────────────────────────────

    async def get_job(self, job_id: str) -> ExtractionJob:
        if job_id not in self.jobs:
            raise JobNotFound(job_id)
        return self.jobs[job_id]

    async def get_document(self, document_id: str) -> Document:
        if document_id not in self.documents:
            raise KeyError(f"Unknown document {document_id!r}")
        return self.documents[document_id]

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str,
        error_details: Optional[dict] = None,
        extraction_result_id: Optional[str] = None,
    ) -> ExtractionJob:
        job = await self.get_job(job_id)
        if not job.status.can_transition_to(status):
            raise InvalidJobTransition(job_id, job.status.value, status.value)

        now = utcnow()
        updates: dict = {"status": status, "status_message": message, "updated_at": now}
        if error_details is not None:
            updates["error_details"] = error_details
        if extraction_result_id is not None:
            updates["extraction_result_id"] = extraction_result_id
        if status == JobStatus.COMPLETED:
            updates["completed_at"] = now

        job = job.model_copy(update=updates)
        self.jobs[job_id] = job
        logger.debug("Job %s → %s: %s", job_id, status.value, message)
        return job

    async def create_extraction_result(
        self,
        document_id: str,
        source_a_result: StructuredExtraction,
        source_b_result: StructuredExtraction,
        consensus: dict[str, str],
        confidence: ConfidenceTier,
        discrepancies: list[str],
    ) -> str:
        record = ExtractionRecord(
            document_id=document_id,
            source_a_result=dict(source_a_result),
            source_b_result=dict(source_b_result),
            consensus=dict(consensus),
            confidence=confidence,
            discrepancies=sorted(discrepancies),
        )
        self.extractions[record.id] = record
        return record.id

    async def insert_extracted_fields(self, result_id: str, fields: list[ExtractedField]) -> None:
        if result_id not in self.extractions:
            raise KeyError(f"Unknown extraction result {result_id!r}")
        self.fields[result_id] = list(fields)

    # ── ProvenanceRecorder ──────────────────────────────────────────

    async def record(
        self,
        result_id: str,
        source: str,
        system_version_id: Optional[str],
        user_version_id: Optional[str],
    ) -> None:
        # Upsert on (result, source)
        self.provenance[(result_id, source)] = {
            "system_version_id": system_version_id,
            "user_version_id": user_version_id,
        }
