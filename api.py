"""
Extraction Consensus — FastAPI Server
=====================================

Thin request-handling layer around the consensus pipeline.

Endpoints:
    POST /consensus             Reconcile two extractions (+ optional OCR check)
    POST /jobs                  Register a document and create an extraction job
    POST /jobs/{job_id}/process Run the pipeline on a job's OCR output
    GET  /jobs/{job_id}         Poll a job's status
    GET  /health                Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from extraction_consensus import __version__
from extraction_consensus.config import Settings
from extraction_consensus.consensus import (
    apply_verification,
    compare_results,
    to_extracted_fields,
    verification_candidates,
)
from extraction_consensus.exceptions import (
    ExtractionPipelineError,
    InvalidJobTransition,
    JobAlreadyRunning,
    JobNotFound,
    UnsupportedDocumentType,
)
from extraction_consensus.models import (
    ConfidenceTier,
    ExtractedField,
    ExtractionJob,
    FieldComparison,
    OcrOutput,
    OcrToken,
    VerificationResult,
)
from extraction_consensus.orchestrator import ExtractionJobProcessor
from extraction_consensus.schemas import DOCUMENT_SCHEMAS, get_schema
from extraction_consensus.sources import LabeledTextSource, OpenAIExtractionSource
from extraction_consensus.store import InMemoryStore
from extraction_consensus.verifier import FieldVerifier

# ─── Load .env if available ──────────────────────────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── Application Lifespan (wire store + processor) ──────────────────

_store: InMemoryStore | None = None
_processor: ExtractionJobProcessor | None = None


def build_processor(store: InMemoryStore, settings: Settings | None = None) -> ExtractionJobProcessor:
    """LLM for Source A when an API key is configured, deterministic labels otherwise."""
    settings = settings or Settings()
    if os.environ.get("OPENAI_API_KEY"):
        source_a = OpenAIExtractionSource("Source A", settings)
    else:
        source_a = LabeledTextSource("Source A")
    return ExtractionJobProcessor(
        store, source_a, LabeledTextSource("Source B"), provenance=store, settings=settings
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _store, _processor  # noqa: PLW0603
    _store = InMemoryStore()
    _processor = build_processor(_store)
    yield
    _store = None
    _processor = None


app = FastAPI(
    title="Extraction Consensus API",
    description=(
        "Dual-source field extraction for Guatemalan legal documents: "
        "normalized consensus, confidence tiers and OCR cross-verification "
        "of critical fields."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ConsensusRequest(BaseModel):
    doc_type: str = Field(..., json_schema_extra={"example": "patente_empresa"})
    source_a: dict[str, Optional[str]]
    source_b: dict[str, Optional[str]]
    ocr_blocks: list[OcrToken] = Field(default_factory=list)


class ConsensusResponse(BaseModel):
    confidence: ConfidenceTier
    discrepancies: list[str]
    consensus: dict[str, str]
    fields: list[ExtractedField]
    comparisons: list[FieldComparison]
    verifications: list[VerificationResult]


class CreateJobRequest(BaseModel):
    doc_type: Optional[str] = Field(None, json_schema_extra={"example": "patente_sociedad"})
    filename: str = ""


class JobResponse(BaseModel):
    job: ExtractionJob
    fields: list[ExtractedField] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
    document_types: list[str]


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_store() -> InMemoryStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Store not initialised")
    return _store


def _get_processor() -> ExtractionJobProcessor:
    if _processor is None:
        raise HTTPException(status_code=503, detail="Processor not initialised")
    return _processor


def _job_response(store: InMemoryStore, job: ExtractionJob) -> JobResponse:
    fields = store.get_fields(job.extraction_result_id) if job.extraction_result_id else []
    return JobResponse(job=job, fields=fields)


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/consensus",
    summary="Reconcile two structured extractions",
    tags=["Consensus"],
    responses={400: {"description": "Unsupported document type"}},
)
def run_consensus(request: ConsensusRequest) -> ConsensusResponse:
    """Compare Source A and Source B, then cross-check critical fields against OCR blocks if given."""
    try:
        schema = get_schema(request.doc_type)
    except UnsupportedDocumentType as e:
        raise HTTPException(status_code=400, detail={"code": e.code, "message": str(e)})

    result = compare_results(request.source_a, request.source_b, schema.doc_type)

    if request.ocr_blocks:
        verifier = FieldVerifier(request.ocr_blocks)
        verifications = verifier.verify_fields(verification_candidates(result, schema))
        apply_verification(result, verifications)

    return ConsensusResponse(
        confidence=result.confidence,
        discrepancies=sorted(result.discrepancies),
        consensus=result.consensus,
        fields=to_extracted_fields(result, schema.doc_type),
        comparisons=result.comparisons,
        verifications=result.verifications,
    )


@app.post("/jobs", summary="Create an extraction job", tags=["Jobs"], status_code=201)
def create_job(request: CreateJobRequest) -> JobResponse:
    store = _get_store()
    document = store.create_document(request.doc_type, request.filename)
    job = store.create_job(document.id)
    return JobResponse(job=job)


@app.post(
    "/jobs/{job_id}/process",
    summary="Run extraction, consensus and verification for a job",
    tags=["Jobs"],
    responses={
        404: {"description": "Job not found"},
        409: {"description": "Job already running or already finished"},
        422: {"description": "Job failed; body carries the FAILED job"},
    },
)
async def process_job(job_id: str, ocr: OcrOutput):
    store = _get_store()
    processor = _get_processor()

    try:
        job = await processor.process_job(job_id, ocr.text, ocr.blocks)
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    except (JobAlreadyRunning, InvalidJobTransition) as e:
        raise HTTPException(status_code=409, detail={"code": e.code, "message": str(e)})
    except ExtractionPipelineError:
        failed = await store.get_job(job_id)
        return JSONResponse(status_code=422, content=JobResponse(job=failed).model_dump(mode="json"))

    return _job_response(store, job)


@app.get(
    "/jobs/{job_id}",
    summary="Poll job status",
    tags=["Jobs"],
    responses={404: {"description": "Job not found"}},
)
async def get_job(job_id: str) -> JobResponse:
    store = _get_store()
    try:
        job = await store.get_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return _job_response(store, job)


@app.get("/health", summary="Health check", tags=["System"])
def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        document_types=sorted(DOCUMENT_SCHEMAS),
    )
