"""
Extraction job orchestrator — drives one job from "OCR done" to "result persisted".

Flow:
  ┌──────────────────┐
  │ OCR text + blocks│
  └────────┬─────────┘
           │
  ┌────────▼────────┐     ┌────────────────┐
  │    Source A     │     │    Source B    │   ← Concurrent, joined (not raced)
  └────────┬────────┘     └───────┬────────┘
           └───────────┬──────────┘
                ┌──────▼──────┐
                │  Consensus  │   ← Normalized comparison + tier
                └──────┬──────┘
                ┌──────▼──────┐
                │  Verifier   │   ← Critical fields vs OCR (advisory)
                └──────┬──────┘
                ┌──────▼──────┐
                │   Persist   │   ← Result, fields, provenance, job status
                └─────────────┘

State machine:
  PENDING → PROCESSING_TEXTRACT → PROCESSING_LLM → {COMPLETED | FAILED}

Design principles:
  - Both sources are required. A one-sided extraction defeats the
    consensus guarantee, so either source failing fails the job.
  - Verification can only raise suspicion; its own failures never fail
    the job.
  - The persisted job status is always updated before ``process_job``
    returns or raises.
  - No retries here. A FAILED job stays FAILED; the caller creates a new
    attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import Settings
from .consensus import (
    apply_verification,
    compare_results,
    to_extracted_fields,
    verification_candidates,
)
from .exceptions import (
    NO_RESULT,
    ExtractionPipelineError,
    JobAlreadyRunning,
    PersistenceFailure,
    SourceExtractionFailure,
)
from .models import (
    ConsensusResult,
    ExtractionJob,
    JobStatus,
    OcrToken,
    SourceOutput,
)
from .schemas import DocumentSchema, get_schema
from .sources import ExtractionSource, SourceResult, as_extraction
from .store import JobStore, ProvenanceRecorder
from .verifier import FieldVerifier

logger = logging.getLogger(__name__)


class ExtractionJobProcessor:
    """Runs the consensus pipeline for extraction jobs.

    Usage:
        processor = ExtractionJobProcessor(store, source_a, source_b, provenance=store)
        job = await processor.process_job(job_id, ocr.text, ocr.blocks)
        if job.status == JobStatus.COMPLETED:
            fields = store.get_fields(job.extraction_result_id)

    At most one ``process_job`` call per job id may be active on a
    processor; a concurrent second call raises JobAlreadyRunning.
    """

    def __init__(
        self,
        store: JobStore,
        source_a: ExtractionSource,
        source_b: ExtractionSource,
        provenance: Optional[ProvenanceRecorder] = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.source_a = source_a
        self.source_b = source_b
        self.provenance = provenance
        self.settings = settings or Settings()
        self._in_flight: set[str] = set()

    # ─── Entry Points ───────────────────────────────────────────────

    async def start_ocr(self, job_id: str) -> ExtractionJob:
        """Record that text detection has started (observability only)."""
        return await self._write_status(job_id, JobStatus.PROCESSING_TEXTRACT, "Running text detection...")

    async def process_job(
        self,
        job_id: str,
        extracted_text: str,
        ocr_blocks: Optional[list[OcrToken]] = None,
    ) -> ExtractionJob:
        """Run structured extraction, consensus and verification for one job.

        Returns:
            The COMPLETED job.

        Raises:
            JobAlreadyRunning: Another call is processing this job id.
            ExtractionPipelineError: Any step failure, after the job has been
                marked FAILED.
        """
        if job_id in self._in_flight:
            raise JobAlreadyRunning(job_id)
        self._in_flight.add(job_id)

        try:
            return await self._run(job_id, extracted_text, ocr_blocks or [])
        except Exception as e:
            await self._mark_failed(job_id, e)
            raise
        finally:
            self._in_flight.discard(job_id)

    # ─── Pipeline ───────────────────────────────────────────────────

    async def _run(self, job_id: str, text: str, blocks: list[OcrToken]) -> ExtractionJob:
        # ── Step 1: Claim the job, resolve its schema ───────────────
        await self._write_status(job_id, JobStatus.PROCESSING_LLM, "Running structured extraction...")
        job = await self.store.get_job(job_id)
        document = await self.store.get_document(job.document_id)
        schema = get_schema(document.doc_type)

        # ── Step 2-3: Fan out to both sources, join ─────────────────
        output_a, output_b = await self._extract_both(text, schema.doc_type)

        # ── Step 4: Consensus ───────────────────────────────────────
        result = compare_results(output_a.extraction, output_b.extraction, schema.doc_type)

        # ── Step 5: Verify critical fields against OCR ──────────────
        verification_note = self._verify(result, schema, blocks)

        # ── Step 6: Persist ─────────────────────────────────────────
        fields = to_extracted_fields(result, schema.doc_type)
        await self._write_status(job_id, JobStatus.PROCESSING_LLM, "Saving extraction results...")
        try:
            result_id = await self.store.create_extraction_result(
                document_id=document.id,
                source_a_result=output_a.extraction,
                source_b_result=output_b.extraction,
                consensus=result.consensus,
                confidence=result.confidence,
                discrepancies=sorted(result.discrepancies),
            )
            await self.store.insert_extracted_fields(result_id, fields)
        except ExtractionPipelineError:
            raise
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to save extraction: {e}", {"document_id": document.id}
            ) from e

        await self._record_provenance(result_id, (output_a, output_b))

        # ── Step 7: Complete ────────────────────────────────────────
        message = f"Extraction completed ({result.confidence.value})"
        if verification_note:
            message = f"{message}; {verification_note}"
        job = await self._write_status(
            job_id, JobStatus.COMPLETED, message, extraction_result_id=result_id
        )
        logger.info(
            "Extraction job %s completed: %s, %d field(s) need review",
            job_id, result.confidence.value, sum(f.needs_review for f in fields),
        )
        return job

    async def _extract_both(self, text: str, doc_type: str) -> tuple[SourceOutput, SourceOutput]:
        """Run both sources concurrently and wait for both.

        Either source raising, timing out or returning nothing fails the
        job, naming every source that failed.
        """
        sources = (self.source_a, self.source_b)
        logger.info("Starting extraction with %s and %s", self.source_a.name, self.source_b.name)

        results = await asyncio.gather(
            *(self._call_source(source, text, doc_type) for source in sources),
            return_exceptions=True,
        )

        failed: list[str] = []
        reasons: dict[str, str] = {}
        outputs: list[SourceOutput] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error("%s extraction error: %r", source.name, result)
                failed.append(source.name)
                reasons[source.name] = _failure_reason(source.name, result)
            elif result is None:
                logger.error("%s returned no result", source.name)
                failed.append(source.name)
                reasons[source.name] = NO_RESULT
            else:
                outputs.append(result)

        if failed:
            raise SourceExtractionFailure(failed, reasons=reasons)
        return outputs[0], outputs[1]

    async def _call_source(self, source: ExtractionSource, text: str, doc_type: str) -> SourceOutput | None:
        call = source.extract(text, doc_type)
        timeout = self.settings.source_timeout_seconds
        try:
            raw = await (asyncio.wait_for(call, timeout) if timeout is not None else call)
        except asyncio.TimeoutError as e:
            raise SourceExtractionFailure([source.name], reason=f"timed out after {timeout}s") from e
        return _as_output(source.name, raw)

    def _verify(self, result: ConsensusResult, schema: DocumentSchema, blocks: list[OcrToken]) -> str | None:
        """Cross-check critical fields; returns a note when verification degraded."""
        if not blocks:
            return None

        verifier = FieldVerifier(blocks, self.settings)
        candidates = verification_candidates(result, schema)
        verifications = verifier.verify_fields(candidates)
        apply_verification(result, verifications)

        unverified = sorted({field for field, _, _ in candidates} - {v.field for v in verifications})
        if unverified:
            return f"verification degraded for {', '.join(unverified)}"
        return None

    async def _record_provenance(self, result_id: str, outputs: tuple[SourceOutput, ...]) -> None:
        if self.provenance is None:
            return
        for output in outputs:
            if not (output.system_version_id and output.user_version_id):
                continue
            try:
                await self.provenance.record(
                    result_id, output.source, output.system_version_id, output.user_version_id
                )
            except Exception as e:  # noqa: BLE001
                logger.error("Error saving prompt versions for %s: %s", output.source, e)

    # ─── Status Writes ──────────────────────────────────────────────

    async def _write_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str,
        error_details: Optional[dict] = None,
        extraction_result_id: Optional[str] = None,
    ) -> ExtractionJob:
        try:
            return await self.store.update_job_status(
                job_id, status, message,
                error_details=error_details,
                extraction_result_id=extraction_result_id,
            )
        except ExtractionPipelineError:
            raise
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to update job status to {status.value}: {e}", {"job_id": job_id}
            ) from e

    async def _mark_failed(self, job_id: str, error: Exception) -> None:
        if isinstance(error, JobAlreadyRunning):
            return

        if isinstance(error, ExtractionPipelineError):
            details = {"code": error.code, "error": str(error), "details": error.details}
        else:
            details = {"code": "INTERNAL_ERROR", "error": str(error) or type(error).__name__, "details": {}}

        logger.error("Extraction job %s failed: %s", job_id, details["error"])
        try:
            await self.store.update_job_status(
                job_id, JobStatus.FAILED, details["error"], error_details=details
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Could not mark job %s as FAILED: %s", job_id, e)


# ─── Internal Helpers ────────────────────────────────────────────────


def _as_output(name: str, raw: SourceResult) -> SourceOutput | None:
    """Accept a SourceOutput or a bare mapping; empty results count as no result."""
    if raw is None:
        return None
    if isinstance(raw, SourceOutput):
        output = raw
    else:
        output = SourceOutput(source=name, extraction=as_extraction(raw))
    if not output.extraction:
        return None
    if output.source != name:
        output = output.model_copy(update={"source": name})
    return output


def _failure_reason(name: str, error: BaseException) -> str:
    if isinstance(error, SourceExtractionFailure):
        return error.reasons.get(name) or next(iter(error.reasons.values()), NO_RESULT)
    return f"failed: {error}" if str(error) else f"failed: {type(error).__name__}"
