"""
Custom exception hierarchy for the extraction pipeline.

Each exception type maps to a distinct remediation path (retry the job,
review the fields by hand, reclassify the document), so the orchestrator
can persist a machine-readable code alongside the human-readable message.
"""

from __future__ import annotations


class ExtractionPipelineError(Exception):
    """Base exception for all extraction pipeline failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class UnsupportedDocumentType(ExtractionPipelineError):
    """The document type has no structured-extraction schema."""

    def __init__(self, doc_type: str | None, details: dict | None = None):
        self.doc_type = doc_type
        super().__init__(
            "UNSUPPORTED_DOCUMENT_TYPE",
            f"Document type {doc_type!r} is not supported for structured extraction",
            {"doc_type": doc_type, **(details or {})},
        )


NO_RESULT = "returned no result"


class SourceExtractionFailure(ExtractionPipelineError):
    """One or both structured-extraction sources failed or returned nothing.

    ``reasons`` maps each failed source to what happened to it
    ("returned no result", "timed out after 120.0s", "failed: ...").
    """

    def __init__(
        self,
        sources: list[str],
        details: dict | None = None,
        reason: str = NO_RESULT,
        reasons: dict[str, str] | None = None,
    ):
        self.sources = list(sources)
        self.reasons = {name: (reasons or {}).get(name, reason) for name in self.sources}
        super().__init__(
            "SOURCE_EXTRACTION_FAILED",
            f"Extraction failed: {_describe_failures(self.reasons)}",
            {"failed_sources": self.sources, "errors": self.reasons, **(details or {})},
        )


def _describe_failures(reasons: dict[str, str]) -> str:
    distinct = set(reasons.values())
    if len(distinct) == 1:
        return f"{' and '.join(reasons)} {distinct.pop()}"
    return "; ".join(f"{name} {why}" for name, why in reasons.items())


class PersistenceFailure(ExtractionPipelineError):
    """A job, extraction, or field write could not be completed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PERSISTENCE_FAILED", message, details)


class VerificationError(ExtractionPipelineError):
    """A single field could not be checked against the OCR stream.

    Never fatal: the field is treated as unverified.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("VERIFICATION_FAILED", message, details)


class JobNotFound(ExtractionPipelineError):
    def __init__(self, job_id: str):
        super().__init__("JOB_NOT_FOUND", f"Extraction job {job_id!r} not found", {"job_id": job_id})


class InvalidJobTransition(ExtractionPipelineError):
    """A status write would move a job backwards or out of a terminal state."""

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(
            "INVALID_JOB_TRANSITION",
            f"Job {job_id!r} cannot move from {current} to {requested}",
            {"job_id": job_id, "current": current, "requested": requested},
        )


class JobAlreadyRunning(ExtractionPipelineError):
    """Another processor call already owns this job id."""

    def __init__(self, job_id: str):
        super().__init__(
            "JOB_ALREADY_RUNNING",
            f"Extraction job {job_id!r} is already being processed",
            {"job_id": job_id},
        )
