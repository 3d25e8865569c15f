"""
Pydantic models for the extraction pipeline — strict typing at every seam.

OCR tokens, source outputs, consensus results and job records all cross a
boundary (OCR provider, extraction model, persistence store). If data
doesn't fit the model, it fails loudly there, not silently downstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

# A source's raw answer: field name → extracted value (or an empty sentinel).
StructuredExtraction = dict[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# ─── OCR Input ──────────────────────────────────────────────────────


class BlockType(str, Enum):
    LINE = "LINE"
    WORD = "WORD"


class OcrToken(BaseModel):
    """One text block from the OCR provider. Positions are page-relative (0-1)."""

    model_config = ConfigDict(frozen=True)

    text: str
    page: int = 1
    top: float = 0.0
    left: float = 0.0
    block_type: BlockType = BlockType.LINE


class OcrOutput(BaseModel):
    """Full OCR result for one document: joined text plus positional blocks."""

    text: str
    blocks: list[OcrToken] = Field(default_factory=list)


# ─── Source Output ──────────────────────────────────────────────────


class SourceOutput(BaseModel):
    """A structured extraction plus the prompt versions that produced it."""

    source: str
    extraction: StructuredExtraction
    system_version_id: Optional[str] = None
    user_version_id: Optional[str] = None


# ─── Tiers & Statuses ───────────────────────────────────────────────


class ConfidenceTier(str, Enum):
    """Coarse trust label for a whole result, ordered best → worst."""

    CONSENSUS = "CONSENSUS"  # Full agreement
    PARTIAL = "PARTIAL"  # Non-critical disagreement only
    REVIEW_REQUIRED = "REVIEW_REQUIRED"  # Human eyes needed

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def escalate(self, other: ConfidenceTier) -> ConfidenceTier:
        """Return whichever tier is worse. Never moves toward CONSENSUS."""
        return other if other.rank > self.rank else self


_TIER_RANK = {
    ConfidenceTier.CONSENSUS: 0,
    ConfidenceTier.PARTIAL: 1,
    ConfidenceTier.REVIEW_REQUIRED: 2,
}


class VerificationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"  # Value found in the OCR stream
    SUSPICIOUS = "SUSPICIOUS"  # Near-match below the confirm threshold
    NOT_FOUND = "NOT_FOUND"


class ValueType(str, Enum):
    TEXT = "TEXT"
    NUMERIC = "NUMERIC"
    DATE = "DATE"


class MatchLocation(str, Enum):
    TOP_LEFT = "TOP_LEFT"
    TOP_RIGHT = "TOP_RIGHT"
    BOTTOM = "BOTTOM"
    UNKNOWN = "UNKNOWN"


# ─── Verification & Consensus ───────────────────────────────────────


class VerificationResult(BaseModel):
    """Outcome of checking one field's value against the OCR token stream."""

    field: str
    value: str
    status: VerificationStatus
    score: float = 0.0
    matched_text: Optional[str] = None
    page: Optional[int] = None
    location: MatchLocation = MatchLocation.UNKNOWN


class FieldComparison(BaseModel):
    """How Source A and Source B compared on a single field."""

    field: str
    source_a_value: str
    source_b_value: str
    normalized_a: str
    normalized_b: str
    match: bool
    similarity: float


class ConsensusResult(BaseModel):
    """One reconciled result per job, built from exactly two extractions.

    After construction only two things may change: confidence can be
    escalated, and verification can flag additional fields.
    """

    consensus: dict[str, str]
    discrepancies: set[str] = Field(default_factory=set)
    confidence: ConfidenceTier = ConfidenceTier.CONSENSUS
    comparisons: list[FieldComparison] = Field(default_factory=list)
    verifications: list[VerificationResult] = Field(default_factory=list)

    def escalate(self, tier: ConfidenceTier) -> None:
        self.confidence = self.confidence.escalate(tier)

    def flag(self, field: str) -> None:
        self.discrepancies.add(field)


class ExtractedField(BaseModel):
    """The persisted, ordered projection of one consensus field."""

    name: str
    label: str
    value: str
    value_in_words: Optional[str] = None
    order: int
    needs_review: bool = False


# ─── Jobs & Persistence Records ─────────────────────────────────────


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING_TEXTRACT = "PROCESSING_TEXTRACT"
    PROCESSING_LLM = "PROCESSING_LLM"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, new: JobStatus) -> bool:
        """Same-status writes (message updates) are allowed until terminal."""
        if self.is_terminal:
            return False
        return new == self or new in _TRANSITIONS[self]


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.PROCESSING_TEXTRACT, JobStatus.PROCESSING_LLM, JobStatus.FAILED,
    }),
    JobStatus.PROCESSING_TEXTRACT: frozenset({JobStatus.PROCESSING_LLM, JobStatus.FAILED}),
    JobStatus.PROCESSING_LLM: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class Document(BaseModel):
    id: str = Field(default_factory=new_id)
    doc_type: Optional[str] = None
    filename: str = ""


class ExtractionJob(BaseModel):
    """Lifecycle of one extraction attempt for one document."""

    id: str = Field(default_factory=new_id)
    document_id: str
    status: JobStatus = JobStatus.PENDING
    status_message: str = ""
    error_details: Optional[dict] = None
    extraction_result_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class ExtractionRecord(BaseModel):
    """A persisted consensus result alongside both raw source outputs."""

    id: str = Field(default_factory=new_id)
    document_id: str
    source_a_result: StructuredExtraction
    source_b_result: StructuredExtraction
    consensus: dict[str, str]
    confidence: ConfidenceTier
    discrepancies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
