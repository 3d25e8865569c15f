"""
Consensus engine — reconcile two independent extractions into one result.

Flow:
  ┌──────────┐   ┌──────────┐
  │ Source A │   │ Source B │   ← Independent structured extractions
  └────┬─────┘   └────┬─────┘
       │              │
  ┌────▼──────────────▼────┐
  │  prepare_extraction    │   ← Coerce to str, fold split date parts
  └───────────┬────────────┘
              │
  ┌───────────▼────────────┐
  │    compare_results     │   ← Normalized equality per field + tie-break
  └───────────┬────────────┘
              │
  ┌───────────▼────────────┐
  │  apply_verification    │   ← OCR veto on critical fields (escalate only)
  └───────────┬────────────┘
              │
  ┌───────────▼────────────┐
  │  to_extracted_fields   │   ← Schema-ordered, persisted projection
  └────────────────────────┘

Design principles:
  - Normalization is for COMPARISON only; persisted values keep the
    original text, accents and casing of the chosen source.
  - Tie-break is deterministic: prefer the non-empty value, then Source A.
    The tie-break picks a value; ``needs_review`` is what protects it.
  - Confidence can only be escalated after comparison, never lowered.
"""

from __future__ import annotations

import logging
from typing import Mapping

from .models import (
    ConfidenceTier,
    ConsensusResult,
    ExtractedField,
    FieldComparison,
    StructuredExtraction,
    ValueType,
    VerificationResult,
    VerificationStatus,
)
from .normalize import normalize, similarity
from .schemas import DocumentSchema, get_schema
from .spanish_numbers import format_date_numeric, numeric_date_to_words

logger = logging.getLogger(__name__)

_DATE_PARTS = ("dia", "mes", "ano")

UNVERIFIED_STATUSES: frozenset[VerificationStatus] = frozenset({
    VerificationStatus.SUSPICIOUS,
    VerificationStatus.NOT_FOUND,
})


# ─── Preparation ────────────────────────────────────────────────────


def prepare_extraction(raw: Mapping[str, object], schema: DocumentSchema) -> StructuredExtraction:
    """Return a string-valued copy of a source's output, with date parts folded.

    Sources report dates as ``fecha_inscripcion_dia`` / ``_mes`` / ``_ano``;
    these are folded into ``fecha_inscripcion`` as ``DD/MM/YYYY`` so the two
    sources are compared on one value. A composite value already present
    wins, and the part keys are consumed either way.
    """
    prepared: StructuredExtraction = {key: _as_text(value) for key, value in raw.items()}

    for date_field in schema.date_fields:
        part_keys = [f"{date_field}_{part}" for part in _DATE_PARTS]
        if not any(key in prepared for key in part_keys):
            continue

        day, month, year = (prepared.pop(key, "") for key in part_keys)
        if date_field in prepared and normalize(prepared[date_field]):
            continue
        if all(normalize(part) for part in (day, month, year)):
            prepared[date_field] = format_date_numeric(day, month, year)
        else:
            prepared[date_field] = ""

    return prepared


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "; ".join(_as_text(v) for v in value if v is not None)
    return str(value)


# ─── Comparison ─────────────────────────────────────────────────────


def compare_results(
    source_a: Mapping[str, object],
    source_b: Mapping[str, object],
    doc_type: str,
) -> ConsensusResult:
    """Merge two extractions of the same document into one ConsensusResult.

    Every schema field is compared, followed by any extra field either
    source reported (sorted by name). Deterministic for fixed inputs.

    Raises:
        UnsupportedDocumentType: If doc_type has no schema.
    """
    schema = get_schema(doc_type)
    a = prepare_extraction(source_a, schema)
    b = prepare_extraction(source_b, schema)

    consensus: dict[str, str] = {}
    discrepancies: set[str] = set()
    comparisons: list[FieldComparison] = []

    for field in _field_order(schema, a, b):
        a_value, b_value = a.get(field, ""), b.get(field, "")
        a_norm, b_norm = normalize(a_value), normalize(b_value)
        match = a_norm == b_norm

        consensus[field] = _choose(a_value, b_value, a_norm, b_norm)
        if not match:
            discrepancies.add(field)

        comparisons.append(
            FieldComparison(
                field=field,
                source_a_value=a_value,
                source_b_value=b_value,
                normalized_a=a_norm,
                normalized_b=b_norm,
                match=match,
                similarity=round(similarity(a_norm, b_norm), 4),
            )
        )

    confidence = assign_tier(discrepancies, schema)
    logger.info(
        "Consensus for %s: %d fields, %d discrepancies, tier %s",
        doc_type, len(consensus), len(discrepancies), confidence.value,
    )
    return ConsensusResult(
        consensus=consensus,
        discrepancies=discrepancies,
        confidence=confidence,
        comparisons=comparisons,
    )


def _field_order(schema: DocumentSchema, a: StructuredExtraction, b: StructuredExtraction) -> list[str]:
    known = schema.field_order
    extras = sorted((set(a) | set(b)) - set(known))
    return known + extras


def _choose(a_value: str, b_value: str, a_norm: str, b_norm: str) -> str:
    """Prefer the non-empty value; when both are non-empty, Source A."""
    if a_norm:
        return a_value
    if b_norm:
        return b_value
    return ""


def assign_tier(discrepancies: set[str], schema: DocumentSchema) -> ConfidenceTier:
    if not discrepancies:
        return ConfidenceTier.CONSENSUS
    if any(schema.is_critical(field) for field in discrepancies):
        return ConfidenceTier.REVIEW_REQUIRED
    return ConfidenceTier.PARTIAL


# ─── Verification ───────────────────────────────────────────────────


def apply_verification(
    result: ConsensusResult, verifications: list[VerificationResult]
) -> ConsensusResult:
    """Fold OCR verification outcomes into a consensus result.

    A SUSPICIOUS or NOT_FOUND field is flagged and the result escalated to
    REVIEW_REQUIRED. CONFIRMED never lowers the tier: agreement with the
    OCR stream cannot certify more than source agreement already did.
    """
    result.verifications.extend(verifications)

    for verification in verifications:
        if verification.status not in UNVERIFIED_STATUSES:
            continue
        logger.warning(
            "Field %s is %s in OCR text (score %.2f)",
            verification.field, verification.status.value, verification.score,
        )
        result.flag(verification.field)
        result.escalate(ConfidenceTier.REVIEW_REQUIRED)

    return result


# ─── Verification Candidates ───────────────────────────────────────


def verification_candidates(
    result: ConsensusResult, schema: DocumentSchema
) -> list[tuple[str, str, ValueType]]:
    """(field, consensus value, value type) for every critical field. Dates verify as TEXT."""
    candidates = []
    for field in schema.field_order:
        if not schema.is_critical(field):
            continue
        value_type = schema.value_type(field)
        if value_type != ValueType.NUMERIC:
            value_type = ValueType.TEXT
        candidates.append((field, result.consensus.get(field, ""), value_type))
    return candidates


# ─── Projection ─────────────────────────────────────────────────────


def to_extracted_fields(result: ConsensusResult, doc_type: str) -> list[ExtractedField]:
    """Project the consensus mapping into schema order.

    Each consensus field appears exactly once. Date fields carry their
    value written out in Spanish words.
    """
    schema = get_schema(doc_type)
    known = [field for field in schema.field_order if field in result.consensus]
    extras = sorted(set(result.consensus) - set(schema.field_order))

    fields: list[ExtractedField] = []
    for order, name in enumerate(known + extras):
        value = result.consensus[name]
        value_in_words = None
        if name in schema.date_fields and value:
            value_in_words = numeric_date_to_words(value)

        fields.append(
            ExtractedField(
                name=name,
                label=schema.label(name),
                value=value,
                value_in_words=value_in_words,
                order=order,
                needs_review=name in result.discrepancies,
            )
        )

    return fields
