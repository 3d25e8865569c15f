"""
OCR field verifier — the deterministic third voter.

The verifier does not vote on what a value IS; it vetoes what a value is
NOT. If both extraction sources agree on a registry number but that number
appears nowhere in the document's own OCR text, the field is flagged.

Design:
  - One verifier per job, built from that document's OCR tokens.
  - The searchable line index is built lazily, once, then shared by every
    field check for the job.
  - NUMERIC fields compare digit runs; TEXT/DATE fields use similarity
    against OCR lines and word windows.
  - Best effort: ``verify_fields`` never raises. A field that cannot be
    checked is left out of the results (unverified), which neither
    confirms nor escalates it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Iterable

from pydantic import ValidationError

from .config import Settings
from .exceptions import VerificationError
from .models import (
    BlockType,
    MatchLocation,
    OcrToken,
    ValueType,
    VerificationResult,
    VerificationStatus,
)
from .normalize import digits_only, levenshtein_distance, normalize, similarity

logger = logging.getLogger(__name__)

# Digits with embedded separators: "12,345", "992-001", "15/03/2019".
_DIGIT_RUN = re.compile(r"\d(?:[\d.,/\-]*\d)?")
_SEPARATOR = re.compile(r"[.,/\-]")

# WORD tokens whose tops differ by at most this much share a line
_LINE_TOLERANCE = 0.01


@dataclass(frozen=True)
class _IndexedLine:
    text: str
    normalized: str
    page: int
    top: float
    left: float
    digit_runs: tuple[str, ...]
    digit_pieces: tuple[tuple[str, str], ...] = ()


@dataclass
class _Match:
    score: float
    line: _IndexedLine | None = None


class FieldVerifier:
    """Checks candidate field values against one document's OCR token stream.

    Usage:
        verifier = FieldVerifier(ocr_blocks)
        result = verifier.verify_field("numero_registro", "12345", ValueType.NUMERIC)
    """

    def __init__(self, tokens: Iterable[OcrToken | dict], settings: Settings | None = None):
        self._tokens = list(tokens or [])
        self.settings = settings or Settings()

    # ─── Index ──────────────────────────────────────────────────────

    @cached_property
    def _lines(self) -> list[_IndexedLine]:
        """Searchable lines ordered by page, then vertical position."""
        try:
            tokens = [
                t if isinstance(t, OcrToken) else OcrToken.model_validate(t)
                for t in self._tokens
            ]
        except ValidationError as e:
            raise VerificationError("Malformed OCR token stream", {"error": str(e)}) from e

        tokens.sort(key=lambda t: (t.page, t.top))
        lines = [t for t in tokens if t.block_type == BlockType.LINE and t.text.strip()]
        if not lines:
            lines = _group_words(t for t in tokens if t.text.strip())

        indexed = [
            _IndexedLine(
                text=t.text,
                normalized=normalize(t.text),
                page=t.page,
                top=t.top,
                left=t.left,
                digit_runs=tuple(digits_only(run) for run in _DIGIT_RUN.findall(t.text)),
                digit_pieces=_digit_pieces(t.text),
            )
            for t in lines
        ]
        logger.debug("Built OCR index: %d lines from %d tokens", len(indexed), len(tokens))
        return indexed

    def all_text(self) -> list[str]:
        """Every indexed OCR line, in reading order."""
        return [line.text for line in self._lines]

    # ─── Public API ─────────────────────────────────────────────────

    def verify_field(
        self, field: str, value: str, value_type: ValueType = ValueType.TEXT
    ) -> VerificationResult:
        """Classify one value as CONFIRMED, SUSPICIOUS or NOT_FOUND.

        Raises:
            VerificationError: If the OCR token stream is malformed.
        """
        if not normalize(value):
            # Nothing to contradict
            return VerificationResult(
                field=field, value=value, status=VerificationStatus.CONFIRMED, score=1.0
            )

        if value_type == ValueType.NUMERIC and digits_only(value):
            match, status = self._match_numeric(digits_only(value))
        else:
            match, status = self._match_text(normalize(value))

        line = match.line
        return VerificationResult(
            field=field,
            value=value,
            status=status,
            score=round(match.score, 4),
            matched_text=line.text if line else None,
            page=line.page if line else None,
            location=_location(line),
        )

    def verify_fields(
        self, fields: Iterable[tuple[str, str, ValueType]]
    ) -> list[VerificationResult]:
        """Verify several fields; failures are logged and the field left unverified."""
        results: list[VerificationResult] = []
        for field, value, value_type in fields:
            try:
                results.append(self.verify_field(field, value, value_type))
            except Exception as e:  # noqa: BLE001
                logger.warning("Verification of %s failed, leaving it unverified: %s", field, e)
        return results

    # ─── Matchers ───────────────────────────────────────────────────

    def _match_numeric(self, target: str) -> tuple[_Match, VerificationStatus]:
        best = _Match(score=0.0)
        max_edits = self.settings.numeric_max_edit_distance

        for line in self._lines:
            for run in line.digit_runs:
                if run == target:
                    return _Match(1.0, line), VerificationStatus.CONFIRMED

                if abs(len(run) - len(target)) > 1:
                    continue
                distance = levenshtein_distance(run, target)
                if distance > max_edits:
                    continue
                score = 1 - distance / max(len(run), len(target))
                if score > best.score:
                    best = _Match(score, line)

            # Value fused to a neighbour: "12345-2019", "12345,210"
            for piece, run in line.digit_pieces:
                if piece == target:
                    score = len(target) / len(run)
                    if score > best.score:
                        best = _Match(score, line)

        if best.line is not None:
            return best, VerificationStatus.SUSPICIOUS
        return best, VerificationStatus.NOT_FOUND

    def _match_text(self, target: str) -> tuple[_Match, VerificationStatus]:
        best = _Match(score=0.0)
        target_words = len(target.split(" "))

        for line in self._lines:
            if target in line.normalized:
                return _Match(1.0, line), VerificationStatus.CONFIRMED

            score = max(
                (similarity(target, window) for window in _windows(line.normalized, target_words)),
                default=0.0,
            )
            if score > best.score:
                best = _Match(score, line)

        if best.score >= self.settings.text_confirm_threshold:
            return best, VerificationStatus.CONFIRMED
        if best.score >= self.settings.text_suspicious_threshold:
            return best, VerificationStatus.SUSPICIOUS
        return _Match(best.score), VerificationStatus.NOT_FOUND


# ─── Internal Helpers ────────────────────────────────────────────────


def _windows(line: str, size: int) -> Iterable[str]:
    """The whole line plus every run of ``size - 1 .. size + 1`` consecutive words."""
    yield line
    words = line.split(" ")
    for width in {size - 1, size, size + 1}:
        if width < 1 or width >= len(words):
            continue
        for start in range(len(words) - width + 1):
            yield " ".join(words[start:start + width])


def _group_words(words: Iterable[OcrToken]) -> list[OcrToken]:
    """Rebuild lines from WORD tokens on the same page within ``_LINE_TOLERANCE`` of a row's first word."""
    rows: list[list[OcrToken]] = []
    for word in sorted(words, key=lambda w: (w.page, w.top)):
        row = rows[-1] if rows else None
        if row and row[0].page == word.page and word.top - row[0].top <= _LINE_TOLERANCE:
            row.append(word)
        else:
            rows.append([word])

    return [
        OcrToken(
            text=" ".join(w.text for w in sorted(row, key=lambda w: w.left)),
            page=row[0].page,
            top=row[0].top,
            left=min(w.left for w in row),
            block_type=BlockType.LINE,
        )
        for row in rows
    ]


def _digit_pieces(text: str) -> tuple[tuple[str, str], ...]:
    """(piece, whole run) for each separator-delimited piece of a multi-part digit run."""
    pieces = []
    for run in _DIGIT_RUN.findall(text):
        parts = _SEPARATOR.split(run)
        if len(parts) < 2:
            continue
        pieces.extend((digits_only(part), digits_only(run)) for part in parts if part)
    return tuple(pieces)


def _location(line: _IndexedLine | None) -> MatchLocation:
    """Coarse position of a match on its page (coordinates are 0-1, origin top-left)."""
    if line is None:
        return MatchLocation.UNKNOWN
    if line.top < 0.5:
        return MatchLocation.TOP_RIGHT if line.left > 0.5 else MatchLocation.TOP_LEFT
    return MatchLocation.BOTTOM
