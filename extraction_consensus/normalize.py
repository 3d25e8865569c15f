"""
Comparison-only text normalization and string similarity.

CRITICAL LEGAL REQUIREMENT:
  Spanish accents (á, é, í, ó, ú, ñ, ü) are legally significant in
  Guatemalan registry documents. A name or address that loses its accent is
  a different name or address. Normalization here changes case, whitespace
  and trailing punctuation ONLY — it never decomposes, strips or replaces
  diacritical marks.

Normalized values are used for COMPARISON. Persisted values always keep
the original text the source returned.
"""

from __future__ import annotations

import re

# Sentinels the extraction prompts ask for, in normalized (uppercase) form.
EMPTY_SENTINELS: frozenset[str] = frozenset({
    "[VACÍO]", "[NO APLICA]", "[ILEGIBLE]",
    "EMPTY", "NOT_APPLICABLE", "ILLEGIBLE",
})

_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCTUATION = re.compile(r"[\s.,;:]+$")
_NON_DIGIT = re.compile(r"\D")


def normalize(value: str | None) -> str:
    """Canonicalize a field value for comparison.

    Uppercases, collapses whitespace runs, strips trailing ``. , ; :`` and
    trims. Empty sentinels and ``None`` become ``""``. Idempotent.

    Example:
        "  José   Pérez. " → "JOSÉ PÉREZ"
        "[VACÍO]"         → ""
    """
    if value is None:
        return ""

    text = _WHITESPACE.sub(" ", str(value).upper())
    text = _TRAILING_PUNCTUATION.sub("", text).strip()

    if text in EMPTY_SENTINELS:
        return ""
    return text


def is_empty(value: str | None) -> bool:
    return normalize(value) == ""


def digits_only(value: str | None) -> str:
    """'No. 12,345-B' → '12345'."""
    return _NON_DIGIT.sub("", value or "")


def levenshtein_distance(a: str, b: str) -> int:
    """Classic unit-cost edit distance.

    The DP table has ``len(b) + 1`` rows and ``len(a) + 1`` columns:
    ``table[i][j]`` is the distance between ``b[:i]`` and ``a[:j]``.
    """
    table = [[0] * (len(a) + 1) for _ in range(len(b) + 1)]

    for i in range(len(b) + 1):
        table[i][0] = i
    for j in range(len(a) + 1):
        table[0][j] = j

    for i in range(1, len(b) + 1):
        for j in range(1, len(a) + 1):
            if b[i - 1] == a[j - 1]:
                table[i][j] = table[i - 1][j - 1]
            else:
                table[i][j] = 1 + min(
                    table[i - 1][j - 1],  # substitution
                    table[i][j - 1],  # insertion
                    table[i - 1][j],  # deletion
                )

    return table[len(b)][len(a)]


def similarity(a: str | None, b: str | None) -> float:
    """Normalized Levenshtein similarity in [0, 1].

    1.0 when both values normalize to the same string (including both empty),
    otherwise ``(max_len - distance) / max_len`` over the normalized strings.
    """
    left = normalize(a)
    right = normalize(b)

    if left == right:
        return 1.0

    max_len = max(len(left), len(right))
    distance = levenshtein_distance(left, right)
    return (max_len - distance) / max_len
