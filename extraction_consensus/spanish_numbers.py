"""
Render numbers and dates as Guatemalan Spanish words.

Registry documents state dates twice — "15/03/2019" and "quince de marzo
de dos mil diecinueve" — and the persisted result carries both forms so a
reviewer can check one against the other.

Supported patterns:
    15                → "quince"
    21                → "veintiuno"
    1999              → "mil novecientos noventa y nueve"
    ("15", "03", "2019") → "quince de marzo de dos mil diecinueve"
"""

from __future__ import annotations

import re

# ─── Word Lookup Tables ──────────────────────────────────────────────

_ONES: list[str] = [
    "", "uno", "dos", "tres", "cuatro", "cinco", "seis", "siete", "ocho", "nueve",
    "diez", "once", "doce", "trece", "catorce", "quince", "dieciséis", "diecisiete",
    "dieciocho", "diecinueve",
]

# 21-29 are written as single words in Spanish.
_TWENTIES: list[str] = [
    "veinte", "veintiuno", "veintidós", "veintitrés", "veinticuatro",
    "veinticinco", "veintiséis", "veintisiete", "veintiocho", "veintinueve",
]

_TENS: list[str] = [
    "", "", "veinte", "treinta", "cuarenta", "cincuenta", "sesenta", "setenta",
    "ochenta", "noventa",
]

_HUNDREDS: list[str] = [
    "", "ciento", "doscientos", "trescientos", "cuatrocientos", "quinientos",
    "seiscientos", "setecientos", "ochocientos", "novecientos",
]

MONTHS: list[str] = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
    "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

_MONTH_NUMBERS: dict[str, int] = {name: i + 1 for i, name in enumerate(MONTHS)}
_MONTH_NUMBERS["setiembre"] = 9

_NUMERIC_DATE = re.compile(r"^\s*(\d{1,2})\s*[/\-.]\s*(\d{1,2})\s*[/\-.]\s*(\d{4})\s*$")


# ─── Numbers ─────────────────────────────────────────────────────────


def number_to_words(num: int) -> str:
    """Convert a non-negative integer to Spanish words.

    Raises:
        ValueError: If num is negative.
    """
    if num < 0:
        raise ValueError(f"Cannot convert negative number: {num}")
    if num == 0:
        return "cero"
    if num < 20:
        return _ONES[num]
    if num < 30:
        return _TWENTIES[num - 20]
    if num < 100:
        ten, one = divmod(num, 10)
        return _TENS[ten] if one == 0 else f"{_TENS[ten]} y {_ONES[one]}"
    if num < 1000:
        hundred, rest = divmod(num, 100)
        if hundred == 1 and rest == 0:
            return "cien"
        return _HUNDREDS[hundred] if rest == 0 else f"{_HUNDREDS[hundred]} {number_to_words(rest)}"
    if num < 1_000_000:
        thousand, rest = divmod(num, 1000)
        head = "mil" if thousand == 1 else f"{number_to_words(thousand)} mil"
        return head if rest == 0 else f"{head} {number_to_words(rest)}"
    if num < 1_000_000_000_000:
        million, rest = divmod(num, 1_000_000)
        head = "un millón" if million == 1 else f"{number_to_words(million)} millones"
        return head if rest == 0 else f"{head} {number_to_words(rest)}"

    return str(num)


# ─── Dates ───────────────────────────────────────────────────────────


def month_number(month: str) -> int | None:
    """'03' → 3, 'Marzo' → 3, 'xyz' → None."""
    month = month.strip().lower()
    if month.isdigit():
        value = int(month)
        return value if 1 <= value <= 12 else None
    return _MONTH_NUMBERS.get(month)


def format_date_numeric(day: str, month: str, year: str) -> str:
    """('5', 'marzo', '2019') → '05/03/2019'. Unknown months are kept as written."""
    number = month_number(month)
    month_text = f"{number:02d}" if number else month.strip()
    return f"{day.strip().zfill(2)}/{month_text}/{year.strip()}"


def date_to_words(day: str, month: str, year: str) -> str:
    """('15', '03', '2019') → 'quince de marzo de dos mil diecinueve'.

    Parts that are not numbers are passed through unchanged, so a partially
    legible date still renders.
    """
    number = month_number(month)
    month_name = MONTHS[number - 1] if number else month.strip().lower()

    day, year = day.strip(), year.strip()
    if not (day.isdigit() and year.isdigit()):
        return f"{day} de {month_name} de {year}"

    return f"{number_to_words(int(day))} de {month_name} de {number_to_words(int(year))}"


def numeric_date_to_words(value: str) -> str | None:
    """'15/03/2019' → words, or None if the value is not a DD/MM/YYYY date."""
    match = _NUMERIC_DATE.match(value or "")
    if not match:
        return None
    day, month, year = match.groups()
    if month_number(month) is None:
        return None
    return date_to_words(day, month, year)
