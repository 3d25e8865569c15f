"""
Structured-extraction sources.

The consensus pipeline needs two INDEPENDENT sources per document. Each
source turns OCR text into a field → value mapping and knows nothing about
the other. The core treats them as black boxes behind ``ExtractionSource``.

Provided sources:
  - OpenAIExtractionSource: an LLM used as a "smart OCR post-processor",
    with JSON mode enforced and the extract-exactly-what-is-written rules.
  - LabeledTextSource: deterministic regex over "Label: value" lines.
    Conservative; returns the empty sentinel rather than a guess.
  - RecordedSource: replays a previously captured extraction (golden-set
    replays, demos).
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Mapping, Optional, Protocol, Union

from .config import Settings
from .exceptions import SourceExtractionFailure
from .models import SourceOutput, StructuredExtraction
from .schemas import DocumentSchema, get_schema

logger = logging.getLogger(__name__)

EMPTY_VALUE = "[VACÍO]"

SourceResult = Union[SourceOutput, StructuredExtraction, None]


class ExtractionSource(Protocol):
    name: str

    async def extract(self, text: str, doc_type: str) -> SourceResult: ...


def as_extraction(raw: Mapping[str, object]) -> StructuredExtraction:
    """String-valued copy of a source mapping; JSON nulls become ''."""
    return {str(key): "" if value is None else str(value) for key, value in raw.items()}


# ─── System Prompt ───────────────────────────────────────────────────

SYSTEM_PROMPT_TEMPLATE = """\
Eres un extractor de datos especializado en documentos legales guatemaltecos.

TAREA: Extraer TODOS los campos de una Patente de Comercio del Registro Mercantil de Guatemala.

REGLAS CRÍTICAS:
1. Extrae EXACTAMENTE lo que dice el documento. No interpretes ni corrijas.
2. Si un campo está vacío, en blanco, o con asteriscos (****), responde: "[VACÍO]"
3. Si un campo no existe en el documento, responde: "[NO APLICA]"
4. Si no puedes leer un campo con certeza, responde: "[ILEGIBLE]"
5. Para fechas, extrae día, mes y año por separado.
6. Respeta mayúsculas, minúsculas y tildes del documento original.
7. No agregues puntuación que no esté en el original.

Responde con un objeto JSON con exactamente estas llaves:
{keys}
"""

USER_PROMPT = (
    "Por favor, extrae todos los campos de esta Patente de Comercio guatemalteca. "
    "Responde ÚNICAMENTE con el JSON solicitado, sin texto adicional.\n\n{text}"
)

PROMPT_VERSION = "patente-v1"


def build_system_prompt(schema: DocumentSchema) -> str:
    """List the schema's keys, with date fields split into day/month/year parts."""
    keys: list[str] = []
    for key in schema.field_order:
        if key in schema.date_fields:
            keys.extend(f"{key}_{part}" for part in ("dia", "mes", "ano"))
        else:
            keys.append(key)
    body = ",\n".join(f'  "{key}": ""' for key in keys)
    return SYSTEM_PROMPT_TEMPLATE.format(keys="{\n" + body + "\n}")


# ─── OpenAI Source ───────────────────────────────────────────────────


class OpenAIExtractionSource:
    """Structured extraction through the OpenAI chat completions API."""

    def __init__(self, name: str = "Source A", settings: Settings | None = None, client=None):
        self.name = name
        self.settings = settings or Settings()
        self._client = client

    def _get_client(self):
        if self._client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise SourceExtractionFailure([self.name], reason="failed: OPENAI_API_KEY not set")

            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def extract(self, text: str, doc_type: str) -> SourceOutput:
        schema = get_schema(doc_type)
        client = self._get_client()

        response = await client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": build_system_prompt(schema)},
                {"role": "user", "content": USER_PROMPT.format(text=text)},
            ],
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content
        if not content:
            raise SourceExtractionFailure([self.name], reason="failed: empty model response")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SourceExtractionFailure([self.name], reason=f"failed: invalid JSON ({e})") from e
        if not isinstance(data, dict):
            raise SourceExtractionFailure([self.name], reason="failed: response is not a JSON object")

        logger.info("%s extraction succeeded (%d fields)", self.name, len(data))
        return SourceOutput(
            source=self.name,
            extraction=as_extraction(data),
            system_version_id=f"{PROMPT_VERSION}:{doc_type}:system",
            user_version_id=f"{PROMPT_VERSION}:user",
        )


# ─── Labeled-Text Source ─────────────────────────────────────────────


class LabeledTextSource:
    """Deterministic extraction of 'Label: value' lines from OCR text.

    Labels come from the schema's Spanish display names, matched
    case-insensitively. A field whose label is absent gets the empty
    sentinel: it's better to extract nothing than to extract wrong data.
    """

    def __init__(self, name: str = "Source B"):
        self.name = name

    async def extract(self, text: str, doc_type: str) -> SourceOutput:
        return SourceOutput(source=self.name, extraction=extract_labeled_fields(text, get_schema(doc_type)))


def extract_labeled_fields(text: str, schema: DocumentSchema) -> StructuredExtraction:
    return {
        key: _extract_labeled_field(text, schema.label(key)) or EMPTY_VALUE
        for key in schema.field_order
    }


def _extract_labeled_field(text: str, label: str) -> Optional[str]:
    """Capture everything after 'Label:' up to end-of-line, whitespace collapsed."""
    pattern = rf"^\s*{re.escape(label)}\s*:\s*(.+?)\s*$"
    match = re.search(pattern, text, re.MULTILINE | re.IGNORECASE)
    if match:
        return re.sub(r"\s+", " ", match.group(1))
    return None


# ─── Recorded Source ─────────────────────────────────────────────────


class RecordedSource:
    """Replays a captured extraction, regardless of the text it is given."""

    def __init__(self, name: str, extraction: StructuredExtraction | None):
        self.name = name
        self.extraction = extraction

    async def extract(self, text: str, doc_type: str) -> SourceResult:
        if self.extraction is None:
            return None
        return SourceOutput(source=self.name, extraction=as_extraction(self.extraction))
