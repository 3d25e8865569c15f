"""
Tests for the structured-extraction sources.

The OpenAI source is exercised with a stub client; no network calls.

Run: pytest tests/ -v
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from extraction_consensus.exceptions import SourceExtractionFailure, UnsupportedDocumentType
from extraction_consensus.schemas import PATENTE_EMPRESA
from extraction_consensus.sources import (
    EMPTY_VALUE,
    LabeledTextSource,
    OpenAIExtractionSource,
    RecordedSource,
    build_system_prompt,
    extract_labeled_fields,
)

OCR_TEXT = (
    "PATENTE DE COMERCIO DE EMPRESA\n"
    "Número de Registro:   12345\n"
    "nombre de la entidad: Librería   El Cóndor\n"
    "Titular: José Ramón Pérez Muñoz  \n"
)


class _StubCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _stub_client(content):
    completions = _StubCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestLabeledTextSource:
    def test_extracts_labeled_lines(self):
        fields = extract_labeled_fields(OCR_TEXT, PATENTE_EMPRESA)
        assert fields["numero_registro"] == "12345"
        assert fields["nombre_entidad"] == "Librería El Cóndor"
        assert fields["titular"] == "José Ramón Pérez Muñoz"

    def test_missing_labels_get_sentinel(self):
        fields = extract_labeled_fields(OCR_TEXT, PATENTE_EMPRESA)
        assert fields["folio"] == EMPTY_VALUE
        assert list(fields) == PATENTE_EMPRESA.field_order

    async def test_extract_returns_named_output(self):
        output = await LabeledTextSource("Source B").extract(OCR_TEXT, "patente_empresa")
        assert output.source == "Source B"
        assert output.extraction["numero_registro"] == "12345"

    async def test_unsupported_type(self):
        with pytest.raises(UnsupportedDocumentType):
            await LabeledTextSource().extract(OCR_TEXT, "otros")


class TestRecordedSource:
    async def test_replays_copy(self):
        recorded = {"numero_registro": "12345"}
        output = await RecordedSource("Source B", recorded).extract("", "patente_empresa")
        output.extraction["numero_registro"] = "changed"
        assert recorded == {"numero_registro": "12345"}

    async def test_coerces_null_and_numbers(self):
        source = RecordedSource("Source B", {"folio": 210, "titular": None})
        output = await source.extract("", "patente_empresa")
        assert output.extraction == {"folio": "210", "titular": ""}

    async def test_none_means_no_result(self):
        assert await RecordedSource("Source B", None).extract("", "patente_empresa") is None


class TestOpenAIExtractionSource:
    async def test_parses_json_response(self):
        client, completions = _stub_client(json.dumps({"numero_registro": "12345", "folio": None}))
        source = OpenAIExtractionSource("Source A", client=client)

        output = await source.extract(OCR_TEXT, "patente_empresa")

        assert output.source == "Source A"
        assert output.extraction == {"numero_registro": "12345", "folio": ""}
        assert output.system_version_id and output.user_version_id
        call = completions.calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert OCR_TEXT in call["messages"][1]["content"]

    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]"])
    async def test_bad_response_fails_source(self, content):
        client, _ = _stub_client(content)
        with pytest.raises(SourceExtractionFailure) as exc:
            await OpenAIExtractionSource("Source A", client=client).extract(OCR_TEXT, "patente_empresa")
        assert exc.value.sources == ["Source A"]

    async def test_missing_api_key_fails_source(self):
        with pytest.raises(SourceExtractionFailure) as exc:
            await OpenAIExtractionSource("Source A").extract(OCR_TEXT, "patente_empresa")
        assert exc.value.reasons == {"Source A": "failed: OPENAI_API_KEY not set"}
        assert str(exc.value) == "Extraction failed: Source A failed: OPENAI_API_KEY not set"

    def test_system_prompt_splits_dates(self):
        prompt = build_system_prompt(PATENTE_EMPRESA)
        assert '"fecha_inscripcion_dia"' in prompt
        assert '"fecha_inscripcion_ano"' in prompt
        assert '"fecha_inscripcion"' not in prompt
        assert '"numero_registro"' in prompt
