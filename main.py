#!/usr/bin/env python3
"""
Extraction Consensus — Entry Point
==================================

Runs the full consensus pipeline on a sample OCR-scanned Patente de Comercio.

Source A reads the labeled OCR lines; Source B replays a captured model
extraction that misread the registry number ("1234S") and dropped an
accent. The report shows how consensus, tie-break and OCR verification
handle both.

Usage:
    python main.py                          # Deterministic sources only
    OPENAI_API_KEY=sk-... python main.py    # LLM as Source A
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from extraction_consensus.config import Settings
from extraction_consensus.exceptions import ExtractionPipelineError
from extraction_consensus.models import BlockType, ConfidenceTier, JobStatus, OcrToken
from extraction_consensus.orchestrator import ExtractionJobProcessor
from extraction_consensus.sources import LabeledTextSource, OpenAIExtractionSource, RecordedSource
from extraction_consensus.store import InMemoryStore

# ─── Load .env if available (optional dependency) ────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── The OCR Output ─────────────────────────────────────────────────

OCR_LINES = [
    "REGISTRO MERCANTIL GENERAL DE LA REPÚBLICA",
    "PATENTE DE COMERCIO DE EMPRESA",
    "Número de Patente: 778899",
    "Tipo de Patente: Empresa",
    "Titular: José Ramón Pérez Muñoz",
    "Nombre de la Entidad: Librería El Cóndor",
    "Número de Registro: 12345",
    "Folio: 210",
    "Libro: 45",
    "Número de Expediente: 2019-3321",
    "Categoría: Única",
    "Dirección Comercial: 5a. Avenida 10-23, Zona 1, Guatemala",
    "Objeto: Venta de libros y artículos de oficina",
    "Fecha de Inscripción: 15/03/2019",
    "Fecha de Emisión: 20/03/2019",
    "Nombre del Propietario: José Ramón Pérez Muñoz",
    "Nacionalidad: Guatemalteco",
    "Hecho por: RMG",
]

OCR_TEXT = "\n".join(OCR_LINES)

OCR_BLOCKS = [
    OcrToken(text=line, page=1, top=0.05 + i * 0.05, left=0.1, block_type=BlockType.LINE)
    for i, line in enumerate(OCR_LINES)
]

# What a second model returned for the same document
RECORDED_EXTRACTION = {
    "tipo_patente": "Empresa",
    "numero_patente": "778899",
    "titular": "Jose Ramon Perez Muñoz",
    "nombre_entidad": "LIBRERÍA EL CÓNDOR",
    "numero_registro": "1234S",
    "folio": "210",
    "libro": "45",
    "numero_expediente": "2019-3321",
    "categoria": "Única",
    "direccion_comercial": "5a. Avenida 10-23, Zona 1, Guatemala",
    "direccion_propietario": "[NO APLICA]",
    "objeto": "Venta de libros y artículos de oficina.",
    "clase_establecimiento": "[VACÍO]",
    "fecha_inscripcion_dia": "15",
    "fecha_inscripcion_mes": "marzo",
    "fecha_inscripcion_ano": "2019",
    "fecha_emision_dia": "20",
    "fecha_emision_mes": "03",
    "fecha_emision_ano": "2019",
    "nombre_propietario": "José Ramón Pérez Muñoz",
    "nacionalidad": "Guatemalteco",
    "documento_identificacion": "[VACÍO]",
    "hecho_por": "RMG",
}


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_TIER_COLORS = {
    ConfidenceTier.CONSENSUS: _GREEN,
    ConfidenceTier.PARTIAL: _YELLOW,
    ConfidenceTier.REVIEW_REQUIRED: _RED,
}


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(store: InMemoryStore, job) -> int:
    """Pretty-print the job outcome.

    Returns:
        0 if the result needs no review, 1 otherwise.
    """
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  EXTRACTION CONSENSUS REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Job:         {job.id}")
    print(f"  Status:      {job.status.value}")
    print(f"  Message:     {job.status_message}")

    if job.status != JobStatus.COMPLETED:
        print(f"  {_RED}{job.error_details}{_RESET}")
        print(f"{'=' * _WIDTH}\n")
        return 1

    record = store.get_extraction(job.extraction_result_id)
    color = _TIER_COLORS[record.confidence]
    print(f"  Confidence:  {color}{_BOLD}{record.confidence.value}{_RESET}")
    print(f"{'─' * _WIDTH}")

    for field in store.get_fields(job.extraction_result_id):
        marker = f"{_YELLOW}⚑{_RESET}" if field.needs_review else " "
        value = field.value or f"{_DIM}(vacío){_RESET}"
        print(f"  {marker} {field.label:<30} {value}")
        if field.value_in_words:
            print(f"    {'':<30} {_DIM}{field.value_in_words}{_RESET}")

    print(f"{'─' * _WIDTH}")
    if record.discrepancies:
        print(f"  {_YELLOW}Needs review: {', '.join(record.discrepancies)}{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 0 if record.confidence == ConfidenceTier.CONSENSUS else 1


# ─── Main ────────────────────────────────────────────────────────────


async def run() -> int:
    settings = Settings()
    store = InMemoryStore()

    if os.environ.get("OPENAI_API_KEY"):
        source_a = OpenAIExtractionSource("Source A", settings)
    else:
        source_a = LabeledTextSource("Source A")
    source_b = RecordedSource("Source B", RECORDED_EXTRACTION)

    processor = ExtractionJobProcessor(store, source_a, source_b, provenance=store, settings=settings)

    document = store.create_document("patente_empresa", "patente_libreria.pdf")
    job = store.create_job(document.id)
    await processor.start_ocr(job.id)

    try:
        job = await processor.process_job(job.id, OCR_TEXT, OCR_BLOCKS)
    except ExtractionPipelineError:
        job = await store.get_job(job.id)

    return print_report(store, job)


def main():
    """Run the pipeline on the sample document and print the report."""
    logging.basicConfig(
        level=Settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    print("\n  Starting Extraction Consensus...")
    print("  Reconciling two extractions of a Patente de Comercio...\n")
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
