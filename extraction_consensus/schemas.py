"""
Document-type schema tables.

A flat mapping from document type to its field order, field kinds and
critical-field set. No subclasses: adding a document type means adding one
table entry.

Critical fields are the legally load-bearing identifiers. A disagreement on
one of them forces REVIEW_REQUIRED, and they are the only fields checked
against the OCR token stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import UnsupportedDocumentType
from .models import ValueType

# Document types that exist in the system but have no fixed schema.
UNSTRUCTURED_DOC_TYPES: frozenset[str] = frozenset({"otros"})


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str  # Spanish display name, also the label printed on the document
    value_type: ValueType = ValueType.TEXT


@dataclass(frozen=True)
class DocumentSchema:
    doc_type: str
    fields: tuple[FieldSpec, ...]
    critical_fields: frozenset[str] = field(default_factory=frozenset)

    @property
    def field_order(self) -> list[str]:
        return [spec.key for spec in self.fields]

    @property
    def date_fields(self) -> list[str]:
        return [spec.key for spec in self.fields if spec.value_type == ValueType.DATE]

    def spec(self, key: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.key == key:
                return spec
        return None

    def value_type(self, key: str) -> ValueType:
        spec = self.spec(key)
        return spec.value_type if spec else ValueType.TEXT

    def label(self, key: str) -> str:
        """Display name; unknown keys are title-cased ('numero_folio' → 'Numero Folio')."""
        spec = self.spec(key)
        if spec:
            return spec.label
        return " ".join(word.capitalize() for word in key.split("_"))

    def is_critical(self, key: str) -> bool:
        return key in self.critical_fields


# ─── Schema Tables ───────────────────────────────────────────────────

_T = ValueType.TEXT
_N = ValueType.NUMERIC
_D = ValueType.DATE

PATENTE_EMPRESA = DocumentSchema(
    doc_type="patente_empresa",
    fields=(
        FieldSpec("tipo_patente", "Tipo de Patente"),
        FieldSpec("numero_patente", "Número de Patente", _N),
        FieldSpec("titular", "Titular"),
        FieldSpec("nombre_entidad", "Nombre de la Entidad"),
        FieldSpec("numero_registro", "Número de Registro", _N),
        FieldSpec("folio", "Folio", _N),
        FieldSpec("libro", "Libro", _N),
        FieldSpec("numero_expediente", "Número de Expediente"),
        FieldSpec("categoria", "Categoría"),
        FieldSpec("direccion_comercial", "Dirección Comercial"),
        FieldSpec("direccion_propietario", "Dirección del Propietario"),
        FieldSpec("objeto", "Objeto"),
        FieldSpec("clase_establecimiento", "Clase de Establecimiento"),
        FieldSpec("fecha_inscripcion", "Fecha de Inscripción", _D),
        FieldSpec("fecha_emision", "Fecha de Emisión", _D),
        FieldSpec("nombre_propietario", "Nombre del Propietario"),
        FieldSpec("nacionalidad", "Nacionalidad"),
        FieldSpec("documento_identificacion", "Documento de Identificación"),
        FieldSpec("hecho_por", "Hecho por"),
    ),
    critical_fields=frozenset({"numero_registro", "numero_patente", "nombre_entidad"}),
)

PATENTE_SOCIEDAD = DocumentSchema(
    doc_type="patente_sociedad",
    fields=(
        FieldSpec("tipo_patente", "Tipo de Patente"),
        FieldSpec("numero_patente", "Número de Patente", _N),
        FieldSpec("nombre_entidad", "Nombre de la Entidad"),
        FieldSpec("numero_registro", "Número de Registro", _N),
        FieldSpec("folio", "Folio", _N),
        FieldSpec("libro", "Libro", _N),
        FieldSpec("numero_expediente", "Número de Expediente"),
        FieldSpec("categoria", "Categoría"),
        FieldSpec("direccion_comercial", "Dirección Comercial"),
        FieldSpec("direccion_entidad", "Dirección de la Entidad"),
        FieldSpec("objeto", "Objeto"),
        FieldSpec("fecha_inscripcion", "Fecha de Inscripción", _D),
        FieldSpec("inscripcion_provisional", "Inscripción Provisional", _D),
        FieldSpec("inscripcion_definitiva", "Inscripción Definitiva", _D),
        FieldSpec("fecha_emision", "Fecha de Emisión", _D),
        FieldSpec("representante", "Representante"),
        FieldSpec("hecho_por", "Hecho por"),
    ),
    critical_fields=frozenset({"numero_registro", "numero_patente", "nombre_entidad"}),
)

DOCUMENT_SCHEMAS: dict[str, DocumentSchema] = {
    schema.doc_type: schema for schema in (PATENTE_EMPRESA, PATENTE_SOCIEDAD)
}


def get_schema(doc_type: str | None) -> DocumentSchema:
    """Look up the schema for a document type.

    Raises:
        UnsupportedDocumentType: For None, unstructured types ('otros') and
            types with no schema table.
    """
    if not doc_type or doc_type in UNSTRUCTURED_DOC_TYPES or doc_type not in DOCUMENT_SCHEMAS:
        raise UnsupportedDocumentType(doc_type, {"supported": sorted(DOCUMENT_SCHEMAS)})
    return DOCUMENT_SCHEMAS[doc_type]
