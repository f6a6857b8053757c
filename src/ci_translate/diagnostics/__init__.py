"""Diagnostics collected during translation."""

from ci_translate.diagnostics.errors import (
    Diagnostic,
    DiagnosticCodes,
    DiagnosticCollector,
    Severity,
)
from ci_translate.diagnostics.exceptions import (
    DocumentError,
    EmissionInvariantError,
    ParseError,
    StructuralError,
    TranslationError,
    UnmappableFeatureError,
)

__all__ = [
    "Diagnostic",
    "DiagnosticCodes",
    "DiagnosticCollector",
    "DocumentError",
    "EmissionInvariantError",
    "ParseError",
    "Severity",
    "StructuralError",
    "TranslationError",
    "UnmappableFeatureError",
]
