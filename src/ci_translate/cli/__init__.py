"""CLI helpers for ci-translate."""

from ci_translate.cli.error_formatter import (
    DiagnosticFormatter,
    DiagnosticTable,
    DiagnosticTree,
    print_diagnostics,
)
from ci_translate.cli.exception_handler import handle_exceptions

__all__ = [
    "DiagnosticFormatter",
    "DiagnosticTable",
    "DiagnosticTree",
    "handle_exceptions",
    "print_diagnostics",
]
