"""Diagnostic types and the per-translation collector."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ci_translate.diagnostics.exceptions import TranslationError


class Severity(Enum):
    """Severity level for translation diagnostics."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """A single translation diagnostic.

    Diagnostics reference jobs by id only, so they survive even when the
    job they describe is replaced by a placeholder.
    """

    severity: Severity
    """Severity level."""

    message: str
    """Human-readable message."""

    code: str
    """Stable diagnostic code (e.g., 'E100', 'W101')."""

    job_id: str | None = None
    """Id of the affected job, None for pipeline-level diagnostics."""

    feature: str | None = None
    """Feature kind or source construct the diagnostic is about."""

    error_kind: str | None = None
    """Exception taxonomy name (ParseError, StructuralError, ...)."""

    instruction: str | None = None
    """Manual configuration step needed to restore the original intent."""

    def __str__(self) -> str:
        """Format diagnostic as string."""
        parts = [f"[{self.code}]", self.severity.value.upper()]
        if self.job_id:
            parts.append(f"{self.job_id}:")
        parts.append(self.message)
        if self.instruction:
            parts.append(f"(action: {self.instruction})")
        return " ".join(parts)


@dataclass
class DiagnosticCollector:
    """Accumulates diagnostics for one translation.

    Each translation owns its own collector; nothing is shared between
    translations.
    """

    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> list[Diagnostic]:
        """Get only error-level diagnostics."""
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        """Get only warning-level diagnostics."""
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        """Check whether any error was recorded."""
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        """Add a diagnostic and return it."""
        self.diagnostics.append(diagnostic)
        return diagnostic

    def error(
        self,
        code: str,
        message: str,
        job_id: str | None = None,
        feature: str | None = None,
        error_kind: str | None = None,
        instruction: str | None = None,
    ) -> Diagnostic:
        """Add an error diagnostic."""
        return self.add(
            Diagnostic(
                severity=Severity.ERROR,
                message=message,
                code=code,
                job_id=job_id,
                feature=feature,
                error_kind=error_kind,
                instruction=instruction,
            )
        )

    def warning(
        self,
        code: str,
        message: str,
        job_id: str | None = None,
        feature: str | None = None,
        instruction: str | None = None,
    ) -> Diagnostic:
        """Add a warning diagnostic."""
        return self.add(
            Diagnostic(
                severity=Severity.WARNING,
                message=message,
                code=code,
                job_id=job_id,
                feature=feature,
                instruction=instruction,
            )
        )

    def record(self, exc: TranslationError) -> Diagnostic:
        """Convert a translation exception into a diagnostic and add it."""
        return self.add(exc.to_diagnostic())

    def merge(self, other: DiagnosticCollector | list[Diagnostic] | tuple[Diagnostic, ...]) -> None:
        """Merge diagnostics from another collector or sequence."""
        if isinstance(other, DiagnosticCollector):
            self.diagnostics.extend(other.diagnostics)
        else:
            self.diagnostics.extend(other)

    def for_job(self, job_id: str) -> list[Diagnostic]:
        """Get diagnostics referencing the given job."""
        return [d for d in self.diagnostics if d.job_id == job_id]

    def freeze(self) -> tuple[Diagnostic, ...]:
        """Return the diagnostics as an immutable, ordered tuple."""
        return tuple(self.diagnostics)


class DiagnosticCodes:
    """Standard diagnostic codes."""

    # E1xx - Source parsing errors
    E100_PARSE_ERROR = "E100"
    E101_DOCUMENT_ERROR = "E101"

    # E2xx - Rule errors
    E200_UNMAPPABLE_FEATURE = "E200"

    # E3xx - Structural errors
    E300_CYCLIC_DEPENDENCY = "E300"
    E301_DANGLING_DEPENDENCY = "E301"
    E302_MATRIX_CAPACITY = "E302"
    E303_DUPLICATE_JOB_ID = "E303"

    # E4xx - Emission errors
    E400_EMISSION_INVARIANT = "E400"

    # W1xx - Degraded translations
    W100_APPROXIMATE_TRANSLATION = "W100"
    W101_MANUAL_TRANSLATION = "W101"
    W102_AMBIGUOUS_RULES = "W102"
    W103_BRANCH_FILTER_CONFLICT = "W103"

    # W2xx - Emitter post-conditions
    W200_STRIPPED_VERSION_PIN = "W200"
    W201_STRIPPED_TOP_LEVEL_KEY = "W201"

    # W3xx - Source oddities
    W300_SOURCE_IGNORED = "W300"
