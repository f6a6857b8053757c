"""Translation error taxonomy.

Every error is scoped either to one job or to the whole document. Job-scoped
errors are caught at the job boundary and turned into diagnostics so sibling
jobs keep translating.
"""

from __future__ import annotations

from ci_translate.diagnostics.errors import Diagnostic, DiagnosticCodes, Severity


class TranslationError(Exception):
    """Base class for all translation errors."""

    code: str = DiagnosticCodes.E100_PARSE_ERROR
    severity: Severity = Severity.ERROR

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        feature: str | None = None,
        instruction: str | None = None,
    ) -> None:
        """Initialize TranslationError.

        Args:
        ----
            message: Error message describing what went wrong.
            job_id: Id of the affected job, if job-scoped.
            feature: Feature or construct involved.
            instruction: Optional manual remediation step.

        """
        self.message = message
        self.job_id = job_id
        self.feature = feature
        self.instruction = instruction
        super().__init__(f"{job_id}: {message}" if job_id else message)

    def to_diagnostic(self) -> Diagnostic:
        """Convert the error to an immutable diagnostic."""
        return Diagnostic(
            severity=self.severity,
            message=self.message,
            code=self.code,
            job_id=self.job_id,
            feature=self.feature,
            error_kind=type(self).__name__,
            instruction=self.instruction,
        )


class ParseError(TranslationError):
    """A source unit (one job) could not be lowered to the IR."""

    code = DiagnosticCodes.E100_PARSE_ERROR


class DocumentError(ParseError):
    """The source document cannot be parsed at all."""

    code = DiagnosticCodes.E101_DOCUMENT_ERROR


class UnmappableFeatureError(TranslationError):
    """No rule matches a populated feature slot."""

    code = DiagnosticCodes.E200_UNMAPPABLE_FEATURE


class StructuralError(TranslationError):
    """The job violates a graph-level invariant and cannot be emitted."""

    code = DiagnosticCodes.E300_CYCLIC_DEPENDENCY

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        feature: str | None = None,
        instruction: str | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize StructuralError with an optional specific code."""
        super().__init__(message, job_id=job_id, feature=feature, instruction=instruction)
        if code is not None:
            self.code = code


class EmissionInvariantError(TranslationError):
    """The emitter cannot satisfy a target formatting invariant for a job."""

    code = DiagnosticCodes.E400_EMISSION_INVARIANT
