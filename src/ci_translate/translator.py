"""Translation facade: parse, apply rules, emit."""

from __future__ import annotations

from dataclasses import dataclass

from ci_translate.config import TranslatorSettings
from ci_translate.diagnostics.errors import Diagnostic, DiagnosticCollector, Severity
from ci_translate.emitters import get_emitter
from ci_translate.engine import RuleEngine
from ci_translate.interfaces import PipelineValidator, ValidationOutcome, VendorClassifier
from ci_translate.ir.graph import PipelineGraph
from ci_translate.parsers import get_parser
from ci_translate.rules import load_registry
from ci_translate.vendors import Vendor, parse_vendor


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of one translation.

    Attributes
    ----------
        text: The target document.
        diagnostics: Parser, engine and emitter diagnostics, in that order.
        graph: The annotated IR the text was written from.
        validation: Outcome of the validator collaborator, if one was given.

    """

    text: str
    diagnostics: tuple[Diagnostic, ...]
    graph: PipelineGraph
    validation: ValidationOutcome | None = None

    @property
    def errors(self) -> list[Diagnostic]:
        """Error-level diagnostics."""
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        """Warning-level diagnostics."""
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def ok(self) -> bool:
        """Whether the translation raised no errors and passed validation."""
        return not self.errors and (self.validation is None or self.validation.ok)

    def check(self, strict: bool = False) -> None:
        """Raise if the translation failed.

        Args:
        ----
            strict: If True, treat warnings as failures.

        Raises:
        ------
            TranslationFailedError: If there are errors, failed validation,
                or (in strict mode) warnings.

        """
        if not self.ok or (strict and self.warnings):
            raise TranslationFailedError(self)


class TranslationFailedError(Exception):
    """Raised when a translation result does not meet the requested bar."""

    def __init__(self, result: TranslationResult) -> None:
        """Initialize with the failing result.

        Args:
        ----
            result: The translation result.

        """
        self.result = result
        parts = []
        if result.errors:
            parts.append(f"{len(result.errors)} error(s)")
        if result.warnings:
            parts.append(f"{len(result.warnings)} warning(s)")
        if result.validation is not None and not result.validation.ok:
            parts.append("target validation failed")
        super().__init__(f"Translation failed: {', '.join(parts) or 'no output'}")

    def format_issues(self) -> str:
        """Format all issues, one per line."""
        lines = [f"ERROR: {d}" for d in self.result.errors]
        lines.extend(f"WARNING: {d}" for d in self.result.warnings)
        if self.result.validation is not None:
            lines.extend(f"VALIDATION: {m}" for m in self.result.validation.messages)
        return "\n".join(lines)


def resolve_source_vendor(
    source_vendor: Vendor | str | None,
    source_name: str | None = None,
    source_text: str = "",
    classifier: VendorClassifier | None = None,
) -> Vendor:
    """Resolve the source vendor, asking the classifier only when none is given.

    Raises
    ------
        ValueError: If the vendor is unknown and cannot be classified.

    """
    if source_vendor is not None:
        return parse_vendor(source_vendor)
    if classifier is None:
        raise ValueError("Source vendor not given and no classifier available")
    vendor = classifier.classify(source_name or "", source_text)
    if vendor is None:
        raise ValueError(
            f"Cannot tell the CI vendor of '{source_name or '<text>'}'; pass it explicitly"
        )
    return vendor


def translate(
    source_text: str,
    source_vendor: Vendor | str | None,
    target_vendor: Vendor | str = Vendor.BUILDKITE,
    settings: TranslatorSettings | None = None,
    classifier: VendorClassifier | None = None,
    validator: PipelineValidator | None = None,
    source_name: str | None = None,
) -> TranslationResult:
    """Translate one pipeline document.

    The translation is pure: nothing is read from or written to disk and
    every call owns its graph and diagnostics.

    Args:
    ----
        source_text: The source pipeline document.
        source_vendor: Dialect of the source, or None to ask ``classifier``.
        target_vendor: Dialect to write.
        settings: Translation options; defaults when omitted.
        classifier: Collaborator deciding the source vendor.
        validator: Collaborator checking the emitted text.
        source_name: File name of the source, passed to the classifier.

    Returns:
    -------
        The target text, all diagnostics and the annotated graph.

    Raises:
    ------
        ValueError: If a vendor is unknown or unsupported in that role.

    Examples:
    --------
        >>> result = translate("jobs:\\n  build:\\n    runs-on: ubuntu-latest\\n"
        ...                    "    steps:\\n      - run: make\\n", "github")
        >>> "steps:" in result.text
        True

    """
    settings = settings or TranslatorSettings()
    source = resolve_source_vendor(source_vendor, source_name, source_text, classifier)
    target = parse_vendor(target_vendor)

    parser = get_parser(source)
    registry = load_registry(target)
    emitter = get_emitter(target, section_markers=settings.section_markers)
    engine = RuleEngine(
        registry,
        prefer_native_matrix=settings.prefer_native_matrix,
        hoist_global_env=settings.hoist_global_env,
    )

    diagnostics = DiagnosticCollector()
    parsed = parser.parse(source_text)
    diagnostics.merge(parsed.diagnostics)
    applied = engine.apply(parsed.graph, (source, target))
    diagnostics.merge(applied.diagnostics)
    emitted = emitter.emit(applied.graph)
    diagnostics.merge(emitted.diagnostics)

    validation = validator.validate(emitted.text) if validator is not None else None
    return TranslationResult(
        text=emitted.text,
        diagnostics=diagnostics.freeze(),
        graph=applied.graph,
        validation=validation,
    )
