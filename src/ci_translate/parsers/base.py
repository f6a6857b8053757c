"""Base class and lowering helpers shared by the dialect parsers."""

from __future__ import annotations

import re
import unicodedata
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, ClassVar, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from ci_translate.diagnostics.errors import Diagnostic, DiagnosticCodes, DiagnosticCollector
from ci_translate.diagnostics.exceptions import DocumentError, ParseError
from ci_translate.diagnostics.pydantic_errors import summarize_validation_error
from ci_translate.ir.features import FeatureKind, Predicate, PredicateKind
from ci_translate.ir.graph import JobNode, PipelineGraph
from ci_translate.models.common import LoaderError, load_yaml_text
from ci_translate.vendors import Vendor

ModelT = TypeVar("ModelT", bound=BaseModel)

_SLUG_INVALID = re.compile(r"[^a-z0-9_-]+")
_GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one source document."""

    graph: PipelineGraph
    diagnostics: tuple[Diagnostic, ...] = ()


class DialectParser(ABC):
    """Lower one vendor's pipeline document to a ``PipelineGraph``.

    A parser instance holds the graph and the diagnostics of the document
    it is parsing; create one instance per translation.

    Subclasses implement ``_parse``. Every source job is lowered through
    ``_lower_job`` so that a malformed job turns into a placeholder stub
    with one ``ParseError`` diagnostic instead of failing the document.
    """

    vendor: ClassVar[Vendor]
    yaml_loader: ClassVar[type[yaml.SafeLoader]] = yaml.SafeLoader

    def __init__(self) -> None:
        """Initialize the parser."""
        self.graph = PipelineGraph()
        self.diagnostics = DiagnosticCollector()

    def parse(self, raw_text: str) -> ParseResult:
        """Parse raw source text.

        Args:
        ----
            raw_text: The complete pipeline document.

        Returns:
        -------
            The lowered graph and the parse diagnostics. If the document
            itself is unreadable the graph has no jobs and there is exactly
            one error diagnostic.

        """
        self.graph = PipelineGraph(source_vendor=self.vendor)
        self.diagnostics = DiagnosticCollector()

        try:
            self._parse(raw_text)
        except DocumentError as e:
            return ParseResult(
                graph=PipelineGraph(source_vendor=self.vendor),
                diagnostics=(e.to_diagnostic(),),
            )

        return ParseResult(graph=self.graph, diagnostics=self.diagnostics.freeze())

    @abstractmethod
    def _parse(self, raw_text: str) -> None:
        """Populate ``self.graph`` from the source text.

        Raises
        ------
            DocumentError: If the document cannot be parsed at all.

        """

    # ------------------------------------------------------------------
    # Document helpers
    # ------------------------------------------------------------------

    def _load_yaml(self, raw_text: str) -> dict[str, Any]:
        """Load a YAML document, raising DocumentError on failure."""
        try:
            return load_yaml_text(raw_text, loader=self.yaml_loader)
        except LoaderError as e:
            raise DocumentError(str(e), feature="document") from e

    def _validate_document(self, model: type[ModelT], data: Any) -> ModelT:
        """Validate the document root, raising DocumentError on failure."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DocumentError(
                f"Invalid {self.vendor.display_name} document: {summarize_validation_error(e)}",
                feature="document",
            ) from e

    def _validate_unit(self, model: type[ModelT], data: Any, job_id: str, path: str) -> ModelT:
        """Validate one source unit, raising ParseError on failure."""
        if not isinstance(data, dict):
            raise ParseError(
                f"{path}: expected a mapping, got {type(data).__name__}",
                job_id=job_id,
                feature="job",
            )
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ParseError(
                summarize_validation_error(e, prefix=path),
                job_id=job_id,
                feature="job",
            ) from e

    # ------------------------------------------------------------------
    # Job isolation
    # ------------------------------------------------------------------

    def _lower_job(
        self,
        job_id: str,
        label: str,
        lower: Callable[[], JobNode],
        source_path: str | None = None,
        fallback_dependencies: Iterable[str] = (),
    ) -> JobNode:
        """Lower one job in isolation and add it to the graph.

        Args:
        ----
            job_id: Id the job will have in the graph.
            label: Display label used for a placeholder.
            lower: Callable producing the fully lowered job.
            source_path: Location of the job in the source document.
            fallback_dependencies: Edges given to a placeholder, taken from
                the surrounding structure (stages, workflow order).

        Returns:
        -------
            The lowered job, or a placeholder stub if lowering failed.

        """
        try:
            job = lower()
        except ParseError as e:
            job = self._placeholder(job_id, label, e.message, source_path, fallback_dependencies)
        except (ValueError, TypeError) as e:
            job = self._placeholder(job_id, label, str(e), source_path, fallback_dependencies)

        job.source_vendor = self.vendor
        job.source_path = job.source_path or source_path
        return self._add_job(job)

    def _lower_invalid(
        self,
        job_id: str,
        label: str,
        error: ParseError,
        source_path: str | None = None,
        fallback_dependencies: Iterable[str] = (),
    ) -> JobNode:
        """Add a placeholder for a unit whose shape was rejected before lowering."""
        return self._lower_job(
            job_id,
            label,
            lambda: self._fail(error),
            source_path=source_path,
            fallback_dependencies=fallback_dependencies,
        )

    @staticmethod
    def _fail(error: ParseError) -> JobNode:
        raise error

    def _placeholder(
        self,
        job_id: str,
        label: str,
        reason: str,
        source_path: str | None,
        dependencies: Iterable[str],
    ) -> JobNode:
        self.diagnostics.error(
            DiagnosticCodes.E100_PARSE_ERROR,
            reason,
            job_id=job_id,
            feature="job",
            error_kind=ParseError.__name__,
        )
        job = JobNode.placeholder(
            job_id,
            reason,
            label=label,
            source_vendor=self.vendor,
            source_path=source_path,
        )
        for dep in dependencies:
            job.add_dependency(dep)
        return job

    def _add_job(self, job: JobNode) -> JobNode:
        """Add a job, renaming it if the id is already taken."""
        if self.graph.has_job(job.id):
            new_id = self.graph.unique_id(job.id)
            self.diagnostics.warning(
                DiagnosticCodes.W300_SOURCE_IGNORED,
                f"Job id '{job.id}' is used twice; the second job was renamed to '{new_id}'",
                job_id=new_id,
                feature="job",
            )
            job.id = new_id
        return self.graph.add_job(job)

    def _warn_ignored(
        self, message: str, job_id: str | None = None, feature: str | None = None
    ) -> None:
        """Record a source construct the parser deliberately skips."""
        self.diagnostics.warning(
            DiagnosticCodes.W300_SOURCE_IGNORED, message, job_id=job_id, feature=feature
        )

    def _filter_predicate(
        self,
        kind: PredicateKind,
        include: Sequence[str],
        exclude: Sequence[str],
        job_id: str | None = None,
    ) -> Predicate | None:
        """Build a branch/tag/path predicate, applying ignore-wins precedence."""
        predicate, conflicts = filter_predicate(kind, include, exclude)
        if conflicts:
            feature = (
                FeatureKind.PATH_FILTER
                if kind == PredicateKind.PATH
                else FeatureKind.CONDITIONAL_BRANCH_FILTER
            )
            self.diagnostics.warning(
                DiagnosticCodes.W103_BRANCH_FILTER_CONFLICT,
                f"{kind.value} pattern(s) {', '.join(conflicts)} are both included and "
                "ignored; the ignore list wins",
                job_id=job_id,
                feature=feature.value,
            )
        return predicate


# ----------------------------------------------------------------------
# Lowering helpers
# ----------------------------------------------------------------------


def slugify(name: str, fallback: str = "job") -> str:
    """Turn a display name into a job id.

    Accented letters are transliterated to ASCII. A name with nothing
    left to keep becomes ``fallback``.

    Examples
    --------
        >>> slugify("Build & Test (linux)")
        'build-test-linux'
        >>> slugify("Übersetzen")
        'ubersetzen'

    """
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_INVALID.sub("-", ascii_name.strip().lower()).strip("-")
    return re.sub(r"-{2,}", "-", slug) or fallback


def step_label(name: str | None, index: int) -> str:
    """Label of a source step, ``step-<index>`` (1-based) when unnamed."""
    if name and name.strip():
        return name.strip()
    return f"step-{index}"


def is_glob(pattern: str) -> bool:
    """Check whether a pattern contains glob metacharacters."""
    return any(ch in _GLOB_CHARS for ch in pattern)


def filter_predicate(
    kind: PredicateKind,
    include: Sequence[str],
    exclude: Sequence[str],
) -> tuple[Predicate | None, list[str]]:
    """Build an include/exclude predicate where exclusions take precedence.

    An include pattern that is also excluded (literally, or as a literal
    name matched by an excluded glob) is a conflict. Conflicting patterns
    are dropped from the include list; when every include pattern
    conflicts the list is kept as is, so the job still never runs on them
    rather than running everywhere else.

    Returns
    -------
        The predicate (None when both lists are empty) and the conflicting
        include patterns.

    """
    inc = list(dict.fromkeys(include))
    exc = list(dict.fromkeys(exclude))
    if not inc and not exc:
        return None, []

    conflicts = [
        pattern
        for pattern in inc
        if pattern in exc or (not is_glob(pattern) and any(fnmatchcase(pattern, x) for x in exc))
    ]
    remaining = [p for p in inc if p not in conflicts]
    if conflicts and remaining:
        inc = remaining

    return Predicate(kind=kind, include=tuple(inc), exclude=tuple(exc)), conflicts


def name_list(value: Any, path: str, job_id: str | None = None) -> list[str]:
    """Read a list of job references written as one name or a list of names.

    Raises
    ------
        ParseError: If the value is neither, or a list entry is not a name.

    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(
        isinstance(v, str | int) and not isinstance(v, bool) for v in value
    ):
        return [str(v) for v in value]
    raise ParseError(
        f"{path}: expected a job name or a list of job names, got {type(value).__name__}",
        job_id=job_id,
        feature="depends_on",
    )


def require_mapping(value: Any, path: str) -> dict[str, Any]:
    """Check a document-level section is a mapping (missing counts as empty).

    Raises
    ------
        DocumentError: If the section is present and not a mapping.

    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DocumentError(
            f"{path}: expected a mapping, got {type(value).__name__}", feature="document"
        )
    return value


def merge_env(*layers: dict[str, str]) -> dict[str, str]:
    """Merge environment layers; later layers override earlier ones."""
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return merged


def chain_groups(graph: PipelineGraph, groups: Sequence[Sequence[str]]) -> None:
    """Make every job of a group depend on every job of the previous group.

    Empty groups are skipped, so a stage without jobs does not break the
    chain.
    """
    previous: Sequence[str] = ()
    for group in groups:
        if not group:
            continue
        for job_id in group:
            job = graph.get_job(job_id)
            if job is None:
                continue
            for dep in previous:
                job.add_dependency(dep)
        previous = group
