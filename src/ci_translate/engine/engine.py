"""Rule engine: apply registry rules to a parsed pipeline graph."""

from __future__ import annotations

from dataclasses import dataclass

from ci_translate.diagnostics.errors import Diagnostic, DiagnosticCodes, DiagnosticCollector
from ci_translate.diagnostics.exceptions import (
    StructuralError,
    TranslationError,
    UnmappableFeatureError,
)
from ci_translate.ir.features import FeatureKind, MatrixSpec
from ci_translate.ir.graph import FeatureComment, JobKind, JobNode, PipelineGraph
from ci_translate.ir.matrix import full_adjustments
from ci_translate.ir.ops import find_cycles, find_dangling_edges
from ci_translate.rules.describe import describe_job_feature, describe_pipeline_feature
from ci_translate.rules.registry import (
    Confidence,
    MatrixLimits,
    RuleContext,
    RuleRegistry,
    Subject,
    TranslationRule,
)
from ci_translate.vendors import Vendor


@dataclass(frozen=True)
class EngineResult:
    """Annotated graph and the diagnostics raised while annotating it."""

    graph: PipelineGraph
    diagnostics: tuple[Diagnostic, ...] = ()


def check_matrix_capacity(job_id: str, matrix: MatrixSpec, limits: MatrixLimits) -> None:
    """Check a matrix against the target's capacity limits.

    Raises
    ------
        StructuralError: On the first limit the matrix exceeds. Matrices are
            never truncated to fit.

    """
    problems: list[str] = []
    if len(matrix.dimensions) > limits.max_dimensions:
        problems.append(
            f"{len(matrix.dimensions)} dimensions (limit {limits.max_dimensions})"
        )
    for name, values in matrix.dimensions:
        if len(values) > limits.max_values_per_dimension:
            problems.append(
                f"{len(values)} values for '{name}' (limit {limits.max_values_per_dimension})"
            )
    adjustments = len(full_adjustments(matrix))
    if adjustments > limits.max_adjustments:
        problems.append(f"{adjustments} adjustments (limit {limits.max_adjustments})")
    if matrix.total_jobs > limits.max_jobs:
        problems.append(f"{matrix.total_jobs} combinations (limit {limits.max_jobs})")

    if problems:
        raise StructuralError(
            f"Matrix exceeds target capacity: {'; '.join(problems)}",
            job_id=job_id,
            feature=FeatureKind.MATRIX.value,
            code=DiagnosticCodes.E302_MATRIX_CAPACITY,
        )


class RuleEngine:
    """Walk a pipeline graph and translate every populated feature slot.

    The engine runs in fixed phases:

    1. Normalize the graph: dangling edges, cycles, approval gates
    2. Translate matrices (native target matrix or literal duplication)
    3. Translate per-job features in slot order
    4. Translate pipeline-level features
    5. Re-check structural invariants

    Job-scoped failures turn the job into a placeholder stub and never
    stop the other jobs.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        prefer_native_matrix: bool = True,
        hoist_global_env: bool = True,
    ) -> None:
        """Initialize the engine.

        Args:
        ----
            registry: Rules of the target dialect.
            prefer_native_matrix: Use the target's matrix syntax when possible
                instead of literal duplication.
            hoist_global_env: Move environment shared by every job to the
                document root.

        """
        self.registry = registry
        self.prefer_native_matrix = prefer_native_matrix
        self.hoist_global_env = hoist_global_env

    def apply(self, graph: PipelineGraph, vendor_pair: tuple[Vendor, Vendor]) -> EngineResult:
        """Annotate the graph in place with target attributes.

        Args:
        ----
            graph: Graph produced by a dialect parser.
            vendor_pair: (source vendor, target vendor).

        Returns:
        -------
            The same graph and the engine diagnostics, in the order raised.

        Raises:
        ------
            ValueError: If the target is not the one the registry was built for.

        """
        source, target = vendor_pair
        if target != self.registry.profile.vendor:
            raise ValueError(
                f"Registry targets {self.registry.profile.vendor.display_name}, "
                f"not {target.display_name}"
            )

        diagnostics = DiagnosticCollector()
        ctx = RuleContext(
            graph=graph,
            source_vendor=source,
            profile=self.registry.profile,
            prefer_native_matrix=self.prefer_native_matrix,
            hoist_global_env=self.hoist_global_env,
        )

        self._normalize(graph, diagnostics)
        self._translate_matrices(ctx, diagnostics)
        self._translate_jobs(ctx, diagnostics)
        self._translate_pipeline(ctx, diagnostics)
        self._check_structure(graph, diagnostics)

        return EngineResult(graph=graph, diagnostics=diagnostics.freeze())

    # ------------------------------------------------------------------
    # Phase 1: normalization
    # ------------------------------------------------------------------

    def _normalize(self, graph: PipelineGraph, diagnostics: DiagnosticCollector) -> None:
        self._drop_dangling_edges(graph, diagnostics)

        for members in find_cycles(graph):
            cycle = " -> ".join(members)
            for job_id in members:
                error = StructuralError(
                    f"Job is part of a dependency cycle: {cycle}",
                    job_id=job_id,
                    feature="depends_on",
                    code=DiagnosticCodes.E300_CYCLIC_DEPENDENCY,
                )
                self._fail(graph.jobs[job_id], error, diagnostics, keep_dependencies=False)

        for job in graph.active_jobs():
            if job.kind == JobKind.COMMAND and job.approval is not None:
                self._insert_approval_gate(graph, job)

    def _drop_dangling_edges(self, graph: PipelineGraph, diagnostics: DiagnosticCollector) -> None:
        for job_id, dep_id in find_dangling_edges(graph):
            job = graph.jobs[job_id]
            job.remove_dependency(dep_id)
            error = StructuralError(
                f"Depends on unknown job '{dep_id}'",
                job_id=job_id,
                feature="depends_on",
                code=DiagnosticCodes.E301_DANGLING_DEPENDENCY,
            )
            if job.is_active:
                self._fail(job, error, diagnostics)
            else:
                diagnostics.record(error)

    def _insert_approval_gate(self, graph: PipelineGraph, job: JobNode) -> JobNode:
        """Put a manual approval job between a job and its dependencies."""
        gate = JobNode(
            id=graph.unique_id(f"{job.id}-approval"),
            label=f"Approve {job.label}",
            depends_on=dict(job.depends_on),
            conditionals=job.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER),
            approval=job.approval,
            kind=JobKind.APPROVAL,
            source_vendor=job.source_vendor,
            source_path=job.source_path,
        )
        graph.insert_before(job.id, gate)
        job.depends_on = {}
        job.add_dependency(gate.id)
        job.approval = None
        return gate

    # ------------------------------------------------------------------
    # Phases 2-4: rules
    # ------------------------------------------------------------------

    def _translate_matrices(self, ctx: RuleContext, diagnostics: DiagnosticCollector) -> None:
        limits = ctx.profile.matrix_limits
        for job in ctx.graph.active_jobs():
            if job.matrix is None:
                continue
            try:
                check_matrix_capacity(job.id, job.matrix, limits)
                rule = self._select(job, FeatureKind.MATRIX, ctx, diagnostics)
                if rule is not None:
                    self._apply(rule, job, ctx, diagnostics)
            except TranslationError as e:
                self._fail(job, e, diagnostics)

    def _translate_jobs(self, ctx: RuleContext, diagnostics: DiagnosticCollector) -> None:
        for job in ctx.graph.active_jobs():
            try:
                for feature in job.populated_features():
                    rule = self._select(job, feature, ctx, diagnostics)
                    if rule is not None:
                        self._apply(rule, job, ctx, diagnostics)
            except TranslationError as e:
                self._fail(job, e, diagnostics)

    def _translate_pipeline(self, ctx: RuleContext, diagnostics: DiagnosticCollector) -> None:
        graph = ctx.graph
        for feature in graph.populated_features():
            rule = self._select(graph, feature, ctx, diagnostics)
            if rule is not None:
                self._apply(rule, graph, ctx, diagnostics)

    def _select(
        self,
        subject: Subject,
        feature: FeatureKind,
        ctx: RuleContext,
        diagnostics: DiagnosticCollector,
    ) -> TranslationRule | None:
        """Pick the rule for one populated slot.

        The highest confidence wins. Ties among native rules go to the
        first by priority, with a warning since the rule data is ambiguous.
        """
        source = subject.source_vendor or ctx.source_vendor
        job_id = subject.id if isinstance(subject, JobNode) else None
        candidates = [
            rule
            for rule in self.registry.rules_for(source, feature)
            if rule.applies(subject, ctx)
        ]

        if not candidates:
            summary = _describe(subject, feature)
            diagnostics.record(
                UnmappableFeatureError(
                    f"No {ctx.profile.vendor.display_name} rule translates {feature.value} "
                    f"from {source.display_name}: {summary}",
                    job_id=job_id,
                    feature=feature.value,
                )
            )
            subject.target.add_comment(
                FeatureComment(feature=feature.value, confidence="unmapped", summary=summary)
            )
            return None

        best = min(rule.confidence.rank for rule in candidates)
        top = [rule for rule in candidates if rule.confidence.rank == best]
        if len(top) > 1 and top[0].confidence == Confidence.NATIVE:
            names = ", ".join(f"'{rule.name}'" for rule in top)
            diagnostics.warning(
                DiagnosticCodes.W102_AMBIGUOUS_RULES,
                f"Rules {names} all translate {feature.value} natively; using '{top[0].name}'",
                job_id=job_id,
                feature=feature.value,
            )
        return top[0]

    def _apply(
        self,
        rule: TranslationRule,
        subject: Subject,
        ctx: RuleContext,
        diagnostics: DiagnosticCollector,
    ) -> None:
        # Describe before transforming; some transforms consume the slot.
        summary = rule.describe(subject) if rule.describe else _describe(subject, rule.feature)
        instruction = rule.instruction_for(subject)
        rule.transform(subject, ctx)
        if rule.confidence == Confidence.NATIVE:
            return

        code = (
            DiagnosticCodes.W100_APPROXIMATE_TRANSLATION
            if rule.confidence == Confidence.APPROXIMATE
            else DiagnosticCodes.W101_MANUAL_TRANSLATION
        )
        diagnostics.warning(
            code,
            f"{rule.feature.value} translated with {rule.confidence.value} rule "
            f"'{rule.name}': {summary}",
            job_id=subject.id if isinstance(subject, JobNode) else None,
            feature=rule.feature.value,
            instruction=instruction,
        )
        subject.target.add_comment(
            FeatureComment(
                feature=rule.feature.value,
                confidence=rule.confidence.value,
                summary=summary,
                instruction=instruction,
            )
        )

    # ------------------------------------------------------------------
    # Phase 5: post-transform checks
    # ------------------------------------------------------------------

    def _check_structure(self, graph: PipelineGraph, diagnostics: DiagnosticCollector) -> None:
        self._drop_dangling_edges(graph, diagnostics)

        seen: set[str] = set()
        for key, job in graph.jobs.items():
            if job.id != key or job.id in seen:
                self._fail(
                    job,
                    StructuralError(
                        f"Job id '{job.id}' collides with another job",
                        job_id=job.id,
                        code=DiagnosticCodes.E303_DUPLICATE_JOB_ID,
                    ),
                    diagnostics,
                )
            seen.add(job.id)

    @staticmethod
    def _fail(
        job: JobNode,
        error: TranslationError,
        diagnostics: DiagnosticCollector,
        keep_dependencies: bool = True,
    ) -> None:
        diagnostics.record(error)
        job.mark_unsupported(error.message, keep_dependencies=keep_dependencies)


def _describe(subject: Subject, feature: FeatureKind) -> str:
    if isinstance(subject, JobNode):
        return describe_job_feature(subject, feature)
    return describe_pipeline_feature(subject, feature)
