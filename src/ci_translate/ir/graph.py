"""Canonical pipeline graph: jobs, dependency edges and pipeline metadata.

The graph is the only state a translation owns. Parsers create it, the rule
engine annotates it in place and the emitter reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ci_translate.diagnostics.errors import DiagnosticCodes
from ci_translate.diagnostics.exceptions import StructuralError
from ci_translate.ir.features import (
    ApprovalGate,
    ArtifactSpec,
    CacheSpec,
    Command,
    ContainerSpec,
    FeatureKind,
    MatrixSpec,
    PipelineConstruct,
    Predicate,
    RetryPolicy,
    ReusableAction,
    Schedule,
    SecretScope,
    ServiceContainer,
    TemplateRef,
)
from ci_translate.vendors import Vendor


class JobKind(Enum):
    """Kind of unit of work."""

    COMMAND = "command"
    APPROVAL = "approval"


class JobStatus(Enum):
    """Translation status of a job."""

    OK = "ok"
    UNSUPPORTED = "unsupported"  # placeholder stub, emitted as skipped
    EXPANDED = "expanded"  # matrix template replaced by literal duplicates


@dataclass(frozen=True)
class DependencyEdge:
    """Edge to a job that must finish first."""

    job_id: str
    allow_failure: bool = False


@dataclass(frozen=True)
class FeatureComment:
    """Structured record of a degraded feature, emitted as a comment."""

    feature: str
    confidence: str
    summary: str
    instruction: str | None = None


@dataclass
class TargetFragment:
    """Target-dialect attributes written by translation rules.

    Attributes
    ----------
        attributes: Target keys and values (e.g. ``timeout_in_minutes``).
        plugins: Ordered (plugin name, configuration) pairs.
        comments: Degradation records rendered as structured comments.
        commands_before: Commands prepended to the job's own commands.
        commands_after: Commands appended after the job's own commands.

    """

    attributes: dict[str, Any] = field(default_factory=dict)
    plugins: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    comments: list[FeatureComment] = field(default_factory=list)
    commands_before: list[str] = field(default_factory=list)
    commands_after: list[str] = field(default_factory=list)

    def set(self, key: str, value: Any) -> None:
        """Set a target attribute."""
        self.attributes[key] = value

    def add_plugin(self, name: str, config: dict[str, Any]) -> None:
        """Append a plugin reference."""
        self.plugins.append((name, config))

    def add_comment(self, comment: FeatureComment) -> None:
        """Append a degradation comment."""
        self.comments.append(comment)


@dataclass
class JobNode:
    """One unit of work in the canonical IR.

    All attributes are fully resolved: global image, environment and
    filters are pushed down by the parser, so rules never look outside
    the job.
    """

    id: str
    label: str
    commands: list[Command] = field(default_factory=list)
    depends_on: dict[str, DependencyEdge] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)
    container: ContainerSpec | None = None
    services: list[ServiceContainer] = field(default_factory=list)
    matrix: MatrixSpec | None = None
    conditionals: list[Predicate] = field(default_factory=list)
    artifacts: ArtifactSpec = field(default_factory=ArtifactSpec)
    cache: CacheSpec | None = None
    resource_hint: str | None = None
    timeout_minutes: int | None = None
    retry_policy: RetryPolicy | None = None

    approval: ApprovalGate | None = None
    secret_scopes: list[SecretScope] = field(default_factory=list)
    soft_fail: bool = False
    parallelism: int | None = None
    concurrency_group: str | None = None
    reusable_actions: list[ReusableAction] = field(default_factory=list)
    post_commands: list[Command] = field(default_factory=list)
    templates: list[TemplateRef] = field(default_factory=list)

    kind: JobKind = JobKind.COMMAND
    status: JobStatus = JobStatus.OK
    source_vendor: Vendor | None = None
    source_path: str | None = None
    status_reason: str | None = None
    expanded_from: str | None = None
    matrix_values: dict[str, str] = field(default_factory=dict)
    target: TargetFragment = field(default_factory=TargetFragment)

    @classmethod
    def placeholder(
        cls,
        job_id: str,
        reason: str,
        label: str | None = None,
        source_vendor: Vendor | None = None,
        source_path: str | None = None,
    ) -> JobNode:
        """Create a placeholder stub for a job that failed to lower."""
        return cls(
            id=job_id,
            label=label or job_id,
            status=JobStatus.UNSUPPORTED,
            status_reason=reason,
            source_vendor=source_vendor,
            source_path=source_path,
        )

    @property
    def is_emittable(self) -> bool:
        """Whether the job appears in the target document."""
        return self.status != JobStatus.EXPANDED

    @property
    def is_active(self) -> bool:
        """Whether rules should be applied to the job."""
        return self.status == JobStatus.OK

    def add_dependency(self, job_id: str, allow_failure: bool = False) -> None:
        """Add a dependency edge, keeping the strongest failure tolerance."""
        existing = self.depends_on.get(job_id)
        if existing is not None and existing.allow_failure:
            allow_failure = True
        self.depends_on[job_id] = DependencyEdge(job_id=job_id, allow_failure=allow_failure)

    def remove_dependency(self, job_id: str) -> DependencyEdge | None:
        """Remove a dependency edge and return it."""
        return self.depends_on.pop(job_id, None)

    def predicates_for(self, feature: FeatureKind) -> list[Predicate]:
        """Get conditionals belonging to one feature slot."""
        return [p for p in self.conditionals if p.feature == feature]

    def populated_features(self) -> list[FeatureKind]:
        """List populated per-job feature slots in fixed translation order.

        The matrix slot is excluded; the engine expands matrices before
        translating per-job features.
        """
        checks: list[tuple[FeatureKind, bool]] = [
            (FeatureKind.CONTAINER, self.container is not None),
            (FeatureKind.SERVICE_CONTAINER, bool(self.services)),
            (FeatureKind.CACHING, self.cache is not None),
            (FeatureKind.ARTIFACT_PASSTHROUGH, bool(self.artifacts)),
            (
                FeatureKind.CONDITIONAL_BRANCH_FILTER,
                bool(self.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER)),
            ),
            (FeatureKind.PATH_FILTER, bool(self.predicates_for(FeatureKind.PATH_FILTER))),
            (
                FeatureKind.CONDITIONAL_EXPRESSION,
                bool(self.predicates_for(FeatureKind.CONDITIONAL_EXPRESSION)),
            ),
            (
                FeatureKind.MANUAL_APPROVAL,
                self.approval is not None or self.kind == JobKind.APPROVAL,
            ),
            (FeatureKind.SECRET_SCOPE, bool(self.secret_scopes)),
            (FeatureKind.EXECUTOR_SIZING, self.resource_hint is not None),
            (FeatureKind.TIMEOUT, self.timeout_minutes is not None),
            (FeatureKind.RETRY, self.retry_policy is not None),
            (FeatureKind.ALLOW_FAILURE, self.soft_fail),
            (FeatureKind.PARALLELISM, self.parallelism is not None),
            (FeatureKind.CONCURRENCY, self.concurrency_group is not None),
            (FeatureKind.REUSABLE_ACTION, bool(self.reusable_actions)),
            (FeatureKind.POST_STEP, bool(self.post_commands)),
            (FeatureKind.TEMPLATED_JOB, bool(self.templates)),
        ]
        return [kind for kind, populated in checks if populated]

    def mark_unsupported(self, reason: str, keep_dependencies: bool = True) -> None:
        """Turn the job into a placeholder stub.

        Feature slots are cleared so no rule touches the job again; the
        job keeps its id, label and (optionally) its incoming edges.
        """
        self.status = JobStatus.UNSUPPORTED
        self.status_reason = reason
        self.commands = []
        self.post_commands = []
        self.container = None
        self.services = []
        self.matrix = None
        self.conditionals = []
        self.artifacts = ArtifactSpec()
        self.cache = None
        self.approval = None
        self.reusable_actions = []
        self.templates = []
        self.target = TargetFragment()
        if not keep_dependencies:
            self.depends_on = {}


@dataclass
class PipelineGraph:
    """Root of the canonical IR.

    Jobs are kept in source order; job ids are unique.
    """

    source_vendor: Vendor | None = None
    name: str | None = None
    jobs: dict[str, JobNode] = field(default_factory=dict)
    global_env: dict[str, str] = field(default_factory=dict)
    global_timeout: int | None = None
    schedules: list[Schedule] = field(default_factory=list)
    pipeline_constructs: list[PipelineConstruct] = field(default_factory=list)
    target: TargetFragment = field(default_factory=TargetFragment)

    def add_job(self, job: JobNode) -> JobNode:
        """Add a job to the graph.

        Raises
        ------
            StructuralError: If a job with the same id already exists.

        """
        if job.id in self.jobs:
            raise StructuralError(
                f"Duplicate job id '{job.id}'",
                job_id=job.id,
                code=DiagnosticCodes.E303_DUPLICATE_JOB_ID,
            )
        self.jobs[job.id] = job
        return job

    def get_job(self, job_id: str) -> JobNode | None:
        """Get a job by id."""
        return self.jobs.get(job_id)

    def has_job(self, job_id: str) -> bool:
        """Check whether a job id exists."""
        return job_id in self.jobs

    @property
    def job_ids(self) -> list[str]:
        """Job ids in source order."""
        return list(self.jobs)

    def emittable_jobs(self) -> list[JobNode]:
        """Jobs that appear in the target document, in source order."""
        return [job for job in self.jobs.values() if job.is_emittable]

    def active_jobs(self) -> list[JobNode]:
        """Jobs rules still apply to, in source order."""
        return [job for job in self.jobs.values() if job.is_active]

    def dependents_of(self, job_id: str) -> list[JobNode]:
        """Jobs that depend directly on the given job."""
        return [job for job in self.jobs.values() if job_id in job.depends_on]

    def populated_features(self) -> list[FeatureKind]:
        """List populated pipeline-level feature slots in fixed order."""
        checks = [
            (FeatureKind.SCHEDULED_TRIGGER, bool(self.schedules)),
            (FeatureKind.GLOBAL_ENVIRONMENT, bool(self.global_env)),
            (FeatureKind.PIPELINE_TRIGGER, bool(self.pipeline_constructs)),
        ]
        return [kind for kind, populated in checks if populated]

    def unique_id(self, base: str) -> str:
        """Return ``base`` or the first free ``base-<n>`` variant."""
        if base not in self.jobs:
            return base
        n = 2
        while f"{base}-{n}" in self.jobs:
            n += 1
        return f"{base}-{n}"

    def insert_before(self, anchor_id: str, job: JobNode) -> JobNode:
        """Insert a new job immediately before an existing one in source order.

        Raises
        ------
            StructuralError: If the new job's id is already taken.

        """
        if job.id in self.jobs:
            raise StructuralError(
                f"Duplicate job id '{job.id}'",
                job_id=job.id,
                code=DiagnosticCodes.E303_DUPLICATE_JOB_ID,
            )
        reordered: dict[str, JobNode] = {}
        for existing_id, existing in self.jobs.items():
            if existing_id == anchor_id:
                reordered[job.id] = job
            reordered[existing_id] = existing
        if job.id not in reordered:
            reordered[job.id] = job
        self.jobs = reordered
        return job
