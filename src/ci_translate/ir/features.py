"""IR models for per-job and pipeline-level features.

Feature specs are immutable value objects. A job holds at most one value
per feature slot; the rule engine looks rules up by the slot's
``FeatureKind``.
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass
from enum import Enum


class FeatureKind(Enum):
    """Closed enumeration of translatable feature kinds."""

    CONTAINER = "container"
    SERVICE_CONTAINER = "service-container"
    CACHING = "caching"
    MATRIX = "matrix"
    CONDITIONAL_BRANCH_FILTER = "conditional-branch-filter"
    CONDITIONAL_EXPRESSION = "conditional-expression"
    PATH_FILTER = "path-filter"
    ARTIFACT_PASSTHROUGH = "artifact-passthrough"
    MANUAL_APPROVAL = "manual-approval"
    SECRET_SCOPE = "secret-scope"
    EXECUTOR_SIZING = "executor-sizing"
    TIMEOUT = "timeout"
    RETRY = "retry"
    ALLOW_FAILURE = "allow-failure"
    PARALLELISM = "parallelism"
    CONCURRENCY = "concurrency"
    REUSABLE_ACTION = "reusable-action"
    POST_STEP = "post-step"
    TEMPLATED_JOB = "templated-job"
    # Pipeline-level
    SCHEDULED_TRIGGER = "scheduled-trigger"
    GLOBAL_ENVIRONMENT = "global-environment"
    PIPELINE_TRIGGER = "pipeline-trigger"

    @property
    def is_pipeline_level(self) -> bool:
        """Whether the feature lives on the pipeline rather than a job."""
        return self in _PIPELINE_FEATURES


_PIPELINE_FEATURES = frozenset(
    {
        FeatureKind.SCHEDULED_TRIGGER,
        FeatureKind.GLOBAL_ENVIRONMENT,
        FeatureKind.PIPELINE_TRIGGER,
    }
)


@dataclass(frozen=True)
class Command:
    """One shell invocation inside a job.

    Attributes
    ----------
        label: Display name of the source step (``step-<index>`` if unnamed).
        run: Shell script, possibly multi-line.

    """

    label: str
    run: str


@dataclass(frozen=True)
class ContainerSpec:
    """Container a job runs in."""

    image: str
    workdir: str | None = None
    shell: str | None = None  # e.g. "bash", "sh", "pwsh"
    user: str | None = None


@dataclass(frozen=True)
class ServiceContainer:
    """Sidecar service container (database, cache server, ...)."""

    name: str
    image: str
    environment: tuple[tuple[str, str], ...] = ()
    ports: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Adjustment:
    """A matrix combination adjustment.

    With ``skip=True`` every combination containing all listed values is
    removed. With ``skip=False`` the listed combination is added.
    """

    values: tuple[tuple[str, str], ...]
    skip: bool = True

    def as_dict(self) -> dict[str, str]:
        """Return the dimension -> value mapping."""
        return dict(self.values)

    def matches(self, combination: dict[str, str]) -> bool:
        """Check whether a combination contains every listed value."""
        return all(combination.get(name) == value for name, value in self.values)


@dataclass(frozen=True)
class MatrixSpec:
    """Named matrix dimensions with ordered string values.

    Attributes
    ----------
        dimensions: Ordered (name, values) pairs.
        adjustments: Skipped or added combinations.
        max_parallel: Optional cap on concurrently running combinations.

    """

    dimensions: tuple[tuple[str, tuple[str, ...]], ...]
    adjustments: tuple[Adjustment, ...] = ()
    max_parallel: int | None = None

    @property
    def dimension_names(self) -> tuple[str, ...]:
        """Dimension names in declared order."""
        return tuple(name for name, _ in self.dimensions)

    @property
    def skips(self) -> tuple[Adjustment, ...]:
        """Adjustments removing combinations."""
        return tuple(a for a in self.adjustments if a.skip)

    @property
    def additions(self) -> tuple[Adjustment, ...]:
        """Adjustments adding combinations."""
        return tuple(a for a in self.adjustments if not a.skip)

    @property
    def is_rectangular(self) -> bool:
        """Whether every added combination names exactly the declared dimensions."""
        names = set(self.dimension_names)
        return all(set(a.as_dict()) == names for a in self.additions)

    def values_for(self, name: str) -> tuple[str, ...]:
        """Get the values of one dimension."""
        for dim_name, values in self.dimensions:
            if dim_name == name:
                return values
        raise KeyError(name)

    def combinations(self) -> list[dict[str, str]]:
        """Materialize all combinations in deterministic order.

        Dimensions are iterated in declared order and values by their
        declared position, so the product is lexicographic over value
        positions. Skipped combinations are removed; added combinations
        follow, without duplicates.

        Returns
        -------
            Ordered list of dimension -> value mappings.

        """
        names = self.dimension_names
        result: list[dict[str, str]] = []
        if names:
            for values in itertools.product(*(vals for _, vals in self.dimensions)):
                combo = dict(zip(names, values, strict=True))
                if any(skip.matches(combo) for skip in self.skips):
                    continue
                result.append(combo)

        for addition in self.additions:
            combo = addition.as_dict()
            if combo not in result:
                result.append(combo)

        return result

    @property
    def total_jobs(self) -> int:
        """Number of concrete jobs the matrix produces."""
        return len(self.combinations())


MATRIX_REF_PATTERN = re.compile(r"\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")
"""Vendor-neutral reference to a matrix value inside job text."""


def matrix_ref(name: str) -> str:
    """Render the neutral reference to a matrix dimension, e.g. ``{{matrix.os}}``."""
    return "{{matrix." + name + "}}"


def substitute_matrix(text: str, values: dict[str, str]) -> str:
    """Replace matrix references with literal values.

    References to dimensions not present in ``values`` are left as is.
    """

    def _replace(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return MATRIX_REF_PATTERN.sub(_replace, text)


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class CacheKeyKind(Enum):
    """Kind of a cache key component."""

    LITERAL = "literal"
    FILE_HASH = "file_hash"  # hash of one or more files
    BRANCH = "branch"  # current branch name
    ENV = "env"  # environment variable
    RUNTIME = "runtime"  # os/arch/epoch and other runtime values


@dataclass(frozen=True)
class CacheKeyComponent:
    """One component of a cache key."""

    kind: CacheKeyKind
    value: str

    def render(self) -> str:
        """Render the component in a vendor-neutral notation."""
        if self.kind == CacheKeyKind.LITERAL:
            return self.value
        return f"{{{self.kind.value}:{self.value}}}"


@dataclass(frozen=True)
class CacheKey:
    """An ordered sequence of key components."""

    components: tuple[CacheKeyComponent, ...]

    @property
    def hashed_files(self) -> tuple[str, ...]:
        """Files whose content hash is part of the key."""
        return tuple(c.value for c in self.components if c.kind == CacheKeyKind.FILE_HASH)

    def has(self, kind: CacheKeyKind) -> bool:
        """Check whether the key contains a component of the given kind."""
        return any(c.kind == kind for c in self.components)

    def render(self) -> str:
        """Render the key, e.g. ``v1-deps-{file_hash:package-lock.json}``."""
        return "".join(c.render() for c in self.components)


@dataclass(frozen=True)
class CacheSpec:
    """Cache configuration of a job.

    Attributes
    ----------
        key: Primary (most specific) cache key.
        paths: Cached paths.
        fallbacks: Restore keys, most specific first.
        name: Optional cache name from the source.

    """

    key: CacheKey
    paths: tuple[str, ...]
    fallbacks: tuple[CacheKey, ...] = ()
    name: str | None = None

    @property
    def chain(self) -> tuple[CacheKey, ...]:
        """Primary key followed by its fallbacks, most specific first."""
        return (self.key, *self.fallbacks)


# ---------------------------------------------------------------------------
# Artifacts, retries, approvals, secrets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactSpec:
    """Artifacts produced by a job and dependencies it consumes from."""

    produced: tuple[str, ...] = ()
    consumed: tuple[str, ...] = ()  # producing job ids

    def __bool__(self) -> bool:
        """An artifact spec is populated when it produces or consumes."""
        return bool(self.produced or self.consumed)


@dataclass(frozen=True)
class RetryPolicy:
    """Automatic retry configuration.

    ``max_attempts`` counts the first run, so one retry is two attempts.
    ``conditions`` uses the neutral vocabulary ``any``, ``script-failure``,
    ``infrastructure-failure`` and ``timeout``.
    """

    max_attempts: int
    conditions: tuple[str, ...] = ("any",)


@dataclass(frozen=True)
class ApprovalGate:
    """Manual approval required before a job starts."""

    prompt: str
    environment: str | None = None


@dataclass(frozen=True)
class SecretScope:
    """Secrets or protected environment a job needs access to."""

    name: str
    kind: str  # context, environment, deployment, credential, secret


@dataclass(frozen=True)
class ReusableAction:
    """Reference to a vendor-hosted reusable action, orb command or plugin."""

    ref: str
    label: str
    inputs: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class TemplateRef:
    """A reusable template whose substitution could not be resolved statically."""

    name: str
    reason: str


# ---------------------------------------------------------------------------
# Conditionals
# ---------------------------------------------------------------------------


class PredicateKind(Enum):
    """Kind of a conditional-execution predicate."""

    BRANCH = "branch"
    TAG = "tag"
    EVENT = "event"
    PATH = "path"
    EXPRESSION = "expression"


_PREDICATE_FEATURES: dict[PredicateKind, FeatureKind] = {
    PredicateKind.BRANCH: FeatureKind.CONDITIONAL_BRANCH_FILTER,
    PredicateKind.TAG: FeatureKind.CONDITIONAL_BRANCH_FILTER,
    PredicateKind.EVENT: FeatureKind.CONDITIONAL_BRANCH_FILTER,
    PredicateKind.PATH: FeatureKind.PATH_FILTER,
    PredicateKind.EXPRESSION: FeatureKind.CONDITIONAL_EXPRESSION,
}


@dataclass(frozen=True)
class Predicate:
    """A boolean predicate over the build context.

    Branch, tag and path predicates carry glob patterns. Event predicates
    list event names (``push``, ``pull_request``, ``schedule``, ``manual``).
    Expression predicates keep the raw vendor expression.
    """

    kind: PredicateKind
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    expression: str | None = None

    @property
    def feature(self) -> FeatureKind:
        """Feature slot the predicate belongs to."""
        return _PREDICATE_FEATURES[self.kind]

    def describe(self) -> str:
        """Describe the predicate for comments and diagnostics."""
        if self.kind == PredicateKind.EXPRESSION:
            return f"expression: {self.expression}"
        parts = []
        if self.include:
            parts.append(f"only {', '.join(self.include)}")
        if self.exclude:
            parts.append(f"ignore {', '.join(self.exclude)}")
        return f"{self.kind.value}: {'; '.join(parts) or 'any'}"


# ---------------------------------------------------------------------------
# Pipeline-level
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Schedule:
    """Cron schedule that triggers the pipeline."""

    cron: str
    branches: tuple[str, ...] = ()
    description: str | None = None


@dataclass(frozen=True)
class PipelineConstruct:
    """Pipeline-level source construct with no slot of its own."""

    summary: str
    detail: str | None = None
