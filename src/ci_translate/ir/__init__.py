"""Canonical intermediate representation (IR) for CI pipelines.

The IR is vendor neutral:

1. Jobs form a flat list with explicit dependency edges
2. Every job attribute is fully resolved (no inheritance from the pipeline)
3. Feature slots (cache, matrix, conditionals, ...) hold immutable specs
4. Rules annotate jobs through their ``target`` fragment
"""

from ci_translate.ir.features import (
    MATRIX_REF_PATTERN,
    Adjustment,
    ApprovalGate,
    ArtifactSpec,
    CacheKey,
    CacheKeyComponent,
    CacheKeyKind,
    CacheSpec,
    Command,
    ContainerSpec,
    FeatureKind,
    MatrixSpec,
    PipelineConstruct,
    Predicate,
    PredicateKind,
    RetryPolicy,
    ReusableAction,
    Schedule,
    SecretScope,
    ServiceContainer,
    TemplateRef,
    matrix_ref,
    substitute_matrix,
)
from ci_translate.ir.graph import (
    DependencyEdge,
    FeatureComment,
    JobKind,
    JobNode,
    JobStatus,
    PipelineGraph,
    TargetFragment,
)
from ci_translate.ir.matrix import combination_id, expand_matrix, full_adjustments

__all__ = [
    # Features
    "Adjustment",
    "ApprovalGate",
    "ArtifactSpec",
    "CacheKey",
    "CacheKeyComponent",
    "CacheKeyKind",
    "CacheSpec",
    "Command",
    "ContainerSpec",
    "FeatureKind",
    "MatrixSpec",
    "PipelineConstruct",
    "Predicate",
    "PredicateKind",
    "RetryPolicy",
    "ReusableAction",
    "Schedule",
    "SecretScope",
    "ServiceContainer",
    "TemplateRef",
    "MATRIX_REF_PATTERN",
    "matrix_ref",
    "substitute_matrix",
    # Graph
    "DependencyEdge",
    "FeatureComment",
    "JobKind",
    "JobNode",
    "JobStatus",
    "PipelineGraph",
    "TargetFragment",
    # Matrix
    "combination_id",
    "expand_matrix",
    "full_adjustments",
]
