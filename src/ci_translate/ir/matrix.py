"""Matrix expansion: replace a matrix job by one literal job per combination."""

from __future__ import annotations

import itertools
import re
from dataclasses import replace

from ci_translate.diagnostics.errors import DiagnosticCodes
from ci_translate.diagnostics.exceptions import StructuralError
from ci_translate.ir.features import (
    Adjustment,
    ArtifactSpec,
    CacheKey,
    CacheKeyComponent,
    CacheKeyKind,
    Command,
    MatrixSpec,
    Predicate,
    substitute_matrix,
)
from ci_translate.ir.graph import JobNode, JobStatus, PipelineGraph

_ID_INVALID = re.compile(r"[^A-Za-z0-9_-]+")


def combination_id(job_id: str, combination: dict[str, str]) -> str:
    """Build the id of one duplicate, ``<job id>-<value>-<value>...``.

    Examples
    --------
        >>> combination_id("test", {"os": "linux", "python": "3.12"})
        'test-linux-3-12'

    """
    parts = [job_id]
    for value in combination.values():
        parts.append(_ID_INVALID.sub("-", value).strip("-") or "x")
    return "-".join(parts)


def full_adjustments(matrix: MatrixSpec) -> list[Adjustment]:
    """Rewrite adjustments so each one names every dimension.

    A skip listing only some dimensions becomes one skip per matching
    combination of the full product. Additions are kept as is.
    """
    names = matrix.dimension_names
    result: list[Adjustment] = []
    for skip in matrix.skips:
        if set(skip.as_dict()) == set(names):
            combos = [skip.as_dict()]
        else:
            combos = [
                combo
                for combo in (
                    dict(zip(names, values, strict=True))
                    for values in itertools.product(*(vals for _, vals in matrix.dimensions))
                )
                if skip.matches(combo)
            ]
        for combo in combos:
            adjustment = Adjustment(values=tuple((n, combo[n]) for n in names if n in combo))
            if adjustment not in result:
                result.append(adjustment)
    result.extend(matrix.additions)
    return result


def expand_matrix(graph: PipelineGraph, job: JobNode) -> list[JobNode]:
    """Duplicate a matrix job once per combination.

    Duplicates are inserted before the template in source order, matrix
    references in their text are replaced by literal values, and every
    dependency or artifact consumer of the template is rewired to all of
    them. The template is marked ``expanded``.

    Raises
    ------
        StructuralError: If a duplicate id is already taken. The graph is
            left unchanged in that case.

    """
    if job.matrix is None:
        return []

    duplicates = [_duplicate(job, combo) for combo in job.matrix.combinations()]
    seen: set[str] = set()
    for duplicate in duplicates:
        if duplicate.id in seen or graph.has_job(duplicate.id):
            raise StructuralError(
                f"Matrix combination id '{duplicate.id}' collides with an existing job",
                job_id=job.id,
                feature="matrix",
                code=DiagnosticCodes.E303_DUPLICATE_JOB_ID,
            )
        seen.add(duplicate.id)

    for duplicate in duplicates:
        graph.insert_before(job.id, duplicate)

    new_ids = [d.id for d in duplicates]
    for other in graph.jobs.values():
        edge = other.depends_on.get(job.id)
        if edge is not None:
            deps = {}
            for dep_id, dep_edge in other.depends_on.items():
                if dep_id == job.id:
                    deps.update({new_id: replace(edge, job_id=new_id) for new_id in new_ids})
                else:
                    deps[dep_id] = dep_edge
            other.depends_on = deps
        if job.id in other.artifacts.consumed:
            consumed: list[str] = []
            for dep_id in other.artifacts.consumed:
                consumed.extend(new_ids if dep_id == job.id else [dep_id])
            other.artifacts = replace(other.artifacts, consumed=tuple(consumed))

    job.status = JobStatus.EXPANDED
    return duplicates


def _duplicate(job: JobNode, combo: dict[str, str]) -> JobNode:
    def sub(text: str) -> str:
        return substitute_matrix(text, combo)

    def sub_optional(text: str | None) -> str | None:
        return sub(text) if text is not None else None

    return JobNode(
        id=combination_id(job.id, combo),
        label=f"{sub(job.label)} ({', '.join(combo.values())})",
        commands=[Command(label=c.label, run=sub(c.run)) for c in job.commands],
        depends_on=dict(job.depends_on),
        environment={k: sub(v) for k, v in job.environment.items()},
        container=(
            replace(job.container, image=sub(job.container.image)) if job.container else None
        ),
        services=[replace(s, image=sub(s.image)) for s in job.services],
        conditionals=[_sub_predicate(p, combo) for p in job.conditionals],
        artifacts=ArtifactSpec(
            produced=tuple(sub(p) for p in job.artifacts.produced),
            consumed=job.artifacts.consumed,
        ),
        cache=(
            replace(
                job.cache,
                key=_sub_key(job.cache.key, combo),
                paths=tuple(sub(p) for p in job.cache.paths),
                fallbacks=tuple(_sub_key(k, combo) for k in job.cache.fallbacks),
            )
            if job.cache
            else None
        ),
        resource_hint=sub_optional(job.resource_hint),
        timeout_minutes=job.timeout_minutes,
        retry_policy=job.retry_policy,
        approval=job.approval,
        secret_scopes=list(job.secret_scopes),
        soft_fail=job.soft_fail,
        parallelism=job.parallelism,
        concurrency_group=sub_optional(job.concurrency_group),
        reusable_actions=list(job.reusable_actions),
        post_commands=[Command(label=c.label, run=sub(c.run)) for c in job.post_commands],
        templates=list(job.templates),
        kind=job.kind,
        source_vendor=job.source_vendor,
        source_path=job.source_path,
        expanded_from=job.id,
        matrix_values=dict(combo),
    )


def _sub_key(key: CacheKey, combo: dict[str, str]) -> CacheKey:
    return CacheKey(
        components=tuple(
            CacheKeyComponent(c.kind, substitute_matrix(c.value, combo))
            if c.kind == CacheKeyKind.LITERAL
            else c
            for c in key.components
        )
    )


def _sub_predicate(predicate: Predicate, combo: dict[str, str]) -> Predicate:
    if predicate.expression is None:
        return predicate
    return replace(predicate, expression=substitute_matrix(predicate.expression, combo))
