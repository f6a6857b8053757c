"""Plain-language summaries of source intent, used in placeholder comments."""

from __future__ import annotations

from ci_translate.ir.features import FeatureKind
from ci_translate.ir.graph import JobNode, PipelineGraph


def describe_job_feature(job: JobNode, feature: FeatureKind) -> str:
    """Summarize what a populated job slot asked for in the source."""
    if feature == FeatureKind.CONTAINER and job.container:
        return f"container image {job.container.image}"
    if feature == FeatureKind.SERVICE_CONTAINER:
        return "service containers " + ", ".join(f"{s.name} ({s.image})" for s in job.services)
    if feature == FeatureKind.CACHING and job.cache:
        text = f"cache {', '.join(job.cache.paths)} under key {job.cache.key.render()}"
        if job.cache.fallbacks:
            text += f", restoring from {', '.join(k.render() for k in job.cache.fallbacks)}"
        return text
    if feature == FeatureKind.MATRIX and job.matrix:
        dims = "; ".join(f"{name}: {', '.join(vals)}" for name, vals in job.matrix.dimensions)
        return f"matrix {dims}"
    if feature in (
        FeatureKind.CONDITIONAL_BRANCH_FILTER,
        FeatureKind.CONDITIONAL_EXPRESSION,
        FeatureKind.PATH_FILTER,
    ):
        return "; ".join(p.describe() for p in job.predicates_for(feature))
    if feature == FeatureKind.ARTIFACT_PASSTHROUGH:
        parts = []
        if job.artifacts.produced:
            parts.append(f"produces {', '.join(job.artifacts.produced)}")
        if job.artifacts.consumed:
            parts.append(f"consumes from {', '.join(job.artifacts.consumed)}")
        return "; ".join(parts)
    if feature == FeatureKind.MANUAL_APPROVAL and job.approval:
        return f"approval: {job.approval.prompt}"
    if feature == FeatureKind.SECRET_SCOPE:
        return ", ".join(f"{s.kind} {s.name}" for s in job.secret_scopes)
    if feature == FeatureKind.EXECUTOR_SIZING:
        return f"runs on {job.resource_hint}"
    if feature == FeatureKind.TIMEOUT:
        return f"timeout {job.timeout_minutes} minutes"
    if feature == FeatureKind.RETRY and job.retry_policy:
        policy = job.retry_policy
        return f"up to {policy.max_attempts} attempts on {', '.join(policy.conditions)}"
    if feature == FeatureKind.ALLOW_FAILURE:
        return "failure allowed"
    if feature == FeatureKind.PARALLELISM:
        return f"{job.parallelism} parallel copies"
    if feature == FeatureKind.CONCURRENCY:
        return f"concurrency group {job.concurrency_group}"
    if feature == FeatureKind.REUSABLE_ACTION:
        return ", ".join(f"{a.label} ({a.ref})" for a in job.reusable_actions)
    if feature == FeatureKind.POST_STEP:
        return "post commands " + ", ".join(c.label for c in job.post_commands)
    if feature == FeatureKind.TEMPLATED_JOB:
        return "; ".join(f"{t.name}: {t.reason}" for t in job.templates)
    return feature.value


def describe_pipeline_feature(graph: PipelineGraph, feature: FeatureKind) -> str:
    """Summarize a pipeline-level construct."""
    if feature == FeatureKind.SCHEDULED_TRIGGER:
        parts = []
        for schedule in graph.schedules:
            text = f"cron '{schedule.cron}'"
            if schedule.branches:
                text += f" on {', '.join(schedule.branches)}"
            parts.append(text)
        return "schedules " + "; ".join(parts)
    if feature == FeatureKind.GLOBAL_ENVIRONMENT:
        return "global environment " + ", ".join(graph.global_env)
    if feature == FeatureKind.PIPELINE_TRIGGER:
        return "; ".join(
            f"{c.summary} ({c.detail})" if c.detail else c.summary
            for c in graph.pipeline_constructs
        )
    return feature.value
