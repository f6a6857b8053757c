"""Buildkite rule data.

Each ``TranslationRule`` below knows how one IR feature slot is written in
a Buildkite pipeline. Rules write into the job's ``target`` fragment only;
the emitter turns fragments into step keys.

Rules for one slot have disjoint ``applies`` predicates, so the engine
only sees several candidates when the data itself is ambiguous.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable

from ci_translate.ir.features import (
    MATRIX_REF_PATTERN,
    CacheKey,
    CacheKeyKind,
    CacheSpec,
    FeatureKind,
    MatrixSpec,
    Predicate,
    PredicateKind,
)
from ci_translate.ir.graph import JobKind, JobNode, PipelineGraph
from ci_translate.ir.matrix import expand_matrix, full_adjustments
from ci_translate.rules.registry import (
    Confidence,
    MatrixLimits,
    RuleContext,
    TargetProfile,
    TranslationRule,
)
from ci_translate.vendors import Vendor

PROFILE = TargetProfile(
    vendor=Vendor.BUILDKITE,
    matrix_limits=MatrixLimits(
        max_dimensions=6,
        max_values_per_dimension=20,
        max_adjustments=12,
        max_jobs=50,
    ),
    allowed_top_level_keys=frozenset({"common", "env", "agents", "notify", "steps"}),
    top_level_order=("common", "env", "agents", "notify", "steps"),
    step_key_order=(
        "block",
        "label",
        "key",
        "prompt",
        "depends_on",
        "allow_dependency_failure",
        "if",
        "branches",
        "if_changed",
        "agents",
        "env",
        "matrix",
        "plugins",
        "commands",
        "artifact_paths",
        "parallelism",
        "concurrency_group",
        "concurrency",
        "timeout_in_minutes",
        "retry",
        "soft_fail",
        "skip",
    ),
    anchor_section="common",
    cache_fallbacks=True,
)

MAX_RETRY_LIMIT = 10

# ---------------------------------------------------------------------------
# Containers and services
# ---------------------------------------------------------------------------

_DOCKER_SHELLS = {
    "bash": ["/bin/bash", "-e", "-c"],
    "sh": ["/bin/sh", "-e", "-c"],
    "pwsh": ["pwsh", "-Command"],
    "powershell": ["powershell", "-Command"],
    "cmd": ["cmd.exe", "/c"],
}


def _docker_plugin(job: JobNode, ctx: RuleContext) -> None:
    container = job.container
    if container is None:
        return
    config: dict[str, object] = {"image": container.image}
    if container.workdir:
        config["workdir"] = container.workdir
    if container.shell:
        config["shell"] = _DOCKER_SHELLS.get(container.shell, [container.shell, "-c"])
    if container.user:
        config["user"] = container.user
    if job.environment:
        config["propagate-environment"] = True
    job.target.add_plugin("docker", config)


def _services_instruction(job: JobNode) -> str:
    names = ", ".join(s.name for s in job.services)
    return (
        f"Define the services {names} in a docker-compose.yml and run the step "
        "with the docker-compose plugin"
    )


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

CACHE_LEVELS = ("file", "step", "branch", "pipeline", "all")


def cache_level(key: CacheKey) -> str:
    """Map a cache key to the cache plugin level it is scoped to."""
    if key.has(CacheKeyKind.FILE_HASH):
        return "file"
    if key.has(CacheKeyKind.BRANCH):
        return "branch"
    return "pipeline"


def cache_levels(job: JobNode, ctx: RuleContext) -> tuple[str, str]:
    """Get the (save, restore) levels for a job's cache chain.

    The primary key decides the save level. Restore falls back to the
    broadest level of the chain when the target supports fallbacks, and
    otherwise stays at the most specific one.

    Raises
    ------
        ValueError: If the job has no cache.

    """
    if job.cache is None:
        raise ValueError(f"job '{job.id}' has no cache")
    levels = [cache_level(key) for key in job.cache.chain]
    save = levels[0]
    if ctx.profile.cache_fallbacks:
        return save, max(levels, key=CACHE_LEVELS.index)
    return save, save


def dropped_key_text(cache: CacheSpec) -> tuple[str, ...]:
    """Literal cache key text the cache plugin has no place for.

    The plugin keys on the manifest file and the cache level only, so a
    version prefix such as ``v2-deps-`` is lost. Matrix references and
    bare separators are not counted.
    """
    dropped: list[str] = []
    for key in cache.chain:
        for component in key.components:
            if component.kind != CacheKeyKind.LITERAL or component.value in dropped:
                continue
            if any(ch.isalnum() for ch in MATRIX_REF_PATTERN.sub("", component.value)):
                dropped.append(component.value)
    return tuple(dropped)


def _exact_cache(job: JobNode, ctx: RuleContext) -> bool:
    cache = job.cache
    if cache is None or dropped_key_text(cache):
        return False
    hashed = cache.key.hashed_files
    if len(hashed) > 1 or any(ch in "*?[" for f in hashed for ch in f):
        return False
    return not any(
        key.has(CacheKeyKind.RUNTIME) or key.has(CacheKeyKind.ENV) for key in cache.chain
    )


def _cache_plugin(job: JobNode, ctx: RuleContext) -> None:
    cache = job.cache
    if cache is None:
        return
    save, restore = cache_levels(job, ctx)
    manifest = cache.key.hashed_files[0] if cache.key.hashed_files else None
    for path in cache.paths:
        config: dict[str, object] = {"path": path}
        if manifest:
            config["manifest"] = manifest
        config["restore"] = restore
        config["save"] = save
        job.target.add_plugin("cache", config)


def _cache_instruction(job: JobNode) -> str:
    if job.cache is None:
        return "Review the cache plugin configuration"
    instruction = (
        f"The cache plugin keys on one manifest file and the cache level; review that "
        f"'{job.cache.key.render()}' is scoped as intended"
    )
    dropped = dropped_key_text(job.cache)
    if dropped:
        names = ", ".join(f"'{text}'" for text in dropped)
        instruction += f"; the key text {names} is not part of the plugin key"
    return instruction


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


def artifact_glob(path: str) -> str:
    """Turn a source artifact path into a Buildkite artifact glob."""
    path = path.removeprefix("./")
    if path.endswith("/"):
        return path + "**/*"
    return path


def _artifact_passthrough(job: JobNode, ctx: RuleContext) -> None:
    if job.artifacts.produced:
        job.target.set("artifact_paths", [artifact_glob(p) for p in job.artifacts.produced])
    for dep_id in job.artifacts.consumed:
        producer = ctx.graph.get_job(dep_id)
        patterns = producer.artifacts.produced if producer and producer.artifacts else ()
        for pattern in patterns or ("*",):
            job.target.commands_before.append(
                f'buildkite-agent artifact download "{artifact_glob(pattern)}" . --step {dep_id}'
            )


# ---------------------------------------------------------------------------
# Branch, tag and event filters
# ---------------------------------------------------------------------------

_REGEX_SPECIAL = frozenset(".^$+?()[]{}|\\")

_EVENT_CONDITIONS = {
    "push": 'build.source == "webhook" && build.pull_request.id == null',
    "pull_request": "build.pull_request.id != null",
    "pull_request_target": "build.pull_request.id != null",
    "merge_request": "build.pull_request.id != null",
    "schedule": 'build.source == "schedule"',
    "manual": 'build.source == "ui"',
    "workflow_dispatch": 'build.source == "ui"',
    "api": 'build.source == "api"',
    "repository_dispatch": 'build.source == "api"',
    "trigger": 'build.source == "trigger_job"',
    "pipeline": 'build.source == "trigger_job"',
    "workflow_call": 'build.source == "trigger_job"',
    "workflow_run": 'build.source == "trigger_job"',
}


def _is_regex(pattern: str) -> bool:
    return len(pattern) > 1 and pattern.startswith("/") and pattern.endswith("/")


def _is_pattern(pattern: str) -> bool:
    return _is_regex(pattern) or any(ch in "*?[" for ch in pattern)


def glob_to_regex(pattern: str) -> str:
    """Translate a branch glob to an anchored regular expression.

    ``**`` matches anything, ``*`` anything but ``/``. A pattern already
    written as ``/regex/`` is returned without its slashes.

    Examples
    --------
        >>> glob_to_regex("release/*")
        '^release/[^/]*$'

    """
    if _is_regex(pattern):
        return pattern[1:-1]
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        ch = pattern[i]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch in _REGEX_SPECIAL:
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1
    return "^" + "".join(out) + "$"


def regex_literal(regex: str) -> str:
    """Wrap a regular expression in ``/.../``, escaping bare slashes."""
    escaped = []
    previous = ""
    for ch in regex:
        if ch == "/" and previous != "\\":
            escaped.append("\\/")
        else:
            escaped.append(ch)
        previous = ch
    return "/" + "".join(escaped) + "/"


def _group(term: str) -> str:
    return f"({term})" if "&&" in term or "||" in term else term


def _any(terms: list[str]) -> str:
    if len(terms) == 1:
        return terms[0]
    return " || ".join(_group(t) for t in terms)


def _all(terms: list[str]) -> str:
    if len(terms) == 1:
        return terms[0]
    return " && ".join(_group(t) for t in terms)


def _match(field: str, pattern: str, negate: bool = False) -> str:
    if _is_pattern(pattern):
        op = "!~" if negate else "=~"
        return f"{field} {op} {regex_literal(glob_to_regex(pattern))}"
    op = "!=" if negate else "=="
    return f'{field} {op} "{pattern}"'


def _ref_condition(predicate: Predicate) -> str:
    field = "build.tag" if predicate.kind == PredicateKind.TAG else "build.branch"
    terms: list[str] = []
    if predicate.include:
        terms.append(_any([_match(field, p) for p in predicate.include]))
    elif predicate.kind == PredicateKind.TAG:
        terms.append("build.tag != null")
    terms.extend(_match(field, p, negate=True) for p in predicate.exclude)
    return _all(terms)


def _event_condition(predicate: Predicate) -> str | None:
    terms: list[str] = []
    included = [_EVENT_CONDITIONS[e] for e in predicate.include if e in _EVENT_CONDITIONS]
    if included:
        terms.append(_any(list(dict.fromkeys(included))))
    for event in predicate.exclude:
        if event in _EVENT_CONDITIONS:
            terms.append(f"!({_EVENT_CONDITIONS[event]})")
    return _all(terms) if terms else None


def unknown_events(job: JobNode) -> list[str]:
    """Event names in the job's filters that Buildkite has no build source for."""
    names = [
        event
        for p in job.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER)
        if p.kind == PredicateKind.EVENT
        for event in (*p.include, *p.exclude)
        if event not in _EVENT_CONDITIONS
    ]
    return list(dict.fromkeys(names))


def branch_filter_condition(job: JobNode) -> str | None:
    """Build the ``if`` expression for a job's branch, tag and event filters.

    Branch and tag predicates are alternatives; event predicates must all
    hold. Unknown event names are left out.
    """
    refs: list[str] = []
    events: list[str] = []
    for predicate in job.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER):
        if predicate.kind == PredicateKind.EVENT:
            condition = _event_condition(predicate)
            if condition:
                events.append(condition)
        else:
            refs.append(_ref_condition(predicate))
    terms = ([_any(refs)] if refs else []) + events
    return _all(terms) if terms else None


def _simple_branches(job: JobNode, ctx: RuleContext) -> bool:
    predicates = job.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER)
    if len(predicates) != 1 or predicates[0].kind != PredicateKind.BRANCH:
        return False
    patterns = (*predicates[0].include, *predicates[0].exclude)
    return all(not _is_regex(p) and not any(ch in "?[ " for ch in p) for p in patterns)


def _branches_attribute(job: JobNode, ctx: RuleContext) -> None:
    predicate = job.predicates_for(FeatureKind.CONDITIONAL_BRANCH_FILTER)[0]
    patterns = [p.replace("**", "*") for p in predicate.include]
    patterns += ["!" + p.replace("**", "*") for p in predicate.exclude]
    job.target.set("branches", " ".join(patterns))


def _if_expression_applies(job: JobNode, ctx: RuleContext) -> bool:
    return not _simple_branches(job, ctx) and not unknown_events(job)


def _if_expression(job: JobNode, ctx: RuleContext) -> None:
    condition = branch_filter_condition(job)
    if condition:
        job.target.set("if", condition)


def _unknown_events_instruction(job: JobNode) -> str:
    return (
        f"Buildkite has no build source for {', '.join(unknown_events(job))}; "
        "trigger these builds through the API or a trigger step"
    )


# ---------------------------------------------------------------------------
# Expressions and path filters
# ---------------------------------------------------------------------------


def _no_op(subject: object, ctx: RuleContext) -> None:
    return None


def _expression_instruction(job: JobNode) -> str:
    expressions = [
        p.expression or "" for p in job.predicates_for(FeatureKind.CONDITIONAL_EXPRESSION)
    ]
    return "Rewrite as a Buildkite 'if' condition: " + " && ".join(expressions)


def _if_changed(job: JobNode, ctx: RuleContext) -> None:
    include: list[str] = []
    exclude: list[str] = []
    for predicate in job.predicates_for(FeatureKind.PATH_FILTER):
        include.extend(predicate.include)
        exclude.extend(predicate.exclude)
    include = list(dict.fromkeys(include)) or ["**"]
    if exclude:
        job.target.set(
            "if_changed", {"include": include, "exclude": list(dict.fromkeys(exclude))}
        )
    else:
        job.target.set("if_changed", include[0] if len(include) == 1 else include)


# ---------------------------------------------------------------------------
# Approval, secrets, executors
# ---------------------------------------------------------------------------


def _is_gate(job: JobNode, ctx: RuleContext) -> bool:
    return job.kind == JobKind.APPROVAL


def _block_step(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("block", job.label)
    if job.approval is not None:
        prompt = job.approval.prompt
        if job.approval.environment:
            prompt = f"{prompt} ({job.approval.environment})"
        job.target.set("prompt", prompt)


def _secret_instruction(template: str) -> Callable[[JobNode], str]:
    def instruction(job: JobNode) -> str:
        names = ", ".join(f"'{s.name}'" for s in job.secret_scopes)
        return template.format(names=names)

    return instruction


def _agent_queue(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("agents", {"queue": job.resource_hint})


def _queue_instruction(job: JobNode) -> str:
    return f"Create an agent queue named '{job.resource_hint}' with matching agents"


# ---------------------------------------------------------------------------
# Timeouts, retries, failure handling
# ---------------------------------------------------------------------------


def retry_limit(job: JobNode) -> int:
    """Retries after the first attempt, as Buildkite counts them (0 without a policy)."""
    if job.retry_policy is None:
        return 0
    return max(job.retry_policy.max_attempts - 1, 0)


def _timeout(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("timeout_in_minutes", job.timeout_minutes)


def _exact_retry(job: JobNode, ctx: RuleContext) -> bool:
    policy = job.retry_policy
    return (
        policy is not None
        and policy.conditions == ("any",)
        and retry_limit(job) <= MAX_RETRY_LIMIT
    )


def _automatic_retry(job: JobNode, ctx: RuleContext) -> None:
    limit = retry_limit(job)
    if limit:
        job.target.set("retry", {"automatic": {"limit": limit}})


_RETRY_EXIT_STATUSES: dict[str, tuple[object, ...]] = {
    "any": ("*",),
    "script-failure": ("*",),
    "infrastructure-failure": (-1, 255),
    "timeout": (-1,),
}


def _conditional_retry(job: JobNode, ctx: RuleContext) -> None:
    limit = min(retry_limit(job), MAX_RETRY_LIMIT)
    if job.retry_policy is None or not limit:
        return
    statuses: list[object] = []
    for condition in job.retry_policy.conditions:
        for status in _RETRY_EXIT_STATUSES.get(condition, ("*",)):
            if status not in statuses:
                statuses.append(status)
    job.target.set(
        "retry", {"automatic": [{"exit_status": s, "limit": limit} for s in statuses]}
    )


def _retry_instruction(job: JobNode) -> str:
    return (
        f"Check that the exit statuses retried cover "
        f"{', '.join(job.retry_policy.conditions if job.retry_policy else ())}; "
        f"Buildkite retries at most {MAX_RETRY_LIMIT} times"
    )


def _soft_fail(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("soft_fail", True)


def _parallelism(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("parallelism", job.parallelism)


def _concurrency(job: JobNode, ctx: RuleContext) -> None:
    job.target.set("concurrency_group", job.concurrency_group)
    job.target.set("concurrency", 1)


# ---------------------------------------------------------------------------
# Reuse and post steps
# ---------------------------------------------------------------------------


def _action_placeholders(job: JobNode, ctx: RuleContext) -> None:
    if job.commands or job.target.commands_before:
        return
    for action in job.reusable_actions:
        job.target.commands_before.append(
            "echo " + shlex.quote(f"Manual step required: {action.label} ({action.ref})")
        )


def _template_placeholders(job: JobNode, ctx: RuleContext) -> None:
    if job.commands or job.target.commands_before:
        return
    for template in job.templates:
        job.target.commands_before.append(
            "echo " + shlex.quote(f"Manual step required: {template.name} ({template.reason})")
        )


def _actions_instruction(job: JobNode) -> str:
    refs = ", ".join(a.ref for a in job.reusable_actions)
    return f"Replace {refs} with a Buildkite plugin or equivalent shell commands"


def _templates_instruction(job: JobNode) -> str:
    names = ", ".join(t.name for t in job.templates)
    return f"Resolve {names} by hand and inline the resulting commands"


def _post_commands(job: JobNode, ctx: RuleContext) -> None:
    job.target.commands_after.extend(c.run for c in job.post_commands)


# ---------------------------------------------------------------------------
# Matrices
# ---------------------------------------------------------------------------


def _native_matrix_applies(job: JobNode, ctx: RuleContext) -> bool:
    matrix = job.matrix
    return (
        matrix is not None
        and ctx.prefer_native_matrix
        and matrix.is_rectangular
        and matrix.max_parallel is None
    )


def matrix_config(matrix: MatrixSpec) -> dict[str, object]:
    """Build the ``matrix`` step attribute for a rectangular matrix."""
    config: dict[str, object] = {
        "setup": {name: list(values) for name, values in matrix.dimensions}
    }
    adjustments = []
    for adjustment in full_adjustments(matrix):
        entry: dict[str, object] = {"with": adjustment.as_dict()}
        if adjustment.skip:
            entry["skip"] = True
        adjustments.append(entry)
    if adjustments:
        config["adjustments"] = adjustments
    return config


def _native_matrix(job: JobNode, ctx: RuleContext) -> None:
    if job.matrix is not None:
        job.target.set("matrix", matrix_config(job.matrix))


def _duplicate_matrix(job: JobNode, ctx: RuleContext) -> None:
    if job.matrix is None:
        return
    max_parallel = job.matrix.max_parallel
    duplicates = expand_matrix(ctx.graph, job)
    if max_parallel and job.concurrency_group is None:
        for duplicate in duplicates:
            duplicate.target.set("concurrency_group", f"matrix-{job.id}")
            duplicate.target.set("concurrency", max_parallel)


# ---------------------------------------------------------------------------
# Pipeline-level
# ---------------------------------------------------------------------------


def hoistable_env(graph: PipelineGraph) -> dict[str, str]:
    """Global variables every emitted command job sets to the same value."""
    jobs = [
        job
        for job in graph.emittable_jobs()
        if job.kind == JobKind.COMMAND and job.is_active
    ]
    if not jobs:
        return {}
    return {
        name: value
        for name, value in graph.global_env.items()
        if all(job.environment.get(name) == value for job in jobs)
    }


def _hoist_env(graph: PipelineGraph, ctx: RuleContext) -> None:
    if ctx.hoist_global_env:
        env = hoistable_env(graph)
        if env:
            graph.target.set("env", env)


def _schedule_instruction(graph: PipelineGraph) -> str:
    crons = ", ".join(f"'{s.cron}'" for s in graph.schedules)
    return f"Create a pipeline schedule in Buildkite for cron {crons}"


def _trigger_instruction(graph: PipelineGraph) -> str:
    return (
        "Recreate these triggers with Buildkite pipeline settings, trigger steps or the "
        "REST API"
    )


def buildkite_rules() -> list[TranslationRule]:
    """Return the Buildkite rule data in declaration order."""
    return [
        TranslationRule(
            name="docker-plugin",
            feature=FeatureKind.CONTAINER,
            confidence=Confidence.NATIVE,
            transform=_docker_plugin,
        ),
        TranslationRule(
            name="service-containers",
            feature=FeatureKind.SERVICE_CONTAINER,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_services_instruction,
        ),
        TranslationRule(
            name="cache-plugin",
            feature=FeatureKind.CACHING,
            confidence=Confidence.NATIVE,
            transform=_cache_plugin,
            applies=_exact_cache,
            priority=10,
        ),
        TranslationRule(
            name="cache-plugin-approximate",
            feature=FeatureKind.CACHING,
            confidence=Confidence.APPROXIMATE,
            transform=_cache_plugin,
            applies=lambda job, ctx: not _exact_cache(job, ctx),
            priority=20,
            instruction=_cache_instruction,
        ),
        TranslationRule(
            name="artifact-paths",
            feature=FeatureKind.ARTIFACT_PASSTHROUGH,
            confidence=Confidence.NATIVE,
            transform=_artifact_passthrough,
        ),
        TranslationRule(
            name="branches-attribute",
            feature=FeatureKind.CONDITIONAL_BRANCH_FILTER,
            confidence=Confidence.NATIVE,
            transform=_branches_attribute,
            applies=_simple_branches,
            priority=10,
        ),
        TranslationRule(
            name="if-expression",
            feature=FeatureKind.CONDITIONAL_BRANCH_FILTER,
            confidence=Confidence.NATIVE,
            transform=_if_expression,
            applies=_if_expression_applies,
            priority=20,
        ),
        TranslationRule(
            name="if-expression-known-events",
            feature=FeatureKind.CONDITIONAL_BRANCH_FILTER,
            confidence=Confidence.APPROXIMATE,
            transform=_if_expression,
            applies=lambda job, ctx: bool(unknown_events(job)),
            priority=30,
            instruction=_unknown_events_instruction,
        ),
        TranslationRule(
            name="conditional-expression",
            feature=FeatureKind.CONDITIONAL_EXPRESSION,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_expression_instruction,
        ),
        TranslationRule(
            name="if-changed",
            feature=FeatureKind.PATH_FILTER,
            confidence=Confidence.APPROXIMATE,
            transform=_if_changed,
            instruction="if_changed is evaluated when the pipeline is uploaded; upload "
            "it with 'buildkite-agent pipeline upload --apply-if-changed'",
        ),
        TranslationRule(
            name="block-step",
            feature=FeatureKind.MANUAL_APPROVAL,
            confidence=Confidence.NATIVE,
            transform=_block_step,
            applies=_is_gate,
        ),
        TranslationRule(
            name="circleci-context",
            feature=FeatureKind.SECRET_SCOPE,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_secret_instruction(
                "Expose the variables of CircleCI context {names} with Buildkite secrets "
                "or an agent environment hook"
            ),
            sources=frozenset({Vendor.CIRCLECI}),
        ),
        TranslationRule(
            name="jenkins-credentials",
            feature=FeatureKind.SECRET_SCOPE,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_secret_instruction(
                "Provide Jenkins credential {names} through Buildkite secrets or an agent "
                "environment hook"
            ),
            sources=frozenset({Vendor.JENKINS}),
        ),
        TranslationRule(
            name="protected-environment",
            feature=FeatureKind.SECRET_SCOPE,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_secret_instruction(
                "Recreate the protected environment {names} with Buildkite secrets and a "
                "dedicated agent queue"
            ),
            sources=frozenset({Vendor.GITHUB_ACTIONS, Vendor.GITLAB}),
        ),
        TranslationRule(
            name="bitbucket-deployment",
            feature=FeatureKind.SECRET_SCOPE,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_secret_instruction(
                "Move the variables of Bitbucket deployment {names} to Buildkite secrets"
            ),
            sources=frozenset({Vendor.BITBUCKET}),
        ),
        TranslationRule(
            name="agent-queue",
            feature=FeatureKind.EXECUTOR_SIZING,
            confidence=Confidence.APPROXIMATE,
            transform=_agent_queue,
            instruction=_queue_instruction,
        ),
        TranslationRule(
            name="timeout-in-minutes",
            feature=FeatureKind.TIMEOUT,
            confidence=Confidence.NATIVE,
            transform=_timeout,
        ),
        TranslationRule(
            name="automatic-retry",
            feature=FeatureKind.RETRY,
            confidence=Confidence.NATIVE,
            transform=_automatic_retry,
            applies=_exact_retry,
            priority=10,
        ),
        TranslationRule(
            name="exit-status-retry",
            feature=FeatureKind.RETRY,
            confidence=Confidence.APPROXIMATE,
            transform=_conditional_retry,
            applies=lambda job, ctx: not _exact_retry(job, ctx),
            priority=20,
            instruction=_retry_instruction,
        ),
        TranslationRule(
            name="soft-fail",
            feature=FeatureKind.ALLOW_FAILURE,
            confidence=Confidence.NATIVE,
            transform=_soft_fail,
        ),
        TranslationRule(
            name="parallelism",
            feature=FeatureKind.PARALLELISM,
            confidence=Confidence.NATIVE,
            transform=_parallelism,
        ),
        TranslationRule(
            name="concurrency-group",
            feature=FeatureKind.CONCURRENCY,
            confidence=Confidence.NATIVE,
            transform=_concurrency,
        ),
        TranslationRule(
            name="reusable-action",
            feature=FeatureKind.REUSABLE_ACTION,
            confidence=Confidence.MANUAL,
            transform=_action_placeholders,
            instruction=_actions_instruction,
        ),
        TranslationRule(
            name="post-commands",
            feature=FeatureKind.POST_STEP,
            confidence=Confidence.APPROXIMATE,
            transform=_post_commands,
            instruction="Post commands only run when the step succeeds; move them to a "
            "pre-exit agent hook if they must always run",
        ),
        TranslationRule(
            name="templated-job",
            feature=FeatureKind.TEMPLATED_JOB,
            confidence=Confidence.MANUAL,
            transform=_template_placeholders,
            instruction=_templates_instruction,
        ),
        TranslationRule(
            name="native-matrix",
            feature=FeatureKind.MATRIX,
            confidence=Confidence.NATIVE,
            transform=_native_matrix,
            applies=_native_matrix_applies,
            priority=10,
        ),
        TranslationRule(
            name="matrix-duplication",
            feature=FeatureKind.MATRIX,
            confidence=Confidence.NATIVE,
            transform=_duplicate_matrix,
            applies=lambda job, ctx: not _native_matrix_applies(job, ctx),
            priority=20,
        ),
        TranslationRule(
            name="pipeline-schedule",
            feature=FeatureKind.SCHEDULED_TRIGGER,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_schedule_instruction,
        ),
        TranslationRule(
            name="top-level-env",
            feature=FeatureKind.GLOBAL_ENVIRONMENT,
            confidence=Confidence.NATIVE,
            transform=_hoist_env,
        ),
        TranslationRule(
            name="pipeline-trigger",
            feature=FeatureKind.PIPELINE_TRIGGER,
            confidence=Confidence.MANUAL,
            transform=_no_op,
            instruction=_trigger_instruction,
        ),
    ]
