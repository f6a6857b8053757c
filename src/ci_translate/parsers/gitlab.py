"""GitLab CI parser."""

from __future__ import annotations

import copy
import math
import re
from typing import Any

import yaml

from ci_translate.diagnostics.exceptions import DocumentError, ParseError
from ci_translate.ir.features import (
    Adjustment,
    ApprovalGate,
    ArtifactSpec,
    CacheKey,
    CacheKeyComponent,
    CacheKeyKind,
    CacheSpec,
    Command,
    ContainerSpec,
    MatrixSpec,
    PipelineConstruct,
    Predicate,
    PredicateKind,
    RetryPolicy,
    SecretScope,
    ServiceContainer,
    TemplateRef,
    matrix_ref,
)
from ci_translate.ir.graph import JobNode
from ci_translate.ir.ops import ancestors
from ci_translate.models.common import to_scalar_string
from ci_translate.models.gitlab import (
    DEFAULT_STAGES,
    RESERVED_KEYS,
    GitLabCache,
    GitLabJob,
    GitLabRefFilter,
    GitLabRule,
)
from ci_translate.parsers.base import DialectParser, merge_env, slugify, step_label
from ci_translate.vendors import Vendor

# Keys of `default:` inherited by every job
_DEFAULT_KEYS = (
    "image",
    "services",
    "before_script",
    "after_script",
    "cache",
    "retry",
    "timeout",
    "tags",
    "artifacts",
)
_MAX_EXTENDS_DEPTH = 11

_VAR_COMPARE = re.compile(
    r"""^\$\{?(\w+)\}?\s*(==|!=|=~|!~)\s*(?:"([^"]*)"|'([^']*)'|(/.*/))$"""
)
_VAR_DEFINED = re.compile(r"^\$\{?(\w+)\}?$")
_VAR_REF = re.compile(r"\$\{?(\w+)\}?")
_DURATION = re.compile(
    r"(\d+(?:\.\d+)?)\s*(days?|d|hours?|hrs?|h|minutes?|mins?|m|seconds?|secs?|s)\b"
)

_BRANCH_VARS = frozenset({"CI_COMMIT_BRANCH", "CI_COMMIT_REF_NAME", "CI_COMMIT_REF_SLUG"})
_PIPELINE_SOURCES = {
    "merge_request_event": "pull_request",
    "push": "push",
    "schedule": "schedule",
    "web": "manual",
    "api": "api",
    "trigger": "trigger",
    "pipeline": "pipeline",
}
_REF_KEYWORDS = {
    "merge_requests": "pull_request",
    "schedules": "schedule",
    "web": "manual",
    "api": "api",
    "triggers": "trigger",
    "pipelines": "pipeline",
    "pushes": "push",
    "external": "external",
    "chat": "chat",
}
_RETRY_CONDITIONS = {
    "always": "any",
    "unknown_failure": "any",
    "script_failure": "script-failure",
    "runner_system_failure": "infrastructure-failure",
    "stuck_or_timeout_failure": "timeout",
    "job_execution_timeout": "timeout",
    "api_failure": "infrastructure-failure",
    "scheduler_failure": "infrastructure-failure",
}


class _Reference(list):
    """Unresolved ``!reference [job, key]`` tag."""


class GitLabLoader(yaml.SafeLoader):
    """Safe loader that understands GitLab's ``!reference`` tag."""


def _construct_reference(loader: GitLabLoader, node: yaml.SequenceNode) -> _Reference:
    return _Reference(loader.construct_sequence(node, deep=True))


GitLabLoader.add_constructor("!reference", _construct_reference)


def parse_duration_minutes(text: str) -> int:
    """Parse a GitLab duration into whole minutes, rounding up.

    Examples
    --------
        >>> parse_duration_minutes("1h 30m")
        90
        >>> parse_duration_minutes("45 seconds")
        1

    Raises
    ------
        ValueError: If the text contains no duration.

    """
    total_seconds = 0.0
    found = False
    for amount, unit in _DURATION.findall(text.lower()):
        found = True
        value = float(amount)
        if unit.startswith("d"):
            total_seconds += value * 86400
        elif unit.startswith("h"):
            total_seconds += value * 3600
        elif unit.startswith("m"):
            total_seconds += value * 60
        else:
            total_seconds += value
    if not found:
        raise ValueError(f"invalid duration '{text}'")
    return max(1, math.ceil(total_seconds / 60))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge mappings the way ``extends`` does: nested mappings merge, the rest is replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class GitLabCIParser(DialectParser):
    """Parse ``.gitlab-ci.yml`` files.

    Hidden jobs and ``extends`` are resolved before validation; ``default``
    and global ``variables`` are pushed into every job. Jobs without
    ``needs`` wait for every job of the earlier stages; jobs with ``needs``
    depend on exactly what they list.
    """

    vendor = Vendor.GITLAB
    yaml_loader = GitLabLoader

    def _parse(self, raw_text: str) -> None:
        data = self._load_yaml(raw_text)
        self.document = data

        stages = data.get("stages", list(DEFAULT_STAGES))
        if not isinstance(stages, list) or not all(isinstance(s, str) for s in stages):
            raise DocumentError("'stages' must be a list of names", feature="document")
        self.stages = [".pre", *[s for s in stages if s not in (".pre", ".post")], ".post"]

        default = data.get("default") or {}
        if not isinstance(default, dict):
            raise DocumentError("'default' must be a mapping", feature="document")
        # Deprecated top-level globals act as defaults
        self.defaults = {k: data[k] for k in _DEFAULT_KEYS if k in data and k in RESERVED_KEYS}
        self.defaults.update(default)
        self.graph.global_env = _normalize_variables(data.get("variables"))

        self._record_pipeline_constructs(data)

        job_names = [
            str(name)
            for name in data
            if name not in RESERVED_KEYS and not str(name).startswith(".")
        ]
        if not job_names:
            raise DocumentError("Configuration defines no jobs", feature="document")

        self.ids: dict[str, str] = {}
        for position, name in enumerate(job_names, start=1):
            base = slugify(name, fallback=f"job-{position}")
            job_id, n = base, 2
            while job_id in self.ids.values():
                job_id, n = f"{base}-{n}", n + 1
            self.ids[name] = job_id

        self._stage_of: dict[str, str] = {}
        self._uses_needs: set[str] = set()
        self._artifact_sources: dict[str, list[str] | None] = {}
        self._always: set[str] = set()

        for name in job_names:
            self._add_gitlab_job(name, data[name])

        self._link_stages()
        self._resolve_artifacts()

    def _record_pipeline_constructs(self, data: dict[str, Any]) -> None:
        for key, summary in (
            ("include", "included configuration is not translated"),
            ("workflow", "workflow rules decide whether a pipeline runs"),
            ("spec", "pipeline inputs"),
        ):
            if key in data:
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary=summary, detail=_describe(data[key]))
                )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _add_gitlab_job(self, name: str, raw: Any) -> None:
        job_id = self.ids[name]

        if isinstance(raw, dict):
            self._stage_of[job_id] = str(raw.get("stage", "test"))
            if raw.get("when") == "never" and "rules" not in raw:
                self._warn_ignored(
                    f"Job '{name}' never runs and is skipped", job_id=job_id, feature="job"
                )
                return

        fallback = []
        if isinstance(raw, dict) and isinstance(raw.get("needs"), list):
            fallback = [
                self.ids[n] if isinstance(n, str) and n in self.ids else slugify(str(n))
                for n in raw["needs"]
                if isinstance(n, str)
            ]
            self._uses_needs.add(job_id)

        self._lower_job(
            job_id,
            name,
            lambda: self._lower_gitlab_job(job_id, name, raw),
            source_path=name,
            fallback_dependencies=fallback,
        )

    def _resolve_job(self, name: str, raw: Any, job_id: str) -> dict[str, Any]:
        """Apply ``extends``, ``!reference`` and ``default`` to a raw job."""
        if not isinstance(raw, dict):
            raise ParseError(
                f"{name}: expected a mapping, got {type(raw).__name__}",
                job_id=job_id,
                feature="job",
            )

        resolved = self._apply_extends(name, raw, job_id, depth=0)
        resolved = self._resolve_references(resolved, job_id)

        inherit = resolved.get("inherit") or {}
        inherit_default = inherit.get("default", True)
        for key, value in self.defaults.items():
            if key in resolved:
                continue
            if inherit_default is True or (
                isinstance(inherit_default, list) and key in inherit_default
            ):
                resolved[key] = self._resolve_references(copy.deepcopy(value), job_id)

        if "variables" in resolved:
            resolved["variables"] = _normalize_variables(resolved["variables"])
        return resolved

    def _apply_extends(
        self, name: str, raw: dict[str, Any], job_id: str, depth: int
    ) -> dict[str, Any]:
        parents = raw.get("extends")
        if not parents:
            return dict(raw)
        if depth >= _MAX_EXTENDS_DEPTH:
            raise ParseError(
                f"'{name}' extends too many levels (circular extends?)",
                job_id=job_id,
                feature="templated-job",
            )

        merged: dict[str, Any] = {}
        for parent in [parents] if isinstance(parents, str) else parents:
            template = self.document.get(parent)
            if not isinstance(template, dict):
                raise ParseError(
                    f"'{name}' extends unknown job '{parent}'",
                    job_id=job_id,
                    feature="templated-job",
                )
            merged = deep_merge(merged, self._apply_extends(parent, template, job_id, depth + 1))

        own = {k: v for k, v in raw.items() if k != "extends"}
        return deep_merge(merged, own)

    def _resolve_references(self, value: Any, job_id: str) -> Any:
        if isinstance(value, _Reference):
            target: Any = self.document
            for part in value:
                if not isinstance(target, dict) or part not in target:
                    raise ParseError(
                        f"!reference {list(value)} does not resolve",
                        job_id=job_id,
                        feature="templated-job",
                    )
                target = target[part]
            return self._resolve_references(copy.deepcopy(target), job_id)
        if isinstance(value, dict):
            return {k: self._resolve_references(v, job_id) for k, v in value.items()}
        if isinstance(value, list):
            items: list[Any] = []
            for item in value:
                resolved = self._resolve_references(item, job_id)
                # A referenced script list is spliced into the enclosing list
                if isinstance(item, _Reference) and isinstance(resolved, list):
                    items.extend(resolved)
                else:
                    items.append(resolved)
            return items
        return value

    def _lower_gitlab_job(self, job_id: str, name: str, raw: Any) -> JobNode:
        resolved = self._resolve_job(name, raw, job_id)
        self._stage_of[job_id] = str(resolved.get("stage", "test"))
        spec = self._validate_unit(GitLabJob, resolved, job_id, name)

        if spec.stage not in self.stages:
            raise ParseError(
                f"stage '{spec.stage}' is not declared in 'stages'",
                job_id=job_id,
                feature="job",
            )

        inherit = resolved.get("inherit") or {}
        global_env = self.graph.global_env if inherit.get("variables", True) is not False else {}
        job = JobNode(
            id=job_id,
            label=name,
            environment=merge_env(global_env, spec.variables),
        )

        if spec.needs is not None:
            self._uses_needs.add(job_id)
            for need in spec.needs:
                if need.job not in self.ids:
                    if need.optional:
                        continue
                    job.add_dependency(slugify(need.job))
                    continue
                job.add_dependency(self.ids[need.job])
            self._artifact_sources[job_id] = [
                self.ids[n.job] for n in spec.needs if n.artifacts and n.job in self.ids
            ]
        if spec.dependencies is not None:
            self._artifact_sources[job_id] = [
                self.ids[d] for d in spec.dependencies if d in self.ids
            ]

        index = 0
        for line in [*spec.before_script, *spec.script]:
            index += 1
            job.commands.append(Command(label=step_label(None, index), run=line.rstrip("\n")))
        for line in spec.after_script:
            index += 1
            job.post_commands.append(Command(label=step_label(None, index), run=line.rstrip("\n")))

        if spec.image is not None:
            job.container = ContainerSpec(image=spec.image.name)
        for service in spec.services:
            job.services.append(
                ServiceContainer(
                    name=service.alias or service.name.split("/")[-1].split(":")[0],
                    image=service.name,
                    environment=tuple(service.variables.items()),
                )
            )

        self._lower_rules(job, spec.rules)
        self._lower_ref_filter(job, spec.only, negate=False)
        self._lower_ref_filter(job, spec.except_, negate=True)
        self._lower_when(job, spec.when)

        if spec.allow_failure is True or isinstance(spec.allow_failure, dict):
            job.soft_fail = True

        if isinstance(spec.parallel, int):
            job.parallelism = spec.parallel
        elif spec.parallel is not None:
            job.matrix = _lower_matrix(job_id, spec.parallel.matrix)
            for dimension in job.matrix.dimension_names:
                job.environment.setdefault(dimension, matrix_ref(dimension))
            for adjustment in job.matrix.additions:
                for dimension, _ in adjustment.values:
                    job.environment.setdefault(dimension, matrix_ref(dimension))

        caches = spec.cache if isinstance(spec.cache, list) else [spec.cache] if spec.cache else []
        if caches:
            job.cache = _lower_cache(name, caches[0])
            if len(caches) > 1:
                self._warn_ignored(
                    f"Only the first of {len(caches)} caches is translated",
                    job_id=job_id,
                    feature="caching",
                )

        if spec.artifacts is not None and spec.artifacts.paths:
            job.artifacts = ArtifactSpec(produced=tuple(spec.artifacts.paths))

        if isinstance(spec.retry, int):
            if spec.retry > 0:
                job.retry_policy = RetryPolicy(max_attempts=spec.retry + 1)
        elif spec.retry is not None and spec.retry.max > 0:
            conditions = tuple(
                dict.fromkeys(_RETRY_CONDITIONS.get(w, "any") for w in spec.retry.when)
            )
            job.retry_policy = RetryPolicy(
                max_attempts=spec.retry.max + 1, conditions=conditions or ("any",)
            )

        if spec.timeout:
            try:
                job.timeout_minutes = parse_duration_minutes(spec.timeout)
            except ValueError as e:
                raise ParseError(str(e), job_id=job_id, feature="timeout") from e

        if spec.tags:
            job.resource_hint = ",".join(spec.tags)

        environment = spec.environment
        if isinstance(environment, dict):
            environment = environment.get("name")
        if environment:
            job.secret_scopes.append(SecretScope(name=str(environment), kind="environment"))

        if spec.trigger is not None:
            target = spec.trigger if isinstance(spec.trigger, str) else _describe(spec.trigger)
            job.templates.append(
                TemplateRef(name="trigger", reason=f"downstream pipeline: {target}")
            )

        if spec.resource_group:
            job.concurrency_group = spec.resource_group

        return job

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _lower_rules(self, job: JobNode, rules: list[GitLabRule]) -> None:
        """Lower ``rules`` into predicates.

        Rules with a recognized condition become include (or, with
        ``when: never``, exclude) patterns; the remaining conditions are
        kept as one raw expression.
        """
        if not rules:
            return

        include: dict[PredicateKind, list[str]] = {}
        exclude: dict[PredicateKind, list[str]] = {}
        changes: list[str] = []
        leftover: list[str] = []

        for rule in rules:
            if isinstance(rule.changes, list):
                changes.extend(rule.changes)
            elif isinstance(rule.changes, dict):
                changes.extend(_as_list(rule.changes.get("paths")))
            if rule.when == "manual":
                job.approval = ApprovalGate(prompt=f"Run {job.label}?")
            if rule.allow_failure:
                job.soft_fail = True
            if rule.if_ is None:
                continue

            parsed = _parse_condition(rule.if_)
            if parsed is None:
                suffix = f" (when: {rule.when})" if rule.when else ""
                leftover.append(f"{rule.if_}{suffix}")
                continue
            kind, pattern, negated = parsed
            if rule.when == "never":
                negated = not negated
            (exclude if negated else include).setdefault(kind, []).append(pattern)

        for kind in (PredicateKind.EVENT, PredicateKind.BRANCH, PredicateKind.TAG):
            predicate = self._filter_predicate(
                kind, include.get(kind, []), exclude.get(kind, []), job.id
            )
            if predicate is not None:
                job.conditionals.append(predicate)

        if changes:
            job.conditionals.append(Predicate(kind=PredicateKind.PATH, include=tuple(changes)))
        if leftover:
            job.conditionals.append(
                Predicate(kind=PredicateKind.EXPRESSION, expression=" || ".join(leftover))
            )

    def _lower_ref_filter(
        self, job: JobNode, refs: GitLabRefFilter | None, negate: bool
    ) -> None:
        if refs is None:
            return

        patterns: dict[PredicateKind, list[str]] = {}
        for ref in refs.refs:
            if ref == "branches":
                patterns.setdefault(PredicateKind.BRANCH, []).append("*")
            elif ref == "tags":
                patterns.setdefault(PredicateKind.TAG, []).append("*")
            elif ref in _REF_KEYWORDS:
                patterns.setdefault(PredicateKind.EVENT, []).append(_REF_KEYWORDS[ref])
            else:
                patterns.setdefault(PredicateKind.BRANCH, []).append(ref)
        if refs.changes:
            patterns[PredicateKind.PATH] = list(refs.changes)

        for kind, values in patterns.items():
            predicate = self._filter_predicate(
                kind, [] if negate else values, values if negate else [], job.id
            )
            if predicate is not None:
                job.conditionals.append(predicate)

        if refs.variables:
            expression = " || ".join(refs.variables)
            job.conditionals.append(
                Predicate(
                    kind=PredicateKind.EXPRESSION,
                    expression=f"!({expression})" if negate else expression,
                )
            )

    def _lower_when(self, job: JobNode, when: str | None) -> None:
        if when is None or when == "on_success":
            return
        if when == "manual":
            job.approval = ApprovalGate(prompt=f"Run {job.label}?")
        elif when == "always":
            for dep in list(job.depends_on):
                job.add_dependency(dep, allow_failure=True)
            self._always.add(job.id)
        elif when == "on_failure":
            job.conditionals.append(
                Predicate(kind=PredicateKind.EXPRESSION, expression="an earlier job failed")
            )
            self._always.add(job.id)
        elif when == "delayed":
            job.templates.append(TemplateRef(name="when: delayed", reason="delayed start"))

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _link_stages(self) -> None:
        """Make jobs without ``needs`` wait for every job of earlier stages."""
        by_stage: dict[str, list[str]] = {stage: [] for stage in self.stages}
        for job_id in self.graph.job_ids:
            stage = self._stage_of.get(job_id, "test")
            if stage in by_stage:
                by_stage[stage].append(job_id)

        frontier: list[str] = []
        for stage in self.stages:
            members = by_stage[stage]
            if not members:
                continue
            for job_id in members:
                if job_id in self._uses_needs:
                    continue
                job = self.graph.jobs[job_id]
                for dep in frontier:
                    job.add_dependency(dep, allow_failure=job_id in self._always)

            covered = {a for job_id in members for a in ancestors(self.graph, job_id)}
            frontier = [j for j in frontier if j not in covered and j not in members] + members

    def _resolve_artifacts(self) -> None:
        """Consume artifacts from ``needs``/``dependencies`` or every earlier stage."""
        producing = {job.id for job in self.graph.jobs.values() if job.artifacts.produced}
        for job in self.graph.active_jobs():
            sources = self._artifact_sources.get(job.id)
            if sources is None:
                sources = ancestors(self.graph, job.id)
            consumed = tuple(s for s in sources if s in producing and s != job.id)
            if consumed:
                job.artifacts = ArtifactSpec(produced=job.artifacts.produced, consumed=consumed)


def _parse_condition(condition: str) -> tuple[PredicateKind, str, bool] | None:
    """Recognize a single-comparison rule condition.

    Returns
    -------
        (kind, pattern, negated) or None for anything more complex.

    """
    text = condition.strip()
    if "&&" in text or "||" in text:
        return None

    defined = _VAR_DEFINED.match(text)
    if defined:
        var = defined.group(1)
        if var == "CI_COMMIT_TAG":
            return PredicateKind.TAG, "*", False
        if var in ("CI_MERGE_REQUEST_ID", "CI_MERGE_REQUEST_IID"):
            return PredicateKind.EVENT, "pull_request", False
        if var == "CI_COMMIT_BRANCH":
            return PredicateKind.BRANCH, "*", False
        return None

    match = _VAR_COMPARE.match(text)
    if not match:
        return None
    var, op, double, single, regex = match.groups()
    value = regex if regex is not None else double if double is not None else single
    negated = op.startswith("!")

    if var in _BRANCH_VARS:
        return PredicateKind.BRANCH, value, negated
    if var == "CI_COMMIT_TAG":
        return PredicateKind.TAG, value, negated
    if var == "CI_PIPELINE_SOURCE" and op in ("==", "!="):
        return PredicateKind.EVENT, _PIPELINE_SOURCES.get(value, value), negated
    return None


def _lower_matrix(job_id: str, entries: list[dict[str, Any]]) -> MatrixSpec:
    """Lower ``parallel:matrix``.

    One entry becomes a rectangular matrix. Several entries are a union
    of products, kept as explicitly added combinations.
    """
    products: list[list[tuple[str, tuple[str, ...]]]] = []
    for entry in entries:
        dims: list[tuple[str, tuple[str, ...]]] = []
        for name, values in entry.items():
            listed = values if isinstance(values, list) else [values]
            if not listed or any(isinstance(v, dict | list) for v in listed):
                raise ParseError(
                    f"parallel:matrix variable '{name}' must be a value or a list of values",
                    job_id=job_id,
                    feature="matrix",
                )
            dims.append((str(name), tuple(to_scalar_string(v) for v in listed)))
        products.append(dims)

    if len(products) == 1:
        return MatrixSpec(dimensions=tuple(products[0]))

    additions: list[Adjustment] = []
    for dims in products:
        for combination in MatrixSpec(dimensions=tuple(dims)).combinations():
            additions.append(Adjustment(values=tuple(combination.items()), skip=False))
    return MatrixSpec(dimensions=(), adjustments=tuple(additions))


def _lower_cache(job_name: str, cache: GitLabCache) -> CacheSpec:
    fallbacks = tuple(_parse_key_string(k, job_name) for k in cache.fallback_keys)
    if cache.key is None:
        key = CacheKey(components=(CacheKeyComponent(CacheKeyKind.LITERAL, "default"),))
    elif isinstance(cache.key, str):
        key = _parse_key_string(cache.key, job_name)
    else:
        components: list[CacheKeyComponent] = []
        if cache.key.prefix:
            components.extend(_parse_key_string(cache.key.prefix, job_name).components)
            components.append(CacheKeyComponent(CacheKeyKind.LITERAL, "-"))
        components.append(CacheKeyComponent(CacheKeyKind.FILE_HASH, ",".join(cache.key.files)))
        key = CacheKey(components=tuple(components))
    return CacheSpec(key=key, paths=tuple(cache.paths), fallbacks=fallbacks)


def _parse_key_string(text: str, job_name: str) -> CacheKey:
    components: list[CacheKeyComponent] = []
    position = 0
    for match in _VAR_REF.finditer(text):
        if match.start() > position:
            components.append(
                CacheKeyComponent(CacheKeyKind.LITERAL, text[position : match.start()])
            )
        var = match.group(1)
        if var in _BRANCH_VARS:
            components.append(CacheKeyComponent(CacheKeyKind.BRANCH, "branch"))
        elif var == "CI_JOB_NAME":
            components.append(CacheKeyComponent(CacheKeyKind.LITERAL, job_name))
        else:
            components.append(CacheKeyComponent(CacheKeyKind.ENV, var))
        position = match.end()
    if position < len(text):
        components.append(CacheKeyComponent(CacheKeyKind.LITERAL, text[position:]))
    return CacheKey(components=tuple(components))


def _normalize_variables(variables: Any) -> dict[str, str]:
    """Flatten ``{value, description}`` variable definitions to plain values."""
    if not isinstance(variables, dict):
        return {}
    result: dict[str, str] = {}
    for name, value in variables.items():
        if isinstance(value, dict):
            value = value.get("value", "")
        result[str(name)] = to_scalar_string(value)
    return result


def _describe(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ", ".join(_describe(v) for v in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {_describe(v)}" for k, v in value.items())
    return to_scalar_string(value)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]
