"""GitHub Actions workflow parser."""

from __future__ import annotations

import re
from typing import Any

from ci_translate.diagnostics.exceptions import DocumentError, ParseError
from ci_translate.ir.features import (
    Adjustment,
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
    ReusableAction,
    Schedule,
    SecretScope,
    ServiceContainer,
    TemplateRef,
    matrix_ref,
)
from ci_translate.ir.graph import JobNode
from ci_translate.models.common import to_scalar_string
from ci_translate.models.github import GitHubDefaults, GitHubJob, GitHubStep, GitHubWorkflow
from ci_translate.parsers.base import DialectParser, merge_env, name_list, step_label
from ci_translate.vendors import Vendor

_EXPR = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")
_ENV_EXPR = re.compile(r"\$\{\{\s*(?:secrets|env|vars)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_HASH_FILES = re.compile(r"hashFiles\((.*)\)")

_REF_CMP = re.compile(r"^github\.ref\s*(==|!=)\s*'refs/(heads|tags)/([^']+)'$")
_REF_NAME_CMP = re.compile(r"^github\.ref_name\s*(==|!=)\s*'([^']+)'$")
_REF_PREFIX = re.compile(r"^startsWith\(\s*github\.ref\s*,\s*'refs/(heads|tags)/([^']*)'\s*\)$")
_EVENT_CMP = re.compile(r"^github\.event_name\s*(==|!=)\s*'([^']+)'$")

# Events that start a workflow without a pushed ref
_PIPELINE_EVENTS = frozenset(
    {"workflow_dispatch", "repository_dispatch", "workflow_call", "workflow_run"}
)
_CHECKOUT = "actions/checkout"
_CACHE = "actions/cache"
_UPLOAD = "actions/upload-artifact"
_DOWNLOAD = "actions/download-artifact"


def normalize_expressions(text: str) -> str:
    """Rewrite matrix and variable expressions to neutral references.

    Examples
    --------
        >>> normalize_expressions("node ${{ matrix.node }} ${{ secrets.TOKEN }}")
        'node {{matrix.node}} ${TOKEN}'

    """
    text = _MATRIX_EXPR.sub(lambda m: matrix_ref(m.group(1)), text)
    return _ENV_EXPR.sub(lambda m: "${" + m.group(1) + "}", text)


def _strip_expression(text: str) -> str:
    match = _EXPR.fullmatch(text.strip())
    return match.group(1) if match else text.strip()


def _action_name(uses: str) -> str:
    """Strip the version pin from an action reference."""
    return uses.split("@", 1)[0]


def _lines(value: Any) -> list[str]:
    """Split a multi-line ``with`` input into entries."""
    if value is None:
        return []
    if isinstance(value, list):
        return [to_scalar_string(v) for v in value]
    return [line.strip() for line in str(value).splitlines() if line.strip()]


def _split_negated(patterns: list[str]) -> tuple[list[str], list[str]]:
    """Split a GitHub filter list into included and ``!``-negated patterns."""
    include = [p for p in patterns if not p.startswith("!")]
    exclude = [p[1:] for p in patterns if p.startswith("!")]
    return include, exclude


def parse_cache_key(text: str) -> CacheKey:
    """Parse an ``actions/cache`` key into neutral components.

    Examples
    --------
        >>> parse_cache_key("deps-${{ hashFiles('package-lock.json') }}").render()
        'deps-{file_hash:package-lock.json}'

    """
    components: list[CacheKeyComponent] = []
    position = 0
    for match in _EXPR.finditer(text):
        if match.start() > position:
            components.append(
                CacheKeyComponent(CacheKeyKind.LITERAL, text[position : match.start()])
            )
        components.append(_cache_key_component(match.group(1)))
        position = match.end()

    if position < len(text):
        components.append(CacheKeyComponent(CacheKeyKind.LITERAL, text[position:]))

    return CacheKey(components=tuple(components))


def _cache_key_component(expression: str) -> CacheKeyComponent:
    hash_match = _HASH_FILES.fullmatch(expression)
    if hash_match:
        files = [f.strip().strip("'\"") for f in hash_match.group(1).split(",")]
        return CacheKeyComponent(CacheKeyKind.FILE_HASH, ",".join(f for f in files if f))
    if expression in ("runner.os", "runner.arch"):
        return CacheKeyComponent(CacheKeyKind.RUNTIME, expression.split(".", 1)[1])
    if expression in ("github.ref", "github.ref_name", "github.head_ref"):
        return CacheKeyComponent(CacheKeyKind.BRANCH, "branch")
    if expression.startswith(("env.", "vars.", "secrets.")):
        return CacheKeyComponent(CacheKeyKind.ENV, expression.split(".", 1)[1])
    if expression.startswith("matrix."):
        return CacheKeyComponent(CacheKeyKind.LITERAL, matrix_ref(expression.split(".", 1)[1]))
    return CacheKeyComponent(CacheKeyKind.RUNTIME, expression)


class GitHubActionsParser(DialectParser):
    """Parse GitHub Actions workflows.

    Job keys are kept as job ids. Workflow triggers, environment and
    defaults are pushed down into every job; artifacts downloaded by name
    are resolved to the producing job once all jobs are lowered.
    """

    vendor = Vendor.GITHUB_ACTIONS

    def _parse(self, raw_text: str) -> None:
        data = self._load_yaml(raw_text)
        workflow = self._validate_document(GitHubWorkflow, data)

        self.graph.name = workflow.name
        self.graph.global_env = {k: normalize_expressions(v) for k, v in workflow.env.items()}
        trigger_predicates = self._parse_triggers(workflow.on)

        if workflow.concurrency is not None:
            self.graph.pipeline_constructs.append(
                PipelineConstruct(
                    summary="workflow concurrency group",
                    detail=_concurrency_group(workflow.concurrency),
                )
            )

        self._artifact_producers: dict[str, str] = {}
        self._artifact_downloads: dict[str, list[str]] = {}

        for key, raw in workflow.jobs.items():
            job_id = str(key)
            label = job_id
            needs: list[str] = []
            if isinstance(raw, dict):
                label = to_scalar_string(raw.get("name")) or job_id
                try:
                    needs = name_list(raw.get("needs"), f"jobs.{job_id}.needs", job_id)
                except ParseError as e:
                    self._lower_invalid(job_id, label, e, source_path=f"jobs.{job_id}")
                    continue

            self._lower_job(
                job_id,
                label,
                lambda job_id=job_id, raw=raw: self._lower_github_job(
                    job_id, raw, workflow, trigger_predicates
                ),
                source_path=f"jobs.{job_id}",
                fallback_dependencies=needs,
            )

        self._resolve_downloads()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _parse_triggers(self, on: Any) -> list[Predicate]:
        """Lower ``on`` into pipeline metadata and job predicates."""
        if on is None:
            return []
        if isinstance(on, str):
            events: dict[str, Any] = {on: None}
        elif isinstance(on, list):
            events = {str(e): None for e in on}
        elif isinstance(on, dict):
            events = {str(k): v for k, v in on.items()}
        else:
            raise DocumentError(
                f"'on' must be an event name, list or mapping, got {type(on).__name__}",
                feature="document",
            )

        predicates: list[Predicate] = []
        build_events: list[str] = []
        for event, config in events.items():
            if event == "schedule":
                entries = config if isinstance(config, list) else [config]
                for entry in entries:
                    if isinstance(entry, dict) and "cron" in entry:
                        self.graph.schedules.append(Schedule(cron=str(entry["cron"])))
                    else:
                        self._warn_ignored(
                            f"on.schedule entry {entry!r} is not a mapping with 'cron'",
                            feature="scheduled-trigger",
                        )
                continue

            if event in _PIPELINE_EVENTS:
                inputs = config.get("inputs") if isinstance(config, dict) else None
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(
                        summary=f"{event} trigger",
                        detail=f"inputs: {', '.join(inputs)}" if inputs else None,
                    )
                )
                continue

            build_events.append(event)
            if not isinstance(config, dict) or not config:
                continue
            if event == "push":
                predicates.extend(self._push_filters(config))
            else:
                described = "; ".join(
                    f"{name}: {', '.join(_lines(value))}" for name, value in config.items()
                )
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary=f"{event} filters", detail=described)
                )

        if build_events and build_events != ["push"]:
            predicates.insert(0, Predicate(kind=PredicateKind.EVENT, include=tuple(build_events)))

        return predicates

    def _push_filters(self, config: dict[str, Any]) -> list[Predicate]:
        predicates: list[Predicate] = []
        for kind, name in (
            (PredicateKind.BRANCH, "branches"),
            (PredicateKind.TAG, "tags"),
            (PredicateKind.PATH, "paths"),
        ):
            include, exclude = _split_negated(_lines(config.get(name)))
            exclude.extend(_lines(config.get(f"{name}-ignore")))
            predicate = self._filter_predicate(kind, include, exclude)
            if predicate is not None:
                predicates.append(predicate)
        return predicates

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _lower_github_job(
        self,
        job_id: str,
        raw: Any,
        workflow: GitHubWorkflow,
        trigger_predicates: list[Predicate],
    ) -> JobNode:
        spec = self._validate_unit(GitHubJob, raw, job_id, f"jobs.{job_id}")

        job = JobNode(
            id=job_id,
            label=normalize_expressions(spec.name or job_id),
            environment=merge_env(
                self.graph.global_env,
                {k: normalize_expressions(v) for k, v in spec.env.items()},
            ),
            conditionals=list(trigger_predicates),
            timeout_minutes=spec.timeout_minutes,
        )

        for need in spec.needs:
            job.add_dependency(need)

        if spec.if_:
            self._lower_condition(job, spec.if_)

        job.resource_hint = _runs_on(spec.runs_on)
        shell, workdir = _run_defaults(workflow.defaults, spec.defaults)

        if spec.container is not None:
            job.container = ContainerSpec(
                image=normalize_expressions(spec.container.image),
                workdir=workdir,
                shell=shell,
                user=_container_user(spec.container.options),
            )
            job.environment.update(spec.container.env)

        for name, service in spec.services.items():
            job.services.append(
                ServiceContainer(
                    name=name,
                    image=normalize_expressions(service.image),
                    environment=tuple(service.env.items()),
                    ports=tuple(service.ports),
                )
            )

        if spec.strategy is not None and spec.strategy.matrix is not None:
            self._lower_matrix(job, spec.strategy.matrix, spec.strategy.max_parallel)

        if spec.continue_on_error is True:
            job.soft_fail = True
        elif isinstance(spec.continue_on_error, str):
            job.templates.append(
                TemplateRef(
                    name="continue-on-error",
                    reason=f"failure tolerance decided at run time: {spec.continue_on_error}",
                )
            )

        if isinstance(spec.environment, str):
            job.secret_scopes.append(SecretScope(name=spec.environment, kind="environment"))
        elif isinstance(spec.environment, dict) and spec.environment.get("name"):
            job.secret_scopes.append(
                SecretScope(name=str(spec.environment["name"]), kind="environment")
            )

        if spec.concurrency is not None:
            job.concurrency_group = normalize_expressions(_concurrency_group(spec.concurrency))

        if spec.uses:
            job.templates.append(
                TemplateRef(name=_action_name(spec.uses), reason="reusable workflow call")
            )

        for index, step in enumerate(spec.steps, start=1):
            self._lower_step(job, step, index, shell, workdir)

        if shell and shell not in ("bash", "sh") and job.container is None:
            self._warn_ignored(
                f"Default shell '{shell}' is not carried over; commands run in the agent's shell",
                job_id=job_id,
                feature="shell",
            )

        return job

    def _lower_condition(self, job: JobNode, condition: str) -> None:
        """Recognize simple ``if`` expressions, keep the rest raw.

        ``always()`` makes every dependency edge tolerate failure.
        """
        text = _strip_expression(condition)
        terms = [text] if "||" in text else [t.strip() for t in text.split("&&")]

        leftover: list[str] = []
        for term in terms:
            if term == "success()":
                continue
            if term in ("always()", "!cancelled()"):
                for dep in list(job.depends_on):
                    job.add_dependency(dep, allow_failure=True)
                continue
            predicate = _term_predicate(term)
            if predicate is None:
                leftover.append(term)
            else:
                job.conditionals.append(predicate)

        if leftover:
            job.conditionals.append(
                Predicate(
                    kind=PredicateKind.EXPRESSION,
                    expression=normalize_expressions(" && ".join(leftover)),
                )
            )

    def _lower_matrix(self, job: JobNode, matrix: dict[str, Any] | str, max_parallel: Any) -> None:
        if isinstance(matrix, str):
            job.templates.append(
                TemplateRef(name="strategy.matrix", reason=f"matrix computed at run time: {matrix}")
            )
            return

        dimensions: list[tuple[str, tuple[str, ...]]] = []
        for name, values in matrix.items():
            if name in ("include", "exclude"):
                continue
            if not isinstance(values, list) or not values:
                raise ParseError(
                    f"matrix dimension '{name}' must be a non-empty list",
                    job_id=job.id,
                    feature="matrix",
                )
            dimensions.append((str(name), tuple(_matrix_value(job.id, name, v) for v in values)))

        names = {name for name, _ in dimensions}
        adjustments: list[Adjustment] = []
        for entry in matrix.get("exclude") or []:
            adjustments.append(
                Adjustment(values=_combination(job.id, entry, names, strict=True), skip=True)
            )

        for entry in matrix.get("include") or []:
            extra = [k for k in entry if names and k not in names]
            if extra:
                job.templates.append(
                    TemplateRef(
                        name="strategy.matrix.include",
                        reason=f"include adds variables {', '.join(extra)} "
                        "to matching combinations",
                    )
                )
                continue
            adjustments.append(
                Adjustment(values=_combination(job.id, entry, names, strict=False), skip=False)
            )

        cap = max_parallel if isinstance(max_parallel, int) else None
        job.matrix = MatrixSpec(
            dimensions=tuple(dimensions), adjustments=tuple(adjustments), max_parallel=cap
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _lower_step(
        self,
        job: JobNode,
        step: GitHubStep,
        index: int,
        shell: str | None,
        workdir: str | None,
    ) -> None:
        label = normalize_expressions(step_label(step.name, index))

        if step.if_:
            condition = _strip_expression(step.if_)
            if condition in ("always()", "failure()", "!cancelled()") and step.run is not None:
                job.post_commands.append(
                    Command(label=label, run=normalize_expressions(step.run))
                )
                return
            job.templates.append(
                TemplateRef(
                    name=label,
                    reason=f"step condition '{condition}' is not translated; the step always runs",
                )
            )

        if step.run is not None:
            job.commands.append(Command(label=label, run=self._step_script(step, workdir)))
            return

        uses = step.uses or ""
        action = _action_name(uses)
        if action == _CHECKOUT:
            if step.with_:
                self._warn_ignored(
                    f"Checkout options {', '.join(step.with_)} are not carried over",
                    job_id=job.id,
                    feature="checkout",
                )
        elif action == _CACHE:
            self._lower_cache(job, step)
        elif action == _UPLOAD:
            paths = tuple(_lines(step.with_.get("path")))
            job.artifacts = ArtifactSpec(
                produced=job.artifacts.produced + paths, consumed=job.artifacts.consumed
            )
            name = to_scalar_string(step.with_.get("name")) or "artifact"
            self._artifact_producers.setdefault(name, job.id)
        elif action == _DOWNLOAD:
            name = to_scalar_string(step.with_.get("name")) or "*"
            self._artifact_downloads.setdefault(job.id, []).append(name)
        else:
            job.reusable_actions.append(
                ReusableAction(
                    ref=uses,
                    label=label,
                    inputs=tuple(
                        (str(k), normalize_expressions(to_scalar_string(v)))
                        for k, v in step.with_.items()
                    ),
                )
            )

    def _step_script(self, step: GitHubStep, workdir: str | None) -> str:
        """Build a step's script, scoping step env and directory to a subshell."""
        script = normalize_expressions(step.run or "").rstrip("\n")
        directory = step.working_directory or workdir
        scoped = bool(step.env) or step.working_directory is not None

        if scoped:
            lines = [
                f'export {name}="{normalize_expressions(value)}"'
                for name, value in step.env.items()
            ]
            if directory:
                lines.append(f"cd {directory}")
            lines.append(script)
            script = "(\n" + "\n".join(lines) + "\n)"
        elif directory:
            script = f"cd {directory}\n{script}"

        if step.continue_on_error is True:
            script = f"{script} || true"
        return script

    def _lower_cache(self, job: JobNode, step: GitHubStep) -> None:
        key = to_scalar_string(step.with_.get("key"))
        if not key:
            raise ParseError("actions/cache requires a 'key'", job_id=job.id, feature="caching")
        if job.cache is not None:
            self._warn_ignored(
                f"Only the first cache of a job is translated; cache '{key}' is dropped",
                job_id=job.id,
                feature="caching",
            )
            return
        job.cache = CacheSpec(
            key=parse_cache_key(key),
            paths=tuple(_lines(step.with_.get("path"))),
            fallbacks=tuple(parse_cache_key(k) for k in _lines(step.with_.get("restore-keys"))),
            name=step.name,
        )

    def _resolve_downloads(self) -> None:
        """Turn downloaded artifact names into consumed producer ids."""
        for job_id, names in self._artifact_downloads.items():
            job = self.graph.get_job(job_id)
            if job is None or not job.is_active:
                continue
            consumed = list(job.artifacts.consumed)
            for name in names:
                producers = (
                    list(dict.fromkeys(self._artifact_producers.values()))
                    if name == "*"
                    else [self._artifact_producers[name]]
                    if name in self._artifact_producers
                    else []
                )
                if not producers:
                    self._warn_ignored(
                        f"Artifact '{name}' is not uploaded by any job in this workflow",
                        job_id=job_id,
                        feature="artifact-passthrough",
                    )
                for producer in producers:
                    if producer != job_id and producer not in consumed:
                        consumed.append(producer)
            job.artifacts = ArtifactSpec(produced=job.artifacts.produced, consumed=tuple(consumed))


def _term_predicate(term: str) -> Predicate | None:
    match = _REF_CMP.match(term)
    if match:
        op, ref_type, name = match.groups()
        kind = PredicateKind.BRANCH if ref_type == "heads" else PredicateKind.TAG
        if op == "==":
            return Predicate(kind=kind, include=(name,))
        return Predicate(kind=kind, exclude=(name,))

    match = _REF_NAME_CMP.match(term)
    if match:
        op, name = match.groups()
        if op == "==":
            return Predicate(kind=PredicateKind.BRANCH, include=(name,))
        return Predicate(kind=PredicateKind.BRANCH, exclude=(name,))

    match = _REF_PREFIX.match(term)
    if match:
        ref_type, prefix = match.groups()
        kind = PredicateKind.BRANCH if ref_type == "heads" else PredicateKind.TAG
        return Predicate(kind=kind, include=(f"{prefix}*",))

    match = _EVENT_CMP.match(term)
    if match:
        op, event = match.groups()
        if op == "==":
            return Predicate(kind=PredicateKind.EVENT, include=(event,))
        return Predicate(kind=PredicateKind.EVENT, exclude=(event,))

    return None


def _runs_on(runs_on: str | list[str] | dict[str, Any] | None) -> str | None:
    if runs_on is None:
        return None
    if isinstance(runs_on, str):
        return normalize_expressions(runs_on)
    if isinstance(runs_on, list):
        return ",".join(normalize_expressions(str(label)) for label in runs_on)
    group = runs_on.get("group") or runs_on.get("labels")
    return ",".join(_lines(group)) if group else None


def _run_defaults(
    workflow_defaults: GitHubDefaults | None, job_defaults: GitHubDefaults | None
) -> tuple[str | None, str | None]:
    shell = workdir = None
    for defaults in (workflow_defaults, job_defaults):
        if defaults is not None and defaults.run is not None:
            shell = defaults.run.shell or shell
            workdir = defaults.run.working_directory or workdir
    return shell, workdir


def _container_user(options: str | None) -> str | None:
    if not options:
        return None
    match = re.search(r"(?:--user|-u)[ =](\S+)", options)
    return match.group(1) if match else None


def _concurrency_group(concurrency: str | dict[str, Any]) -> str:
    if isinstance(concurrency, str):
        return concurrency
    return to_scalar_string(concurrency.get("group"))


def _matrix_value(job_id: str, name: str, value: Any) -> str:
    if isinstance(value, dict | list):
        raise ParseError(
            f"matrix dimension '{name}' has a non-scalar value {value!r}",
            job_id=job_id,
            feature="matrix",
        )
    return to_scalar_string(value)


def _combination(
    job_id: str, entry: Any, names: set[str], strict: bool
) -> tuple[tuple[str, str], ...]:
    if not isinstance(entry, dict):
        raise ParseError(
            f"matrix include/exclude entries must be mappings, got {entry!r}",
            job_id=job_id,
            feature="matrix",
        )
    if strict:
        unknown = [k for k in entry if k not in names]
        if unknown:
            raise ParseError(
                f"matrix exclude names unknown dimension(s) {', '.join(map(str, unknown))}",
                job_id=job_id,
                feature="matrix",
            )
    return tuple((str(k), _matrix_value(job_id, k, v)) for k, v in entry.items())
