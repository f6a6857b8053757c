"""Jenkins declarative pipeline parser."""

from __future__ import annotations

import itertools
import math
import re
import shlex
from dataclasses import dataclass, field, replace
from typing import Any

from ci_translate.diagnostics.exceptions import DocumentError, ParseError
from ci_translate.ir.features import (
    Adjustment,
    ApprovalGate,
    ArtifactSpec,
    Command,
    ContainerSpec,
    MatrixSpec,
    PipelineConstruct,
    Predicate,
    PredicateKind,
    RetryPolicy,
    ReusableAction,
    Schedule,
    SecretScope,
    TemplateRef,
    matrix_ref,
)
from ci_translate.ir.graph import JobNode
from ci_translate.models.common import to_scalar_string
from ci_translate.parsers.base import DialectParser, slugify, step_label
from ci_translate.parsers.groovy import (
    RAW_BLOCKS,
    Call,
    GroovySyntaxError,
    GString,
    Identifier,
    Statement,
    parse_jenkinsfile,
)
from ci_translate.vendors import Vendor

_GROOVY_REF = re.compile(r"\$\{\s*(?:env\.|params\.)?([A-Za-z_][A-Za-z0-9_]*)\s*\}")
_GROOVY_DOTTED_REF = re.compile(r"\$(?:env|params)\.([A-Za-z_][A-Za-z0-9_]*)")

_TIME_UNITS: dict[str, float] = {
    "NANOSECONDS": 1 / 60_000_000_000,
    "MICROSECONDS": 1 / 60_000_000,
    "MILLISECONDS": 1 / 60_000,
    "SECONDS": 1 / 60,
    "MINUTES": 1,
    "HOURS": 60,
    "DAYS": 1440,
}

# Causes accepted by ``when { triggeredBy ... }`` mapped to neutral events
_TRIGGER_CAUSES = {
    "TimerTrigger": "schedule",
    "TimerTriggerCause": "schedule",
    "UserIdCause": "manual",
    "SCMTrigger": "push",
    "SCMTriggerCause": "push",
    "BranchIndexingCause": "push",
}

# Orderings of ``when``, not conditions of their own
_WHEN_MODIFIERS = frozenset({"beforeAgent", "beforeInput", "beforeOptions"})

_STAGE_BODIES = ("steps", "stages", "parallel", "matrix")
_SHELL_STEPS = frozenset({"bat", "powershell", "pwsh"})


def groovy_text(value: Any) -> str:
    """Render a Groovy value as shell text.

    Interpolations of ``env.`` and ``params.`` values in double-quoted
    strings become shell variable references.

    Examples
    --------
        >>> groovy_text(GString("deploy ${env.TARGET}", interpolated=True))
        'deploy ${TARGET}'

    """
    if isinstance(value, GString):
        if not value.interpolated:
            return value.value
        text = _GROOVY_REF.sub(lambda m: "${" + m.group(1) + "}", value.value)
        return _GROOVY_DOTTED_REF.sub(lambda m: "${" + m.group(1) + "}", text)
    if isinstance(value, Identifier):
        if value.name.startswith(("env.", "params.")):
            return "${" + value.name.split(".", 1)[1] + "}"
        return value.name
    if value is None:
        return ""
    return to_scalar_string(value)


def render_statement(statement: Statement) -> str:
    """Render a statement back to compact Groovy-like text for comments.

    Examples
    --------
        >>> render_statement(Statement(name="branch", args=[GString("main")]))
        "branch 'main'"

    """
    arguments = [_render_value(a) for a in statement.args]
    arguments.extend(f"{k}: {_render_value(v)}" for k, v in statement.kwargs.items())
    text = statement.name
    if arguments:
        text += " " + ", ".join(arguments)
    if statement.raw is not None and statement.name in RAW_BLOCKS:
        text += " { " + " ".join(statement.raw.split()) + " }"
    elif statement.body:
        text += " { " + "; ".join(render_statement(s) for s in statement.body) + " }"
    return text


def _render_value(value: Any) -> str:
    if isinstance(value, GString):
        quote = '"' if value.interpolated else "'"
        return f"{quote}{value.value}{quote}"
    if isinstance(value, list):
        return "[" + ", ".join(_render_value(v) for v in value) + "]"
    return groovy_text(value)


def _duration_minutes(time: Any, unit: Any, statement: Statement, job_id: str | None) -> float:
    unit_name = str(unit).upper()
    if not isinstance(time, int | float) or isinstance(time, bool) or unit_name not in _TIME_UNITS:
        raise ParseError(
            f"unsupported duration in {render_statement(statement)}",
            job_id=job_id,
            feature="timeout",
        )
    return time * _TIME_UNITS[unit_name]


def _timeout_minutes(statement: Statement, job_id: str | None) -> int:
    """Convert ``timeout(time: N, unit: 'X')`` to whole minutes, rounding up."""
    minutes = _duration_minutes(
        statement.argument("time"), statement.kwargs.get("unit", "MINUTES"), statement, job_id
    )
    return max(1, math.ceil(minutes))


def _retry_policy(statement: Statement, job_id: str | None) -> RetryPolicy:
    count = statement.argument("count")
    if not isinstance(count, int) or isinstance(count, bool) or count < 1:
        raise ParseError(
            f"unsupported retry {render_statement(statement)}", job_id=job_id, feature="retry"
        )
    return RetryPolicy(max_attempts=count)


def _string_list(value: Any) -> list[str]:
    """Split a comma-separated Groovy value (``'a/**, b/*.log'``) into entries."""
    if value is None:
        return []
    if isinstance(value, list):
        return [groovy_text(v) for v in value]
    return [part.strip() for part in groovy_text(value).split(",") if part.strip()]


def _echo(message: Any) -> str:
    if isinstance(message, GString) and message.interpolated:
        escaped = re.sub(r'(["`\\])', r"\\\1", groovy_text(message))
        return f'echo "{escaped}"'
    return f"echo {shlex.quote(groovy_text(message))}"


@dataclass
class _Scope:
    """Directives inherited by the stages nested in a block."""

    container: ContainerSpec | None = None
    resource_hint: str | None = None
    templates: list[TemplateRef] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    secret_scopes: list[SecretScope] = field(default_factory=list)
    conditionals: list[Predicate] = field(default_factory=list)
    timeout_minutes: int | None = None
    retry_policy: RetryPolicy | None = None
    approval: ApprovalGate | None = None

    def copy(self) -> _Scope:
        return replace(
            self,
            templates=list(self.templates),
            environment=dict(self.environment),
            secret_scopes=list(self.secret_scopes),
            conditionals=list(self.conditionals),
        )


class JenkinsParser(DialectParser):
    """Parse declarative ``Jenkinsfile`` pipelines.

    Stages become jobs. Sequential stages depend on the stages before them,
    the stages of a ``parallel`` block share their dependencies, and nested
    ``stages`` blocks are flattened. Directives of an enclosing stage
    (agent, environment, when, options, input) are pushed down into every
    nested stage.
    """

    vendor = Vendor.JENKINS

    def _parse(self, raw_text: str) -> None:
        try:
            statements = parse_jenkinsfile(raw_text)
        except GroovySyntaxError as e:
            raise DocumentError(f"Invalid Jenkinsfile: {e}", feature="document") from e

        pipelines = [s for s in statements if s.name == "pipeline" and s.body is not None]
        if len(pipelines) != 1:
            raise DocumentError(
                "A declarative Jenkinsfile needs exactly one 'pipeline { ... }' block, "
                f"found {len(pipelines)}",
                feature="document",
            )

        for statement in statements:
            if statement.name == "@Library":
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(
                        summary="shared library",
                        detail=", ".join(groovy_text(a) for a in statement.args),
                    )
                )
            elif statement.name not in ("pipeline", "_"):
                self._warn_ignored(
                    f"Scripted statement '{statement.name}' outside the pipeline block",
                    feature="pipeline",
                )

        self._stashes: dict[str, str] = {}
        self._unstashes: dict[str, list[str]] = {}

        pipeline = pipelines[0]
        stages = pipeline.child("stages")
        if stages is None:
            raise DocumentError("The pipeline block has no 'stages'", feature="document")

        try:
            scope = self._pipeline_scope(pipeline)
        except ParseError as e:
            raise DocumentError(e.message, feature=e.feature or "document") from e

        if not stages.body:
            raise DocumentError("The pipeline block has no stages", feature="document")
        self._lower_stages(stages, scope, [], "pipeline.stages")
        if not self.graph.jobs:
            raise DocumentError("The pipeline block has no stages", feature="document")

        post = pipeline.child("post")
        if post is not None and post.body:
            self.graph.pipeline_constructs.append(
                PipelineConstruct(
                    summary="pipeline post conditions",
                    detail="; ".join(render_statement(s) for s in post.body),
                )
            )

        self._resolve_stashes()

    # ------------------------------------------------------------------
    # Pipeline directives
    # ------------------------------------------------------------------

    def _pipeline_scope(self, pipeline: Statement) -> _Scope:
        scope = _Scope()
        for directive in pipeline.body or []:
            name = directive.name
            if name in ("stages", "post"):
                continue
            if name == "agent":
                self._apply_agent(scope, directive, None)
            elif name == "environment":
                self._apply_environment(scope, directive, None)
                self.graph.global_env.update(scope.environment)
            elif name == "options":
                self._apply_options(scope, directive, None)
                self.graph.global_timeout = scope.timeout_minutes
            elif name == "triggers":
                self._parse_triggers(directive)
            elif name == "parameters":
                self._parse_parameters(directive, scope)
            elif name == "tools":
                self._warn_tools(directive, None)
            elif name == "libraries":
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary="shared library", detail=render_statement(directive))
                )
            else:
                self._warn_ignored(
                    f"Pipeline directive '{name}' is not translated", feature="pipeline"
                )
        return scope

    def _parse_triggers(self, block: Statement) -> None:
        for trigger in block.body or []:
            spec = groovy_text(trigger.argument("spec"))
            if trigger.name == "cron":
                self.graph.schedules.append(Schedule(cron=spec))
            elif trigger.name == "pollSCM":
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary="SCM polling", detail=spec)
                )
            else:
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(
                        summary=f"{trigger.name} trigger", detail=render_statement(trigger)
                    )
                )

    def _parse_parameters(self, block: Statement, scope: _Scope) -> None:
        """Record build parameters; their defaults become global environment."""
        names: list[str] = []
        for parameter in block.body or []:
            name = groovy_text(parameter.kwargs.get("name"))
            if not name:
                continue
            names.append(name)
            default = parameter.kwargs.get("defaultValue")
            if default is None and parameter.name == "choice":
                choices = _string_list(parameter.kwargs.get("choices"))
                default = choices[0] if choices else None
            if default is not None:
                scope.environment.setdefault(name, groovy_text(default))
                self.graph.global_env.setdefault(name, groovy_text(default))

        self.graph.pipeline_constructs.append(
            PipelineConstruct(summary="build parameters", detail=", ".join(names))
        )

    # ------------------------------------------------------------------
    # Shared directives
    # ------------------------------------------------------------------

    def _apply_agent(self, scope: _Scope, agent: Statement, job_id: str | None) -> None:
        """Replace the scope's agent with the one the directive declares."""
        scope.container = None
        scope.resource_hint = None
        scope.templates = [t for t in scope.templates if not t.name.startswith("agent ")]

        if agent.body is None:
            kind = groovy_text(agent.first_arg)
            if kind in ("any", "none"):
                return
            raise ParseError(f"unsupported agent '{kind}'", job_id=job_id, feature="container")

        for spec in agent.body:
            if spec.name == "label":
                scope.resource_hint = groovy_text(spec.first_arg)
            elif spec.name == "node":
                label = spec.child("label")
                scope.resource_hint = groovy_text(
                    label.first_arg if label is not None else spec.kwargs.get("label")
                )
            elif spec.name == "docker":
                scope.container = self._docker_agent(spec, scope, job_id)
            elif spec.name in ("dockerfile", "kubernetes"):
                scope.templates.append(
                    TemplateRef(
                        name=f"agent {spec.name}",
                        reason=f"agent built at run time: {render_statement(spec)}",
                    )
                )
            elif spec.name not in ("customWorkspace", "reuseNode"):
                raise ParseError(
                    f"unsupported agent type '{spec.name}'", job_id=job_id, feature="container"
                )

    def _docker_agent(
        self, spec: Statement, scope: _Scope, job_id: str | None
    ) -> ContainerSpec:
        def option(name: str) -> Any:
            child = spec.child(name)
            return child.first_arg if child is not None else spec.kwargs.get(name)

        image = spec.first_arg if spec.body is None else option("image")
        if image is None:
            raise ParseError("docker agent without an image", job_id=job_id, feature="container")

        label = option("label")
        if label is not None:
            scope.resource_hint = groovy_text(label)

        user = None
        args = shlex.split(groovy_text(option("args"))) if option("args") is not None else []
        remaining: list[str] = []
        iterator = iter(args)
        for arg in iterator:
            if arg in ("-u", "--user"):
                user = next(iterator, None)
            elif arg.startswith("--user="):
                user = arg.split("=", 1)[1]
            else:
                remaining.append(arg)
        if remaining:
            self._warn_ignored(
                f"Docker arguments '{' '.join(remaining)}' are not translated",
                job_id=job_id,
                feature="container",
            )

        return ContainerSpec(image=groovy_text(image), user=user)

    def _apply_environment(self, scope: _Scope, block: Statement, job_id: str | None) -> None:
        for entry in block.body or []:
            if not entry.is_assignment:
                raise ParseError(
                    f"environment entries must be NAME = value, got '{entry.name}'",
                    job_id=job_id,
                    feature="global-environment",
                )
            value = entry.value
            if isinstance(value, Call) and value.name == "credentials":
                credential = groovy_text(value.args[0]) if value.args else entry.name
                scope.secret_scopes.append(SecretScope(name=credential, kind="credential"))
                scope.environment.pop(entry.name, None)
                continue
            scope.environment[entry.name] = groovy_text(value)

    def _apply_options(self, scope: _Scope, block: Statement, job_id: str | None) -> None:
        for option in block.body or []:
            if option.name == "timeout":
                scope.timeout_minutes = _timeout_minutes(option, job_id)
            elif option.name == "retry":
                scope.retry_policy = _retry_policy(option, job_id)
            elif option.name == "disableConcurrentBuilds" and job_id is None:
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary="concurrent builds disabled")
                )
            else:
                self._warn_ignored(
                    f"Option '{option.name}' has no equivalent and was dropped",
                    job_id=job_id,
                    feature="pipeline",
                )

    def _warn_tools(self, block: Statement, job_id: str | None) -> None:
        tools = ", ".join(render_statement(t) for t in block.body or [])
        self._warn_ignored(
            f"Tool installations ({tools}) must be provided by the agent",
            job_id=job_id,
            feature="container",
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _lower_stages(
        self, block: Statement, scope: _Scope, previous: list[str], path: str
    ) -> list[str]:
        """Lower sequential stages and return the ids the next stage depends on."""
        exits = previous
        for index, statement in enumerate(block.body or []):
            if statement.name != "stage":
                self._warn_ignored(
                    f"{path}: '{statement.name}' is not a stage", feature="pipeline"
                )
                continue
            exits = self._lower_stage(statement, scope, exits, f"{path}[{index}]", index + 1)
            if scope.approval is not None:
                # An input on an enclosing stage gates its first nested stage only
                scope = scope.copy()
                scope.approval = None
        return exits

    def _lower_stage(
        self, stage: Statement, scope: _Scope, previous: list[str], path: str, index: int
    ) -> list[str]:
        label = step_label(groovy_text(stage.first_arg), index)
        job_id = self.graph.unique_id(slugify(label, fallback=f"step-{index}"))

        bodies = [name for name in _STAGE_BODIES if stage.child(name) is not None]
        if bodies in (["parallel"], ["stages"]):
            try:
                nested_scope = self._stage_scope(stage, scope, job_id)
            except ParseError as e:
                job = self._lower_invalid(job_id, label, e, path, fallback_dependencies=previous)
                return [job.id]

            if stage.child("post") is not None:
                self._warn_ignored(
                    f"Post conditions of stage '{label}' are not translated",
                    job_id=job_id,
                    feature="post-step",
                )

            if bodies == ["stages"]:
                return self._lower_stages(
                    stage.child("stages"), nested_scope, previous, f"{path}.stages"
                )

            exits: list[str] = []
            branches = stage.child("parallel").children("stage")
            for i, branch in enumerate(branches):
                branch_path = f"{path}.parallel[{i}]"
                exits.extend(self._lower_stage(branch, nested_scope, previous, branch_path, i + 1))
            return exits or previous

        job = self._lower_job(
            job_id,
            label,
            lambda: self._lower_leaf(job_id, label, stage, scope, previous, bodies),
            source_path=path,
            fallback_dependencies=previous,
        )
        return [job.id]

    def _stage_scope(self, stage: Statement, parent: _Scope, job_id: str) -> _Scope:
        scope = parent.copy()
        for directive in stage.body or []:
            name = directive.name
            if name in _STAGE_BODIES or name in ("post", "failFast", "axes", "excludes"):
                continue
            if name == "agent":
                self._apply_agent(scope, directive, job_id)
            elif name == "environment":
                self._apply_environment(scope, directive, job_id)
            elif name == "options":
                self._apply_options(scope, directive, job_id)
            elif name == "when":
                scope.conditionals.extend(self._lower_when(directive, job_id))
            elif name == "input":
                message = directive.child("message")
                prompt = (
                    message.first_arg if message is not None else directive.kwargs.get("message")
                )
                scope.approval = ApprovalGate(prompt=groovy_text(prompt) or "Proceed?")
            elif name == "tools":
                self._warn_tools(directive, job_id)
            else:
                raise ParseError(
                    f"unknown stage directive '{name}'", job_id=job_id, feature="job"
                )
        return scope

    def _lower_leaf(
        self,
        job_id: str,
        label: str,
        stage: Statement,
        parent: _Scope,
        previous: list[str],
        bodies: list[str],
    ) -> JobNode:
        if len(bodies) != 1:
            raise ParseError(
                f"stage '{label}' must have exactly one of steps, stages, parallel or matrix",
                job_id=job_id,
                feature="job",
            )
        scope = self._stage_scope(stage, parent, job_id)

        job = JobNode(id=job_id, label=label)
        for dep in previous:
            job.add_dependency(dep)

        if bodies == ["matrix"]:
            self._lower_matrix(job, stage.child("matrix"), scope)
        else:
            self._apply_scope(job, scope)
            self._lower_steps(job, stage.child("steps").body or [], job.commands)

        post = stage.child("post")
        if post is not None:
            self._lower_post(job, post)
        return job

    def _apply_scope(self, job: JobNode, scope: _Scope) -> None:
        job.container = scope.container
        job.resource_hint = scope.resource_hint
        job.templates.extend(scope.templates)
        job.environment.update(scope.environment)
        job.secret_scopes.extend(scope.secret_scopes)
        job.conditionals.extend(scope.conditionals)
        job.timeout_minutes = scope.timeout_minutes
        job.retry_policy = scope.retry_policy
        job.approval = scope.approval

    def _lower_matrix(self, job: JobNode, matrix: Statement, parent: _Scope) -> None:
        """Lower a matrix stage to one job running its inner stages per combination."""
        axes = matrix.child("axes")
        if axes is None or not axes.children("axis"):
            raise ParseError("matrix without axes", job_id=job.id, feature="matrix")

        dimensions: list[tuple[str, tuple[str, ...]]] = []
        for axis in axes.children("axis"):
            name_stmt, values_stmt = axis.child("name"), axis.child("values")
            if name_stmt is None or values_stmt is None or not values_stmt.args:
                raise ParseError(
                    "matrix axis needs a name and values", job_id=job.id, feature="matrix"
                )
            dimensions.append(
                (groovy_text(name_stmt.first_arg), tuple(groovy_text(v) for v in values_stmt.args))
            )

        declared = dict(dimensions)
        adjustments: list[Adjustment] = []
        excludes = matrix.child("excludes")
        for exclude in excludes.children("exclude") if excludes is not None else []:
            adjustments.extend(self._matrix_excludes(job.id, exclude, declared))

        job.matrix = MatrixSpec(dimensions=tuple(dimensions), adjustments=tuple(adjustments))

        scope = self._stage_scope(matrix, parent, job.id)
        self._apply_scope(job, scope)
        for name in declared:
            job.environment.setdefault(name, matrix_ref(name))
        if job.container is not None:
            job.container = replace(job.container, image=_axis_refs(job.container.image, declared))
        if job.resource_hint is not None:
            job.resource_hint = _axis_refs(job.resource_hint, declared)

        stages = matrix.child("stages")
        if stages is None:
            raise ParseError("matrix without stages", job_id=job.id, feature="matrix")
        for index, inner in enumerate(stages.children("stage"), 1):
            inner_label = step_label(groovy_text(inner.first_arg), index)
            steps = inner.child("steps")
            if steps is None:
                raise ParseError(
                    f"matrix stage '{inner_label}' must contain steps",
                    job_id=job.id,
                    feature="matrix",
                )
            for directive in inner.body or []:
                if directive.name == "environment":
                    inner_scope = _Scope()
                    self._apply_environment(inner_scope, directive, job.id)
                    job.environment.update(inner_scope.environment)
                    job.secret_scopes.extend(inner_scope.secret_scopes)
                elif directive.name == "when":
                    job.templates.append(
                        TemplateRef(
                            name=f"matrix stage '{inner_label}'",
                            reason=f"conditional inside a matrix: {render_statement(directive)}",
                        )
                    )
                elif directive.name == "post":
                    self._lower_post(job, directive)
                elif directive.name != "steps":
                    self._warn_ignored(
                        f"Directive '{directive.name}' of matrix stage '{inner_label}' "
                        "is not translated",
                        job_id=job.id,
                        feature="matrix",
                    )
            self._lower_steps(job, steps.body or [], job.commands, label_prefix=inner_label)

    def _matrix_excludes(
        self, job_id: str, exclude: Statement, declared: dict[str, tuple[str, ...]]
    ) -> list[Adjustment]:
        names: list[str] = []
        choices: list[tuple[str, ...]] = []
        for axis in exclude.children("axis"):
            name_stmt = axis.child("name")
            name = groovy_text(name_stmt.first_arg) if name_stmt is not None else ""
            if name not in declared:
                raise ParseError(
                    f"matrix exclude references unknown axis '{name}'",
                    job_id=job_id,
                    feature="matrix",
                )
            values = axis.child("values")
            not_values = axis.child("notValues")
            if values is not None:
                selected = tuple(groovy_text(v) for v in values.args)
            elif not_values is not None:
                rejected = {groovy_text(v) for v in not_values.args}
                selected = tuple(v for v in declared[name] if v not in rejected)
            else:
                raise ParseError(
                    f"matrix exclude axis '{name}' needs values or notValues",
                    job_id=job_id,
                    feature="matrix",
                )
            names.append(name)
            choices.append(selected)

        return [
            Adjustment(values=tuple(zip(names, combination, strict=True)), skip=True)
            for combination in itertools.product(*choices)
        ]

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _lower_when(self, block: Statement, job_id: str) -> list[Predicate]:
        predicates: list[Predicate] = []
        for condition in block.body or []:
            if condition.name in _WHEN_MODIFIERS:
                continue
            predicates.extend(self._lower_condition(condition, job_id))
        return predicates

    def _lower_condition(self, condition: Statement, job_id: str) -> list[Predicate]:
        name = condition.name
        if name in ("branch", "tag"):
            kind = PredicateKind.BRANCH if name == "branch" else PredicateKind.TAG
            pattern = condition.argument("pattern")
            comparator = str(condition.kwargs.get("comparator", "GLOB")).upper()
            if comparator == "REGEXP":
                return [_expression(render_statement(condition))]
            return [Predicate(kind=kind, include=(groovy_text(pattern) or "*",))]
        if name == "buildingTag":
            return [Predicate(kind=PredicateKind.TAG, include=("*",))]
        if name == "changeRequest":
            return [Predicate(kind=PredicateKind.EVENT, include=("pull_request",))]
        if name == "changeset":
            pattern = groovy_text(condition.argument("pattern"))
            return [Predicate(kind=PredicateKind.PATH, include=(pattern,))]
        if name == "triggeredBy":
            cause = groovy_text(condition.argument("cause"))
            if cause in _TRIGGER_CAUSES:
                return [Predicate(kind=PredicateKind.EVENT, include=(_TRIGGER_CAUSES[cause],))]
            return [_expression(render_statement(condition))]
        if name == "expression":
            return [_expression(condition.raw or render_statement(condition))]
        if name == "not":
            return [self._negate(condition, job_id)]
        if name == "anyOf":
            return self._any_of(condition, job_id)
        if name == "allOf":
            lowered = [p for c in condition.body or [] for p in self._lower_condition(c, job_id)]
            refs = [p for p in lowered if p.kind in (PredicateKind.BRANCH, PredicateKind.TAG)]
            # Branch and tag predicates are alternatives; more than one cannot express AND
            if len(refs) > 1:
                return [_expression(render_statement(condition))]
            return lowered
        return [_expression(render_statement(condition))]

    def _negate(self, condition: Statement, job_id: str) -> Predicate:
        inner = condition.body or []
        if len(inner) == 1:
            lowered = self._lower_condition(inner[0], job_id)
            if (
                len(lowered) == 1
                and lowered[0].kind in (PredicateKind.BRANCH, PredicateKind.TAG, PredicateKind.PATH)
                and not lowered[0].exclude
            ):
                return Predicate(kind=lowered[0].kind, exclude=lowered[0].include)
        return _expression(render_statement(condition))

    def _any_of(self, condition: Statement, job_id: str) -> list[Predicate]:
        lowered = [p for c in condition.body or [] for p in self._lower_condition(c, job_id)]
        if lowered and all(
            p.kind in (PredicateKind.BRANCH, PredicateKind.TAG) and not p.exclude for p in lowered
        ):
            merged: list[Predicate] = []
            for kind in (PredicateKind.BRANCH, PredicateKind.TAG):
                patterns = [pattern for p in lowered if p.kind == kind for pattern in p.include]
                if patterns:
                    merged.append(Predicate(kind=kind, include=tuple(dict.fromkeys(patterns))))
            return merged
        if lowered and all(p.kind == PredicateKind.EVENT for p in lowered):
            events = [event for p in lowered for event in p.include]
            return [Predicate(kind=PredicateKind.EVENT, include=tuple(dict.fromkeys(events)))]
        return [_expression(render_statement(condition))]

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _lower_steps(
        self,
        job: JobNode,
        steps: list[Statement],
        target: list[Command],
        label_prefix: str = "",
        setup: tuple[str, ...] = (),
    ) -> None:
        """Lower step statements, appending commands to ``target``.

        ``setup`` holds shell lines (directory changes, exports) of the
        enclosing ``dir`` and ``withEnv`` blocks.
        """
        for step in steps:
            label = step_label(groovy_text(step.kwargs.get("label")), len(target) + 1)
            if label_prefix:
                label = f"{label_prefix}: {label}"

            def add(run: str, label: str = label) -> None:
                if setup:
                    run = "(\n" + "\n".join([*setup, run]) + "\n)"
                target.append(Command(label=label, run=run))

            name = step.name
            if name == "sh":
                add(groovy_text(step.argument("script")).rstrip("\n"))
            elif name == "echo":
                add(_echo(step.argument("message")))
            elif name == "error":
                add(f"{_echo(step.argument('message'))} >&2\nexit 1")
            elif name == "sleep":
                minutes = _duration_minutes(
                    step.argument("time"), step.kwargs.get("unit", "SECONDS"), step, job.id
                )
                add(f"sleep {math.ceil(minutes * 60)}")
            elif name in _SHELL_STEPS:
                job.reusable_actions.append(
                    ReusableAction(
                        ref=name,
                        label=label,
                        inputs=(("script", groovy_text(step.argument("script"))),),
                    )
                )
            elif name == "archiveArtifacts":
                self._produce(job, _string_list(step.argument("artifacts")))
            elif name == "junit":
                self._produce(job, _string_list(step.argument("testResults")))
            elif name == "stash":
                stash = groovy_text(step.argument("name"))
                self._stashes[stash] = job.id
                self._produce(job, _string_list(step.kwargs.get("includes", "**")))
            elif name == "unstash":
                self._unstashes.setdefault(job.id, []).append(groovy_text(step.argument("name")))
            elif name == "checkout":
                if groovy_text(step.first_arg) != "scm":
                    self._warn_ignored(
                        f"Custom checkout is not translated: {render_statement(step)}",
                        job_id=job.id,
                        feature="job",
                    )
            elif name == "dir":
                path = shlex.quote(groovy_text(step.argument("path")))
                self._lower_steps(
                    job, step.body or [], target, label_prefix, (*setup, f"cd {path}")
                )
            elif name == "withEnv":
                exports = [
                    f'export {entry.split("=", 1)[0]}="{entry.split("=", 1)[1]}"'
                    for entry in _string_list(step.first_arg)
                    if "=" in entry
                ]
                self._lower_steps(job, step.body or [], target, label_prefix, (*setup, *exports))
            elif name == "withCredentials":
                for binding in step.first_arg if isinstance(step.first_arg, list) else []:
                    if isinstance(binding, Call):
                        credential = dict(binding.kwargs).get("credentialsId")
                        if credential is not None:
                            job.secret_scopes.append(
                                SecretScope(name=groovy_text(credential), kind="credential")
                            )
                self._lower_steps(job, step.body or [], target, label_prefix, setup)
            elif name == "timeout" and step.body is not None:
                if job.timeout_minutes is None:
                    job.timeout_minutes = _timeout_minutes(step, job.id)
                self._lower_steps(job, step.body, target, label_prefix, setup)
            elif name == "retry" and step.body is not None:
                if job.retry_policy is None:
                    job.retry_policy = _retry_policy(step, job.id)
                self._lower_steps(job, step.body, target, label_prefix, setup)
            elif name == "input":
                job.approval = ApprovalGate(
                    prompt=groovy_text(step.argument("message")) or "Proceed?"
                )
            elif name == "script":
                script = " ".join((step.raw or "").split())
                job.templates.append(
                    TemplateRef(name="script", reason=f"scripted Groovy: {script}")
                )
            else:
                job.reusable_actions.append(
                    ReusableAction(
                        ref=name,
                        label=label,
                        inputs=tuple(
                            [(f"arg{i}", _render_value(a)) for i, a in enumerate(step.args)]
                            + [(k, _render_value(v)) for k, v in step.kwargs.items()]
                        ),
                    )
                )

    def _produce(self, job: JobNode, paths: list[str]) -> None:
        produced = tuple(dict.fromkeys([*job.artifacts.produced, *paths]))
        job.artifacts = ArtifactSpec(produced=produced, consumed=job.artifacts.consumed)

    def _lower_post(self, job: JobNode, post: Statement) -> None:
        for condition in post.body or []:
            if condition.name in ("always", "cleanup", "failure", "unsuccessful"):
                self._lower_steps(job, condition.body or [], job.post_commands)
            elif condition.name == "success":
                self._lower_steps(job, condition.body or [], job.commands)
            else:
                job.templates.append(
                    TemplateRef(
                        name=f"post {condition.name}",
                        reason=f"post condition with no equivalent: {render_statement(condition)}",
                    )
                )

    def _resolve_stashes(self) -> None:
        """Point each ``unstash`` at the job that stashed the files."""
        for job_id, names in self._unstashes.items():
            job = self.graph.get_job(job_id)
            if job is None or not job.is_active:
                continue
            producers: list[str] = []
            for name in names:
                producer = self._stashes.get(name)
                if producer is None:
                    self._warn_ignored(
                        f"unstash of unknown stash '{name}'", job_id=job_id, feature="artifacts"
                    )
                elif producer != job_id and self.graph.jobs[producer].is_active:
                    producers.append(producer)
            if producers:
                job.artifacts = ArtifactSpec(
                    produced=job.artifacts.produced,
                    consumed=tuple(dict.fromkeys([*job.artifacts.consumed, *producers])),
                )


def _expression(text: str) -> Predicate:
    return Predicate(kind=PredicateKind.EXPRESSION, expression=text)


def _axis_refs(text: str, axes: dict[str, tuple[str, ...]]) -> str:
    """Rewrite ``${AXIS}`` and ``$AXIS`` references to matrix references."""
    for name in axes:
        text = re.sub(
            r"\$\{\s*(?:env\.)?" + re.escape(name) + r"\s*\}|\$" + re.escape(name) + r"\b",
            matrix_ref(name),
            text,
        )
    return text
