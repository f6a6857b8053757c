"""CircleCI 2.x configuration parser."""

from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from ci_translate.diagnostics.exceptions import DocumentError, ParseError
from ci_translate.diagnostics.pydantic_errors import summarize_validation_error
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
    PredicateKind,
    ReusableAction,
    Schedule,
    SecretScope,
    ServiceContainer,
    TemplateRef,
    matrix_ref,
)
from ci_translate.ir.graph import JobKind, JobNode
from ci_translate.ir.ops import ancestors
from ci_translate.models.circleci import (
    CircleCommand,
    CircleConfig,
    CircleExecutor,
    CircleFilters,
    CircleJob,
    CircleParameter,
    CircleScheduleTrigger,
    CircleWorkflowJob,
)
from ci_translate.models.common import to_scalar_string
from ci_translate.parsers.base import DialectParser, merge_env, name_list, slugify, step_label
from ci_translate.vendors import Vendor

_PARAM_REF = re.compile(r"<<\s*parameters\.([A-Za-z0-9_-]+)\s*>>")
_PIPELINE_PARAM_REF = re.compile(r"<<\s*pipeline\.parameters\.([A-Za-z0-9_-]+)\s*>>")
_PIPELINE_VALUE_REF = re.compile(r"<<\s*pipeline\.[^>]*>>")
_TEMPLATE = re.compile(r"\{\{\s*(.*?)\s*\}\}")
_CHECKSUM = re.compile(r'checksum\s+"([^"]+)"')

# Nested reusable commands deeper than this are treated as recursive
_MAX_COMMAND_DEPTH = 10


def parse_cache_key(text: str) -> CacheKey:
    """Parse a CircleCI cache key template into neutral components.

    Examples
    --------
        >>> parse_cache_key('v1-deps-{{ checksum "package-lock.json" }}').render()
        'v1-deps-{file_hash:package-lock.json}'

    """
    components: list[CacheKeyComponent] = []
    position = 0
    for match in _TEMPLATE.finditer(text):
        if match.start() > position:
            components.append(
                CacheKeyComponent(CacheKeyKind.LITERAL, text[position : match.start()])
            )
        components.append(_template_component(match.group(1)))
        position = match.end()

    if position < len(text):
        components.append(CacheKeyComponent(CacheKeyKind.LITERAL, text[position:]))

    return CacheKey(components=tuple(components))


def _template_component(template: str) -> CacheKeyComponent:
    checksum = _CHECKSUM.fullmatch(template)
    if checksum:
        return CacheKeyComponent(CacheKeyKind.FILE_HASH, checksum.group(1))
    if template == ".Branch":
        return CacheKeyComponent(CacheKeyKind.BRANCH, "branch")
    if template.startswith(".Environment."):
        return CacheKeyComponent(CacheKeyKind.ENV, template.split(".", 2)[2])
    if template.startswith("matrix."):
        return CacheKeyComponent(CacheKeyKind.LITERAL, "{{" + template + "}}")
    names = {".Revision": "revision", ".BuildNum": "build", "epoch": "epoch", "arch": "arch"}
    return CacheKeyComponent(CacheKeyKind.RUNTIME, names.get(template, template))


def substitute_parameters(value: Any, parameters: dict[str, Any], job_id: str) -> Any:
    """Replace ``<< parameters.x >>`` references throughout a raw structure.

    A string consisting of a single reference takes the parameter value
    with its type (steps parameters substitute lists of steps).

    Raises
    ------
        ParseError: If a referenced parameter is not declared.

    """
    if isinstance(value, dict):
        return {k: substitute_parameters(v, parameters, job_id) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_parameters(v, parameters, job_id) for v in value]
    if not isinstance(value, str):
        return value

    def _lookup(name: str) -> Any:
        if name not in parameters:
            raise ParseError(
                f"undefined parameter '{name}'", job_id=job_id, feature="templated-job"
            )
        return parameters[name]

    whole = _PARAM_REF.fullmatch(value.strip())
    if whole:
        return _lookup(whole.group(1))
    return _PARAM_REF.sub(lambda m: to_scalar_string(_lookup(m.group(1))), value)


def _substitute_pipeline_parameters(value: Any, parameters: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: _substitute_pipeline_parameters(v, parameters) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_pipeline_parameters(v, parameters) for v in value]
    if isinstance(value, str):
        return _PIPELINE_PARAM_REF.sub(
            lambda m: to_scalar_string(parameters.get(m.group(1), m.group(0))), value
        )
    return value


def _is_invocation(entry: Any) -> bool:
    """Whether an entry is a bare name or a ``{name: config}`` mapping."""
    return isinstance(entry, str) or (isinstance(entry, dict) and len(entry) == 1)


def _step_entry(step: Any) -> tuple[str, Any]:
    """Split a step into its name and configuration.

    Raises
    ------
        ParseError: If the step is neither a name nor a single-key mapping.

    """
    if not _is_invocation(step):
        raise ParseError(
            f"expected a step name or a single-key mapping, got {type(step).__name__}",
            feature="job",
        )
    if isinstance(step, str):
        return step, None
    name, config = next(iter(step.items()))
    return str(name), config


class CircleCIParser(DialectParser):
    """Parse CircleCI 2.x configurations.

    Workflows are flattened into one job list. Each workflow invocation
    of a job becomes its own job node; when a configuration has more than
    one workflow, job ids are prefixed with the workflow name.
    """

    vendor = Vendor.CIRCLECI

    def _parse(self, raw_text: str) -> None:
        data = self._load_yaml(raw_text)
        pipeline_params = _pipeline_parameter_defaults(data.get("parameters"))
        if pipeline_params:
            data = _substitute_pipeline_parameters(data, pipeline_params)

        self.config = self._validate_document(CircleConfig, data)
        self._workspace_consumers: list[str] = []

        for orb_name, orb_ref in self.config.orbs.items():
            if isinstance(orb_ref, str):
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(summary=f"orb {orb_name}", detail=orb_ref)
                )

        workflows = {
            name: wf for name, wf in self.config.workflows.items() if name != "version"
        }
        if not workflows:
            if "build" not in self.config.jobs:
                raise DocumentError(
                    "Configuration has no workflows and no 'build' job", feature="document"
                )
            workflows = {"default": {"jobs": ["build"]}}

        prefix_ids = len(workflows) > 1
        for name, workflow in workflows.items():
            self._parse_workflow(str(name), workflow, prefix_ids)

        self._resolve_workspaces()

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def _parse_workflow(self, name: str, workflow: Any, prefix_ids: bool) -> None:
        if not isinstance(workflow, dict):
            self._warn_ignored(f"Workflow '{name}' is not a mapping", feature="workflow")
            return

        for trigger in workflow.get("triggers") or []:
            self._parse_trigger(name, trigger)

        for key in ("when", "unless"):
            if key in workflow:
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(
                        summary=f"workflow '{name}' runs {key} a condition holds",
                        detail=str(workflow[key]),
                    )
                )

        raw_entries = workflow.get("jobs") or []
        if not isinstance(raw_entries, list):
            raise DocumentError(
                f"workflows.{name}.jobs: expected a list, got {type(raw_entries).__name__}",
                feature="document",
            )

        # First pass: assign ids so requires can reference later entries
        entries: list[tuple[str, Any] | None] = []
        ids: dict[str, str] = {}
        for position, entry in enumerate(raw_entries):
            if not _is_invocation(entry):
                entries.append(None)
                continue
            job_name, config = _step_entry(entry)
            entries.append((job_name, config))
            display = _invocation_name(job_name, config)
            slug = slugify(display, fallback=f"job-{position + 1}")
            ids.setdefault(display, f"{slugify(name)}-{slug}" if prefix_ids else slug)

        for position, parsed in enumerate(entries):
            path = f"workflows.{name}.jobs[{position}]"
            if parsed is None:
                label = f"{name}-job-{position + 1}"
                error = ParseError(
                    f"{path}: expected a job name or a single-key mapping, "
                    f"got {type(raw_entries[position]).__name__}",
                    feature="job",
                )
                self._lower_invalid(self.graph.unique_id(slugify(label)), label, error, path)
                continue

            job_name, config = parsed
            display = _invocation_name(job_name, config)
            job_id = ids[display]
            requires: list[str] = []
            if isinstance(config, dict):
                try:
                    names = name_list(config.get("requires"), f"{path}.requires", job_id)
                except ParseError as e:
                    self._lower_invalid(job_id, display, e, path)
                    continue
                requires = [ids.get(r, slugify(r)) for r in names]

            self._lower_job(
                job_id,
                display,
                lambda job_id=job_id, job_name=job_name, config=config, requires=requires: (
                    self._lower_invocation(job_id, job_name, config, requires)
                ),
                source_path=f"workflows.{name}.jobs.{display}",
                fallback_dependencies=requires,
            )

    def _parse_trigger(self, workflow: str, trigger: Any) -> None:
        if not isinstance(trigger, dict) or "schedule" not in trigger:
            self._warn_ignored(f"Unrecognized trigger in workflow '{workflow}'", feature="trigger")
            return
        try:
            schedule = CircleScheduleTrigger.model_validate(trigger["schedule"])
        except ValidationError as e:
            self._warn_ignored(
                f"Invalid schedule trigger in workflow '{workflow}': "
                f"{summarize_validation_error(e)}",
                feature="scheduled-trigger",
            )
            return

        branches: tuple[str, ...] = ()
        if schedule.filters and schedule.filters.branches:
            branches = tuple(schedule.filters.branches.only)
        self.graph.schedules.append(
            Schedule(cron=schedule.cron, branches=branches, description=f"workflow {workflow}")
        )

    def _lower_invocation(
        self, job_id: str, job_name: str, config: Any, requires: list[str]
    ) -> JobNode:
        invocation = self._validate_unit(
            CircleWorkflowJob, config if isinstance(config, dict) else {}, job_id, job_name
        )

        if invocation.type == "approval":
            job = JobNode(
                id=job_id,
                label=_invocation_name(job_name, config),
                kind=JobKind.APPROVAL,
                approval=ApprovalGate(prompt=_invocation_name(job_name, config)),
            )
        else:
            job = self._lower_circle_job(job_id, job_name, invocation)

        for dep in requires:
            job.add_dependency(dep)

        self._apply_filters(job, invocation.filters)
        for context in invocation.context:
            job.secret_scopes.append(SecretScope(name=context, kind="context"))

        return job

    def _apply_filters(self, job: JobNode, filters: CircleFilters | None) -> None:
        if filters is None:
            return
        for kind, filter_set in (
            (PredicateKind.BRANCH, filters.branches),
            (PredicateKind.TAG, filters.tags),
        ):
            if filter_set is None:
                continue
            predicate = self._filter_predicate(kind, filter_set.only, filter_set.ignore, job.id)
            if predicate is not None:
                job.conditionals.append(predicate)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def _lower_circle_job(
        self, job_id: str, job_name: str, invocation: CircleWorkflowJob
    ) -> JobNode:
        raw = self.config.jobs.get(job_name)
        label = _invocation_name(job_name, invocation.model_dump(exclude_none=True))

        if raw is None:
            orb = job_name.split("/", 1)[0]
            if "/" in job_name and orb in self.config.orbs:
                return JobNode(
                    id=job_id,
                    label=label,
                    templates=[TemplateRef(name=job_name, reason="job defined by an orb")],
                )
            raise ParseError(
                f"workflow references undefined job '{job_name}'", job_id=job_id, feature="job"
            )
        if not isinstance(raw, dict):
            raise ParseError(f"jobs.{job_name}: expected a mapping", job_id=job_id, feature="job")

        matrix = self._lower_matrix(job_id, invocation)
        given = invocation.parameters
        if matrix is not None:
            given.update({name: matrix_ref(name) for name in matrix.dimension_names})
        values = self._parameter_values(job_id, raw.get("parameters"), given)

        substituted = substitute_parameters(
            {k: v for k, v in raw.items() if k != "parameters"}, values, job_id
        )
        spec = self._validate_unit(CircleJob, substituted, job_id, f"jobs.{job_name}")

        job = JobNode(id=job_id, label=label, matrix=matrix, parallelism=spec.parallelism)
        executor = self._resolve_executor(job, spec)

        job.environment = merge_env(executor.environment, spec.environment)
        if executor.docker:
            primary, *sidecars = executor.docker
            job.environment = merge_env(job.environment, primary.environment)
            job.container = ContainerSpec(
                image=primary.image,
                workdir=spec.working_directory or executor.working_directory,
                shell=spec.shell or executor.shell,
                user=primary.user,
            )
            for sidecar in sidecars:
                job.services.append(
                    ServiceContainer(
                        name=sidecar.name or sidecar.image.split("/")[-1].split(":")[0],
                        image=sidecar.image,
                        environment=tuple(sidecar.environment.items()),
                    )
                )

        job.resource_hint = spec.resource_class or executor.resource_class
        if job.resource_hint is None and (executor.machine or executor.macos):
            job.resource_hint = "machine" if executor.machine else "macos"

        self._lower_steps(job, spec.steps, depth=0)
        self._check_pipeline_values(job)
        return job

    def _parameter_values(
        self, job_id: str, declared: Any, given: dict[str, Any]
    ) -> dict[str, Any]:
        parameters = _declared_parameters(job_id, declared)
        values: dict[str, Any] = {}
        for name, parameter in parameters.items():
            if name in given:
                values[name] = given[name]
            elif parameter.default is not None:
                values[name] = parameter.default
        missing = [name for name in parameters if name not in values]
        if missing:
            raise ParseError(
                f"missing value for parameter(s) {', '.join(missing)}",
                job_id=job_id,
                feature="templated-job",
            )
        return values

    def _lower_matrix(self, job_id: str, invocation: CircleWorkflowJob) -> MatrixSpec | None:
        if invocation.matrix is None:
            return None
        dimensions = tuple(
            (str(name), tuple(to_scalar_string(v) for v in values))
            for name, values in invocation.matrix.parameters.items()
        )
        for name, values in dimensions:
            if not values:
                raise ParseError(
                    f"matrix parameter '{name}' has no values", job_id=job_id, feature="matrix"
                )
        adjustments = tuple(
            Adjustment(
                values=tuple((str(k), to_scalar_string(v)) for k, v in exclude.items()),
                skip=True,
            )
            for exclude in invocation.matrix.exclude
        )
        return MatrixSpec(dimensions=dimensions, adjustments=adjustments)

    def _resolve_executor(self, job: JobNode, spec: CircleJob) -> CircleExecutor:
        """Merge a named executor with the job's own environment settings."""
        if spec.executor is None:
            return spec

        if isinstance(spec.executor, str):
            name, arguments = spec.executor, {}
        else:
            name = str(spec.executor.get("name", ""))
            arguments = {k: v for k, v in spec.executor.items() if k != "name"}

        base = self.config.executors.get(name)
        if base is None:
            if "/" in name and name.split("/", 1)[0] in self.config.orbs:
                job.templates.append(TemplateRef(name=name, reason="executor defined by an orb"))
                return spec
            raise ParseError(f"undefined executor '{name}'", job_id=job.id, feature="container")

        if arguments:
            self._warn_ignored(
                f"Executor arguments {', '.join(arguments)} are not substituted",
                job_id=job.id,
                feature="container",
            )

        return CircleExecutor(
            docker=spec.docker or base.docker,
            machine=spec.machine or base.machine,
            macos=spec.macos or base.macos,
            resource_class=spec.resource_class or base.resource_class,
            working_directory=spec.working_directory or base.working_directory,
            environment=merge_env(base.environment, spec.environment),
            shell=spec.shell or base.shell,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _lower_steps(self, job: JobNode, steps: list[Any], depth: int) -> None:
        for index, step in enumerate(steps, start=1):
            if isinstance(step, list):
                # A substituted steps parameter
                self._lower_steps(job, step, depth)
                continue
            name, config = _step_entry(step)
            self._lower_step(job, name, config, index, depth)

    def _lower_step(self, job: JobNode, name: str, config: Any, index: int, depth: int) -> None:
        if name == "checkout":
            return

        if name == "run":
            self._lower_run(job, config, index)
        elif name in ("save_cache", "restore_cache"):
            self._lower_cache(job, name, config or {})
        elif name == "persist_to_workspace":
            config = config or {}
            root = str(config.get("root", ".")).rstrip("/")
            paths = tuple(
                path if root in ("", ".") else f"{root}/{path}"
                for path in _as_list(config.get("paths"))
            )
            job.artifacts = ArtifactSpec(
                produced=job.artifacts.produced + paths, consumed=job.artifacts.consumed
            )
        elif name == "attach_workspace":
            self._workspace_consumers.append(job.id)
        elif name in ("store_artifacts", "store_test_results"):
            path = str((config or {}).get("path", ""))
            if path:
                job.artifacts = ArtifactSpec(
                    produced=(*job.artifacts.produced, path), consumed=job.artifacts.consumed
                )
        elif name == "when":
            self._lower_when(job, config or {}, depth, negate=False)
        elif name == "unless":
            self._lower_when(job, config or {}, depth, negate=True)
        elif name in self.config.commands:
            self._expand_command(job, name, config or {}, depth)
        else:
            job.reusable_actions.append(
                ReusableAction(
                    ref=name,
                    label=name,
                    inputs=tuple(
                        (str(k), to_scalar_string(v)) for k, v in (config or {}).items()
                    )
                    if isinstance(config, dict)
                    else (),
                )
            )

    def _lower_run(self, job: JobNode, config: Any, index: int) -> None:
        if isinstance(config, str):
            job.commands.append(Command(label=step_label(None, index), run=config.rstrip("\n")))
            return
        if not isinstance(config, dict) or "command" not in config:
            raise ParseError("run step requires a command", job_id=job.id, feature="job")

        label = step_label(to_scalar_string(config.get("name")), index)
        script = str(config["command"]).rstrip("\n")
        environment = config.get("environment") or {}
        directory = config.get("working_directory")
        if environment or directory:
            lines = [f'export {k}="{to_scalar_string(v)}"' for k, v in environment.items()]
            if directory:
                lines.append(f"cd {directory}")
            lines.append(script)
            script = "(\n" + "\n".join(lines) + "\n)"

        if config.get("background"):
            script = f"{script} &"

        command = Command(label=label, run=script)
        if config.get("when") in ("always", "on_fail"):
            job.post_commands.append(command)
        else:
            job.commands.append(command)

    def _lower_cache(self, job: JobNode, name: str, config: dict[str, Any]) -> None:
        """Merge save/restore cache steps into one cache spec.

        The saved key is the primary key; restore keys become the fallback
        chain, most specific first.
        """
        if name == "save_cache":
            key = parse_cache_key(str(config.get("key", "")))
            paths = tuple(_as_list(config.get("paths")))
            fallbacks = job.cache.chain if job.cache is not None else ()
            job.cache = CacheSpec(
                key=key,
                paths=paths,
                fallbacks=tuple(k for k in fallbacks if k != key),
                name=config.get("name"),
            )
            return

        keys = [parse_cache_key(k) for k in _as_list(config.get("keys") or config.get("key"))]
        if not keys:
            raise ParseError(
                "restore_cache requires 'key' or 'keys'", job_id=job.id, feature="caching"
            )
        if job.cache is None:
            job.cache = CacheSpec(key=keys[0], paths=(), fallbacks=tuple(keys[1:]))
        else:
            chain = [job.cache.key, *job.cache.fallbacks]
            chain.extend(k for k in keys if k not in chain)
            job.cache = CacheSpec(
                key=job.cache.key,
                paths=job.cache.paths,
                fallbacks=tuple(chain[1:]),
                name=job.cache.name,
            )

    def _lower_when(self, job: JobNode, config: dict[str, Any], depth: int, negate: bool) -> None:
        """Resolve a conditional step block if its condition is static."""
        condition = config.get("condition")
        if isinstance(condition, str) and condition.strip().lower() in ("true", "false"):
            condition = condition.strip().lower() == "true"
        if isinstance(condition, bool):
            if condition != negate:
                self._lower_steps(job, config.get("steps") or [], depth)
            return
        job.templates.append(
            TemplateRef(
                name="unless" if negate else "when",
                reason=f"conditional steps depend on a run-time value: {condition}",
            )
        )

    def _expand_command(
        self, job: JobNode, name: str, arguments: dict[str, Any], depth: int
    ) -> None:
        """Inline a reusable command with its parameters substituted."""
        if depth >= _MAX_COMMAND_DEPTH:
            raise ParseError(
                f"reusable command '{name}' is nested too deeply (recursive?)",
                job_id=job.id,
                feature="templated-job",
            )
        try:
            command = CircleCommand.model_validate(self.config.commands[name])
        except ValidationError as e:
            raise ParseError(
                summarize_validation_error(e, prefix=f"commands.{name}"),
                job_id=job.id,
                feature="templated-job",
            ) from e

        values: dict[str, Any] = {}
        for param_name, parameter in command.parameters.items():
            if param_name in arguments:
                values[param_name] = arguments[param_name]
            elif parameter.default is not None:
                values[param_name] = parameter.default
        steps = substitute_parameters(command.steps, values, job.id)
        self._lower_steps(job, steps, depth + 1)

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _check_pipeline_values(self, job: JobNode) -> None:
        unresolved = sorted(
            {ref for cmd in job.commands for ref in _PIPELINE_VALUE_REF.findall(cmd.run)}
        )
        if unresolved:
            self._warn_ignored(
                f"Pipeline values {', '.join(unresolved)} have no literal value and are kept as is",
                job_id=job.id,
                feature="templated-job",
            )

    def _resolve_workspaces(self) -> None:
        """Consume artifacts of every upstream job that persists a workspace."""
        for job_id in self._workspace_consumers:
            job = self.graph.get_job(job_id)
            if job is None or not job.is_active:
                continue
            producers = [
                dep
                for dep in ancestors(self.graph, job_id)
                if self.graph.jobs[dep].artifacts.produced
            ]
            if not producers:
                self._warn_ignored(
                    "attach_workspace has no upstream job persisting a workspace",
                    job_id=job_id,
                    feature="artifact-passthrough",
                )
            consumed = tuple(dict.fromkeys((*job.artifacts.consumed, *producers)))
            job.artifacts = ArtifactSpec(produced=job.artifacts.produced, consumed=consumed)


def _invocation_name(job_name: str, config: Any) -> str:
    """Name a workflow invocation is referenced by in ``requires``."""
    if isinstance(config, dict):
        if config.get("name"):
            return to_scalar_string(config["name"])
        matrix = config.get("matrix")
        if isinstance(matrix, dict) and matrix.get("alias"):
            return str(matrix["alias"])
    return job_name


def _declared_parameters(job_id: str, declared: Any) -> dict[str, CircleParameter]:
    if not declared:
        return {}
    if not isinstance(declared, dict):
        raise ParseError("parameters must be a mapping", job_id=job_id, feature="templated-job")
    try:
        return {str(k): CircleParameter.model_validate(v or {}) for k, v in declared.items()}
    except ValidationError as e:
        raise ParseError(
            summarize_validation_error(e, prefix="parameters"),
            job_id=job_id,
            feature="templated-job",
        ) from e


def _pipeline_parameter_defaults(declared: Any) -> dict[str, Any]:
    if not isinstance(declared, dict):
        return {}
    return {
        str(name): spec["default"]
        for name, spec in declared.items()
        if isinstance(spec, dict) and "default" in spec
    }


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [to_scalar_string(v) for v in value]
    return [to_scalar_string(value)]
