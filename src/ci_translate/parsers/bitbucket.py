"""Bitbucket Pipelines parser."""

from __future__ import annotations

from typing import Any

from ci_translate.diagnostics.exceptions import ParseError
from ci_translate.ir.features import (
    ApprovalGate,
    ArtifactSpec,
    CacheKey,
    CacheKeyComponent,
    CacheKeyKind,
    CacheSpec,
    Command,
    ContainerSpec,
    PipelineConstruct,
    Predicate,
    PredicateKind,
    ReusableAction,
    SecretScope,
    ServiceContainer,
)
from ci_translate.ir.graph import JobNode
from ci_translate.ir.ops import ancestors
from ci_translate.models.bitbucket import (
    BitbucketCacheDefinition,
    BitbucketConfig,
    BitbucketStep,
)
from ci_translate.models.common import to_scalar_string
from ci_translate.parsers.base import (
    DialectParser,
    chain_groups,
    require_mapping,
    slugify,
    step_label,
)
from ci_translate.vendors import Vendor

# Paths of Bitbucket's predefined caches
PREDEFINED_CACHES: dict[str, str] = {
    "composer": "~/.composer/cache",
    "dotnetcore": "~/.nuget/packages",
    "gradle": "~/.gradle/caches",
    "ivy2": "~/.ivy2/cache",
    "maven": "~/.m2/repository",
    "node": "node_modules",
    "pip": "~/.cache/pip",
    "sbt": "~/.sbt",
    "docker": "/var/lib/docker",
}

_SECTIONS = frozenset({"default", "branches", "tags", "pull-requests", "custom"})


class BitbucketParser(DialectParser):
    """Parse ``bitbucket-pipelines.yml``.

    Every pipeline section (default, branches, tags, pull requests,
    custom) becomes a chain of jobs guarded by the section's predicate.
    Parallel groups share the previous group's dependencies; stage steps
    run in sequence.
    """

    vendor = Vendor.BITBUCKET

    def _parse(self, raw_text: str) -> None:
        data = self._load_yaml(raw_text)
        self.config = self._validate_document(BitbucketConfig, data)
        definitions = self.config.definitions
        self._cache_definitions = definitions.caches if definitions else {}
        self._service_definitions = definitions.services if definitions else {}
        self._no_download: set[str] = set()

        pipelines = self.config.pipelines
        sections = {
            name: require_mapping(pipelines.get(name), f"pipelines.{name}")
            for name in ("branches", "tags", "pull-requests", "custom")
        }
        branch_patterns = [str(p) for p in sections["branches"]]

        if "default" in pipelines:
            guard = [Predicate(kind=PredicateKind.BRANCH, exclude=tuple(branch_patterns))]
            self._parse_section(
                "default", "", pipelines["default"], guard if branch_patterns else []
            )

        for section, kind in (("branches", PredicateKind.BRANCH), ("tags", PredicateKind.TAG)):
            for pattern, items in sections[section].items():
                guard = [Predicate(kind=kind, include=(str(pattern),))]
                self._parse_section(f"{section}.{pattern}", str(pattern), items, guard)

        for pattern, items in sections["pull-requests"].items():
            guard = [Predicate(kind=PredicateKind.EVENT, include=("pull_request",))]
            if pattern != "**":
                guard.append(Predicate(kind=PredicateKind.BRANCH, include=(str(pattern),)))
            self._parse_section(f"pull-requests.{pattern}", f"pr-{pattern}", items, guard)

        for name, items in sections["custom"].items():
            guard = [Predicate(kind=PredicateKind.EVENT, include=("manual",))]
            self._parse_section(f"custom.{name}", str(name), items, guard)

        for section in pipelines:
            if section in _SECTIONS:
                continue
            self._warn_ignored(f"Unknown pipeline section '{section}'", feature="pipeline")

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _parse_section(
        self, path: str, prefix: str, items: Any, guard: list[Predicate]
    ) -> None:
        if not isinstance(items, list):
            self._warn_ignored(f"Pipeline '{path}' is not a list of steps", feature="pipeline")
            return

        groups: list[list[str]] = []
        for position, item in enumerate(items):
            item_path = f"pipelines.{path}[{position}]"
            if not isinstance(item, dict) or len(item) != 1:
                self._warn_ignored(
                    f"{item_path}: expected step, parallel or stage", feature="pipeline"
                )
                continue
            kind, body = next(iter(item.items()))
            # 1-based position of the next step in the section
            index = sum(len(g) for g in groups) + 1

            if kind == "step":
                groups.append([self._add_step(body, prefix, guard, item_path, index)])
            elif kind == "parallel":
                steps = body.get("steps") if isinstance(body, dict) else body
                if not isinstance(steps, list):
                    groups.append(
                        [self._add_invalid(prefix, f"{item_path}.parallel", index, steps)]
                    )
                    continue
                groups.append(
                    [
                        self._add_step(
                            entry.get("step") if isinstance(entry, dict) else entry,
                            prefix,
                            guard,
                            f"{item_path}.parallel[{i}]",
                            index + i,
                        )
                        for i, entry in enumerate(steps)
                    ]
                )
            elif kind == "stage":
                groups.extend(self._parse_stage(body, prefix, guard, item_path, index))
            elif kind == "variables":
                entries = body if isinstance(body, list) else []
                names = [str(v.get("name")) for v in entries if isinstance(v, dict)]
                self.graph.pipeline_constructs.append(
                    PipelineConstruct(
                        summary=f"custom pipeline '{prefix}' prompts for variables",
                        detail=", ".join(names),
                    )
                )
            else:
                self._warn_ignored(f"{item_path}: unknown item '{kind}'", feature="pipeline")

        chain_groups(self.graph, groups)
        self._resolve_artifacts([job_id for group in groups for job_id in group])

    def _parse_stage(
        self, body: Any, prefix: str, guard: list[Predicate], path: str, index: int
    ) -> list[list[str]]:
        if not isinstance(body, dict):
            self._warn_ignored(f"{path}: stage must be a mapping", feature="pipeline")
            return []

        stage_name = to_scalar_string(body.get("name"))
        job_prefix = "-".join(p for p in (prefix, stage_name) if p)

        steps = body.get("steps") or []
        if not isinstance(steps, list):
            return [[self._add_invalid(job_prefix, f"{path}.stage.steps", index, steps)]]

        groups: list[list[str]] = []
        for i, entry in enumerate(steps):
            raw = entry.get("step") if isinstance(entry, dict) else entry
            if isinstance(raw, dict):
                raw = dict(raw)
                if body.get("deployment"):
                    raw.setdefault("deployment", body["deployment"])
                if body.get("condition") is not None:
                    raw.setdefault("condition", body["condition"])
                if i == 0 and body.get("trigger") == "manual":
                    raw["trigger"] = "manual"
            groups.append(
                [self._add_step(raw, job_prefix, guard, f"{path}.stage.steps[{i}]", index + i)]
            )
        return groups

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _add_step(
        self, raw: Any, prefix: str, guard: list[Predicate], path: str, index: int
    ) -> str:
        name = to_scalar_string(raw.get("name")) if isinstance(raw, dict) else ""
        label = step_label(name, index)
        job_id = self.graph.unique_id(
            slugify(f"{prefix}-{label}" if prefix else label, fallback=f"step-{index}")
        )
        job = self._lower_job(
            job_id,
            label,
            lambda: self._lower_step(job_id, label, raw, guard, path),
            source_path=path,
        )
        return job.id

    def _add_invalid(self, prefix: str, path: str, index: int, steps: Any) -> str:
        """Stand in for a step group whose ``steps`` is not a list."""
        label = step_label(None, index)
        job_id = self.graph.unique_id(
            slugify(f"{prefix}-{label}" if prefix else label, fallback=f"step-{index}")
        )
        error = ParseError(
            f"{path}: expected a list of steps, got {type(steps).__name__}", feature="job"
        )
        return self._lower_invalid(job_id, label, error, path).id

    def _lower_step(
        self, job_id: str, label: str, raw: Any, guard: list[Predicate], path: str
    ) -> JobNode:
        step = self._validate_unit(BitbucketStep, raw, job_id, path)
        options = self.config.options

        job = JobNode(id=job_id, label=label, conditionals=list(guard))

        image = step.image or self.config.image
        if image is not None:
            job.container = ContainerSpec(
                image=image.name,
                user=str(image.run_as_user) if image.run_as_user is not None else None,
            )

        for entry in step.script:
            self._lower_script_entry(job, label, entry, post=False)
        for entry in step.after_script:
            self._lower_script_entry(job, label, entry, post=True)

        if step.caches:
            job.cache = self._lower_caches(job_id, step.caches)

        for service in step.services:
            self._lower_service(job, service)

        if step.artifacts is not None and step.artifacts.paths:
            job.artifacts = ArtifactSpec(produced=tuple(step.artifacts.paths))
        if step.artifacts is not None and step.artifacts.download is False:
            self._no_download.add(job_id)

        if step.trigger == "manual":
            job.approval = ApprovalGate(prompt=f"Run {label}?", environment=step.deployment)
        if step.deployment:
            job.secret_scopes.append(SecretScope(name=step.deployment, kind="deployment"))

        if step.runs_on:
            job.resource_hint = ",".join(step.runs_on)
        else:
            job.resource_hint = step.size or (options.size if options else None)

        job.timeout_minutes = step.max_time or (options.max_time if options else None)

        if step.condition is not None and step.condition.changesets:
            include = step.condition.changesets.get("includePaths", [])
            exclude = step.condition.changesets.get("excludePaths", [])
            predicate = self._filter_predicate(PredicateKind.PATH, include, exclude, job_id)
            if predicate is not None:
                job.conditionals.append(predicate)

        return job

    def _lower_script_entry(self, job: JobNode, label: str, entry: Any, post: bool) -> None:
        if isinstance(entry, dict) and "pipe" in entry:
            variables = entry.get("variables") or {}
            job.reusable_actions.append(
                ReusableAction(
                    ref=str(entry["pipe"]),
                    label=label,
                    inputs=tuple((str(k), to_scalar_string(v)) for k, v in variables.items()),
                )
            )
            return
        if not isinstance(entry, str | int | float):
            raise ParseError(
                f"script entries must be commands or pipes, got {entry!r}",
                job_id=job.id,
                feature="job",
            )
        command = Command(label=label, run=to_scalar_string(entry).rstrip("\n"))
        (job.post_commands if post else job.commands).append(command)

    def _lower_caches(self, job_id: str, names: list[str]) -> CacheSpec:
        """Combine a step's caches into one cache spec keyed by their names."""
        paths: list[str] = []
        components: list[CacheKeyComponent] = [
            CacheKeyComponent(CacheKeyKind.LITERAL, "-".join(names))
        ]
        for name in names:
            definition = self._cache_definitions.get(name)
            if isinstance(definition, str):
                paths.append(definition)
            elif isinstance(definition, BitbucketCacheDefinition):
                paths.append(definition.path)
                if definition.key is not None:
                    components.append(CacheKeyComponent(CacheKeyKind.LITERAL, "-"))
                    components.extend(
                        CacheKeyComponent(CacheKeyKind.FILE_HASH, f) for f in definition.key.files
                    )
            elif name in PREDEFINED_CACHES:
                paths.append(PREDEFINED_CACHES[name])
            else:
                raise ParseError(f"undefined cache '{name}'", job_id=job_id, feature="caching")

        key = CacheKey(components=tuple(components))
        fallbacks: tuple[CacheKey, ...] = ()
        if key.hashed_files:
            fallbacks = (CacheKey(components=(components[0],)),)
        return CacheSpec(key=key, paths=tuple(paths), fallbacks=fallbacks, name=",".join(names))

    def _lower_service(self, job: JobNode, name: str) -> None:
        definition = self._service_definitions.get(name)
        if definition is None:
            if name == "docker":
                self._warn_ignored(
                    "The docker service is implicit on most agents and is not translated",
                    job_id=job.id,
                    feature="service-container",
                )
                return
            raise ParseError(
                f"undefined service '{name}'", job_id=job.id, feature="service-container"
            )
        job.services.append(
            ServiceContainer(
                name=name,
                image=definition.image.name,
                environment=tuple(
                    (k, to_scalar_string(v)) for k, v in definition.variables.items()
                ),
            )
        )

    def _resolve_artifacts(self, job_ids: list[str]) -> None:
        """Steps receive the artifacts of every earlier step of the section."""
        section = set(job_ids)
        for job_id in job_ids:
            job = self.graph.get_job(job_id)
            if job is None or not job.is_active or job_id in self._no_download:
                continue
            producers = [
                dep
                for dep in ancestors(self.graph, job_id)
                if dep in section and self.graph.jobs[dep].artifacts.produced
            ]
            if producers:
                job.artifacts = ArtifactSpec(
                    produced=job.artifacts.produced, consumed=tuple(producers)
                )
