"""Buildkite pipeline emitter."""

from __future__ import annotations

import json
import re
import shlex
from typing import Any

from ci_translate.diagnostics.errors import DiagnosticCodes, DiagnosticCollector
from ci_translate.diagnostics.exceptions import EmissionInvariantError
from ci_translate.emitters.base import EmitResult, TargetEmitter, render_comment
from ci_translate.emitters.yaml_writer import dump_document
from ci_translate.ir.graph import JobKind, JobNode, JobStatus, PipelineGraph
from ci_translate.ir.ops import topological_order
from ci_translate.rules.buildkite import PROFILE
from ci_translate.rules.registry import TargetProfile
from ci_translate.vendors import Vendor

MAX_SKIP_REASON = 70

_ANCHOR_INVALID = re.compile(r"[^A-Za-z0-9_-]+")


class BuildkiteEmitter(TargetEmitter):
    """Write an annotated graph as a Buildkite pipeline.

    Steps follow the topological order of the graph, ties broken by source
    order. Plugin entries used by more than one step are written once
    under the ``common`` section and referenced by alias.

    Usage:
        emitter = BuildkiteEmitter()
        result = emitter.emit(graph)
        print(result.text)
    """

    vendor = Vendor.BUILDKITE

    def __init__(self, profile: TargetProfile = PROFILE, section_markers: bool = True) -> None:
        """Initialize the emitter.

        Args:
        ----
            profile: Target profile with key order and allowed root keys.
            section_markers: Write a banner and a marker comment per step.
                Degradation comments are always written.

        """
        self.profile = profile
        self.section_markers = section_markers

    def emit(self, graph: PipelineGraph) -> EmitResult:
        """Write the graph as a Buildkite pipeline document."""
        diagnostics = DiagnosticCollector()
        top_level = self._top_level(graph, diagnostics)
        hoisted = top_level.get("env", {})

        steps: list[dict[str, Any]] = []
        comments: list[list[str]] = []
        for job_id in topological_order(graph):
            job = graph.jobs[job_id]
            try:
                step = self._step(job, hoisted, diagnostics)
            except EmissionInvariantError as e:
                diagnostics.record(e)
                job.mark_unsupported(e.message)
                step = self._skipped_step(job)
            steps.append(step)
            comments.append(self._step_comments(job))

        common, anchors = self._share_plugins(steps)
        document: dict[str, Any] = {}
        for key in self.profile.top_level_order:
            if key == self.profile.anchor_section and common:
                document[key] = common
            elif key == "steps":
                document[key] = steps
            elif key in top_level:
                document[key] = top_level[key]

        text = dump_document(document, anchors)
        return EmitResult(
            text=self._with_comments(text, self._header(graph), comments),
            diagnostics=diagnostics.freeze(),
        )

    # ------------------------------------------------------------------
    # Document
    # ------------------------------------------------------------------

    def _top_level(self, graph: PipelineGraph, diagnostics: DiagnosticCollector) -> dict[str, Any]:
        top_level: dict[str, Any] = {}
        reserved = {self.profile.anchor_section, "steps"}
        for key, value in graph.target.attributes.items():
            if key not in self.profile.allowed_top_level_keys or key in reserved:
                diagnostics.warning(
                    DiagnosticCodes.W201_STRIPPED_TOP_LEVEL_KEY,
                    f"Top-level key '{key}' is not allowed in a Buildkite pipeline; removed",
                    feature=key,
                )
                continue
            top_level[key] = value
        return top_level

    def _header(self, graph: PipelineGraph) -> list[str]:
        lines: list[str] = []
        if self.section_markers:
            source = graph.source_vendor.display_name if graph.source_vendor else "unknown"
            lines.append(f"# Translated from {source} to Buildkite by ci-translate")
            if graph.name:
                lines.append(f"# Pipeline: {graph.name}")
        for comment in graph.target.comments:
            lines.extend(render_comment(comment))
        return lines

    def _step_comments(self, job: JobNode) -> list[str]:
        lines: list[str] = []
        if self.section_markers:
            lines.append(f"# --- {job.label}")
        if job.status == JobStatus.UNSUPPORTED:
            lines.append(f"# not translated: {' '.join((job.status_reason or '').split())}")
        for comment in job.target.comments:
            lines.extend(render_comment(comment))
        return lines

    @staticmethod
    def _with_comments(text: str, header: list[str], step_comments: list[list[str]]) -> str:
        """Insert comment lines before the document and before each step item."""
        out = list(header)
        in_steps = False
        index = 0
        for line in text.splitlines():
            if line.startswith("steps:"):
                in_steps = True
            elif in_steps and line.startswith("  - "):
                if index < len(step_comments):
                    out.extend("  " + comment for comment in step_comments[index])
                index += 1
            out.append(line)
        return "\n".join(out) + "\n"

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step(
        self, job: JobNode, hoisted: dict[str, str], diagnostics: DiagnosticCollector
    ) -> dict[str, Any]:
        if job.status == JobStatus.UNSUPPORTED:
            return self._skipped_step(job)

        attributes = dict(job.target.attributes)
        if job.kind == JobKind.APPROVAL:
            step: dict[str, Any] = {"block": attributes.pop("block", job.label), "key": job.id}
        else:
            step = {"label": job.label, "key": job.id}

        depends_on = _depends_on(job)
        if depends_on:
            step["depends_on"] = depends_on
        step.update(attributes)

        if job.kind == JobKind.APPROVAL:
            return self._ordered(step)

        env = {k: v for k, v in job.environment.items() if hoisted.get(k) != v}
        if env:
            step["env"] = env
        plugins = self._plugins(job, diagnostics)
        if plugins:
            step["plugins"] = plugins
        commands = [
            *job.target.commands_before,
            *(command.run for command in job.commands),
            *job.target.commands_after,
        ]
        if commands:
            step["commands"] = commands
        if not commands and not plugins:
            raise EmissionInvariantError(
                "Command step has neither commands nor plugins",
                job_id=job.id,
                feature="commands",
            )
        return self._ordered(step)

    def _skipped_step(self, job: JobNode) -> dict[str, Any]:
        step: dict[str, Any] = {"label": job.label, "key": job.id}
        depends_on = _depends_on(job)
        if depends_on:
            step["depends_on"] = depends_on
        step["commands"] = [f"echo {shlex.quote(f'Not translated: {job.label}')}"]
        step["skip"] = _skip_reason(job.status_reason or "not translated")
        return self._ordered(step)

    def _plugins(self, job: JobNode, diagnostics: DiagnosticCollector) -> list[dict[str, Any]]:
        plugins = []
        for name, config in job.target.plugins:
            plain, _, version = name.partition("#")
            if version:
                diagnostics.warning(
                    DiagnosticCodes.W200_STRIPPED_VERSION_PIN,
                    f"Version pin '#{version}' removed from plugin '{plain}'",
                    job_id=job.id,
                    feature="plugins",
                )
            plugins.append({plain: config})
        return plugins

    def _ordered(self, step: dict[str, Any]) -> dict[str, Any]:
        order = self.profile.step_key_order
        known = [key for key in order if key in step]
        extra = [key for key in step if key not in order]
        return {key: step[key] for key in known + extra}

    def _share_plugins(
        self, steps: list[dict[str, Any]]
    ) -> tuple[dict[str, Any], dict[int, str]]:
        """Replace plugin entries repeated across steps with one shared object.

        Returns
        -------
            The ``common`` section (anchor name -> entry) and the anchor
            names keyed by ``id()`` of the shared entries.

        """
        first_use: dict[str, tuple[str, dict[str, Any]]] = {}
        counts: dict[str, int] = {}
        for step in steps:
            for entry in step.get("plugins", []):
                canonical = json.dumps(entry, sort_keys=True, default=str)
                counts[canonical] = counts.get(canonical, 0) + 1
                first_use.setdefault(canonical, (step["key"], entry))

        common: dict[str, Any] = {}
        anchors: dict[int, str] = {}
        shared: dict[str, dict[str, Any]] = {}
        for canonical, (job_id, entry) in first_use.items():
            if counts[canonical] < 2:
                continue
            base = _ANCHOR_INVALID.sub("-", f"{job_id}-{next(iter(entry))}")
            name = base
            n = 2
            while name in common:
                name = f"{base}-{n}"
                n += 1
            common[name] = entry
            anchors[id(entry)] = name
            shared[canonical] = entry

        if shared:
            for step in steps:
                if "plugins" in step:
                    step["plugins"] = [
                        shared.get(json.dumps(entry, sort_keys=True, default=str), entry)
                        for entry in step["plugins"]
                    ]
        return common, anchors


def _depends_on(job: JobNode) -> list[Any]:
    deps: list[Any] = []
    for dep_id, edge in job.depends_on.items():
        if edge.allow_failure:
            deps.append({"step": dep_id, "allow_failure": True})
        else:
            deps.append(dep_id)
    return deps


def _skip_reason(reason: str) -> str:
    reason = " ".join(reason.split())
    if len(reason) <= MAX_SKIP_REASON:
        return reason
    return reason[: MAX_SKIP_REASON - 3] + "..."
