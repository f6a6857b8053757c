"""Tests for the rule engine."""

import pytest
from ci_translate.diagnostics.errors import Severity
from ci_translate.diagnostics.exceptions import StructuralError, UnmappableFeatureError
from ci_translate.engine import RuleEngine, check_matrix_capacity
from ci_translate.ir.features import (
    ApprovalGate,
    Command,
    FeatureKind,
    MatrixSpec,
    Schedule,
    ServiceContainer,
)
from ci_translate.ir.graph import JobKind, JobNode, JobStatus, PipelineGraph
from ci_translate.rules import (
    BUILDKITE_PROFILE,
    Confidence,
    RuleRegistry,
    TranslationRule,
    load_registry,
)
from ci_translate.vendors import Vendor

PAIR = (Vendor.GITHUB_ACTIONS, Vendor.BUILDKITE)


def _engine(*rules: TranslationRule, **kwargs: bool) -> RuleEngine:
    if rules:
        return RuleEngine(RuleRegistry(BUILDKITE_PROFILE, rules, [Vendor.GITHUB_ACTIONS]), **kwargs)
    return RuleEngine(load_registry(Vendor.BUILDKITE), **kwargs)


def _set_timeout(job: JobNode, ctx: object) -> None:
    job.target.set("timeout_in_minutes", job.timeout_minutes)


def _codes(result: object) -> list[str]:
    return [d.code for d in result.diagnostics]  # type: ignore[attr-defined]


class TestNormalization:
    """Tests for the structural phase."""

    def test_clean_graph_has_no_diagnostics(self, linear_graph: PipelineGraph) -> None:
        """A graph with nothing but commands translates silently."""
        result = _engine().apply(linear_graph, PAIR)
        assert result.graph is linear_graph
        assert result.diagnostics == ()

    def test_dangling_edge(self, linear_graph: PipelineGraph) -> None:
        """An edge to an unknown job fails only that job."""
        linear_graph.jobs["test"].add_dependency("ghost")
        result = _engine().apply(linear_graph, PAIR)

        assert _codes(result) == ["E301"]
        assert result.diagnostics[0].job_id == "test"
        test = linear_graph.jobs["test"]
        assert test.status == JobStatus.UNSUPPORTED
        assert test.status_reason == "Depends on unknown job 'ghost'"
        assert list(test.depends_on) == ["build"]
        assert linear_graph.jobs["deploy"].status == JobStatus.OK

    def test_cycle_members_fail(self) -> None:
        """Every cycle member becomes a stub without edges."""
        graph = PipelineGraph(source_vendor=Vendor.GITHUB_ACTIONS)
        for job_id, dep in (("a", "b"), ("b", "a"), ("c", "a")):
            job = JobNode(id=job_id, label=job_id, commands=[Command("step-1", "true")])
            job.add_dependency(dep)
            graph.add_job(job)

        result = _engine().apply(graph, PAIR)

        assert _codes(result) == ["E300", "E300"]
        assert [d.job_id for d in result.diagnostics] == ["a", "b"]
        assert result.diagnostics[0].message == "Job is part of a dependency cycle: a -> b"
        assert graph.jobs["a"].depends_on == {}
        assert graph.jobs["c"].status == JobStatus.OK
        assert list(graph.jobs["c"].depends_on) == ["a"]

    def test_approval_gate_inserted(self, linear_graph: PipelineGraph) -> None:
        """A job needing approval waits on a block step placed before it."""
        linear_graph.jobs["deploy"].approval = ApprovalGate(prompt="Ship it?")
        result = _engine().apply(linear_graph, PAIR)

        assert result.diagnostics == ()
        assert linear_graph.job_ids == ["build", "test", "deploy-approval", "deploy"]
        gate = linear_graph.jobs["deploy-approval"]
        deploy = linear_graph.jobs["deploy"]
        assert gate.kind == JobKind.APPROVAL
        assert gate.label == "Approve Deploy"
        assert list(gate.depends_on) == ["test"]
        assert list(deploy.depends_on) == ["deploy-approval"]
        assert deploy.approval is None
        assert gate.target.attributes == {"block": "Approve Deploy", "prompt": "Ship it?"}

    def test_wrong_target(self, linear_graph: PipelineGraph) -> None:
        """The vendor pair must name the registry's target."""
        with pytest.raises(ValueError, match="not GitLab CI"):
            _engine().apply(linear_graph, (Vendor.GITHUB_ACTIONS, Vendor.GITLAB))


class TestRuleSelection:
    """Tests for rule selection and degradation diagnostics."""

    def test_unmappable_feature(self, linear_graph: PipelineGraph) -> None:
        """A slot without rules is reported and commented, the job survives."""
        linear_graph.jobs["build"].timeout_minutes = 30
        engine = RuleEngine(RuleRegistry(BUILDKITE_PROFILE, [], [Vendor.GITHUB_ACTIONS]))
        result = engine.apply(linear_graph, PAIR)

        (diagnostic,) = result.diagnostics
        assert diagnostic.code == "E200"
        assert diagnostic.severity == Severity.ERROR
        assert diagnostic.job_id == "build"
        assert diagnostic.message == (
            "No Buildkite rule translates timeout from GitHub Actions: timeout 30 minutes"
        )
        build = linear_graph.jobs["build"]
        assert build.status == JobStatus.OK
        assert build.target.comments[0].confidence == "unmapped"

    def test_approximate_rule_warns(self, linear_graph: PipelineGraph) -> None:
        """Approximate rules raise W100 with their instruction."""
        linear_graph.jobs["build"].resource_hint = "large"
        result = _engine().apply(linear_graph, PAIR)

        (diagnostic,) = result.diagnostics
        assert diagnostic.code == "W100"
        assert diagnostic.message == (
            "executor-sizing translated with approximate rule 'agent-queue': runs on large"
        )
        assert diagnostic.instruction == "Create an agent queue named 'large' with matching agents"
        build = linear_graph.jobs["build"]
        assert build.target.attributes == {"agents": {"queue": "large"}}
        assert build.target.comments[0].confidence == "approximate"

    def test_manual_rule_warns(self, linear_graph: PipelineGraph) -> None:
        """Manual rules raise W101."""
        linear_graph.jobs["test"].services = [ServiceContainer(name="db", image="postgres:16")]
        result = _engine().apply(linear_graph, PAIR)
        assert _codes(result) == ["W101"]
        assert result.diagnostics[0].feature == "service-container"

    def test_pipeline_level_rule(self, linear_graph: PipelineGraph) -> None:
        """Pipeline slots produce diagnostics without a job id."""
        linear_graph.schedules = [Schedule(cron="0 3 * * *")]
        result = _engine().apply(linear_graph, PAIR)

        (diagnostic,) = result.diagnostics
        assert diagnostic.code == "W101"
        assert diagnostic.job_id is None
        assert diagnostic.message == (
            "scheduled-trigger translated with manual rule 'pipeline-schedule': "
            "schedules cron '0 3 * * *'"
        )
        assert len(linear_graph.target.comments) == 1

    def test_ambiguous_native_rules(self, linear_graph: PipelineGraph) -> None:
        """Two native candidates warn and the first by priority wins."""
        linear_graph.jobs["build"].timeout_minutes = 5
        first = TranslationRule("first", FeatureKind.TIMEOUT, Confidence.NATIVE, _set_timeout)
        second = TranslationRule("second", FeatureKind.TIMEOUT, Confidence.NATIVE, _set_timeout)
        result = _engine(first, second).apply(linear_graph, PAIR)

        assert _codes(result) == ["W102"]
        assert result.diagnostics[0].message == (
            "Rules 'first', 'second' all translate timeout natively; using 'first'"
        )

    def test_higher_confidence_wins(self, linear_graph: PipelineGraph) -> None:
        """A native rule beats an approximate one regardless of priority."""
        linear_graph.jobs["build"].timeout_minutes = 5
        rough = TranslationRule(
            "rough", FeatureKind.TIMEOUT, Confidence.APPROXIMATE, _set_timeout, priority=1
        )
        exact = TranslationRule("exact", FeatureKind.TIMEOUT, Confidence.NATIVE, _set_timeout)
        result = _engine(rough, exact).apply(linear_graph, PAIR)
        assert result.diagnostics == ()

    def test_failing_rule_isolated_to_job(self, linear_graph: PipelineGraph) -> None:
        """A rule raising for one job leaves the other jobs translated."""

        def explode(job: JobNode, ctx: object) -> None:
            raise UnmappableFeatureError("cannot", job_id=job.id, feature="timeout")

        linear_graph.jobs["build"].timeout_minutes = 5
        linear_graph.jobs["deploy"].timeout_minutes = 5
        rule = TranslationRule("explode", FeatureKind.TIMEOUT, Confidence.NATIVE, explode)
        result = _engine(rule).apply(linear_graph, PAIR)

        assert _codes(result) == ["E200", "E200"]
        assert linear_graph.jobs["build"].status == JobStatus.UNSUPPORTED
        assert linear_graph.jobs["test"].status == JobStatus.OK


class TestMatrices:
    """Tests for matrix handling."""

    MATRIX = MatrixSpec(dimensions=(("os", ("linux", "macos")),))

    def test_capacity_check_message(self) -> None:
        """Every exceeded limit is listed."""
        matrix = MatrixSpec(
            dimensions=(
                *((f"d{i}", ("x",)) for i in range(7)),
                ("v", tuple(str(i) for i in range(21))),
            )
        )
        with pytest.raises(StructuralError) as exc_info:
            check_matrix_capacity("test", matrix, BUILDKITE_PROFILE.matrix_limits)
        assert exc_info.value.code == "E302"
        assert exc_info.value.message == (
            "Matrix exceeds target capacity: 8 dimensions (limit 6); "
            "21 values for 'v' (limit 20)"
        )

    def test_over_capacity_fails_job(self, linear_graph: PipelineGraph) -> None:
        """A matrix over capacity is never truncated; the job becomes a stub."""
        linear_graph.jobs["test"].matrix = MatrixSpec(
            dimensions=tuple((f"d{i}", ("x",)) for i in range(7))
        )
        result = _engine().apply(linear_graph, PAIR)
        assert _codes(result) == ["E302"]
        assert linear_graph.jobs["test"].status == JobStatus.UNSUPPORTED

    def test_native_matrix(self, linear_graph: PipelineGraph) -> None:
        """Rectangular matrices stay a single step."""
        linear_graph.jobs["test"].matrix = self.MATRIX
        _engine().apply(linear_graph, PAIR)
        assert linear_graph.job_ids == ["build", "test", "deploy"]
        assert linear_graph.jobs["test"].target.attributes["matrix"] == {
            "setup": {"os": ["linux", "macos"]}
        }

    def test_duplication(self, linear_graph: PipelineGraph) -> None:
        """Without native matrices each combination is its own job."""
        linear_graph.jobs["test"].matrix = self.MATRIX
        linear_graph.jobs["test"].timeout_minutes = 10
        _engine(prefer_native_matrix=False).apply(linear_graph, PAIR)

        assert [j.id for j in linear_graph.emittable_jobs()] == [
            "build",
            "test-linux",
            "test-macos",
            "deploy",
        ]
        assert list(linear_graph.jobs["deploy"].depends_on) == ["test-linux", "test-macos"]
        duplicate = linear_graph.jobs["test-macos"]
        assert duplicate.target.attributes == {"timeout_in_minutes": 10}
