"""Tests for the pipeline graph and job nodes."""

import pytest
from ci_translate.diagnostics.exceptions import StructuralError
from ci_translate.ir.features import (
    ApprovalGate,
    CacheKey,
    CacheKeyComponent,
    CacheKeyKind,
    CacheSpec,
    Command,
    ContainerSpec,
    FeatureKind,
    MatrixSpec,
    PipelineConstruct,
    Predicate,
    PredicateKind,
    Schedule,
)
from ci_translate.ir.graph import JobKind, JobNode, JobStatus, PipelineGraph


class TestJobNode:
    """Tests for JobNode."""

    def test_add_dependency_keeps_failure_tolerance(self) -> None:
        """Re-adding an edge never drops allow_failure."""
        job = JobNode(id="test", label="Test")
        job.add_dependency("build", allow_failure=True)
        job.add_dependency("build")
        assert job.depends_on["build"].allow_failure

    def test_remove_dependency(self) -> None:
        """Removing an edge returns it."""
        job = JobNode(id="test", label="Test")
        job.add_dependency("build")
        edge = job.remove_dependency("build")
        assert edge is not None and edge.job_id == "build"
        assert job.remove_dependency("build") is None

    def test_populated_features_order(self) -> None:
        """Populated slots are listed in fixed order; the matrix is excluded."""
        job = JobNode(
            id="test",
            label="Test",
            timeout_minutes=10,
            container=ContainerSpec(image="node:20"),
            matrix=MatrixSpec(dimensions=(("os", ("linux",)),)),
            conditionals=[Predicate(kind=PredicateKind.BRANCH, include=("main",))],
        )
        assert job.populated_features() == [
            FeatureKind.CONTAINER,
            FeatureKind.CONDITIONAL_BRANCH_FILTER,
            FeatureKind.TIMEOUT,
        ]

    def test_approval_kind_populates_manual_approval(self) -> None:
        """An approval job reports the manual-approval slot."""
        job = JobNode(id="hold", label="Hold", kind=JobKind.APPROVAL)
        assert job.populated_features() == [FeatureKind.MANUAL_APPROVAL]

    def test_mark_unsupported_clears_slots(self) -> None:
        """A failed job keeps id, label and edges but loses its features."""
        job = JobNode(
            id="build",
            label="Build",
            commands=[Command("step-1", "make")],
            cache=CacheSpec(
                key=CacheKey(components=(CacheKeyComponent(CacheKeyKind.LITERAL, "k"),)),
                paths=("x",),
            ),
            approval=ApprovalGate(prompt="ok?"),
        )
        job.add_dependency("setup")
        job.target.set("timeout_in_minutes", 5)

        job.mark_unsupported("broken")

        assert job.status == JobStatus.UNSUPPORTED
        assert job.status_reason == "broken"
        assert job.commands == []
        assert job.cache is None
        assert job.approval is None
        assert job.target.attributes == {}
        assert "setup" in job.depends_on
        assert not job.is_active
        assert job.is_emittable

    def test_mark_unsupported_can_drop_edges(self) -> None:
        """Cycle members lose their edges."""
        job = JobNode(id="a", label="A")
        job.add_dependency("b")
        job.mark_unsupported("cycle", keep_dependencies=False)
        assert job.depends_on == {}

    def test_placeholder(self) -> None:
        """Placeholders are unsupported stubs labeled by id by default."""
        stub = JobNode.placeholder("lint", "bad yaml")
        assert stub.label == "lint"
        assert stub.status == JobStatus.UNSUPPORTED
        assert stub.status_reason == "bad yaml"


class TestPipelineGraph:
    """Tests for PipelineGraph."""

    def test_duplicate_id_rejected(self, linear_graph: PipelineGraph) -> None:
        """Adding a job with a taken id raises E303."""
        with pytest.raises(StructuralError) as exc_info:
            linear_graph.add_job(JobNode(id="build", label="Again"))
        assert exc_info.value.code == "E303"

    def test_job_ids_in_source_order(self, linear_graph: PipelineGraph) -> None:
        """Jobs keep insertion order."""
        assert linear_graph.job_ids == ["build", "test", "deploy"]

    def test_unique_id(self, linear_graph: PipelineGraph) -> None:
        """unique_id appends the first free numeric suffix."""
        assert linear_graph.unique_id("lint") == "lint"
        assert linear_graph.unique_id("build") == "build-2"
        linear_graph.add_job(JobNode(id="build-2", label="Build 2"))
        assert linear_graph.unique_id("build") == "build-3"

    def test_insert_before(self, linear_graph: PipelineGraph) -> None:
        """insert_before places the job right before its anchor."""
        linear_graph.insert_before("deploy", JobNode(id="gate", label="Gate"))
        assert linear_graph.job_ids == ["build", "test", "gate", "deploy"]

    def test_insert_before_rejects_duplicate(self, linear_graph: PipelineGraph) -> None:
        """insert_before refuses a taken id."""
        with pytest.raises(StructuralError):
            linear_graph.insert_before("deploy", JobNode(id="test", label="Test"))

    def test_dependents_of(self, linear_graph: PipelineGraph) -> None:
        """dependents_of finds direct dependents only."""
        assert [j.id for j in linear_graph.dependents_of("build")] == ["test"]

    def test_emittable_and_active(self, linear_graph: PipelineGraph) -> None:
        """Expanded templates are hidden; unsupported jobs are emitted but inactive."""
        linear_graph.jobs["test"].status = JobStatus.EXPANDED
        linear_graph.jobs["deploy"].mark_unsupported("broken")
        assert [j.id for j in linear_graph.emittable_jobs()] == ["build", "deploy"]
        assert [j.id for j in linear_graph.active_jobs()] == ["build"]

    def test_pipeline_features(self) -> None:
        """Pipeline-level slots are reported in fixed order."""
        graph = PipelineGraph(
            global_env={"A": "1"},
            schedules=[Schedule(cron="0 3 * * *")],
            pipeline_constructs=[PipelineConstruct(summary="workflow_dispatch trigger")],
        )
        assert graph.populated_features() == [
            FeatureKind.SCHEDULED_TRIGGER,
            FeatureKind.GLOBAL_ENVIRONMENT,
            FeatureKind.PIPELINE_TRIGGER,
        ]
