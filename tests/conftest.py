"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from ci_translate.ir.features import Command
from ci_translate.ir.graph import JobNode, PipelineGraph
from ci_translate.vendors import Vendor

from tests.fixtures.sample_pipelines import (
    BITBUCKET_PIPELINE,
    CIRCLECI_CONFIG,
    GITHUB_WORKFLOW,
    GITLAB_PIPELINE,
    JENKINSFILE,
)


@pytest.fixture
def github_workflow() -> str:
    """GitHub Actions workflow with cache, artifacts, matrix and a branch filter."""
    return GITHUB_WORKFLOW


@pytest.fixture
def gitlab_pipeline() -> str:
    """GitLab CI pipeline with three stages and a manual deploy."""
    return GITLAB_PIPELINE


@pytest.fixture
def circleci_config() -> str:
    """CircleCI config with a cache chain, a workspace and an approval job."""
    return CIRCLECI_CONFIG


@pytest.fixture
def bitbucket_pipeline() -> str:
    """Bitbucket pipeline with a parallel group and a manual branch deployment."""
    return BITBUCKET_PIPELINE


@pytest.fixture
def jenkinsfile() -> str:
    """Declarative Jenkinsfile with a stash and an input gate."""
    return JENKINSFILE


@pytest.fixture
def github_file(tmp_path: Path) -> Path:
    """Write the GitHub sample where the filename classifier recognizes it."""
    path = tmp_path / ".github" / "workflows" / "ci.yml"
    path.parent.mkdir(parents=True)
    path.write_text(GITHUB_WORKFLOW)
    return path


@pytest.fixture
def linear_graph() -> PipelineGraph:
    """Graph build -> test -> deploy with one command per job."""
    graph = PipelineGraph(source_vendor=Vendor.GITHUB_ACTIONS, name="linear")
    graph.add_job(JobNode(id="build", label="Build", commands=[Command("step-1", "make")]))
    test = JobNode(id="test", label="Test", commands=[Command("step-1", "make test")])
    test.add_dependency("build")
    graph.add_job(test)
    deploy = JobNode(id="deploy", label="Deploy", commands=[Command("step-1", "./deploy.sh")])
    deploy.add_dependency("test")
    graph.add_job(deploy)
    return graph
