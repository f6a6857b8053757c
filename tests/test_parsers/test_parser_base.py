"""Tests for the shared parser machinery."""

from typing import ClassVar

import pytest
from ci_translate.diagnostics.errors import Severity
from ci_translate.diagnostics.exceptions import ParseError
from ci_translate.ir.features import Command, PredicateKind
from ci_translate.ir.graph import JobNode, JobStatus, PipelineGraph
from ci_translate.parsers import get_parser
from ci_translate.parsers.base import (
    DialectParser,
    chain_groups,
    filter_predicate,
    is_glob,
    merge_env,
    slugify,
    step_label,
)
from ci_translate.parsers.github import GitHubActionsParser
from ci_translate.vendors import Vendor


class _ListParser(DialectParser):
    """Parser for a toy dialect: a mapping of job name to a command or null."""

    vendor: ClassVar[Vendor] = Vendor.GITLAB

    def _parse(self, raw_text: str) -> None:
        data = self._load_yaml(raw_text)
        previous: list[str] = []
        for name, command in data["jobs"]:
            job_id = slugify(name)
            self._lower_job(
                job_id,
                name,
                lambda job_id=job_id, name=name, command=command: self._lower(
                    job_id, name, command
                ),
                source_path=f"jobs.{name}",
                fallback_dependencies=previous,
            )
            previous = [self.graph.job_ids[-1]]

    def _lower(self, job_id: str, name: str, command: str | None) -> JobNode:
        if command is None:
            raise ParseError("a job needs a command", job_id=job_id, feature="job")
        if command == "boom":
            raise ValueError("unexpected value")
        return JobNode(id=job_id, label=name, commands=[Command("step-1", command)])


class TestHelpers:
    """Tests for lowering helpers."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Build & Test (linux)", "build-test-linux"),
            ("  deploy_prod  ", "deploy_prod"),
            ("!!!", "job"),
            ("Déploiement Prod", "deploiement-prod"),
            ("构建", "job"),
        ],
    )
    def test_slugify(self, name: str, expected: str) -> None:
        """Display names become lowercase ASCII ids."""
        assert slugify(name) == expected

    def test_slugify_fallback(self) -> None:
        """A name with nothing to keep uses the given fallback."""
        assert slugify("构建", fallback="step-3") == "step-3"
        assert slugify("Build", fallback="step-3") == "build"

    def test_step_label(self) -> None:
        """Unnamed steps are numbered from one."""
        assert step_label("Install", 2) == "Install"
        assert step_label(None, 3) == "step-3"
        assert step_label("   ", 1) == "step-1"

    def test_is_glob(self) -> None:
        """Glob metacharacters are detected."""
        assert is_glob("release/*")
        assert not is_glob("main")

    def test_merge_env_later_wins(self) -> None:
        """Later layers override earlier ones."""
        assert merge_env({"A": "1", "B": "1"}, {"B": "2"}) == {"A": "1", "B": "2"}

    def test_chain_groups_skips_empty(self) -> None:
        """An empty group does not break the chain."""
        graph = PipelineGraph()
        for job_id in ("a", "b", "c"):
            graph.add_job(JobNode(id=job_id, label=job_id))
        chain_groups(graph, [["a"], [], ["b", "c"]])
        assert list(graph.jobs["b"].depends_on) == ["a"]
        assert list(graph.jobs["c"].depends_on) == ["a"]


class TestFilterPredicate:
    """Tests for include/exclude precedence."""

    def test_empty(self) -> None:
        """No patterns means no predicate."""
        assert filter_predicate(PredicateKind.BRANCH, [], []) == (None, [])

    def test_ignore_wins(self) -> None:
        """A pattern both included and ignored is dropped from the includes."""
        predicate, conflicts = filter_predicate(
            PredicateKind.BRANCH, ["main", "release/1.0"], ["release/*"]
        )
        assert conflicts == ["release/1.0"]
        assert predicate is not None
        assert predicate.include == ("main",)
        assert predicate.exclude == ("release/*",)

    def test_all_conflicting_kept(self) -> None:
        """When every include conflicts the includes are kept."""
        predicate, conflicts = filter_predicate(PredicateKind.BRANCH, ["main"], ["main"])
        assert conflicts == ["main"]
        assert predicate is not None and predicate.include == ("main",)

    def test_conflict_warning(self) -> None:
        """The parser reports conflicts as W103."""
        parser = GitHubActionsParser()
        parser._filter_predicate(PredicateKind.BRANCH, ["main"], ["main"], job_id="build")
        assert [d.code for d in parser.diagnostics.diagnostics] == ["W103"]


class TestJobIsolation:
    """Tests for per-job failure isolation."""

    def test_bad_job_becomes_placeholder(self) -> None:
        """One malformed job yields one stub and one E100; siblings survive."""
        result = _ListParser().parse(
            "jobs:\n  - [Build, make]\n  - [Lint, null]\n  - [Test, make test]\n"
        )

        assert result.graph.job_ids == ["build", "lint", "test"]
        lint = result.graph.jobs["lint"]
        assert lint.status == JobStatus.UNSUPPORTED
        assert lint.label == "Lint"
        assert list(lint.depends_on) == ["build"]
        assert result.graph.jobs["test"].status == JobStatus.OK
        assert [(d.code, d.job_id) for d in result.diagnostics] == [("E100", "lint")]

    def test_value_error_isolated(self) -> None:
        """Unexpected value errors are isolated the same way."""
        result = _ListParser().parse("jobs:\n  - [Build, boom]\n")
        assert result.graph.jobs["build"].status == JobStatus.UNSUPPORTED
        assert result.diagnostics[0].message == "unexpected value"

    def test_duplicate_ids_renamed(self) -> None:
        """A second job with the same id is renamed with a W300 warning."""
        result = _ListParser().parse("jobs:\n  - [Build, make]\n  - [build, make again]\n")
        assert result.graph.job_ids == ["build", "build-2"]
        assert [d.code for d in result.diagnostics] == ["W300"]
        assert result.diagnostics[0].job_id == "build-2"

    def test_source_vendor_stamped(self) -> None:
        """Lowered jobs remember their dialect and source path."""
        result = _ListParser().parse("jobs:\n  - [Build, make]\n")
        job = result.graph.jobs["build"]
        assert job.source_vendor == Vendor.GITLAB
        assert job.source_path == "jobs.Build"


class TestDocumentErrors:
    """Tests for whole-document failures."""

    @pytest.mark.parametrize(
        "text",
        [
            "jobs: [unclosed\n",
            "",
            "- just\n- a list\n",
        ],
    )
    def test_unreadable_document(self, text: str) -> None:
        """An unreadable document gives no jobs and exactly one E101."""
        result = _ListParser().parse(text)
        assert result.graph.jobs == {}
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].code == "E101"
        assert result.diagnostics[0].severity == Severity.ERROR

    def test_parser_instance_reusable(self) -> None:
        """Each parse starts from a fresh graph and collector."""
        parser = _ListParser()
        parser.parse("jobs:\n  - [Lint, null]\n")
        result = parser.parse("jobs:\n  - [Build, make]\n")
        assert result.graph.job_ids == ["build"]
        assert result.diagnostics == ()


class TestGetParser:
    """Tests for the parser lookup."""

    def test_each_source_vendor(self) -> None:
        """Every source dialect has a parser."""
        for vendor in (
            Vendor.GITHUB_ACTIONS,
            Vendor.CIRCLECI,
            Vendor.BITBUCKET,
            Vendor.GITLAB,
            Vendor.JENKINS,
        ):
            assert get_parser(vendor).vendor == vendor

    def test_buildkite_is_not_a_source(self) -> None:
        """Buildkite is a target only."""
        with pytest.raises(ValueError, match="not a supported source dialect"):
            get_parser(Vendor.BUILDKITE)

    def test_fresh_instances(self) -> None:
        """Parsers are never shared between calls."""
        assert get_parser(Vendor.GITLAB) is not get_parser(Vendor.GITLAB)
