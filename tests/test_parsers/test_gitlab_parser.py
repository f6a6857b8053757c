"""Tests for the GitLab CI parser."""

import pytest
from ci_translate.ir.features import CacheKeyKind, PredicateKind
from ci_translate.ir.graph import JobStatus
from ci_translate.parsers.gitlab import GitLabCIParser, deep_merge, parse_duration_minutes


def _parse(text: str):
    return GitLabCIParser().parse(text)


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        ("text", "minutes"),
        [
            ("1h 30m", 90),
            ("45 seconds", 1),
            ("2 days", 2880),
            ("10 minutes 30 seconds", 11),
        ],
    )
    def test_parse_duration(self, text: str, minutes: int) -> None:
        """Durations are rounded up to whole minutes."""
        assert parse_duration_minutes(text) == minutes

    def test_parse_duration_invalid(self) -> None:
        """Text without a duration is rejected."""
        with pytest.raises(ValueError, match="invalid duration"):
            parse_duration_minutes("soon")

    def test_deep_merge(self) -> None:
        """Nested mappings merge; lists and scalars are replaced."""
        base = {"variables": {"A": "1"}, "script": ["a"], "image": "x"}
        override = {"variables": {"B": "2"}, "script": ["b"]}
        assert deep_merge(base, override) == {
            "variables": {"A": "1", "B": "2"},
            "script": ["b"],
            "image": "x",
        }
        assert base["variables"] == {"A": "1"}


class TestSamplePipeline:
    """Tests against the shared sample pipeline."""

    def test_stage_ordering(self, gitlab_pipeline: str) -> None:
        """Jobs wait for the previous stage."""
        result = _parse(gitlab_pipeline)
        graph = result.graph
        assert result.diagnostics == ()
        assert graph.job_ids == ["build", "test", "deploy"]
        assert list(graph.jobs["test"].depends_on) == ["build"]
        assert list(graph.jobs["deploy"].depends_on) == ["test"]

    def test_job_features(self, gitlab_pipeline: str) -> None:
        """Images, retries, artifacts and manual jobs are lowered."""
        graph = _parse(gitlab_pipeline).graph
        assert graph.global_env == {"APP": "demo"}
        assert graph.jobs["build"].container is not None
        assert graph.jobs["build"].container.image == "node:20"
        assert graph.jobs["build"].artifacts.produced == ("dist/",)
        assert graph.jobs["test"].artifacts.consumed == ("build",)
        assert graph.jobs["test"].retry_policy is not None
        assert graph.jobs["test"].retry_policy.max_attempts == 3
        assert graph.jobs["deploy"].approval is not None
        assert [c.run for c in graph.jobs["build"].commands] == ["npm ci", "npm run build"]


class TestTemplates:
    """Tests for extends, !reference and default."""

    def test_extends_and_default(self) -> None:
        """Hidden templates and defaults are merged into the job."""
        job = _parse(
            "default:\n"
            "  image: alpine\n"
            ".base:\n"
            "  before_script:\n"
            "    - setup\n"
            "  variables:\n"
            "    A: '1'\n"
            "rspec:\n"
            "  extends: .base\n"
            "  script:\n"
            "    - rspec\n"
            "  variables:\n"
            "    B: '2'\n"
        ).graph.jobs["rspec"]
        assert [c.run for c in job.commands] == ["setup", "rspec"]
        assert job.container is not None and job.container.image == "alpine"
        assert job.environment == {"A": "1", "B": "2"}

    def test_reference_spliced(self) -> None:
        """A referenced script list is spliced into the job script."""
        job = _parse(
            ".setup:\n"
            "  script:\n"
            "    - echo setup\n"
            "job:\n"
            "  script:\n"
            "    - !reference [.setup, script]\n"
            "    - make\n"
        ).graph.jobs["job"]
        assert [c.run for c in job.commands] == ["echo setup", "make"]

    def test_unknown_extends_isolated(self) -> None:
        """Extending a missing template fails only that job."""
        result = _parse(
            "ok:\n"
            "  script: [make]\n"
            "broken:\n"
            "  extends: .missing\n"
            "  script: [make]\n"
        )
        assert result.graph.jobs["ok"].status == JobStatus.OK
        assert result.graph.jobs["broken"].status == JobStatus.UNSUPPORTED
        assert [(d.code, d.job_id) for d in result.diagnostics] == [("E100", "broken")]


class TestConditions:
    """Tests for rules and only/except."""

    def test_rules(self) -> None:
        """Simple comparisons become predicates; when: never excludes."""
        job = _parse(
            "job:\n"
            "  script: [make]\n"
            "  rules:\n"
            "    - if: '$CI_PIPELINE_SOURCE == \"schedule\"'\n"
            "      when: never\n"
            "    - if: '$CI_COMMIT_BRANCH == \"main\"'\n"
        ).graph.jobs["job"]
        by_kind = {p.kind: p for p in job.conditionals}
        assert by_kind[PredicateKind.EVENT].exclude == ("schedule",)
        assert by_kind[PredicateKind.BRANCH].include == ("main",)

    def test_complex_rule_kept_raw(self) -> None:
        """Compound conditions are kept as an expression."""
        job = _parse(
            "job:\n"
            "  script: [make]\n"
            "  rules:\n"
            "    - if: '$A == \"1\" && $B == \"2\"'\n"
        ).graph.jobs["job"]
        assert job.conditionals[0].kind == PredicateKind.EXPRESSION

    def test_only_except(self) -> None:
        """only lists branches, except excludes them."""
        job = _parse(
            "job:\n"
            "  script: [make]\n"
            "  only: [main, tags]\n"
            "  except: [wip]\n"
        ).graph.jobs["job"]
        kinds = [(p.kind, p.include, p.exclude) for p in job.conditionals]
        assert (PredicateKind.BRANCH, ("main",), ()) in kinds
        assert (PredicateKind.TAG, ("*",), ()) in kinds
        assert (PredicateKind.BRANCH, (), ("wip",)) in kinds

    def test_when_never_skipped(self) -> None:
        """A job that never runs is dropped with a warning."""
        result = _parse(
            "a:\n  script: [make]\nb:\n  script: [make]\n  when: never\n"
        )
        assert result.graph.job_ids == ["a"]
        assert [d.code for d in result.diagnostics] == ["W300"]


class TestJobs:
    """Tests for other job keys."""

    def test_needs_override_stages(self) -> None:
        """needs replaces stage ordering."""
        graph = _parse(
            "lint:\n"
            "  stage: build\n"
            "  script: [lint]\n"
            "build:\n"
            "  stage: build\n"
            "  script: [make]\n"
            "  artifacts: {paths: [out/]}\n"
            "test:\n"
            "  stage: test\n"
            "  needs: [build]\n"
            "  script: [make test]\n"
        ).graph
        assert list(graph.jobs["test"].depends_on) == ["build"]
        assert graph.jobs["test"].artifacts.consumed == ("build",)

    def test_parallel_matrix(self) -> None:
        """parallel:matrix becomes a matrix with variables in env."""
        job = _parse(
            "deploy:\n"
            "  script: [./deploy.sh]\n"
            "  parallel:\n"
            "    matrix:\n"
            "      - PROVIDER: [aws, gcp]\n"
            "        STACK: app\n"
        ).graph.jobs["deploy"]
        assert job.matrix is not None
        assert job.matrix.dimensions == (("PROVIDER", ("aws", "gcp")), ("STACK", ("app",)))
        assert job.environment["PROVIDER"] == "{{matrix.PROVIDER}}"

    def test_cache_files_and_timeout(self) -> None:
        """File-keyed caches hash files; timeouts become minutes."""
        job = _parse(
            "job:\n"
            "  script: [make]\n"
            "  timeout: 1h 30m\n"
            "  cache:\n"
            "    key:\n"
            "      files: [Gemfile.lock]\n"
            "    paths: [vendor/]\n"
        ).graph.jobs["job"]
        assert job.timeout_minutes == 90
        assert job.cache is not None
        assert job.cache.key.has(CacheKeyKind.FILE_HASH)
        assert job.cache.paths == ("vendor/",)

    def test_undeclared_stage(self) -> None:
        """A job in an unknown stage becomes a stub."""
        result = _parse("stages: [build]\njob:\n  stage: nope\n  script: [make]\n")
        assert result.graph.jobs["job"].status == JobStatus.UNSUPPORTED
        assert result.diagnostics[0].code == "E100"

    def test_no_jobs(self) -> None:
        """A configuration with only hidden jobs is a document error."""
        result = _parse(".hidden:\n  script: [make]\n")
        assert [d.code for d in result.diagnostics] == ["E101"]
