"""Tests for the Buildkite rule data."""

import dataclasses

import pytest
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
    Predicate,
    PredicateKind,
    RetryPolicy,
    ReusableAction,
    SecretScope,
)
from ci_translate.ir.graph import JobKind, JobNode, PipelineGraph
from ci_translate.rules import BUILDKITE_PROFILE, RuleContext, TranslationRule
from ci_translate.rules.buildkite import (
    artifact_glob,
    branch_filter_condition,
    buildkite_rules,
    cache_level,
    cache_levels,
    dropped_key_text,
    glob_to_regex,
    hoistable_env,
    matrix_config,
    regex_literal,
    retry_limit,
    unknown_events,
)
from ci_translate.vendors import Vendor

RULES = {rule.name: rule for rule in buildkite_rules()}


def _ctx(graph: PipelineGraph | None = None, **kwargs: object) -> RuleContext:
    return RuleContext(
        graph=graph or PipelineGraph(),
        source_vendor=Vendor.GITHUB_ACTIONS,
        profile=kwargs.pop("profile", BUILDKITE_PROFILE),  # type: ignore[arg-type]
        **kwargs,  # type: ignore[arg-type]
    )


def _key(*components: tuple[CacheKeyKind, str]) -> CacheKey:
    return CacheKey(components=tuple(CacheKeyComponent(k, v) for k, v in components))


def _apply(name: str, job: JobNode, ctx: RuleContext | None = None) -> bool:
    """Run a rule if it applies; return whether it did."""
    rule: TranslationRule = RULES[name]
    ctx = ctx or _ctx()
    if not rule.applies(job, ctx):
        return False
    rule.transform(job, ctx)
    return True


def _branch_job(*predicates: Predicate) -> JobNode:
    return JobNode(id="deploy", label="Deploy", conditionals=list(predicates))


class TestGlobs:
    """Tests for glob and regex helpers."""

    @pytest.mark.parametrize(
        ("pattern", "expected"),
        [
            ("release/*", "^release/[^/]*$"),
            ("feature/**", "^feature/.*$"),
            ("v1.?", "^v1\\.[^/]$"),
            ("/^rel-.*/", "^rel-.*"),
        ],
    )
    def test_glob_to_regex(self, pattern: str, expected: str) -> None:
        """Globs become anchored regular expressions."""
        assert glob_to_regex(pattern) == expected

    def test_regex_literal_escapes_slashes(self) -> None:
        """Bare slashes are escaped inside the literal."""
        assert regex_literal("^release/[^/]*$") == "/^release\\/[^\\/]*$/"
        assert regex_literal("a\\/b") == "/a\\/b/"

    @pytest.mark.parametrize(
        ("path", "expected"),
        [("./dist/", "dist/**/*"), ("report.xml", "report.xml"), ("out/*.tgz", "out/*.tgz")],
    )
    def test_artifact_glob(self, path: str, expected: str) -> None:
        """Directories upload their whole tree."""
        assert artifact_glob(path) == expected


class TestBranchFilterCondition:
    """Tests for the if expression built from branch, tag and event filters."""

    def test_single_branch(self) -> None:
        """A literal branch is an equality test."""
        job = _branch_job(Predicate(kind=PredicateKind.BRANCH, include=("main",)))
        assert branch_filter_condition(job) == 'build.branch == "main"'

    def test_alternatives_and_globs(self) -> None:
        """Included patterns are alternatives; globs use regex matching."""
        job = _branch_job(Predicate(kind=PredicateKind.BRANCH, include=("main", "release/*")))
        assert branch_filter_condition(job) == (
            'build.branch == "main" || build.branch =~ /^release\\/[^\\/]*$/'
        )

    def test_exclusions(self) -> None:
        """Excluded branches are negated."""
        job = _branch_job(Predicate(kind=PredicateKind.BRANCH, exclude=("dev",)))
        assert branch_filter_condition(job) == 'build.branch != "dev"'

    def test_any_tag(self) -> None:
        """A tag predicate without patterns requires some tag."""
        job = _branch_job(Predicate(kind=PredicateKind.TAG))
        assert branch_filter_condition(job) == "build.tag != null"

    def test_events_must_also_hold(self) -> None:
        """Event predicates are joined to the ref test with &&."""
        job = _branch_job(
            Predicate(kind=PredicateKind.BRANCH, include=("main",)),
            Predicate(kind=PredicateKind.EVENT, include=("push",)),
        )
        assert branch_filter_condition(job) == (
            'build.branch == "main" && '
            '(build.source == "webhook" && build.pull_request.id == null)'
        )

    def test_excluded_event(self) -> None:
        """An excluded event is negated."""
        job = _branch_job(Predicate(kind=PredicateKind.EVENT, exclude=("pull_request",)))
        assert branch_filter_condition(job) == "!(build.pull_request.id != null)"

    def test_unknown_events(self) -> None:
        """Events without a build source are reported and left out."""
        job = _branch_job(Predicate(kind=PredicateKind.EVENT, include=("release", "schedule")))
        assert unknown_events(job) == ["release"]
        assert branch_filter_condition(job) == 'build.source == "schedule"'

    def test_no_filters(self) -> None:
        """A job without filters has no condition."""
        assert branch_filter_condition(JobNode(id="a", label="A")) is None


class TestBranchRules:
    """Tests for choosing between branches and if."""

    def test_simple_branches_attribute(self) -> None:
        """Plain branch globs use the branches attribute."""
        job = _branch_job(
            Predicate(kind=PredicateKind.BRANCH, include=("main",), exclude=("feature/**",))
        )
        assert _apply("branches-attribute", job)
        assert not _apply("if-expression", job)
        assert job.target.attributes == {"branches": "main !feature/*"}

    def test_regex_uses_if(self) -> None:
        """A regex pattern needs an if expression."""
        job = _branch_job(Predicate(kind=PredicateKind.BRANCH, include=("/^rel-.*/",)))
        assert not _apply("branches-attribute", job)
        assert _apply("if-expression", job)
        assert job.target.attributes == {"if": "build.branch =~ /^rel-.*/"}

    def test_unknown_events_are_approximate(self) -> None:
        """Only the approximate rule accepts unknown events."""
        job = _branch_job(Predicate(kind=PredicateKind.EVENT, include=("release",)))
        assert not _apply("if-expression", job)
        assert _apply("if-expression-known-events", job)
        instruction = RULES["if-expression-known-events"].instruction_for(job)
        assert instruction is not None and "release" in instruction


class TestCaching:
    """Tests for the cache rules."""

    def test_cache_level(self) -> None:
        """File hashes beat branches; everything else is pipeline-wide."""
        assert cache_level(_key((CacheKeyKind.FILE_HASH, "yarn.lock"))) == "file"
        assert cache_level(_key((CacheKeyKind.BRANCH, "b"))) == "branch"
        assert cache_level(_key((CacheKeyKind.LITERAL, "v1"))) == "pipeline"

    def test_cache_levels_with_fallbacks(self) -> None:
        """Saving uses the primary key; restoring the broadest fallback."""
        job = JobNode(
            id="build",
            label="Build",
            cache=CacheSpec(
                key=_key((CacheKeyKind.LITERAL, "v1-"), (CacheKeyKind.FILE_HASH, "yarn.lock")),
                paths=("node_modules",),
                fallbacks=(_key((CacheKeyKind.LITERAL, "v1-")),),
            ),
        )
        assert cache_levels(job, _ctx()) == ("file", "pipeline")
        strict = dataclasses.replace(BUILDKITE_PROFILE, cache_fallbacks=False)
        assert cache_levels(job, _ctx(profile=strict)) == ("file", "file")

    def test_exact_cache_plugin(self) -> None:
        """One manifest file is a native translation, one plugin per path."""
        job = JobNode(
            id="build",
            label="Build",
            cache=CacheSpec(
                key=_key((CacheKeyKind.FILE_HASH, "package-lock.json")),
                paths=("node_modules", ".npm"),
            ),
        )
        assert _apply("cache-plugin", job)
        assert not _apply("cache-plugin-approximate", JobNode(id="x", label="X", cache=job.cache))
        assert job.target.plugins == [
            (
                "cache",
                {
                    "path": "node_modules",
                    "manifest": "package-lock.json",
                    "restore": "file",
                    "save": "file",
                },
            ),
            (
                "cache",
                {
                    "path": ".npm",
                    "manifest": "package-lock.json",
                    "restore": "file",
                    "save": "file",
                },
            ),
        ]

    @pytest.mark.parametrize(
        "components",
        [
            ((CacheKeyKind.FILE_HASH, "a.lock"), (CacheKeyKind.FILE_HASH, "b.lock")),
            ((CacheKeyKind.FILE_HASH, "**/go.sum"),),
            ((CacheKeyKind.RUNTIME, "os"), (CacheKeyKind.FILE_HASH, "go.sum")),
            ((CacheKeyKind.LITERAL, "v2-deps-"), (CacheKeyKind.FILE_HASH, "yarn.lock")),
        ],
    )
    def test_approximate_cache(self, components: tuple[tuple[CacheKeyKind, str], ...]) -> None:
        """Several files, globs, runtime values and key prefixes are approximations."""
        job = JobNode(
            id="build", label="Build", cache=CacheSpec(key=_key(*components), paths=("deps",))
        )
        assert not _apply("cache-plugin", job)
        assert _apply("cache-plugin-approximate", job)
        assert job.target.plugins[0][0] == "cache"

    def test_prefix_named_in_instruction(self) -> None:
        """A versioned key prefix is reported as dropped from the plugin key."""
        cache = CacheSpec(
            key=_key((CacheKeyKind.LITERAL, "v2-deps-"), (CacheKeyKind.FILE_HASH, "yarn.lock")),
            paths=("node_modules",),
            fallbacks=(_key((CacheKeyKind.LITERAL, "v2-deps-")),),
        )
        job = JobNode(id="build", label="Build", cache=cache)
        assert dropped_key_text(cache) == ("v2-deps-",)
        instruction = RULES["cache-plugin-approximate"].instruction_for(job)
        assert instruction is not None
        assert "'v2-deps-' is not part of the plugin key" in instruction

    def test_matrix_and_separators_are_not_dropped(self) -> None:
        """Matrix references and bare separators carry no key text of their own."""
        key = _key(
            (CacheKeyKind.LITERAL, "{{matrix.node}}-"), (CacheKeyKind.FILE_HASH, "yarn.lock")
        )
        cache = CacheSpec(key=key, paths=("deps",))
        job = JobNode(id="build", label="Build", cache=cache)
        assert dropped_key_text(cache) == ()
        assert _apply("cache-plugin", job)

    def test_cache_levels_without_cache(self) -> None:
        """Asking for cache levels of a job without a cache is an error."""
        with pytest.raises(ValueError, match="has no cache"):
            cache_levels(JobNode(id="build", label="Build"), _ctx())


class TestJobRules:
    """Tests for single-slot job rules."""

    def test_docker_plugin(self) -> None:
        """The container becomes a docker plugin that forwards the environment."""
        job = JobNode(
            id="build",
            label="Build",
            container=ContainerSpec(image="node:20", shell="bash", workdir="/app"),
            environment={"CI": "true"},
        )
        assert _apply("docker-plugin", job)
        assert job.target.plugins == [
            (
                "docker",
                {
                    "image": "node:20",
                    "workdir": "/app",
                    "shell": ["/bin/bash", "-e", "-c"],
                    "propagate-environment": True,
                },
            )
        ]

    def test_artifacts_uploaded_and_downloaded(self) -> None:
        """Producers set artifact_paths; consumers download from the producing step."""
        graph = PipelineGraph()
        build = graph.add_job(
            JobNode(id="build", label="Build", artifacts=ArtifactSpec(produced=("dist/",)))
        )
        test = graph.add_job(
            JobNode(id="test", label="Test", artifacts=ArtifactSpec(consumed=("build",)))
        )
        ctx = _ctx(graph)
        _apply("artifact-paths", build, ctx)
        _apply("artifact-paths", test, ctx)
        assert build.target.attributes == {"artifact_paths": ["dist/**/*"]}
        assert test.target.commands_before == [
            'buildkite-agent artifact download "dist/**/*" . --step build'
        ]

    def test_block_step(self) -> None:
        """Approval jobs become block steps naming their environment."""
        job = JobNode(
            id="gate",
            label="Release",
            kind=JobKind.APPROVAL,
            approval=ApprovalGate(prompt="Ship it?", environment="production"),
        )
        assert _apply("block-step", job)
        assert job.target.attributes == {"block": "Release", "prompt": "Ship it? (production)"}

    def test_block_step_needs_approval_kind(self) -> None:
        """A command job with an approval gate is not a block step itself."""
        job = JobNode(id="deploy", label="Deploy", approval=ApprovalGate(prompt="ok?"))
        assert not _apply("block-step", job)

    def test_retry_limit(self) -> None:
        """Buildkite counts retries after the first attempt."""
        assert retry_limit(JobNode(id="a", label="A", retry_policy=RetryPolicy(3))) == 2
        assert retry_limit(JobNode(id="a", label="A", retry_policy=RetryPolicy(1))) == 0
        assert retry_limit(JobNode(id="a", label="A")) == 0

    def test_automatic_retry(self) -> None:
        """Retrying on any failure is an automatic limit."""
        job = JobNode(id="a", label="A", retry_policy=RetryPolicy(3))
        assert _apply("automatic-retry", job)
        assert job.target.attributes == {"retry": {"automatic": {"limit": 2}}}

    def test_exit_status_retry(self) -> None:
        """Conditional retries list exit statuses."""
        job = JobNode(
            id="a",
            label="A",
            retry_policy=RetryPolicy(3, conditions=("infrastructure-failure", "timeout")),
        )
        assert not _apply("automatic-retry", job)
        assert _apply("exit-status-retry", job)
        assert job.target.attributes["retry"] == {
            "automatic": [{"exit_status": -1, "limit": 2}, {"exit_status": 255, "limit": 2}]
        }

    def test_retry_limit_capped(self) -> None:
        """More retries than Buildkite allows are capped."""
        job = JobNode(id="a", label="A", retry_policy=RetryPolicy(20))
        assert not _apply("automatic-retry", job)
        assert _apply("exit-status-retry", job)
        assert job.target.attributes["retry"] == {
            "automatic": [{"exit_status": "*", "limit": 10}]
        }

    def test_concurrency_and_parallelism(self) -> None:
        """Concurrency groups allow one job at a time."""
        job = JobNode(id="a", label="A", concurrency_group="deploy", parallelism=4)
        _apply("concurrency-group", job)
        _apply("parallelism", job)
        assert job.target.attributes == {
            "concurrency_group": "deploy",
            "concurrency": 1,
            "parallelism": 4,
        }

    def test_if_changed(self) -> None:
        """Path filters become if_changed."""
        job = JobNode(
            id="a",
            label="A",
            conditionals=[Predicate(kind=PredicateKind.PATH, include=("src/**",))],
        )
        _apply("if-changed", job)
        assert job.target.attributes == {"if_changed": "src/**"}

    def test_if_changed_with_exclusions(self) -> None:
        """Exclusions need the include/exclude form."""
        job = JobNode(
            id="a",
            label="A",
            conditionals=[Predicate(kind=PredicateKind.PATH, exclude=("docs/**",))],
        )
        _apply("if-changed", job)
        assert job.target.attributes == {
            "if_changed": {"include": ["**"], "exclude": ["docs/**"]}
        }

    def test_reusable_action_placeholder(self) -> None:
        """A job made only of actions gets an echo placeholder."""
        job = JobNode(
            id="a",
            label="A",
            reusable_actions=[ReusableAction(ref="actions/setup-node@v4", label="Setup")],
        )
        _apply("reusable-action", job)
        assert job.target.commands_before == [
            "echo 'Manual step required: Setup (actions/setup-node@v4)'"
        ]

    def test_reusable_action_keeps_commands(self) -> None:
        """Jobs with their own commands get no placeholder."""
        job = JobNode(
            id="a",
            label="A",
            commands=[Command("step-1", "make")],
            reusable_actions=[ReusableAction(ref="actions/setup-node@v4", label="Setup")],
        )
        _apply("reusable-action", job)
        assert job.target.commands_before == []

    def test_secret_instruction(self) -> None:
        """Secret instructions quote every scope name."""
        job = JobNode(
            id="a", label="A", secret_scopes=[SecretScope(name="deploy-key", kind="credential")]
        )
        assert RULES["jenkins-credentials"].instruction_for(job) == (
            "Provide Jenkins credential 'deploy-key' through Buildkite secrets or an agent "
            "environment hook"
        )


class TestMatrixRules:
    """Tests for native matrices and duplication."""

    MATRIX = MatrixSpec(
        dimensions=(("os", ("linux", "macos")), ("node", ("18", "20"))),
        adjustments=(Adjustment(values=(("os", "macos"), ("node", "18"))),),
    )

    def test_matrix_config(self) -> None:
        """Rectangular matrices map to setup and adjustments."""
        assert matrix_config(self.MATRIX) == {
            "setup": {"os": ["linux", "macos"], "node": ["18", "20"]},
            "adjustments": [{"with": {"os": "macos", "node": "18"}, "skip": True}],
        }

    def test_native_when_preferred(self) -> None:
        """A rectangular matrix is written natively by default."""
        job = JobNode(id="test", label="Test", matrix=self.MATRIX)
        assert _apply("native-matrix", job)
        assert not _apply("matrix-duplication", job)
        assert "matrix" in job.target.attributes

    def test_duplicated_on_request(self) -> None:
        """Turning native matrices off duplicates the job."""
        graph = PipelineGraph()
        job = graph.add_job(JobNode(id="test", label="Test", matrix=self.MATRIX))
        ctx = _ctx(graph, prefer_native_matrix=False)
        assert not _apply("native-matrix", job, ctx)
        assert _apply("matrix-duplication", job, ctx)
        assert graph.job_ids == ["test-linux-18", "test-linux-20", "test-macos-20", "test"]

    def test_max_parallel_sets_concurrency(self) -> None:
        """A parallel limit is kept as a shared concurrency group."""
        graph = PipelineGraph()
        matrix = dataclasses.replace(self.MATRIX, max_parallel=2)
        job = graph.add_job(JobNode(id="test", label="Test", matrix=matrix))
        assert _apply("matrix-duplication", job, _ctx(graph))
        duplicate = graph.jobs["test-linux-18"]
        assert duplicate.target.attributes == {"concurrency_group": "matrix-test", "concurrency": 2}

    def test_transforms_without_matrix(self) -> None:
        """Matrix transforms leave a job without a matrix untouched."""
        graph = PipelineGraph()
        job = graph.add_job(JobNode(id="test", label="Test"))
        for name in ("native-matrix", "matrix-duplication"):
            RULES[name].transform(job, _ctx(graph))
        assert job.target.attributes == {}
        assert graph.job_ids == ["test"]


class TestPipelineRules:
    """Tests for pipeline-level rules."""

    def test_hoistable_env(self) -> None:
        """Only variables every command job shares are hoisted."""
        graph = PipelineGraph(global_env={"A": "1", "B": "2"})
        graph.add_job(JobNode(id="build", label="Build", environment={"A": "1", "B": "2"}))
        graph.add_job(JobNode(id="test", label="Test", environment={"A": "1", "B": "3"}))
        assert hoistable_env(graph) == {"A": "1"}

    def test_hoist_can_be_disabled(self) -> None:
        """The top-level env is left alone when hoisting is off."""
        graph = PipelineGraph(global_env={"A": "1"})
        graph.add_job(JobNode(id="build", label="Build", environment={"A": "1"}))
        RULES["top-level-env"].transform(graph, _ctx(graph, hoist_global_env=False))
        assert graph.target.attributes == {}
        RULES["top-level-env"].transform(graph, _ctx(graph))
        assert graph.target.attributes == {"env": {"A": "1"}}
