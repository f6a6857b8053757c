"""End-to-end tests for the translation facade."""

import pytest
import yaml
from ci_translate import translate
from ci_translate.config import TranslatorSettings
from ci_translate.interfaces import (
    FilenameVendorClassifier,
    ValidationOutcome,
    YamlSyntaxValidator,
)
from ci_translate.ir.graph import JobStatus
from ci_translate.translator import TranslationFailedError, resolve_source_vendor
from ci_translate.vendors import Vendor

from tests.fixtures.sample_pipelines import GITHUB_WORKFLOW, GITLAB_PIPELINE, SAMPLES

CYCLIC_GITLAB = """\
a:
  script: [make a]
  needs: [b]
b:
  script: [make b]
  needs: [a]
c:
  script: [make c]
"""


class _RejectingValidator:
    def validate(self, text: str) -> ValidationOutcome:
        return ValidationOutcome(ok=False, messages=("rejected",))


def _steps(text: str) -> dict[str, dict]:
    return {step["key"]: step for step in yaml.safe_load(text)["steps"]}


def _depends(step: dict) -> list[str]:
    return [d if isinstance(d, str) else d["step"] for d in step.get("depends_on", [])]


class TestSamples:
    """Every sample dialect translates to a valid Buildkite pipeline."""

    @pytest.mark.parametrize("vendor", sorted(SAMPLES))
    def test_valid_document(self, vendor: str) -> None:
        """The output is well-formed and error free."""
        result = translate(SAMPLES[vendor], vendor, validator=YamlSyntaxValidator())
        assert result.validation is not None and result.validation.ok
        assert result.errors == []
        assert result.text.startswith("# Translated from ")

    @pytest.mark.parametrize("vendor", sorted(SAMPLES))
    def test_deterministic(self, vendor: str) -> None:
        """The same input always yields the same text and diagnostics."""
        first = translate(SAMPLES[vendor], vendor)
        second = translate(SAMPLES[vendor], vendor)
        assert first.text == second.text
        assert first.diagnostics == second.diagnostics

    @pytest.mark.parametrize("vendor", sorted(SAMPLES))
    def test_no_job_dropped(self, vendor: str) -> None:
        """Every job of the graph is written as a step."""
        result = translate(SAMPLES[vendor], vendor)
        steps = _steps(result.text)
        assert set(steps) == {job.id for job in result.graph.emittable_jobs()}

    @pytest.mark.parametrize("vendor", sorted(SAMPLES))
    def test_dependencies_precede_dependents(self, vendor: str) -> None:
        """Each step only depends on steps written before it."""
        steps = _steps(translate(SAMPLES[vendor], vendor).text)
        seen: set[str] = set()
        for key, step in steps.items():
            assert set(_depends(step)) <= seen, key
            seen.add(key)

    @pytest.mark.parametrize(("vendor", "gate"), [("gitlab", "deploy"), ("jenkins", "deploy")])
    def test_manual_deploy_gated(self, vendor: str, gate: str) -> None:
        """Manual deploys wait on a block step."""
        steps = _steps(translate(SAMPLES[vendor], vendor).text)
        block = steps[f"{gate}-approval"]
        assert "block" in block
        assert _depends(steps[gate]) == [f"{gate}-approval"]

    def test_github_details(self) -> None:
        """Caching, artifacts, the matrix and the branch filter carry over."""
        result = translate(GITHUB_WORKFLOW, Vendor.GITHUB_ACTIONS)
        document = yaml.safe_load(result.text)
        steps = _steps(result.text)

        assert document["env"] == {"NODE_ENV": "test"}
        assert list(steps) == ["build", "test", "deploy"]
        assert steps["build"]["artifact_paths"] == ["dist/**/*"]
        assert any("cache" in plugin for plugin in steps["build"]["plugins"])
        assert steps["test"]["matrix"]["adjustments"] == [
            {"with": {"os": "macos", "node": "18"}, "skip": True}
        ]
        assert steps["test"]["commands"][0].startswith("buildkite-agent artifact download")
        assert steps["deploy"]["branches"] == "main"

    def test_duplicated_matrix(self) -> None:
        """Native matrices can be turned off in the settings."""
        settings = TranslatorSettings(prefer_native_matrix=False)
        steps = _steps(translate(GITHUB_WORKFLOW, "github", settings=settings).text)
        assert list(steps) == ["build", "test-linux-18", "test-linux-20", "test-macos-20", "deploy"]
        assert _depends(steps["deploy"]) == ["test-linux-18", "test-linux-20", "test-macos-20"]

    def test_markers_off(self) -> None:
        """Without markers the text starts with the document."""
        settings = TranslatorSettings(section_markers=False)
        text = translate(GITLAB_PIPELINE, "gitlab", settings=settings).text
        assert not text.startswith("#")
        assert "# ---" not in text


class TestFailures:
    """Failures stay local and are reported."""

    def test_cycle_isolated(self) -> None:
        """Jobs in a cycle become skipped steps; the rest translate."""
        result = translate(CYCLIC_GITLAB, "gitlab")
        steps = _steps(result.text)

        assert [d.code for d in result.errors] == ["E300", "E300"]
        assert "skip" in steps["a"] and "skip" in steps["b"]
        assert "skip" not in steps["c"]
        assert result.graph.jobs["c"].status == JobStatus.OK
        assert not result.ok

    def test_broken_source(self) -> None:
        """An unreadable document still yields a (empty) pipeline and an error."""
        result = translate("jobs: [", "github")
        assert result.errors
        assert result.errors[0].code in ("E100", "E101")
        assert yaml.safe_load(result.text)["steps"] == []

    def test_check(self) -> None:
        """check raises on errors, and on warnings in strict mode."""
        result = translate(GITHUB_WORKFLOW, "github")
        assert result.warnings
        result.check()
        with pytest.raises(TranslationFailedError) as exc_info:
            result.check(strict=True)
        assert "warning(s)" in str(exc_info.value)
        assert exc_info.value.format_issues().startswith("WARNING: ")

    def test_validator_failure(self) -> None:
        """A rejecting validator fails the result."""
        result = translate(GITLAB_PIPELINE, "gitlab", validator=_RejectingValidator())
        assert not result.ok
        with pytest.raises(TranslationFailedError, match="target validation failed"):
            result.check()

    def test_unsupported_target(self) -> None:
        """Only Buildkite can be written."""
        with pytest.raises(ValueError, match="not a supported target dialect"):
            translate(GITLAB_PIPELINE, "gitlab", "circleci")

    def test_unsupported_source(self) -> None:
        """Buildkite cannot be read."""
        with pytest.raises(ValueError, match="not a supported source dialect"):
            translate("steps: []", "buildkite")


class TestVendorResolution:
    """Tests for resolve_source_vendor."""

    def test_explicit_vendor_wins(self) -> None:
        """An explicit vendor is used without asking the classifier."""
        vendor = resolve_source_vendor("gitlab", "Jenkinsfile", "", FilenameVendorClassifier())
        assert vendor == Vendor.GITLAB

    def test_classifier_used(self) -> None:
        """Without a vendor the classifier decides."""
        result = translate(
            GITLAB_PIPELINE,
            None,
            classifier=FilenameVendorClassifier(),
            source_name="repo/.gitlab-ci.yml",
        )
        assert result.text.startswith("# Translated from GitLab CI")

    def test_no_classifier(self) -> None:
        """No vendor and no classifier is an error."""
        with pytest.raises(ValueError, match="no classifier"):
            resolve_source_vendor(None, "ci.yml")

    def test_unclassifiable(self) -> None:
        """An unknown file name asks for an explicit vendor."""
        with pytest.raises(ValueError, match="pass it explicitly"):
            resolve_source_vendor(None, "ci.yml", "", FilenameVendorClassifier())
