"""Tests for the CLI module."""

from __future__ import annotations

from pathlib import Path

import pytest
from ci_translate import __version__
from ci_translate.cli_main import app, output_name
from ci_translate.rules import load_registry
from ci_translate.vendors import Vendor
from typer.testing import CliRunner

from tests.fixtures.sample_pipelines import GITLAB_PIPELINE

runner = CliRunner()

CYCLIC_GITLAB = """\
a:
  script: [make a]
  needs: [b]
b:
  script: [make b]
  needs: [a]
"""


@pytest.fixture
def gitlab_file(tmp_path: Path) -> Path:
    """Write the GitLab sample under its conventional name."""
    path = tmp_path / "gitlab" / ".gitlab-ci.yml"
    path.parent.mkdir()
    path.write_text(GITLAB_PIPELINE)
    return path


class TestVersion:
    """Tests for version option."""

    def test_version_long(self) -> None:
        """Test --version flag."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_with_command_still_shows_version(self) -> None:
        """Test that --version takes precedence (eager option)."""
        result = runner.invoke(app, ["--version", "convert", "missing.yml"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestNoArgs:
    """Tests for no arguments behavior."""

    def test_no_args_shows_help(self) -> None:
        """Test that no arguments shows help."""
        result = runner.invoke(app)
        assert "convert" in result.output
        assert "inspect" in result.output


class TestConvertCommand:
    """Tests for the convert command."""

    def test_convert_to_stdout(self, github_file: Path) -> None:
        """The pipeline is printed; warnings alone do not fail the run."""
        result = runner.invoke(app, ["convert", str(github_file)])
        assert result.exit_code == 0
        assert "# Translated from GitHub Actions to Buildkite" in result.output
        assert "steps:" in result.output
        assert "[W100]" in result.output

    def test_strict_fails_on_warnings(self, github_file: Path) -> None:
        """--strict turns warnings into a failing exit code."""
        result = runner.invoke(app, ["convert", str(github_file), "--strict"])
        assert result.exit_code == 1
        assert "steps:" in result.output

    def test_strict_from_config(self, github_file: Path, tmp_path: Path) -> None:
        """The settings file can ask for strict mode."""
        config = tmp_path / "settings.yml"
        config.write_text("strict: true\n")
        result = runner.invoke(app, ["convert", str(github_file), "--config", str(config)])
        assert result.exit_code == 1

    def test_invalid_config(self, github_file: Path, tmp_path: Path) -> None:
        """An invalid settings file is a load error."""
        config = tmp_path / "settings.yml"
        config.write_text("strictness: true\n")
        result = runner.invoke(app, ["convert", str(github_file), "-c", str(config)])
        assert result.exit_code == 1
        assert "Cannot load file" in result.output

    def test_convert_to_file(self, gitlab_file: Path, tmp_path: Path) -> None:
        """--output writes the pipeline and refuses to overwrite without --force."""
        output = tmp_path / "out" / "pipeline.yml"
        result = runner.invoke(app, ["convert", str(gitlab_file), "-o", str(output)])
        assert result.exit_code == 0
        assert output.read_text().startswith("# Translated from GitLab CI")
        assert "Wrote" in result.output

        again = runner.invoke(app, ["convert", str(gitlab_file), "-o", str(output)])
        assert again.exit_code == 1
        assert "already exists" in again.output

        forced = runner.invoke(app, ["convert", str(gitlab_file), "-o", str(output), "--force"])
        assert forced.exit_code == 0

    def test_quiet(self, gitlab_file: Path, tmp_path: Path) -> None:
        """--quiet drops success messages."""
        output = tmp_path / "pipeline.yml"
        result = runner.invoke(app, ["convert", str(gitlab_file), "-o", str(output), "-q"])
        assert result.exit_code == 0
        assert "Wrote" not in result.output

    def test_explicit_source(self, tmp_path: Path) -> None:
        """--from is needed when the file name does not tell the vendor."""
        path = tmp_path / "pipeline.yml"
        path.write_text(GITLAB_PIPELINE)

        guessed = runner.invoke(app, ["convert", str(path)])
        assert guessed.exit_code == 2
        assert "Invalid Argument" in guessed.output

        explicit = runner.invoke(app, ["convert", str(path), "--from", "gitlab"])
        assert explicit.exit_code == 0
        assert "# Translated from GitLab CI" in explicit.output

    def test_unknown_vendor(self, gitlab_file: Path) -> None:
        """Unknown vendor names are usage errors."""
        result = runner.invoke(app, ["convert", str(gitlab_file), "--from", "travis"])
        assert result.exit_code == 2

    def test_unsupported_target(self, gitlab_file: Path) -> None:
        """Only Buildkite can be a target."""
        result = runner.invoke(app, ["convert", str(gitlab_file), "--to", "github"])
        assert result.exit_code == 2

    def test_unknown_format(self, gitlab_file: Path) -> None:
        """The diagnostics format is checked before translating."""
        result = runner.invoke(app, ["convert", str(gitlab_file), "--format", "json"])
        assert result.exit_code == 2

    def test_validate(self, gitlab_file: Path) -> None:
        """--validate checks the output shape."""
        result = runner.invoke(app, ["convert", str(gitlab_file), "--validate"])
        assert result.exit_code == 0
        assert "failed validation" not in result.output

    def test_errors_still_write_pipeline(self, tmp_path: Path) -> None:
        """Jobs that cannot be translated are reported; the rest is written."""
        path = tmp_path / ".gitlab-ci.yml"
        path.write_text(CYCLIC_GITLAB)
        result = runner.invoke(app, ["convert", str(path), "--format", "table"])
        assert result.exit_code == 1
        assert "E300" in result.output
        assert "steps:" in result.output

    def test_nonexistent_file(self) -> None:
        """A missing input file is rejected by the argument check."""
        result = runner.invoke(app, ["convert", "nonexistent.yml"])
        assert result.exit_code != 0


class TestBatchCommand:
    """Tests for the batch command."""

    def test_batch(self, github_file: Path, gitlab_file: Path, tmp_path: Path) -> None:
        """Each file gets its own output."""
        out = tmp_path / "out"
        result = runner.invoke(app, ["batch", str(github_file), str(gitlab_file), "-o", str(out)])
        assert result.exit_code == 0
        assert sorted(p.name for p in out.iterdir()) == [
            "ci-yml.buildkite.yml",
            "gitlab-ci-yml.buildkite.yml",
        ]
        assert "Translated 2 file(s)" in result.output

    def test_one_bad_file(self, gitlab_file: Path, tmp_path: Path) -> None:
        """A file with no known vendor fails alone."""
        unknown = tmp_path / "pipeline.yml"
        unknown.write_text(GITLAB_PIPELINE)
        out = tmp_path / "out"
        result = runner.invoke(app, ["batch", str(unknown), str(gitlab_file), "-o", str(out)])
        assert result.exit_code == 1
        assert "1 of 2 file(s) failed" in result.output
        assert (out / "gitlab-ci-yml.buildkite.yml").exists()

    def test_strict(self, github_file: Path, tmp_path: Path) -> None:
        """--strict fails files with warnings."""
        out = tmp_path / "out"
        result = runner.invoke(app, ["batch", str(github_file), "-o", str(out), "--strict"])
        assert result.exit_code == 1

    def test_output_name(self) -> None:
        """Output names are sanitized and unique."""
        taken: set[str] = set()
        assert output_name(Path("a/ci.yml"), Vendor.BUILDKITE, taken) == "ci-yml.buildkite.yml"
        assert output_name(Path("b/ci.yml"), Vendor.BUILDKITE, taken) == "ci-yml-2.buildkite.yml"
        assert output_name(Path("..."), Vendor.BUILDKITE, taken) == "pipeline.buildkite.yml"


class TestInspectCommand:
    """Tests for the inspect command."""

    def test_inspect(self, gitlab_file: Path) -> None:
        """The summary and the jobs are shown."""
        result = runner.invoke(app, ["inspect", str(gitlab_file)])
        assert result.exit_code == 0
        assert "Pipeline Summary" in result.output
        assert "GitLab CI" in result.output
        assert "deploy" in result.output

    def test_inspect_after_rules(self, gitlab_file: Path) -> None:
        """--apply shows the graph after the rules ran, approval gates included."""
        result = runner.invoke(app, ["inspect", str(gitlab_file), "--apply"])
        assert result.exit_code == 0
        assert "Approve" in result.output


class TestRulesCommand:
    """Tests for the rules command."""

    def test_all_rules(self) -> None:
        """Every rule of the target is listed."""
        result = runner.invoke(app, ["rules"])
        assert result.exit_code == 0
        assert "Buildkite Rules" in result.output
        assert f"{len(load_registry(Vendor.BUILDKITE))} rule(s)" in result.output

    def test_rules_for_source(self) -> None:
        """--from hides rules scoped to other sources."""
        expected = sum(
            1 for rule in load_registry(Vendor.BUILDKITE) if rule.matches_source(Vendor.JENKINS)
        )
        result = runner.invoke(app, ["rules", "--from", "jenkins"])
        assert result.exit_code == 0
        assert f"{expected} rule(s)" in result.output
