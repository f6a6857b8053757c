"""Collaborator interfaces of the translator and their built-in implementations.

The translator never guesses a vendor from document content and never
runs a linter itself; both are collaborators passed in by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import PurePosixPath
from typing import Protocol, runtime_checkable

import yaml

from ci_translate.vendors import Vendor


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating target text."""

    ok: bool
    messages: tuple[str, ...] = ()


@runtime_checkable
class PipelineValidator(Protocol):
    """Checks emitted target text, e.g. with a linter or schema."""

    def validate(self, text: str) -> ValidationOutcome:
        """Validate the text of a target document."""
        ...


@runtime_checkable
class VendorClassifier(Protocol):
    """Decides which dialect a source document is written in."""

    def classify(self, name: str, text: str) -> Vendor | None:
        """Return the vendor of a document, or None when unsure."""
        ...


class FilenameVendorClassifier:
    """Classify a source document by its conventional file location.

    Examples
    --------
        >>> FilenameVendorClassifier().classify(".gitlab-ci.yml", "")
        <Vendor.GITLAB: 'gitlab'>
        >>> FilenameVendorClassifier().classify("ci/Jenkinsfile", "") is Vendor.JENKINS
        True

    """

    PATTERNS: tuple[tuple[str, Vendor], ...] = (
        ("*.github/workflows/*.yml", Vendor.GITHUB_ACTIONS),
        ("*.github/workflows/*.yaml", Vendor.GITHUB_ACTIONS),
        ("*.circleci/config.yml", Vendor.CIRCLECI),
        ("*.circleci/config.yaml", Vendor.CIRCLECI),
        ("*bitbucket-pipelines.yml", Vendor.BITBUCKET),
        ("*bitbucket-pipelines.yaml", Vendor.BITBUCKET),
        ("*.gitlab-ci.yml", Vendor.GITLAB),
        ("*.gitlab-ci.yaml", Vendor.GITLAB),
        ("*Jenkinsfile", Vendor.JENKINS),
        ("*Jenkinsfile.*", Vendor.JENKINS),
        ("*.jenkinsfile", Vendor.JENKINS),
    )

    def classify(self, name: str, text: str) -> Vendor | None:
        """Match the path against known locations; the text is not inspected."""
        path = PurePosixPath(name.replace("\\", "/")).as_posix()
        candidate = path if path.startswith("/") else "/" + path
        for pattern, vendor in self.PATTERNS:
            if fnmatchcase(candidate, pattern):
                return vendor
        return None


class YamlSyntaxValidator:
    """Check that target text is a YAML mapping with a ``steps`` list."""

    def validate(self, text: str) -> ValidationOutcome:
        """Parse the text and check the document shape."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            return ValidationOutcome(ok=False, messages=(f"YAML syntax error: {e}",))

        if not isinstance(data, dict):
            return ValidationOutcome(
                ok=False,
                messages=(f"Expected mapping at root level, got {type(data).__name__}",),
            )

        steps = data.get("steps")
        if not isinstance(steps, list):
            return ValidationOutcome(ok=False, messages=("Missing 'steps' list",))

        messages = tuple(
            f"Step {i} is not a mapping" for i, step in enumerate(steps, 1)
            if not isinstance(step, dict)
        )
        return ValidationOutcome(ok=not messages, messages=messages)
