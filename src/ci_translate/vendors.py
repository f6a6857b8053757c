"""CI vendor identifiers."""

from __future__ import annotations

from enum import Enum


class Vendor(str, Enum):
    """Closed set of CI dialects known to the translator.

    Values double as the names accepted on the command line.
    """

    GITHUB_ACTIONS = "github"
    CIRCLECI = "circleci"
    BITBUCKET = "bitbucket"
    GITLAB = "gitlab"
    JENKINS = "jenkins"
    BUILDKITE = "buildkite"

    @property
    def display_name(self) -> str:
        """Human-readable vendor name."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: dict[Vendor, str] = {
    Vendor.GITHUB_ACTIONS: "GitHub Actions",
    Vendor.CIRCLECI: "CircleCI",
    Vendor.BITBUCKET: "Bitbucket Pipelines",
    Vendor.GITLAB: "GitLab CI",
    Vendor.JENKINS: "Jenkins",
    Vendor.BUILDKITE: "Buildkite",
}

_ALIASES: dict[str, Vendor] = {
    "github-actions": Vendor.GITHUB_ACTIONS,
    "gha": Vendor.GITHUB_ACTIONS,
    "circle": Vendor.CIRCLECI,
    "bitbucket-pipelines": Vendor.BITBUCKET,
    "gitlab-ci": Vendor.GITLAB,
    "jenkinsfile": Vendor.JENKINS,
    "bk": Vendor.BUILDKITE,
}


def parse_vendor(value: str | Vendor) -> Vendor:
    """Resolve a vendor name or alias to a ``Vendor``.

    Args:
    ----
        value: Vendor enum member, canonical value or known alias.

    Returns:
    -------
        The matching vendor.

    Raises:
    ------
        ValueError: If the name is not a known vendor.

    Examples:
    --------
        >>> parse_vendor("GitHub")
        <Vendor.GITHUB_ACTIONS: 'github'>
        >>> parse_vendor("gitlab-ci")
        <Vendor.GITLAB: 'gitlab'>

    """
    if isinstance(value, Vendor):
        return value

    name = value.strip().lower()
    try:
        return Vendor(name)
    except ValueError:
        pass

    if name in _ALIASES:
        return _ALIASES[name]

    known = ", ".join(v.value for v in Vendor)
    raise ValueError(f"Unknown CI vendor '{value}'. Known vendors: {known}")
