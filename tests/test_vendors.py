"""Tests for vendor identifiers."""

import pytest
from ci_translate.vendors import Vendor, parse_vendor


class TestParseVendor:
    """Tests for parse_vendor."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("github", Vendor.GITHUB_ACTIONS),
            (" GitLab ", Vendor.GITLAB),
            ("gha", Vendor.GITHUB_ACTIONS),
            ("circle", Vendor.CIRCLECI),
            ("bitbucket-pipelines", Vendor.BITBUCKET),
            ("Jenkinsfile", Vendor.JENKINS),
            ("bk", Vendor.BUILDKITE),
            (Vendor.JENKINS, Vendor.JENKINS),
        ],
    )
    def test_names_and_aliases(self, value: str, expected: Vendor) -> None:
        """Canonical names, aliases and members resolve case-insensitively."""
        assert parse_vendor(value) is expected

    def test_unknown(self) -> None:
        """Unknown names list the known vendors."""
        with pytest.raises(ValueError, match="Unknown CI vendor 'travis'. Known vendors: github"):
            parse_vendor("travis")


class TestVendor:
    """Tests for the Vendor enum."""

    def test_display_names(self) -> None:
        """Every vendor has a display name."""
        assert Vendor.GITHUB_ACTIONS.display_name == "GitHub Actions"
        assert Vendor.BITBUCKET.display_name == "Bitbucket Pipelines"
        assert all(v.display_name for v in Vendor)

    def test_str_values(self) -> None:
        """Members compare equal to their command-line names."""
        assert Vendor.GITLAB == "gitlab"
