"""Dialect parsers: vendor pipeline text to the canonical IR."""

from ci_translate.parsers.base import DialectParser, ParseResult
from ci_translate.parsers.bitbucket import BitbucketParser
from ci_translate.parsers.circleci import CircleCIParser
from ci_translate.parsers.github import GitHubActionsParser
from ci_translate.parsers.gitlab import GitLabCIParser
from ci_translate.parsers.jenkins import JenkinsParser
from ci_translate.vendors import Vendor

PARSERS: dict[Vendor, type[DialectParser]] = {
    Vendor.GITHUB_ACTIONS: GitHubActionsParser,
    Vendor.CIRCLECI: CircleCIParser,
    Vendor.BITBUCKET: BitbucketParser,
    Vendor.GITLAB: GitLabCIParser,
    Vendor.JENKINS: JenkinsParser,
}


def get_parser(vendor: Vendor) -> DialectParser:
    """Create a fresh parser for a source vendor.

    Raises
    ------
        ValueError: If the vendor cannot be used as a translation source.

    """
    parser_class = PARSERS.get(vendor)
    if parser_class is None:
        sources = ", ".join(v.value for v in PARSERS)
        raise ValueError(
            f"{vendor.display_name} is not a supported source dialect. Supported: {sources}"
        )
    return parser_class()


__all__ = [
    "PARSERS",
    "BitbucketParser",
    "CircleCIParser",
    "DialectParser",
    "GitHubActionsParser",
    "GitLabCIParser",
    "JenkinsParser",
    "ParseResult",
    "get_parser",
]
