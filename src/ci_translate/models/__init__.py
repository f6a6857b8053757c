"""Pydantic models for source pipeline documents.

One module per YAML dialect mirrors the vendor's document structure. The
models are the vendor-specific syntax tree; parsers validate them job by
job and lower them to the canonical IR.

Primary Entry Points:
    load_yaml_text(text): Parse YAML text into a root mapping
    load_yaml_file(path): Same, from a file
    LoaderError: Raised for unreadable or malformed documents

Model Hierarchy:
    GitHubWorkflow   -> GitHubJob -> GitHubStep
    CircleConfig     -> CircleJob, CircleCommand, CircleWorkflowJob
    BitbucketConfig  -> BitbucketStep
    GitLabJob        (top-level keys other than RESERVED_KEYS)
"""

from ci_translate.models.bitbucket import BitbucketConfig, BitbucketStep
from ci_translate.models.circleci import (
    CircleCommand,
    CircleConfig,
    CircleJob,
    CircleWorkflowJob,
)
from ci_translate.models.common import (
    EnvMap,
    LoaderError,
    ScalarStr,
    StrList,
    load_yaml_file,
    load_yaml_text,
    to_scalar_string,
)
from ci_translate.models.github import GitHubJob, GitHubStep, GitHubWorkflow
from ci_translate.models.gitlab import GitLabJob

__all__ = [
    # Common
    "EnvMap",
    "LoaderError",
    "ScalarStr",
    "StrList",
    "load_yaml_file",
    "load_yaml_text",
    "to_scalar_string",
    # GitHub Actions
    "GitHubJob",
    "GitHubStep",
    "GitHubWorkflow",
    # CircleCI
    "CircleCommand",
    "CircleConfig",
    "CircleJob",
    "CircleWorkflowJob",
    # Bitbucket Pipelines
    "BitbucketConfig",
    "BitbucketStep",
    # GitLab CI
    "GitLabJob",
]
