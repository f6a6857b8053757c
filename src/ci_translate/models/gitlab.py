"""Models for GitLab CI ``.gitlab-ci.yml`` files."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ci_translate.models.common import EnvMap, ScalarStr, StrList

# Top-level keys that are not job definitions
RESERVED_KEYS = frozenset(
    {
        "default",
        "include",
        "stages",
        "variables",
        "workflow",
        "image",
        "services",
        "cache",
        "before_script",
        "after_script",
        "spec",
    }
)

DEFAULT_STAGES = ("build", "test", "deploy")


class GitLabImage(BaseModel):
    """Job image, either a name or a mapping."""

    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, Field(min_length=1)]
    entrypoint: StrList | None = None


class GitLabService(BaseModel):
    """Service container."""

    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, Field(min_length=1)]
    alias: str | None = None
    variables: Annotated[EnvMap, Field(default_factory=dict)]


def _named(value: Any) -> Any:
    if isinstance(value, str):
        return {"name": value}
    return value


class GitLabCacheKey(BaseModel):
    """File-based cache key."""

    model_config = ConfigDict(extra="ignore")

    files: Annotated[StrList, Field(min_length=1)]
    prefix: ScalarStr | None = None


class GitLabCache(BaseModel):
    """Job cache."""

    model_config = ConfigDict(extra="ignore")

    key: ScalarStr | GitLabCacheKey | None = None
    paths: Annotated[StrList, Field(default_factory=list)]
    fallback_keys: Annotated[StrList, Field(default_factory=list)]
    policy: str | None = None


class GitLabArtifacts(BaseModel):
    """Job artifacts."""

    model_config = ConfigDict(extra="ignore")

    paths: Annotated[StrList, Field(default_factory=list)]
    expire_in: str | None = None
    when: str | None = None


class GitLabRule(BaseModel):
    """One entry of ``rules``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    if_: Annotated[str | None, Field(default=None, alias="if")]
    changes: StrList | dict[str, Any] | None = None
    when: str | None = None
    allow_failure: bool | None = None


class GitLabRefFilter(BaseModel):
    """Expanded form of ``only`` / ``except``."""

    model_config = ConfigDict(extra="ignore")

    refs: Annotated[StrList, Field(default_factory=list)]
    changes: Annotated[StrList, Field(default_factory=list)]
    variables: Annotated[StrList, Field(default_factory=list)]


def _ref_filter(value: Any) -> Any:
    if value is None or isinstance(value, dict):
        return value
    if isinstance(value, str):
        return {"refs": [value]}
    if isinstance(value, list):
        return {"refs": value}
    return value


class GitLabNeed(BaseModel):
    """Entry of ``needs``."""

    model_config = ConfigDict(extra="ignore")

    job: str
    artifacts: bool = True
    optional: bool = False


class GitLabRetry(BaseModel):
    """Retry configuration."""

    model_config = ConfigDict(extra="ignore")

    max: Annotated[int, Field(ge=0, le=2)]
    when: Annotated[StrList, Field(default_factory=list)]


class GitLabParallel(BaseModel):
    """``parallel`` as a count or a matrix."""

    model_config = ConfigDict(extra="ignore")

    matrix: Annotated[list[dict[str, Any]], Field(min_length=1)]


class GitLabJob(BaseModel):
    """A job definition after ``extends`` resolution."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    stage: str = "test"
    script: Annotated[StrList, Field(default_factory=list)]
    before_script: Annotated[StrList, Field(default_factory=list)]
    after_script: Annotated[StrList, Field(default_factory=list)]
    image: GitLabImage | None = None
    services: Annotated[list[GitLabService], Field(default_factory=list)]
    variables: Annotated[EnvMap, Field(default_factory=dict)]
    needs: list[GitLabNeed] | None = None
    dependencies: list[str] | None = None
    rules: Annotated[list[GitLabRule], Field(default_factory=list)]
    only: GitLabRefFilter | None = None
    except_: Annotated[GitLabRefFilter | None, Field(default=None, alias="except")]
    when: str | None = None
    allow_failure: bool | dict[str, Any] = False
    parallel: int | GitLabParallel | None = None
    cache: GitLabCache | list[GitLabCache] | None = None
    artifacts: GitLabArtifacts | None = None
    retry: int | GitLabRetry | None = None
    timeout: str | None = None
    tags: Annotated[StrList, Field(default_factory=list)]
    environment: str | dict[str, Any] | None = None
    trigger: str | dict[str, Any] | None = None
    resource_group: str | None = None

    @field_validator("image", mode="before")
    @classmethod
    def _parse_image(cls, v: Any) -> Any:
        return _named(v)

    @field_validator("services", mode="before")
    @classmethod
    def _parse_services(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_named(s) for s in v]
        return v

    @field_validator("only", "except_", mode="before")
    @classmethod
    def _parse_ref_filter(cls, v: Any) -> Any:
        return _ref_filter(v)

    @field_validator("needs", mode="before")
    @classmethod
    def _parse_needs(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"job": n} if isinstance(n, str) else n for n in v]
        return v

    @model_validator(mode="after")
    def _script_or_trigger(self) -> GitLabJob:
        if not self.script and self.trigger is None:
            raise ValueError("a job must define 'script' or 'trigger'")
        return self

