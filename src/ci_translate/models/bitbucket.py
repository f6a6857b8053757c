"""Models for ``bitbucket-pipelines.yml``."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ci_translate.models.common import ScalarStr, StrList


class BitbucketImage(BaseModel):
    """Build image, either a name or a mapping with credentials."""

    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, Field(min_length=1)]
    run_as_user: Annotated[int | None, Field(default=None, alias="run-as-user")]


def _image_from_string(value: Any) -> Any:
    if isinstance(value, str):
        return {"name": value}
    return value


class BitbucketArtifacts(BaseModel):
    """Artifact paths produced by a step."""

    model_config = ConfigDict(extra="ignore")

    paths: Annotated[StrList, Field(default_factory=list)]
    download: bool | StrList = True


class BitbucketCondition(BaseModel):
    """``condition.changesets`` of a step."""

    model_config = ConfigDict(extra="ignore")

    changesets: dict[str, StrList] | None = None


class BitbucketStep(BaseModel):
    """A single pipeline step.

    Example:
    -------
        ```yaml
        - step:
            name: Build
            caches: [node]
            script:
              - npm ci
        ```

    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: ScalarStr | None = None
    script: Annotated[list[Any], Field(min_length=1)]
    image: BitbucketImage | None = None
    caches: Annotated[StrList, Field(default_factory=list)]
    services: Annotated[StrList, Field(default_factory=list)]
    artifacts: BitbucketArtifacts | None = None
    trigger: Literal["automatic", "manual"] = "automatic"
    deployment: str | None = None
    size: str | None = None
    max_time: Annotated[int | None, Field(default=None, alias="max-time", ge=1)]
    after_script: Annotated[list[Any], Field(default_factory=list, alias="after-script")]
    condition: BitbucketCondition | None = None
    runs_on: Annotated[StrList, Field(default_factory=list, alias="runs-on")]

    @field_validator("image", mode="before")
    @classmethod
    def _parse_image(cls, v: Any) -> Any:
        return _image_from_string(v)

    @field_validator("artifacts", mode="before")
    @classmethod
    def _parse_artifacts(cls, v: Any) -> Any:
        if isinstance(v, list):
            return {"paths": v}
        return v


class BitbucketCacheKey(BaseModel):
    """Key of a custom cache definition."""

    model_config = ConfigDict(extra="ignore")

    files: Annotated[StrList, Field(min_length=1)]


class BitbucketCacheDefinition(BaseModel):
    """Custom cache under ``definitions.caches``."""

    model_config = ConfigDict(extra="ignore")

    path: str
    key: BitbucketCacheKey | None = None


class BitbucketService(BaseModel):
    """Service container under ``definitions.services``."""

    model_config = ConfigDict(extra="ignore")

    image: BitbucketImage
    variables: Annotated[dict[str, ScalarStr], Field(default_factory=dict)]
    memory: int | None = None
    type: str | None = None

    @field_validator("image", mode="before")
    @classmethod
    def _parse_image(cls, v: Any) -> Any:
        return _image_from_string(v)


class BitbucketDefinitions(BaseModel):
    """``definitions`` section."""

    model_config = ConfigDict(extra="ignore")

    caches: Annotated[dict[str, str | BitbucketCacheDefinition], Field(default_factory=dict)]
    services: Annotated[dict[str, BitbucketService], Field(default_factory=dict)]


class BitbucketOptions(BaseModel):
    """Global ``options``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    max_time: Annotated[int | None, Field(default=None, alias="max-time", ge=1)]
    size: str | None = None


class BitbucketConfig(BaseModel):
    """Root of a Bitbucket Pipelines file.

    Pipeline sections are kept raw; the parser walks them and validates
    steps one at a time.
    """

    model_config = ConfigDict(extra="ignore")

    image: BitbucketImage | None = None
    definitions: BitbucketDefinitions | None = None
    options: BitbucketOptions | None = None
    pipelines: Annotated[dict[str, Any], Field(min_length=1)]

    @field_validator("image", mode="before")
    @classmethod
    def _parse_image(cls, v: Any) -> Any:
        return _image_from_string(v)
