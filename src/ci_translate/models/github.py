"""Models for GitHub Actions workflow files."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ci_translate.models.common import EnvMap, ScalarStr, StrList


class GitHubContainer(BaseModel):
    """Job container or service container.

    Example:
    -------
        ```yaml
        container:
          image: node:20
          env:
            NODE_ENV: test
        ```

    """

    model_config = ConfigDict(extra="ignore")

    image: Annotated[str, Field(min_length=1, description="Container image")]
    env: Annotated[EnvMap, Field(default_factory=dict)]
    ports: Annotated[StrList, Field(default_factory=list)]
    options: str | None = None


def _container_from_string(value: Any) -> Any:
    if isinstance(value, str):
        return {"image": value}
    return value


class GitHubRunDefaults(BaseModel):
    """``defaults.run`` settings."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    shell: str | None = None
    working_directory: Annotated[str | None, Field(default=None, alias="working-directory")]


class GitHubDefaults(BaseModel):
    """``defaults`` block of a workflow or job."""

    model_config = ConfigDict(extra="ignore")

    run: GitHubRunDefaults | None = None


class GitHubStep(BaseModel):
    """A single job step (``run`` or ``uses``)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    name: ScalarStr | None = None
    run: ScalarStr | None = None
    uses: str | None = None
    with_: Annotated[dict[str, Any], Field(default_factory=dict, alias="with")]
    env: Annotated[EnvMap, Field(default_factory=dict)]
    if_: Annotated[ScalarStr | None, Field(default=None, alias="if")]
    shell: str | None = None
    working_directory: Annotated[str | None, Field(default=None, alias="working-directory")]
    continue_on_error: Annotated[
        bool | str, Field(default=False, alias="continue-on-error")
    ]

    @model_validator(mode="after")
    def _run_or_uses(self) -> GitHubStep:
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step must define exactly one of 'run' or 'uses'")
        return self


class GitHubStrategy(BaseModel):
    """Job ``strategy`` block."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    matrix: dict[str, Any] | str | None = None
    fail_fast: Annotated[bool | str | None, Field(default=None, alias="fail-fast")]
    max_parallel: Annotated[int | str | None, Field(default=None, alias="max-parallel")]


class GitHubJob(BaseModel):
    """A workflow job.

    Either ``steps`` or ``uses`` (reusable workflow call) is required.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: ScalarStr | None = None
    runs_on: Annotated[
        str | list[str] | dict[str, Any] | None, Field(default=None, alias="runs-on")
    ]
    needs: Annotated[StrList, Field(default_factory=list)]
    if_: Annotated[ScalarStr | None, Field(default=None, alias="if")]
    env: Annotated[EnvMap, Field(default_factory=dict)]
    defaults: GitHubDefaults | None = None
    steps: Annotated[list[GitHubStep], Field(default_factory=list)]
    container: GitHubContainer | None = None
    services: Annotated[dict[str, GitHubContainer], Field(default_factory=dict)]
    strategy: GitHubStrategy | None = None
    timeout_minutes: Annotated[int | None, Field(default=None, alias="timeout-minutes", ge=1)]
    continue_on_error: Annotated[
        bool | str, Field(default=False, alias="continue-on-error")
    ]
    environment: str | dict[str, Any] | None = None
    concurrency: str | dict[str, Any] | None = None
    uses: str | None = None
    with_: Annotated[dict[str, Any], Field(default_factory=dict, alias="with")]
    secrets: dict[str, Any] | str | None = None

    @field_validator("container", mode="before")
    @classmethod
    def _parse_container(cls, v: Any) -> Any:
        return _container_from_string(v)

    @field_validator("services", mode="before")
    @classmethod
    def _parse_services(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {name: _container_from_string(spec) for name, spec in v.items()}
        return v

    @model_validator(mode="after")
    def _steps_or_uses(self) -> GitHubJob:
        if not self.steps and not self.uses:
            raise ValueError("a job must define 'steps' or call a reusable workflow with 'uses'")
        return self


class GitHubWorkflow(BaseModel):
    """Root of a GitHub Actions workflow.

    Jobs are kept as raw mappings and validated one at a time by the
    parser, so one malformed job does not reject the document.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: ScalarStr | None = None
    on: Annotated[Any, Field(default=None)]
    env: Annotated[EnvMap, Field(default_factory=dict)]
    defaults: GitHubDefaults | None = None
    concurrency: str | dict[str, Any] | None = None
    jobs: Annotated[dict[str, Any], Field(min_length=1)]

    @model_validator(mode="before")
    @classmethod
    def _yaml11_on_key(cls, data: Any) -> Any:
        # PyYAML reads the bare key `on` as boolean True.
        if isinstance(data, dict) and True in data and "on" not in data:
            data = {("on" if k is True else k): v for k, v in data.items()}
        return data
