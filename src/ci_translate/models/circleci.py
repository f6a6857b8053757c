"""Models for CircleCI ``.circleci/config.yml`` files."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ci_translate.models.common import EnvMap, ScalarStr, StrList


class CircleDockerImage(BaseModel):
    """One entry of a ``docker`` executor list; the first is the primary container."""

    model_config = ConfigDict(extra="ignore")

    image: Annotated[str, Field(min_length=1)]
    name: str | None = None
    environment: Annotated[EnvMap, Field(default_factory=dict)]
    user: str | None = None


class CircleExecutor(BaseModel):
    """Execution environment shared by executors and jobs."""

    model_config = ConfigDict(extra="ignore")

    docker: list[CircleDockerImage] | None = None
    machine: bool | dict[str, Any] | None = None
    macos: dict[str, Any] | None = None
    resource_class: str | None = None
    working_directory: str | None = None
    environment: Annotated[EnvMap, Field(default_factory=dict)]
    shell: str | None = None


class CircleParameter(BaseModel):
    """Declared parameter of a reusable command, job or executor."""

    model_config = ConfigDict(extra="ignore")

    type: str = "string"
    default: Any = None
    description: str | None = None


class CircleCommand(BaseModel):
    """Reusable, parameterized command block."""

    model_config = ConfigDict(extra="ignore")

    description: str | None = None
    parameters: Annotated[dict[str, CircleParameter], Field(default_factory=dict)]
    steps: Annotated[list[Any], Field(min_length=1)]


class CircleJob(CircleExecutor):
    """A job definition under ``jobs``.

    ``executor`` is either the name of an entry under ``executors`` or an
    inline ``{name: ..., <params>}`` mapping.
    """

    executor: str | dict[str, Any] | None = None
    parallelism: Annotated[int | None, Field(default=None, ge=1)]
    parameters: Annotated[dict[str, CircleParameter], Field(default_factory=dict)]
    steps: Annotated[list[Any], Field(min_length=1)]

    @field_validator("steps")
    @classmethod
    def _steps_shape(cls, v: list[Any]) -> list[Any]:
        for index, step in enumerate(v):
            if isinstance(step, str):
                continue
            if not isinstance(step, dict) or len(step) != 1:
                raise ValueError(f"step {index} must be a name or a single-key mapping")
        return v

    @model_validator(mode="after")
    def _has_executor(self) -> CircleJob:
        if not (self.executor or self.docker or self.machine or self.macos):
            raise ValueError("a job needs an executor, docker, machine or macos environment")
        return self


class CircleFilterSet(BaseModel):
    """``only`` / ``ignore`` pattern lists."""

    model_config = ConfigDict(extra="ignore")

    only: Annotated[StrList, Field(default_factory=list)]
    ignore: Annotated[StrList, Field(default_factory=list)]


class CircleFilters(BaseModel):
    """Branch and tag filters of a workflow job or trigger."""

    model_config = ConfigDict(extra="ignore")

    branches: CircleFilterSet | None = None
    tags: CircleFilterSet | None = None


class CircleMatrix(BaseModel):
    """Workflow job matrix."""

    model_config = ConfigDict(extra="ignore")

    parameters: Annotated[dict[str, list[Any]], Field(min_length=1)]
    exclude: Annotated[list[dict[str, Any]], Field(default_factory=list)]
    alias: str | None = None


class CircleWorkflowJob(BaseModel):
    """Invocation of a job inside a workflow.

    Extra keys are job parameters and are kept for substitution.
    """

    model_config = ConfigDict(extra="allow")

    requires: Annotated[StrList, Field(default_factory=list)]
    filters: CircleFilters | None = None
    context: Annotated[StrList, Field(default_factory=list)]
    type: str | None = None
    name: ScalarStr | None = None
    matrix: CircleMatrix | None = None

    @property
    def parameters(self) -> dict[str, Any]:
        """Parameters passed to the job."""
        return dict(self.model_extra or {})


class CircleScheduleTrigger(BaseModel):
    """Legacy ``triggers: - schedule:`` entry."""

    model_config = ConfigDict(extra="ignore")

    cron: str
    filters: CircleFilters | None = None


class CircleConfig(BaseModel):
    """Root of a CircleCI configuration.

    Jobs and workflows are kept raw and validated one at a time.
    """

    model_config = ConfigDict(extra="ignore")

    version: ScalarStr
    orbs: Annotated[dict[str, Any], Field(default_factory=dict)]
    executors: Annotated[dict[str, CircleExecutor], Field(default_factory=dict)]
    commands: Annotated[dict[str, Any], Field(default_factory=dict)]
    parameters: Annotated[dict[str, CircleParameter], Field(default_factory=dict)]
    jobs: Annotated[dict[str, Any], Field(min_length=1)]
    workflows: Annotated[dict[str, Any], Field(default_factory=dict)]

    @field_validator("version")
    @classmethod
    def _supported_version(cls, v: str) -> str:
        if not v.startswith("2"):
            raise ValueError(f"unsupported CircleCI config version {v}")
        return v
