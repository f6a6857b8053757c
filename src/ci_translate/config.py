"""Translator settings, loadable from a YAML file."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ci_translate.diagnostics.pydantic_errors import summarize_validation_error
from ci_translate.models.common import LoaderError, load_yaml_file


class TranslatorSettings(BaseModel):
    """Options that change how a pipeline is translated.

    Example settings file::

        prefer_native_matrix: false
        section_markers: true
        strict: true
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    prefer_native_matrix: bool = Field(
        default=True,
        description="Use the target's matrix syntax when possible instead of duplicating jobs",
    )
    section_markers: bool = Field(
        default=True,
        description="Write a banner and one marker comment per step",
    )
    hoist_global_env: bool = Field(
        default=True,
        description="Move environment shared by every job to the document root",
    )
    strict: bool = Field(
        default=False,
        description="Treat warnings as failures in the CLI exit code",
    )


def load_settings(path: Path | None = None) -> TranslatorSettings:
    """Load settings from a YAML file, or return the defaults.

    Raises
    ------
        LoaderError: If the file cannot be read or has invalid settings.

    """
    if path is None:
        return TranslatorSettings()

    data = load_yaml_file(path)
    try:
        return TranslatorSettings.model_validate(data)
    except ValidationError as e:
        raise LoaderError(f"Invalid settings: {summarize_validation_error(e)}", path) from e
