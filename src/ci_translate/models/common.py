"""Common types, validators and YAML loading for source models."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BeforeValidator


class LoaderError(Exception):
    """Error while loading a YAML document."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        """Initialize LoaderError.

        Args:
        ----
            message: Error message describing what went wrong.
            path: Optional path to the file that caused the error.

        """
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


def load_yaml_text(
    text: str,
    path: Path | None = None,
    loader: type[yaml.SafeLoader] = yaml.SafeLoader,
) -> dict[str, Any]:
    """Parse YAML text and return the root mapping.

    YAML anchors and aliases are resolved by the loader itself.

    Args:
    ----
        text: Raw YAML text.
        path: Optional source path, used in error messages only.
        loader: Safe loader class, for dialects with custom tags.

    Returns:
    -------
        Parsed root dictionary.

    Raises:
    ------
        LoaderError: If the text is not YAML or its root is not a mapping.

    """
    try:
        data = yaml.load(text, Loader=loader)  # noqa: S506 - always a SafeLoader subclass
    except yaml.YAMLError as e:
        raise LoaderError(f"YAML parsing error: {e}", path) from e

    if data is None:
        raise LoaderError("Document is empty", path)

    if not isinstance(data, dict):
        raise LoaderError(
            f"Expected mapping at root level, got {type(data).__name__}",
            path,
        )

    return data


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return the root mapping.

    Raises
    ------
        LoaderError: If the file cannot be read or parsed.

    """
    if not path.exists():
        raise LoaderError(f"File not found: {path}", path)

    if not path.is_file():
        raise LoaderError(f"Not a file: {path}", path)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LoaderError(f"File read error: {e}", path) from e

    return load_yaml_text(text, path)


def to_scalar_string(value: Any) -> str:
    """Render a YAML scalar the way a shell would see it.

    Examples
    --------
        >>> to_scalar_string(True)
        'true'
        >>> to_scalar_string(18)
        '18'
        >>> to_scalar_string(3.10)
        '3.1'

    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _coerce_str_list(value: Any) -> Any:
    """Accept a single string where a list of strings is expected."""
    if value is None:
        return []
    if isinstance(value, str | int | float):
        return [to_scalar_string(value)]
    if isinstance(value, list):
        return [
            to_scalar_string(v) if isinstance(v, str | int | float | bool) else v for v in value
        ]
    return value


def _coerce_env(value: Any) -> Any:
    """Coerce environment values to strings."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): to_scalar_string(v) for k, v in value.items()}
    if isinstance(value, list):
        # KEY=value list form (CircleCI, Bitbucket variables)
        env: dict[str, str] = {}
        for item in value:
            if isinstance(item, str) and "=" in item:
                key, _, val = item.partition("=")
                env[key] = val
            elif isinstance(item, dict):
                env.update({str(k): to_scalar_string(v) for k, v in item.items()})
            else:
                raise ValueError(f"Invalid environment entry: {item!r}")
        return env
    return value


def _coerce_optional_str(value: Any) -> Any:
    """Coerce scalars (e.g. ``if: true``) to strings."""
    if isinstance(value, bool | int | float):
        return to_scalar_string(value)
    return value


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]
"""List of strings that also accepts a single scalar."""

EnvMap = Annotated[dict[str, str], BeforeValidator(_coerce_env)]
"""Environment mapping with values coerced to strings."""

ScalarStr = Annotated[str, BeforeValidator(_coerce_optional_str)]
"""String that also accepts numbers and booleans."""
