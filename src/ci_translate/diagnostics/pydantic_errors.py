"""Translate pydantic validation errors into readable parse messages."""

from __future__ import annotations

from pydantic import ValidationError
from pydantic_core import ErrorDetails

# Translation map for pydantic error types
ERROR_TRANSLATIONS: dict[str, str] = {
    "missing": "required key is missing",
    "extra_forbidden": "key is not allowed here",
    "string_type": "must be a string",
    "int_type": "must be an integer",
    "int_parsing": "must be an integer",
    "float_type": "must be a number",
    "bool_type": "must be true or false",
    "bool_parsing": "must be true or false",
    "list_type": "must be a list",
    "dict_type": "must be a mapping",
    "model_type": "must be a mapping",
    "literal_error": "must be one of the allowed values",
    "value_error": "invalid value",
    "greater_than": "value is too small",
    "greater_than_equal": "value is too small",
    "less_than": "value is too large",
}


def translate_pydantic_error(error: ErrorDetails) -> str:
    """Translate a pydantic error to a short, user-facing message.

    Args:
    ----
        error: The pydantic error details.

    Returns:
    -------
        Readable error message.

    """
    error_type = error["type"]
    ctx = error.get("ctx") or {}

    if error_type == "literal_error":
        return f"must be one of: {ctx.get('expected', 'unknown')}"
    if error_type in ("greater_than", "greater_than_equal"):
        bound = ctx.get("gt", ctx.get("ge", 0))
        return f"must be at least {bound}"
    if error_type == "value_error" and "error" in ctx:
        return str(ctx["error"])

    return ERROR_TRANSLATIONS.get(error_type, error["msg"])


def format_pydantic_location(loc: tuple[str | int, ...]) -> str:
    """Format a pydantic location tuple as a dotted path.

    Args:
    ----
        loc: Location tuple from a pydantic error.

    Returns:
    -------
        Path such as ``steps[2].run``.

    """
    parts: list[str] = []
    for part in loc:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            if parts:
                parts.append(".")
            parts.append(str(part))

    return "".join(parts)


def summarize_validation_error(error: ValidationError, prefix: str = "", limit: int = 3) -> str:
    """Condense a pydantic ValidationError into one diagnostic message.

    Args:
    ----
        error: The validation error raised for a source unit.
        prefix: Path of the source unit, prepended to every location.
        limit: Maximum number of individual problems to list.

    Returns:
    -------
        Message like ``jobs.build.steps: must be a list``.

    """
    problems: list[str] = []
    details = error.errors()
    for detail in details[:limit]:
        location = format_pydantic_location(tuple(detail["loc"]))
        if prefix:
            location = f"{prefix}.{location}" if location else prefix
        problems.append(f"{location}: {translate_pydantic_error(detail)}")

    if len(details) > limit:
        problems.append(f"... and {len(details) - limit} more")

    return "; ".join(problems)
