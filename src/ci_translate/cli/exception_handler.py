"""Map exceptions raised by CLI commands to rich panels and exit codes.

Exit code 1 means the input could not be translated cleanly, exit code 2
means the command line itself was wrong (unknown vendor, target or format).
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable
from functools import wraps
from typing import TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ci_translate.models.common import LoaderError
from ci_translate.translator import TranslationFailedError

T = TypeVar("T")

EXIT_FAILED = 1
EXIT_USAGE = 2

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def handle_exceptions(
    verbose: bool = False,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Wrap a command so its failures end in a panel and an exit code.

    Args:
    ----
        verbose: Show the collected issues of failed translations and the
            traceback of unexpected errors.

    Returns:
    -------
        Decorator function.

    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: object, **kwargs: object) -> T:
            try:
                return func(*args, **kwargs)
            except typer.Exit:
                raise
            except Exception as e:
                code = report_exception(e, verbose)
                raise typer.Exit(code) from None

        return wrapper

    return decorator


def report_exception(error: Exception, verbose: bool = False) -> int:
    """Print an exception for the user and pick the exit code.

    Returns
    -------
        ``EXIT_USAGE`` for bad arguments, ``EXIT_FAILED`` otherwise.

    """
    if isinstance(error, TranslationFailedError):
        _panel(str(error), "Translation Failed")
        if verbose:
            console.print(error.format_issues(), markup=False)
        return EXIT_FAILED

    if isinstance(error, LoaderError):
        _panel(f"Cannot load file:\n{error}", "Error")
        return EXIT_FAILED

    if isinstance(error, OSError) and error.filename:
        reason = error.strerror or type(error).__name__
        _panel(f"{reason}: {error.filename}", "Error")
        return EXIT_FAILED

    if isinstance(error, ValueError):
        _panel(str(error), "Invalid Argument")
        return EXIT_USAGE

    logger.debug("Unhandled error", exc_info=error)
    _panel(f"An unexpected error occurred:\n{error}", "Error")
    if verbose:
        console.print("\n[dim]Traceback:[/dim]")
        console.print(
            "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            markup=False,
        )
    else:
        console.print("\n[dim]Use --verbose for full traceback[/dim]")
    return EXIT_FAILED


def _panel(message: str, title: str) -> None:
    console.print(Panel(Text(message, style="red"), title=title, border_style="red"))
