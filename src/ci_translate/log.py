"""Logging setup for the command-line layer.

Library modules only create module loggers; handlers are installed by the
CLI through ``setup_logging``.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "ci_translate"


def setup_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Route the package logger to a rich handler on stderr.

    Args:
    ----
        verbose: Log at DEBUG instead of WARNING.
        console: Console to log to; a stderr console by default.

    Returns:
    -------
        The configured package logger.

    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=verbose,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
