"""Tests for logging setup."""

import logging
from io import StringIO

from ci_translate.log import LOGGER_NAME, setup_logging
from rich.console import Console
from rich.logging import RichHandler


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_levels(self) -> None:
        """--verbose switches the package logger to DEBUG."""
        assert setup_logging().level == logging.WARNING
        assert setup_logging(verbose=True).level == logging.DEBUG

    def test_single_handler(self) -> None:
        """Repeated setup replaces the rich handler instead of stacking it."""
        setup_logging()
        logger = setup_logging()
        handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
        assert len(handlers) == 1
        assert not logger.propagate

    def test_module_loggers_reach_console(self) -> None:
        """Child loggers write through the configured console."""
        console = Console(file=StringIO(), width=120)
        setup_logging(verbose=True, console=console)
        logging.getLogger(f"{LOGGER_NAME}.batch").debug("translating 3 item(s)")
        assert "translating 3 item(s)" in console.file.getvalue()  # type: ignore[attr-defined]
