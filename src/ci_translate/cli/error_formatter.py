"""Diagnostic formatting with Rich."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ci_translate.diagnostics.errors import Diagnostic, Severity

_COLORS = {Severity.ERROR: "red", Severity.WARNING: "yellow"}


def _errors(diagnostics: Sequence[Diagnostic]) -> list[Diagnostic]:
    return [d for d in diagnostics if d.severity == Severity.ERROR]


def _warnings(diagnostics: Sequence[Diagnostic]) -> list[Diagnostic]:
    return [d for d in diagnostics if d.severity == Severity.WARNING]


class DiagnosticFormatter:
    """Formats translation diagnostics for terminal display."""

    def __init__(self, console: Console | None = None, show_features: bool = True) -> None:
        """Initialize formatter.

        Args:
        ----
            console: Rich Console for output.
            show_features: Whether to show the feature each diagnostic is about.

        """
        self.console = console or Console(stderr=True)
        self.show_features = show_features

    def format_diagnostics(
        self,
        diagnostics: Sequence[Diagnostic],
        source_path: Path | None = None,
    ) -> None:
        """Format and print diagnostics.

        Args:
        ----
            diagnostics: Diagnostics of one translation.
            source_path: Path to the source file (for display).

        """
        errors = _errors(diagnostics)
        warnings = _warnings(diagnostics)
        if not errors and not warnings:
            self._print_success("Translated without diagnostics")
            return

        self.console.print(self._build_summary(len(errors), len(warnings), source_path))
        self.console.print()

        for diagnostic in errors:
            self._print_diagnostic(diagnostic)
        for diagnostic in warnings:
            self._print_diagnostic(diagnostic)

        if errors:
            self.console.print(f"[red bold]✗ {len(errors)} error(s)[/red bold]", end="")
        if warnings:
            if errors:
                self.console.print(", ", end="")
            self.console.print(f"[yellow]{len(warnings)} warning(s)[/yellow]", end="")
        self.console.print()

    def _build_summary(self, errors: int, warnings: int, source_path: Path | None) -> Panel:
        """Build summary panel."""
        title = "Translation Errors" if errors else "Translation Warnings"
        style = "red" if errors else "yellow"

        content = Text()
        if source_path:
            content.append(f"File: {source_path}\n", style="dim")
        if errors:
            content.append(f"Errors: {errors}", style="red bold")
        if warnings:
            if errors:
                content.append("  ")
            content.append(f"Warnings: {warnings}", style="yellow")

        return Panel(content, title=title, border_style=style)

    def _print_diagnostic(self, diagnostic: Diagnostic) -> None:
        color = _COLORS[diagnostic.severity]
        line = Text()
        line.append(diagnostic.severity.value.upper(), style=f"{color} bold")
        line.append(" ")
        line.append(f"[{diagnostic.code}]", style=color)
        line.append(" ")
        line.append(diagnostic.message)
        self.console.print(line)

        where = []
        if diagnostic.job_id:
            where.append(f"job {diagnostic.job_id}")
        if self.show_features and diagnostic.feature:
            where.append(diagnostic.feature)
        if where:
            self.console.print(Text(f"  at {', '.join(where)}", style="dim"))
        if diagnostic.instruction:
            self.console.print(Text(f"  action: {diagnostic.instruction}", style="green"))
        self.console.print()

    def _print_success(self, message: str) -> None:
        self.console.print(f"[green]✓ {message}[/green]")


class DiagnosticTree:
    """Display diagnostics as a tree grouped by job."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the tree formatter.

        Args:
        ----
            console: Rich Console for output.

        """
        self.console = console or Console(stderr=True)

    def print_diagnostics(self, diagnostics: Sequence[Diagnostic]) -> None:
        """Print diagnostics as a tree."""
        tree = Tree("[bold]Translation Diagnostics[/bold]")

        by_job: dict[str, list[Diagnostic]] = {}
        for diagnostic in diagnostics:
            by_job.setdefault(diagnostic.job_id or "pipeline", []).append(diagnostic)

        for job_id, items in by_job.items():
            node = tree.add(Text(f"{job_id} ({len(items)} issues)", style="cyan"))
            for diagnostic in items:
                color = _COLORS[diagnostic.severity]
                entry = Text()
                entry.append(diagnostic.code, style=color)
                entry.append(f" {diagnostic.message}")
                node.add(entry)

        self.console.print(tree)


class DiagnosticTable:
    """Display diagnostics as a table."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the table formatter.

        Args:
        ----
            console: Rich Console for output.

        """
        self.console = console or Console(stderr=True)

    def print_diagnostics(self, diagnostics: Sequence[Diagnostic]) -> None:
        """Print diagnostics as a table."""
        table = Table(title="Translation Diagnostics")

        table.add_column("Code", style="cyan", width=6)
        table.add_column("Severity", width=8)
        table.add_column("Job", style="dim")
        table.add_column("Feature", style="dim")
        table.add_column("Message")

        for diagnostic in diagnostics:
            color = _COLORS[diagnostic.severity]
            table.add_row(
                diagnostic.code,
                Text(diagnostic.severity.value.upper(), style=color),
                diagnostic.job_id or "-",
                diagnostic.feature or "-",
                Text(diagnostic.message),
            )

        self.console.print(table)


def print_diagnostics(
    diagnostics: Sequence[Diagnostic],
    output_format: str = "text",
    console: Console | None = None,
    source_path: Path | None = None,
) -> None:
    """Print diagnostics in one of the ``text``, ``table`` or ``tree`` formats.

    Raises
    ------
        ValueError: If the format is unknown.

    """
    if output_format == "table":
        DiagnosticTable(console).print_diagnostics(diagnostics)
    elif output_format == "tree":
        DiagnosticTree(console).print_diagnostics(diagnostics)
    elif output_format == "text":
        DiagnosticFormatter(console).format_diagnostics(diagnostics, source_path)
    else:
        raise ValueError(f"Unknown output format '{output_format}'. Use text, table or tree")
