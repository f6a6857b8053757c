"""Command-line interface for ci-translate."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ci_translate import __version__
from ci_translate.cli.error_formatter import print_diagnostics
from ci_translate.cli.exception_handler import handle_exceptions
from ci_translate.config import TranslatorSettings, load_settings
from ci_translate.interfaces import FilenameVendorClassifier, YamlSyntaxValidator
from ci_translate.ir.graph import JobStatus, PipelineGraph
from ci_translate.log import setup_logging
from ci_translate.vendors import Vendor, parse_vendor

# Create Typer app
app = typer.Typer(
    name="ci-translate",
    help="Translate CI pipeline definitions between vendors.",
    add_completion=True,
    no_args_is_help=True,
)

# Rich consoles for output
console = Console()
error_console = Console(stderr=True, style="bold red")
report_console = Console(stderr=True)

OUTPUT_FORMATS = ("text", "table", "tree")

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]+")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ci-translate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Translate CI pipelines to Buildkite.

    Reads GitHub Actions, CircleCI, Bitbucket Pipelines, GitLab CI and
    Jenkins declarative pipelines. Anything the target cannot express is
    reported as a diagnostic and marked with a comment in the output.
    """


def _check_format(output_format: str) -> None:
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(
            f"Unknown output format '{output_format}'. Use {', '.join(OUTPUT_FORMATS)}"
        )


def _settings(config: Path | None, strict: bool) -> TranslatorSettings:
    settings = load_settings(config)
    if strict and not settings.strict:
        settings = settings.model_copy(update={"strict": True})
    return settings


@app.command()
def convert(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Source pipeline file to translate.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    source: Annotated[
        str | None,
        typer.Option(
            "--from",
            "-s",
            help="Source vendor. Guessed from the file location when omitted.",
        ),
    ] = None,
    target: Annotated[
        str,
        typer.Option("--to", "-t", help="Target vendor."),
    ] = Vendor.BUILDKITE.value,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output file path. Writes to stdout when omitted.",
            dir_okay=False,
            writable=True,
            resolve_path=True,
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite output file if it exists."),
    ] = False,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML file with translator settings.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format for diagnostics: text, table, tree.",
        ),
    ] = "text",
    validate: Annotated[
        bool,
        typer.Option("--validate", help="Check that the output is a well-formed pipeline."),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail on warnings as well as errors."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only output errors, no success messages."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Show debug logging and full tracebacks."),
    ] = False,
) -> None:
    """Translate one pipeline file.

    The translated document is written even when some jobs could not be
    translated; the exit code is 1 if any error was reported (or any
    warning, with --strict).

    Examples
    --------
        ci-translate convert .gitlab-ci.yml
        ci-translate convert .github/workflows/ci.yml -o pipeline.yml
        ci-translate convert ci.yml --from circleci --strict
        ci-translate convert Jenkinsfile --format table

    """
    setup_logging(verbose)
    handle_exceptions(verbose)(_convert)(
        input_file,
        source,
        target,
        output,
        force,
        config,
        output_format,
        validate,
        strict,
        quiet,
    )


def _convert(
    input_file: Path,
    source: str | None,
    target: str,
    output: Path | None,
    force: bool,
    config: Path | None,
    output_format: str,
    validate: bool,
    strict: bool,
    quiet: bool,
) -> None:
    from ci_translate.translator import translate

    _check_format(output_format)
    settings = _settings(config, strict)

    if output is not None and output.exists() and not force:
        error_console.print(
            f"\n[bold red]✗ Output file already exists: {output}[/bold red]\n"
            "Use --force to overwrite."
        )
        raise typer.Exit(code=1)

    result = translate(
        input_file.read_text(encoding="utf-8"),
        source,
        target,
        settings=settings,
        classifier=FilenameVendorClassifier(),
        validator=YamlSyntaxValidator() if validate else None,
        source_name=str(input_file),
    )

    if result.diagnostics and not (quiet and result.ok):
        print_diagnostics(result.diagnostics, output_format, report_console, input_file)
    if result.validation is not None and not result.validation.ok:
        error_console.print("\n[bold red]✗ Output failed validation[/bold red]")
        for message in result.validation.messages:
            error_console.print(f"  • {message}")

    if output is None:
        typer.echo(result.text, nl=False)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.text, encoding="utf-8")
        if not quiet:
            console.print(f"\n[bold green]✓ Wrote {output}[/bold green]\n")

    result.check(settings.strict)


@app.command()
def batch(
    input_files: Annotated[
        list[Path],
        typer.Argument(
            help="Source pipeline files to translate.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory for the translated files.",
            file_okay=False,
            resolve_path=True,
        ),
    ],
    source: Annotated[
        str | None,
        typer.Option(
            "--from",
            "-s",
            help="Source vendor of every file. Guessed per file when omitted.",
        ),
    ] = None,
    target: Annotated[
        str,
        typer.Option("--to", "-t", help="Target vendor."),
    ] = Vendor.BUILDKITE.value,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML file with translator settings.",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Number of parallel translations."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite output files that exist."),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail on warnings as well as errors."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Show debug logging and full tracebacks."),
    ] = False,
) -> None:
    """Translate several pipeline files in parallel.

    Every file is translated independently; one unreadable or
    unrecognized file does not stop the others.

    Examples
    --------
        ci-translate batch .gitlab-ci.yml .circleci/config.yml -o out/
        ci-translate batch ci/*.yml --from github -o out/ --jobs 4

    """
    setup_logging(verbose)
    handle_exceptions(verbose)(_batch)(
        input_files, output_dir, source, target, config, jobs, force, strict
    )


def output_name(path: Path, target: Vendor, taken: set[str]) -> str:
    """Choose a file name for a translated document, unique within ``taken``.

    Examples
    --------
        >>> output_name(Path(".gitlab-ci.yml"), Vendor.BUILDKITE, set())
        'gitlab-ci-yml.buildkite.yml'

    """
    base = _UNSAFE_NAME.sub("-", path.name).strip("-") or "pipeline"
    name = f"{base}.{target.value}.yml"
    counter = 2
    while name in taken:
        name = f"{base}-{counter}.{target.value}.yml"
        counter += 1
    taken.add(name)
    return name


def _batch(
    input_files: list[Path],
    output_dir: Path,
    source: str | None,
    target: str,
    config: Path | None,
    jobs: int | None,
    force: bool,
    strict: bool,
) -> None:
    from ci_translate.batch import BatchItem, translate_many

    settings = _settings(config, strict)
    target_vendor = parse_vendor(target)
    items = [
        BatchItem(
            name=str(path),
            text=path.read_text(encoding="utf-8"),
            source_vendor=source,
        )
        for path in input_files
    ]
    outcomes = translate_many(
        items,
        target_vendor,
        settings=settings,
        classifier=FilenameVendorClassifier(),
        max_workers=jobs,
    )

    output_dir.mkdir(parents=True, exist_ok=True)
    table = Table(title="Batch Translation", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Output")
    table.add_column("Errors", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Status")

    taken: set[str] = set()
    failed = 0
    for path, outcome in zip(input_files, outcomes):
        if outcome.result is None:
            failed += 1
            table.add_row(path.name, "-", "-", "-", f"[red]{outcome.error}[/red]")
            continue

        result = outcome.result
        destination = output_dir / output_name(path, target_vendor, taken)
        if destination.exists() and not force:
            failed += 1
            table.add_row(
                path.name, destination.name, "-", "-", "[red]exists, use --force[/red]"
            )
            continue
        destination.write_text(result.text, encoding="utf-8")

        passed = result.ok and not (settings.strict and result.warnings)
        if not passed:
            failed += 1
        table.add_row(
            path.name,
            destination.name,
            str(len(result.errors)),
            str(len(result.warnings)),
            "[green]ok[/green]" if passed else "[red]failed[/red]",
        )

    console.print(table)
    if failed:
        error_console.print(
            f"\n[bold red]✗ {failed} of {len(outcomes)} file(s) failed[/bold red]\n"
        )
        raise typer.Exit(code=1)
    console.print(f"\n[bold green]✓ Translated {len(outcomes)} file(s)[/bold green]\n")


@app.command()
def inspect(
    input_file: Annotated[
        Path,
        typer.Argument(
            help="Source pipeline file to inspect.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    source: Annotated[
        str | None,
        typer.Option(
            "--from",
            "-s",
            help="Source vendor. Guessed from the file location when omitted.",
        ),
    ] = None,
    apply_rules: Annotated[
        bool,
        typer.Option("--apply", help="Show the graph after the translation rules ran."),
    ] = False,
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format for diagnostics: text, table, tree.",
        ),
    ] = "text",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Show debug logging and full tracebacks."),
    ] = False,
) -> None:
    """Show the intermediate representation of a pipeline file.

    Examples
    --------
        ci-translate inspect .gitlab-ci.yml
        ci-translate inspect ci.yml --from github --apply

    """
    setup_logging(verbose)
    handle_exceptions(verbose)(_inspect)(input_file, source, apply_rules, output_format)


def _inspect(
    input_file: Path,
    source: str | None,
    apply_rules: bool,
    output_format: str,
) -> None:
    from ci_translate.diagnostics.errors import DiagnosticCollector
    from ci_translate.engine import RuleEngine
    from ci_translate.parsers import get_parser
    from ci_translate.rules import load_registry
    from ci_translate.translator import resolve_source_vendor

    _check_format(output_format)
    text = input_file.read_text(encoding="utf-8")
    vendor = resolve_source_vendor(source, str(input_file), text, FilenameVendorClassifier())

    diagnostics = DiagnosticCollector()
    parsed = get_parser(vendor).parse(text)
    diagnostics.merge(parsed.diagnostics)
    graph = parsed.graph
    if apply_rules:
        target = Vendor.BUILDKITE
        applied = RuleEngine(load_registry(target)).apply(graph, (vendor, target))
        diagnostics.merge(applied.diagnostics)
        graph = applied.graph

    _print_graph_summary(graph, input_file)
    _print_jobs(graph)
    if diagnostics.diagnostics:
        print_diagnostics(diagnostics.freeze(), output_format, report_console, input_file)


def _print_graph_summary(graph: PipelineGraph, input_file: Path) -> None:
    """Print a summary panel of the pipeline graph."""
    table = Table(show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    vendor = graph.source_vendor.display_name if graph.source_vendor else "unknown"
    table.add_row("Source", vendor)
    table.add_row("Pipeline", graph.name or input_file.name)
    table.add_row("Jobs", str(len(graph.jobs)))

    unsupported = sum(1 for job in graph.jobs.values() if job.status == JobStatus.UNSUPPORTED)
    if unsupported:
        table.add_row("Not translatable", str(unsupported))
    if graph.global_env:
        table.add_row("Global env", ", ".join(sorted(graph.global_env)))
    if graph.schedules:
        table.add_row("Schedules", str(len(graph.schedules)))

    features = graph.populated_features()
    if features:
        table.add_row("Pipeline features", ", ".join(f.value for f in features))

    console.print(Panel.fit(table, title="Pipeline Summary", border_style="blue"))


def _print_jobs(graph: PipelineGraph) -> None:
    """Print one row per job of the graph."""
    table = Table(title="Jobs", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Depends on", style="dim")
    table.add_column("Features")
    table.add_column("Status")

    for job in graph.jobs.values():
        needs = ", ".join(
            f"{edge.job_id} (may fail)" if edge.allow_failure else edge.job_id
            for edge in job.depends_on.values()
        )
        features = [feature.value for feature in job.populated_features()]
        if job.matrix is not None:
            features.insert(0, "matrix")
        status = job.status.value
        if job.status == JobStatus.UNSUPPORTED and job.status_reason:
            status = f"[red]{status}[/red]: {job.status_reason}"
        elif job.status == JobStatus.EXPANDED:
            status = f"[dim]{status}[/dim]"
        table.add_row(job.id, job.label, needs or "-", ", ".join(features) or "-", status)

    console.print(table)


@app.command()
def rules(
    source: Annotated[
        str | None,
        typer.Option("--from", "-s", help="Only show rules that apply to this source vendor."),
    ] = None,
    target: Annotated[
        str,
        typer.Option("--to", "-t", help="Target vendor."),
    ] = Vendor.BUILDKITE.value,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Show debug logging and full tracebacks."),
    ] = False,
) -> None:
    """List the translation rules of a target.

    Examples
    --------
        ci-translate rules
        ci-translate rules --from jenkins

    """
    setup_logging(verbose)
    handle_exceptions(verbose)(_rules)(source, target)


def _rules(source: str | None, target: str) -> None:
    from ci_translate.rules import load_registry

    registry = load_registry(parse_vendor(target))
    source_vendor = parse_vendor(source) if source is not None else None

    table = Table(title=f"{registry.profile.vendor.display_name} Rules", show_header=True)
    table.add_column("Feature", style="cyan")
    table.add_column("Rule")
    table.add_column("Confidence")
    table.add_column("Priority", justify="right")
    table.add_column("Sources", style="dim")

    colors = {"native": "green", "approximate": "yellow", "manual": "red"}
    shown = 0
    for rule in registry:
        if source_vendor is not None and not rule.matches_source(source_vendor):
            continue
        sources = (
            "all"
            if rule.sources is None
            else ", ".join(sorted(vendor.value for vendor in rule.sources))
        )
        confidence = rule.confidence.value
        table.add_row(
            rule.feature.value,
            rule.name,
            f"[{colors.get(confidence, 'white')}]{confidence}[/]",
            str(rule.priority),
            sources,
        )
        shown += 1

    console.print(table)
    console.print(f"\n[dim]{shown} rule(s)[/dim]")


if __name__ == "__main__":
    app()
