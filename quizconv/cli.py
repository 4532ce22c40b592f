"""
CLI Interface
=============
Command-line interface for the quiz package converter.

Usage:
    python -m quizconv convert <input> --format qti12 [options]
    python -m quizconv batch <directory> --format imscc [options]
    python -m quizconv inspect <input>
    python -m quizconv formats
    python -m quizconv download [artifact_id] --dest <path>
    python -m quizconv serve
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .block_extractor import load_blocks
from .engine import ConversionEngine, ConverterConfig
from .errors import ConversionError
from .exporters import EXPORTERS, available_formats
from .models import QuestionType
from .storage import get_artifact_ref, get_last_artifact

console = Console()

INPUT_SUFFIXES = (".pdf", ".json", ".txt", ".text", ".md")


def _parse_type_overrides(ctx, param, values) -> dict[int, QuestionType]:
    """Turn repeated `N=TYPE` options into a type override map."""
    overrides: dict[int, QuestionType] = {}
    for value in values:
        number, sep, type_name = value.partition("=")
        if not sep or not number.strip().isdigit():
            raise click.BadParameter(f"expected N=TYPE, got {value!r}")
        try:
            overrides[int(number)] = QuestionType(type_name.strip().lower())
        except ValueError:
            choices = ", ".join(t.value for t in QuestionType)
            raise click.BadParameter(f"unknown type {type_name!r}; choose from {choices}")
    return overrides


@click.group()
@click.version_option(version=__version__, prog_name="quizconv")
def cli():
    """Quiz Package Converter: numbered-question documents to LMS quiz packages."""
    pass


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "-f", "format_key",
    required=True,
    type=click.Choice(list(EXPORTERS), case_sensitive=False),
    help="Export format",
)
@click.option(
    "--title", "-t",
    default=None,
    help="Quiz title (defaults to the file name)",
)
@click.option(
    "--output", "-o",
    default=None,
    help="Output directory for generated archives",
)
@click.option(
    "--type", "type_overrides",
    multiple=True,
    callback=_parse_type_overrides,
    metavar="N=TYPE",
    help="Force the type of question N (repeatable), e.g. --type 3=essay",
)
@click.option(
    "--min-image-size",
    default=50,
    type=int,
    help="Minimum PDF image dimension to keep (pixels)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--save-documents",
    is_flag=True,
    default=False,
    help="Also write the unpacked package next to the archive",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def convert(
    input_path: str,
    format_key: str,
    title: str,
    output: str,
    type_overrides: dict,
    min_image_size: int,
    log_level: str,
    log_file: str,
    save_documents: bool,
    json_output: bool,
):
    """Convert a PDF, text file or JSON block stream into a quiz package."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = ConverterConfig(
        output_dir=output,
        title=title,
        save_documents=save_documents,
        log_level=log_level,
        log_file=log_file,
        type_overrides=type_overrides,
        min_image_size=min_image_size,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Quiz Package Converter v{__version__}[/]\n"
                f"[dim]Converting: {os.path.basename(input_path)} → {format_key}[/]",
                border_style="cyan",
            )
        )
        console.print()

    engine = ConversionEngine(config)
    result = engine.convert_file(input_path, format_key.lower(), title)

    if json_output:
        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
        if not result.success:
            sys.exit(1)
        return

    if not result.success:
        console.print(f"[red]Error:[/] {result.message}")
        sys.exit(1)

    _display_report(result.report.model_dump())
    _display_warnings(result.report.warnings)
    console.print(f"[green]✓[/] {result.message}")
    console.print(
        f"[dim]Artifact: {result.artifact_ref.artifact_id} "
        f"({result.artifact_ref.display_name})[/]"
    )
    console.print()


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--format", "-f", "format_key",
    required=True,
    type=click.Choice(list(EXPORTERS), case_sensitive=False),
    help="Export format",
)
@click.option("--output", "-o", default=None, help="Output directory")
@click.option("--log-level", default="WARNING", help="Logging level")
def batch(directory: str, format_key: str, output: str, log_level: str):
    """Convert every supported document in a directory."""

    inputs = sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix.lower() in INPUT_SUFFIXES
    )

    if not inputs:
        console.print(f"[yellow]No convertible files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Conversion[/]\n"
            f"[dim]Found {len(inputs)} files in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    engine = ConversionEngine(ConverterConfig(output_dir=output, log_level=log_level))
    results = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Converting...", total=len(inputs))

        for path in inputs:
            progress.update(task, description=f"Converting: {path.name}")
            results.append((path.name, engine.convert_file(path, format_key.lower())))
            progress.advance(task)

    _display_batch_summary(results)

    if not any(result.success for _, result in results):
        sys.exit(1)


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--type", "type_overrides",
    multiple=True,
    callback=_parse_type_overrides,
    metavar="N=TYPE",
    help="Force the type of question N (repeatable)",
)
@click.option("--log-level", default="WARNING", help="Logging level")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output the combined questions and report as JSON",
)
def inspect(input_path: str, type_overrides: dict, log_level: str, json_output: bool):
    """Parse a document and show the recovered questions without exporting."""

    engine = ConversionEngine(ConverterConfig(
        log_level="ERROR" if json_output else log_level,
        type_overrides=type_overrides,
    ))

    try:
        run = engine.inspect(load_blocks(input_path))
    except ConversionError as e:
        console.print(f"[red]Error:[/] {e.user_message}")
        sys.exit(1)

    if json_output:
        print(json.dumps({
            "questions": [q.model_dump(mode="json") for q in run.questions],
            "report": run.report.model_dump(mode="json"),
        }, indent=2, ensure_ascii=False))
        return

    console.print()
    table = Table(title="Questions", border_style="cyan")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Type")
    table.add_column("Stem")
    table.add_column("Options", justify="right")
    table.add_column("Answer")

    for q in run.questions:
        stem = q.stem if len(q.stem) <= 60 else q.stem[:57] + "..."
        table.add_row(
            str(q.number),
            q.type.value,
            stem,
            str(len(q.options)),
            _format_answer(q.answer) if q.answer else "[red]missing[/]",
        )

    console.print(table)
    console.print()
    _display_report(run.report.model_dump())
    _display_warnings(run.report.warnings)


@cli.command()
def formats():
    """List the registered export formats."""
    table = Table(title="Export Formats", border_style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Name")
    table.add_column("Archive Suffix")

    for fmt in available_formats():
        table.add_row(fmt["key"], fmt["name"], fmt["suffix"])

    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.argument("artifact_id", required=False)
@click.option(
    "--dest", "-d",
    default=None,
    help="Where to write the archive (defaults to its display name)",
)
@click.option("--output", "-o", default=None, help="Output directory the artifact was stored in")
def download(artifact_id: str, dest: str, output: str):
    """Write a stored archive (default: the last one) to disk."""
    try:
        ref = get_artifact_ref(artifact_id, output) if artifact_id else get_last_artifact(output)
        data = ConversionEngine(ConverterConfig(output_dir=output, log_level="WARNING")).download(ref)
    except ConversionError as e:
        console.print(f"[red]Error:[/] {e.user_message}")
        sys.exit(1)

    target = Path(dest or ref.display_name)
    if target.is_dir():
        target = target / ref.display_name
    target.write_bytes(data)
    console.print(f"[green]✓[/] Saved {ref.display_name} to {target} ({len(data)} bytes)")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--output", "-o", default=None, help="Output directory for archives")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, output: str, debug: bool):
    """Start the HTTP conversion service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Quiz Package Converter Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug, output_dir=output)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _format_answer(answer) -> str:
    if answer.kind == "choice":
        return answer.letter
    if answer.kind == "multi_choice":
        return ", ".join(answer.letters)
    if answer.kind == "text":
        return " | ".join(answer.literals)
    if answer.kind == "numeric":
        return f"{answer.value:g}"
    if answer.kind == "matching":
        return ", ".join(f"{p.premise}={p.response}" for p in answer.pairs)
    return " → ".join(answer.sequence)


def _display_report(report: dict):
    """Display the conversion report as a rich table."""
    table = Table(title="Conversion Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    total = report.get("total_questions", 0)
    answered = report.get("answered_questions", 0)
    coverage = report.get("answer_coverage", 0)

    table.add_row(
        "Total Questions",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Questions With Answers",
        f"{answered} ({coverage}%)",
        "[green]✓[/]" if coverage >= 90 else "[yellow]⚠[/]",
    )

    missing = report.get("missing_question_numbers", [])
    table.add_row("Missing Question Numbers", str(len(missing)), status_icon(len(missing)))

    missing_ans = report.get("missing_answer_numbers", [])
    table.add_row("Questions Missing Answer", str(len(missing_ans)), status_icon(len(missing_ans)))

    exported = report.get("exported_items", 0)
    if exported:
        table.add_row("Exported Items", str(exported), status_icon(total - exported))
    table.add_row("Images", str(report.get("image_count", 0)), "")

    console.print(table)
    console.print()

    types = report.get("type_breakdown", {})
    if types:
        type_table = Table(title="Question Types", border_style="cyan")
        type_table.add_column("Type", style="bold")
        type_table.add_column("Count", justify="right")
        for qtype, count in types.items():
            type_table.add_row(qtype, str(count))
        console.print(type_table)
        console.print()

    breakdown = report.get("warning_breakdown", {})
    if breakdown:
        warning_table = Table(title="Warning Breakdown", border_style="yellow")
        warning_table.add_column("Code", style="bold")
        warning_table.add_column("Count", justify="right")
        for code, count in breakdown.items():
            warning_table.add_row(code, str(count))
        console.print(warning_table)
        console.print()


def _display_warnings(warnings, limit: int = 20):
    """List individual warnings, most relevant first."""
    if not warnings:
        return
    for w in warnings[:limit]:
        where = f"Q{w.question_number}" if w.question_number is not None else "-"
        console.print(f"  [yellow]⚠[/] [dim]{w.stage.value}[/] {where}: {w.message}")
    if len(warnings) > limit:
        console.print(f"  [dim]... and {len(warnings) - limit} more[/]")
    console.print()


def _display_batch_summary(results):
    """Display batch conversion summary."""
    console.print()

    table = Table(title="Batch Conversion Summary", border_style="cyan")
    table.add_column("File", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Status", justify="center")

    total_items = 0
    failures = 0

    for name, result in results:
        if not result.success:
            failures += 1
            table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")
            continue

        report = result.report
        total_items += report.exported_items
        status = "[green]✓[/]" if not report.warnings else "[yellow]⚠[/]"
        table.add_row(
            name,
            str(report.total_questions),
            str(report.exported_items),
            str(len(report.warnings)),
            status,
        )

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_items} items from "
        f"{len(results) - failures} files, {failures} failures"
    )
    console.print()


# ─── Entry point (for python -m quizconv.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
