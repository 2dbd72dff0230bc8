"""Command line interface: lint, outline, export and serve lessons."""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from .checks import lint_lessons
from .config import configure_logging, load_settings
from .constants import BUNDLED_LESSONS_DIR, SEVERITY_ERROR
from .lesson import Lesson, load_lesson, load_lessons
from .render import export_lessons

logger = logging.getLogger(__name__)

app = typer.Typer(help="Authorization lesson tooling.", no_args_is_help=True)
console = Console()


def _collect(paths: Optional[List[Path]]) -> List[Lesson]:
    """Load lessons from files and directories. Exits with code 2 on a missing path."""
    if not paths:
        return load_lessons(BUNDLED_LESSONS_DIR)
    lessons: List[Lesson] = []
    for path in paths:
        if path.is_dir():
            lessons.extend(load_lessons(str(path)))
        elif path.is_file():
            lessons.append(load_lesson(str(path)))
        else:
            console.print(f"[red]Path not found:[/red] {path}")
            raise typer.Exit(code=2)
    return lessons


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level.")):
    # exit code 1 is reserved for lint errors
    settings = load_settings(exit_code=2)
    if verbose:
        settings.logging_level = "DEBUG"
    configure_logging(settings)


@app.command()
def lint(
    paths: Optional[List[Path]] = typer.Argument(None, help="Lesson files or directories (default: bundled lessons)."),
    external: bool = typer.Option(False, "--external", help="Also request http(s) links."),
    output_format: str = typer.Option("text", "--format", "-f", help="text or json."),
):
    """Check links, code blocks, FAQ disclosures and copy consistency."""
    if output_format not in ("text", "json"):
        console.print(f"[red]Unknown format:[/red] {output_format}")
        raise typer.Exit(code=2)

    lessons = _collect(paths)
    root = os.path.commonpath([os.path.abspath(str(p if p.is_dir() else p.parent)) for p in paths]) if paths else None
    report = lint_lessons(lessons, root=root, check_external=external)

    if output_format == "json":
        typer.echo(json.dumps({
            "ok": report.ok,
            "lessons_checked": report.lessons_checked,
            "findings": [f.model_dump() for f in report.findings],
        }, indent=2))
    else:
        if report.findings:
            table = Table(title="Lesson lint findings")
            table.add_column("Severity")
            table.add_column("Check")
            table.add_column("Location")
            table.add_column("Message")
            for finding in report.findings:
                style = "red" if finding.severity == SEVERITY_ERROR else "yellow"
                table.add_row(f"[{style}]{finding.severity}[/{style}]", finding.check, finding.location(), finding.message)
            console.print(table)
        console.print(
            f"{report.lessons_checked} lessons checked: "
            f"{len(report.errors)} errors, {len(report.warnings)} warnings"
        )

    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def outline(path: Path = typer.Argument(..., help="Lesson file.")):
    """Print the heading tree of a lesson."""
    if not path.is_file():
        console.print(f"[red]Path not found:[/red] {path}")
        raise typer.Exit(code=2)
    lesson = load_lesson(str(path))
    tree = Tree(f"[bold]{lesson.title}[/bold]")
    stack = [(0, tree)]
    for heading in lesson.headings:
        if heading.level == 1:
            continue
        while stack and stack[-1][0] >= heading.level:
            stack.pop()
        node = stack[-1][1].add(f"{heading.title} [dim]#{heading.anchor}[/dim]")
        stack.append((heading.level, node))
    console.print(tree)


@app.command()
def export(
    dest: Path = typer.Argument(..., help="Output directory."),
    lessons_dir: Optional[Path] = typer.Option(None, "--lessons", help="Lessons directory (default: bundled lessons)."),
):
    """Render every lesson to static HTML."""
    lessons = _collect([lessons_dir] if lessons_dir else None)
    written = export_lessons(lessons, str(dest))
    console.print(f"Wrote {len(written)} files to {dest}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
):
    """Run the lessons site and the guarded demo API."""
    import uvicorn

    uvicorn.run("authz_primer.app:app", host=host, port=port, log_config=None)
