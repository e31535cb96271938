"""Main Typer application.

Entry point: ``soci-index-builder`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from soci_index_builder.config import BuilderSettings
from soci_index_builder.core.errors import EventValidationError
from soci_index_builder.core.logs import configure_logging
from soci_index_builder.core.pipeline import InvocationPipeline
from soci_index_builder.core.validator import build_registry_url, collect_violations, parse_event
from soci_index_builder.models.outcome import OutcomeKind

app = typer.Typer(
    name="soci-index-builder",
    help="Build and publish SOCI indices for images pushed to Amazon ECR.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

console = Console()

_OUTCOME_STYLES = {
    OutcomeKind.SUCCESS: "green",
    OutcomeKind.SKIP: "yellow",
    OutcomeKind.ERROR: "red",
}


def _load_event(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot read event {path}:[/red] {exc}")
        raise typer.Exit(code=2) from exc


@app.command(name="invoke", help="Run the pipeline locally for a saved ECR event.")
def invoke_cmd(
    event_file: Path = typer.Argument(..., help="JSON file holding the ECR image action event."),
    version: Optional[str] = typer.Option(None, "--version", "-v", help="SOCI index version, V1 or V2."),
    builder: Optional[str] = typer.Option(None, "--builder", "-b", help="Builder factory, 'module:attr'."),
    work_root: Optional[Path] = typer.Option(None, "--work-root", help="Ephemeral workspace root."),
) -> None:
    """Run one invocation and print its outcome."""
    overrides: dict[str, Any] = {}
    if version is not None:
        overrides["soci_index_version"] = version
    if builder is not None:
        overrides["builder_factory"] = builder
    if work_root is not None:
        overrides["work_root"] = work_root
    settings = BuilderSettings(**overrides)
    configure_logging(settings.log_level)

    pipeline = InvocationPipeline(settings)
    outcome = pipeline.run(_load_event(event_file), request_id=f"local-{uuid.uuid4().hex[:12]}")

    style = _OUTCOME_STYLES[outcome.kind]
    lines = [
        f"[bold {style}]{outcome.message}[/bold {style}]",
        "",
        f"[bold]Outcome:[/bold]   {outcome.kind.value}",
        f"[bold]Stage:[/bold]     {outcome.stage or '-'}",
        f"[bold]Strategy:[/bold]  {settings.strategy.value}",
    ]
    if outcome.error is not None:
        lines.append(f"[bold]Cause:[/bold]     {outcome.error}")
    console.print(Panel("\n".join(lines), title="[bold]SOCI Index Builder[/bold]", border_style=style))

    if outcome.is_error:
        raise typer.Exit(code=1)


@app.command(name="validate", help="Validate a saved ECR event without touching the registry.")
def validate_cmd(
    event_file: Path = typer.Argument(..., help="JSON file holding the ECR image action event."),
) -> None:
    """Print every violation, or the validated fields."""
    try:
        event = parse_event(_load_event(event_file))
    except EventValidationError as exc:
        violations = exc.violations
    else:
        violations, _ = collect_violations(event)

    if violations:
        for violation in violations:
            console.print(f"[red]x[/red] {violation}")
        raise typer.Exit(code=1)

    table = Table(title="Validated event")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("registry", build_registry_url(event))
    table.add_row("repository", event.detail.repository_name)
    table.add_row("digest", event.detail.image_digest)
    table.add_row("tag", event.detail.image_tag or "[dim](untagged)[/dim]")
    console.print(table)


@app.command(name="registry-url", help="Print the ECR registry host for a saved event.")
def registry_url_cmd(
    event_file: Path = typer.Argument(..., help="JSON file holding the ECR image action event."),
) -> None:
    try:
        event = parse_event(_load_event(event_file))
    except EventValidationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(build_registry_url(event))


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
