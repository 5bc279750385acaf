"""Command-line interface for the Clinical Scribe documentation assistant."""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clinical_scribe.pipeline.models import (
    AnalyzeRequest,
    EmergencyAcknowledgmentRequired,
    PipelineResult,
)

# Configure structlog for CLI
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="clinical-scribe",
    help="Clinical Scribe - Draft SOAP notes and coding suggestions from consultation transcripts",
    add_completion=False,
)
console = Console()

EXIT_ACKNOWLEDGMENT_REQUIRED = 2


def _configure_logging(verbose: bool) -> None:
    from clinical_scribe.config.settings import get_settings

    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")


def _open_store():
    from clinical_scribe.storage.sessions import SqlSessionStore

    return SqlSessionStore()


@app.command()
def analyze(
    transcript_path: Path = typer.Argument(
        ...,
        help="Path to a plain-text consultation transcript",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    acknowledge_emergency: bool = typer.Option(
        False,
        "--acknowledge-emergency",
        help="Proceed even if emergency indicators are detected",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file path for the JSON result (default: <transcript_name>_note.json)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Generate a draft note, diagnosis codes and billing codes for a transcript."""
    from clinical_scribe.services.analysis_runner import AnalysisRunner

    _configure_logging(verbose)

    console.print(
        Panel.fit(
            "[bold blue]Clinical Scribe[/bold blue]\n"
            "Analyzing consultation transcript...",
            border_style="blue",
        )
    )

    if output is None:
        output = transcript_path.with_name(f"{transcript_path.stem}_note.json")

    console.print(f"\n[dim]Input:[/dim] {transcript_path}")
    console.print(f"[dim]Output:[/dim] {output}\n")

    try:
        request = AnalyzeRequest(
            transcript=transcript_path.read_text(encoding="utf-8"),
            acknowledge_emergency=acknowledge_emergency or None,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid transcript:[/red] {e.errors()[0]['msg']}")
        sys.exit(1)

    try:
        console.print("[yellow]Processing transcript... (this may take a few minutes)[/yellow]\n")
        outcome = AnalysisRunner(store=_open_store()).analyze(request)
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    if isinstance(outcome, EmergencyAcknowledgmentRequired):
        _display_acknowledgment(outcome)
        raise typer.Exit(code=EXIT_ACKNOWLEDGMENT_REQUIRED)

    console.print("[green]Processing complete![/green]")

    with open(output, "w", encoding="utf-8") as f:
        f.write(outcome.result.model_dump_json(indent=2))

    _display_summary(outcome.result)
    console.print(
        f"\n[dim]Session {outcome.session_id} processed in "
        f"{outcome.processing_time_ms / 1000:.1f}s[/dim]"
    )
    console.print(f"[green]Result saved to:[/green] {output}")


@app.command()
def last() -> None:
    """Show the most recent stored session."""
    result = _open_store().get_last()
    if result is None:
        console.print("[yellow]No sessions stored yet.[/yellow]")
        raise typer.Exit(code=1)
    _display_summary(result)


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Session ID to display"),
    as_json: bool = typer.Option(False, "--json", help="Print the full stored result as JSON"),
) -> None:
    """Show a stored session by ID."""
    result = _open_store().get_by_id(session_id)
    if result is None:
        console.print(f"[red]Session not found:[/red] {session_id}")
        raise typer.Exit(code=1)
    if as_json:
        console.print_json(result.model_dump_json())
        return
    _display_summary(result)
    _display_trace(result)


@app.command()
def sessions(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of sessions to list"),
    offset: int = typer.Option(0, "--offset", help="Number of sessions to skip"),
) -> None:
    """List stored sessions, newest first."""
    store = _open_store()
    rows = store.list_sessions(limit=limit, offset=offset)
    if not rows:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Timestamp", style="dim")
    table.add_column("Emergency")
    table.add_column("Transcript")

    for row in rows:
        table.add_row(
            row["id"],
            str(row["timestamp"])[:19],
            "[red]yes[/red]" if row["has_emergency"] else "no",
            row["transcript_preview"],
        )
    console.print(table)

    stats = store.get_stats()
    console.print(
        f"\n[dim]{stats['total_sessions']} sessions, "
        f"{stats['emergency_sessions']} with emergency indicators[/dim]"
    )


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from clinical_scribe import __version__
    from clinical_scribe.config.settings import get_settings
    from clinical_scribe.llm.client import get_llm_settings

    settings = get_settings()
    llm_settings = get_llm_settings()

    console.print(
        Panel.fit(
            "[bold blue]Clinical Scribe[/bold blue]",
            border_style="blue",
        )
    )

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Model Fallback Order", " -> ".join(llm_settings.model_fallback_order))
    table.add_row("Ollama URL", llm_settings.ollama_base_url)
    table.add_row("Temperature", str(llm_settings.temperature))
    table.add_row("Context Window", str(llm_settings.num_ctx))
    table.add_row("Non-transient Policy", llm_settings.non_transient_policy.value)
    table.add_row("Stage Timeout", f"{settings.stage_timeout_seconds:.0f}s")
    table.add_row("Redact Trace Prompts", str(settings.redact_trace_prompts))
    table.add_row("Database", settings.database_url)

    console.print(table)


@app.command()
def check() -> None:
    """Check that the model backend answers."""
    from clinical_scribe.llm.client import OllamaModelBackend, get_llm_settings
    from clinical_scribe.llm.fallback import ModelFallbackExecutor, check_connection

    llm_settings = get_llm_settings()
    executor = ModelFallbackExecutor(
        candidates=llm_settings.model_fallback_order,
        backend=OllamaModelBackend(llm_settings),
        policy=llm_settings.non_transient_policy,
    )
    if check_connection(executor):
        console.print(f"[green]Model backend OK[/green] ({executor.current_model})")
        return
    console.print(f"[red]Model backend unreachable at[/red] {llm_settings.ollama_base_url}")
    raise typer.Exit(code=1)


def _display_acknowledgment(outcome: EmergencyAcknowledgmentRequired) -> None:
    console.print(
        Panel(
            f"[bold]{outcome.message}[/bold]\n\n"
            f"[dim]Severity:[/dim] {outcome.severity.value}\n"
            f"[dim]Conditions:[/dim] {', '.join(outcome.detected_conditions) or 'unspecified'}\n"
            f"[dim]Recommendation:[/dim] {outcome.recommendation}\n\n"
            "Re-run with --acknowledge-emergency to generate documentation.",
            title="[red]Emergency indicators detected[/red]",
            border_style="red",
        )
    )


def _display_summary(result: PipelineResult) -> None:
    """Display a summary of the analysis results.

    Args:
        result: The guarded pipeline result.
    """
    border = "red" if result.has_emergency else "yellow"
    console.print(Panel(result.compliance_banner, border_style=border))

    console.print("\n[bold]SOAP Note[/bold]")
    console.print("-" * 40)
    for label, text in (
        ("Subjective", result.note.subjective),
        ("Objective", result.note.objective),
        ("Assessment", result.note.assessment),
        ("Plan", result.note.plan),
    ):
        console.print(f"[dim]{label}:[/dim] {text}")

    if result.diagnosis_codes:
        console.print("\n[bold]Diagnosis Codes[/bold]")
        table = Table(show_header=False, box=None)
        table.add_column("Code", style="cyan")
        table.add_column("Description")
        table.add_column("Confidence", style="dim")
        for code in result.diagnosis_codes:
            table.add_row(code.code, code.description, code.confidence)
        console.print(table)

    billing = result.billing
    console.print("\n[bold]Billing[/bold]")
    console.print(
        f"  [cyan]{billing.level.code}[/cyan] {billing.level.description} "
        f"[dim]({billing.level.duration}, {billing.level.confidence} confidence)[/dim]"
    )
    for item in billing.additional_items:
        console.print(f"  [cyan]{item.code}[/cyan] {item.description} [dim]({item.confidence})[/dim]")
    console.print(f"  [dim]Hint:[/dim] {billing.billing_hint}")

    if result.emergency and result.emergency.has_emergency:
        console.print(
            f"\n[red]Emergency:[/red] {result.emergency.severity.value} - "
            f"{', '.join(result.emergency.detected_conditions)}"
        )

    if result.validation_issues:
        console.print(f"\n[yellow]Validation issues:[/yellow] {len(result.validation_issues)}")
        for issue in result.validation_issues:
            console.print(f"  - {issue}")


def _display_trace(result: PipelineResult) -> None:
    console.print("\n[bold]Trace[/bold]")
    for entry in result.trace_log:
        technique = f" [dim]({entry.technique})[/dim]" if entry.technique else ""
        console.print(f"  {entry.timestamp:%H:%M:%S} {entry.step}{technique}")


if __name__ == "__main__":
    app()
