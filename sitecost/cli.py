"""SiteCost CLI.

Commands:
- init: Initialize database schema
- match: Match a project's invoice line items against its estimate
- cost-report: Show estimate vs. actual per trade
- corrections: Show correction counts per field
- web serve: Run the HTTP API
"""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from sitecost.config import get_config
from sitecost.core.errors import SiteCostError
from sitecost.core.logging import configure_logging
from sitecost.db.connection import close_db, get_session, get_session_factory, init_db
from sitecost.feedback.corrections import CorrectionLog
from sitecost.matching.classifier import build_classifier
from sitecost.matching.matcher import Matcher
from sitecost.matching.orchestrator import BatchMatchingOrchestrator
from sitecost.models import BudgetStatus
from sitecost.reporting.cost_tracking import compute_project_cost_tracking

app = typer.Typer(
    name="sitecost",
    help="SiteCost - Estimate-to-invoice reconciliation for construction projects",
    no_args_is_help=True,
)

web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()

STATUS_STYLES = {
    BudgetStatus.ON_BUDGET: "green",
    BudgetStatus.OVER_BUDGET: "red",
    BudgetStatus.UNDER_BUDGET: "yellow",
    BudgetStatus.NO_ESTIMATE: "dim",
}


def _run(coro):
    """Run a coroutine and dispose the engine afterwards."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    try:
        return asyncio.run(_wrapped())
    except SiteCostError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.callback()
def main():
    try:
        config = get_config()
    except KeyError:
        # DATABASE_URL missing; commands report it themselves
        configure_logging()
    else:
        configure_logging(config.log_level, config.log_format)


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")

    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def match(
    project_id: str = typer.Option(..., "--project", help="Project ID"),
    rematch: bool = typer.Option(False, "--rematch", help="Re-match automatically mapped items"),
    include_manual: bool = typer.Option(
        False, "--include-manual", help="With --rematch, also replace manual overrides"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
):
    """Run batch matching on a project's invoice line items."""
    config = get_config()
    orchestrator = BatchMatchingOrchestrator(
        session_factory=get_session_factory(),
        matcher=Matcher(config.matching),
        classifier=build_classifier(config.llm),
        config=config.matching,
    )

    if not as_json:
        mode = "assisted" if orchestrator.classifier else "heuristic-only"
        console.print(f"[bold]Running matcher:[/bold] project={project_id} ({mode})")

    result = _run(
        orchestrator.match_all(project_id, rematch=rematch, include_manual=include_manual)
    )

    if as_json:
        console.print_json(json.dumps(result.to_api()))
        return

    details = result.processing_details
    table = Table(title="Matching Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Invoices", str(result.total_invoices))
    table.add_row("Line items", str(result.total_line_items))
    table.add_row("Matched", str(result.matched_items))
    table.add_row("Unmatched", str(result.unmatched_items))
    table.add_row("Average confidence", f"{result.average_confidence:.2f}")
    table.add_row("Logic matches", str(details.logic_matches))
    table.add_row("Pattern matches", str(details.patterns_used))
    table.add_row("Assisted attempts", str(details.llm_attempts))
    table.add_row("Assisted matches", str(details.llm_matches))
    table.add_row("Assisted failures", str(details.llm_failures))
    table.add_row("Time (ms)", str(details.processing_time_ms))
    console.print(table)

    for failure in result.errors:
        console.print(f"[red]✗ {failure.invoice_line_item_id}: {failure.error}[/red]")
    if not result.success:
        console.print(f"[bold yellow]{result.error}[/bold yellow]")
        raise typer.Exit(code=1)


@app.command(name="cost-report")
def cost_report(
    project_id: str = typer.Option(..., "--project", help="Project ID"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw report as JSON"),
):
    """Show estimated vs. actual cost per trade."""

    async def _report():
        async with get_session() as session:
            return await compute_project_cost_tracking(session, project_id)

    report = _run(_report())

    if as_json:
        console.print_json(json.dumps(report.to_api()))
        return

    currency = get_config().currency
    table = Table(title=f"Cost Tracking ({currency})")
    table.add_column("Trade", style="cyan")
    table.add_column("Estimated", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Variance", justify="right")
    table.add_column("Variance %", justify="right")
    table.add_column("Status")

    for trade in report.trades:
        style = STATUS_STYLES[trade.status]
        table.add_row(
            trade.name,
            f"{trade.estimated_total:,.2f}",
            f"{trade.actual_spent:,.2f}",
            f"{trade.variance:,.2f}",
            f"{trade.variance_percent:.2f}",
            f"[{style}]{trade.status.value}[/{style}]",
        )

    summary = report.summary
    table.add_row(
        "[bold]Total[/bold]",
        f"{summary.total_estimated:,.2f}",
        f"{summary.total_actual:,.2f}",
        f"{summary.total_variance:,.2f}",
        f"{summary.variance_percent:.2f}",
        "",
    )
    console.print(table)
    console.print(
        f"  On budget: {summary.trades_on_budget}  "
        f"Over: {summary.trades_over_budget}  "
        f"Under: {summary.trades_under_budget}  "
        f"Complete: {summary.percent_complete:.1f}%"
    )


@app.command()
def corrections():
    """Show how often each parsed field has been corrected."""

    async def _stats():
        async with get_session() as session:
            return await CorrectionLog(session).stats()

    by_field = _run(_stats())
    if not by_field:
        console.print("[yellow]No corrections recorded[/yellow]")
        return

    table = Table(title="Corrections by Field")
    table.add_column("Field", style="cyan")
    table.add_column("Count", justify="right")
    for field, count in by_field.items():
        table.add_row(field, str(count))
    console.print(table)


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI application."""
    import uvicorn

    typer.echo(f"Starting SiteCost API on http://{host}:{port}")
    uvicorn.run("sitecost.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
