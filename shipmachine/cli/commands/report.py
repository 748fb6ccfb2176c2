"""``shipmachine report`` and ``shipmachine analytics`` — read-only ledger views.

Both commands are pure projections over the audit ledger; neither writes.
``analytics`` also prints the learning-loop output: improvement proposals
for operations that fail too often and recurring operation sequences.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shipmachine.config import ShipConfig
from shipmachine.core.audit_ledger import AuditIntegrityError, AuditLedger
from shipmachine.core.learning import LearningAnalyzer
from shipmachine.models.audit import AuditEvent
from shipmachine.models.learning import OperationMetrics

console = Console()


def _open_ledger(ledger_db: Path | None) -> AuditLedger:
    db_path = ledger_db or ShipConfig().audit_db_path
    if not db_path.exists():
        console.print(f"[bold red]Audit ledger not found:[/bold red] {db_path}")
        console.print("[dim]Run a task first with: shipmachine run-task[/dim]")
        raise typer.Exit(code=1)
    return AuditLedger(db_path)


def _runs_table(ledger: AuditLedger) -> Table:
    table = Table(title="Runs", show_header=True, header_style="bold cyan")
    table.add_column("Run ID", style="cyan")
    table.add_column("Started")
    table.add_column("Type")
    table.add_column("Calls", justify="right")
    table.add_column("Result", justify="center")
    table.add_column("Tokens", justify="right")
    table.add_column("ms", justify="right")
    for summary in LearningAnalyzer(ledger).run_summaries():
        table.add_row(
            summary.run_id,
            summary.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
            summary.objective_type,
            str(summary.total_steps),
            "[green]PASS[/green]" if summary.passed else "[red]FAIL[/red]",
            f"{summary.total_tokens:,}",
            str(summary.total_duration_ms),
        )
    return table


def _events_table(run_id: str, events: list[AuditEvent]) -> Table:
    table = Table(title=f"Run {run_id}", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Operation", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Tokens", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Data class")
    table.add_column("Details")
    for idx, event in enumerate(events, start=1):
        result = "[green]PASS[/green]" if event.passed else "[red]FAIL[/red]"
        details = escape(event.failure_reason or ("mock" if event.is_mock else ""))
        table.add_row(
            str(idx),
            event.operation_id,
            result,
            str(event.tokens_used),
            str(event.duration_ms),
            event.data_class or "-",
            details,
        )
    return table


def report_cmd(
    run_id: str = typer.Argument(None, help="Run to show; lists all runs when omitted."),
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Path to the audit ledger database."),
) -> None:
    """Show the audit trail for one run, or a summary of all runs."""
    ledger = _open_ledger(ledger_db)

    if run_id is None:
        if not ledger.get_all_run_ids():
            console.print("[dim]No runs recorded.[/dim]")
            return
        console.print(_runs_table(ledger))
        return

    events = ledger.get_run_events(run_id)
    if not events:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    console.print(_events_table(run_id, events))
    try:
        ledger.verify_chain(run_id)
        console.print("[green]Hash chain intact.[/green]")
    except AuditIntegrityError as exc:
        console.print(f"[bold red]Hash chain broken:[/bold red] {exc}")


def analytics_cmd(
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Path to the audit ledger database."),
    min_calls: int = typer.Option(1, "--min-calls", help="Minimum calls for the failing-operations list."),
    proposal_min_calls: int = typer.Option(
        3, "--proposal-min-calls", help="Minimum calls before an operation gets a proposal."
    ),
    operation: str = typer.Option(None, "--operation", "-o", help="Show detailed metrics for one operation."),
) -> None:
    """Aggregate counters across every recorded run."""
    ledger = _open_ledger(ledger_db)
    analyzer = LearningAnalyzer(ledger)

    if operation is not None:
        metrics = analyzer.operation_metrics(operation)
        if metrics is None:
            console.print(f"[bold red]No calls recorded for operation:[/bold red] {operation}")
            raise typer.Exit(code=1)
        console.print(_metrics_table(metrics))
        return

    stats = ledger.get_stats()
    if stats.total_calls == 0:
        console.print("[dim]No calls recorded.[/dim]")
        return

    summary = Table(title="Overview", show_header=False)
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Runs", str(stats.total_runs))
    summary.add_row("Calls", str(stats.total_calls))
    summary.add_row("Tokens", f"{stats.total_tokens:,}")
    summary.add_row("Success rate", f"{stats.success_rate}%")
    summary.add_row("Avg duration", f"{stats.avg_duration_ms} ms")
    console.print(summary)

    ops = Table(title="By operation", show_header=True, header_style="bold cyan")
    ops.add_column("Operation", style="cyan")
    ops.add_column("Calls", justify="right")
    ops.add_column("Tokens", justify="right")
    ops.add_column("Failed", justify="right")
    ops.add_column("Failure %", justify="right")
    for op_id in sorted(stats.by_operation):
        s = stats.by_operation[op_id]
        ops.add_row(op_id, str(s.calls), f"{s.tokens:,}", str(s.failed), f"{s.failure_rate}%")
    console.print(ops)

    for title, counts in (
        ("By model", stats.by_model),
        ("By role", stats.by_role),
        ("By objective type", stats.by_objective_type),
    ):
        if not counts:
            continue
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Calls", justify="right")
        for key, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
            table.add_row(key, str(count))
        console.print(table)

    failing = ledger.get_failing_operations(min_calls=min_calls)
    if failing:
        console.print("[bold yellow]Failing operations:[/bold yellow]")
        for s in failing:
            console.print(f"  {s.operation_id}: {s.failed}/{s.calls} failed ({s.failure_rate}%)")

    proposals = analyzer.generate_proposals(min_calls=proposal_min_calls)
    if proposals:
        table = Table(title="Improvement proposals", show_header=True, header_style="bold cyan")
        table.add_column("Operation", style="cyan")
        table.add_column("Priority")
        table.add_column("Failure %", justify="right")
        table.add_column("Top failures")
        table.add_column("Proposal")
        for p in proposals:
            table.add_row(
                p.operation_id,
                "[red]high[/red]" if p.priority == "high" else "[yellow]medium[/yellow]",
                f"{p.failure_rate}%",
                "\n".join(f"{r.count}x {escape(r.reason)}" for r in p.common_failures) or "-",
                escape(p.proposal),
            )
        console.print(table)

    for suggestion in analyzer.find_patterns():
        console.print(
            f"[bold]Pattern[/bold] ({suggestion.occurrences} runs): {suggestion.pattern}\n"
            f"  [dim]{suggestion.suggestion}[/dim]"
        )


def _metrics_table(metrics: OperationMetrics) -> Table:
    table = Table(title=f"Operation {metrics.operation_id}", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Calls", str(metrics.total_calls))
    table.add_row("Passed", str(metrics.success))
    table.add_row("Failed", str(metrics.failed))
    table.add_row("Success rate", f"{metrics.success_rate}%")
    table.add_row("Avg duration", f"{metrics.avg_duration_ms} ms")
    table.add_row("Avg tokens", str(metrics.avg_tokens))
    for label, counts in (("Models", metrics.models_used), ("Roles", metrics.roles_used)):
        table.add_row(label, ", ".join(f"{k} ({v})" for k, v in sorted(counts.items())) or "-")
    return table
