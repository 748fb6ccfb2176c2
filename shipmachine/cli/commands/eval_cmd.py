"""``shipmachine eval`` — run the fixture eval suite and write EVAL_RESULTS.md."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shipmachine.config import ShipConfig
from shipmachine.core.errors import ShipMachineError
from shipmachine.evals import FIXTURES, EvalRunner, render_report

console = Console()


def eval_cmd(
    fixture: list[str] = typer.Option(None, "--fixture", "-f", help="Fixture id to run; repeatable."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Run the pipeline without writes or outcome checks."),
    output: Path = typer.Option(Path("EVAL_RESULTS.md"), "--output", "-o", help="Markdown report path."),
    work_dir: Path = typer.Option(None, "--work-dir", help="Where fixture repositories are created."),
    keep: bool = typer.Option(False, "--keep", help="Keep fixture repositories after the run."),
    governance: Path = typer.Option(None, "--governance", "-g", help="Governance YAML path."),
    mock: bool = typer.Option(False, "--mock", help="Force the deterministic mock model."),
    list_only: bool = typer.Option(False, "--list", help="List fixtures and exit."),
) -> None:
    """Run synthetic fixtures through the orchestrator and score the outcome."""
    if list_only:
        for fixture_id, item in FIXTURES.items():
            console.print(f"[cyan]{fixture_id}[/cyan]  {item.description}")
        return

    settings = ShipConfig()
    overrides: dict[str, object] = {}
    if governance is not None:
        overrides["governance_path"] = governance
    if mock:
        overrides["force_mock"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    try:
        runner = EvalRunner(settings, dry_run=dry_run, work_root=work_dir, keep_repos=keep)
        report = runner.run(fixture or None)
    except ShipMachineError as exc:
        console.print(f"[bold red]Eval failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    table = Table(title=f"Eval results ({report.mode})", show_header=True, header_style="bold cyan")
    table.add_column("Fixture", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("ms", justify="right")
    table.add_column("Failed checks")
    for r in report.results:
        failed = [c.name for c in r.checks if not c.passed]
        table.add_row(
            r.fixture_id,
            "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]",
            str(r.duration_ms),
            escape(r.error or ", ".join(failed) or "-"),
        )
    console.print(table)

    output.write_text(render_report(report), encoding="utf-8")
    console.print(
        f"{report.passed}/{len(report.results)} passed ({report.success_rate}%). "
        f"Report: {output}"
    )
    if report.failed:
        raise typer.Exit(code=1)
