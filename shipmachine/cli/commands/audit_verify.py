"""``shipmachine audit-verify`` — verify audit ledger hash chains."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipmachine.config import ShipConfig
from shipmachine.core.audit_ledger import AuditIntegrityError, AuditLedger

console = Console()


def audit_verify_cmd(
    run_id: str = typer.Argument(None, help="Run to verify; verifies every run when omitted."),
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Path to the audit ledger database."),
) -> None:
    """Recompute every event hash and check the per-run chain links."""
    db_path = ledger_db or ShipConfig().audit_db_path
    if not db_path.exists():
        console.print(f"[bold red]Audit ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)
    ledger = AuditLedger(db_path)

    if run_id is not None:
        if not ledger.get_run_events(run_id):
            console.print(f"[bold red]Run not found:[/bold red] {run_id}")
            raise typer.Exit(code=1)
        try:
            ledger.verify_chain(run_id)
        except AuditIntegrityError as exc:
            console.print(f"[bold red]BROKEN[/bold red] {run_id}: {exc}")
            raise typer.Exit(code=1) from exc
        console.print(f"[green]VALID[/green] {run_id}")
        return

    results = ledger.verify_all()
    if not results:
        console.print("[dim]No runs recorded.[/dim]")
        return
    broken = 0
    for rid, error in results.items():
        if error is None:
            console.print(f"[green]VALID[/green]  {rid}")
        else:
            broken += 1
            console.print(f"[bold red]BROKEN[/bold red] {rid}: {error}")
    console.print()
    console.print(f"{len(results) - broken}/{len(results)} runs valid")
    if broken:
        raise typer.Exit(code=1)
