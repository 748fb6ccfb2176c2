"""``shipmachine packs`` — list loaded operation packs."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from shipmachine.config import ShipConfig
from shipmachine.core.operation_registry import OperationRegistry

console = Console()


def packs_cmd(
    packs_dir: list[Path] = typer.Option(
        None, "--packs-dir", "-d", help="Pack root to scan (repeatable)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show required output fields."),
) -> None:
    """List operation packs and the operations they define."""
    registry = OperationRegistry(packs_dir or ShipConfig().packs_path)
    if len(registry) == 0:
        console.print("[dim]No operation packs found.[/dim]")
        raise typer.Exit(code=1)

    for pack in registry.list_packs():
        console.print(f"[bold]{pack.name}[/bold] v{pack.version}  [dim]{pack.description}[/dim]")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Operation", style="cyan")
    table.add_column("Version")
    table.add_column("Inputs")
    table.add_column("Description")
    if verbose:
        table.add_column("Required output")
    for spec in registry.list_operations():
        row = [spec.operation_id, spec.version, ", ".join(spec.inputs), spec.description]
        if verbose:
            required = spec.output_schema.required if spec.output_schema else []
            row.append(", ".join(required))
        table.add_row(*row)
    console.print(table)
