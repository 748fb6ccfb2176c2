"""``shipmachine run-task OBJECTIVE`` — run one objective end to end.

Builds the orchestrator from settings (governance, packs, ledger, model
client), runs scope → plan → steps → PR bundle and prints the outcome.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from shipmachine.config import ShipConfig
from shipmachine.core.errors import ShipMachineError
from shipmachine.core.orchestrator import Orchestrator
from shipmachine.models.task import RunResult, RunStatus

console = Console()

_STATUS_STYLE = {
    RunStatus.SUCCESS: ("green", 0),
    RunStatus.DRY_RUN: ("cyan", 0),
    RunStatus.ABORTED: ("yellow", 2),
    RunStatus.ERROR: ("red", 1),
}


def _render(result: RunResult, repo: Path) -> str:
    lines = [
        f"[bold]Run ID:[/bold]     {result.run_id}",
        f"[bold]Repository:[/bold] {repo}",
        f"[bold]Status:[/bold]     {result.status.value}",
        f"[bold]Steps done:[/bold] {', '.join(result.completed_steps) or 'none'}",
    ]
    if result.bundle_path:
        lines.append(f"[bold]Bundle:[/bold]     {result.bundle_path}")
    if result.reason:
        lines.append(f"[bold]Reason:[/bold]     {result.reason}")
    if result.escalations:
        lines.append("")
        lines.append("[bold yellow]Escalations:[/bold yellow]")
        lines.extend(f"  - {e}" for e in result.escalations)
    return "\n".join(lines)


def run_task_cmd(
    objective: str = typer.Argument(..., help="What the change should achieve."),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository to work in."),
    role: str = typer.Option(None, "--role", help="Agent role (defaults to the governance default)."),
    model: str = typer.Option(None, "--model", "-m", help="Model name override."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Plan and call the model but write nothing."),
    approve: bool = typer.Option(False, "--approve", help="Pre-approve operations that require approval."),
    target_env: str = typer.Option(None, "--target-env", help="Deployment target for approval rules."),
    governance: Path = typer.Option(None, "--governance", "-g", help="Governance YAML path."),
    mock: bool = typer.Option(False, "--mock", help="Force the deterministic mock model."),
) -> None:
    """Run one objective and write a PR bundle."""
    settings = ShipConfig()
    overrides: dict[str, object] = {}
    if governance is not None:
        overrides["governance_path"] = governance
    if mock:
        overrides["force_mock"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    try:
        orchestrator = Orchestrator(
            repo,
            objective,
            role=role,
            model=model,
            dry_run=dry_run,
            approved=approve,
            target_env=target_env,
            settings=settings,
        )
    except ShipMachineError as exc:
        console.print(f"[bold red]Cannot start run:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    result = orchestrator.run()
    style, code = _STATUS_STYLE[result.status]

    console.print()
    console.print(
        Panel(
            _render(result, orchestrator.repo_path),
            title="[bold]ShipMachine[/bold]",
            border_style=style,
            padding=(1, 2),
        )
    )
    console.print()
    if code:
        raise typer.Exit(code=code)
