"""``shipmachine doctor`` — check the installation and configuration.

Reports on the governance config, operation packs, audit ledger, model
credentials, the ``git`` binary and the production guard.
"""

from __future__ import annotations

import importlib.util
import os
import shutil

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shipmachine.config import ShipConfig
from shipmachine.core.audit_ledger import AuditLedger
from shipmachine.core.errors import GovernanceConfigError
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.operation_registry import OperationRegistry
from shipmachine.core.production_guard import (
    ProductionConfigError,
    enforce_production_constraints,
)

console = Console()

OK, WARN, FAIL = "ok", "warn", "fail"

_STATUS_MARKUP = {
    OK: "[green]OK[/green]",
    WARN: "[yellow]WARN[/yellow]",
    FAIL: "[red]FAIL[/red]",
}

Check = tuple[str, str, str]


def _check_governance(settings: ShipConfig) -> tuple[Check, GovernanceEngine | None]:
    try:
        engine = GovernanceEngine.from_path(settings.governance_path)
    except GovernanceConfigError as exc:
        return ("Governance", FAIL, str(exc)), None
    roles = ", ".join(r.name for r in engine.roles())
    return ("Governance", OK, f"{settings.governance_path} (roles: {roles})"), engine


def _check_packs(settings: ShipConfig) -> Check:
    registry = OperationRegistry(settings.packs_path)
    if len(registry) == 0:
        return ("Operation packs", FAIL, "no operations found")
    packs = ", ".join(p.name for p in registry.list_packs())
    return ("Operation packs", OK, f"{len(registry)} operations ({packs})")


def _check_ledger(settings: ShipConfig) -> Check:
    path = settings.audit_db_path
    if not path.exists():
        return ("Audit ledger", OK, f"{path} (created on first run)")
    ledger = AuditLedger(path)
    return ("Audit ledger", OK, f"{path} ({ledger.count()} events)")


def _check_model(settings: ShipConfig) -> Check:
    if settings.force_mock:
        return ("Model", WARN, "mock model forced (SHIPMACHINE_FORCE_MOCK)")
    if importlib.util.find_spec("anthropic") is None:
        return ("Model", WARN, "anthropic SDK not installed, mock fallback")
    if not os.getenv("ANTHROPIC_API_KEY"):
        return ("Model", WARN, "ANTHROPIC_API_KEY not set, mock fallback")
    return ("Model", OK, "live model client")


def _check_git() -> Check:
    path = shutil.which("git")
    if path is None:
        return ("git binary", WARN, "not found on PATH, diffs unavailable")
    return ("git binary", OK, path)


def _check_production(settings: ShipConfig, engine: GovernanceEngine | None) -> Check:
    if not settings.is_production:
        return ("Production guard", OK, f"environment={settings.environment} (not enforced)")
    try:
        enforce_production_constraints(settings, engine)
    except ProductionConfigError as exc:
        return ("Production guard", FAIL, str(exc))
    return ("Production guard", OK, "all constraints satisfied")


def doctor_cmd() -> None:
    """Check governance, packs, ledger, model and production settings."""
    settings = ShipConfig()

    gov_check, engine = _check_governance(settings)
    checks = [
        gov_check,
        _check_packs(settings),
        _check_ledger(settings),
        _check_model(settings),
        _check_git(),
        _check_production(settings, engine),
    ]

    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Component", min_width=16)
    table.add_column("Status", width=8, justify="center")
    table.add_column("Details")
    for name, status, detail in checks:
        table.add_row(name, _STATUS_MARKUP[status], detail)

    failed = any(status == FAIL for _, status, _ in checks)
    console.print()
    console.print(
        Panel(
            table,
            title="[bold]ShipMachine Doctor[/bold]",
            subtitle="[bold red]Problems found[/bold red]" if failed else "[bold green]Ready[/bold green]",
            border_style="red" if failed else "green",
            padding=(1, 2),
        )
    )
    console.print()
    if failed:
        raise typer.Exit(code=1)
