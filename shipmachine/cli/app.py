"""Main Typer application — imports and registers all CLI commands.

Entry point: ``shipmachine`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from shipmachine import __version__
from shipmachine.cli.commands.audit_verify import audit_verify_cmd
from shipmachine.cli.commands.doctor import doctor_cmd
from shipmachine.cli.commands.eval_cmd import eval_cmd
from shipmachine.cli.commands.packs import packs_cmd
from shipmachine.cli.commands.report import analytics_cmd, report_cmd
from shipmachine.cli.commands.run_task import run_task_cmd
from shipmachine.cli.logging_setup import configure_logging
from shipmachine.config import ShipConfig

app = typer.Typer(
    name="shipmachine",
    help="ShipMachine: governed objective-to-PR automation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run-task", help="Run one objective and write a PR bundle.")(run_task_cmd)
app.command(name="doctor", help="Check configuration and environment.")(doctor_cmd)
app.command(name="report", help="Show the audit trail for runs.")(report_cmd)
app.command(name="analytics", help="Aggregate ledger statistics.")(analytics_cmd)
app.command(name="packs", help="List operation packs.")(packs_cmd)
app.command(name="audit-verify", help="Verify audit ledger hash chains.")(audit_verify_cmd)
app.command(name="eval", help="Run the fixture eval suite.")(eval_cmd)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"shipmachine {__version__}")
        raise typer.Exit()


@app.callback()
def _root(
    log_level: str = typer.Option(None, "--log-level", help="Logging level (default from settings)."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
) -> None:
    configure_logging(log_level or ShipConfig().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
