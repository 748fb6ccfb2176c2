"""ShipMachine CLI — Typer-based command-line interface.

Provides the ``shipmachine`` command with subcommands for running a task,
checking the installation, reporting on runs, listing operation packs,
verifying the audit ledger and running the eval suite.

All output uses Rich for formatted terminal display.
"""
