"""Unit tests for the CLI: command registration and behaviour through
typer.testing.CliRunner."""

from __future__ import annotations

import os
import sqlite3

import pytest
import yaml
from typer.testing import CliRunner

from shipmachine import __version__
from shipmachine.cli.app import app
from shipmachine.core.loader import DEFAULT_GOVERNANCE_PATH, load_yaml_document
from shipmachine.models.audit import AuditEvent

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, workdir, repo):
    """Settings pointed at the temp root; no command is allowlisted for exec."""
    for key in list(os.environ):
        if key.startswith("SHIPMACHINE_"):
            monkeypatch.delenv(key)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.chdir(workdir)

    policy = load_yaml_document(DEFAULT_GOVERNANCE_PATH)
    policy["allowlists"]["paths"] = [f"{workdir}/**"]
    policy["allowlists"]["commands"] = ["ruff check"]
    governance_path = workdir / "governance.yaml"
    governance_path.write_text(yaml.safe_dump(policy), encoding="utf-8")

    monkeypatch.setenv("SHIPMACHINE_GOVERNANCE_PATH", str(governance_path))
    monkeypatch.setenv("SHIPMACHINE_AUDIT_DB_PATH", str(workdir / "audit.db"))
    monkeypatch.setenv("SHIPMACHINE_BUNDLES_PATH", str(workdir / "bundles"))
    monkeypatch.setenv("SHIPMACHINE_FORCE_MOCK", "true")
    return workdir


class TestCliApp:

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("run-task", "doctor", "report", "analytics", "packs", "audit-verify", "eval"):
            assert name in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"shipmachine {__version__}" in result.output


class TestPacksCommand:

    def test_default_packs(self, cli_env):
        result = runner.invoke(app, ["packs"])
        assert result.exit_code == 0
        assert "ship" in result.output

    def test_empty_directory(self, cli_env, workdir):
        empty = workdir / "no-packs"
        empty.mkdir()
        result = runner.invoke(app, ["packs", "--packs-dir", str(empty)])
        assert result.exit_code == 1
        assert "No operation packs found" in result.output


class TestLedgerCommands:

    @pytest.fixture
    def seeded(self, cli_env, ledger):
        for op in ("ship.scope_task", "ship.plan"):
            ledger.append(AuditEvent(run_id="run-a", operation_id=op, role="engineer"))
        ledger.append(AuditEvent(run_id="run-b", operation_id="ship.plan", passed=False))
        return ledger

    def test_missing_ledger(self, cli_env, workdir):
        for command in (["audit-verify"], ["report"], ["analytics"]):
            result = runner.invoke(app, [*command, "--ledger", str(workdir / "absent.db")])
            assert result.exit_code == 1
            assert "Audit ledger not found" in result.output

    def test_verify_all_valid(self, seeded):
        result = runner.invoke(app, ["audit-verify"])
        assert result.exit_code == 0
        assert "2/2 runs valid" in result.output

    def test_verify_detects_tampering(self, seeded):
        conn = sqlite3.connect(str(seeded.db_path))
        conn.execute("UPDATE audit_events SET tokens_used = 999 WHERE run_id = 'run-a'")
        conn.commit()
        conn.close()
        result = runner.invoke(app, ["audit-verify"])
        assert result.exit_code == 1
        assert "BROKEN" in result.output
        assert "1/2 runs valid" in result.output

    def test_verify_single_run(self, seeded):
        assert runner.invoke(app, ["audit-verify", "run-a"]).exit_code == 0
        missing = runner.invoke(app, ["audit-verify", "run-zzz"])
        assert missing.exit_code == 1
        assert "Run not found" in missing.output

    def test_report(self, seeded):
        result = runner.invoke(app, ["report", "run-a"])
        assert result.exit_code == 0
        assert "Hash chain intact" in result.output
        assert runner.invoke(app, ["report"]).exit_code == 0
        assert runner.invoke(app, ["report", "nope"]).exit_code == 1

    def test_analytics(self, seeded):
        result = runner.invoke(app, ["analytics"])
        assert result.exit_code == 0
        assert "Failing operations" in result.output

    def test_analytics_proposals_and_patterns(self, cli_env, ledger):
        for run_id in ("run-1", "run-2", "run-3"):
            for idx, op in enumerate(("ship.scope_task", "ship.repo_survey", "ship.plan")):
                failed = op == "ship.plan"
                ledger.append(AuditEvent(
                    run_id=run_id, operation_id=op, step_index=idx,
                    passed=not failed, failure_reason="bad plan" if failed else None,
                ))
        result = runner.invoke(app, ["analytics"])
        assert result.exit_code == 0, result.output
        assert "Improvement proposals" in result.output
        assert "Pattern" in result.output

    def test_analytics_single_operation(self, seeded):
        result = runner.invoke(app, ["analytics", "--operation", "ship.plan"])
        assert result.exit_code == 0
        assert "Success rate" in result.output
        assert "50%" in result.output
        missing = runner.invoke(app, ["analytics", "--operation", "ship.nope"])
        assert missing.exit_code == 1
        assert "No calls recorded" in missing.output


class TestEvalCommand:

    def test_list(self):
        result = runner.invoke(app, ["eval", "--list"])
        assert result.exit_code == 0
        assert "simple-feature" in result.output
        assert "bugfix" in result.output

    def test_unknown_fixture(self, cli_env, workdir):
        result = runner.invoke(
            app, ["eval", "--fixture", "nope", "--work-dir", str(workdir / "evals")]
        )
        assert result.exit_code == 1
        assert "No fixtures found" in result.output
        assert not (workdir / "EVAL_RESULTS.md").exists()


class TestDoctorCommand:

    def test_ready(self, cli_env):
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0
        assert "Ready" in result.output

    def test_production_violation_fails(self, cli_env, monkeypatch):
        monkeypatch.setenv("SHIPMACHINE_ENVIRONMENT", "production")
        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 1
        assert "Problems found" in result.output


class TestRunTaskCommand:

    def test_dry_run(self, cli_env, repo, workdir):
        result = runner.invoke(app, ["run-task", "Add a greeting", "--repo", str(repo), "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "dry_run" in result.output
        assert not (workdir / "bundles").exists()

    def test_full_run_writes_bundle(self, cli_env, repo, workdir):
        result = runner.invoke(app, ["run-task", "Add a greeting", "--repo", str(repo)])
        assert result.exit_code == 0, result.output
        assert "success" in result.output
        (bundle,) = (workdir / "bundles").iterdir()
        assert (bundle / "MANIFEST.json").is_file()
        assert (workdir / "audit.db").is_file()

    def test_role_error_exit_code(self, cli_env, repo):
        result = runner.invoke(
            app, ["run-task", "Add a greeting", "--repo", str(repo), "--role", "readonly"]
        )
        assert result.exit_code == 1
        assert "error" in result.output

    def test_production_guard_refuses(self, cli_env, repo, monkeypatch):
        monkeypatch.setenv("SHIPMACHINE_ENVIRONMENT", "production")
        result = runner.invoke(app, ["run-task", "Add a greeting", "--repo", str(repo)])
        assert result.exit_code == 1
        assert "Cannot start run" in result.output
