"""Unit tests for Orchestrator wiring and step-loop control flow."""

from __future__ import annotations

import pytest

from shipmachine.config import ShipConfig
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.production_guard import ProductionConfigError
from shipmachine.models.task import RunStatus


class TestConstruction:

    def test_defaults_from_governance(self, make_orchestrator, repo):
        orch = make_orchestrator()
        assert orch.role == "engineer"
        assert orch.repo_path == repo
        assert orch.bridge.approval_policy == "warn"
        assert orch.workspace.role == "engineer"
        assert orch.planner.max_retries == 2

    def test_production_guard_runs_first(self, make_orchestrator, workdir):
        settings = ShipConfig(environment="production", approval_policy="warn", force_mock=False)
        with pytest.raises(ProductionConfigError):
            make_orchestrator(settings=settings)

    def test_production_forces_block(self, make_orchestrator, workdir):
        settings = ShipConfig(
            environment="production",
            approval_policy="block",
            force_mock=False,
            audit_db_path=workdir / "audit.db",
            bundles_path=workdir / "bundles",
        )
        assert make_orchestrator(settings=settings).bridge.approval_policy == "block"


class TestStepLoop:

    def test_completes_every_step(self, make_orchestrator):
        orch = make_orchestrator()
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert result.completed_steps == ["step-1", "step-2", "step-3", "step-4"]
        assert result.escalations == []
        assert orch.context.files_modified == ["src/core/feature.py", "tests/test_feature.py"]

    def test_step_budget_aborts(self, make_orchestrator, make_governance_config):
        governance = GovernanceEngine(make_governance_config(budgets={"max_steps": 2}))
        result = make_orchestrator(governance=governance).run()
        assert result.status == RunStatus.ABORTED
        assert result.reason == "Budget exceeded: max steps reached (2)"
        assert result.completed_steps == ["step-1", "step-2"]

    def test_denied_steps_escalate_then_tail_errors(self, make_orchestrator):
        orch = make_orchestrator(role="readonly")
        result = orch.run()
        assert result.status == RunStatus.ERROR
        assert "ship.doc_update" in result.reason
        assert [e.split(":")[0] for e in result.escalations] == ["step-2", "step-3"]
        assert result.completed_steps == ["step-1", "step-4"]
        assert {err.error_type for err in orch.context.errors} == {"PolicyDenied"}

    def test_failing_checkpoint_escalates(self, make_orchestrator, failing_runner):
        orch = make_orchestrator(exec_runner=failing_runner)
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert "step-2" not in result.completed_steps
        assert result.escalations[0].startswith("step-2: Step step-2 failed after 2 retries")
        assert orch.planner.get_retry_count("step-2") == 2

    def test_max_retries_setting(self, make_orchestrator, failing_runner, settings):
        orch = make_orchestrator(
            exec_runner=failing_runner, settings=settings.model_copy(update={"max_retries": 1})
        )
        orch.run()
        assert orch.planner.get_retry_count("step-2") == 1


class TestTestFramework:

    @pytest.mark.parametrize(
        ("command", "framework"),
        [("npx jest --ci", "jest"), ("cargo test", "cargo"), ("make test", "pytest")],
    )
    def test_detect_from_command(self, make_orchestrator, command, framework):
        orch = make_orchestrator()
        ctx = type("Ctx", (), {"repo_survey": {"test_command": command}})()
        assert orch._detect_test_framework(ctx) == framework


class TestStepErrors:
    """A failing step is recorded and escalated; the run itself keeps going."""

    @pytest.mark.parametrize(
        "edits",
        [[{"line_start": "top", "line_end": 1, "new_content": "x"}], ["replace line 1"]],
    )
    def test_malformed_edits(self, make_orchestrator, overriding_client, edits):
        client = overriding_client({"ship.patch": {"edits": edits}})
        orch = make_orchestrator(model_client=client)
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert result.completed_steps == ["step-1", "step-3", "step-4"]
        assert [e.split(":")[0] for e in result.escalations] == ["step-2"]
        assert {err.error_type for err in orch.context.errors} == {"ToolExecutionError"}

    def test_non_utf8_source_file(self, make_orchestrator, repo):
        (repo / "src" / "core" / "feature.py").write_bytes(b"\xff\xfe\x00def feature")
        orch = make_orchestrator()
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert [e.split(":")[0] for e in result.escalations] == ["step-2", "step-3"]
        assert result.completed_steps == ["step-1", "step-4"]
        assert {err.error_type for err in orch.context.errors} == {"ToolExecutionError"}

    def test_unparseable_test_command(self, make_orchestrator, overriding_client, passing_runner):
        client = overriding_client({"ship.repo_survey": {"test_command": 'pytest -k "feature'}})
        orch = make_orchestrator(model_client=client)
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert "step-2" not in result.completed_steps
        assert passing_runner.calls == []
        assert any("Cannot parse command" in err.error for err in orch.context.errors)

    def test_unexpected_exception_is_recorded(self, make_orchestrator):
        def exploding_runner(argv, **kwargs):
            raise ValueError("runner exploded")

        orch = make_orchestrator(exec_runner=exploding_runner)
        result = orch.run()
        assert result.status == RunStatus.SUCCESS
        assert result.escalations[0].startswith("step-2")
        assert {err.error_type for err in orch.context.errors} == {"ValueError"}
