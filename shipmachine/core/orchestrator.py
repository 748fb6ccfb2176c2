"""Orchestrator — drives one run from objective to PR bundle.

Phases::

    scope → survey → plan → step loop → docs → security → risk
          → rollback → PR writeup → bundle

Every model call goes through the ``ExecutionBridge``; every file or
process touch goes through a governed tool.  The orchestrator owns the
run id and threads it into each call context.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from shipmachine.adapters.model_client import ModelClient, build_model_client
from shipmachine.config import ShipConfig
from shipmachine.core.audit_ledger import AuditLedger
from shipmachine.core.bridge import ExecutionBridge
from shipmachine.core.errors import ShipMachineError, is_budget_error
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.operation_registry import OperationRegistry
from shipmachine.core.planner import Planner
from shipmachine.core.production_guard import (
    effective_approval_policy,
    enforce_production_constraints,
)
from shipmachine.core.task_context import TaskContext
from shipmachine.core.workspace import Workspace
from shipmachine.models.bridge import CallContext
from shipmachine.models.task import (
    NextAction,
    Plan,
    PlanStep,
    RunResult,
    RunStatus,
    StepEvidence,
    StepType,
)
from shipmachine.tools.exec import ExecTool, Runner
from shipmachine.tools.fs import FilesystemTool
from shipmachine.tools.git import GitTool
from shipmachine.tools.pr import ArtifactPublishTool, BundleArtifacts
from shipmachine.tools.tests import TestRunnerTool

logger = logging.getLogger(__name__)

DEFAULT_TEST_COMMAND = "pytest"


def _as_dict(output: Any) -> dict[str, Any]:
    return output if isinstance(output, dict) else {}


def _to_next_action(value: Any) -> NextAction | None:
    try:
        return NextAction(str(value).lower()) if value is not None else None
    except ValueError:
        return None


class Orchestrator:
    """Runs one objective against one repository.

    Parameters
    ----------
    repo_path:
        Repository to work in.
    objective:
        Free-form task objective.
    role:
        Agent role; defaults to the governance default role.
    dry_run:
        Plan and call the model, but write no files and no bundle.
    approved:
        Pre-approval for operations that require it.
    target_env:
        Deployment target passed to approval rules.
    settings:
        Process settings.  Defaults to a fresh ``ShipConfig()``.
    governance, registry, ledger, model_client:
        Injected collaborators; built from *settings* when omitted.
    exec_runner, git_runner:
        ``subprocess.run``-compatible callables for the exec and git tools.
    clock:
        Monotonic seconds source for the time budget.
    """

    def __init__(
        self,
        repo_path: str | Path,
        objective: str,
        *,
        role: str | None = None,
        model: str | None = None,
        dry_run: bool = False,
        approved: bool = False,
        target_env: str | None = None,
        user_id: str | None = None,
        objective_type: str | None = None,
        flags: dict[str, bool] | None = None,
        settings: ShipConfig | None = None,
        governance: GovernanceEngine | None = None,
        registry: OperationRegistry | None = None,
        ledger: AuditLedger | None = None,
        model_client: ModelClient | None = None,
        exec_runner: Runner | None = None,
        git_runner: Runner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ShipConfig()
        self.governance = governance or GovernanceEngine.from_path(self.settings.governance_path)

        # Production guard — fails hard if production constraints are violated
        enforce_production_constraints(self.settings, self.governance)

        self.repo_path = Path(repo_path).resolve()
        self.objective = objective
        self.role = role or self.governance.default_role
        self.model = model or self.settings.default_model
        self.dry_run = dry_run
        self.approved = approved
        self.target_env = target_env
        self.user_id = user_id
        self.objective_type = objective_type
        self.flags = dict(flags or {})
        self._clock = clock

        self.registry = registry or OperationRegistry(self.settings.packs_path)
        self.ledger = ledger or AuditLedger(self.settings.audit_db_path)
        self.model_client = model_client or build_model_client(
            self.model or self.governance.default_model,
            max_tokens=self.settings.max_output_tokens,
            timeout_seconds=self.settings.model_timeout_seconds,
            force_mock=self.settings.force_mock,
        )
        self.bridge = ExecutionBridge(
            self.governance,
            self.registry,
            self.ledger,
            self.model_client,
            default_model=self.model,
            approval_policy=effective_approval_policy(self.settings),  # type: ignore[arg-type]
        )

        self.fs = FilesystemTool(self.governance)
        self.git = GitTool(self.governance, **({"runner": git_runner} if git_runner else {}))
        self.exec = ExecTool(self.governance, **({"runner": exec_runner} if exec_runner else {}))
        self.tests = TestRunnerTool(self.governance, self.exec)
        self.publisher = ArtifactPublishTool(self.governance, self.settings.bundles_path)
        self.workspace = Workspace(self.repo_path, self.fs, self.git, role=self.role)
        self.planner = Planner(self.governance.budget_limits(), max_retries=self.settings.max_retries)

        self.context: TaskContext | None = None
        self._completed: list[str] = []

    # ------------------------------------------------------------------
    # Bridge plumbing
    # ------------------------------------------------------------------

    def _call_context(
        self,
        ctx: TaskContext,
        step_index: int = 0,
        retry_count: int = 0,
        tool_calls: list[str] | None = None,
    ) -> CallContext:
        return CallContext(
            run_id=ctx.run_id,
            role=self.role,
            model=self.model,
            channel=self.settings.channel,
            user_id=self.user_id,
            budget=ctx.budget_usage(),
            approved=self.approved,
            target_env=self.target_env,
            flags=self.flags,
            step_index=step_index,
            retry_count=retry_count,
            tool_calls=tool_calls or [],
            objective_type=self.objective_type,
        )

    def _call(
        self,
        ctx: TaskContext,
        operation_id: str,
        inputs: dict[str, Any],
        **context_kwargs: Any,
    ) -> dict[str, Any]:
        result = self.bridge.execute(
            operation_id, inputs, self._call_context(ctx, **context_kwargs)
        )
        ctx.add_tokens(result.tokens_used)
        return _as_dict(result.output)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        ctx = TaskContext(self.objective, clock=self._clock)
        self.context = ctx
        self._completed = []
        logger.info(
            "Run %s started: role=%s repo=%s dry_run=%s",
            ctx.run_id, self.role, self.repo_path, self.dry_run,
        )
        try:
            return self._run(ctx)
        except ShipMachineError as exc:
            logger.error("Run %s failed: %s", ctx.run_id, exc)
            return RunResult(
                run_id=ctx.run_id,
                status=RunStatus.ERROR,
                reason=str(exc),
                completed_steps=list(self._completed),
                escalations=list(ctx.escalations),
            )

    def _run(self, ctx: TaskContext) -> RunResult:
        ctx.scope_output = self._call(ctx, "ship.scope_task", {
            "objective": self.objective,
            "repo_context": "",
            "constraints": "",
        })
        logger.info("Done definition: %s", ctx.scope_output.get("done_definition", "n/a"))

        ctx.repo_survey = self._call(ctx, "ship.repo_survey", {
            "repo_path": str(self.repo_path),
            "file_tree": self.workspace.file_tree(),
            "package_manifest": self.workspace.manifest_text(),
        })

        plan_output = self._call(ctx, "ship.plan", {
            "objective": self.objective,
            "scope_output": json.dumps(ctx.scope_output),
            "repo_survey_output": json.dumps(ctx.repo_survey),
        })
        ctx.plan = Plan.from_output(plan_output)
        logger.info("%d steps planned", len(ctx.plan.steps))

        aborted, reason = self._execute_steps(ctx)
        if aborted:
            logger.warning("Run %s aborted: %s", ctx.run_id, reason)
            return RunResult(
                run_id=ctx.run_id,
                status=RunStatus.ABORTED,
                reason=reason,
                completed_steps=list(self._completed),
                escalations=list(ctx.escalations),
            )

        self._run_tail(ctx)

        if self.dry_run:
            logger.info("Dry run complete, no bundle written")
            return RunResult(
                run_id=ctx.run_id,
                status=RunStatus.DRY_RUN,
                completed_steps=list(self._completed),
                escalations=list(ctx.escalations),
            )

        bundle = self.publisher.create_bundle(
            BundleArtifacts(
                run_id=ctx.run_id,
                objective=self.objective,
                diff=self.workspace.collect_diff(),
                test_evidence=ctx.test_evidence,
                pr_description=ctx.pr_writeup,
                risk_assessment=ctx.risk_assessment,
                rollback_plan=ctx.rollback_plan,
                changelog=str((ctx.doc_update or {}).get("changelog_entry") or ""),
            ),
            role=self.role,
        )
        return RunResult(
            run_id=ctx.run_id,
            status=RunStatus.SUCCESS,
            bundle_path=str(bundle.path),
            completed_steps=list(self._completed),
            escalations=list(ctx.escalations),
        )

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    def _execute_steps(self, ctx: TaskContext) -> tuple[bool, str | None]:
        """Walk the plan.  Returns ``(aborted, reason)``."""
        plan = ctx.plan
        escalated: set[str] = set()
        last: StepEvidence | None = None

        while True:
            decision = self.planner.should_abort(ctx.budget_usage(), last)
            if decision.abort:
                return True, decision.reason
            if decision.escalate and last is not None:
                logger.warning("%s", decision.reason)
                ctx.record_escalation(last.step_id, decision.reason or "escalated")
                escalated.add(last.step_id)
                last = None

            step = self.planner.select_next_step(plan, [*self._completed, *escalated])
            if step is None:
                logger.info(
                    "Step loop finished: %s", self.planner.progress_summary(plan, self._completed)
                )
                return False, None

            retries = self.planner.get_retry_count(step.id)
            logger.info("Step %s (%s): %s", step.id, step.type, step.description)
            try:
                operation_id, evidence = self._execute_step(ctx, step, retries)
            except Exception as exc:
                ctx.record_error(step.id, exc)
                logger.error("Step %s failed: %s: %s", step.id, type(exc).__name__, exc)
                if is_budget_error(exc):
                    return True, str(exc)
                self.planner.record_retry(step.id)
                last = StepEvidence(step_id=step.id, next_action=NextAction.FIX, reason=str(exc))
                continue

            ctx.record_step(step.id, operation_id, evidence)
            if self.planner.is_step_complete(step, evidence):
                self._completed.append(step.id)
                last = evidence
                continue

            if evidence.next_action in (None, NextAction.CONTINUE):
                evidence = evidence.model_copy(update={"next_action": NextAction.FIX})
            count = self.planner.record_retry(step.id)
            logger.warning("Step %s incomplete (attempt %d)", step.id, count)
            last = evidence

    def _execute_step(
        self, ctx: TaskContext, step: PlanStep, retries: int
    ) -> tuple[str, StepEvidence]:
        index = ctx.total_steps
        match step.type:
            case StepType.ANALYSIS.value:
                return "analysis", StepEvidence(step_id=step.id, result="Analysis complete")
            case StepType.PATCH.value | StepType.CREATE.value:
                return "ship.patch", self._patch_step(ctx, step, index, retries)
            case StepType.TESTS.value:
                return "ship.tests", self._tests_step(ctx, step, index, retries)
            case StepType.EXEC.value:
                return "ship.run_tests_interpret", self._exec_step(ctx, step, index, retries)
            case StepType.DOCS.value:
                return "docs", StepEvidence(step_id=step.id, docs_updated=True)
            case StepType.REVIEW.value:
                return "review", StepEvidence(step_id=step.id, review_complete=True)
            case _:
                return step.type, StepEvidence(step_id=step.id, complete=True)

    def _patch_step(
        self, ctx: TaskContext, step: PlanStep, index: int, retries: int
    ) -> StepEvidence:
        if not step.files_affected:
            return StepEvidence(step_id=step.id, patch_applied=True)

        file_path = step.files_affected[0]
        output = self._call(
            ctx,
            "ship.patch",
            {
                "step_description": step.description,
                "file_path": file_path,
                "current_content": self.workspace.read_file(file_path),
                "context": ctx.summarize(),
            },
            step_index=index,
            retry_count=retries,
            tool_calls=["filesystem.read_file"],
        )
        modified: list[str] = []
        if not self.dry_run:
            self.workspace.apply_edits(file_path, list(output.get("edits") or []))
            modified.append(file_path)

        if not step.test_checkpoint:
            return StepEvidence(
                step_id=step.id, patch_applied=True, result=output,
                files_modified=modified,
            )

        passed, next_action, root_cause = self._run_checkpoint(ctx, step, index, retries)
        return StepEvidence(
            step_id=step.id,
            patch_applied=True,
            test_passed=passed,
            next_action=next_action,
            reason=root_cause,
            result=output,
            files_modified=modified,
        )

    def _tests_step(
        self, ctx: TaskContext, step: PlanStep, index: int, retries: int
    ) -> StepEvidence:
        if not step.files_affected:
            return StepEvidence(step_id=step.id, test_file_written=True)

        file_path = step.files_affected[0]
        output = self._call(
            ctx,
            "ship.tests",
            {
                "file_path": file_path,
                "code_content": self.workspace.read_file(file_path),
                "test_framework": self._detect_test_framework(ctx),
                "existing_tests": "",
            },
            step_index=index,
            retry_count=retries,
            tool_calls=["filesystem.read_file"],
        )
        test_path = output.get("test_file_path")
        if not test_path:
            return StepEvidence(step_id=step.id, reason="No test file path returned", result=output)

        modified: list[str] = []
        if not self.dry_run:
            self.workspace.write_file(test_path, str(output.get("test_content") or ""))
            modified.append(test_path)
        return StepEvidence(
            step_id=step.id,
            test_file_written=True,
            test_file_path=test_path,
            result=output,
            files_modified=modified,
        )

    def _exec_step(
        self, ctx: TaskContext, step: PlanStep, index: int, retries: int
    ) -> StepEvidence:
        command = self._test_command(ctx)
        run = self.tests.run(self.repo_path, command, role=self.role)
        ctx.test_evidence = run.model_dump(mode="json")
        output = self._call(
            ctx,
            "ship.run_tests_interpret",
            {"test_command": command, "step_context": step.description, "test_output": run.output},
            step_index=index,
            retry_count=retries,
            tool_calls=["test_runner.run"],
        )
        return StepEvidence(
            step_id=step.id,
            exit_code=run.exit_code,
            test_passed=run.succeeded,
            next_action=_to_next_action(output.get("next_action")),
            reason=output.get("root_cause"),
            result=output,
        )

    def _run_checkpoint(
        self, ctx: TaskContext, step: PlanStep, index: int, retries: int
    ) -> tuple[bool, NextAction | None, str | None]:
        command = self._test_command(ctx)
        run = self.tests.run(self.repo_path, command, role=self.role)
        ctx.test_evidence = run.model_dump(mode="json")
        output = self._call(
            ctx,
            "ship.run_tests_interpret",
            {"test_command": command, "step_context": step.description, "test_output": run.output},
            step_index=index,
            retry_count=retries,
            tool_calls=["test_runner.run"],
        )
        passed = run.succeeded and output.get("passed") is True
        return passed, _to_next_action(output.get("next_action")), output.get("root_cause")

    def _test_command(self, ctx: TaskContext) -> str:
        return str((ctx.repo_survey or {}).get("test_command") or DEFAULT_TEST_COMMAND)

    def _detect_test_framework(self, ctx: TaskContext) -> str:
        command = self._test_command(ctx)
        for framework in ("pytest", "jest", "vitest", "mocha", "cargo", "go"):
            if framework in command:
                return framework
        manifest = self.workspace.manifest_text()
        for framework in ("jest", "vitest", "mocha", "pytest"):
            if framework in manifest:
                return framework
        return DEFAULT_TEST_COMMAND

    # ------------------------------------------------------------------
    # Tail
    # ------------------------------------------------------------------

    def _run_tail(self, ctx: TaskContext) -> None:
        files = json.dumps(ctx.files_modified)
        summary = ctx.changes_summary()
        evidence = json.dumps(ctx.test_evidence or {})

        ctx.doc_update = self._call(ctx, "ship.doc_update", {
            "changed_files": files,
            "changes_summary": summary,
            "existing_docs": "",
        })

        ctx.security_check = self._call(ctx, "ship.security_check", {
            "diff": self.workspace.collect_diff(),
            "file_paths": files,
        })
        if ctx.security_check.get("safe_to_proceed") is False:
            logger.warning(
                "Security check flagged issues (risk=%s); review required",
                ctx.security_check.get("risk_level", "unknown"),
            )

        ctx.risk_assessment = self._call(ctx, "ship.risk_assessment", {
            "changes_summary": summary,
            "files_modified": files,
            "test_evidence": evidence,
        })

        ctx.rollback_plan = self._call(ctx, "ship.rollback_plan", {
            "changes_summary": summary,
            "files_modified": files,
            "git_branch": self.workspace.current_branch(),
        })

        ctx.pr_writeup = self._call(ctx, "ship.pr_writeup", {
            "objective": self.objective,
            "plan_output": json.dumps(ctx.plan.model_dump(mode="json") if ctx.plan else {}),
            "changes_summary": summary,
            "test_evidence": evidence,
        })
        logger.info("PR title: %s", ctx.pr_writeup.get("title", "n/a"))
