"""Eval runner — drives the orchestrator over synthetic fixtures.

For each fixture: set up a temporary repository, run the objective with
the ``engineer`` role, verify the outcome, and remove the repository.
A dry run exercises the pipeline without writes and checks only that the
run finished cleanly and without policy violations.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from shipmachine.adapters.model_client import MockModelClient, ModelClient, build_model_client
from shipmachine.config import ShipConfig
from shipmachine.core.errors import ShipMachineError
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.orchestrator import Orchestrator
from shipmachine.core.task_context import TaskContext
from shipmachine.evals.fixtures import EvalFixture, select_fixtures
from shipmachine.models.evaluation import EvalCheck, EvalReport, EvalResult
from shipmachine.models.task import RunResult, RunStatus
from shipmachine.tools.exec import ExecTool, Runner

logger = logging.getLogger(__name__)

EVAL_ROLE = "engineer"

POLICY_ERROR_TYPES = frozenset({
    "PolicyDenied",
    "RbacDenied",
    "DataClassDenied",
    "ApprovalRequired",
    "ToolAccessDenied",
    "PathNotAllowed",
    "CommandNotAllowlisted",
    "DangerousCommandUnconfirmed",
})


class EvalRunner:
    """Runs eval fixtures against one configuration.

    Parameters
    ----------
    settings:
        Process settings; the ledger and bundle locations come from here.
    dry_run:
        Run the orchestrator in dry-run mode and skip the outcome checks.
    governance, model_client:
        Injected collaborators; built from *settings* when omitted.
    exec_runner, git_runner:
        ``subprocess.run``-compatible callables for the governed tools.
    work_root:
        Parent directory for fixture repositories.  Must be allowlisted.
    init_git:
        Commit fixture files to a fresh git repository on setup.
    keep_repos:
        Leave fixture repositories on disk after the run.
    """

    def __init__(
        self,
        settings: ShipConfig,
        *,
        dry_run: bool = False,
        governance: GovernanceEngine | None = None,
        model_client: ModelClient | None = None,
        exec_runner: Runner | None = None,
        git_runner: Runner | None = None,
        work_root: Path | None = None,
        init_git: bool = True,
        keep_repos: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.dry_run = dry_run
        self.governance = governance or GovernanceEngine.from_path(settings.governance_path)
        self.model_client = model_client or build_model_client(
            settings.default_model or self.governance.default_model,
            max_tokens=settings.max_output_tokens,
            timeout_seconds=settings.model_timeout_seconds,
            force_mock=settings.force_mock,
        )
        self.exec_runner = exec_runner
        self.git_runner = git_runner
        self.work_root = Path(work_root or tempfile.gettempdir()).resolve()
        self.init_git = init_git
        self.keep_repos = keep_repos
        self._clock = clock

    @property
    def mode(self) -> str:
        if self.dry_run:
            return "dry-run"
        return "mock" if isinstance(self.model_client, MockModelClient) else "live"

    def run(self, fixture_ids: list[str] | None = None) -> EvalReport:
        fixtures = select_fixtures(fixture_ids)
        started = self._clock()
        logger.info("Eval suite: %d fixtures, mode=%s", len(fixtures), self.mode)
        results = [self.run_fixture(fixture) for fixture in fixtures]
        return EvalReport(
            mode=self.mode,  # type: ignore[arg-type]
            duration_ms=int((self._clock() - started) * 1000),
            results=results,
        )

    def run_fixture(self, fixture: EvalFixture) -> EvalResult:
        started = self._clock()
        repo: Path | None = None
        try:
            repo = fixture.setup(self.work_root, init_git=self.init_git)
            logger.info("Fixture %s set up at %s", fixture.fixture_id, repo)
            orchestrator = Orchestrator(
                repo,
                fixture.objective,
                role=EVAL_ROLE,
                dry_run=self.dry_run,
                objective_type=fixture.objective_type,
                settings=self.settings,
                governance=self.governance,
                model_client=self.model_client,
                exec_runner=self.exec_runner,
                git_runner=self.git_runner,
            )
            result = orchestrator.run()
            checks = self._verify(fixture, repo, result, orchestrator.context)
        except (ShipMachineError, OSError, subprocess.SubprocessError) as exc:
            logger.error("Fixture %s errored: %s", fixture.fixture_id, exc)
            return EvalResult(
                fixture_id=fixture.fixture_id,
                description=fixture.description,
                passed=False,
                duration_ms=int((self._clock() - started) * 1000),
                error=str(exc),
                dry_run=self.dry_run,
            )
        finally:
            if repo is not None and not self.keep_repos:
                shutil.rmtree(repo, ignore_errors=True)

        passed = all(c.passed for c in checks)
        logger.info("Fixture %s %s", fixture.fixture_id, "passed" if passed else "failed")
        return EvalResult(
            fixture_id=fixture.fixture_id,
            description=fixture.description,
            passed=passed,
            duration_ms=int((self._clock() - started) * 1000),
            checks=checks,
            run_id=result.run_id,
            run_status=result.status.value,
            dry_run=self.dry_run,
        )

    def _verify(
        self,
        fixture: EvalFixture,
        repo: Path,
        result: RunResult,
        context: TaskContext | None,
    ) -> list[EvalCheck]:
        expected = RunStatus.DRY_RUN if self.dry_run else RunStatus.SUCCESS
        checks = [
            EvalCheck(
                name="Run finished",
                passed=result.status == expected,
                detail=result.reason or result.status.value,
            )
        ]
        if not self.dry_run:
            checks.append(fixture.check_source(repo))
            checks.append(self._check_tests(fixture, repo))
            checks.append(_check_bundle(result))
        checks.append(_check_policy(context))
        return checks

    def _check_tests(self, fixture: EvalFixture, repo: Path) -> EvalCheck:
        tool = ExecTool(self.governance, **({"runner": self.exec_runner} if self.exec_runner else {}))
        try:
            outcome = tool.run(fixture.test_command, cwd=repo, role=EVAL_ROLE)
        except ShipMachineError as exc:
            return EvalCheck(name="Tests pass", passed=False, detail=str(exc))
        return EvalCheck(
            name="Tests pass",
            passed=outcome.exit_code == 0,
            detail=f"{fixture.test_command} exited {outcome.exit_code}",
        )


def _check_bundle(result: RunResult) -> EvalCheck:
    description = Path(result.bundle_path) / "PR_DESCRIPTION.md" if result.bundle_path else None
    found = description is not None and description.is_file()
    return EvalCheck(
        name="PR bundle generated",
        passed=found,
        detail=str(description) if found else "No PR description in bundle",
    )


def _check_policy(context: TaskContext | None) -> EvalCheck:
    errors = context.errors if context is not None else []
    violations = [f"{e.step_id}: {e.error_type}" for e in errors if e.error_type in POLICY_ERROR_TYPES]
    return EvalCheck(
        name="No policy violations",
        passed=not violations,
        detail=", ".join(violations) or "Clean",
    )


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def render_report(report: EvalReport) -> str:
    """Markdown rendering written to ``EVAL_RESULTS.md``."""
    lines = [
        "# ShipMachine Eval Results",
        "",
        f"**Date:** {report.started_utc.isoformat()}",
        f"**Mode:** {report.mode}",
        f"**Duration:** {report.duration_ms / 1000:.1f}s",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total fixtures | {len(report.results)} |",
        f"| Passed | {report.passed} |",
        f"| Failed | {report.failed} |",
        f"| Success rate | {report.success_rate}% |",
        "",
        "## Results by fixture",
    ]
    for r in report.results:
        lines += [
            "",
            f"### {'PASS' if r.passed else 'FAIL'} {r.fixture_id}",
            "",
            f"**{r.description}**",
            "",
            f"- Duration: {r.duration_ms}ms",
        ]
        if r.run_id:
            lines.append(f"- Run: {r.run_id} ({r.run_status})")
        if r.error:
            lines.append(f"- Error: {_cell(r.error)}")
        if r.checks:
            lines += ["", "| Check | Result | Detail |", "|-------|--------|--------|"]
            lines += [
                f"| {_cell(c.name)} | {'pass' if c.passed else 'fail'} | {_cell(c.detail)} |"
                for c in r.checks
            ]
    return "\n".join(lines) + "\n"
