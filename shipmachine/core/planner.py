"""Planner — step selection, completion and abort/escalation rules.

The planner holds no plan of its own; it is consulted by the orchestrator
with the current plan, the ids already done and the latest evidence.  Its
only state is the per-step retry counter.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from shipmachine.models.governance import BudgetLimits
from shipmachine.models.task import (
    AbortDecision,
    BudgetUsage,
    NextAction,
    Plan,
    PlanStep,
    StepEvidence,
    StepType,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2


class Planner:
    """Plan-walking rules.

    Parameters
    ----------
    limits:
        Budget ceilings; abort decisions use these, not hard-coded numbers.
    max_retries:
        Failed attempts on one step before escalation.
    """

    def __init__(
        self,
        limits: BudgetLimits | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.limits = limits or BudgetLimits()
        self.max_retries = max_retries
        self._retry_count: dict[str, int] = {}

    def select_next_step(
        self, plan: Plan | None, completed_ids: Iterable[str]
    ) -> PlanStep | None:
        """First step (in plan order) whose id is not in *completed_ids*."""
        if plan is None or not plan.steps:
            return None
        done = set(completed_ids)
        for step in plan.steps:
            if step.id not in done:
                return step
        return None

    def is_step_complete(self, step: PlanStep, evidence: StepEvidence | None) -> bool:
        if evidence is None:
            return False

        match step.type:
            case StepType.ANALYSIS.value:
                return evidence.result is not None
            case StepType.PATCH.value | StepType.CREATE.value:
                if not evidence.patch_applied:
                    return False
                if step.test_checkpoint:
                    return evidence.test_passed is True
                return True
            case StepType.TESTS.value:
                return evidence.test_file_written
            case StepType.EXEC.value:
                return evidence.exit_code == 0
            case StepType.DOCS.value:
                return evidence.docs_updated
            case StepType.REVIEW.value:
                return evidence.review_complete
            case _:
                return evidence.complete

    def should_abort(
        self, usage: BudgetUsage, last: StepEvidence | None = None
    ) -> AbortDecision:
        limits = self.limits
        if usage.steps >= limits.max_steps:
            return AbortDecision(
                abort=True, reason=f"Budget exceeded: max steps reached ({limits.max_steps})"
            )
        if usage.tokens >= limits.max_tokens:
            return AbortDecision(
                abort=True, reason=f"Budget exceeded: max tokens reached ({limits.max_tokens})"
            )
        if usage.elapsed_minutes >= limits.max_time_minutes:
            return AbortDecision(
                abort=True,
                reason=f"Budget exceeded: max time reached ({limits.max_time_minutes:g} min)",
            )
        if usage.files_modified >= limits.max_files_modified:
            return AbortDecision(
                abort=True,
                reason=f"Budget exceeded: too many files modified ({limits.max_files_modified})",
            )

        if last is None:
            return AbortDecision()

        if last.next_action == NextAction.ABORT:
            return AbortDecision(
                abort=True,
                reason=f"Step result requested abort: {last.reason or 'unknown'}",
            )

        retries = self.get_retry_count(last.step_id)
        if retries >= self.max_retries and last.next_action == NextAction.FIX:
            return AbortDecision(
                escalate=True,
                reason=f"Step {last.step_id} failed after {retries} retries, escalating",
            )

        return AbortDecision()

    def record_retry(self, step_id: str) -> int:
        count = self._retry_count.get(step_id, 0) + 1
        self._retry_count[step_id] = count
        logger.debug("Retry %d recorded for step %s", count, step_id)
        return count

    def get_retry_count(self, step_id: str) -> int:
        return self._retry_count.get(step_id, 0)

    def progress_summary(self, plan: Plan | None, completed_ids: Iterable[str]) -> str:
        if plan is None or not plan.steps:
            return "No plan loaded"
        total = len(plan.steps)
        done = len(set(completed_ids) & set(plan.step_ids()))
        return f"{done}/{total} steps ({round(done / total * 100)}%)"
