"""TaskContext — task-scoped memory for a single run.

Not persisted between runs; lives only for one ``Orchestrator.run()``.
Counters only ever grow, so successive ``budget_usage()`` snapshots are
monotonic.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from shipmachine.models.task import (
    BudgetUsage,
    Plan,
    StepError,
    StepEvidence,
    StepRecord,
)


class TaskContext:
    """Run-scoped state: counters, step records, phase outputs.

    Parameters
    ----------
    objective:
        Free-form task objective.
    run_id:
        Correlation id threaded into every call context.  Generated when
        omitted.
    clock:
        Monotonic seconds source; injectable for tests.
    """

    def __init__(
        self,
        objective: str,
        run_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.objective = objective or ""
        self.run_id = run_id or str(uuid.uuid4())
        self.started_at = datetime.now(timezone.utc)
        self._clock = clock
        self._started = clock()

        self.step_records: list[StepRecord] = []
        self.errors: list[StepError] = []
        self.escalations: list[str] = []
        self.current_step: str | None = None
        self._files_modified: dict[str, None] = {}
        self.total_tokens = 0
        self.total_steps = 0

        # Phase outputs
        self.scope_output: dict[str, Any] | None = None
        self.repo_survey: dict[str, Any] | None = None
        self.plan: Plan | None = None
        self.test_evidence: dict[str, Any] | None = None
        self.doc_update: dict[str, Any] | None = None
        self.security_check: dict[str, Any] | None = None
        self.risk_assessment: dict[str, Any] | None = None
        self.rollback_plan: dict[str, Any] | None = None
        self.pr_writeup: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_tokens(self, tokens: int) -> None:
        if tokens > 0:
            self.total_tokens += tokens

    def record_step(
        self, step_id: str, operation_id: str, evidence: StepEvidence
    ) -> StepRecord:
        """Record one step attempt.  Counts against the step budget."""
        record = StepRecord(
            step_id=step_id,
            operation_id=operation_id,
            evidence=evidence,
            tokens_used=evidence.tokens_used,
        )
        self.step_records.append(record)
        self.total_steps += 1
        self.current_step = step_id
        for path in evidence.files_modified:
            self.track_file_modified(path)
        return record

    def record_error(self, step_id: str, error: BaseException | str) -> StepError:
        entry = StepError(
            step_id=step_id,
            error=str(error),
            error_type=type(error).__name__ if isinstance(error, BaseException) else "",
        )
        self.errors.append(entry)
        return entry

    def record_escalation(self, step_id: str, reason: str) -> None:
        self.escalations.append(f"{step_id}: {reason}")

    def track_file_modified(self, path: str) -> None:
        self._files_modified.setdefault(path, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def files_modified(self) -> list[str]:
        """Modified paths, insertion ordered, deduplicated."""
        return list(self._files_modified)

    def elapsed_minutes(self) -> float:
        return max(0.0, (self._clock() - self._started) / 60.0)

    def budget_usage(self) -> BudgetUsage:
        return BudgetUsage(
            steps=self.total_steps,
            tokens=self.total_tokens,
            elapsed_minutes=self.elapsed_minutes(),
            files_modified=len(self._files_modified),
        )

    def get_step_result(self, step_id: str) -> StepRecord | None:
        for record in self.step_records:
            if record.step_id == step_id:
                return record
        return None

    def last_result(self) -> StepRecord | None:
        return self.step_records[-1] if self.step_records else None

    def changes_summary(self) -> str:
        files = self.files_modified
        return f"Modified {len(files)} files: {', '.join(files)}"

    def summarize(self) -> str:
        """Compact, prompt-ready summary."""
        files = self.files_modified
        shown = ", ".join(files[:5]) + ("..." if len(files) > 5 else "")
        parts = [
            f"Objective: {self.objective}",
            f"Started: {self.started_at.isoformat()}",
            f"Steps completed: {self.total_steps}",
            f"Tokens used: {self.total_tokens}",
            f"Files modified: {len(files)} ({shown})",
        ]
        if self.current_step:
            parts.append(f"Current step: {self.current_step}")
        if self.errors:
            parts.append(f"Errors: {len(self.errors)} error(s) encountered")
        if self.scope_output:
            parts.append(f"Done definition: {self.scope_output.get('done_definition', 'N/A')}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable snapshot for logging."""
        return {
            "run_id": self.run_id,
            "objective": self.objective,
            "started_at": self.started_at.isoformat(),
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "total_tokens": self.total_tokens,
            "files_modified": self.files_modified,
            "errors": [e.model_dump(mode="json") for e in self.errors],
            "escalations": list(self.escalations),
            "scope_output": self.scope_output,
            "repo_survey": self.repo_survey,
            "plan": self.plan.model_dump(mode="json") if self.plan else None,
            "step_results": [r.model_dump(mode="json") for r in self.step_records],
            "test_evidence": self.test_evidence,
            "doc_update": self.doc_update,
            "security_check": self.security_check,
            "risk_assessment": self.risk_assessment,
            "rollback_plan": self.rollback_plan,
            "pr_writeup": self.pr_writeup,
        }
