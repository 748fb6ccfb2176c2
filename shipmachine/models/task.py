"""Plan, step, budget and run-outcome models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StepType(str, Enum):
    """Known plan step types.  Unknown tags are kept verbatim on PlanStep."""

    ANALYSIS = "analysis"
    PATCH = "patch"
    CREATE = "create"
    TESTS = "tests"
    EXEC = "exec"
    DOCS = "docs"
    REVIEW = "review"


class NextAction(str, Enum):
    CONTINUE = "continue"
    FIX = "fix"
    ABORT = "abort"


class RunStatus(str, Enum):
    SUCCESS = "success"
    DRY_RUN = "dry_run"
    ABORTED = "aborted"
    ERROR = "error"


class BudgetUsage(BaseModel):
    """Snapshot of per-run consumption.  Monotonic within a run."""

    model_config = ConfigDict(frozen=True)

    steps: int = 0
    tokens: int = 0
    elapsed_minutes: float = 0.0
    files_modified: int = 0


class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    type: str = StepType.ANALYSIS.value
    files_affected: list[str] = Field(default_factory=list)
    test_checkpoint: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> str:
        if isinstance(v, StepType):
            return v.value
        return str(v).strip().lower()

    @field_validator("files_affected", mode="before")
    @classmethod
    def _ensure_list(cls, v: Any) -> list:
        return [] if v is None else v


class Plan(BaseModel):
    """Output of the planning phase.  Step order is authoritative."""

    model_config = ConfigDict(frozen=True)

    steps: list[PlanStep] = Field(default_factory=list)
    estimated_complexity: str = "unknown"
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_output(cls, output: Any) -> "Plan":
        """Build a plan from a (possibly partial) model response."""
        if not isinstance(output, dict):
            return cls()
        return cls.model_validate({
            "steps": output.get("steps") or [],
            "estimated_complexity": output.get("estimated_complexity") or "unknown",
            "warnings": output.get("warnings") or [],
        })

    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]


class StepEvidence(BaseModel):
    """What one attempt at a step produced.

    Only the fields relevant to the step's type are consulted by the
    planner's completion rule.
    """

    model_config = ConfigDict(frozen=True)

    step_id: str
    result: Any = None
    patch_applied: bool = False
    test_passed: bool | None = None
    test_file_written: bool = False
    test_file_path: str | None = None
    exit_code: int | None = None
    docs_updated: bool = False
    review_complete: bool = False
    complete: bool = False
    next_action: NextAction | None = None
    reason: str | None = None
    files_modified: list[str] = Field(default_factory=list)
    tokens_used: int = 0


class StepRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    operation_id: str
    evidence: StepEvidence
    tokens_used: int = 0
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class StepError(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    error: str
    error_type: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class AbortDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    abort: bool = False
    escalate: bool = False
    reason: str | None = None


class RunResult(BaseModel):
    """Terminal outcome of one orchestrator run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    status: RunStatus
    bundle_path: str | None = None
    reason: str | None = None
    completed_steps: list[str] = Field(default_factory=list)
    escalations: list[str] = Field(default_factory=list)
