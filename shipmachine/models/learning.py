"""Learning-loop views derived from the audit ledger.

None of these are stored; each is recomputed from ledger history on demand.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FailureReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str
    count: int


class ImprovementProposal(BaseModel):
    """Suggested change for an operation that fails too often."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    failure_rate: int
    total_calls: int
    common_failures: list[FailureReason] = Field(default_factory=list)
    proposal: str
    priority: Literal["high", "medium"]


class PatternSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    occurrences: int
    suggestion: str


class OperationMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_id: str
    total_calls: int
    success: int
    failed: int
    success_rate: int
    avg_duration_ms: int
    avg_tokens: int
    models_used: dict[str, int] = Field(default_factory=dict)
    roles_used: dict[str, int] = Field(default_factory=dict)


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    timestamp_utc: datetime
    objective_type: str
    total_steps: int
    passed: bool
    total_tokens: int
    total_duration_ms: int
