"""Audit event model — one immutable record per mediated call.

The audit ledger is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained per run (each event links to the previous via SHA-256)
- Correlated by ``run_id``, which is threaded through every call context
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class AuditEvent(BaseModel):
    """A single entry in the append-only audit ledger."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    operation_id: str
    step_index: int = 0
    tool_calls: list[str] = []
    passed: bool = True
    failure_reason: str | None = None
    duration_ms: int = 0
    tokens_used: int = 0
    model: str | None = None
    role: str | None = None
    retry_count: int = 0
    channel: str | None = None
    data_class: str | None = None
    objective_type: str = "feature"
    user_id: str | None = None
    is_mock: bool = False
    previous_event_hash: str = ""
    event_hash: str = ""  # computed on append, seals this event


class OperationStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_id: str
    calls: int = 0
    tokens: int = 0
    passed: int = 0
    failed: int = 0

    @property
    def failure_rate(self) -> int:
        """Failure percentage, rounded."""
        if self.calls == 0:
            return 0
        return round(self.failed / self.calls * 100)


class AuditStats(BaseModel):
    """Aggregate view over the ledger, used by the ``analytics`` command."""

    model_config = ConfigDict(frozen=True)

    total_calls: int = 0
    total_runs: int = 0
    total_tokens: int = 0
    passed: int = 0
    failed: int = 0
    avg_duration_ms: int = 0
    success_rate: int = 0
    by_operation: dict[str, OperationStats] = {}
    by_model: dict[str, int] = {}
    by_role: dict[str, int] = {}
    by_objective_type: dict[str, int] = {}
