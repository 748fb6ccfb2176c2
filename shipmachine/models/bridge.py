"""Call context and result models for the execution bridge."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipmachine.models.governance import ApprovalDecision, DataClass
from shipmachine.models.task import BudgetUsage


class CallContext(BaseModel):
    """Everything the bridge needs to know about one mediated call.

    The run id lives here rather than on the bridge, so one bridge can
    serve several runs without cross-talk in the audit ledger.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    role: str | None = None
    model: str | None = None
    channel: str = "cli"
    user_id: str | None = None
    budget: BudgetUsage = Field(default_factory=BudgetUsage)
    approved: bool = False
    target_env: str | None = None
    flags: dict[str, bool] = Field(default_factory=dict)
    step_index: int = 0
    retry_count: int = 0
    tool_calls: list[str] = Field(default_factory=list)
    objective_type: str | None = None
    data_class_override: DataClass | None = None


class GovernanceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    data_class: DataClass
    model: str
    role: str
    channel: str
    redacted: bool = False


class BridgeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_id: str
    output: Any
    tokens_used: int = 0
    duration_ms: int = 0
    is_mock: bool = False
    warnings: list[str] = Field(default_factory=list)
    approval: ApprovalDecision = Field(default_factory=ApprovalDecision)
    governance: GovernanceMetadata
