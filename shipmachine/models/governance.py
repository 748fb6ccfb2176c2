"""Governance configuration and decision models.

The governance config is loaded once from YAML and is immutable thereafter;
``GovernanceEngine.reload()`` swaps in a freshly validated instance.
Decision models are the side-effect-free return values of the engine's
check functions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class ToolCategory(str, Enum):
    """Tool families a role may be granted."""

    FILESYSTEM = "filesystem"
    VERSION_CONTROL = "version_control"
    PROCESS_EXEC = "process_exec"
    TEST_RUNNER = "test_runner"
    ARTIFACT_PUBLISH = "artifact_publish"


class DataClass(str, Enum):
    """Sensitivity tiers, lowest to highest."""

    PUBLIC = "public"
    INTERNAL = "internal"
    PII = "pii"
    SECRETS = "secrets"


class ApprovalStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    REQUIRED_APPROVED = "required_approved"
    REQUIRED_UNAPPROVED = "required_unapproved"


class ConditionKind(str, Enum):
    """Closed set of approval predicates.  Never evaluated as code."""

    ALWAYS = "always"
    TARGET_ENV_EQUALS = "target_env_equals"
    TARGET_ENV_IN = "target_env_in"
    CONTEXT_FLAG_TRUE = "context_flag_true"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class Role(BaseModel):
    """An agent role: which operations and tool categories it may use."""

    model_config = ConfigDict(frozen=True)

    name: str
    allowed_operations: list[str] = Field(default_factory=list)
    allowed_tools: list[ToolCategory] = Field(default_factory=list)
    description: str = ""

    @field_validator("allowed_operations", "allowed_tools", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


class BudgetLimits(BaseModel):
    """Per-run ceilings.  A counter at or above its ceiling fails closed."""

    model_config = ConfigDict(frozen=True)

    max_steps: int = Field(default=50, gt=0)
    max_tokens: int = Field(default=500_000, gt=0)
    max_time_minutes: float = Field(default=30.0, gt=0)
    max_files_modified: int = Field(default=20, gt=0)


class Allowlists(BaseModel):
    model_config = ConfigDict(frozen=True)

    commands: list[str] = Field(default_factory=list)
    paths: list[str] = Field(default_factory=list)
    network_allowed: bool = False
    dangerous_commands_require_human: bool = True

    @field_validator("commands", "paths", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


class DataClassRule(BaseModel):
    """Access and redaction rule for one data class."""

    model_config = ConfigDict(frozen=True)

    name: str
    blocked: bool = False
    allowed_roles: list[str] = Field(default_factory=list)
    requires_redaction: bool = False
    redact_patterns: list[str] = Field(default_factory=list)

    @field_validator("allowed_roles", "redact_patterns", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


class ApprovalCondition(BaseModel):
    """Structured predicate over the call context.

    ``value`` is the environment name for ``target_env_equals``, a list of
    names for ``target_env_in`` and a flag name for ``context_flag_true``.
    """

    model_config = ConfigDict(frozen=True)

    kind: ConditionKind = ConditionKind.ALWAYS
    value: str | list[str] | None = None


class ApprovalRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_id: str
    reason: str = ""
    condition: ApprovalCondition = Field(default_factory=ApprovalCondition)

    @field_validator("condition", mode="before")
    @classmethod
    def _coerce_condition(cls, v: Any) -> Any:
        # Shorthand: ``condition: always``
        if v is None or v == "always":
            return {"kind": ConditionKind.ALWAYS}
        return v


class GovernanceConfig(BaseModel):
    """Root of the governance YAML document."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    default_role: str = "engineer"
    default_model: str = "claude-sonnet-4-6"
    roles: list[Role] = Field(default_factory=list)
    budgets: BudgetLimits = Field(default_factory=BudgetLimits)
    allowlists: Allowlists = Field(default_factory=Allowlists)
    data_classes: list[DataClassRule] = Field(default_factory=list)
    model_allowlist: dict[str, list[str]] = Field(default_factory=dict)
    approval_required: list[ApprovalRule] = Field(default_factory=list)

    @field_validator("roles", "data_classes", "approval_required", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("model_allowlist", mode="before")
    @classmethod
    def _validate_model_allowlist(cls, v: Any) -> dict:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {k: _ensure_list(val) for k, val in v.items()}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "GovernanceConfig":
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class BudgetCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str | None = None
    exceeded: str | None = None  # "steps" | "tokens" | "time" | "files_modified"
    warnings: list[str] = Field(default_factory=list)


class DataClassDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    requires_redaction: bool = False
    reason: str | None = None


class ApprovalDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ApprovalStatus = ApprovalStatus.NOT_REQUIRED
    reason: str | None = None

    @property
    def required(self) -> bool:
        return self.status != ApprovalStatus.NOT_REQUIRED
