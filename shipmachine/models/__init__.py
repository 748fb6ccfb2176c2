"""ShipMachine data models — all Pydantic v2, frozen where immutable."""

from shipmachine.models.audit import AuditEvent, AuditStats, OperationStats
from shipmachine.models.bridge import BridgeResult, CallContext, GovernanceMetadata
from shipmachine.models.governance import (
    Allowlists,
    ApprovalCondition,
    ApprovalDecision,
    ApprovalRule,
    ApprovalStatus,
    BudgetCheck,
    BudgetLimits,
    ConditionKind,
    DataClass,
    DataClassDecision,
    DataClassRule,
    GovernanceConfig,
    Role,
    ToolCategory,
)
from shipmachine.models.evaluation import EvalCheck, EvalReport, EvalResult
from shipmachine.models.learning import (
    FailureReason,
    ImprovementProposal,
    OperationMetrics,
    PatternSuggestion,
    RunSummary,
)
from shipmachine.models.operations import OperationPack, OperationSpec, OutputSchema
from shipmachine.models.task import (
    AbortDecision,
    BudgetUsage,
    NextAction,
    Plan,
    PlanStep,
    RunResult,
    RunStatus,
    StepError,
    StepEvidence,
    StepRecord,
    StepType,
)

__all__ = [
    # audit
    "AuditEvent",
    "AuditStats",
    "OperationStats",
    # bridge
    "BridgeResult",
    "CallContext",
    "GovernanceMetadata",
    # evaluation
    "EvalCheck",
    "EvalReport",
    "EvalResult",
    # governance
    "Allowlists",
    "ApprovalCondition",
    "ApprovalDecision",
    "ApprovalRule",
    "ApprovalStatus",
    "BudgetCheck",
    "BudgetLimits",
    "ConditionKind",
    "DataClass",
    "DataClassDecision",
    "DataClassRule",
    "GovernanceConfig",
    "Role",
    "ToolCategory",
    # learning
    "FailureReason",
    "ImprovementProposal",
    "OperationMetrics",
    "PatternSuggestion",
    "RunSummary",
    # operations
    "OperationPack",
    "OperationSpec",
    "OutputSchema",
    # task
    "AbortDecision",
    "BudgetUsage",
    "NextAction",
    "Plan",
    "PlanStep",
    "RunResult",
    "RunStatus",
    "StepError",
    "StepEvidence",
    "StepRecord",
    "StepType",
]
