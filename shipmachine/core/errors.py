"""Error taxonomy.

Every error raised across the governance boundary derives from
``ShipMachineError`` and carries a message a human can act on.  Allowlist
failures also carry ``remediation``: what to add, and where.
"""

from __future__ import annotations


class ShipMachineError(RuntimeError):
    """Base class for all ShipMachine errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class GovernanceConfigError(ShipMachineError):
    """Raised when the governance configuration cannot be loaded.

    Only ever raised at construction or reload; no partial state is kept.
    """


# ---------------------------------------------------------------------------
# Execution bridge
# ---------------------------------------------------------------------------


class PolicyDenied(ShipMachineError):
    """Role lacks permission for the operation or the model."""


class RbacDenied(ShipMachineError):
    """The secondary permission backend denied the operation."""


class BudgetExceeded(ShipMachineError):
    """A budget ceiling has been reached.

    ``dimension`` is one of ``steps``, ``tokens``, ``time``,
    ``files_modified``.
    """

    def __init__(self, message: str, dimension: str | None = None) -> None:
        super().__init__(message)
        self.dimension = dimension


class ApprovalRequired(ShipMachineError):
    """Operation requires approval and the call context was not approved."""


class DataClassDenied(ShipMachineError):
    """Inputs were classified into a data class the role may not access."""


class OperationNotFound(ShipMachineError):
    def __init__(self, operation_id: str, known_operations: list[str]) -> None:
        known = ", ".join(sorted(known_operations)) or "(none)"
        super().__init__(
            f"Operation '{operation_id}' not found in registry. Available: {known}"
        )
        self.operation_id = operation_id
        self.known_operations = list(known_operations)


class ModelCallFailed(ShipMachineError):
    """The model-invocation collaborator raised."""


class OutputValidationError(ShipMachineError):
    """Model output is missing required top-level fields."""

    def __init__(self, operation_id: str, missing_fields: list[str]) -> None:
        super().__init__(
            f"Missing required output fields for '{operation_id}': "
            + ", ".join(missing_fields)
        )
        self.operation_id = operation_id
        self.missing_fields = list(missing_fields)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolError(ShipMachineError):
    """Base for tool-scoped errors.  ``tool`` names the tool category."""

    def __init__(self, message: str, *, tool: str, remediation: str = "") -> None:
        full = f"{message}\nHint: {remediation}" if remediation else message
        super().__init__(full)
        self.tool = tool
        self.remediation = remediation


class ToolAccessDenied(ToolError):
    pass


class PathNotAllowed(ToolError):
    pass


class CommandNotAllowlisted(ToolError):
    pass


class DangerousCommandUnconfirmed(ToolError):
    pass


class ToolExecutionError(ToolError):
    """The underlying I/O or process call failed."""


def is_budget_error(exc: BaseException) -> bool:
    """True for budget errors, typed or reported only by message."""
    return isinstance(exc, BudgetExceeded) or "budget" in str(exc).lower()
