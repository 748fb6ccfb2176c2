"""ExecutionBridge — the single mediator for every model call.

Every call runs the same fixed pipeline:

    1. resolve role and model
    2. policy check (operation + model allowlist)
    3. secondary permission backend
    4. budget check
    5. approval rules
    6. data classification of the inputs
    7. resolve the operation spec
    8. redact inputs when the data class requires it
    9. render the template
   10. call the model
   11. validate the output
   12. append an audit event
   13. return a BridgeResult

Steps 2–7 fail closed before the model is ever contacted.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any, Literal

from shipmachine.adapters.model_client import ModelClient
from shipmachine.core.audit_ledger import AuditLedger
from shipmachine.core.errors import (
    ApprovalRequired,
    BudgetExceeded,
    DataClassDenied,
    ModelCallFailed,
    OutputValidationError,
    PolicyDenied,
    RbacDenied,
)
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.operation_registry import OperationRegistry
from shipmachine.core.permissions import PermissionBackend
from shipmachine.core.templating import render_template
from shipmachine.models.audit import AuditEvent
from shipmachine.models.bridge import BridgeResult, CallContext, GovernanceMetadata
from shipmachine.models.governance import ApprovalStatus, DataClass
from shipmachine.models.operations import OperationSpec

logger = logging.getLogger(__name__)

ApprovalPolicy = Literal["warn", "block"]

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "array": (list,),
    "object": (dict,),
    "boolean": (bool,),
    "number": (int, float),
    "integer": (int,),
}


def infer_objective_type(operation_id: str) -> str:
    if "fix" in operation_id or "bug" in operation_id:
        return "bugfix"
    if "refactor" in operation_id:
        return "refactor"
    if "migration" in operation_id:
        return "migration"
    return "feature"


def validate_output(spec: OperationSpec, content: Any) -> list[str]:
    """Check *content* against the operation's output schema.

    Returns soft warnings.  Raises ``OutputValidationError`` when required
    top-level fields are missing.
    """
    schema = spec.output_schema
    if schema is None:
        return []
    if not isinstance(content, dict):
        return [
            f"Expected JSON object output for '{spec.operation_id}', "
            f"got {type(content).__name__}"
        ]

    missing = [field for field in schema.required if field not in content]
    if missing:
        raise OutputValidationError(spec.operation_id, missing)

    warnings: list[str] = []
    for key, prop in schema.properties.items():
        if key not in content or prop.type is None:
            continue
        expected = _JSON_TYPES.get(prop.type)
        if expected is None:
            continue
        value = content[key]
        # bool is an int subclass; never let it satisfy a numeric type
        if isinstance(value, bool) and prop.type in ("number", "integer"):
            ok = False
        else:
            ok = isinstance(value, expected)
        if not ok:
            warnings.append(
                f"Output field '{key}' of '{spec.operation_id}' should be "
                f"{prop.type}, got {type(value).__name__}"
            )
    return warnings


class ExecutionBridge:
    """Mediates every model call through governance and the audit ledger.

    Parameters
    ----------
    governance:
        Primary policy source.
    registry:
        Operation specs by id.
    ledger:
        Append-only audit ledger; one event per call that reaches the model.
    model_client:
        Anything satisfying ``ModelClient``.
    permissions:
        Second permission backend consulted after the policy check.
        Defaults to *governance* itself.
    default_model:
        Used when the call context names no model.  Falls back to the
        governance default.
    approval_policy:
        ``"block"`` raises ``ApprovalRequired`` for unapproved calls that
        need approval; ``"warn"`` logs and surfaces a warning.
    """

    def __init__(
        self,
        governance: GovernanceEngine,
        registry: OperationRegistry,
        ledger: AuditLedger,
        model_client: ModelClient,
        *,
        permissions: PermissionBackend | None = None,
        default_model: str | None = None,
        approval_policy: ApprovalPolicy = "warn",
    ) -> None:
        if approval_policy not in ("warn", "block"):
            raise ValueError(f"approval_policy must be 'warn' or 'block', got {approval_policy!r}")
        self.governance = governance
        self.registry = registry
        self.ledger = ledger
        self.model_client = model_client
        self.permissions: PermissionBackend = permissions or governance
        self.default_model = default_model
        self.approval_policy: ApprovalPolicy = approval_policy

    def resolve_model(self, context: CallContext) -> str:
        return context.model or self.default_model or self.governance.default_model

    def resolve_role(self, context: CallContext) -> str:
        return context.role or self.governance.default_role

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def execute(
        self,
        operation_id: str,
        inputs: Mapping[str, Any],
        context: CallContext,
    ) -> BridgeResult:
        started = time.monotonic()
        role = self.resolve_role(context)
        model = self.resolve_model(context)
        warnings: list[str] = []

        # Policy
        if not self.governance.is_operation_allowed(role, operation_id):
            raise PolicyDenied(f"Policy denies operation '{operation_id}' for role '{role}'")
        if not self.governance.is_model_allowed(role, model):
            raise PolicyDenied(f"Model '{model}' is not allowed for role '{role}'")

        if not self.permissions.is_operation_allowed(role, operation_id):
            raise RbacDenied(f"Permission backend denies operation '{operation_id}' for role '{role}'")

        # Budget
        budget = self.governance.check_budget(context.budget)
        if not budget.ok:
            raise BudgetExceeded(budget.reason or "Budget exceeded", dimension=budget.exceeded)
        for warning in budget.warnings:
            logger.warning("%s (operation=%s run=%s)", warning, operation_id, context.run_id)
        warnings.extend(budget.warnings)

        # Approval
        approval = self.governance.requires_approval(operation_id, context)
        if approval.status == ApprovalStatus.REQUIRED_UNAPPROVED:
            message = f"Approval required for '{operation_id}': {approval.reason}"
            if self.approval_policy == "block":
                raise ApprovalRequired(message)
            logger.warning("%s (approval_policy=warn, proceeding)", message)
            warnings.append(message)

        # Data class
        serialized = json.dumps(dict(inputs), default=str, sort_keys=True)
        data_class = self.governance.infer_data_class(serialized, context.data_class_override)
        decision = self.governance.check_data_class(role, data_class)
        if not decision.allowed:
            raise DataClassDenied(
                decision.reason
                or f"Data class '{data_class.value}' not allowed for role '{role}'"
            )

        spec = self.registry.get(operation_id)

        effective_inputs: Any = dict(inputs)
        if decision.requires_redaction:
            effective_inputs = self.governance.redact_value(effective_inputs, data_class)
            logger.info("Redacted %s inputs for %s", data_class.value, operation_id)

        prompt = render_template(spec.template, effective_inputs)

        # Model call
        try:
            response = self.model_client.call(prompt, model, spec.schema_hint())
        except Exception as exc:
            self._log_event(
                context, operation_id, role, model, data_class,
                passed=False,
                failure_reason=str(exc),
                duration_ms=self._elapsed_ms(started),
                tokens_used=0,
                is_mock=False,
            )
            raise ModelCallFailed(f"Model call failed for '{operation_id}': {exc}") from exc

        duration_ms = self._elapsed_ms(started)

        try:
            warnings.extend(validate_output(spec, response.content))
        except OutputValidationError as exc:
            self._log_event(
                context, operation_id, role, model, data_class,
                passed=False,
                failure_reason=str(exc),
                duration_ms=duration_ms,
                tokens_used=response.tokens_used,
                is_mock=response.is_mock,
            )
            raise

        self._log_event(
            context, operation_id, role, model, data_class,
            passed=True,
            failure_reason=None,
            duration_ms=duration_ms,
            tokens_used=response.tokens_used,
            is_mock=response.is_mock,
        )

        return BridgeResult(
            operation_id=operation_id,
            output=response.content,
            tokens_used=response.tokens_used,
            duration_ms=duration_ms,
            is_mock=response.is_mock,
            warnings=warnings,
            approval=approval,
            governance=GovernanceMetadata(
                data_class=data_class,
                model=model,
                role=role,
                channel=context.channel,
                redacted=decision.requires_redaction,
            ),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _log_event(
        self,
        context: CallContext,
        operation_id: str,
        role: str,
        model: str,
        data_class: DataClass,
        *,
        passed: bool,
        failure_reason: str | None,
        duration_ms: int,
        tokens_used: int,
        is_mock: bool,
    ) -> AuditEvent:
        event = AuditEvent(
            run_id=context.run_id,
            operation_id=operation_id,
            step_index=context.step_index,
            tool_calls=list(context.tool_calls),
            passed=passed,
            failure_reason=failure_reason,
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            model=model,
            role=role,
            retry_count=context.retry_count,
            channel=context.channel,
            data_class=data_class.value,
            objective_type=context.objective_type or infer_objective_type(operation_id),
            user_id=context.user_id,
            is_mock=is_mock,
        )
        return self.ledger.append(event)
