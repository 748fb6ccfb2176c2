"""GovernanceEngine — the single source of policy decisions.

Every check here is a pure function of the loaded ``GovernanceConfig`` and
its arguments.  The engine never performs I/O after construction except in
``reload()``, which validates a fresh config before swapping it in.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from shipmachine.core import classification
from shipmachine.core.errors import GovernanceConfigError
from shipmachine.core.loader import load_governance_config
from shipmachine.core.permissions import match_operation_pattern
from shipmachine.models.bridge import CallContext
from shipmachine.models.governance import (
    ApprovalDecision,
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
from shipmachine.models.task import BudgetUsage

logger = logging.getLogger(__name__)

BUDGET_WARNING_RATIO = 0.8

# Fixed destructive signatures.  Matched regardless of the command allowlist.
DANGEROUS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("recursive delete", re.compile(r"\brm\b(?=[^;&|\n]*\s(?:-[A-Za-z]*[rR][A-Za-z]*|--recursive)\b)")),
    ("privilege escalation", re.compile(r"(?:^|[;&|]\s*|\s)(?:sudo|doas)\b|^\s*su(?:\s|$)")),
    ("disk format", re.compile(r"(?i)\bmkfs(?:\.\w+)?\b|\bformat\s+[a-z]:")),
    ("raw device write", re.compile(r"\bdd\s+if=|>\s*/dev/(?:sd|hd|nvme|disk)")),
    ("pipe to shell", re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:ba|z|k|da)?sh\b")),
    ("process kill", re.compile(r"\bkill\s+-9\b|\bpkill\b|\bkillall\b")),
    ("shutdown", re.compile(r"\b(?:shutdown|reboot|halt|poweroff)\b")),
    ("world-writable chmod", re.compile(r"\bchmod\s+(?:-R\s+)?0?777\b")),
    ("recursive chown", re.compile(r"\bchown\s+-R\b")),
    (
        "destructive SQL",
        re.compile(r"(?i)\b(?:drop\s+(?:table|database|schema)|truncate\s+table|delete\s+from)\b"),
    ),
    ("eval", re.compile(r"\beval\s*\(")),
    ("fork bomb", re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:")),
]


def _normalize_path(path: str | Path) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def _is_under(path: str, base: str) -> bool:
    if path == base:
        return True
    return path.startswith(base.rstrip(os.sep) + os.sep)


def _context_value(context: CallContext | Mapping[str, Any] | None, key: str) -> Any:
    if context is None:
        return None
    if isinstance(context, Mapping):
        return context.get(key)
    return getattr(context, key, None)


class GovernanceEngine:
    """Policy decisions over a loaded governance config.

    Parameters
    ----------
    config:
        An already-validated config.  Mutually exclusive with *config_path*.
    config_path:
        Path to a governance YAML document.  Load failures raise
        ``GovernanceConfigError`` and leave nothing constructed.
    """

    def __init__(
        self,
        config: GovernanceConfig | None = None,
        *,
        config_path: Path | str | None = None,
    ) -> None:
        if config is None and config_path is None:
            raise GovernanceConfigError(
                "GovernanceEngine needs either a config or a config_path"
            )
        self._config_path = Path(config_path) if config_path is not None else None
        self._config = config if config is not None else load_governance_config(self._config_path)
        self._index(self._config)

    @classmethod
    def from_path(cls, path: Path | str) -> "GovernanceEngine":
        return cls(config_path=path)

    def _index(self, config: GovernanceConfig) -> None:
        self._roles: dict[str, Role] = {r.name: r for r in config.roles}
        self._data_rules: dict[str, DataClassRule] = {r.name: r for r in config.data_classes}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def config(self) -> GovernanceConfig:
        return self._config

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def reload(self) -> GovernanceConfig:
        """Re-read the YAML (or re-validate the in-memory config) and swap.

        On failure the previous config stays in force and the error
        propagates.
        """
        if self._config_path is not None:
            fresh = load_governance_config(self._config_path)
        else:
            fresh = GovernanceConfig.model_validate(self._config.model_dump())
        self._config = fresh
        self._index(fresh)
        logger.info(
            "Governance config reloaded: %d roles, %d approval rules",
            len(fresh.roles),
            len(fresh.approval_required),
        )
        return fresh

    # ------------------------------------------------------------------
    # Roles and operations
    # ------------------------------------------------------------------

    def roles(self) -> list[Role]:
        return list(self._roles.values())

    def get_role(self, name: str) -> Role | None:
        return self._roles.get(name)

    @property
    def default_role(self) -> str:
        return self._config.default_role

    @property
    def default_model(self) -> str:
        return self._config.default_model

    def is_operation_allowed(self, role: str, operation_id: str) -> bool:
        entry = self._roles.get(role)
        if entry is None:
            return False
        return any(
            match_operation_pattern(p, operation_id) for p in entry.allowed_operations
        )

    def is_tool_allowed(self, role: str, tool: ToolCategory | str) -> bool:
        entry = self._roles.get(role)
        if entry is None:
            return False
        try:
            category = ToolCategory(tool)
        except ValueError:
            return False
        return category in entry.allowed_tools

    # ------------------------------------------------------------------
    # Allowlists
    # ------------------------------------------------------------------

    def is_command_allowed(self, command: str) -> bool:
        cmd = command.strip()
        if not cmd:
            return False
        for allowed in self._config.allowlists.commands:
            allowed = allowed.strip()
            if not allowed:
                continue
            if cmd == allowed or cmd.startswith(allowed + " "):
                return True
        return False

    def is_path_allowed(self, path: str | Path) -> bool:
        normalized = _normalize_path(path)
        for pattern in self._config.allowlists.paths:
            if pattern.endswith("/**"):
                base = _normalize_path(pattern[:-3] or os.sep)
            else:
                base = _normalize_path(pattern)
            if _is_under(normalized, base):
                return True
        return False

    def dangerous_reason(self, command: str) -> str | None:
        """Name of the first destructive signature *command* matches."""
        for label, regex in DANGEROUS_PATTERNS:
            if regex.search(command):
                return label
        return None

    def is_dangerous(self, command: str) -> bool:
        return self.dangerous_reason(command) is not None

    def is_network_allowed(self) -> bool:
        return self._config.allowlists.network_allowed

    def dangerous_commands_require_human(self) -> bool:
        return self._config.allowlists.dangerous_commands_require_human

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def budget_limits(self) -> BudgetLimits:
        return self._config.budgets

    def check_budget(self, usage: BudgetUsage) -> BudgetCheck:
        """Fail closed when any counter has reached its ceiling.

        Dimensions are checked in a fixed order (steps, tokens, time, files
        modified); the first one exhausted is reported.  While every counter
        is below its ceiling, any counter at 80 % or more adds a warning.
        """
        limits = self._config.budgets
        dimensions = [
            ("steps", "steps", usage.steps, limits.max_steps),
            ("tokens", "tokens", usage.tokens, limits.max_tokens),
            ("time", "time", usage.elapsed_minutes, limits.max_time_minutes),
            ("files_modified", "files modified", usage.files_modified, limits.max_files_modified),
        ]

        for key, label, used, ceiling in dimensions:
            if used >= ceiling:
                if key == "time":
                    detail = f"{used:.1f}/{ceiling:g} minutes"
                else:
                    detail = f"{used}/{ceiling}"
                return BudgetCheck(
                    ok=False,
                    exceeded=key,
                    reason=f"Budget exceeded: {label} ({detail})",
                )

        warnings = [
            f"Budget warning: {label} at {used / ceiling:.0%} of limit"
            for _key, label, used, ceiling in dimensions
            if used >= ceiling * BUDGET_WARNING_RATIO
        ]
        return BudgetCheck(ok=True, warnings=warnings)

    # ------------------------------------------------------------------
    # Data classes
    # ------------------------------------------------------------------

    def infer_data_class(
        self, text: str | None, override: DataClass | str | None = None
    ) -> DataClass:
        return classification.infer_data_class(
            text, DataClass(override) if override is not None else None
        )

    def check_data_class(self, role: str, data_class: DataClass | str) -> DataClassDecision:
        name = data_class.value if isinstance(data_class, DataClass) else str(data_class)
        rule = self._data_rules.get(name)
        if rule is None:
            return DataClassDecision(allowed=True)

        if rule.blocked:
            return DataClassDecision(
                allowed=False,
                requires_redaction=rule.requires_redaction,
                reason=f"Data class '{name}' is blocked for all roles",
            )

        if role not in rule.allowed_roles:
            return DataClassDecision(
                allowed=False,
                requires_redaction=rule.requires_redaction,
                reason=f"Role '{role}' may not access data class '{name}'",
            )

        return DataClassDecision(allowed=True, requires_redaction=rule.requires_redaction)

    def _extra_patterns(self, data_class: DataClass) -> list[str]:
        rule = self._data_rules.get(data_class.value)
        return list(rule.redact_patterns) if rule else []

    def requires_redaction(self, data_class: DataClass | str) -> bool:
        rule = self._data_rules.get(DataClass(data_class).value)
        return bool(rule and rule.requires_redaction)

    def redact(self, text: str, data_class: DataClass | str) -> str:
        dc = DataClass(data_class)
        if dc == DataClass.SECRETS:
            return classification.SECRETS_MARKER
        if not self.requires_redaction(dc):
            return text
        return classification.redact_text(text, dc, self._extra_patterns(dc))

    def redact_value(self, value: Any, data_class: DataClass | str) -> Any:
        """Recursively redact every string inside *value*."""
        dc = DataClass(data_class)
        return classification.redact_value(value, dc, self._extra_patterns(dc))

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def is_model_allowed(self, role: str, model: str) -> bool:
        """Exact id, or the model id extends an allowlisted prefix."""
        allowed = self._config.model_allowlist.get(role)
        if not allowed:
            return False
        return any(model == entry or model.startswith(entry) for entry in allowed)

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def requires_approval(
        self,
        operation_id: str,
        context: CallContext | Mapping[str, Any] | None = None,
    ) -> ApprovalDecision:
        for rule in self._config.approval_required:
            if not match_operation_pattern(rule.operation_id, operation_id):
                continue

            condition = rule.condition
            match condition.kind:
                case ConditionKind.ALWAYS:
                    applies = True
                case ConditionKind.TARGET_ENV_EQUALS:
                    applies = _context_value(context, "target_env") == condition.value
                case ConditionKind.TARGET_ENV_IN:
                    values = condition.value if isinstance(condition.value, list) else [condition.value]
                    applies = _context_value(context, "target_env") in values
                case ConditionKind.CONTEXT_FLAG_TRUE:
                    flags = _context_value(context, "flags") or {}
                    applies = bool(flags.get(condition.value))
                case _:
                    applies = False

            if not applies:
                continue

            reason = rule.reason or f"Operation '{operation_id}' requires approval"
            if _context_value(context, "approved"):
                return ApprovalDecision(status=ApprovalStatus.REQUIRED_APPROVED, reason=reason)
            return ApprovalDecision(status=ApprovalStatus.REQUIRED_UNAPPROVED, reason=reason)

        return ApprovalDecision(status=ApprovalStatus.NOT_REQUIRED)
