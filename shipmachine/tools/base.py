"""Shared access checks for governed tools.

Every tool belongs to one ``ToolCategory``.  Before doing anything a tool
asks the governance engine whether the caller's role holds that category
and, for filesystem targets, whether the path is allowlisted.
"""

from __future__ import annotations

from pathlib import Path

from shipmachine.core.errors import PathNotAllowed, ToolAccessDenied
from shipmachine.core.governance import GovernanceEngine
from shipmachine.models.governance import ToolCategory


class GovernedTool:
    """Base class: role gate plus path allowlist."""

    category: ToolCategory

    def __init__(self, governance: GovernanceEngine) -> None:
        self.governance = governance

    def _role(self, role: str | None) -> str:
        return role or self.governance.default_role

    def _assert_tool_access(self, role: str | None) -> str:
        effective = self._role(role)
        if not self.governance.is_tool_allowed(effective, self.category):
            raise ToolAccessDenied(
                f"Role '{effective}' does not have access to the {self.category.value} tool",
                tool=self.category.value,
                remediation=(
                    f"add '{self.category.value}' to roles[{effective}].allowed_tools "
                    "in the governance config"
                ),
            )
        return effective

    def _assert_path_allowed(self, path: str | Path) -> Path:
        resolved = Path(path).resolve()
        if not self.governance.is_path_allowed(resolved):
            raise PathNotAllowed(
                f"Path not allowed by policy: {resolved}",
                tool=self.category.value,
                remediation="add the path (or a parent ending in /**) to allowlists.paths",
            )
        return resolved
