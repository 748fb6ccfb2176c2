"""Operation-permission matching and pluggable permission backends.

The execution bridge asks two backends whether a role may run an
operation: the governance engine (primary) and an optional second
``PermissionBackend``.  By default both are the same engine, so the
second check can only diverge when a deployment plugs in a separately
maintained index such as ``RoleIndex``.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from shipmachine.models.governance import Role, ToolCategory


def match_operation_pattern(pattern: str, operation_id: str) -> bool:
    """Match *operation_id* against an exact id or a ``prefix.*`` pattern.

    ``ship.*`` matches ``ship``, ``ship.plan`` and ``ship.plan.v2`` but
    never ``shipping.plan``: the wildcard does not cross a segment
    boundary.
    """
    if pattern == operation_id:
        return True
    if pattern.endswith(".*"):
        prefix = pattern[:-2]
        return operation_id == prefix or operation_id.startswith(prefix + ".")
    return False


@runtime_checkable
class PermissionBackend(Protocol):
    """Anything that can answer "may this role run this operation?"."""

    def is_operation_allowed(self, role: str, operation_id: str) -> bool:
        ...


class RoleIndex:
    """In-memory role → permitted-operation index.

    Parameters
    ----------
    roles:
        Initial roles.  More can be added with ``add_role()``.
    """

    def __init__(self, roles: Iterable[Role] = ()) -> None:
        self._roles: dict[str, Role] = {r.name: r for r in roles}

    def add_role(
        self,
        name: str,
        allowed_operations: list[str] | None = None,
        allowed_tools: list[ToolCategory] | None = None,
    ) -> "RoleIndex":
        self._roles[name] = Role(
            name=name,
            allowed_operations=allowed_operations or [],
            allowed_tools=allowed_tools or [],
        )
        return self

    def get_role(self, name: str) -> Role | None:
        return self._roles.get(name)

    def is_operation_allowed(self, role: str, operation_id: str) -> bool:
        entry = self._roles.get(role)
        if entry is None:
            return False
        return any(
            match_operation_pattern(p, operation_id) for p in entry.allowed_operations
        )
