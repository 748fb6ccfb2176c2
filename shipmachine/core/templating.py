"""``{{name}}`` placeholder rendering for operation templates."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_value(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def render_template(template: str, inputs: Mapping[str, Any]) -> str:
    """Substitute every placeholder in *template*.

    Non-scalar values are JSON-serialized.  A placeholder with no value
    (missing or None) renders as ``[name: not provided]``.
    """
    if not template:
        return ""

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        value = inputs.get(key)
        if value is None:
            return f"[{key}: not provided]"
        return render_value(value)

    return PLACEHOLDER_RE.sub(_sub, template)


def placeholders(template: str) -> list[str]:
    """Placeholder names in order of first appearance."""
    seen: list[str] = []
    for name in PLACEHOLDER_RE.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen
