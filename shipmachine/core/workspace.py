"""Workspace — repo-relative file access, edits and diffs.

All I/O goes through the governed filesystem and git tools, so every read
and write is checked against the role and path allowlists.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from shipmachine.core.errors import ShipMachineError, ToolExecutionError
from shipmachine.tools.fs import SKIP_DIRS, FilesystemTool
from shipmachine.tools.git import GitTool

logger = logging.getLogger(__name__)

TREE_SKIP = SKIP_DIRS | {".shipmachine", ".DS_Store"}


def _edit_range(edit: Any) -> tuple[int, int, str]:
    """``(line_start, line_end, new_content)`` of one model-supplied edit."""
    if not isinstance(edit, dict):
        raise ToolExecutionError(
            f"Edit must be an object, got {type(edit).__name__}", tool="filesystem"
        )
    try:
        line_start = int(edit.get("line_start", 1))
        line_end = int(edit.get("line_end", line_start))
    except (TypeError, ValueError) as exc:
        raise ToolExecutionError(f"Invalid edit line range: {exc}", tool="filesystem") from exc
    return line_start, line_end, str(edit.get("new_content") or "")


class Workspace:
    """One repository checkout, seen through the governed tools."""

    def __init__(
        self,
        repo_path: str | Path,
        fs: FilesystemTool,
        git: GitTool,
        role: str | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.fs = fs
        self.git = git
        self.role = role

    def resolve(self, relative: str | Path) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else self.repo_path / path

    def file_tree(self, max_depth: int = 4) -> str:
        """Indented tree of the repo, directories first."""
        lines: list[str] = []
        self._walk(self.repo_path, "", 0, max_depth, lines)
        return "\n".join(lines)

    def _walk(self, directory: Path, prefix: str, depth: int, max_depth: int, out: list[str]) -> None:
        if depth > max_depth:
            return
        try:
            entries = [e for e in os.scandir(directory) if e.name not in TREE_SKIP]
        except OSError:
            return
        entries.sort(key=lambda e: (not e.is_dir(), e.name))
        for idx, entry in enumerate(entries):
            last = idx == len(entries) - 1
            connector = "└── " if last else "├── "
            out.append(f"{prefix}{connector}{entry.name}{'/' if entry.is_dir() else ''}")
            if entry.is_dir() and depth < max_depth:
                child_prefix = prefix + ("    " if last else "│   ")
                self._walk(Path(entry.path), child_prefix, depth + 1, max_depth, out)

    def read_file(self, relative: str | Path) -> str:
        """File content, or ``""`` when the file does not exist."""
        path = self.resolve(relative)
        if not self.fs.exists(path, role=self.role):
            return ""
        return self.fs.read_file(path, role=self.role)

    def write_file(self, relative: str | Path, content: str) -> Path:
        return self.fs.write_file(self.resolve(relative), content, role=self.role)

    def apply_edits(self, relative: str | Path, edits: list[dict[str, Any]]) -> Path:
        """Apply 1-based inclusive line-range replacements to one file.

        Edits are applied bottom-up so earlier line numbers stay valid.
        A missing file is treated as empty.  Malformed edits raise
        ``ToolExecutionError`` before anything is written.
        """
        ranges = [_edit_range(edit) for edit in edits]
        lines = self.read_file(relative).split("\n")
        for line_start, line_end, new_content in sorted(ranges, key=lambda r: r[0], reverse=True):
            start = max(0, line_start - 1)
            end = min(len(lines), line_end)
            replacement = new_content.split("\n") if new_content else []
            lines[start:max(start, end)] = replacement
        return self.write_file(relative, "\n".join(lines))

    def collect_diff(self) -> str:
        try:
            return self.git.diff(self.repo_path, role=self.role)
        except ShipMachineError as exc:
            logger.warning("Could not collect diff: %s", exc)
            return ""

    def current_branch(self) -> str:
        try:
            return self.git.current_branch(self.repo_path, role=self.role)
        except ShipMachineError as exc:
            logger.warning("Could not read current branch: %s", exc)
            return "unknown"

    def manifest_text(self) -> str:
        """Content of the first package manifest found, else ``""``."""
        for name in ("pyproject.toml", "requirements.txt", "package.json", "Cargo.toml", "go.mod"):
            candidate = self.repo_path / name
            if candidate.exists():
                return self.read_file(candidate)
        return ""
