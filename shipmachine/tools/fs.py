"""Filesystem tool: read, write, list, search, stat."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from shipmachine.core.errors import ToolExecutionError
from shipmachine.models.governance import ToolCategory
from shipmachine.tools.base import GovernedTool

SKIP_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "dist", "coverage"})


class FilesystemTool(GovernedTool):
    category = ToolCategory.FILESYSTEM

    def read_file(self, path: str | Path, role: str | None = None) -> str:
        self._assert_tool_access(role)
        resolved = self._assert_path_allowed(path)
        try:
            return resolved.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(
                f"Failed to read {resolved}: {exc}", tool=self.category.value
            ) from exc

    def write_file(self, path: str | Path, content: str, role: str | None = None) -> Path:
        self._assert_tool_access(role)
        resolved = self._assert_path_allowed(path)
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(
                f"Failed to write {resolved}: {exc}", tool=self.category.value
            ) from exc
        return resolved

    def list_dir(
        self, path: str | Path, recursive: bool = False, role: str | None = None
    ) -> list[Path]:
        self._assert_tool_access(role)
        resolved = self._assert_path_allowed(path)
        if not resolved.is_dir():
            raise ToolExecutionError(f"Not a directory: {resolved}", tool=self.category.value)
        if not recursive:
            return sorted(resolved.iterdir())
        results: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(resolved):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            base = Path(dirpath)
            results.extend(base / d for d in dirnames)
            results.extend(base / f for f in sorted(filenames))
        return results

    def search(
        self, pattern: str, path: str | Path, role: str | None = None
    ) -> list[dict[str, Any]]:
        """Case-insensitive regex search; one hit per matching line."""
        self._assert_tool_access(role)
        resolved = self._assert_path_allowed(path)
        regex = re.compile(pattern, re.IGNORECASE)
        hits: list[dict[str, Any]] = []
        for dirpath, dirnames, filenames in os.walk(resolved):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for name in sorted(filenames):
                file_path = Path(dirpath) / name
                try:
                    text = file_path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    continue  # binary or unreadable
                for lineno, line in enumerate(text.splitlines(), start=1):
                    if regex.search(line):
                        hits.append({"file": str(file_path), "line": lineno, "match": line.strip()})
        return hits

    def exists(self, path: str | Path, role: str | None = None) -> bool:
        self._assert_tool_access(role)
        return self._assert_path_allowed(path).exists()

    def stat(self, path: str | Path, role: str | None = None) -> os.stat_result:
        self._assert_tool_access(role)
        resolved = self._assert_path_allowed(path)
        try:
            return resolved.stat()
        except OSError as exc:
            raise ToolExecutionError(
                f"Failed to stat {resolved}: {exc}", tool=self.category.value
            ) from exc
