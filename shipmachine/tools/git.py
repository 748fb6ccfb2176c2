"""Version-control tool: a thin, role-gated wrapper over the git CLI."""

from __future__ import annotations

import re
import subprocess
import time
from pathlib import Path

from shipmachine.core.errors import ToolExecutionError
from shipmachine.core.governance import GovernanceEngine
from shipmachine.models.governance import ToolCategory
from shipmachine.tools.base import GovernedTool
from shipmachine.tools.exec import Runner

BRANCH_PREFIX = "shipmachine/"


def branch_name_for(task_id: str) -> str:
    """``shipmachine/<slug>-<millis>`` for a task id."""
    slug = re.sub(r"[^a-z0-9-]", "-", task_id.lower())[:40]
    return f"{BRANCH_PREFIX}{slug}-{int(time.time() * 1000)}"


class GitTool(GovernedTool):
    category = ToolCategory.VERSION_CONTROL

    def __init__(
        self,
        governance: GovernanceEngine,
        runner: Runner = subprocess.run,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(governance)
        self._runner = runner
        self.timeout_seconds = timeout_seconds

    def _git(
        self, repo_path: str | Path, *args: str, check: bool = True
    ) -> subprocess.CompletedProcess[str]:
        workdir = self._assert_path_allowed(repo_path)
        try:
            proc = self._runner(
                ["git", *args],
                cwd=str(workdir),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolExecutionError(
                f"git {' '.join(args)} failed: {exc}", tool=self.category.value
            ) from exc
        if check and proc.returncode != 0:
            raise ToolExecutionError(
                f"git {' '.join(args)} exited {proc.returncode}: {(proc.stderr or '').strip()}",
                tool=self.category.value,
            )
        return proc

    def status(self, repo_path: str | Path, role: str | None = None) -> list[str]:
        """Porcelain status lines."""
        self._assert_tool_access(role)
        proc = self._git(repo_path, "status", "--porcelain")
        return [line for line in (proc.stdout or "").splitlines() if line.strip()]

    def diff(self, repo_path: str | Path, role: str | None = None) -> str:
        """Staged plus unstaged diff.  Empty outside a git work tree."""
        self._assert_tool_access(role)
        staged = self._git(repo_path, "diff", "--cached", check=False)
        unstaged = self._git(repo_path, "diff", check=False)
        parts = [
            p.stdout for p in (staged, unstaged) if p.returncode == 0 and p.stdout
        ]
        return "\n".join(parts)

    def current_branch(self, repo_path: str | Path, role: str | None = None) -> str:
        self._assert_tool_access(role)
        proc = self._git(repo_path, "rev-parse", "--abbrev-ref", "HEAD", check=False)
        if proc.returncode != 0:
            return "unknown"
        return (proc.stdout or "").strip() or "unknown"

    def create_branch(
        self, repo_path: str | Path, task_id: str, role: str | None = None
    ) -> str:
        """Create and check out a task branch; reuse it if it exists."""
        self._assert_tool_access(role)
        name = branch_name_for(task_id)
        created = self._git(repo_path, "checkout", "-b", name, check=False)
        if created.returncode != 0:
            self._git(repo_path, "checkout", name)
        return name

    def commit(
        self,
        repo_path: str | Path,
        message: str,
        paths: list[str] | None = None,
        role: str | None = None,
    ) -> str:
        """Stage *paths* (or everything) and commit.  Returns the new sha."""
        self._assert_tool_access(role)
        self._git(repo_path, "add", *(paths or ["-A"]))
        self._git(repo_path, "commit", "-m", message)
        proc = self._git(repo_path, "rev-parse", "HEAD")
        return (proc.stdout or "").strip()
