"""Process execution tool.

Commands run without a shell.  Two independent gates apply:

* the command allowlist, always;
* the dangerous-signature check, which demands an explicit human
  confirmation when the governance config says so.

A confirmation never substitutes for the allowlist.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from shipmachine.core.errors import (
    CommandNotAllowlisted,
    DangerousCommandUnconfirmed,
    ToolExecutionError,
)
from shipmachine.core.governance import GovernanceEngine
from shipmachine.models.governance import ToolCategory
from shipmachine.tools.base import GovernedTool

logger = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class ExecResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    timed_out: bool = False
    error: str | None = None

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class DryRunReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    dangerous: bool
    requires_confirmation: bool
    reason: str | None = None


class ExecTool(GovernedTool):
    """Allowlisted command runner.

    Parameters
    ----------
    governance:
        Policy source.
    runner:
        ``subprocess.run``-compatible callable; injectable for tests.
    timeout_seconds:
        Per-command wall-clock limit.
    """

    category = ToolCategory.PROCESS_EXEC

    def __init__(
        self,
        governance: GovernanceEngine,
        runner: Runner = subprocess.run,
        timeout_seconds: float = 60.0,
    ) -> None:
        super().__init__(governance)
        self._runner = runner
        self.timeout_seconds = timeout_seconds
        self._confirmed: set[str] = set()

    def confirm_dangerous(self, command: str) -> None:
        """Record a human confirmation for *command* for this session."""
        self._confirmed.add(command.strip())
        logger.info("Dangerous command confirmed by human: %s", command)

    def is_confirmed(self, command: str) -> bool:
        return command.strip() in self._confirmed

    def check(self, command: str, confirmed: bool = False) -> None:
        """Raise unless *command* passes both gates."""
        reason = self.governance.dangerous_reason(command)
        if (
            reason is not None
            and self.governance.dangerous_commands_require_human()
            and not (confirmed or self.is_confirmed(command))
        ):
            raise DangerousCommandUnconfirmed(
                f"Command '{command}' matches a dangerous signature ({reason}) "
                "and requires human confirmation",
                tool=self.category.value,
                remediation="confirm it explicitly with confirm_dangerous() before running",
            )
        if not self.governance.is_command_allowed(command):
            raise CommandNotAllowlisted(
                f"Command not in allowlist: '{command}'",
                tool=self.category.value,
                remediation="add it (or its leading words) to allowlists.commands in the governance config",
            )

    def dry_run(self, command: str) -> DryRunReport:
        allowed = self.governance.is_command_allowed(command)
        dangerous = self.governance.is_dangerous(command)
        requires = dangerous and self.governance.dangerous_commands_require_human()
        if not allowed:
            reason = "Command not in allowlist"
        elif dangerous:
            reason = "Command is flagged as dangerous"
        else:
            reason = None
        return DryRunReport(
            allowed=allowed, dangerous=dangerous, requires_confirmation=requires, reason=reason
        )

    def run(
        self,
        command: str,
        cwd: str | Path | None = None,
        role: str | None = None,
        confirmed: bool = False,
        env: dict[str, str] | None = None,
    ) -> ExecResult:
        self._assert_tool_access(role)
        return self.execute(command, cwd=cwd, confirmed=confirmed, env=env)

    def execute(
        self,
        command: str,
        cwd: str | Path | None = None,
        confirmed: bool = False,
        env: dict[str, str] | None = None,
    ) -> ExecResult:
        """Run after the command and path gates, without the role gate.

        Used by tools that apply their own role check (the test runner).
        """
        self.check(command, confirmed=confirmed)
        workdir = self._assert_path_allowed(cwd or Path.cwd())

        try:
            argv = shlex.split(command)
        except ValueError as exc:
            raise ToolExecutionError(
                f"Cannot parse command '{command}': {exc}", tool=self.category.value
            ) from exc
        run_env: dict[str, Any] = {**os.environ, **(env or {}), "CI": "true", "FORCE_COLOR": "0"}
        started = time.monotonic()
        try:
            proc = self._runner(
                argv,
                cwd=str(workdir),
                env=run_env,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return ExecResult(
                command=command,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                exit_code=124,
                duration_ms=int((time.monotonic() - started) * 1000),
                timed_out=True,
                error=f"Timed out after {self.timeout_seconds:g}s",
            )
        except OSError as exc:
            return ExecResult(
                command=command,
                exit_code=127,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(exc),
            )

        result = ExecResult(
            command=command,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            exit_code=proc.returncode,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.debug("exec %r exited %d in %dms", command, result.exit_code, result.duration_ms)
        return result


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
