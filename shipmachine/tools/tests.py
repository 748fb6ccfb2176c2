"""Test-runner tool: runs a test command and parses the summary."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from shipmachine.core.governance import GovernanceEngine
from shipmachine.models.governance import ToolCategory
from shipmachine.tools.base import GovernedTool
from shipmachine.tools.exec import ExecTool


class ParsedResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: int = 0
    failed: int = 0
    total: int = 0
    format: str = "generic"
    failures: list[str] = Field(default_factory=list)


class SuiteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str
    passed: int = 0
    failed: int = 0
    total: int = 0
    output: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    format: str = "generic"
    failures: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.failed == 0


def detect_format(output: str) -> str:
    if re.search(r"PASS|FAIL|Tests:.*passed", output, re.I) and re.search(r"jest", output, re.I):
        return "jest"
    if re.search(r"passed|failed|error", output, re.I) and re.search(r"pytest|py\.test", output, re.I):
        return "pytest"
    if re.search(r"^test result:", output, re.M) or re.search(r"cargo test", output, re.I):
        return "cargo"
    if re.search(r"^--- (PASS|FAIL)", output, re.M) or re.search(r"^ok\s+\S+", output, re.M):
        return "go"
    if re.search(r"passing|failing", output, re.I) and re.search(r"mocha", output, re.I):
        return "mocha"
    if re.search(r"\d+ passed", output, re.I):
        return "pytest"
    if re.search(r"Tests:.*\d+", output, re.I):
        return "jest"
    return "generic"


def _int(value: str | None) -> int:
    return int(value) if value else 0


def _parse_jest(output: str) -> ParsedResults:
    passed = failed = total = 0
    m = re.search(
        r"Tests:\s+(?:(\d+)\s+failed,\s*)?(?:(\d+)\s+passed,\s*)?(\d+)\s+total", output, re.I
    )
    if m:
        failed, passed, total = _int(m.group(1)), _int(m.group(2)), _int(m.group(3))
    failures = [a or b for a, b in re.findall(r"✕ (.+)|● (.+)", output)]
    return ParsedResults(passed=passed, failed=failed, total=total, format="jest", failures=failures)


def _parse_pytest(output: str) -> ParsedResults:
    passed_m = re.search(r"(\d+)\s+passed", output, re.I)
    failed_m = re.search(r"(\d+)\s+failed", output, re.I)
    errors_m = re.search(r"(\d+)\s+errors?\b", output, re.I)
    passed = _int(passed_m.group(1) if passed_m else None)
    failed = _int(failed_m.group(1) if failed_m else None) + _int(
        errors_m.group(1) if errors_m else None
    )
    failures = [m.strip() for m in re.findall(r"^(?:FAILED|ERROR) (.+)", output, re.M)]
    return ParsedResults(
        passed=passed, failed=failed, total=passed + failed, format="pytest", failures=failures
    )


def _parse_cargo(output: str) -> ParsedResults:
    passed = failed = 0
    m = re.search(r"test result:.*?(\d+)\s+passed;\s+(\d+)\s+failed", output, re.I)
    if m:
        passed, failed = int(m.group(1)), int(m.group(2))
    failures = [f.strip() for f in re.findall(r"^FAILED\s+(.+)", output, re.M)]
    return ParsedResults(
        passed=passed, failed=failed, total=passed + failed, format="cargo", failures=failures
    )


def _parse_go(output: str) -> ParsedResults:
    passed = len(re.findall(r"^--- PASS", output, re.M))
    failures = re.findall(r"^--- FAIL: (\S+)", output, re.M)
    failed = len(re.findall(r"^--- FAIL", output, re.M))
    return ParsedResults(
        passed=passed, failed=failed, total=passed + failed, format="go", failures=failures
    )


def _parse_mocha(output: str) -> ParsedResults:
    p = re.search(r"(\d+)\s+passing", output, re.I)
    f = re.search(r"(\d+)\s+failing", output, re.I)
    passed = _int(p.group(1) if p else None)
    failed = _int(f.group(1) if f else None)
    return ParsedResults(passed=passed, failed=failed, total=passed + failed, format="mocha")


def _parse_generic(output: str) -> ParsedResults:
    p = re.search(r"(\d+)\s+(?:tests?\s+)?pass(?:ed|ing)", output, re.I)
    f = re.search(r"(\d+)\s+(?:tests?\s+)?fail(?:ed|ing)", output, re.I)
    passed = _int(p.group(1) if p else None)
    failed = _int(f.group(1) if f else None)
    return ParsedResults(passed=passed, failed=failed, total=passed + failed, format="generic")


_PARSERS = {
    "jest": _parse_jest,
    "pytest": _parse_pytest,
    "cargo": _parse_cargo,
    "go": _parse_go,
    "mocha": _parse_mocha,
    "generic": _parse_generic,
}


class TestRunnerTool(GovernedTool):
    """Runs test commands through ``ExecTool`` so the allowlist applies."""

    __test__ = False  # not a pytest class
    category = ToolCategory.TEST_RUNNER

    def __init__(self, governance: GovernanceEngine, exec_tool: ExecTool) -> None:
        super().__init__(governance)
        self.exec = exec_tool

    def run(
        self, repo_path: str | Path, command: str, role: str | None = None
    ) -> SuiteResult:
        self._assert_tool_access(role)
        result = self.exec.execute(command, cwd=repo_path)
        parsed = self.parse_results(result.output)
        return SuiteResult(
            command=command,
            passed=parsed.passed,
            failed=parsed.failed,
            total=parsed.total,
            output=result.output,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            format=parsed.format,
            failures=parsed.failures,
        )

    @staticmethod
    def parse_results(output: str, fmt: str = "auto") -> ParsedResults:
        if fmt == "auto":
            fmt = detect_format(output)
        return _PARSERS.get(fmt, _parse_generic)(output)
