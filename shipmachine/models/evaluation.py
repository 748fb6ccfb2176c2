"""Eval suite results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class EvalCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    detail: str = ""


class EvalResult(BaseModel):
    """Outcome of one fixture."""

    model_config = ConfigDict(frozen=True)

    fixture_id: str
    description: str
    passed: bool
    duration_ms: int = 0
    checks: list[EvalCheck] = Field(default_factory=list)
    run_id: str | None = None
    run_status: str | None = None
    error: str | None = None
    dry_run: bool = False


class EvalReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["live", "mock", "dry-run"]
    started_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0
    results: list[EvalResult] = Field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return len(self.results) - self.passed

    @property
    def success_rate(self) -> int:
        if not self.results:
            return 0
        return round(self.passed / len(self.results) * 100)
