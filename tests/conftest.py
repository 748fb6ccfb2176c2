"""Shared test fixtures for ShipMachine."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from shipmachine.adapters.model_client import MockModelClient
from shipmachine.config import ShipConfig
from shipmachine.core.audit_ledger import AuditLedger
from shipmachine.core.bridge import ExecutionBridge
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.loader import (
    DEFAULT_GOVERNANCE_PATH,
    DEFAULT_PACKS_PATH,
    load_yaml_document,
)
from shipmachine.core.operation_registry import OperationRegistry
from shipmachine.core.orchestrator import Orchestrator
from shipmachine.models.bridge import CallContext
from shipmachine.models.governance import GovernanceConfig


class FakeRunner:
    """``subprocess.run`` stand-in that records argv and replays one result."""

    def __init__(self, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, Any]] = []

    def __call__(self, argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(argv))
        self.kwargs.append(kwargs)
        return subprocess.CompletedProcess(
            argv, self.returncode, stdout=self.stdout, stderr=self.stderr
        )


class OverridingClient(MockModelClient):
    """Mock client that merges fixed fields into chosen operations' output."""

    def __init__(self, overrides: dict[str, dict[str, Any]]) -> None:
        super().__init__()
        self.overrides = overrides

    def call(self, prompt, model=None, output_schema=None):
        response = super().call(prompt, model, output_schema)
        extra = self.overrides.get((output_schema or {}).get("operation_id"))
        if extra is None:
            return response
        return response.model_copy(update={"content": {**response.content, **extra}})


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Resolved temp root; everything a test touches lives under it."""
    return tmp_path.resolve()


@pytest.fixture
def repo(workdir: Path) -> Path:
    """A small Python repository checkout."""
    root = workdir / "repo"
    (root / "src" / "core").mkdir(parents=True)
    (root / "pyproject.toml").write_text(
        '[project]\nname = "demo"\nversion = "0.1.0"\n', encoding="utf-8"
    )
    (root / "src" / "core" / "feature.py").write_text(
        "def feature():\n    return 1\n", encoding="utf-8"
    )
    (root / "README.md").write_text("# Demo\n", encoding="utf-8")
    return root


@pytest.fixture
def make_governance_config(workdir: Path) -> Callable[..., GovernanceConfig]:
    """Factory: the default policy, path allowlist narrowed to the temp root."""

    def _factory(**overrides: Any) -> GovernanceConfig:
        data = load_yaml_document(DEFAULT_GOVERNANCE_PATH)
        data["allowlists"] = {**data["allowlists"], "paths": [f"{workdir}/**"]}
        data.update(overrides)
        return GovernanceConfig.model_validate(data)

    return _factory


@pytest.fixture
def governance_config(make_governance_config: Callable[..., GovernanceConfig]) -> GovernanceConfig:
    return make_governance_config()


@pytest.fixture
def governance(governance_config: GovernanceConfig) -> GovernanceEngine:
    return GovernanceEngine(governance_config)


@pytest.fixture
def registry() -> OperationRegistry:
    """Registry over the bundled ``ship`` pack."""
    return OperationRegistry([DEFAULT_PACKS_PATH])


@pytest.fixture
def ledger(workdir: Path) -> AuditLedger:
    """A fresh AuditLedger backed by a temp SQLite database."""
    return AuditLedger(workdir / "audit.db")


@pytest.fixture
def mock_client() -> MockModelClient:
    return MockModelClient()


@pytest.fixture
def bridge(
    governance: GovernanceEngine,
    registry: OperationRegistry,
    ledger: AuditLedger,
    mock_client: MockModelClient,
) -> ExecutionBridge:
    return ExecutionBridge(governance, registry, ledger, mock_client)


@pytest.fixture
def run_id() -> str:
    """A deterministic test run ID."""
    return "sm-test-run-001"


@pytest.fixture
def make_context(run_id: str) -> Callable[..., CallContext]:
    """Factory fixture: build a CallContext with sensible defaults."""

    def _factory(**overrides: Any) -> CallContext:
        defaults: dict[str, Any] = {"run_id": run_id, "role": "engineer"}
        defaults.update(overrides)
        return CallContext(**defaults)

    return _factory


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    """The FakeRunner class, for tests that need a custom result."""
    return FakeRunner


@pytest.fixture
def overriding_client() -> type[OverridingClient]:
    """The OverridingClient class: ``overriding_client({op_id: {field: value}})``."""
    return OverridingClient


@pytest.fixture
def passing_runner() -> FakeRunner:
    return FakeRunner(stdout="===== 3 passed in 0.12s =====\n")


@pytest.fixture
def failing_runner() -> FakeRunner:
    return FakeRunner(
        stdout="FAILED tests/test_feature.py::test_feature_works\n===== 1 failed, 2 passed in 0.20s =====\n",
        returncode=1,
    )


@pytest.fixture
def git_runner() -> FakeRunner:
    return FakeRunner(stdout="")


@pytest.fixture
def settings(workdir: Path) -> ShipConfig:
    return ShipConfig(
        environment="development",
        audit_db_path=workdir / "audit.db",
        bundles_path=workdir / "bundles",
        force_mock=True,
    )


@pytest.fixture
def make_orchestrator(
    repo: Path,
    settings: ShipConfig,
    governance: GovernanceEngine,
    registry: OperationRegistry,
    ledger: AuditLedger,
    passing_runner: FakeRunner,
    git_runner: FakeRunner,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an orchestrator wired to temp storage and fake runners."""

    def _factory(objective: str = "Add a greeting helper", **overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "settings": settings,
            "governance": governance,
            "registry": registry,
            "ledger": ledger,
            "model_client": MockModelClient(),
            "exec_runner": passing_runner,
            "git_runner": git_runner,
        }
        kwargs.update(overrides)
        return Orchestrator(repo, objective, **kwargs)

    return _factory
