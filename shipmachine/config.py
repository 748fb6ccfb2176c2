"""Runtime configuration — env-driven.

Settings are read from ``SHIPMACHINE_*`` environment variables or a ``.env``
file.  Policy itself (roles, budgets, allowlists) lives in the governance
YAML; this object only says where to find it and how the process behaves.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from shipmachine.core.loader import DEFAULT_GOVERNANCE_PATH, DEFAULT_PACKS_PATH


class ShipConfig(BaseSettings):
    """Process configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPMACHINE_ENVIRONMENT=production
        export SHIPMACHINE_LOG_LEVEL=DEBUG
        export SHIPMACHINE_AUDIT_DB_PATH=/data/audit.db

    Or via .env file::

        SHIPMACHINE_GOVERNANCE_PATH=./governance.yaml
        SHIPMACHINE_APPROVAL_POLICY=block
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPMACHINE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Policy sources
    governance_path: Path = DEFAULT_GOVERNANCE_PATH
    packs_path: list[Path] = [DEFAULT_PACKS_PATH]

    # Storage paths
    audit_db_path: Path = Path(".shipmachine/audit.db")
    bundles_path: Path = Path(".shipmachine/bundles")

    # Model client
    default_model: str | None = None
    max_output_tokens: int = 4096
    model_timeout_seconds: float = 45.0
    force_mock: bool = False

    # Bridge behaviour
    approval_policy: Literal["warn", "block"] = "warn"
    channel: str = "cli"

    # Planner
    max_retries: int = 2

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton — import as `from shipmachine.config import config`
config = ShipConfig()
