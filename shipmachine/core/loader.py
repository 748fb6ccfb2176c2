"""YAML loaders for the governance config and operation packs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from shipmachine.core.errors import GovernanceConfigError
from shipmachine.models.governance import GovernanceConfig

DEFAULTS_DIR = Path(__file__).resolve().parent.parent / "defaults"
DEFAULT_GOVERNANCE_PATH = DEFAULTS_DIR / "governance.yaml"
DEFAULT_PACKS_PATH = Path(__file__).resolve().parent.parent / "packs"


def load_yaml_document(path: Path) -> dict[str, Any]:
    """Read a YAML mapping.  An empty file yields an empty dict."""
    with Path(path).open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def load_governance_config(path: Path | str) -> GovernanceConfig:
    """Load and validate the governance YAML.

    Raises ``GovernanceConfigError`` for a missing file, malformed YAML or
    a document that does not validate.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise GovernanceConfigError(f"Governance config not found: {config_path}")
    try:
        data = load_yaml_document(config_path)
        return GovernanceConfig.from_yaml(data)
    except (yaml.YAMLError, ValueError, ValidationError) as exc:
        raise GovernanceConfigError(
            f"Failed to load governance config from {config_path}: {exc}"
        ) from exc
