"""Tests for the production configuration guard."""

from __future__ import annotations

import re

import pytest

from shipmachine.config import ShipConfig
from shipmachine.core.governance import GovernanceEngine
from shipmachine.core.production_guard import (
    ProductionConfigError,
    effective_approval_policy,
    enforce_production_constraints,
)


def _prod(**overrides) -> ShipConfig:
    values = {
        "environment": "production",
        "debug": False,
        "approval_policy": "block",
        "force_mock": False,
    }
    values.update(overrides)
    return ShipConfig(**values)


class TestEnforceProductionConstraints:

    def test_development_is_unchecked(self, governance):
        enforce_production_constraints(
            ShipConfig(environment="development", debug=True, force_mock=True), governance
        )

    def test_valid_production(self, governance):
        enforce_production_constraints(_prod(), governance)

    @pytest.mark.parametrize(
        ("overrides", "needle"),
        [
            ({"debug": True}, "debug=True"),
            ({"approval_policy": "warn"}, "approval_policy='warn'"),
            ({"force_mock": True}, "force_mock=True"),
        ],
    )
    def test_single_violation(self, governance, overrides, needle):
        with pytest.raises(ProductionConfigError, match=re.escape(needle)):
            enforce_production_constraints(_prod(**overrides), governance)

    def test_governance_must_require_human(self, make_governance_config):
        config = make_governance_config()
        data = config.model_dump(mode="json")
        data["allowlists"]["dangerous_commands_require_human"] = False
        engine = GovernanceEngine(config.model_validate(data))
        with pytest.raises(ProductionConfigError, match="dangerous_commands_require_human"):
            enforce_production_constraints(_prod(), engine)

    def test_all_violations_reported(self, governance):
        with pytest.raises(ProductionConfigError) as excinfo:
            enforce_production_constraints(
                _prod(debug=True, approval_policy="warn", force_mock=True), governance
            )
        assert str(excinfo.value).count("\n  - ") == 3


class TestEffectiveApprovalPolicy:

    def test_development_keeps_setting(self):
        assert effective_approval_policy(ShipConfig(environment="development")) == "warn"

    def test_production_blocks(self):
        assert effective_approval_policy(_prod()) == "block"
