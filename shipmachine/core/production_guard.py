"""Production configuration guard — hard constraints checked at startup.

The guard runs once when the orchestrator is constructed and raises
``ProductionConfigError`` listing every violated constraint.  Other code
should not scatter ``if is_production`` checks; it asks the helpers below.
"""

from __future__ import annotations

import logging

from shipmachine.config import ShipConfig
from shipmachine.core.errors import ShipMachineError
from shipmachine.core.governance import GovernanceEngine

logger = logging.getLogger(__name__)


class ProductionConfigError(ShipMachineError):
    """Raised when production configuration constraints are violated.

    The process must not continue in production mode after this.
    """


def enforce_production_constraints(
    config: ShipConfig, governance: GovernanceEngine | None = None
) -> None:
    """Validate production-critical settings.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The bridge approval policy must be ``block``.
    3. Dangerous commands must require human confirmation (governance).
    4. The mock model must not be forced.

    Raises
    ------
    ProductionConfigError
        If any constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set SHIPMACHINE_DEBUG=false."
        )

    if config.approval_policy != "block":
        violations.append(
            f"approval_policy={config.approval_policy!r} is not allowed in production. "
            "Set SHIPMACHINE_APPROVAL_POLICY=block."
        )

    if governance is not None and not governance.dangerous_commands_require_human():
        violations.append(
            "allowlists.dangerous_commands_require_human must be true in production "
            f"(governance config: {governance.config_path or 'in-memory'})."
        )

    if config.force_mock:
        violations.append(
            "force_mock=True is not allowed in production. Set SHIPMACHINE_FORCE_MOCK=false."
        )

    if violations:
        msg = "Production configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")


def effective_approval_policy(config: ShipConfig) -> str:
    """``block`` in production regardless of the configured value."""
    return "block" if config.is_production else config.approval_policy
