"""ShipMachine: a governed, auditable agent for multi-step code changes.

Every model call passes through one execution bridge that applies role
permissions, budgets, approval rules and data-class policy before it is
made, and records an append-only, hash-chained audit event after.
"""

__version__ = "0.2.0"
__description__ = "Governed, auditable engineering agent"

__all__ = ["__version__"]
