"""Adapters to external systems (model providers)."""
