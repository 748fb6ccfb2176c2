"""Canonical hashing for the audit chain.

An event's hash covers every field except ``event_hash`` itself, including
``previous_event_hash``, so editing any stored column or unlinking an
event is detectable on verification.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Sorted keys, compact separators, ASCII-only, UTF-8 encoded."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_event_hash(event_dict: dict[str, Any]) -> str:
    """SHA-256 over the canonical form of *event_dict* minus ``event_hash``."""
    sealed_fields = {k: v for k, v in event_dict.items() if k != "event_hash"}
    return sha256_hex(canonical_json_bytes(sealed_fields))
