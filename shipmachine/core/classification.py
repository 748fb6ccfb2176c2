"""Heuristic data classification and PII redaction.

Classification is best-effort.  Precedence is fixed:

    secrets > pii > internal > public

Callers that know better pass an explicit override.  Redaction is
all-or-nothing for secrets and pattern-wise for PII.
"""

from __future__ import annotations

import re

from shipmachine.models.governance import DataClass

_MAX_REDACT_DEPTH = 20

SECRETS_MARKER = "[REDACTED:SECRETS]"

# Keyword markers for secrets.  Word-bounded so "tokens_used" is not a secret.
_SECRET_KEYWORDS = re.compile(
    r"(?i)\b(?:password|passwd|secret|api[_-]?key|apikey|access[_-]?token|"
    r"auth[_-]?token|token|credentials?|private[_ -]?key|client[_-]?secret)\b"
)

# Key-like substrings that are secrets regardless of surrounding words.
_SECRET_SHAPES: list[re.Pattern[str]] = [
    re.compile(r"\bsk-[A-Za-z0-9_-]{20,}"),
    re.compile(r"\bBearer\s+[A-Za-z0-9._~+/-]{20,}=*"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bgh[ps]_[A-Za-z0-9_]{36,}\b"),
    re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"),
]

_PII_KEYWORDS = re.compile(
    r"(?i)\b(?:e-?mail|phone|ssn|social[ _-]?security|date[ _-]?of[ _-]?birth|dob|address)\b"
)

_INTERNAL_KEYWORDS = re.compile(
    r"(?i)\b(?:internal|confidential|proprietary|not for distribution)\b"
)

# Ordered: more specific shapes first so a credit card is not eaten as a phone.
PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("email", re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")),
    ("credit_card", re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")),
    (
        "date_of_birth",
        re.compile(
            r"\b(?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])[/-](?:19|20)\d{2}\b"
        ),
    ),
    ("ssn", re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b")),
    (
        "phone",
        re.compile(
            r"(?:\+?1[-.\s]?)?(?:\(\d{3}\)|\b\d{3})[-.\s]?\d{3}[-.\s]?\d{4}\b"
        ),
    ),
    ("ip_address", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")),
]

# Subset used for classification: shapes that are unlikely to be noise.
_PII_SHAPES: list[re.Pattern[str]] = [
    PII_PATTERNS[0][1],
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    re.compile(r"(?:\(\d{3}\)\s?|\b\d{3}[-.\s])\d{3}[-.\s]\d{4}\b"),
]


def infer_data_class(text: str | None, override: DataClass | None = None) -> DataClass:
    """Classify *text* by the fixed precedence order.

    ``override`` short-circuits the heuristic entirely.
    """
    if override is not None:
        return DataClass(override)
    if not text:
        return DataClass.PUBLIC

    if _SECRET_KEYWORDS.search(text) or any(p.search(text) for p in _SECRET_SHAPES):
        return DataClass.SECRETS

    if _PII_KEYWORDS.search(text) or any(p.search(text) for p in _PII_SHAPES):
        return DataClass.PII

    if _INTERNAL_KEYWORDS.search(text):
        return DataClass.INTERNAL

    return DataClass.PUBLIC


def redact_pii(text: str, extra_patterns: list[str] | None = None) -> str:
    """Replace every PII match with a typed ``[REDACTED:<TYPE>]`` tag.

    ``extra_patterns`` are configured per data class and replaced with a
    plain ``[REDACTED]`` tag after the built-in patterns.
    """
    redacted = text
    for kind, regex in PII_PATTERNS:
        redacted = regex.sub(f"[REDACTED:{kind.upper()}]", redacted)
    for pattern in extra_patterns or []:
        redacted = re.sub(pattern, "[REDACTED]", redacted, flags=re.IGNORECASE)
    return redacted


def redact_text(
    text: str,
    data_class: DataClass,
    extra_patterns: list[str] | None = None,
) -> str:
    """Redact *text* as appropriate for *data_class*.

    The caller decides whether redaction applies at all; this function
    only decides how.
    """
    if data_class == DataClass.SECRETS:
        return SECRETS_MARKER
    return redact_pii(text, extra_patterns)


def redact_value(
    value: object,
    data_class: DataClass,
    extra_patterns: list[str] | None = None,
    *,
    depth: int = 0,
) -> object:
    """Recursively redact every string inside dicts and lists.

    Non-string scalars pass through.  Past the depth limit the whole
    sub-tree is replaced with the secrets marker.
    """
    if depth >= _MAX_REDACT_DEPTH:
        return SECRETS_MARKER
    if isinstance(value, str):
        return redact_text(value, data_class, extra_patterns)
    if isinstance(value, dict):
        return {
            k: redact_value(v, data_class, extra_patterns, depth=depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [
            redact_value(v, data_class, extra_patterns, depth=depth + 1)
            for v in value
        ]
    return value
