"""Model-invocation clients.

Defines the ``ModelClient`` Protocol the execution bridge calls, plus two
implementations:

1. **AnthropicModelClient**: calls the Messages API.  Falls back to the
   deterministic mock when no API key is configured, on timeout, or on an
   API error.
2. **MockModelClient**: fully offline and deterministic.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from shipmachine.adapters.mock_responses import build_mock_content

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are ShipMachine, an engineering-only agent. Always respond with "
    "valid JSON matching the requested output schema. No markdown code "
    "blocks, no explanations: pure JSON only."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ModelResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: Any
    tokens_used: int = 0
    is_mock: bool = False


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Anything with a ``call(prompt, model, output_schema)`` method."""

    def call(
        self,
        prompt: str,
        model: str | None = None,
        output_schema: dict[str, Any] | None = None,
    ) -> ModelResponse:
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class MockModelClient:
    """Deterministic offline client.

    Token usage is derived from prompt length so budgets advance
    predictably in tests.
    """

    def __init__(self, base_tokens: int = 200) -> None:
        self.base_tokens = base_tokens
        self.calls: list[str] = []

    def call(
        self,
        prompt: str,
        model: str | None = None,
        output_schema: dict[str, Any] | None = None,
    ) -> ModelResponse:
        self.calls.append(prompt)
        return ModelResponse(
            content=build_mock_content(prompt, output_schema),
            tokens_used=self.base_tokens + len(prompt) // 4,
            is_mock=True,
        )


def parse_json_content(raw: str) -> Any:
    """Parse a JSON reply, tolerating a surrounding code fence.

    Unparseable text is wrapped as ``{"raw": text}``.
    """
    cleaned = _FENCE_RE.sub("", raw.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return {"raw": raw}


class AnthropicModelClient:
    """Client for the Anthropic Messages API.

    Parameters
    ----------
    model:
        Default model id when the caller passes none.
    max_tokens:
        ``max_tokens`` sent with every request.
    timeout_seconds:
        Per-request timeout.  A timeout falls back to the mock.
    api_key:
        Defaults to ``ANTHROPIC_API_KEY``.  When neither is set every call
        is answered by the mock.
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-6",
        max_tokens: int = 4096,
        timeout_seconds: float = 45.0,
        api_key: str | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._client: Any = None
        self._api_error: type[Exception] = Exception
        self._mock = MockModelClient()

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> Any:
        """Lazy-initialize the Anthropic client."""
        if self._client is None:
            try:
                from anthropic import Anthropic, APIError
            except ImportError as exc:
                raise RuntimeError(
                    "Anthropic SDK is required for live model calls. "
                    "Install with: pip install anthropic"
                ) from exc
            self._api_error = APIError
            self._client = Anthropic(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def call(
        self,
        prompt: str,
        model: str | None = None,
        output_schema: dict[str, Any] | None = None,
    ) -> ModelResponse:
        if not self._api_key:
            return self._mock.call(prompt, model, output_schema)

        client = self._get_client()
        try:
            message = client.messages.create(
                model=model or self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except self._api_error as exc:
            logger.warning("Anthropic API error (%s), falling back to mock", exc)
            return self._mock.call(prompt, model, output_schema)

        parts = [getattr(p, "text", "") for p in (getattr(message, "content", None) or [])]
        raw = "".join(parts).strip() or "{}"
        usage = getattr(message, "usage", None)
        tokens = (getattr(usage, "input_tokens", 0) or 0) + (getattr(usage, "output_tokens", 0) or 0)
        return ModelResponse(content=parse_json_content(raw), tokens_used=tokens, is_mock=False)


def build_model_client(
    model: str,
    max_tokens: int = 4096,
    timeout_seconds: float = 45.0,
    force_mock: bool = False,
) -> ModelClient:
    """Pick the live client when credentials exist, else the mock."""
    if force_mock or not os.getenv("ANTHROPIC_API_KEY"):
        logger.info("No model credentials configured, using mock model client")
        return MockModelClient()
    return AnthropicModelClient(
        model=model, max_tokens=max_tokens, timeout_seconds=timeout_seconds
    )
