"""
Claude explanation backend.

Sends the statement (redacted in privacy mode) to the Anthropic Messages
API and validates the JSON reply against BackendExplanation. A reply
that is not exactly that shape is an error, never a partial result.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import anthropic
from pydantic import ValidationError as PydanticValidationError

from sqlexplain.backends.base import BackendRequest, ExplanationBackend
from sqlexplain.backends.prompts import SYSTEM_PROMPT, build_user_prompt
from sqlexplain.exceptions import BackendError, BackendTimeoutError, InvalidBackendResponseError
from sqlexplain.models import BackendExplanation
from sqlexplain.observability import ServiceMetrics

logger = logging.getLogger(__name__)


@dataclass
class ClaudeBackend(ExplanationBackend):
    """
    Claude-based explanation backend.

    Example:
        backend = ClaudeBackend(api_key="...")
        explanation = await backend.explain_sql(request)
    """

    api_key: str
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    timeout_seconds: float = 30.0
    metrics: ServiceMetrics | None = None

    _client: Any = None

    name = "claude"

    def _get_client(self) -> Any:
        """Get or create the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout_seconds,
            )
        return self._client

    async def explain_sql(self, request: BackendRequest) -> BackendExplanation:
        client = self._get_client()
        start_time = time.perf_counter()

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_user_prompt(request)}],
            )
        except anthropic.APITimeoutError as e:
            self._record("timeout")
            raise BackendTimeoutError(
                f"Claude did not respond within {self.timeout_seconds}s",
                provider=self.name,
            ) from e
        except anthropic.APIError as e:
            self._record("error")
            logger.warning("Claude API error: %s", e)
            raise BackendError(f"Claude API error: {e}", provider=self.name) from e

        usage = getattr(response, "usage", None)
        if usage is not None and self.metrics is not None:
            self.metrics.record_tokens(self.name, usage.input_tokens, usage.output_tokens)

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        explanation = self._parse(text)

        self._record("success")
        logger.debug(
            "Claude explanation received in %.0fms (%d chars)",
            (time.perf_counter() - start_time) * 1000,
            len(text),
        )
        return explanation

    def _parse(self, text: str) -> BackendExplanation:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            self._record("invalid")
            logger.error("Claude reply is not JSON (%d chars)", len(text))
            raise InvalidBackendResponseError(
                "Invalid backend response format: not JSON",
                provider=self.name,
                response_text=text,
            ) from e

        try:
            return BackendExplanation.model_validate(data)
        except PydanticValidationError as e:
            self._record("invalid")
            logger.error("Claude reply failed schema validation: %d errors", e.error_count())
            raise InvalidBackendResponseError(
                "Invalid backend response format: schema mismatch",
                provider=self.name,
                response_text=text,
            ) from e

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_backend_call(self.name, outcome)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
