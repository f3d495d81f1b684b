"""
Tests for the explanation backends.

The Claude backend is exercised against a fake Anthropic client so no
network call is ever made.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import pytest

from sqlexplain.backends import BackendRequest, ClaudeBackend, DeterministicBackend, create_backend
from sqlexplain.backends.prompts import build_user_prompt
from sqlexplain.exceptions import BackendError, BackendTimeoutError, InvalidBackendResponseError
from sqlexplain.models import Confidence, Operation, Severity
from sqlexplain.observability import ServiceMetrics
from sqlexplain.settings import BackendKind, Environment, Settings


VALID_REPLY: dict[str, Any] = {
    "summary": "Find pending orders",
    "walkthrough": ["Scan orders", "Filter by status"],
    "planAnalysis": [
        {
            "nodeId": "node_0",
            "operation": "SeqScan",
            "estimatedRows": 1200,
            "actualRows": None,
            "cost": {"startup": 0, "total": 35.5},
            "hotnessScore": 80,
            "explanation": "Full scan of orders",
        }
    ],
    "optimizations": [
        {
            "title": "Index orders.status",
            "severity": "high",
            "reason": "Filter on an unindexed column",
            "change": "CREATE INDEX idx_orders_status ON orders(status)",
            "estimatedImpact": "10x",
        }
    ],
    "antipatterns": [{"name": "SELECT *", "severity": "low", "explain": "Fetches unused columns"}],
    "rewrittenSQL": "SELECT id FROM orders WHERE status = <str_0>",
    "confidence": "high",
}


def make_request(sql: str = "SELECT * FROM orders WHERE status = 'pending'", **kwargs: Any) -> BackendRequest:
    return BackendRequest(
        sql=sql,
        sanitized_sql=kwargs.pop("sanitized_sql", "SELECT * FROM orders WHERE status = <str_0>"),
        dialect=kwargs.pop("dialect", "postgres"),
        **kwargs,
    )


class FakeMessages:
    """Stands in for ``client.messages``; records every create() call."""

    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.reply)],
            usage=SimpleNamespace(input_tokens=120, output_tokens=340),
        )


class FakeClient:
    def __init__(self, messages: FakeMessages) -> None:
        self.messages = messages
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def claude_with(messages: FakeMessages, metrics: ServiceMetrics | None = None) -> ClaudeBackend:
    return ClaudeBackend(api_key="test-key", metrics=metrics, _client=FakeClient(messages))


def anthropic_request() -> httpx.Request:
    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


# =============================================================================
# Deterministic backend
# =============================================================================


class TestDeterministicBackend:
    """Canned answers from lexical checks."""

    async def test_filtered_select(self) -> None:
        explanation = await DeterministicBackend().explain_sql(
            make_request("SELECT * FROM users WHERE id = 1")
        )

        assert explanation.summary == "Execute a SELECT query with filtering"
        assert explanation.walkthrough == [
            "Parse SELECT columns",
            "Access table",
            "Apply WHERE filters",
            "Return results",
        ]
        assert explanation.confidence == Confidence.LOW
        assert explanation.rewritten_sql == "SELECT * FROM users WHERE id = 1"

        [node] = explanation.plan_analysis
        assert node.node_id == "node_0"
        assert node.operation == Operation.SEQ_SCAN
        assert node.hotness_score == 75

        [suggestion] = explanation.optimizations
        assert suggestion.title == "Add index on filtered column"
        assert suggestion.severity == Severity.MEDIUM

    async def test_join_without_filter(self) -> None:
        explanation = await DeterministicBackend().explain_sql(
            make_request("SELECT * FROM a JOIN b ON a.id = b.a_id")
        )
        assert explanation.summary == "Execute a join SELECT query"
        assert explanation.walkthrough[1] == "Join tables"
        assert explanation.walkthrough[2] == "Process all rows"
        assert explanation.optimizations == []
        assert explanation.plan_analysis[0].hotness_score == 30

    async def test_data_modification(self) -> None:
        explanation = await DeterministicBackend().explain_sql(make_request("DELETE FROM sessions"))
        assert explanation.summary == "Execute a data modification"
        assert explanation.walkthrough[0] == "Parse statement"

    async def test_deterministic(self) -> None:
        backend = DeterministicBackend()
        request = make_request("SELECT * FROM users WHERE id = 1")
        assert await backend.explain_sql(request) == await backend.explain_sql(request)


# =============================================================================
# Prompt
# =============================================================================


class TestPrompt:
    """What leaves the process."""

    def test_privacy_mode_sends_sanitized_sql(self) -> None:
        prompt = build_user_prompt(make_request())
        assert "<str_0>" in prompt
        assert "'pending'" not in prompt
        assert "Privacy mode: enabled" in prompt

    def test_privacy_off_sends_raw_sql(self) -> None:
        prompt = build_user_prompt(make_request(privacy_mode=False))
        assert "'pending'" in prompt
        assert "Privacy mode: disabled" in prompt

    def test_schema_and_plan_included(self) -> None:
        prompt = build_user_prompt(
            make_request(schema="orders(id, status)", explain_plan="Seq Scan on orders")
        )
        assert "Schema: orders(id, status)" in prompt
        assert "EXPLAIN output:\nSeq Scan on orders" in prompt
        assert prompt.startswith("Analyze this postgres SQL query:")
        assert prompt.endswith("Respond with JSON only.")


# =============================================================================
# Claude backend
# =============================================================================


class TestClaudeBackend:
    """Anthropic Messages API adapter."""

    async def test_valid_reply(self) -> None:
        metrics = ServiceMetrics()
        messages = FakeMessages(reply=json.dumps(VALID_REPLY))
        backend = claude_with(messages, metrics)

        explanation = await backend.explain_sql(make_request())

        assert explanation.summary == "Find pending orders"
        assert explanation.confidence == Confidence.HIGH
        assert explanation.optimizations[0].estimated_impact == "10x"
        assert explanation.rewritten_sql == VALID_REPLY["rewrittenSQL"]

        [call] = messages.calls
        assert call["model"] == backend.model
        assert call["max_tokens"] == 2048
        assert "<str_0>" in call["messages"][0]["content"]

        sample = metrics.registry.get_sample_value
        assert sample("sqlexplain_backend_calls_total", {"backend": "claude", "outcome": "success"}) == 1
        assert sample("sqlexplain_backend_tokens_total", {"backend": "claude", "direction": "input"}) == 120
        assert sample("sqlexplain_backend_tokens_total", {"backend": "claude", "direction": "output"}) == 340

    async def test_unknown_operation_kept_as_other(self) -> None:
        reply = dict(VALID_REPLY)
        reply["planAnalysis"] = [dict(VALID_REPLY["planAnalysis"][0], operation="Gather")]
        explanation = await claude_with(FakeMessages(reply=json.dumps(reply))).explain_sql(make_request())
        assert explanation.plan_analysis[0].operation == Operation.OTHER

    async def test_not_json(self) -> None:
        backend = claude_with(FakeMessages(reply="Sure! Here is your explanation."))
        with pytest.raises(InvalidBackendResponseError) as exc_info:
            await backend.explain_sql(make_request())
        assert exc_info.value.provider == "claude"
        assert exc_info.value.response_text == "Sure! Here is your explanation."

    async def test_schema_mismatch(self) -> None:
        reply = {key: value for key, value in VALID_REPLY.items() if key != "walkthrough"}
        backend = claude_with(FakeMessages(reply=json.dumps(reply)))
        with pytest.raises(InvalidBackendResponseError):
            await backend.explain_sql(make_request())

    async def test_long_reply_truncated_in_error(self) -> None:
        backend = claude_with(FakeMessages(reply="x" * 2000))
        with pytest.raises(InvalidBackendResponseError) as exc_info:
            await backend.explain_sql(make_request())
        assert len(exc_info.value.response_text or "") == 500

    async def test_timeout(self) -> None:
        metrics = ServiceMetrics()
        error = anthropic.APITimeoutError(request=anthropic_request())
        backend = claude_with(FakeMessages(error=error), metrics)

        with pytest.raises(BackendTimeoutError):
            await backend.explain_sql(make_request())
        assert metrics.registry.get_sample_value(
            "sqlexplain_backend_calls_total", {"backend": "claude", "outcome": "timeout"}
        ) == 1

    async def test_api_error(self) -> None:
        error = anthropic.APIConnectionError(request=anthropic_request())
        backend = claude_with(FakeMessages(error=error))

        with pytest.raises(BackendError) as exc_info:
            await backend.explain_sql(make_request())
        assert not isinstance(exc_info.value, BackendTimeoutError)

    async def test_close_releases_client(self) -> None:
        client = FakeClient(FakeMessages(reply="{}"))
        backend = ClaudeBackend(api_key="k", _client=client)
        await backend.close()
        assert client.closed
        assert backend._client is None


# =============================================================================
# Selection
# =============================================================================


class TestCreateBackend:
    """Backend choice happens once, from settings."""

    def test_stub(self) -> None:
        settings = Settings(backend=BackendKind.STUB, anthropic_api_key="k")
        assert isinstance(create_backend(settings), DeterministicBackend)

    def test_test_environment_forces_stub(self) -> None:
        settings = Settings(environment=Environment.TEST, anthropic_api_key="k")
        assert isinstance(create_backend(settings), DeterministicBackend)

    def test_missing_key_falls_back(self) -> None:
        settings = Settings(backend=BackendKind.REMOTE, anthropic_api_key=None)
        assert isinstance(create_backend(settings), DeterministicBackend)

    def test_remote(self) -> None:
        settings = Settings(backend=BackendKind.REMOTE, anthropic_api_key="k", model="claude-test")
        backend = create_backend(settings)
        assert isinstance(backend, ClaudeBackend)
        assert backend.model == "claude-test"
