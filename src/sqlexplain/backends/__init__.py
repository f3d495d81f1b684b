"""
Explanation backends.

create_backend() picks one at construction time from settings:
the deterministic stand-in for tests, offline use, or a missing API key,
otherwise Claude.
"""

from __future__ import annotations

import logging

from sqlexplain.backends.base import BackendRequest, ExplanationBackend
from sqlexplain.backends.claude import ClaudeBackend
from sqlexplain.backends.deterministic import DeterministicBackend
from sqlexplain.observability import ServiceMetrics
from sqlexplain.settings import BackendKind, Settings

logger = logging.getLogger(__name__)


def create_backend(
    settings: Settings,
    metrics: ServiceMetrics | None = None,
) -> ExplanationBackend:
    """Build the backend selected by ``settings``."""
    if settings.backend is BackendKind.STUB or settings.is_test:
        return DeterministicBackend(metrics=metrics)

    if not settings.anthropic_api_key:
        logger.warning(
            "No Anthropic API key configured; falling back to the deterministic backend"
        )
        return DeterministicBackend(metrics=metrics)

    return ClaudeBackend(
        api_key=settings.anthropic_api_key,
        model=settings.model,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.backend_timeout_seconds,
        metrics=metrics,
    )


__all__ = [
    "create_backend",
    "BackendRequest",
    "ExplanationBackend",
    "ClaudeBackend",
    "DeterministicBackend",
]
