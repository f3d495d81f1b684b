"""
Shared FastAPI dependencies and response helpers.

Collaborators are built once in the app lifespan and hung on
``app.state``; these dependencies hand them to route functions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from sqlexplain.cache.result_cache import ResultCache
from sqlexplain.engine import ExplanationService
from sqlexplain.observability import ServiceMetrics
from sqlexplain.settings import Settings
from sqlexplain.storage.store import ExplanationStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> ExplanationService:
    return request.app.state.service


def get_cache(request: Request) -> ResultCache:
    return request.app.state.cache


def get_store(request: Request) -> ExplanationStore:
    return request.app.state.store


def get_metrics(request: Request) -> ServiceMetrics | None:
    return request.app.state.metrics


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def get_client_identity(
    request: Request,
    x_api_key: str | None = Header(default=None),
) -> str:
    """Rate-limit identity: the API key if sent, else the client address."""
    if x_api_key:
        return x_api_key
    return request.client.host if request.client else "anonymous"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def envelope(
    request: Request,
    *,
    data: Any = None,
    error: str | None = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard response envelope.

    ``{success, data | error, requestId, timestamp}``
    """
    body: dict[str, Any] = {"success": error is None}
    if error is None:
        body["data"] = data
    else:
        body["error"] = error
    body["requestId"] = get_request_id(request)
    body["timestamp"] = utc_timestamp()
    return JSONResponse(status_code=status_code, content=body)
