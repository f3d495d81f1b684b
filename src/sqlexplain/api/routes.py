"""
HTTP routes.

POST /v1/explain  - explain a statement
GET  /health      - liveness plus database and cache status
GET  /v1/metrics  - Prometheus exposition
GET  /            - service name and version
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response

import sqlexplain
from sqlexplain.api.deps import (
    envelope,
    get_cache,
    get_client_identity,
    get_metrics,
    get_service,
    get_settings,
    get_store,
    utc_timestamp,
)
from sqlexplain.cache.result_cache import ResultCache
from sqlexplain.engine import ExplanationService
from sqlexplain.models import ExplainRequest
from sqlexplain.observability import ServiceMetrics
from sqlexplain.settings import Settings
from sqlexplain.storage.store import ExplanationStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/v1/explain", summary="Explain a SQL statement")
async def explain(
    body: ExplainRequest,
    request: Request,
    service: ExplanationService = Depends(get_service),
    cache: ResultCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    identity: str = Depends(get_client_identity),
) -> JSONResponse:
    """
    Explain one statement, from cache when possible.

    Validation errors return 400, rate limiting 429, backend timeouts 504
    and other backend failures 502 (see the app's exception handlers).
    """
    if settings.enable_rate_limiting:
        allowed = await cache.check_rate_limit(identity, settings.daily_token_budget)
        if not allowed:
            logger.info("Rate limit exceeded for request %s", request.state.request_id)
            return envelope(
                request,
                error="Rate limit exceeded: daily request budget used up",
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            )

    if "privacy_mode" not in body.model_fields_set:
        body = body.model_copy(update={"privacy_mode": settings.privacy_mode_default})

    user_id = request.headers.get("x-api-key")
    result = await service.explain_request(body, user_id=user_id)
    return envelope(request, data=result.to_wire())


@router.get("/health", summary="Service health")
async def health(
    request: Request,
    store: ExplanationStore = Depends(get_store),
    cache: ResultCache = Depends(get_cache),
) -> JSONResponse:
    """200 when the database answers, 503 otherwise. The cache never fails health."""
    db_ok = await store.check_health()
    cache_ok = await cache.ping()

    return JSONResponse(
        status_code=status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if db_ok else "degraded",
            "timestamp": utc_timestamp(),
            "services": {
                "api": "ok",
                "database": "ok" if db_ok else "error",
                "cache": "ok" if cache_ok else "error",
            },
            "uptime": int(time.monotonic() - request.app.state.started_at),
        },
    )


@router.get("/v1/metrics", summary="Prometheus metrics")
async def metrics(
    request: Request,
    collectors: ServiceMetrics | None = Depends(get_metrics),
) -> Response:
    if collectors is None:
        return envelope(request, error="Metrics disabled", status_code=status.HTTP_404_NOT_FOUND)
    return Response(content=collectors.render(), media_type=collectors.content_type)


@router.get("/", summary="Service info")
async def root() -> dict[str, str]:
    return {"name": "SQLExplain API", "version": sqlexplain.__version__}
