"""
FastAPI application factory for SQLExplain.

Creates the app with:
- Lifespan management (cache, database, backend init/shutdown)
- Request-ID and metrics middleware
- Routes (/v1/explain, /health, /v1/metrics, /)
- Exception handlers mapping errors to the response envelope
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import sqlexplain
from sqlexplain.api.deps import envelope
from sqlexplain.api.routes import router
from sqlexplain.backends import ExplanationBackend, create_backend
from sqlexplain.cache import ResultCache, create_result_cache
from sqlexplain.engine import ExplanationService
from sqlexplain.exceptions import (
    BackendError,
    BackendTimeoutError,
    PersistenceError,
    SQLExplainError,
    ValidationError,
)
from sqlexplain.observability import ServiceMetrics
from sqlexplain.settings import Settings, get_settings
from sqlexplain.storage.store import ExplanationStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    backend: ExplanationBackend | None = None,
    cache: ResultCache | None = None,
    store: ExplanationStore | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override (uses env vars if None).
        backend, cache, store: Pre-built collaborators. Anything not given
            is built from ``settings`` when the app starts.

    Returns:
        Configured FastAPI app.
    """
    settings = settings or get_settings()
    metrics = ServiceMetrics() if settings.metrics_enabled else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        result_cache = cache or create_result_cache(settings)
        explanation_store = store or ExplanationStore(
            settings.database_url, echo=settings.database_echo
        )
        explanation_backend = backend or create_backend(settings, metrics)

        await result_cache.init()
        try:
            await explanation_store.init()
        except PersistenceError as e:
            # Explanations still work; /health reports the database as down
            logger.error("Database initialization failed: %s", e)

        app.state.settings = settings
        app.state.metrics = metrics
        app.state.cache = result_cache
        app.state.store = explanation_store
        app.state.service = ExplanationService(
            explanation_backend,
            cache=result_cache,
            store=explanation_store,
            metrics=metrics,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            lock_poll_attempts=settings.lock_poll_attempts,
            request_timeout_seconds=settings.request_timeout_seconds,
        )
        app.state.started_at = time.monotonic()

        logger.info(
            "SQLExplain started (%s backend, %s cache)",
            explanation_backend.name,
            result_cache.store.name,
        )

        yield

        await app.state.service.close()
        await result_cache.close()
        await explanation_store.close()
        logger.info("SQLExplain shut down")

    app = FastAPI(
        title="SQLExplain",
        description="Natural-language explanations and optimization hints for SQL.",
        version=sqlexplain.__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.metrics = metrics

    app.include_router(router)

    # ── Middleware ──────────────────────────────────────────────────────

    @app.middleware("http")
    async def request_context(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request.state.request_id = str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        response.headers["X-Request-ID"] = request.state.request_id
        if metrics is not None:
            route = request.scope.get("route")
            path = getattr(route, "path", "unmatched")
            metrics.record_http(
                request.method, path, response.status_code, time.perf_counter() - start
            )
        return response

    # ── Exception handlers ──────────────────────────────────────────────

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "invalid body"}
        loc = ".".join(str(x) for x in first["loc"] if x != "body")
        prefix = f"{loc}: " if loc else ""
        return envelope(
            request,
            error=f"Invalid request: {prefix}{first['msg']}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return envelope(request, error=exc.message, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(BackendTimeoutError)
    async def timeout_handler(request: Request, exc: BackendTimeoutError) -> JSONResponse:
        return envelope(request, error=exc.message, status_code=status.HTTP_504_GATEWAY_TIMEOUT)

    @app.exception_handler(BackendError)
    async def backend_handler(request: Request, exc: BackendError) -> JSONResponse:
        logger.error("Backend failure for request %s: %s", request.state.request_id, exc)
        return envelope(request, error=exc.message, status_code=status.HTTP_502_BAD_GATEWAY)

    @app.exception_handler(SQLExplainError)
    async def generic_handler(request: Request, exc: SQLExplainError) -> JSONResponse:
        logger.error("Unhandled %s: %s", type(exc).__name__, exc)
        return envelope(
            request,
            error="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return app
