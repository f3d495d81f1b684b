"""
Logging setup and Prometheus metrics for the service.

Metrics live in a private CollectorRegistry owned by ServiceMetrics, so
several apps (or tests) in one process never collide on metric names.

Usage:
    configure_logging("INFO")
    metrics = ServiceMetrics()
    metrics.record_cache(hit=True)
    body = metrics.render()
"""

from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route all log records through a rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class ServiceMetrics:
    """
    Prometheus collectors for the explain service.

    Attributes:
        registry: The registry all collectors are bound to.
        content_type: Exposition content type for the metrics endpoint.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.http_requests = Counter(
            "sqlexplain_http_requests_total",
            "HTTP requests handled",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.http_duration = Histogram(
            "sqlexplain_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "path"],
            registry=self.registry,
        )
        self.cache_hits = Counter(
            "sqlexplain_cache_hits_total",
            "Explanations served from the result cache",
            registry=self.registry,
        )
        self.cache_misses = Counter(
            "sqlexplain_cache_misses_total",
            "Explanations that had to be computed",
            registry=self.registry,
        )
        self.lock_contention = Counter(
            "sqlexplain_lock_contention_total",
            "Requests that found another computation holding the stampede lock",
            registry=self.registry,
        )
        self.backend_calls = Counter(
            "sqlexplain_backend_calls_total",
            "Explanation backend calls",
            ["backend", "outcome"],
            registry=self.registry,
        )
        self.backend_tokens = Counter(
            "sqlexplain_backend_tokens_total",
            "Tokens consumed by the explanation backend",
            ["backend", "direction"],
            registry=self.registry,
        )
        self.plan_parse_failures = Counter(
            "sqlexplain_plan_parse_failures_total",
            "EXPLAIN outputs that could not be parsed",
            ["dialect"],
            registry=self.registry,
        )

    def record_http(self, method: str, path: str, status: int, duration_seconds: float) -> None:
        self.http_requests.labels(method=method, path=path, status=str(status)).inc()
        self.http_duration.labels(method=method, path=path).observe(duration_seconds)

    def record_cache(self, hit: bool) -> None:
        if hit:
            self.cache_hits.inc()
        else:
            self.cache_misses.inc()

    def record_lock_contention(self) -> None:
        self.lock_contention.inc()

    def record_backend_call(self, backend: str, outcome: str) -> None:
        self.backend_calls.labels(backend=backend, outcome=outcome).inc()

    def record_tokens(self, backend: str, input_tokens: int, output_tokens: int) -> None:
        self.backend_tokens.labels(backend=backend, direction="input").inc(input_tokens)
        self.backend_tokens.labels(backend=backend, direction="output").inc(output_tokens)

    def record_parse_failure(self, dialect: str) -> None:
        self.plan_parse_failures.labels(dialect=dialect).inc()

    def render(self) -> bytes:
        """Prometheus text exposition of every collector."""
        return generate_latest(self.registry)
