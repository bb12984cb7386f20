from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS_TOTAL = Counter(
    "total_requests",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
REQUEST_LATENCY_SECONDS = Histogram(
    "request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
PLATFORM_REQUEST_LATENCY_SECONDS = Histogram(
    "platform_request_latency_seconds",
    "Latency of outbound platform API calls in seconds",
    labelnames=("platform", "operation"),
)
PUBLISH_ATTEMPTS_TOTAL = Counter(
    "publish_attempts_total",
    "Number of publish attempts sent to a platform",
    labelnames=("platform",),
)
PUBLISH_FAILURES_TOTAL = Counter(
    "publish_failures_total",
    "Number of failed publish attempts by failure code",
    labelnames=("platform", "error_code"),
)
CONNECTION_VERIFICATIONS_TOTAL = Counter(
    "connection_verifications_total",
    "Outcome of connection verifications against the platform",
    labelnames=("platform", "outcome"),
)
AUTH_FLOWS_TOTAL = Counter(
    "auth_flows_total",
    "Authorization flows by terminal state",
    labelnames=("platform", "state"),
)
STATISTICS_REFRESHES_TOTAL = Counter(
    "statistics_refreshes_total",
    "Statistics refresh runs by outcome",
    labelnames=("platform", "outcome"),
)
SCHEDULED_JOBS_CHECKED_TOTAL = Counter(
    "scheduled_jobs_checked_total",
    "Number of scheduled content rows scanned by scheduler",
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


@contextmanager
def measure_platform_call(platform: str, operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        PLATFORM_REQUEST_LATENCY_SECONDS.labels(platform=platform, operation=operation).observe(
            perf_counter() - started_at
        )


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
