from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from social_connect.core.config import settings
from social_connect.infrastructure.cache.redis_client import get_redis_client
from social_connect.infrastructure.db.session import SessionLocal
from social_connect.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _elapsed_ms(started_at: float) -> float:
    return round((perf_counter() - started_at) * 1000, 2)


def _probe_database() -> tuple[str, float | None]:
    started_at = perf_counter()
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return "down", None
    return "up", _elapsed_ms(started_at)


def _probe_redis() -> tuple[str, float | None, bool]:
    """Ping Redis and look for the Celery worker heartbeat key."""
    try:
        redis_client = get_redis_client()
        started_at = perf_counter()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = _elapsed_ms(started_at)
        with measure_redis("health_worker_heartbeat_check"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
    except RedisError:
        return "down", None, False
    return "up", latency_ms, worker_alive


@router.get("/health", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    db_status, db_latency_ms = _probe_database()
    redis_status, redis_latency_ms, worker_alive = _probe_redis()
    healthy = db_status == "up" and redis_status == "up" and worker_alive

    return {
        "status": "ok" if healthy else "degraded",
        "services": {
            "api": "up",
            "database": db_status,
            "redis": redis_status,
            "worker_alive": worker_alive,
            "db_latency_ms": db_latency_ms,
            "redis_latency_ms": redis_latency_ms,
        },
        "platforms": {
            platform: {"configured": not settings.missing_platform_settings(platform)}
            for platform in settings.enabled_platform_list
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(response: Response) -> dict:
    # Publishing from the API does not need the worker, so readiness ignores the heartbeat.
    services = health_check()["services"]
    if services["database"] != "up" or services["redis"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": services}
    return {"status": "ready", "services": services}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
