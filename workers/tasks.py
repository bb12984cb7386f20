import asyncio
import logging
from datetime import UTC, datetime
from time import perf_counter
from uuid import UUID, uuid4

from social_connect.application.services.content_service import RETRY_PENDING_PREFIX, due_scheduled_content
from social_connect.application.services.publish_orchestrator import PublishResult
from social_connect.application.services.service_registry import ServiceRegistry, build_service_registry
from social_connect.application.services.session_scope import BackgroundTaskSet
from social_connect.core.config import settings
from social_connect.domain.models.content import Content, ContentStatus
from social_connect.infrastructure.cache.redis_client import get_redis_client
from social_connect.infrastructure.db.session import SessionLocal
from social_connect.infrastructure.observability.metrics import SCHEDULED_JOBS_CHECKED_TOTAL, measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

PUBLISH_LOCK_TTL_SECONDS = 120
SCHEDULER_BATCH_SIZE = 500
MAX_RETRY_DELAY_SECONDS = 1800

_services: ServiceRegistry | None = None


def _get_services() -> ServiceRegistry:
    global _services
    if _services is None:
        _services = build_service_registry(settings, session_factory=SessionLocal)
    return _services


def _compute_retry_delay_seconds(attempt: int, base_delay_seconds: int | None = None) -> int:
    base = base_delay_seconds or settings.publish_retry_delay_seconds
    normalized_attempt = max(1, attempt)
    return min(MAX_RETRY_DELAY_SECONDS, base * (2 ** (normalized_attempt - 1)))


def _acquire_publish_lock(redis_client, *, content_id: UUID) -> str | None:
    lock_key = f"lock:publish:{content_id}"
    token = str(uuid4())
    with measure_redis("publish_lock_acquire"):
        acquired = redis_client.set(lock_key, token, nx=True, ex=PUBLISH_LOCK_TTL_SECONDS)
    if not acquired:
        return None
    return token


def _release_publish_lock(redis_client, *, content_id: UUID, token: str) -> None:
    lock_key = f"lock:publish:{content_id}"
    try:
        with measure_redis("publish_lock_release"):
            redis_client.eval(
                """
                if redis.call("get", KEYS[1]) == ARGV[1] then
                    return redis.call("del", KEYS[1])
                else
                    return 0
                end
                """,
                1,
                lock_key,
                token,
            )
    except Exception:
        logger.exception("publish_lock_release_failed content_id=%s", content_id)


def _set_last_error(content_id: UUID, message: str | None) -> None:
    with SessionLocal() as db:
        content = db.get(Content, content_id)
        if content is None:
            return
        content.last_error = message
        db.commit()


async def _publish_scheduled(
    services: ServiceRegistry,
    *,
    user_id: UUID,
    platform: str,
    text: str,
    media_url: str | None,
    content_id: UUID,
) -> PublishResult:
    tasks = BackgroundTaskSet()
    try:
        return await services.publisher.publish(
            user_id=user_id,
            platform=platform,
            text=text,
            media_url=media_url,
            content_id=content_id,
            tasks=tasks,
        )
    finally:
        await tasks.drain()


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}


@celery_app.task(name="workers.tasks.schedule_due_content")
def schedule_due_content() -> dict:
    started_at = perf_counter()
    now = datetime.now(UTC)

    with SessionLocal() as db:
        due_ids = [content.id for content in due_scheduled_content(db, now=now, limit=SCHEDULER_BATCH_SIZE)]
    SCHEDULED_JOBS_CHECKED_TOTAL.inc(len(due_ids))

    for content_id in due_ids:
        publish_content.apply_async(args=[str(content_id)], queue="publishing")

    logger.info(
        "scheduler_run completed enqueued=%s due_checked_at=%s duration_ms=%s",
        len(due_ids),
        now.isoformat(),
        round((perf_counter() - started_at) * 1000.0, 2),
    )
    return {"enqueued": len(due_ids)}


@celery_app.task(bind=True, name="workers.tasks.publish_content", max_retries=settings.publish_max_retries, acks_late=True)
def publish_content(self, content_id: str) -> dict:
    content_uuid = UUID(content_id)
    attempt = self.request.retries + 1
    redis_client = get_redis_client()
    lock_token = _acquire_publish_lock(redis_client, content_id=content_uuid)
    if lock_token is None:
        logger.info("publish_content_skipped_locked content_id=%s", content_id)
        return {"status": "skipped", "reason": "lock_not_acquired"}

    try:
        with SessionLocal() as db:
            content = db.get(Content, content_uuid)
            if content is None:
                logger.warning("publish_content_not_found content_id=%s", content_id)
                return {"status": "missing"}
            if content.status == ContentStatus.PUBLISHED.value:
                logger.info("publish_content_skip_already_published content_id=%s", content_id)
                return {"status": "skipped", "reason": "already_published"}
            if content.status != ContentStatus.SCHEDULED.value:
                logger.info("publish_content_skip_not_scheduled content_id=%s status=%s", content_id, content.status)
                return {"status": "skipped", "reason": "not_scheduled"}
            user_id = content.user_id
            platform = content.platform
            text = content.content
            media_url = content.media_url

        result = asyncio.run(
            _publish_scheduled(
                _get_services(),
                user_id=user_id,
                platform=platform,
                text=text,
                media_url=media_url,
                content_id=content_uuid,
            )
        )
        if result.success:
            logger.info(
                "publish_content_completed content_id=%s platform=%s external_post_id=%s attempt=%s",
                content_id,
                platform,
                result.external_post_id,
                attempt,
            )
            return {"status": ContentStatus.PUBLISHED.value, "external_post_id": result.external_post_id}

        if result.retryable and self.request.retries < settings.publish_max_retries:
            countdown = max(result.retry_after or 0, _compute_retry_delay_seconds(attempt))
            # Keeps the scheduler from enqueueing the row again while the retry is pending.
            _set_last_error(content_uuid, f"{RETRY_PENDING_PREFIX}{result.error_code}")
            logger.warning(
                "publish_content_retry_scheduled content_id=%s platform=%s attempt=%s countdown=%s error_code=%s",
                content_id,
                platform,
                attempt,
                countdown,
                result.error_code,
            )
            raise self.retry(exc=RuntimeError(result.error or "Publish failed"), countdown=countdown)

        _set_last_error(content_uuid, result.error or result.error_code)
        logger.error(
            "publish_content_failed content_id=%s platform=%s attempt=%s error_code=%s",
            content_id,
            platform,
            attempt,
            result.error_code,
        )
        return {"status": "failed", "error_code": result.error_code, "error": result.error}
    finally:
        _release_publish_lock(redis_client, content_id=content_uuid, token=lock_token)
