import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from social_connect.application.services.connection_verifier import ConnectionVerifier
from social_connect.application.services.content_service import (
    create_zeroed_metrics,
    get_content,
    record_activity,
    record_published_content,
)
from social_connect.application.services.notification_service import notify
from social_connect.application.services.platform_connection_service import credentials_for, get_connection
from social_connect.application.services.provider_error_mapper import RECONNECT, map_provider_error
from social_connect.application.services.session_scope import BackgroundTaskSet
from social_connect.domain.models.content import ContentStatus
from social_connect.domain.models.notification import NotificationType
from social_connect.infrastructure.db.session import SessionFactory
from social_connect.infrastructure.observability.metrics import PUBLISH_ATTEMPTS_TOTAL, PUBLISH_FAILURES_TOTAL
from social_connect.integrations.platform_clients import (
    ContentValidationError,
    NotConnectedError,
    PlatformClient,
    PlatformClientSet,
    PlatformError,
    PublishReceipt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PublishResult:
    success: bool
    platform: str
    message: str | None = None
    error: str | None = None
    error_code: str | None = None
    user_action: str | None = None
    remediation: str | None = None
    retryable: bool = False
    retry_after: int | None = None
    content_id: UUID | None = None
    external_post_id: str | None = None
    warning: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.content_id is not None:
            payload["content_id"] = str(self.content_id)
        return payload


def _savepoint(db: Session, step: str, fn: Callable[[], T], **log_context) -> T | None:
    """Run one bookkeeping write in its own savepoint; failures are logged and dropped."""
    try:
        with db.begin_nested():
            return fn()
    except Exception:
        logger.exception(
            "publish_bookkeeping_failed step=%s %s",
            step,
            " ".join(f"{key}={value}" for key, value in log_context.items()),
        )
        return None


class PublishOrchestrator:
    def __init__(
        self,
        *,
        verifier: ConnectionVerifier,
        clients: PlatformClientSet,
        session_factory: SessionFactory,
    ) -> None:
        self.verifier = verifier
        self.clients = clients
        self.session_factory = session_factory

    async def publish(
        self,
        *,
        user_id: UUID,
        platform: str,
        text: str,
        media_url: str | None = None,
        content_id: UUID | None = None,
        intent: str | None = None,
        tasks: BackgroundTaskSet | None = None,
    ) -> PublishResult:
        normalized = (platform or "").strip().lower()
        try:
            client = self.clients.get(normalized)
            body = client.validate_content(text, media_url)
        except PlatformError as exc:
            return self._failure(user_id, normalized, exc, notify_user=False)

        if content_id is not None:
            rejection = self._stored_content_rejection(user_id, normalized, content_id)
            if rejection is not None:
                return self._failure(user_id, normalized, rejection, notify_user=False)

        if not await self.verifier.is_connected(user_id, normalized, tasks=tasks):
            logger.info("publish_blocked_not_connected user_id=%s platform=%s", user_id, normalized)
            return PublishResult(
                success=False,
                platform=normalized,
                error=f"{client.display_name} account is not connected. Please connect your account first.",
                error_code=NotConnectedError.error_code,
                user_action=RECONNECT,
            )

        try:
            receipt = await self._send(client, user_id, body, media_url)
        except PlatformError as exc:
            return self._failure(user_id, normalized, exc, notify_user=True)

        return self._record_success(
            user_id=user_id,
            client=client,
            receipt=receipt,
            content_id=content_id,
            intent=intent,
        )

    def _stored_content_rejection(self, user_id: UUID, platform: str, content_id: UUID) -> ContentValidationError | None:
        """A stored row may only be published once, by its owner, to its own platform."""
        with self.session_factory() as db:
            content = get_content(db, user_id=user_id, content_id=content_id)
            if content is None:
                reason = f"Content {content_id} not found"
            elif content.status == ContentStatus.PUBLISHED.value:
                reason = f"Content {content_id} is already published"
            elif content.platform != platform:
                reason = f"Content {content_id} is meant for {content.platform}, not {platform}"
            else:
                return None
        return ContentValidationError(reason, platform=platform)

    async def _send(self, client: PlatformClient, user_id: UUID, body: str, media_url: str | None) -> PublishReceipt:
        platform = client.platform
        if not await self.verifier.verify_now(user_id, platform):
            raise NotConnectedError(
                f"{client.display_name} account is not connected or its token was revoked", platform=platform
            )
        with self.session_factory() as db:
            credentials = credentials_for(get_connection(db, user_id=user_id, platform=platform))

        PUBLISH_ATTEMPTS_TOTAL.labels(platform=platform).inc()
        logger.info("publish_started user_id=%s platform=%s length=%s", user_id, platform, len(body))
        return await client.publish(credentials, text=body, media_url=media_url)

    def _record_success(
        self,
        *,
        user_id: UUID,
        client: PlatformClient,
        receipt: PublishReceipt,
        content_id: UUID | None,
        intent: str | None,
    ) -> PublishResult:
        platform = client.platform
        context = {"user_id": user_id, "platform": platform, "external_post_id": receipt.external_post_id}

        with self.session_factory() as db:
            content = _savepoint(
                db,
                "content",
                lambda: record_published_content(
                    db,
                    user_id=user_id,
                    platform=platform,
                    text=receipt.text,
                    media_url=receipt.media_url,
                    external_id=receipt.external_post_id,
                    content_id=content_id,
                    intent=intent,
                ),
                **context,
            )
            stored_content_id = content.id if content is not None else None
            if stored_content_id is not None:
                _savepoint(db, "metrics", lambda: create_zeroed_metrics(db, content_id=stored_content_id), **context)
            _savepoint(
                db,
                "activity",
                lambda: record_activity(
                    db,
                    user_id=user_id,
                    platform=platform,
                    activity_type="content_published",
                    detail={"external_post_id": receipt.external_post_id, "warning": receipt.warning},
                    content_id=stored_content_id,
                ),
                **context,
            )
            _savepoint(
                db,
                "notification",
                lambda: notify(
                    db,
                    user_id=user_id,
                    message=f"Your post was published to {client.display_name}",
                    notification_type=NotificationType.SUCCESS,
                    related_content_id=stored_content_id,
                ),
                **context,
            )
            try:
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("publish_bookkeeping_commit_failed user_id=%s platform=%s", user_id, platform)
                stored_content_id = None

        logger.info(
            "publish_succeeded user_id=%s platform=%s external_post_id=%s content_id=%s",
            user_id,
            platform,
            receipt.external_post_id,
            stored_content_id,
        )
        message = f"Successfully published to {client.display_name}"
        if receipt.warning:
            message = f"{message}. {receipt.warning}"
        return PublishResult(
            success=True,
            platform=platform,
            message=message,
            content_id=stored_content_id,
            external_post_id=receipt.external_post_id,
            warning=receipt.warning,
        )

    def _failure(self, user_id: UUID, platform: str, exc: PlatformError, *, notify_user: bool) -> PublishResult:
        normalized = map_provider_error(provider=platform or "platform", exc=exc)
        PUBLISH_FAILURES_TOTAL.labels(platform=platform or "unknown", error_code=normalized.error_code).inc()
        logger.warning(
            "publish_failed user_id=%s platform=%s error_code=%s category=%s error=%s",
            user_id,
            platform,
            normalized.error_code,
            normalized.category,
            exc,
        )
        if notify_user:
            try:
                with self.session_factory() as db:
                    notify(
                        db,
                        user_id=user_id,
                        message=normalized.message,
                        notification_type=NotificationType.ERROR,
                    )
                    db.commit()
            except Exception:
                logger.exception("publish_failure_notification_failed user_id=%s platform=%s", user_id, platform)
        return PublishResult(
            success=False,
            platform=platform,
            error=normalized.message,
            error_code=normalized.error_code,
            user_action=normalized.user_action,
            remediation=normalized.remediation,
            retryable=normalized.retryable,
            retry_after=normalized.retry_after,
        )
