import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from social_connect.domain.models.activity_history import ActivityHistory
from social_connect.domain.models.content import Content, ContentMetrics, ContentStatus, ContentType
from social_connect.infrastructure.db.upsert import upsert_row
from social_connect.integrations.platform_clients import PlatformPost

logger = logging.getLogger(__name__)

DEFAULT_INTENT = "news"
VIDEO_SUFFIXES = (".mp4", ".mov")
RETRY_PENDING_PREFIX = "retry_pending:"
# Longer than the largest retry countdown plus the publish lock TTL.
RETRY_PENDING_RECOVERY_SECONDS = 3600

_STATUS_ORDER = {
    ContentStatus.DRAFT.value: 0,
    ContentStatus.SCHEDULED.value: 1,
    ContentStatus.PUBLISHED.value: 2,
}


class ContentStatusError(ValueError):
    pass


def infer_content_type(media_url: str | None, media_type: str | None = None) -> str:
    if media_type:
        normalized = media_type.strip().lower()
        if normalized in {"video", "reels", "animated_gif"}:
            return ContentType.VIDEO.value
        if normalized in {"image", "photo", "carousel_album"}:
            return ContentType.IMAGE.value
    if not media_url:
        return ContentType.TEXT.value
    if media_url.lower().split("?", 1)[0].endswith(VIDEO_SUFFIXES):
        return ContentType.VIDEO.value
    return ContentType.IMAGE.value


def advance_status(content: Content, target: str) -> Content:
    """Move ``content`` forward; statuses never go back."""
    if target not in _STATUS_ORDER:
        raise ContentStatusError(f"Unknown content status: {target}")
    current = content.status or ContentStatus.DRAFT.value
    if _STATUS_ORDER[target] < _STATUS_ORDER[current]:
        raise ContentStatusError(f"Content {content.id} cannot move from {current} to {target}")
    content.status = target
    if target == ContentStatus.PUBLISHED.value and content.published_at is None:
        content.published_at = datetime.now(UTC)
    return content


def get_content(db: Session, *, user_id: UUID, content_id: UUID) -> Content | None:
    return db.execute(
        select(Content).where(Content.id == content_id, Content.user_id == user_id)
    ).scalar_one_or_none()


def create_draft(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    text: str,
    media_url: str | None = None,
    intent: str | None = None,
) -> Content:
    content = Content(
        user_id=user_id,
        platform=platform,
        type=infer_content_type(media_url),
        intent=intent or DEFAULT_INTENT,
        content=text,
        media_url=media_url,
        status=ContentStatus.DRAFT.value,
    )
    db.add(content)
    db.flush()
    return content


def schedule_content(db: Session, content: Content, *, scheduled_for: datetime) -> Content:
    advance_status(content, ContentStatus.SCHEDULED.value)
    content.scheduled_for = scheduled_for
    content.last_error = None
    db.add(content)
    return content


def due_scheduled_content(db: Session, *, now: datetime | None = None, limit: int = 100) -> list[Content]:
    """Scheduled rows whose time has come and that have not failed permanently.

    A row parked with a pending retry is picked up again once it has sat
    untouched for longer than any retry could have been delayed, which means
    the broker lost the retry.
    """
    cutoff = now or datetime.now(UTC)
    stale_before = cutoff - timedelta(seconds=RETRY_PENDING_RECOVERY_SECONDS)
    return list(
        db.execute(
            select(Content)
            .where(
                Content.status == ContentStatus.SCHEDULED.value,
                Content.scheduled_for.is_not(None),
                Content.scheduled_for <= cutoff,
                or_(
                    Content.last_error.is_(None),
                    and_(
                        Content.last_error.startswith(RETRY_PENDING_PREFIX, autoescape=True),
                        Content.updated_at <= stale_before,
                    ),
                ),
            )
            .order_by(Content.scheduled_for.asc())
            .limit(limit)
        ).scalars()
    )


def record_published_content(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    text: str,
    media_url: str | None,
    external_id: str,
    content_id: UUID | None = None,
    intent: str | None = None,
) -> Content:
    if content_id is not None:
        content = get_content(db, user_id=user_id, content_id=content_id)
        if content is None:
            raise LookupError(f"Content {content_id} not found")
        if content.status == ContentStatus.PUBLISHED.value:
            raise ContentStatusError(f"Content {content_id} is already published")
        if content.platform != platform:
            raise ContentStatusError(f"Content {content_id} belongs to {content.platform}, not {platform}")
        content.external_id = external_id
        content.last_error = None
        advance_status(content, ContentStatus.PUBLISHED.value)
        db.add(content)
        db.flush()
        return content

    content = Content(
        user_id=user_id,
        platform=platform,
        type=infer_content_type(media_url),
        intent=intent or DEFAULT_INTENT,
        content=text,
        media_url=media_url,
        status=ContentStatus.PUBLISHED.value,
        external_id=external_id,
        published_at=datetime.now(UTC),
    )
    db.add(content)
    db.flush()
    return content


def create_zeroed_metrics(db: Session, *, content_id: UUID) -> ContentMetrics:
    return upsert_row(
        db,
        ContentMetrics,
        values={"content_id": content_id, "likes": 0, "comments": 0, "shares": 0, "views": 0, "impressions": 0, "reach": 0},
        conflict_columns=("content_id",),
        update_columns=(),
    )


def record_activity(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    activity_type: str,
    detail: dict | None = None,
    content_id: UUID | None = None,
) -> ActivityHistory:
    activity = ActivityHistory(
        user_id=user_id,
        content_id=content_id,
        platform=platform,
        activity_type=activity_type,
        activity_detail=detail or {},
    )
    db.add(activity)
    db.flush()
    return activity


def upsert_imported_post(db: Session, *, user_id: UUID, platform: str, post: PlatformPost) -> Content:
    """Store a post fetched from the platform, keyed by its external id."""
    published_at = post.created_at or datetime.now(UTC)
    content = upsert_row(
        db,
        Content,
        values={
            "user_id": user_id,
            "platform": platform,
            "external_id": post.external_id,
            "type": infer_content_type(post.media_url, post.media_type),
            "intent": DEFAULT_INTENT,
            "content": post.text,
            "media_url": post.media_url,
            "status": ContentStatus.PUBLISHED.value,
            "published_at": published_at,
        },
        conflict_columns=("user_id", "platform", "external_id"),
        update_columns=("content", "media_url", "type"),
    )
    upsert_row(
        db,
        ContentMetrics,
        values={
            "content_id": content.id,
            "likes": post.likes,
            "comments": post.comments,
            "shares": post.shares,
            "impressions": post.impressions,
            "views": 0,
            "reach": 0,
        },
        conflict_columns=("content_id",),
        update_columns=("likes", "comments", "shares", "impressions"),
    )
    return content
