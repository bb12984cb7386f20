from datetime import UTC, datetime, timedelta

import pytest

from social_connect.application.services.content_service import (
    RETRY_PENDING_RECOVERY_SECONDS,
    ContentStatusError,
    advance_status,
    create_draft,
    due_scheduled_content,
    infer_content_type,
    record_published_content,
    schedule_content,
)
from social_connect.domain.models.content import Content


@pytest.mark.parametrize(
    ("media_url", "media_type", "expected"),
    [
        (None, None, "text"),
        ("https://cdn.example.com/photo.jpg", None, "image"),
        ("https://cdn.example.com/clip.MP4?sig=abc", None, "video"),
        ("https://cdn.example.com/clip", "REELS", "video"),
        ("https://cdn.example.com/album", "CAROUSEL_ALBUM", "image"),
        (None, "photo", "image"),
    ],
)
def test_infer_content_type(media_url, media_type, expected):
    assert infer_content_type(media_url, media_type) == expected


def test_status_only_moves_forward():
    content = Content(status="draft")

    advance_status(content, "scheduled")
    advance_status(content, "published")

    assert content.published_at is not None
    with pytest.raises(ContentStatusError):
        advance_status(content, "draft")
    with pytest.raises(ContentStatusError):
        advance_status(content, "archived")


def test_due_scheduled_content_skips_future_failed_and_published(db, user_id):
    now = datetime.now(UTC)
    due = create_draft(db, user_id=user_id, platform="twitter", text="due")
    schedule_content(db, due, scheduled_for=now - timedelta(minutes=5))
    future = create_draft(db, user_id=user_id, platform="twitter", text="future")
    schedule_content(db, future, scheduled_for=now + timedelta(hours=1))
    failed = create_draft(db, user_id=user_id, platform="twitter", text="failed")
    schedule_content(db, failed, scheduled_for=now - timedelta(minutes=5))
    failed.last_error = "permission_denied"
    create_draft(db, user_id=user_id, platform="twitter", text="draft")
    db.commit()

    rows = due_scheduled_content(db, now=now)

    assert [row.content for row in rows] == ["due"]


def test_rescheduling_clears_last_error(db, user_id):
    content = create_draft(db, user_id=user_id, platform="instagram", text="caption", media_url="https://cdn.example.com/a.png")
    content.last_error = "rate_limited"

    schedule_content(db, content, scheduled_for=datetime.now(UTC))

    assert content.type == "image"
    assert content.status == "scheduled"
    assert content.last_error is None


def test_record_published_content_requires_owned_row(db, user_id):
    from uuid import uuid4

    with pytest.raises(LookupError):
        record_published_content(
            db,
            user_id=user_id,
            platform="twitter",
            text="hello",
            media_url=None,
            external_id="tweet-9",
            content_id=uuid4(),
        )


def test_record_published_content_refuses_published_or_foreign_platform_rows(db, user_id):
    published = create_draft(db, user_id=user_id, platform="twitter", text="already out")
    advance_status(published, "published")
    instagram = create_draft(db, user_id=user_id, platform="instagram", text="caption", media_url="https://cdn.example.com/a.png")
    db.flush()

    for content in (published, instagram):
        with pytest.raises(ContentStatusError):
            record_published_content(
                db,
                user_id=user_id,
                platform="twitter",
                text=content.content,
                media_url=None,
                external_id="tweet-9",
                content_id=content.id,
            )
    assert published.external_id is None
    assert instagram.status == "draft"


def test_due_scheduled_content_recovers_retries_the_broker_lost(db, user_id):
    now = datetime.now(UTC)
    stale = create_draft(db, user_id=user_id, platform="twitter", text="lost retry")
    schedule_content(db, stale, scheduled_for=now - timedelta(hours=3))
    fresh = create_draft(db, user_id=user_id, platform="twitter", text="retry in flight")
    schedule_content(db, fresh, scheduled_for=now - timedelta(hours=3))
    db.flush()
    stale.last_error = "retry_pending:rate_limited"
    stale.updated_at = now - timedelta(seconds=RETRY_PENDING_RECOVERY_SECONDS + 60)
    fresh.last_error = "retry_pending:rate_limited"
    fresh.updated_at = now - timedelta(minutes=5)
    db.commit()

    rows = due_scheduled_content(db, now=now)

    assert [row.content for row in rows] == ["lost retry"]
