import asyncio
import json
from uuid import uuid4

import httpx
from sqlalchemy import func, select

from conftest import TWITTER_HOST
from social_connect.application.services import publish_orchestrator
from social_connect.application.services.content_service import create_draft, schedule_content
from social_connect.domain.models.activity_history import ActivityHistory
from social_connect.domain.models.content import Content, ContentMetrics
from social_connect.domain.models.notification import Notification
from social_connect.domain.models.user import User
from social_connect.integrations.platform_clients.twitter_client import PERMISSION_REMEDIATION

TWEETS_PATH = "/2/tweets"


def _publish(services, user_id, platform="twitter", text="Hello world", **kwargs):
    return asyncio.run(services.publisher.publish(user_id=user_id, platform=platform, text=text, **kwargs))


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_successful_publish_records_content_metrics_activity_and_notification(
    services, twitter_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")

    result = _publish(services, user_id, text="  Hello world  ", intent="promo")

    assert result.success is True
    assert result.external_post_id == "tweet-1"
    assert result.message == "Successfully published to Twitter"
    sent = json.loads(twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH)[0].content)
    assert sent == {"text": "Hello world"}

    with session_factory() as db:
        content = db.get(Content, result.content_id)
        assert content.status == "published"
        assert content.external_id == "tweet-1"
        assert content.intent == "promo"
        assert content.type == "text"
        assert content.published_at is not None
        metrics = db.execute(select(ContentMetrics).where(ContentMetrics.content_id == content.id)).scalar_one()
        assert (metrics.likes, metrics.comments, metrics.shares, metrics.views) == (0, 0, 0, 0)
        activity = db.execute(select(ActivityHistory)).scalar_one()
        assert activity.activity_type == "content_published"
        assert activity.activity_detail["external_post_id"] == "tweet-1"
        notification = db.execute(select(Notification)).scalar_one()
        assert notification.type == "success"
        assert notification.related_content_id == content.id


def test_media_on_twitter_publishes_text_with_warning(services, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")

    result = _publish(services, user_id, media_url="https://cdn.example.com/photo.jpg")

    assert result.success is True
    assert result.warning == "Twitter media upload is not enabled. Published as text-only."
    assert result.warning in result.message


def test_not_connected_blocks_publish(services, twitter_api, user_id, session_factory):
    result = _publish(services, user_id)

    assert result.success is False
    assert result.error_code == "not_connected"
    assert result.user_action == "reconnect"
    assert twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH) == []
    assert _count(session_factory, Content) == 0


def test_revoked_token_blocks_publish(services, platform_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    platform_api.add("GET", TWITTER_HOST, "/2/users/me", status_code=401, text="Unauthorized")

    result = _publish(services, user_id)

    assert result.error_code == "not_connected"
    assert platform_api.calls("POST", TWITTER_HOST, TWEETS_PATH) == []


def test_invalid_content_fails_before_any_platform_call(services, twitter_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")

    empty = _publish(services, user_id, text="   ")
    too_long = _publish(services, user_id, text="x" * 281)
    instagram_without_media = _publish(services, user_id, platform="instagram", text="caption")

    for result in (empty, too_long, instagram_without_media):
        assert result.success is False
        assert result.error_code == "validation_error"
        assert result.user_action == "fix_content"
    assert twitter_api.requests == []
    assert _count(session_factory, Notification) == 0


def test_unknown_platform_is_rejected(services, user_id):
    result = _publish(services, user_id, platform="myspace")

    assert result.success is False
    assert result.error_code == "unsupported_platform"


def test_rate_limit_is_retryable_and_notified(services, twitter_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=429, text="Too Many Requests", headers={"retry-after": "60"})

    result = _publish(services, user_id)

    assert result.success is False
    assert result.error_code == "rate_limited"
    assert result.retryable is True
    assert result.user_action == "retry_later"
    assert result.retry_after is not None
    with session_factory() as db:
        notification = db.execute(select(Notification)).scalar_one()
        assert notification.type == "error"
    assert _count(session_factory, Content) == 0


def test_write_permission_failure_carries_remediation(services, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")
    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=403, text="You are not permitted to perform this action")

    result = _publish(services, user_id)

    assert result.error_code == "permission_denied"
    assert result.user_action == "reconnect"
    assert result.remediation == PERMISSION_REMEDIATION


def test_duplicate_tweet_is_resubmitted_with_suffix(services, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")
    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=403, text="You are not allowed to create a Tweet with duplicate content.")
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=201, json={"data": {"id": "tweet-2"}})

    result = _publish(services, user_id, text="Same old")

    assert result.success is True
    assert result.external_post_id == "tweet-2"
    attempts = [json.loads(request.content)["text"] for request in twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH)]
    assert attempts[0] == "Same old"
    assert attempts[1].startswith("Same old #")


def test_publishing_scheduled_content_advances_the_existing_row(
    services, twitter_api, user_id, connect_platform, session_factory
):
    from datetime import UTC, datetime

    connect_platform(user_id, "twitter")
    with session_factory() as db:
        draft = create_draft(db, user_id=user_id, platform="twitter", text="Scheduled hello")
        schedule_content(db, draft, scheduled_for=datetime.now(UTC))
        db.commit()
        content_id = draft.id

    result = _publish(services, user_id, text="Scheduled hello", content_id=content_id)

    assert result.success is True
    assert result.content_id == content_id
    assert _count(session_factory, Content) == 1
    with session_factory() as db:
        assert db.get(Content, content_id).status == "published"


def test_bookkeeping_failure_does_not_fail_the_publish(
    services, twitter_api, user_id, connect_platform, session_factory, monkeypatch
):
    connect_platform(user_id, "twitter")

    def failing_record(db, **kwargs):
        raise RuntimeError("content table unavailable")

    monkeypatch.setattr(publish_orchestrator, "record_published_content", failing_record)

    result = _publish(services, user_id)

    assert result.success is True
    assert result.external_post_id == "tweet-1"
    assert result.content_id is None
    assert _count(session_factory, Content) == 0
    assert _count(session_factory, ActivityHistory) == 1
    assert _count(session_factory, Notification) == 1


def test_republishing_a_published_row_is_rejected_without_posting(
    services, twitter_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")
    first = _publish(services, user_id, text="Once only")

    second = _publish(services, user_id, text="Once only", content_id=first.content_id)

    assert first.success is True
    assert second.success is False
    assert second.error_code == "validation_error"
    assert len(twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH)) == 1
    with session_factory() as db:
        assert db.get(Content, first.content_id).external_id == "tweet-1"


def test_row_for_another_platform_is_rejected_and_left_untouched(
    services, twitter_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")
    with session_factory() as db:
        draft = create_draft(
            db, user_id=user_id, platform="instagram", text="IG caption", media_url="https://cdn.example.com/a.jpg"
        )
        db.commit()
        content_id = draft.id

    result = _publish(services, user_id, text="IG caption", content_id=content_id)

    assert result.success is False
    assert result.error_code == "validation_error"
    assert twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH) == []
    with session_factory() as db:
        content = db.get(Content, content_id)
        assert (content.platform, content.status, content.external_id) == ("instagram", "draft", None)


def test_unknown_content_id_is_rejected_before_any_platform_call(
    services, twitter_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")

    result = _publish(services, user_id, content_id=uuid4())

    assert result.success is False
    assert result.error_code == "validation_error"
    assert twitter_api.requests == []
    assert _count(session_factory, Notification) == 0


def test_another_users_row_is_treated_as_missing(services, twitter_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    with session_factory() as db:
        other = User(auth_id="someone-else")
        db.add(other)
        db.flush()
        draft = create_draft(db, user_id=other.id, platform="twitter", text="Not yours")
        db.commit()
        content_id = draft.id

    result = _publish(services, user_id, text="Not yours", content_id=content_id)

    assert result.error_code == "validation_error"
    assert twitter_api.calls("POST", TWITTER_HOST, TWEETS_PATH) == []


def test_html_page_instead_of_json_is_a_retryable_failure(services, twitter_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=200, text="<html>upstream proxy</html>")

    result = _publish(services, user_id)

    assert result.success is False
    assert result.error_code == "transient_network_error"
    assert result.retryable is True
    assert _count(session_factory, Content) == 0


def test_malformed_success_body_is_a_structured_failure(services, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")
    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, status_code=201, text="created")

    result = _publish(services, user_id)

    assert result.success is False
    assert result.error_code == "platform_request_failed"
    assert result.retryable is False


def test_network_failure_maps_to_retryable_error(services, twitter_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    twitter_api.reset("POST", TWITTER_HOST, TWEETS_PATH)
    twitter_api.add("POST", TWITTER_HOST, TWEETS_PATH, handler=broken)

    result = _publish(services, user_id)

    assert result.error_code == "transient_network_error"
    assert result.retryable is True
