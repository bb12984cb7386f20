import asyncio

import httpx

from conftest import TWITTER_HOST, twitter_profile_payload
from social_connect.application.services.platform_connection_service import get_connection, upsert_connection
from social_connect.application.services.session_scope import BackgroundTaskSet

ME_PATH = "/2/users/me"


def _stored(session_factory, user_id, platform="twitter"):
    with session_factory() as db:
        connection = get_connection(db, user_id=user_id, platform=platform)
        db.expunge_all()
        return connection


def test_positive_verification_updates_row_and_cache(services, platform_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    platform_api.add("GET", TWITTER_HOST, ME_PATH, json=twitter_profile_payload())

    status = asyncio.run(services.verifier.verify_detailed(user_id, "twitter"))

    assert status.connected is True
    assert status.verified_live is True
    assert status.username == "alice"
    assert status.last_verified is not None
    assert services.cache.get(user_id, "twitter") is True
    assert _stored(session_factory, user_id).last_verified is not None


def test_rejection_is_confirmed_against_the_row(services, platform_api, user_id, connect_platform, session_factory):
    connect_platform(user_id, "twitter")
    services.cache.set(user_id, "twitter", True)
    platform_api.add("GET", TWITTER_HOST, ME_PATH, status_code=401, text="Unauthorized")

    assert asyncio.run(services.verifier.verify_now(user_id, "twitter")) is False
    assert services.cache.get(user_id, "twitter") is None
    assert _stored(session_factory, user_id).connected is False


def test_permission_rejection_carries_remediation(services, platform_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")
    platform_api.add("GET", TWITTER_HOST, ME_PATH, status_code=403, text="Forbidden")

    status = asyncio.run(services.verifier.verify_detailed(user_id, "twitter"))

    assert status.connected is False
    assert "Read and write" in status.message


def test_missing_connection_clears_cache(services, platform_api, user_id):
    services.cache.set(user_id, "twitter", True)

    status = asyncio.run(services.verifier.verify_detailed(user_id, "twitter"))

    assert status.connected is False
    assert services.cache.get(user_id, "twitter") is None
    assert platform_api.requests == []


def test_unreachable_platform_falls_back_to_cache_without_writing(
    services, platform_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")
    services.cache.set(user_id, "twitter", False)
    platform_api.add("GET", TWITTER_HOST, ME_PATH, status_code=503, text="Service Unavailable")

    status = asyncio.run(services.verifier.verify_detailed(user_id, "twitter"))

    assert status.connected is False
    assert status.verified_live is False
    assert _stored(session_factory, user_id).connected is True


def test_unreachable_platform_without_cache_uses_stored_flag(services, platform_api, user_id, connect_platform):
    connect_platform(user_id, "twitter")

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    platform_api.add("GET", TWITTER_HOST, ME_PATH, handler=broken)

    status = asyncio.run(services.verifier.verify_detailed(user_id, "twitter"))

    assert status.connected is True
    assert status.verified_live is False


def test_rate_limited_verification_is_not_treated_as_disconnect(
    services, platform_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")
    platform_api.add("GET", TWITTER_HOST, ME_PATH, status_code=429, text="Too Many Requests")

    assert asyncio.run(services.verifier.verify_now(user_id, "twitter")) is True
    assert _stored(session_factory, user_id).connected is True


def test_reconnect_during_verification_wins_over_stale_rejection(
    services, platform_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")

    def reconnect_then_reject(request: httpx.Request) -> httpx.Response:
        with session_factory() as db:
            upsert_connection(db, user_id=user_id, platform="twitter", connected=True, access_token="fresh-token")
            db.commit()
        return httpx.Response(401, text="Unauthorized")

    platform_api.add("GET", TWITTER_HOST, ME_PATH, handler=reconnect_then_reject)

    connected = asyncio.run(services.verifier.verify_now(user_id, "twitter"))

    assert connected is True
    assert services.cache.get(user_id, "twitter") is True
    assert _stored(session_factory, user_id).connected is True


def test_cached_answer_returns_immediately_and_reconciles_in_background(
    services, platform_api, user_id, connect_platform, session_factory
):
    connect_platform(user_id, "twitter")
    services.cache.set(user_id, "twitter", True)
    platform_api.add("GET", TWITTER_HOST, ME_PATH, status_code=401, text="Unauthorized")

    async def scenario():
        tasks = BackgroundTaskSet()
        answer = await services.verifier.is_connected(user_id, "twitter", tasks=tasks)
        pending = len(tasks)
        await tasks.drain()
        return answer, pending

    answer, pending = asyncio.run(scenario())

    assert answer is True
    assert pending == 1
    assert services.cache.get(user_id, "twitter") is None
    assert _stored(session_factory, user_id).connected is False


def test_cache_outage_degrades_to_live_verification(services, platform_api, fake_redis, user_id, connect_platform):
    connect_platform(user_id, "twitter")
    platform_api.add("GET", TWITTER_HOST, ME_PATH, json=twitter_profile_payload())
    fake_redis.fail = True

    assert asyncio.run(services.verifier.is_connected(user_id, "twitter")) is True
    assert len(platform_api.requests) == 1


def test_instagram_expired_token_needs_reauth(services, platform_api, user_id, connect_platform):
    from datetime import UTC, datetime, timedelta

    connect_platform(user_id, "instagram", token_expires_at=datetime.now(UTC) - timedelta(days=1))

    status = asyncio.run(services.verifier.verify_detailed(user_id, "instagram"))

    assert status.connected is False
    assert status.needs_reauth is True
    assert platform_api.requests == []
