import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["APP_ORIGIN"] = "http://localhost:3000"
os.environ["PUBLIC_APP_URL"] = "http://localhost:3000"
os.environ["AUTH_JWT_SECRET"] = "test-session-secret"
os.environ["ENABLED_PLATFORMS"] = "twitter,instagram"
os.environ["TWITTER_API_KEY"] = "consumer-key"
os.environ["TWITTER_API_SECRET"] = "consumer-secret"
os.environ["TWITTER_ACCESS_TOKEN"] = "static-access-token"
os.environ["TWITTER_ACCESS_TOKEN_SECRET"] = "static-access-secret"
os.environ["TWITTER_CALLBACK_URL"] = "http://localhost:8000/connections/twitter/callback"
os.environ["INSTAGRAM_APP_ID"] = "ig-app-id"
os.environ["INSTAGRAM_APP_SECRET"] = "ig-app-secret"
os.environ["INSTAGRAM_REDIRECT_URI"] = "http://localhost:8000/connections/instagram/callback"
os.environ["INSTAGRAM_WEBHOOK_VERIFY_TOKEN"] = "verify-me"

from uuid import UUID, uuid4

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from social_connect.application.services.platform_connection_service import upsert_connection
from social_connect.application.services.service_registry import build_service_registry
from social_connect.core.config import settings
from social_connect.core.security import create_session_token
from social_connect.domain import models  # noqa: F401
from social_connect.domain.models.user import User
from social_connect.infrastructure.db.base import Base

TEST_AUTH_ID = "auth-user-1"
TWITTER_HOST = "api.twitter.com"
INSTAGRAM_API_HOST = "api.instagram.com"
INSTAGRAM_GRAPH_HOST = "graph.instagram.com"


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the services make."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        return True

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def exists(self, key):
        self._check()
        return int(key in self.store)

    def ping(self):
        self._check()
        return True

    def eval(self, script, numkeys, key, token):
        self._check()
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


class FakePlatformAPI:
    """Routes httpx requests by (method, host, path) to queued responses.

    The last queued response for a route is reused for every further call.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, host, path, *, status_code=200, json=None, text=None, headers=None, handler=None):
        def respond(request: httpx.Request) -> httpx.Response:
            if handler is not None:
                return handler(request)
            if json is not None:
                return httpx.Response(status_code, json=json, headers=headers)
            return httpx.Response(status_code, text=text or "", headers=headers)

        self.routes.setdefault((method, host, path), []).append(respond)
        return self

    def reset(self, method, host, path) -> None:
        self.routes.pop((method, host, path), None)

    def calls(self, method, host, path) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.host == host and request.url.path == path
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.host, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"message": f"unmocked {request.method} {request.url}"}})
        respond = queue[0] if len(queue) == 1 else queue.pop(0)
        return respond(request)


def twitter_profile_payload(*, followers=100, username="alice") -> dict:
    return {
        "data": {
            "id": "42",
            "username": username,
            "name": "Alice",
            "profile_image_url": "https://pbs.twimg.com/alice.png",
            "public_metrics": {"followers_count": followers, "following_count": 10, "tweet_count": 3},
        }
    }


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def platform_api():
    return FakePlatformAPI()


@pytest.fixture
def twitter_api(platform_api):
    request_tokens = iter(f"request-token-{index}" for index in range(1, 100))

    def request_token(request: httpx.Request) -> httpx.Response:
        token = next(request_tokens)
        return httpx.Response(
            200,
            text=f"oauth_token={token}&oauth_token_secret={token}-secret&oauth_callback_confirmed=true",
        )

    platform_api.add("POST", TWITTER_HOST, "/oauth/request_token", handler=request_token)
    platform_api.add(
        "POST",
        TWITTER_HOST,
        "/oauth/access_token",
        text="oauth_token=user-token&oauth_token_secret=user-secret&user_id=42&screen_name=alice",
    )
    platform_api.add("GET", TWITTER_HOST, "/2/users/me", json=twitter_profile_payload())
    platform_api.add("POST", TWITTER_HOST, "/2/tweets", status_code=201, json={"data": {"id": "tweet-1", "text": "hi"}})
    platform_api.add("GET", TWITTER_HOST, "/2/users/42/tweets", json={"data": []})
    return platform_api


@pytest.fixture
def services(session_factory, fake_redis, platform_api):
    return build_service_registry(
        settings,
        session_factory=session_factory,
        redis_client=fake_redis,
        transport=httpx.MockTransport(platform_api.handle),
    )


@pytest.fixture
def user_id(session_factory) -> UUID:
    new_id = uuid4()
    with session_factory() as session:
        session.add(User(id=new_id, auth_id=TEST_AUTH_ID, email="alice@example.com"))
        session.commit()
    return new_id


@pytest.fixture
def connect_platform(session_factory):
    def connect(user_id: UUID, platform: str, **fields) -> None:
        values = {
            "connected": True,
            "access_token": "user-token",
            "refresh_token": "user-secret" if platform == "twitter" else None,
            "external_account_id": "42",
            "username": "alice",
        }
        values.update(fields)
        with session_factory() as session:
            upsert_connection(session, user_id=user_id, platform=platform, **values)
            session.commit()

    return connect


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(TEST_AUTH_ID)}"}


@pytest.fixture
def client(services, session_factory):
    from fastapi.testclient import TestClient

    from main import app
    from social_connect.infrastructure.db.session import get_db

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.services = services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.services = None
