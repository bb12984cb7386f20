import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from redis import Redis
from redis.exceptions import RedisError

from social_connect.application.services.platform_connection_service import (
    credentials_for,
    get_connection,
    mark_disconnected,
    mark_verified,
)
from social_connect.application.services.session_scope import BackgroundTaskSet
from social_connect.core.config import settings
from social_connect.domain.models.platform_connection import PlatformConnection
from social_connect.infrastructure.db.session import SessionFactory
from social_connect.infrastructure.observability.metrics import CONNECTION_VERIFICATIONS_TOTAL, measure_redis
from social_connect.integrations.platform_clients import (
    PlatformClientSet,
    RateLimitError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)


class ConnectionStateCache:
    """Per user/platform connection flag and auth-pending marker kept in Redis.

    Redis failures never fail a request: reads degrade to "unknown" and
    writes are dropped with a warning.
    """

    def __init__(
        self,
        redis_client: Redis,
        *,
        ttl_seconds: int | None = None,
        pending_ttl_seconds: int | None = None,
    ) -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.connection_cache_ttl_seconds
        self.pending_ttl_seconds = pending_ttl_seconds or settings.auth_pending_ttl_seconds

    @staticmethod
    def state_key(user_id: UUID, platform: str) -> str:
        return f"connection_state:{user_id}:{platform}"

    @staticmethod
    def pending_key(user_id: UUID, platform: str) -> str:
        return f"auth_pending:{user_id}:{platform}"

    def get(self, user_id: UUID, platform: str) -> bool | None:
        try:
            with measure_redis("connection_state_get"):
                raw = self.redis.get(self.state_key(user_id, platform))
        except RedisError:
            logger.warning("connection_state_cache_read_failed user_id=%s platform=%s", user_id, platform)
            return None
        if raw is None:
            return None
        return str(raw) == "1"

    def set(self, user_id: UUID, platform: str, connected: bool) -> None:
        try:
            with measure_redis("connection_state_set"):
                self.redis.set(self.state_key(user_id, platform), "1" if connected else "0", ex=self.ttl_seconds)
        except RedisError:
            logger.warning("connection_state_cache_write_failed user_id=%s platform=%s", user_id, platform)

    def clear(self, user_id: UUID, platform: str) -> None:
        try:
            with measure_redis("connection_state_clear"):
                self.redis.delete(self.state_key(user_id, platform))
        except RedisError:
            logger.warning("connection_state_cache_clear_failed user_id=%s platform=%s", user_id, platform)

    def set_pending(self, user_id: UUID, platform: str) -> None:
        try:
            with measure_redis("auth_pending_set"):
                self.redis.set(self.pending_key(user_id, platform), "1", ex=self.pending_ttl_seconds)
        except RedisError:
            logger.warning("auth_pending_write_failed user_id=%s platform=%s", user_id, platform)

    def clear_pending(self, user_id: UUID, platform: str) -> None:
        try:
            with measure_redis("auth_pending_clear"):
                self.redis.delete(self.pending_key(user_id, platform))
        except RedisError:
            logger.warning("auth_pending_clear_failed user_id=%s platform=%s", user_id, platform)

    def is_pending(self, user_id: UUID, platform: str) -> bool:
        try:
            with measure_redis("auth_pending_get"):
                return self.redis.get(self.pending_key(user_id, platform)) is not None
        except RedisError:
            logger.warning("auth_pending_read_failed user_id=%s platform=%s", user_id, platform)
            return False


@dataclass(frozen=True)
class ConnectionStatus:
    platform: str
    connected: bool
    message: str = ""
    username: str | None = None
    profile_image: str | None = None
    last_verified: datetime | None = None
    needs_reauth: bool = False
    verified_live: bool = True


def _status_from_row(
    platform: str,
    connection: PlatformConnection | None,
    *,
    connected: bool,
    message: str = "",
    needs_reauth: bool = False,
    verified_live: bool = True,
) -> ConnectionStatus:
    return ConnectionStatus(
        platform=platform,
        connected=connected,
        message=message,
        username=connection.username if connection is not None else None,
        profile_image=connection.profile_image if connection is not None else None,
        last_verified=connection.last_verified if connection is not None else None,
        needs_reauth=needs_reauth,
        verified_live=verified_live,
    )


class ConnectionVerifier:
    """Reconciles the cached flag, the platform's answer and the stored row.

    The cache answers first, the platform is authoritative, and a negative
    answer is confirmed against the database before the row is changed.
    """

    def __init__(
        self,
        *,
        cache: ConnectionStateCache,
        clients: PlatformClientSet,
        session_factory: SessionFactory,
        tasks: BackgroundTaskSet | None = None,
    ) -> None:
        self.cache = cache
        self.clients = clients
        self.session_factory = session_factory
        self.tasks = tasks or BackgroundTaskSet()

    async def is_connected(self, user_id: UUID, platform: str, *, tasks: BackgroundTaskSet | None = None) -> bool:
        normalized = platform.strip().lower()
        cached = self.cache.get(user_id, normalized)
        if cached is not None:
            owner = tasks or self.tasks
            owner.spawn(self.verify_now(user_id, normalized), name=f"verify:{user_id}:{normalized}")
            return cached
        return await self.verify_now(user_id, normalized)

    async def verify_now(self, user_id: UUID, platform: str) -> bool:
        status = await self.verify_detailed(user_id, platform)
        return status.connected

    async def verify_detailed(self, user_id: UUID, platform: str) -> ConnectionStatus:
        normalized = platform.strip().lower()
        client = self.clients.get(normalized)

        with self.session_factory() as db:
            connection = get_connection(db, user_id=user_id, platform=normalized)
            if connection is None or not connection.connected or not connection.access_token:
                self.cache.clear(user_id, normalized)
                CONNECTION_VERIFICATIONS_TOTAL.labels(platform=normalized, outcome="missing").inc()
                return _status_from_row(
                    normalized,
                    connection,
                    connected=False,
                    message=f"{client.display_name} account is not connected",
                )
            credentials = credentials_for(connection)
            token_snapshot = connection.access_token
            stored_flag = bool(connection.connected)

        try:
            result = await client.verify_credentials(credentials)
        except (TransientNetworkError, RateLimitError) as exc:
            cached = self.cache.get(user_id, normalized)
            fallback = cached if cached is not None else stored_flag
            CONNECTION_VERIFICATIONS_TOTAL.labels(platform=normalized, outcome="unreachable").inc()
            logger.warning(
                "connection_verify_unreachable user_id=%s platform=%s fallback=%s error=%s",
                user_id,
                normalized,
                fallback,
                exc,
            )
            return ConnectionStatus(platform=normalized, connected=fallback, message=str(exc), verified_live=False)

        if result.verified:
            return self._apply_positive(user_id, normalized, token_snapshot, result.message, result.needs_reauth)
        return self._apply_negative(user_id, normalized, token_snapshot, result.message, result.needs_reauth)

    def _apply_positive(
        self,
        user_id: UUID,
        platform: str,
        token_snapshot: str,
        message: str,
        needs_reauth: bool,
    ) -> ConnectionStatus:
        with self.session_factory() as db:
            connection = get_connection(db, user_id=user_id, platform=platform)
            if connection is None or connection.access_token != token_snapshot:
                # Row changed while the platform call was in flight.
                return self._stale(platform, connection, user_id)
            mark_verified(db, connection)
            db.commit()
            db.refresh(connection)
            status = _status_from_row(platform, connection, connected=True, message=message, needs_reauth=needs_reauth)
        self.cache.set(user_id, platform, True)
        CONNECTION_VERIFICATIONS_TOTAL.labels(platform=platform, outcome="verified").inc()
        logger.info("connection_verified user_id=%s platform=%s needs_reauth=%s", user_id, platform, needs_reauth)
        return status

    def _apply_negative(
        self,
        user_id: UUID,
        platform: str,
        token_snapshot: str,
        message: str,
        needs_reauth: bool,
    ) -> ConnectionStatus:
        self.cache.clear(user_id, platform)
        with self.session_factory() as db:
            connection = get_connection(db, user_id=user_id, platform=platform)
            if connection is None or connection.access_token != token_snapshot:
                return self._stale(platform, connection, user_id)
            mark_disconnected(db, connection)
            db.commit()
            db.refresh(connection)
            status = _status_from_row(
                platform,
                connection,
                connected=False,
                message=message,
                needs_reauth=needs_reauth,
            )
        CONNECTION_VERIFICATIONS_TOTAL.labels(platform=platform, outcome="rejected").inc()
        logger.warning("connection_rejected user_id=%s platform=%s message=%s", user_id, platform, message)
        return status

    def _stale(self, platform: str, connection: PlatformConnection | None, user_id: UUID) -> ConnectionStatus:
        connected = bool(connection is not None and connection.connected and connection.access_token)
        if connected:
            self.cache.set(user_id, platform, True)
        else:
            self.cache.clear(user_id, platform)
        CONNECTION_VERIFICATIONS_TOTAL.labels(platform=platform, outcome="stale").inc()
        logger.info("connection_verify_stale user_id=%s platform=%s connected=%s", user_id, platform, connected)
        return _status_from_row(platform, connection, connected=connected, message="Connection changed during verification")
