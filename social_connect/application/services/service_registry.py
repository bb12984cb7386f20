import logging
from dataclasses import dataclass
from uuid import UUID

import httpx
from redis import Redis

from social_connect.application.services.authorization_flow import AuthorizationFlow, AuthorizationFlowRegistry
from social_connect.application.services.connection_verifier import ConnectionStateCache, ConnectionVerifier
from social_connect.application.services.publish_orchestrator import PublishOrchestrator
from social_connect.application.services.session_scope import SessionScope, SessionScopeRegistry
from social_connect.application.services.statistics_refresher import StatisticsRefresher
from social_connect.core.config import Settings, settings
from social_connect.infrastructure.cache.redis_client import get_redis_client
from social_connect.infrastructure.db.session import SessionFactory, SessionLocal
from social_connect.integrations.platform_clients import PlatformClientSet, get_platform_client

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    config: Settings
    session_factory: SessionFactory
    clients: PlatformClientSet
    cache: ConnectionStateCache
    verifier: ConnectionVerifier
    publisher: PublishOrchestrator
    refresher: StatisticsRefresher
    flows: AuthorizationFlowRegistry
    scopes: SessionScopeRegistry

    def start_statistics_refresh(self, scope: SessionScope, user_id: UUID, platform: str) -> None:
        scope.start_periodic_refresh(
            platform,
            lambda: self.refresher.refresh(user_id, platform),
            interval_seconds=self.config.statistics_refresh_interval_seconds,
        )

    def new_flow(self, *, user_id: UUID, platform: str, scope: SessionScope) -> AuthorizationFlow:
        def on_connected(connected_user_id: UUID, connected_platform: str) -> None:
            self.start_statistics_refresh(scope, connected_user_id, connected_platform)

        return AuthorizationFlow(
            user_id=user_id,
            client=self.clients.get(platform),
            cache=self.cache,
            session_factory=self.session_factory,
            app_origin=self.config.app_origin,
            timeout_seconds=self.config.oauth_callback_timeout_seconds,
            on_connected=on_connected,
        )

    async def close(self) -> None:
        await self.scopes.close_all()
        await self.verifier.tasks.cancel_all()


def build_service_registry(
    config: Settings | None = None,
    *,
    session_factory: SessionFactory | None = None,
    redis_client: Redis | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceRegistry:
    config = config or settings
    session_factory = session_factory or SessionLocal
    clients = PlatformClientSet(
        get_platform_client(platform, config, transport=transport) for platform in config.enabled_platform_list
    )
    cache = ConnectionStateCache(
        redis_client or get_redis_client(),
        ttl_seconds=config.connection_cache_ttl_seconds,
        pending_ttl_seconds=config.auth_pending_ttl_seconds,
    )
    verifier = ConnectionVerifier(cache=cache, clients=clients, session_factory=session_factory)
    registry = ServiceRegistry(
        config=config,
        session_factory=session_factory,
        clients=clients,
        cache=cache,
        verifier=verifier,
        publisher=PublishOrchestrator(verifier=verifier, clients=clients, session_factory=session_factory),
        refresher=StatisticsRefresher(
            clients=clients,
            session_factory=session_factory,
            post_limit=config.statistics_post_limit,
            period_days=config.statistics_period_days,
        ),
        flows=AuthorizationFlowRegistry(),
        scopes=SessionScopeRegistry(),
    )
    logger.info("service_registry_built platforms=%s", ",".join(clients.platforms()))
    return registry
