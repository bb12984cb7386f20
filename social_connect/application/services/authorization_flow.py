import inspect
import logging
import secrets
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID

from social_connect.application.services.connection_verifier import ConnectionStateCache
from social_connect.application.services.platform_connection_service import upsert_connection
from social_connect.application.services.session_scope import BackgroundTaskSet
from social_connect.core.config import settings
from social_connect.infrastructure.db.session import SessionFactory
from social_connect.infrastructure.observability.metrics import AUTH_FLOWS_TOTAL
from social_connect.integrations.callback_channel import AuthCallbackMessage, CallbackChannel
from social_connect.integrations.platform_clients import (
    AuthorizationCancelledError,
    AuthorizationFlowError,
    AuthorizationRequest,
    PlatformClient,
    PlatformCredentials,
    PlatformError,
)

logger = logging.getLogger(__name__)

FINISHED_FLOW_RETENTION = 500


class AuthFlowState(StrEnum):
    IDLE = "idle"
    REQUESTING_TOKEN = "requesting_token"
    AWAITING_USER_AUTH = "awaiting_user_auth"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    CONNECTED = "connected"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[AuthFlowState, frozenset[AuthFlowState]] = {
    AuthFlowState.IDLE: frozenset({AuthFlowState.REQUESTING_TOKEN, AuthFlowState.FAILED}),
    AuthFlowState.REQUESTING_TOKEN: frozenset({AuthFlowState.AWAITING_USER_AUTH, AuthFlowState.FAILED}),
    AuthFlowState.AWAITING_USER_AUTH: frozenset({AuthFlowState.AWAITING_CALLBACK, AuthFlowState.FAILED}),
    AuthFlowState.AWAITING_CALLBACK: frozenset({AuthFlowState.EXCHANGING, AuthFlowState.FAILED}),
    AuthFlowState.EXCHANGING: frozenset({AuthFlowState.CONNECTED, AuthFlowState.FAILED}),
    AuthFlowState.CONNECTED: frozenset(),
    AuthFlowState.FAILED: frozenset(),
}
TERMINAL_STATES = frozenset({AuthFlowState.CONNECTED, AuthFlowState.FAILED})


class InvalidFlowTransitionError(AuthorizationFlowError):
    error_code = "invalid_flow_transition"


OnConnected = Callable[[UUID, str], Awaitable[None] | None]


class AuthorizationFlow:
    """One OAuth handshake for one user and platform.

    ``start`` obtains the authorize URL, ``wait_for_completion`` waits for the
    redirect callback, exchanges it for tokens and stores the connection.
    """

    def __init__(
        self,
        *,
        user_id: UUID,
        client: PlatformClient,
        cache: ConnectionStateCache,
        session_factory: SessionFactory,
        app_origin: str | None = None,
        timeout_seconds: float | None = None,
        on_connected: OnConnected | None = None,
        flow_id: str | None = None,
    ) -> None:
        self.flow_id = flow_id or secrets.token_urlsafe(16)
        self.user_id = user_id
        self.client = client
        self.platform = client.platform
        self.cache = cache
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.oauth_callback_timeout_seconds
        self.on_connected = on_connected
        self.channel = CallbackChannel(
            expected_type=client.callback_message_type,
            expected_origin=app_origin or settings.app_origin,
        )
        self.state = AuthFlowState.IDLE
        self.request: AuthorizationRequest | None = None
        self.error: PlatformError | None = None
        self.username: str | None = None

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, target: AuthFlowState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidFlowTransitionError(
                f"Authorization flow cannot move from {self.state} to {target}", platform=self.platform
            )
        logger.info("auth_flow_transition flow_id=%s platform=%s from=%s to=%s", self.flow_id, self.platform, self.state, target)
        self.state = target

    def _fail(self, exc: BaseException) -> None:
        if self.finished:
            return
        if isinstance(exc, PlatformError):
            self.error = exc
        else:
            self.error = AuthorizationFlowError(str(exc) or exc.__class__.__name__, platform=self.platform)
        self.state = AuthFlowState.FAILED
        self.cache.clear_pending(self.user_id, self.platform)
        AUTH_FLOWS_TOTAL.labels(platform=self.platform, state=AuthFlowState.FAILED.value).inc()
        logger.warning(
            "auth_flow_failed flow_id=%s platform=%s error_code=%s error=%s",
            self.flow_id,
            self.platform,
            self.error.error_code,
            self.error,
        )

    async def start(self) -> str:
        self._transition(AuthFlowState.REQUESTING_TOKEN)
        try:
            request = await self.client.begin_authorization()
        except Exception as exc:
            self._fail(exc)
            raise
        self.request = request
        self.channel.bind_key(request.callback_key)
        self.cache.set_pending(self.user_id, self.platform)
        self._transition(AuthFlowState.AWAITING_USER_AUTH)
        return request.authorize_url

    def deliver(self, message: AuthCallbackMessage) -> bool:
        if self.finished:
            return False
        return self.channel.deliver(message)

    def cancel(self, reason: str) -> bool:
        if self.finished or self.state in {AuthFlowState.REQUESTING_TOKEN, AuthFlowState.EXCHANGING}:
            return False
        if self.state == AuthFlowState.AWAITING_CALLBACK:
            self.channel.close(reason)
        self._fail(AuthorizationCancelledError(f"Authorization cancelled: {reason}", platform=self.platform))
        return True

    async def wait_for_completion(self) -> dict:
        if self.state == AuthFlowState.FAILED and self.error is not None:
            raise self.error
        self._transition(AuthFlowState.AWAITING_CALLBACK)
        try:
            message = await self.channel.receive(self.timeout_seconds)
            self._transition(AuthFlowState.EXCHANGING)
            grant = await self.client.exchange(self.request, code=message.code, verifier=message.oauth_verifier)
            credentials = PlatformCredentials(
                access_token=grant.access_token,
                token_secret=grant.token_secret,
                external_account_id=grant.external_account_id,
                expires_at=grant.expires_at,
            )
            profile = await self.client.fetch_profile(credentials)
            with self.session_factory() as db:
                upsert_connection(
                    db,
                    user_id=self.user_id,
                    platform=self.platform,
                    connected=True,
                    access_token=grant.access_token,
                    refresh_token=grant.token_secret,
                    external_account_id=profile.external_account_id or grant.external_account_id,
                    username=profile.username or grant.username,
                    profile_image=profile.profile_image,
                    token_expires_at=grant.expires_at,
                    last_verified=datetime.now(UTC),
                )
                db.commit()
        except Exception as exc:
            self._fail(exc)
            raise

        self.username = profile.username or grant.username
        self.cache.set(self.user_id, self.platform, True)
        self.cache.clear_pending(self.user_id, self.platform)
        self._transition(AuthFlowState.CONNECTED)
        AUTH_FLOWS_TOTAL.labels(platform=self.platform, state=AuthFlowState.CONNECTED.value).inc()
        logger.info("auth_flow_connected flow_id=%s platform=%s user_id=%s", self.flow_id, self.platform, self.user_id)

        if self.on_connected is not None:
            try:
                outcome = self.on_connected(self.user_id, self.platform)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("auth_flow_on_connected_failed flow_id=%s platform=%s", self.flow_id, self.platform)
        return self.snapshot()

    def snapshot(self) -> dict:
        return {
            "flow_id": self.flow_id,
            "user_id": str(self.user_id),
            "platform": self.platform,
            "state": self.state.value,
            "authorize_url": self.request.authorize_url if self.request is not None else None,
            "username": self.username,
            "error_code": self.error.error_code if self.error is not None else None,
            "error": str(self.error) if self.error is not None else None,
        }


class AuthorizationFlowRegistry:
    """Live flows addressable by flow id and by the key echoed on the redirect.

    Lives in process memory: redirect callbacks must reach the process that
    started the flow.
    """

    def __init__(self, *, retention: int = FINISHED_FLOW_RETENTION) -> None:
        self._flows: dict[str, AuthorizationFlow] = {}
        self._by_callback_key: dict[str, str] = {}
        self._finished: OrderedDict[str, dict] = OrderedDict()
        self.retention = retention

    def get(self, flow_id: str) -> AuthorizationFlow | None:
        return self._flows.get(flow_id)

    def snapshot(self, flow_id: str) -> dict | None:
        flow = self._flows.get(flow_id)
        if flow is not None:
            return flow.snapshot()
        return self._finished.get(flow_id)

    def find_by_callback_key(self, callback_key: str | None) -> AuthorizationFlow | None:
        if not callback_key:
            return None
        flow_id = self._by_callback_key.get(callback_key)
        return self._flows.get(flow_id) if flow_id else None

    def active_for(self, user_id: UUID, platform: str) -> AuthorizationFlow | None:
        for flow in self._flows.values():
            if flow.user_id == user_id and flow.platform == platform and not flow.finished:
                return flow
        return None

    async def launch(self, flow: AuthorizationFlow, tasks: BackgroundTaskSet) -> str:
        """Start ``flow`` and hand its completion waiter to ``tasks``."""
        previous = self.active_for(flow.user_id, flow.platform)
        if previous is not None:
            previous.cancel("superseded")

        authorize_url = await flow.start()
        self._flows[flow.flow_id] = flow
        self._by_callback_key[flow.request.callback_key] = flow.flow_id
        tasks.spawn(self._run(flow), name=f"auth_flow:{flow.flow_id}")
        return authorize_url

    async def _run(self, flow: AuthorizationFlow) -> None:
        try:
            await flow.wait_for_completion()
        except PlatformError as exc:
            logger.info("auth_flow_finished flow_id=%s state=%s error_code=%s", flow.flow_id, flow.state, exc.error_code)
        finally:
            self._finish(flow)

    def deliver(self, message: AuthCallbackMessage, *, flow_id: str | None = None) -> bool:
        flow = self.get(flow_id) if flow_id else self.find_by_callback_key(message.callback_key)
        if flow is None:
            logger.warning("auth_callback_unmatched type=%s flow_id=%s", message.type, flow_id)
            return False
        return flow.deliver(message)

    def cancel(self, flow_id: str, reason: str) -> bool:
        flow = self._flows.get(flow_id)
        if flow is None:
            return False
        return flow.cancel(reason)

    def _finish(self, flow: AuthorizationFlow) -> None:
        self._flows.pop(flow.flow_id, None)
        if flow.request is not None and self._by_callback_key.get(flow.request.callback_key) == flow.flow_id:
            del self._by_callback_key[flow.request.callback_key]
        self._finished[flow.flow_id] = flow.snapshot()
        while len(self._finished) > self.retention:
            self._finished.popitem(last=False)
