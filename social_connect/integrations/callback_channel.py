import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from social_connect.integrations.platform_clients.base_client import (
    AuthorizationCancelledError,
    AuthorizationTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthCallbackMessage:
    type: str
    origin: str | None
    code: str | None = None
    state: str | None = None
    oauth_token: str | None = None
    oauth_verifier: str | None = None

    @property
    def callback_key(self) -> str | None:
        return self.oauth_token or self.state


def normalize_origin(origin: str | None) -> str:
    if not origin:
        return ""
    parts = urlsplit(origin.strip())
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class CallbackChannel:
    """One-shot channel carrying the authorization callback back to its flow.

    Exactly one message is accepted and exactly one consumer may wait for it.
    Messages from a foreign origin, of the wrong type, or for another request
    token / state are dropped without settling the channel.
    """

    def __init__(self, *, expected_type: str, expected_origin: str, expected_key: str | None = None) -> None:
        self.expected_type = expected_type
        self.expected_origin = normalize_origin(expected_origin)
        self.expected_key = expected_key
        self._future: asyncio.Future[AuthCallbackMessage] | None = None
        self._consumed = False

    def _get_future(self) -> asyncio.Future[AuthCallbackMessage]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def settled(self) -> bool:
        return self._future is not None and self._future.done()

    def bind_key(self, key: str) -> None:
        self.expected_key = key

    def _rejection_reason(self, message: AuthCallbackMessage) -> str | None:
        if not self.expected_origin or normalize_origin(message.origin) != self.expected_origin:
            return "origin_mismatch"
        if message.type != self.expected_type:
            return "unexpected_type"
        if self.expected_key and message.callback_key != self.expected_key:
            return "key_mismatch"
        if not (message.code or message.oauth_verifier):
            return "missing_payload"
        return None

    def deliver(self, message: AuthCallbackMessage) -> bool:
        future = self._get_future()
        if future.done():
            logger.info("auth_callback_ignored reason=already_settled type=%s", message.type)
            return False
        reason = self._rejection_reason(message)
        if reason is not None:
            logger.warning(
                "auth_callback_rejected reason=%s type=%s origin=%s",
                reason,
                message.type,
                message.origin,
            )
            return False
        future.set_result(message)
        return True

    def close(self, reason: str) -> None:
        future = self._get_future()
        if not future.done():
            future.set_exception(AuthorizationCancelledError(f"Authorization cancelled: {reason}"))

    async def receive(self, timeout: float) -> AuthCallbackMessage:
        if self._consumed:
            raise RuntimeError("Callback channel already has a consumer")
        self._consumed = True
        future = self._get_future()
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorizationTimeoutError(
                f"No authorization callback received within {timeout:g} seconds"
            ) from exc
