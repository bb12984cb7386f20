from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar

import httpx

from social_connect.core.config import Settings, settings as default_settings


class PlatformError(RuntimeError):
    retryable: bool = False
    error_code: str = "platform_error"
    user_action: str = "contact_support"

    def __init__(self, message: str, *, platform: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code


class ConfigurationError(PlatformError):
    error_code = "configuration_error"

    def __init__(self, message: str, *, missing: list[str] | None = None, platform: str | None = None) -> None:
        super().__init__(message, platform=platform)
        self.missing = list(missing or [])


class PlatformResolutionError(PlatformError):
    error_code = "unsupported_platform"


class NotConnectedError(PlatformError):
    error_code = "not_connected"
    user_action = "reconnect"


class IdentityResolutionError(NotConnectedError):
    error_code = "unknown_user"


class PlatformAuthError(PlatformError):
    error_code = "auth_failed"
    user_action = "reconnect"


class PlatformPermissionError(PlatformError):
    error_code = "permission_denied"
    user_action = "reconnect"


class RateLimitError(PlatformError):
    retryable = True
    error_code = "rate_limited"
    user_action = "retry_later"

    def __init__(
        self,
        message: str,
        *,
        platform: str | None = None,
        status_code: int | None = 429,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, platform=platform, status_code=status_code)
        self.retry_after = retry_after


class TransientNetworkError(PlatformError):
    retryable = True
    error_code = "transient_network_error"
    user_action = "retry_later"


class ContentValidationError(PlatformError):
    error_code = "validation_error"
    user_action = "fix_content"


class DuplicateContentError(PlatformError):
    error_code = "duplicate_content"
    user_action = "fix_content"


class PlatformRequestError(PlatformError):
    error_code = "platform_request_failed"


class AuthorizationFlowError(PlatformError):
    error_code = "authorization_failed"
    user_action = "reconnect"


class AuthorizationTimeoutError(AuthorizationFlowError):
    error_code = "authorization_timeout"


class AuthorizationCancelledError(AuthorizationFlowError):
    error_code = "authorization_cancelled"


@dataclass(frozen=True)
class PlatformCredentials:
    access_token: str
    token_secret: str | None = None
    external_account_id: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AuthorizationRequest:
    authorize_url: str
    # Value the platform echoes back on the redirect (request token or state)
    callback_key: str
    request_token_secret: str | None = None


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    token_secret: str | None = None
    external_account_id: str | None = None
    username: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    message: str = ""
    user: dict | None = None
    needs_reauth: bool = False


@dataclass(frozen=True)
class PlatformProfile:
    external_account_id: str
    username: str | None = None
    display_name: str | None = None
    profile_image: str | None = None
    follower_count: int = 0
    following_count: int = 0
    post_count: int = 0
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PlatformPost:
    external_id: str
    text: str
    created_at: datetime | None = None
    media_url: str | None = None
    media_type: str | None = None
    permalink: str | None = None
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0

    @property
    def engagement(self) -> int:
        return self.likes + self.comments + self.shares


@dataclass(frozen=True)
class PublishReceipt:
    external_post_id: str
    platform: str
    text: str
    media_url: str | None = None
    warning: str | None = None


class PlatformClient(ABC):
    """Per-platform REST client used by the connection and publish services.

    Clients are stateless across users: every user-context call receives the
    decrypted :class:`PlatformCredentials` of the connection it acts for.
    """

    platform: ClassVar[str] = ""
    display_name: ClassVar[str] = ""
    callback_message_type: ClassVar[str] = ""
    max_length: ClassVar[int] = 3000
    requires_media: ClassVar[bool] = False

    def __init__(self, config: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config or default_settings
        self.transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.platform_http_timeout_seconds, transport=self.transport)

    def validate_content(self, text: str, media_url: str | None = None) -> str:
        normalized = (text or "").strip()
        if not normalized:
            raise ContentValidationError("Content cannot be empty", platform=self.platform)
        if len(normalized) > self.max_length:
            raise ContentValidationError(
                f"{self.display_name} content exceeds {self.max_length} characters ({len(normalized)})",
                platform=self.platform,
            )
        if self.requires_media and not (media_url or "").strip():
            raise ContentValidationError(f"{self.display_name} posts require a media URL", platform=self.platform)
        return normalized

    def missing_configuration(self) -> list[str]:
        return self.config.missing_platform_settings(self.platform)

    def require_configuration(self) -> None:
        missing = self.missing_configuration()
        if missing:
            raise ConfigurationError(
                f"Missing environment variables: {', '.join(missing)}",
                missing=missing,
                platform=self.platform,
            )

    def raise_for_status(self, response: httpx.Response, *, action: str) -> None:
        status_code = response.status_code
        if status_code < 400:
            return
        body = response.text[:500]
        message = f"{self.display_name} {action} failed: {status_code} {body}".strip()
        if status_code == 401:
            raise PlatformAuthError(message, platform=self.platform, status_code=status_code)
        if status_code == 403:
            raise PlatformPermissionError(message, platform=self.platform, status_code=status_code)
        if status_code == 429:
            raise RateLimitError(
                message,
                platform=self.platform,
                retry_after=self.retry_after_seconds(response),
            )
        if status_code >= 500:
            raise TransientNetworkError(message, platform=self.platform, status_code=status_code)
        raise PlatformRequestError(message, platform=self.platform, status_code=status_code)

    def decode_json(self, response: httpx.Response, *, action: str) -> dict:
        """Decode a successful response; HTML pages from proxies count as transient."""
        try:
            payload = response.json()
        except ValueError as exc:
            snippet = response.text[:200]
            content_type = response.headers.get("content-type", "")
            if "html" in content_type or snippet.lstrip().lower().startswith("<"):
                raise TransientNetworkError(
                    f"{self.display_name} {action} returned an HTML page instead of JSON",
                    platform=self.platform,
                    status_code=response.status_code,
                ) from exc
            raise PlatformRequestError(
                f"{self.display_name} {action} returned a malformed response: {snippet}",
                platform=self.platform,
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise PlatformRequestError(
                f"{self.display_name} {action} returned an unexpected payload",
                platform=self.platform,
                status_code=response.status_code,
            )
        return payload

    def retry_after_seconds(self, response: httpx.Response) -> int | None:
        raw = response.headers.get("retry-after")
        if raw and raw.isdigit():
            return int(raw)
        return None

    async def setup_webhook(self, credentials: PlatformCredentials) -> dict:
        raise PlatformRequestError(f"{self.display_name} does not support webhooks", platform=self.platform)

    @abstractmethod
    async def begin_authorization(self) -> AuthorizationRequest:
        raise NotImplementedError

    @abstractmethod
    async def exchange(self, request: AuthorizationRequest, *, code: str | None = None, verifier: str | None = None) -> TokenGrant:
        raise NotImplementedError

    @abstractmethod
    async def verify_credentials(self, credentials: PlatformCredentials) -> VerificationResult:
        raise NotImplementedError

    @abstractmethod
    async def fetch_profile(self, credentials: PlatformCredentials) -> PlatformProfile:
        raise NotImplementedError

    @abstractmethod
    async def fetch_posts(self, credentials: PlatformCredentials, *, limit: int = 25) -> list[PlatformPost]:
        raise NotImplementedError

    @abstractmethod
    async def publish(self, credentials: PlatformCredentials, *, text: str, media_url: str | None = None) -> PublishReceipt:
        raise NotImplementedError
