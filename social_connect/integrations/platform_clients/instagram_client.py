import asyncio
import logging
import secrets
from datetime import UTC, datetime, timedelta

import httpx

from social_connect.integrations.platform_clients.base_client import (
    AuthorizationFlowError,
    AuthorizationRequest,
    PlatformAuthError,
    PlatformClient,
    PlatformCredentials,
    PlatformPermissionError,
    PlatformPost,
    PlatformProfile,
    PlatformRequestError,
    PublishReceipt,
    RateLimitError,
    TokenGrant,
    TransientNetworkError,
    VerificationResult,
)
from social_connect.infrastructure.observability.metrics import measure_platform_call

logger = logging.getLogger(__name__)

INSTAGRAM_AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
INSTAGRAM_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
INSTAGRAM_LONG_LIVED_TOKEN_URL = "https://graph.instagram.com/access_token"
INSTAGRAM_PROFILE_FIELDS = "user_id,username,name,profile_picture_url,followers_count,follows_count,media_count"
INSTAGRAM_MEDIA_FIELDS = "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp,like_count,comments_count"
LONG_LIVED_TOKEN_TTL = timedelta(days=60)
REAUTH_WINDOW = timedelta(days=7)
VIDEO_EXTENSIONS = (".mp4", ".mov")
CONTAINER_POLL_ATTEMPTS = 10
CONTAINER_POLL_INTERVAL_SECONDS = 3.0

_AUTH_ERROR_CODES = {102, 190}
_RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613}
_PERMISSION_ERROR_CODES = {10, 200, 299}


def parse_graph_error(payload: dict) -> tuple[int | None, str]:
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return None, ""
    code = error.get("code")
    return (int(code) if isinstance(code, int) else None), str(error.get("message") or "")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def is_video_url(media_url: str) -> bool:
    return media_url.lower().split("?", 1)[0].endswith(VIDEO_EXTENSIONS)


class InstagramClient(PlatformClient):
    platform = "instagram"
    display_name = "Instagram"
    callback_message_type = "INSTAGRAM_AUTH_SUCCESS"
    max_length = 2200
    requires_media = True

    def _graph_url(self, path: str) -> str:
        return f"{self.config.instagram_graph_api_base_url.rstrip('/')}{path}"

    async def _send(self, method: str, url: str, *, action: str, **kwargs) -> httpx.Response:
        async with self._http() as client:
            with measure_platform_call(self.platform, action):
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.TransportError as exc:
                    raise TransientNetworkError(
                        f"Instagram {action} request failed: {exc}", platform=self.platform
                    ) from exc
        self._raise_for_graph_error(response, action=action)
        return response

    def _raise_for_graph_error(self, response: httpx.Response, *, action: str) -> None:
        if response.status_code < 400:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        code, detail = parse_graph_error(payload)
        message = f"Instagram {action} failed: {response.status_code} {detail or response.text[:300]}".strip()
        if code in _AUTH_ERROR_CODES:
            raise PlatformAuthError(message, platform=self.platform, status_code=response.status_code)
        if code in _RATE_LIMIT_ERROR_CODES:
            raise RateLimitError(message, platform=self.platform, retry_after=self.retry_after_seconds(response))
        if code in _PERMISSION_ERROR_CODES:
            raise PlatformPermissionError(message, platform=self.platform, status_code=response.status_code)
        self.raise_for_status(response, action=action)

    async def _graph(
        self,
        method: str,
        path: str,
        credentials: PlatformCredentials,
        *,
        action: str,
        params: dict | None = None,
        data: dict | None = None,
    ) -> dict:
        query = dict(params or {})
        query["access_token"] = credentials.access_token
        response = await self._send(method, self._graph_url(path), action=action, params=query, data=data)
        return self.decode_json(response, action=action)

    async def begin_authorization(self) -> AuthorizationRequest:
        self.require_configuration()
        state = secrets.token_urlsafe(24)
        params = {
            "client_id": self.config.instagram_app_id,
            "redirect_uri": self.config.instagram_redirect_uri,
            "scope": self.config.instagram_oauth_scope,
            "response_type": "code",
            "state": state,
        }
        return AuthorizationRequest(
            authorize_url=str(httpx.URL(INSTAGRAM_AUTHORIZE_URL, params=params)),
            callback_key=state,
        )

    async def exchange(
        self,
        request: AuthorizationRequest,
        *,
        code: str | None = None,
        verifier: str | None = None,
    ) -> TokenGrant:
        if not code:
            raise AuthorizationFlowError("No authorization code provided", platform=self.platform)
        self.require_configuration()

        response = await self._send(
            "POST",
            INSTAGRAM_TOKEN_URL,
            action="token_exchange",
            data={
                "client_id": self.config.instagram_app_id,
                "client_secret": self.config.instagram_app_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.config.instagram_redirect_uri,
                "code": code,
            },
        )
        payload = self.decode_json(response, action="token_exchange")
        # Older responses wrap the grant in a one-element "data" list.
        if isinstance(payload.get("data"), list) and payload["data"]:
            payload = payload["data"][0]
        short_lived_token = str(payload.get("access_token") or "")
        if not short_lived_token:
            raise AuthorizationFlowError("Instagram token exchange returned no access token", platform=self.platform)

        long_lived = await self._send(
            "GET",
            INSTAGRAM_LONG_LIVED_TOKEN_URL,
            action="long_lived_token",
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": self.config.instagram_app_secret,
                "access_token": short_lived_token,
            },
        )
        long_lived_payload = self.decode_json(long_lived, action="long_lived_token")
        access_token = str(long_lived_payload.get("access_token") or short_lived_token)
        expires_in = long_lived_payload.get("expires_in")
        ttl = timedelta(seconds=int(expires_in)) if expires_in else LONG_LIVED_TOKEN_TTL
        return TokenGrant(
            access_token=access_token,
            external_account_id=str(payload.get("user_id") or "") or None,
            expires_at=datetime.now(UTC) + ttl,
        )

    async def verify_credentials(self, credentials: PlatformCredentials) -> VerificationResult:
        now = datetime.now(UTC)
        expires_at = _as_utc(credentials.expires_at) if credentials.expires_at else None
        if expires_at is not None and expires_at <= now:
            return VerificationResult(verified=False, message="Instagram token has expired", needs_reauth=True)

        try:
            payload = await self._graph(
                "GET", "/me", credentials, action="verify", params={"fields": "user_id,username"}
            )
        except (PlatformAuthError, PlatformPermissionError) as exc:
            return VerificationResult(verified=False, message=str(exc), needs_reauth=True)

        needs_reauth = expires_at is not None and expires_at - now < REAUTH_WINDOW
        return VerificationResult(
            verified=True,
            message="Instagram connection verified",
            user=payload,
            needs_reauth=needs_reauth,
        )

    async def fetch_profile(self, credentials: PlatformCredentials) -> PlatformProfile:
        payload = await self._graph(
            "GET", "/me", credentials, action="profile", params={"fields": INSTAGRAM_PROFILE_FIELDS}
        )
        account_id = str(payload.get("user_id") or payload.get("id") or "")
        if not account_id:
            raise PlatformRequestError("Instagram profile response missing id", platform=self.platform)
        return PlatformProfile(
            external_account_id=account_id,
            username=payload.get("username"),
            display_name=payload.get("name"),
            profile_image=payload.get("profile_picture_url"),
            follower_count=int(payload.get("followers_count") or 0),
            following_count=int(payload.get("follows_count") or 0),
            post_count=int(payload.get("media_count") or 0),
            raw=payload,
        )

    async def fetch_posts(self, credentials: PlatformCredentials, *, limit: int = 25) -> list[PlatformPost]:
        payload = await self._graph(
            "GET",
            "/me/media",
            credentials,
            action="posts",
            params={"fields": INSTAGRAM_MEDIA_FIELDS, "limit": str(max(1, min(100, limit)))},
        )
        posts: list[PlatformPost] = []
        for item in payload.get("data") or []:
            posts.append(
                PlatformPost(
                    external_id=str(item["id"]),
                    text=item.get("caption") or "",
                    created_at=_parse_timestamp(item.get("timestamp")),
                    media_url=item.get("media_url") or item.get("thumbnail_url"),
                    media_type=item.get("media_type"),
                    permalink=item.get("permalink"),
                    likes=int(item.get("like_count") or 0),
                    comments=int(item.get("comments_count") or 0),
                )
            )
        return posts[:limit]

    async def _wait_for_container(self, container_id: str, credentials: PlatformCredentials) -> None:
        for _ in range(CONTAINER_POLL_ATTEMPTS):
            payload = await self._graph(
                "GET", f"/{container_id}", credentials, action="container_status", params={"fields": "status_code"}
            )
            status_code = str(payload.get("status_code") or "").upper()
            if status_code in {"FINISHED", "PUBLISHED"}:
                return
            if status_code in {"ERROR", "EXPIRED"}:
                raise PlatformRequestError(
                    f"Instagram media container {container_id} failed with status {status_code}",
                    platform=self.platform,
                )
            await asyncio.sleep(CONTAINER_POLL_INTERVAL_SECONDS)
        raise TransientNetworkError(
            f"Instagram media container {container_id} was not ready in time", platform=self.platform
        )

    async def publish(
        self,
        credentials: PlatformCredentials,
        *,
        text: str,
        media_url: str | None = None,
    ) -> PublishReceipt:
        if not media_url:
            raise PlatformRequestError("Instagram publish requires a media URL", platform=self.platform)
        account_id = credentials.external_account_id or "me"
        container_payload = {"caption": text.strip()}
        if is_video_url(media_url):
            container_payload.update({"media_type": "REELS", "video_url": media_url})
        else:
            container_payload["image_url"] = media_url

        container = await self._graph(
            "POST", f"/{account_id}/media", credentials, action="create_container", data=container_payload
        )
        container_id = str(container.get("id") or "")
        if not container_id:
            raise PlatformRequestError("Instagram container response missing id", platform=self.platform)
        if "video_url" in container_payload:
            await self._wait_for_container(container_id, credentials)

        published = await self._graph(
            "POST",
            f"/{account_id}/media_publish",
            credentials,
            action="publish",
            data={"creation_id": container_id},
        )
        external_post_id = str(published.get("id") or "")
        if not external_post_id:
            raise PlatformRequestError("Instagram publish response missing media id", platform=self.platform)
        return PublishReceipt(
            external_post_id=external_post_id,
            platform=self.platform,
            text=text.strip(),
            media_url=media_url,
        )

    async def setup_webhook(self, credentials: PlatformCredentials) -> dict:
        account_id = credentials.external_account_id or "me"
        payload = await self._graph(
            "POST",
            f"/{account_id}/subscribed_apps",
            credentials,
            action="setup_webhook",
            params={"subscribed_fields": self.config.instagram_webhook_fields},
        )
        success = bool(payload.get("success"))
        logger.info("instagram_webhook_subscription account_id=%s success=%s", account_id, success)
        return {
            "success": success,
            "message": "Webhook setup completed successfully" if success else "Instagram did not confirm the subscription",
        }
