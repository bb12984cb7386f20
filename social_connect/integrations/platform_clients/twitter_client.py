import logging
import secrets
import time
from datetime import datetime
from urllib.parse import parse_qsl

import httpx

from social_connect.integrations.oauth1_signing import build_authorization_header
from social_connect.integrations.platform_clients.base_client import (
    AuthorizationFlowError,
    AuthorizationRequest,
    DuplicateContentError,
    PlatformAuthError,
    PlatformClient,
    PlatformCredentials,
    PlatformPermissionError,
    PlatformPost,
    PlatformProfile,
    PlatformRequestError,
    PublishReceipt,
    TokenGrant,
    TransientNetworkError,
    VerificationResult,
)
from social_connect.infrastructure.observability.metrics import measure_platform_call

logger = logging.getLogger(__name__)

TWITTER_REQUEST_TOKEN_PATH = "/oauth/request_token"
TWITTER_AUTHENTICATE_PATH = "/oauth/authenticate"
TWITTER_ACCESS_TOKEN_PATH = "/oauth/access_token"
TWITTER_ME_PATH = "/2/users/me"
TWITTER_TWEETS_PATH = "/2/tweets"
TWITTER_USER_FIELDS = "profile_image_url,public_metrics,description,name,username"
TWITTER_TWEET_FIELDS = "created_at,public_metrics,attachments"
DEFAULT_RATE_LIMIT_RESET_SECONDS = 900

PERMISSION_REMEDIATION = (
    "After updating permissions in the Twitter Developer Portal to 'Read and write', you need to "
    "regenerate your access tokens and update both TWITTER_ACCESS_TOKEN and TWITTER_ACCESS_TOKEN_SECRET"
)


def parse_token_response(body: str) -> dict[str, str]:
    return dict(parse_qsl(body.strip(), keep_blank_values=True))


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_duplicate_rejection(response: httpx.Response) -> bool:
    return response.status_code == 403 and "duplicate" in response.text.lower()


class TwitterClient(PlatformClient):
    platform = "twitter"
    display_name = "Twitter"
    callback_message_type = "TWITTER_AUTH_SUCCESS"
    max_length = 280

    def _url(self, path: str) -> str:
        return f"{self.config.twitter_api_base_url.rstrip('/')}{path}"

    def retry_after_seconds(self, response: httpx.Response) -> int | None:
        reset_raw = response.headers.get("x-rate-limit-reset")
        if reset_raw and reset_raw.isdigit():
            return max(0, int(reset_raw) - int(time.time()))
        return super().retry_after_seconds(response) or DEFAULT_RATE_LIMIT_RESET_SECONDS

    async def _send(self, method: str, url: str, *, action: str, **kwargs) -> httpx.Response:
        async with self._http() as client:
            with measure_platform_call(self.platform, action):
                try:
                    return await client.request(method, url, **kwargs)
                except httpx.TransportError as exc:
                    raise TransientNetworkError(
                        f"Twitter {action} request failed: {exc}", platform=self.platform
                    ) from exc

    async def _user_request(
        self,
        method: str,
        path: str,
        credentials: PlatformCredentials,
        *,
        action: str,
        params: dict[str, str] | None = None,
        json_body: dict | None = None,
    ) -> dict:
        url = self._url(path)
        header = build_authorization_header(
            method,
            url,
            consumer_key=self.config.twitter_api_key,
            consumer_secret=self.config.twitter_api_secret,
            token=credentials.access_token,
            token_secret=credentials.token_secret,
            request_params=params,
            require_user_token=True,
        )
        headers = {"Authorization": header}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        response = await self._send(method, url, action=action, params=params, json=json_body, headers=headers)
        if _is_duplicate_rejection(response):
            raise DuplicateContentError(
                f"Twitter rejected duplicate content: {response.text[:300]}",
                platform=self.platform,
                status_code=response.status_code,
            )
        self.raise_for_status(response, action=action)
        return self.decode_json(response, action=action)

    async def begin_authorization(self) -> AuthorizationRequest:
        self.require_configuration()
        url = self._url(TWITTER_REQUEST_TOKEN_PATH)
        header = build_authorization_header(
            "POST",
            url,
            consumer_key=self.config.twitter_api_key,
            consumer_secret=self.config.twitter_api_secret,
            extra_oauth_params={"oauth_callback": self.config.twitter_callback_url},
        )
        response = await self._send("POST", url, action="request_token", headers={"Authorization": header})
        self.raise_for_status(response, action="request token")

        payload = parse_token_response(response.text)
        oauth_token = payload.get("oauth_token")
        oauth_token_secret = payload.get("oauth_token_secret")
        if not oauth_token or not oauth_token_secret:
            raise AuthorizationFlowError(
                "Twitter request token response missing oauth_token or oauth_token_secret",
                platform=self.platform,
            )
        if payload.get("oauth_callback_confirmed", "true") != "true":
            raise AuthorizationFlowError("Twitter did not confirm the OAuth callback", platform=self.platform)

        authorize_url = str(httpx.URL(self._url(TWITTER_AUTHENTICATE_PATH), params={"oauth_token": oauth_token}))
        return AuthorizationRequest(
            authorize_url=authorize_url,
            callback_key=oauth_token,
            request_token_secret=oauth_token_secret,
        )

    async def exchange(
        self,
        request: AuthorizationRequest,
        *,
        code: str | None = None,
        verifier: str | None = None,
    ) -> TokenGrant:
        if self.config.twitter_token_exchange_mode == "static":
            self.require_configuration()
            logger.info("twitter_token_exchange mode=static request_token=%s", request.callback_key[:8])
            return TokenGrant(
                access_token=self.config.twitter_access_token,
                token_secret=self.config.twitter_access_token_secret,
            )

        if not verifier:
            raise AuthorizationFlowError("Twitter callback is missing oauth_verifier", platform=self.platform)
        url = self._url(TWITTER_ACCESS_TOKEN_PATH)
        header = build_authorization_header(
            "POST",
            url,
            consumer_key=self.config.twitter_api_key,
            consumer_secret=self.config.twitter_api_secret,
            token=request.callback_key,
            token_secret=request.request_token_secret,
            extra_oauth_params={"oauth_verifier": verifier},
        )
        response = await self._send("POST", url, action="access_token", headers={"Authorization": header})
        self.raise_for_status(response, action="access token exchange")

        payload = parse_token_response(response.text)
        access_token = payload.get("oauth_token")
        token_secret = payload.get("oauth_token_secret")
        if not access_token or not token_secret:
            raise AuthorizationFlowError(
                "Twitter access token response missing oauth_token or oauth_token_secret",
                platform=self.platform,
            )
        return TokenGrant(
            access_token=access_token,
            token_secret=token_secret,
            external_account_id=payload.get("user_id"),
            username=payload.get("screen_name"),
        )

    async def verify_credentials(self, credentials: PlatformCredentials) -> VerificationResult:
        try:
            payload = await self._user_request("GET", TWITTER_ME_PATH, credentials, action="verify")
        except PlatformAuthError as exc:
            return VerificationResult(verified=False, message=str(exc))
        except PlatformPermissionError:
            return VerificationResult(verified=False, message=PERMISSION_REMEDIATION)
        return VerificationResult(
            verified=True,
            message="Twitter credentials verified successfully",
            user=payload.get("data") or {},
        )

    async def fetch_profile(self, credentials: PlatformCredentials) -> PlatformProfile:
        payload = await self._user_request(
            "GET",
            TWITTER_ME_PATH,
            credentials,
            action="profile",
            params={"user.fields": TWITTER_USER_FIELDS},
        )
        data = payload.get("data") or {}
        if not data.get("id"):
            raise PlatformRequestError("Twitter profile response missing id", platform=self.platform)
        metrics = data.get("public_metrics") or {}
        return PlatformProfile(
            external_account_id=str(data["id"]),
            username=data.get("username"),
            display_name=data.get("name"),
            profile_image=data.get("profile_image_url"),
            follower_count=int(metrics.get("followers_count") or 0),
            following_count=int(metrics.get("following_count") or 0),
            post_count=int(metrics.get("tweet_count") or 0),
            raw=data,
        )

    async def fetch_posts(self, credentials: PlatformCredentials, *, limit: int = 25) -> list[PlatformPost]:
        user_id = credentials.external_account_id
        if not user_id:
            user_id = (await self.fetch_profile(credentials)).external_account_id
        params = {
            "max_results": str(min(100, max(5, limit))),
            "tweet.fields": TWITTER_TWEET_FIELDS,
            "expansions": "attachments.media_keys",
            "media.fields": "url,preview_image_url,type",
        }
        payload = await self._user_request(
            "GET", f"/2/users/{user_id}/tweets", credentials, action="posts", params=params
        )
        media_by_key = {
            item.get("media_key"): item for item in (payload.get("includes") or {}).get("media") or []
        }

        posts: list[PlatformPost] = []
        for tweet in payload.get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            media_keys = (tweet.get("attachments") or {}).get("media_keys") or []
            media = media_by_key.get(media_keys[0]) if media_keys else None
            posts.append(
                PlatformPost(
                    external_id=str(tweet["id"]),
                    text=tweet.get("text") or "",
                    created_at=_parse_timestamp(tweet.get("created_at")),
                    media_url=(media or {}).get("url") or (media or {}).get("preview_image_url"),
                    media_type=(media or {}).get("type"),
                    likes=int(metrics.get("like_count") or 0),
                    comments=int(metrics.get("reply_count") or 0),
                    shares=int(metrics.get("retweet_count") or 0) + int(metrics.get("quote_count") or 0),
                    impressions=int(metrics.get("impression_count") or 0),
                )
            )
        return posts[:limit]

    def _with_random_suffix(self, text: str) -> str:
        suffix = f" #{secrets.token_hex(3)}"
        return text[: self.max_length - len(suffix)].rstrip() + suffix

    async def publish(
        self,
        credentials: PlatformCredentials,
        *,
        text: str,
        media_url: str | None = None,
    ) -> PublishReceipt:
        body_text = text.strip()
        if len(body_text) > self.max_length:
            body_text = body_text[: self.max_length - 3] + "..."

        try:
            payload = await self._user_request(
                "POST", TWITTER_TWEETS_PATH, credentials, action="publish", json_body={"text": body_text}
            )
        except DuplicateContentError:
            # Twitter rejects byte-identical tweets; resubmit once with a short random tag.
            body_text = self._with_random_suffix(body_text)
            logger.info("twitter_duplicate_content_retry length=%s", len(body_text))
            payload = await self._user_request(
                "POST", TWITTER_TWEETS_PATH, credentials, action="publish", json_body={"text": body_text}
            )

        external_post_id = str((payload.get("data") or {}).get("id") or "")
        if not external_post_id:
            raise PlatformRequestError("Twitter publish response missing tweet id", platform=self.platform)

        warning = None
        if media_url:
            warning = "Twitter media upload is not enabled. Published as text-only."
        return PublishReceipt(
            external_post_id=external_post_id,
            platform=self.platform,
            text=body_text,
            media_url=media_url,
            warning=warning,
        )
