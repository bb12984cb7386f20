import logging
from typing import Annotated, Literal, Union
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, RootModel
from sqlalchemy.orm import Session

from social_connect.application.services.platform_connection_service import credentials_for, get_connection
from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.application.services.session_scope import SessionScope
from social_connect.core.config import settings
from social_connect.infrastructure.db.session import get_db
from social_connect.integrations.callback_channel import AuthCallbackMessage
from social_connect.integrations.platform_clients import (
    ConfigurationError,
    PlatformCredentials,
    PlatformError,
    PlatformPost,
    PlatformProfile,
)
from social_connect.interfaces.api.deps import get_current_user_id, get_services, get_session_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


class AuthorizeData(BaseModel):
    flow_id: str
    authorize_url: str


class CallbackAcceptedData(BaseModel):
    accepted: bool


class VerifyData(BaseModel):
    verified: bool
    message: str
    needs_reauth: bool = False


class UserData(BaseModel):
    verified: bool
    message: str
    user: dict | None = None


class ProfileData(BaseModel):
    id: str
    username: str | None = None
    name: str | None = None
    profile_image: str | None = None
    followers_count: int = 0
    following_count: int = 0
    post_count: int = 0

    @classmethod
    def from_profile(cls, profile: PlatformProfile) -> "ProfileData":
        return cls(
            id=profile.external_account_id,
            username=profile.username,
            name=profile.display_name,
            profile_image=profile.profile_image,
            followers_count=profile.follower_count,
            following_count=profile.following_count,
            post_count=profile.post_count,
        )


class PostData(BaseModel):
    id: str
    text: str
    created_at: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    permalink: str | None = None
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int = 0

    @classmethod
    def from_post(cls, post: PlatformPost) -> "PostData":
        return cls(
            id=post.external_id,
            text=post.text,
            created_at=post.created_at.isoformat() if post.created_at else None,
            media_url=post.media_url,
            media_type=post.media_type,
            permalink=post.permalink,
            likes=post.likes,
            comments=post.comments,
            shares=post.shares,
            impressions=post.impressions,
        )


class PostsData(BaseModel):
    posts: list[PostData]


class PublishData(BaseModel):
    success: bool
    id: str | None = None
    message: str | None = None
    content_id: str | None = None
    warning: str | None = None


class WebhookData(BaseModel):
    success: bool
    message: str


class InstagramAuthorize(BaseModel):
    action: Literal["authorize"]


class InstagramCallback(BaseModel):
    action: Literal["callback"]
    code: str
    state: str | None = None


class InstagramVerify(BaseModel):
    action: Literal["verify"]


class InstagramProfile(BaseModel):
    action: Literal["profile"]


class InstagramPosts(BaseModel):
    action: Literal["posts"]
    limit: int = Field(default=25, ge=1, le=100)


class InstagramPublish(BaseModel):
    action: Literal["publish"]
    caption: str
    media_url: str
    content_id: UUID | None = None


class InstagramSetupWebhook(BaseModel):
    action: Literal["setup_webhook"]


class InstagramRequest(
    RootModel[
        Annotated[
            Union[
                InstagramAuthorize,
                InstagramCallback,
                InstagramVerify,
                InstagramProfile,
                InstagramPosts,
                InstagramPublish,
                InstagramSetupWebhook,
            ],
            Field(discriminator="action"),
        ]
    ]
):
    pass


class TwitterAuth(BaseModel):
    endpoint: Literal["auth"]


class TwitterTweet(BaseModel):
    endpoint: Literal["tweet"]
    text: str
    media_url: str | None = None
    content_id: UUID | None = None


class TwitterUser(BaseModel):
    endpoint: Literal["user"]


class TwitterProfile(BaseModel):
    endpoint: Literal["profile"]


class TwitterTweets(BaseModel):
    endpoint: Literal["tweets"]
    limit: int = Field(default=10, ge=1, le=100)


class TwitterVerify(BaseModel):
    endpoint: Literal["verify"]


class TwitterRequest(
    RootModel[
        Annotated[
            Union[TwitterAuth, TwitterTweet, TwitterUser, TwitterProfile, TwitterTweets, TwitterVerify],
            Field(discriminator="endpoint"),
        ]
    ]
):
    pass


def _envelope(data: BaseModel) -> dict:
    return {"data": data.model_dump(mode="json"), "error": None}


def _error_envelope(exc: PlatformError) -> JSONResponse:
    status_code = (
        status.HTTP_500_INTERNAL_SERVER_ERROR
        if isinstance(exc, ConfigurationError)
        else status.HTTP_400_BAD_REQUEST
    )
    return JSONResponse(
        status_code=status_code,
        content={"data": None, "error": str(exc), "error_code": exc.error_code},
    )


def _stored_credentials(db: Session, user_id: UUID, platform: str) -> PlatformCredentials:
    return credentials_for(get_connection(db, user_id=user_id, platform=platform))


async def _start_flow(services: ServiceRegistry, scope: SessionScope, user_id: UUID, platform: str) -> AuthorizeData:
    flow = services.new_flow(user_id=user_id, platform=platform, scope=scope)
    authorize_url = await services.flows.launch(flow, scope.tasks)
    return AuthorizeData(flow_id=flow.flow_id, authorize_url=authorize_url)


class PublishRejectedError(PlatformError):
    def __init__(self, message: str, error_code: str | None) -> None:
        super().__init__(message)
        self.error_code = error_code or PlatformError.error_code


async def _publish(
    services: ServiceRegistry,
    scope: SessionScope,
    user_id: UUID,
    platform: str,
    *,
    text: str,
    media_url: str | None,
    content_id: UUID | None,
) -> PublishData:
    result = await services.publisher.publish(
        user_id=user_id,
        platform=platform,
        text=text,
        media_url=media_url,
        content_id=content_id,
        tasks=scope.tasks,
    )
    if not result.success:
        raise PublishRejectedError(result.error or "Publish failed", result.error_code)
    return PublishData(
        success=True,
        id=result.external_post_id,
        message=result.message,
        content_id=str(result.content_id) if result.content_id else None,
        warning=result.warning,
    )


@router.post("/instagram", status_code=status.HTTP_200_OK)
async def instagram_function(
    payload: InstagramRequest,
    user_id: UUID = Depends(get_current_user_id),
    scope: SessionScope = Depends(get_session_scope),
    services: ServiceRegistry = Depends(get_services),
    db: Session = Depends(get_db),
):
    action = payload.root
    client = services.clients.get("instagram")
    logger.info("integration_invoked platform=instagram action=%s user_id=%s", action.action, user_id)
    try:
        if isinstance(action, InstagramAuthorize):
            data = await _start_flow(services, scope, user_id, "instagram")
        elif isinstance(action, InstagramCallback):
            accepted = services.flows.deliver(
                AuthCallbackMessage(
                    type=client.callback_message_type,
                    origin=settings.app_origin,
                    code=action.code,
                    state=action.state,
                )
            )
            data = CallbackAcceptedData(accepted=accepted)
        elif isinstance(action, InstagramVerify):
            result = await services.verifier.verify_detailed(user_id, "instagram")
            data = VerifyData(verified=result.connected, message=result.message, needs_reauth=result.needs_reauth)
        elif isinstance(action, InstagramProfile):
            profile = await client.fetch_profile(_stored_credentials(db, user_id, "instagram"))
            data = ProfileData.from_profile(profile)
        elif isinstance(action, InstagramPosts):
            posts = await client.fetch_posts(_stored_credentials(db, user_id, "instagram"), limit=action.limit)
            data = PostsData(posts=[PostData.from_post(post) for post in posts])
        elif isinstance(action, InstagramPublish):
            data = await _publish(
                services,
                scope,
                user_id,
                "instagram",
                text=action.caption,
                media_url=action.media_url,
                content_id=action.content_id,
            )
        else:
            outcome = await client.setup_webhook(_stored_credentials(db, user_id, "instagram"))
            data = WebhookData(success=bool(outcome.get("success")), message=str(outcome.get("message") or ""))
    except PlatformError as exc:
        logger.warning("integration_failed platform=instagram action=%s error_code=%s", action.action, exc.error_code)
        return _error_envelope(exc)
    return _envelope(data)


@router.post("/twitter", status_code=status.HTTP_200_OK)
async def twitter_function(
    payload: TwitterRequest,
    user_id: UUID = Depends(get_current_user_id),
    scope: SessionScope = Depends(get_session_scope),
    services: ServiceRegistry = Depends(get_services),
    db: Session = Depends(get_db),
):
    request = payload.root
    client = services.clients.get("twitter")
    logger.info("integration_invoked platform=twitter endpoint=%s user_id=%s", request.endpoint, user_id)
    try:
        if isinstance(request, TwitterAuth):
            data = await _start_flow(services, scope, user_id, "twitter")
        elif isinstance(request, TwitterTweet):
            data = await _publish(
                services,
                scope,
                user_id,
                "twitter",
                text=request.text,
                media_url=request.media_url,
                content_id=request.content_id,
            )
        elif isinstance(request, TwitterUser):
            result = await client.verify_credentials(_stored_credentials(db, user_id, "twitter"))
            data = UserData(verified=result.verified, message=result.message, user=result.user)
        elif isinstance(request, TwitterProfile):
            profile = await client.fetch_profile(_stored_credentials(db, user_id, "twitter"))
            data = ProfileData.from_profile(profile)
        elif isinstance(request, TwitterTweets):
            posts = await client.fetch_posts(_stored_credentials(db, user_id, "twitter"), limit=request.limit)
            data = PostsData(posts=[PostData.from_post(post) for post in posts])
        else:
            result = await services.verifier.verify_detailed(user_id, "twitter")
            data = VerifyData(verified=result.connected, message=result.message, needs_reauth=result.needs_reauth)
    except PlatformError as exc:
        logger.warning("integration_failed platform=twitter endpoint=%s error_code=%s", request.endpoint, exc.error_code)
        return _error_envelope(exc)
    return _envelope(data)
