from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from social_connect.application.services.content_service import (
    ContentStatusError,
    create_draft,
    get_content,
    schedule_content,
)
from social_connect.application.services.notification_service import list_notifications
from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.application.services.session_scope import SessionScope
from social_connect.domain.models.content import Content
from social_connect.infrastructure.db.session import get_db
from social_connect.interfaces.api.deps import get_current_user_id, get_services, get_session_scope

router = APIRouter(tags=["publishing"])

FAILURE_STATUS_CODES = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_connected": status.HTTP_409_CONFLICT,
    "auth_failed": status.HTTP_409_CONFLICT,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "unsupported_platform": status.HTTP_404_NOT_FOUND,
}


class PublishRequest(BaseModel):
    platform: str
    content: str
    media_url: str | None = None
    content_id: UUID | None = None
    intent: str | None = None


class ContentCreateRequest(BaseModel):
    platform: str
    content: str = Field(min_length=1)
    media_url: str | None = None
    intent: str | None = None


class ScheduleRequest(BaseModel):
    scheduled_for: datetime


def _serialize_content(content: Content) -> dict:
    return {
        "id": str(content.id),
        "platform": content.platform,
        "type": content.type,
        "intent": content.intent,
        "content": content.content,
        "media_url": content.media_url,
        "status": content.status,
        "external_id": content.external_id,
        "last_error": content.last_error,
        "scheduled_for": content.scheduled_for.isoformat() if content.scheduled_for else None,
        "published_at": content.published_at.isoformat() if content.published_at else None,
    }


@router.post("/publish", status_code=status.HTTP_200_OK)
async def publish(
    payload: PublishRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    scope: SessionScope = Depends(get_session_scope),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    result = await services.publisher.publish(
        user_id=user_id,
        platform=payload.platform,
        text=payload.content,
        media_url=payload.media_url,
        content_id=payload.content_id,
        intent=payload.intent,
        tasks=scope.tasks,
    )
    if not result.success:
        response.status_code = FAILURE_STATUS_CODES.get(result.error_code or "", status.HTTP_502_BAD_GATEWAY)
    return result.as_dict()


@router.post("/content", status_code=status.HTTP_201_CREATED)
def create_content(
    payload: ContentCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
    db: Session = Depends(get_db),
) -> dict:
    platform = payload.platform.strip().lower()
    if platform not in services.clients:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unsupported platform: {platform}")
    content = create_draft(
        db,
        user_id=user_id,
        platform=platform,
        text=payload.content,
        media_url=payload.media_url,
        intent=payload.intent,
    )
    db.commit()
    db.refresh(content)
    return _serialize_content(content)


@router.post("/content/{content_id}/schedule", status_code=status.HTTP_200_OK)
def schedule(
    content_id: UUID,
    payload: ScheduleRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    content = get_content(db, user_id=user_id, content_id=content_id)
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    try:
        schedule_content(db, content, scheduled_for=payload.scheduled_for)
    except ContentStatusError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error_code": "invalid_status_transition", "message": str(exc)},
        ) from exc
    db.commit()
    db.refresh(content)
    return _serialize_content(content)


@router.get("/notifications", status_code=status.HTTP_200_OK)
def notifications(
    unread_only: bool = False,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[dict]:
    return [
        {
            "id": str(item.id),
            "type": item.type,
            "message": item.message,
            "related_content_id": str(item.related_content_id) if item.related_content_id else None,
            "is_read": item.is_read,
            "created_at": item.created_at.isoformat() if item.created_at else None,
        }
        for item in list_notifications(db, user_id=user_id, unread_only=unread_only)
    ]
