from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from social_connect.domain.models.notification import Notification, NotificationType


def notify(
    db: Session,
    *,
    user_id: UUID,
    message: str,
    notification_type: NotificationType | str = NotificationType.INFO,
    related_content_id: UUID | None = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=str(notification_type),
        message=message,
        related_content_id=related_content_id,
    )
    db.add(notification)
    db.flush()
    return notification


def list_notifications(db: Session, *, user_id: UUID, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    return list(db.execute(query.order_by(Notification.created_at.desc()).limit(limit)).scalars())
