from social_connect.domain.models.activity_history import ActivityHistory
from social_connect.domain.models.content import Content, ContentMetrics, ContentStatus, ContentType
from social_connect.domain.models.notification import Notification, NotificationType
from social_connect.domain.models.platform_connection import Platform, PlatformConnection
from social_connect.domain.models.statistics import (
    DAY_NAMES,
    DailyEngagement,
    EngagementMetrics,
    FollowerMetrics,
    PlatformStatistics,
)
from social_connect.domain.models.user import User

__all__ = [
    "User",
    "Platform",
    "PlatformConnection",
    "Content",
    "ContentMetrics",
    "ContentStatus",
    "ContentType",
    "ActivityHistory",
    "FollowerMetrics",
    "EngagementMetrics",
    "DailyEngagement",
    "PlatformStatistics",
    "DAY_NAMES",
    "Notification",
    "NotificationType",
]
