import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from social_connect.application.services.content_service import upsert_imported_post
from social_connect.application.services.notification_service import notify
from social_connect.application.services.platform_connection_service import credentials_for, get_connection
from social_connect.core.config import settings
from social_connect.domain.models.notification import NotificationType
from social_connect.domain.models.statistics import (
    DAY_NAMES,
    DailyEngagement,
    EngagementMetrics,
    FollowerMetrics,
    PlatformStatistics,
)
from social_connect.infrastructure.db.session import SessionFactory
from social_connect.infrastructure.db.upsert import upsert_row
from social_connect.infrastructure.observability.metrics import STATISTICS_REFRESHES_TOTAL
from social_connect.integrations.platform_clients import PlatformClientSet, PlatformPost, PlatformProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshResult:
    platform: str
    follower_count: int
    post_count: int
    engagement_rate: float
    best_day: str | None
    imported_posts: int = 0


@dataclass(frozen=True)
class DayTotals:
    post_count: int = 0
    engagement: int = 0


def compute_engagement_rate(total_engagement: int, follower_count: int, post_count: int) -> float:
    """Average engagement per post as a percentage of followers."""
    if follower_count <= 0 or post_count <= 0:
        return 0.0
    return round(total_engagement / (follower_count * post_count) * 100, 4)


def totals_by_weekday(posts: list[PlatformPost]) -> dict[str, DayTotals]:
    totals = {day: DayTotals() for day in DAY_NAMES}
    for post in posts:
        if post.created_at is None:
            continue
        day = DAY_NAMES[post.created_at.weekday()]
        current = totals[day]
        totals[day] = DayTotals(post_count=current.post_count + 1, engagement=current.engagement + post.engagement)
    return totals


def pick_best_day(totals: dict[str, DayTotals]) -> str | None:
    best_day = None
    best_engagement = 0
    for day in DAY_NAMES:
        engagement = totals[day].engagement
        if engagement > best_engagement:
            best_day, best_engagement = day, engagement
    return best_day


def _posts_in_period(posts: list[PlatformPost], period_start: date) -> list[PlatformPost]:
    return [post for post in posts if post.created_at is None or post.created_at.date() >= period_start]


class StatisticsRefresher:
    """Pulls profile and post metrics from a platform into the statistics tables.

    Every table is keyed by its period key, so repeated runs for the same
    day overwrite rather than accumulate.
    """

    def __init__(
        self,
        *,
        clients: PlatformClientSet,
        session_factory: SessionFactory,
        post_limit: int | None = None,
        period_days: int | None = None,
    ) -> None:
        self.clients = clients
        self.session_factory = session_factory
        self.post_limit = post_limit or settings.statistics_post_limit
        self.period_days = period_days or settings.statistics_period_days

    async def refresh(self, user_id: UUID, platform: str, *, today: date | None = None) -> RefreshResult:
        normalized = platform.strip().lower()
        client = self.clients.get(normalized)
        try:
            with self.session_factory() as db:
                credentials = credentials_for(get_connection(db, user_id=user_id, platform=normalized))
            profile = await client.fetch_profile(credentials)
            posts = await client.fetch_posts(credentials, limit=self.post_limit)
            with self.session_factory() as db:
                result = self._store(db, user_id, normalized, profile, posts, today or datetime.now(UTC).date())
                notify(
                    db,
                    user_id=user_id,
                    message=f"{client.display_name} statistics updated: {result.follower_count} followers, "
                    f"{result.engagement_rate:.2f}% engagement",
                    notification_type=NotificationType.INFO,
                )
                db.commit()
        except Exception as exc:
            STATISTICS_REFRESHES_TOTAL.labels(platform=normalized, outcome="failed").inc()
            logger.warning("statistics_refresh_failed user_id=%s platform=%s error=%s", user_id, normalized, exc)
            self._notify_failure(user_id, f"Could not refresh {client.display_name} statistics: {exc}")
            raise

        STATISTICS_REFRESHES_TOTAL.labels(platform=normalized, outcome="succeeded").inc()
        logger.info(
            "statistics_refreshed user_id=%s platform=%s followers=%s posts=%s engagement_rate=%s best_day=%s",
            user_id,
            normalized,
            result.follower_count,
            result.post_count,
            result.engagement_rate,
            result.best_day,
        )
        return result

    def _store(
        self,
        db: Session,
        user_id: UUID,
        platform: str,
        profile: PlatformProfile,
        posts: list[PlatformPost],
        today: date,
    ) -> RefreshResult:
        for post in posts:
            upsert_imported_post(db, user_id=user_id, platform=platform, post=post)

        period_start = today - timedelta(days=self.period_days)
        period_posts = _posts_in_period(posts, period_start)
        likes = sum(post.likes for post in period_posts)
        comments = sum(post.comments for post in period_posts)
        shares = sum(post.shares for post in period_posts)
        impressions = sum(post.impressions for post in period_posts)
        engagement_rate = compute_engagement_rate(likes + comments + shares, profile.follower_count, len(period_posts))
        weekday_totals = totals_by_weekday(period_posts)
        best_day = pick_best_day(weekday_totals)

        upsert_row(
            db,
            FollowerMetrics,
            values={
                "user_id": user_id,
                "platform": platform,
                "recorded_on": today,
                "follower_count": profile.follower_count,
                "following_count": profile.following_count,
            },
            conflict_columns=("user_id", "platform", "recorded_on"),
        )
        upsert_row(
            db,
            EngagementMetrics,
            values={
                "user_id": user_id,
                "platform": platform,
                "recorded_on": today,
                "likes": likes,
                "comments": comments,
                "shares": shares,
                "impressions": impressions,
                "engagement_rate": engagement_rate,
            },
            conflict_columns=("user_id", "platform", "recorded_on"),
        )
        for day, totals in weekday_totals.items():
            upsert_row(
                db,
                DailyEngagement,
                values={
                    "user_id": user_id,
                    "platform": platform,
                    "day_of_week": day,
                    "post_count": totals.post_count,
                    "engagement": totals.engagement,
                },
                conflict_columns=("user_id", "platform", "day_of_week"),
            )
        upsert_row(
            db,
            PlatformStatistics,
            values={
                "user_id": user_id,
                "platform": platform,
                "period_start": period_start,
                "period_end": today,
                "follower_count": profile.follower_count,
                "post_count": len(period_posts),
                "total_likes": likes,
                "total_comments": comments,
                "total_shares": shares,
                "total_impressions": impressions,
                "engagement_rate": engagement_rate,
                "best_day": best_day,
            },
            conflict_columns=("user_id", "platform", "period_start", "period_end"),
        )
        return RefreshResult(
            platform=platform,
            follower_count=profile.follower_count,
            post_count=len(period_posts),
            engagement_rate=engagement_rate,
            best_day=best_day,
            imported_posts=len(posts),
        )

    def _notify_failure(self, user_id: UUID, message: str) -> None:
        try:
            with self.session_factory() as db:
                notify(db, user_id=user_id, message=message, notification_type=NotificationType.ERROR)
                db.commit()
        except Exception:
            logger.exception("statistics_failure_notification_failed user_id=%s", user_id)
