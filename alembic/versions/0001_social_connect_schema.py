"""create users, platform connections, content and statistics tables

Revision ID: 0001_social_connect_schema
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_social_connect_schema"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False)


def _user_column() -> sa.Column:
    return sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "users",
        _id_column(),
        sa.Column("auth_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_id", name="uq_users_auth_id"),
    )
    op.create_index("ix_users_auth_id", "users", ["auth_id"], unique=True)

    op.create_table(
        "platform_connections",
        _id_column(),
        _user_column(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("external_account_id", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.String(length=2048), nullable=True),
        sa.Column("refresh_token", sa.String(length=2048), nullable=True),
        sa.Column("profile_image", sa.String(length=1024), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", name="uq_platform_connections_user_platform"),
    )
    op.create_check_constraint(
        "ck_platform_connections_platform_values",
        "platform_connections",
        "platform IN ('instagram', 'twitter')",
    )
    op.create_index("ix_platform_connections_user_id", "platform_connections", ["user_id"], unique=False)

    op.create_table(
        "content",
        _id_column(),
        _user_column(),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("intent", sa.String(length=32), nullable=False, server_default="news"),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("media_url", sa.String(length=2048), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", "external_id", name="uq_content_user_platform_external"),
    )
    op.create_check_constraint("ck_content_type_values", "content", "type IN ('text', 'image', 'video')")
    op.create_check_constraint(
        "ck_content_status_values",
        "content",
        "status IN ('draft', 'scheduled', 'published')",
    )
    op.create_index("ix_content_user_id", "content", ["user_id"], unique=False)
    op.create_index("ix_content_scheduled_for", "content", ["scheduled_for"], unique=False)

    op.create_table(
        "content_metrics",
        _id_column(),
        sa.Column("content_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shares", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reach", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["content_id"], ["content.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("content_id", name="uq_content_metrics_content_id"),
    )

    op.create_table(
        "activity_history",
        _id_column(),
        _user_column(),
        sa.Column("content_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("activity_detail", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        _timestamp("occurred_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["content_id"], ["content.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_history_user_id", "activity_history", ["user_id"], unique=False)

    op.create_table(
        "notifications",
        _id_column(),
        _user_column(),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="info"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_content_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["related_content_id"], ["content.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_check_constraint("ck_notifications_type_values", "notifications", "type IN ('info', 'success', 'error')")
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "follower_metrics",
        _id_column(),
        _user_column(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("recorded_on", sa.Date(), nullable=False),
        sa.Column("follower_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("following_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", "recorded_on", name="uq_follower_metrics_user_platform_day"),
    )
    op.create_index("ix_follower_metrics_user_id", "follower_metrics", ["user_id"], unique=False)

    op.create_table(
        "engagement_metrics",
        _id_column(),
        _user_column(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("recorded_on", sa.Date(), nullable=False),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shares", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement_rate", sa.Float(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", "recorded_on", name="uq_engagement_metrics_user_platform_day"),
    )
    op.create_index("ix_engagement_metrics_user_id", "engagement_metrics", ["user_id"], unique=False)

    op.create_table(
        "daily_engagement",
        _id_column(),
        _user_column(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("day_of_week", sa.String(length=16), nullable=False),
        sa.Column("post_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "platform", "day_of_week", name="uq_daily_engagement_user_platform_day"),
    )
    op.create_index("ix_daily_engagement_user_id", "daily_engagement", ["user_id"], unique=False)

    op.create_table(
        "platform_statistics",
        _id_column(),
        _user_column(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("follower_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("post_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_comments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_shares", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_impressions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("best_day", sa.String(length=16), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "platform",
            "period_start",
            "period_end",
            name="uq_platform_statistics_user_platform_period",
        ),
    )
    op.create_index("ix_platform_statistics_user_id", "platform_statistics", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_platform_statistics_user_id", table_name="platform_statistics")
    op.drop_table("platform_statistics")
    op.drop_index("ix_daily_engagement_user_id", table_name="daily_engagement")
    op.drop_table("daily_engagement")
    op.drop_index("ix_engagement_metrics_user_id", table_name="engagement_metrics")
    op.drop_table("engagement_metrics")
    op.drop_index("ix_follower_metrics_user_id", table_name="follower_metrics")
    op.drop_table("follower_metrics")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_activity_history_user_id", table_name="activity_history")
    op.drop_table("activity_history")
    op.drop_table("content_metrics")
    op.drop_index("ix_content_scheduled_for", table_name="content")
    op.drop_index("ix_content_user_id", table_name="content")
    op.drop_table("content")
    op.drop_index("ix_platform_connections_user_id", table_name="platform_connections")
    op.drop_table("platform_connections")
    op.drop_index("ix_users_auth_id", table_name="users")
    op.drop_table("users")
