"""add content updated_at for retry recovery

Revision ID: 0002_content_updated_at
Revises: 0001_social_connect_schema
Create Date: 2026-10-19 00:10:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_content_updated_at"
down_revision = "0001_social_connect_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "content",
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )


def downgrade() -> None:
    op.drop_column("content", "updated_at")
