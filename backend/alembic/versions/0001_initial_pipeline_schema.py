"""initial pipeline schema

Revision ID: 0001_initial_pipeline_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial_pipeline_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "source_channels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ig_handle", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("scrape_frequency", sa.String(16), nullable=False, server_default="hourly"),
        sa.Column("virality_threshold", sa.Float(), nullable=True),
        sa.Column("last_scraped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_posts_scraped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "destination_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ig_user_id", sa.String(64), nullable=False),
        sa.Column("ig_handle", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("topic_description", sa.Text(), nullable=False),
        sa.Column("brand_colors", sa.Text(), nullable=True),
        sa.Column("logo_url", sa.String(512), nullable=True),
        sa.Column("cta_template", sa.Text(), nullable=True),
        sa.Column("auto_publish", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_channel_id", sa.Integer(), sa.ForeignKey("source_channels.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("shortcode", sa.String(64), nullable=False, unique=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("likes_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("comments_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("ig_timestamp", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("display_url", sa.Text(), nullable=True),
        sa.Column("engagement_rate", sa.Float(), nullable=True),
        sa.Column("is_viral", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("viral_score", sa.Float(), nullable=True),
        sa.Column("scraped_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "routing_decisions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("destination_id", sa.Integer(), sa.ForeignKey("destination_accounts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("match_score", sa.Float(), nullable=True),
        sa.Column("match_reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("overridden_by_user", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("post_id", "destination_id", name="uq_routing_decisions_post_destination"),
    )

    op.create_table(
        "translations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("original_caption", sa.Text(), nullable=True),
        sa.Column("translated_slides", sa.JSON(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "carousel_slides",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("translation_id", sa.Integer(), sa.ForeignKey("translations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("destination_id", sa.Integer(), sa.ForeignKey("destination_accounts.id", ondelete="CASCADE"), nullable=True),
        sa.Column("slide_number", sa.Integer(), nullable=False),
        sa.Column("image_path", sa.Text(), nullable=True),
        sa.Column("prompt_used", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("translation_id", "slide_number", "destination_id", name="uq_carousel_slides_destination"),
    )
    # NULLs never collide in a unique constraint; shared slides need a partial index
    op.create_index(
        "uq_carousel_slides_shared",
        "carousel_slides",
        ["translation_id", "slide_number"],
        unique=True,
        postgresql_where=sa.text("destination_id IS NULL"),
        sqlite_where=sa.text("destination_id IS NULL"),
    )

    op.create_table(
        "publishing_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("routing_decision_id", sa.Integer(), sa.ForeignKey("routing_decisions.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="queued"),
        sa.Column("child_container_ids", sa.JSON(), nullable=True),
        sa.Column("parent_container_id", sa.String(64), nullable=True),
        sa.Column("published_media_id", sa.String(64), nullable=True),
        sa.Column("error_log", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(64), nullable=False, index=True),
        sa.Column("entity_type", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_table("activity_log")
    op.drop_table("publishing_jobs")
    op.drop_index("uq_carousel_slides_shared", table_name="carousel_slides")
    op.drop_table("carousel_slides")
    op.drop_table("translations")
    op.drop_table("routing_decisions")
    op.drop_table("posts")
    op.drop_table("destination_accounts")
    op.drop_table("source_channels")
