from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class ScrapeFrequency(str, Enum):
    every_30_min = "30min"
    hourly = "hourly"
    daily = "daily"


class SourceChannel(Base):
    __tablename__ = "source_channels"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ig_handle: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    scrape_frequency: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="hourly")
    virality_threshold: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    last_scraped_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    total_posts_scraped: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0", default=0)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true(), default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    posts: Mapped[list["Post"]] = relationship(
        back_populates="source_channel", cascade="all, delete-orphan", passive_deletes=True
    )


class DestinationAccount(Base):
    __tablename__ = "destination_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ig_user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    ig_handle: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    access_token: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    topic_description: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    brand_colors: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(sa.String(512), nullable=True)
    cta_template: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    auto_publish: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.false(), default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true(), default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    source_channel_id: Mapped[int] = mapped_column(
        sa.ForeignKey("source_channels.id", ondelete="CASCADE"), index=True, nullable=False
    )
    shortcode: Mapped[str] = mapped_column(sa.String(64), unique=True, nullable=False)
    caption: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    # -1 means the platform hides the like count
    likes_count: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False, server_default="0", default=0)
    comments_count: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False, server_default="0", default=0)
    ig_timestamp: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), index=True, nullable=True)
    display_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    engagement_rate: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    is_viral: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.false(), default=False)
    viral_score: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    scraped_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    source_channel: Mapped[SourceChannel] = relationship(back_populates="posts")
    routing_decisions: Mapped[list["RoutingDecision"]] = relationship(
        back_populates="post", cascade="all, delete-orphan", passive_deletes=True
    )
    translation: Mapped["Translation | None"] = relationship(
        back_populates="post", cascade="all, delete-orphan", uselist=False, passive_deletes=True
    )


class RoutingDecision(Base):
    __tablename__ = "routing_decisions"
    __table_args__ = (
        sa.UniqueConstraint("post_id", "destination_id", name="uq_routing_decisions_post_destination"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(sa.ForeignKey("posts.id", ondelete="CASCADE"), index=True, nullable=False)
    destination_id: Mapped[int] = mapped_column(
        sa.ForeignKey("destination_accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    match_score: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    match_reason: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="pending", default="pending")
    overridden_by_user: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default=sa.false(), default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    post: Mapped[Post] = relationship(back_populates="routing_decisions")
    publishing_job: Mapped["PublishingJob | None"] = relationship(
        back_populates="routing_decision", cascade="all, delete-orphan", uselist=False, passive_deletes=True
    )


class Translation(Base):
    __tablename__ = "translations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        sa.ForeignKey("posts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    original_caption: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    translated_slides: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True)
    quality_score: Mapped[float | None] = mapped_column(sa.Float(), nullable=True)
    retry_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0", default=0)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="pending", default="pending")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    post: Mapped[Post] = relationship(back_populates="translation")
    slides: Mapped[list["CarouselSlide"]] = relationship(
        back_populates="translation", cascade="all, delete-orphan", passive_deletes=True
    )


class CarouselSlide(Base):
    """Rendered slide. ``destination_id`` NULL marks a shared content slide;
    a non-NULL value marks that destination's call-to-action slide."""

    __tablename__ = "carousel_slides"
    __table_args__ = (
        sa.Index(
            "uq_carousel_slides_shared",
            "translation_id",
            "slide_number",
            unique=True,
            postgresql_where=sa.text("destination_id IS NULL"),
            sqlite_where=sa.text("destination_id IS NULL"),
        ),
        sa.UniqueConstraint(
            "translation_id", "slide_number", "destination_id", name="uq_carousel_slides_destination"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    translation_id: Mapped[int] = mapped_column(
        sa.ForeignKey("translations.id", ondelete="CASCADE"), index=True, nullable=False
    )
    destination_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("destination_accounts.id", ondelete="CASCADE"), nullable=True
    )
    slide_number: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    image_path: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    prompt_used: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="pending", default="pending")
    attempts: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0", default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    translation: Mapped[Translation] = relationship(back_populates="slides")


class PublishingJob(Base):
    __tablename__ = "publishing_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    routing_decision_id: Mapped[int] = mapped_column(
        sa.ForeignKey("routing_decisions.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="queued", default="queued")
    child_container_ids: Mapped[list | None] = mapped_column(sa.JSON(), nullable=True)
    parent_container_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    published_media_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    error_log: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    attempts: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0", default=0)
    # set only by the operator's approve action; gates non-auto-publish destinations
    approved_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    routing_decision: Mapped[RoutingDecision] = relationship(back_populates="publishing_job")


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    message: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    meta: Mapped[dict | None] = mapped_column("metadata", sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), index=True, nullable=False
    )


class AppSetting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    value: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )
