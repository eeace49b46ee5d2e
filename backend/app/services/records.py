"""
Insert-if-absent helpers for rows with a natural key.

Concurrent stage runs may try to create the same Post, Translation, slide or
PublishingJob. Each helper issues ``INSERT ... ON CONFLICT DO NOTHING`` and
then reads the row back, so exactly one row exists and the caller learns
whether it was the one that created it.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import CarouselSlide, Post, PublishingJob, RoutingDecision, Translation


async def _insert_ignore(session: AsyncSession, model: type, values: dict[str, Any]) -> bool:
    """True if a new row was inserted, False if a unique key already held one."""
    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    result = await session.execute(insert(model).values(**values).on_conflict_do_nothing())
    return bool(result.rowcount)


async def insert_post_if_new(session: AsyncSession, values: dict[str, Any]) -> bool:
    """Dedup boundary for scraped posts: the shortcode."""
    return await _insert_ignore(session, Post, values)


async def get_or_create_translation(
    session: AsyncSession, post: Post, *, retry_count: int = 0
) -> tuple[Translation, bool]:
    created = await _insert_ignore(session, Translation, {
        "post_id": post.id,
        "original_caption": post.caption,
        "retry_count": retry_count,
        "status": "pending",
    })
    translation = (
        await session.execute(select(Translation).where(Translation.post_id == post.id))
    ).scalar_one()
    return translation, created


async def get_or_create_slide(
    session: AsyncSession, translation_id: int, slide_number: int, destination_id: int | None = None
) -> CarouselSlide:
    """``destination_id=None`` is a shared content slide, otherwise a CTA slide."""
    await _insert_ignore(session, CarouselSlide, {
        "translation_id": translation_id,
        "slide_number": slide_number,
        "destination_id": destination_id,
        "status": "pending",
        "attempts": 0,
    })
    q = select(CarouselSlide).where(
        CarouselSlide.translation_id == translation_id,
        CarouselSlide.slide_number == slide_number,
    )
    if destination_id is None:
        q = q.where(CarouselSlide.destination_id.is_(None))
    else:
        q = q.where(CarouselSlide.destination_id == destination_id)
    return (await session.execute(q)).scalar_one()


async def get_or_create_publishing_job(session: AsyncSession, routing_decision_id: int) -> tuple[PublishingJob, bool]:
    created = await _insert_ignore(session, PublishingJob, {
        "routing_decision_id": routing_decision_id,
        "status": "queued",
        "attempts": 0,
    })
    job = (
        await session.execute(
            select(PublishingJob).where(PublishingJob.routing_decision_id == routing_decision_id)
        )
    ).scalar_one()
    return job, created


async def get_or_create_routing_decision(
    session: AsyncSession, values: dict[str, Any]
) -> tuple[RoutingDecision, bool]:
    """One decision per (post, destination); an existing one wins."""
    created = await _insert_ignore(session, RoutingDecision, values)
    decision = (
        await session.execute(
            select(RoutingDecision).where(
                RoutingDecision.post_id == values["post_id"],
                RoutingDecision.destination_id == values["destination_id"],
            )
        )
    ).scalar_one()
    return decision, created
