"""
Generate stage: render carousel slides.

Content slides (1..n) are shared by every destination and keyed with a NULL
destination. Each non-rejected routing decision then gets its own CTA slide
at position n+1. A completed slide is never rendered again, so re-running the
stage only fills in what is missing.

Once every content slide is completed, one PublishingJob per non-rejected
routing decision is created (keyed by routing decision) and Publish is
submitted for the newly created ones.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app import db
from app.errors import EntityNotFoundError, PreconditionError
from app.integrations.gemini_images import (
    ImageRenderer,
    build_cta_prompt,
    build_retry_prompt,
    build_slide_prompt,
    get_image_renderer,
)
from app.jobs.base import PUBLISH_QUEUE
from app.jobs.factory import get_job_queue
from app.models import CarouselSlide, DestinationAccount, Post, RoutingDecision, Translation
from app.services import activity
from app.services.image_storage import save_slide_image
from app.services.records import get_or_create_publishing_job, get_or_create_slide
from app.state_machine import RoutingStatus, SlideStatus, transition

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def default_cta_text(ig_handle: str) -> str:
    return f"עקבו אחרינו @{ig_handle}"


def cta_file_number(cta_slide_number: int, destination_id: int) -> int:
    """CTA images share a post folder, so the file name carries the destination."""
    return cta_slide_number * 100 + destination_id


async def _render_slide(
    session: AsyncSession,
    renderer: ImageRenderer,
    slide: CarouselSlide,
    *,
    shortcode: str,
    text: str,
    prompt: str,
    file_number: int,
    label: str,
) -> bool:
    for attempt in range(1, MAX_ATTEMPTS + 1):
        transition(slide, SlideStatus.generating)
        slide.attempts = attempt
        session.add(slide)
        await session.commit()

        attempt_prompt = prompt if attempt == 1 else build_retry_prompt(text, attempt)
        try:
            image = await renderer.render(attempt_prompt)
            image_path = save_slide_image(shortcode, file_number, image.image_base64)
        except Exception as exc:
            logger.warning(f"[generate] {label} attempt {attempt}/{MAX_ATTEMPTS} failed: {exc}")
            continue

        slide.image_path = image_path
        slide.prompt_used = attempt_prompt
        transition(slide, SlideStatus.completed)
        session.add(slide)
        await activity.record(
            session,
            activity.SLIDE_GENERATED,
            f"{label} generated for {shortcode}",
            entity_type="carousel_slide",
            entity_id=slide.id,
        )
        return True

    transition(slide, SlideStatus.failed)
    session.add(slide)
    await activity.record(
        session,
        activity.SLIDE_FAILED,
        f"{label} failed for {shortcode} after {MAX_ATTEMPTS} attempts",
        entity_type="carousel_slide",
        entity_id=slide.id,
    )
    return False


async def process_generate_job(payload: dict[str, Any]) -> None:
    translation_id = int(payload["translation_id"])
    post_id = int(payload["post_id"])
    publish_job_ids: list[int] = []

    async with db.AsyncSessionLocal() as session:
        translation = await session.get(Translation, translation_id)
        if translation is None:
            raise EntityNotFoundError("Translation", translation_id)
        if not translation.translated_slides:
            raise PreconditionError(f"Translation {translation_id} has no slides")
        post = await session.get(Post, post_id)
        if post is None:
            raise EntityNotFoundError("Post", post_id)

        shortcode = post.shortcode
        texts = [str(t) for t in translation.translated_slides]
        total_slides = len(texts) + 1

        decisions = (
            await session.execute(
                select(RoutingDecision)
                .where(
                    RoutingDecision.post_id == post_id,
                    RoutingDecision.status != RoutingStatus.rejected.value,
                )
                .order_by(RoutingDecision.id)
            )
        ).scalars().all()
        dest_ids = [d.destination_id for d in decisions]
        destinations: dict[int, DestinationAccount] = {}
        if dest_ids:
            rows = await session.execute(select(DestinationAccount).where(DestinationAccount.id.in_(dest_ids)))
            destinations = {d.id: d for d in rows.scalars().all()}

        renderer = await get_image_renderer(session)

        for number, text in enumerate(texts, start=1):
            slide = await get_or_create_slide(session, translation_id, number)
            if slide.status == SlideStatus.completed.value:
                continue
            await _render_slide(
                session,
                renderer,
                slide,
                shortcode=shortcode,
                text=text,
                prompt=build_slide_prompt(text, number, total_slides),
                file_number=number,
                label=f"Slide {number}/{total_slides}",
            )

        cta_number = len(texts) + 1
        for decision in decisions:
            dest = destinations.get(decision.destination_id)
            if dest is None:
                continue
            slide = await get_or_create_slide(session, translation_id, cta_number, dest.id)
            if slide.status == SlideStatus.completed.value:
                continue
            cta_text = dest.cta_template or default_cta_text(dest.ig_handle)
            await _render_slide(
                session,
                renderer,
                slide,
                shortcode=shortcode,
                text=cta_text,
                prompt=build_cta_prompt(cta_text, dest.ig_handle, dest.brand_colors),
                file_number=cta_file_number(cta_number, dest.id),
                label=f"CTA slide for @{dest.ig_handle}",
            )

        content_statuses = (
            await session.execute(
                select(CarouselSlide.status).where(
                    CarouselSlide.translation_id == translation_id,
                    CarouselSlide.destination_id.is_(None),
                )
            )
        ).scalars().all()
        all_content_done = bool(content_statuses) and all(
            s == SlideStatus.completed.value for s in content_statuses
        )

        if not all_content_done:
            logger.info(f"[generate] {shortcode}: content slides incomplete, publishing deferred")
            return

        for decision in decisions:
            job, created = await get_or_create_publishing_job(session, decision.id)
            if created:
                publish_job_ids.append(job.id)
        await session.commit()

    queue = get_job_queue()
    for job_id in publish_job_ids:
        # failed -> queued is a manual edge; the queue must not retry publishes
        await queue.submit(PUBLISH_QUEUE, {"publishing_job_id": job_id}, max_attempts=1)
