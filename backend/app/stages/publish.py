from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from app import db
from app.errors import EntityNotFoundError, PreconditionError, sanitize
from app.integrations.meta_graph import MAX_CAROUSEL_IMAGES, MIN_CAROUSEL_IMAGES, get_publisher
from app.models import CarouselSlide, DestinationAccount, Post, PublishingJob, RoutingDecision, Translation
from app.services import activity
from app.services.settings_store import get_public_base_url
from app.state_machine import PublishingStatus, RoutingStatus, SlideStatus, transition

logger = logging.getLogger(__name__)


async def process_publish_job(payload: dict[str, Any]) -> None:
    job_id = int(payload["publishing_job_id"])

    async with db.AsyncSessionLocal() as session:
        job = await session.get(PublishingJob, job_id)
        if job is None:
            raise EntityNotFoundError("PublishingJob", job_id)
        if job.status != PublishingStatus.queued.value:
            logger.info(f"[publish] Job {job_id} is {job.status}, nothing to do")
            return

        decision = await session.get(RoutingDecision, job.routing_decision_id)
        if decision is None:
            raise EntityNotFoundError("RoutingDecision", job.routing_decision_id)
        if decision.status == RoutingStatus.rejected.value:
            logger.warning(f"[publish] Job {job_id}: routing decision {decision.id} was rejected, skipping")
            return
        destination = await session.get(DestinationAccount, decision.destination_id)
        if destination is None:
            raise EntityNotFoundError("DestinationAccount", decision.destination_id)
        post = await session.get(Post, decision.post_id)
        if post is None:
            raise EntityNotFoundError("Post", decision.post_id)

        if not destination.auto_publish and job.approved_at is None:
            transition(job, PublishingStatus.awaiting_approval)
            session.add(job)
            await activity.record(
                session,
                activity.PUBLISH_AWAITING_APPROVAL,
                f"{post.shortcode} awaiting approval for @{destination.ig_handle}",
                entity_type="publishing_job",
                entity_id=job_id,
            )
            logger.info(f"[publish] Job {job_id} awaiting manual approval for @{destination.ig_handle}")
            return

        translation = (
            await session.execute(select(Translation).where(Translation.post_id == post.id))
        ).scalar_one_or_none()
        if translation is None or not translation.translated_slides:
            raise PreconditionError(f"No translation found for post {post.id}")
        caption = "\n\n".join(str(s) for s in translation.translated_slides)

        completed = (
            await session.execute(
                select(CarouselSlide)
                .where(
                    CarouselSlide.translation_id == translation.id,
                    CarouselSlide.status == SlideStatus.completed.value,
                )
                .order_by(CarouselSlide.slide_number, CarouselSlide.id)
            )
        ).scalars().all()
        content = [s for s in completed if s.destination_id is None and s.image_path]
        cta = [s for s in completed if s.destination_id == destination.id and s.image_path]

        base_url = await get_public_base_url(session)
        image_urls = [f"{base_url}{s.image_path}" for s in content]
        if cta:
            image_urls.append(f"{base_url}{cta[-1].image_path}")

        if len(image_urls) < MIN_CAROUSEL_IMAGES:
            raise PreconditionError(
                f"Not enough images for carousel (need {MIN_CAROUSEL_IMAGES}+, have {len(image_urls)})"
            )
        image_urls = image_urls[:MAX_CAROUSEL_IMAGES]

        transition(job, PublishingStatus.creating_containers)
        job.attempts = (job.attempts or 0) + 1
        session.add(job)
        await activity.record(
            session,
            activity.PUBLISH_STARTED,
            f"Publishing {post.shortcode} to @{destination.ig_handle}",
            entity_type="publishing_job",
            entity_id=job_id,
        )

        try:
            result = await get_publisher().publish_carousel(
                destination.ig_user_id,
                destination.access_token,
                image_urls,
                caption,
            )
        except Exception as exc:
            error = sanitize(str(exc)) or exc.__class__.__name__
            transition(job, PublishingStatus.failed)
            job.error_log = error
            session.add(job)
            await activity.record(
                session,
                activity.PUBLISH_FAILED,
                f"Publishing {post.shortcode} to @{destination.ig_handle} failed: {error}",
                entity_type="publishing_job",
                entity_id=job_id,
            )
            raise

        transition(job, PublishingStatus.published)
        job.child_container_ids = result.child_container_ids
        job.parent_container_id = result.parent_container_id
        job.published_media_id = result.published_media_id
        job.error_log = None
        transition(decision, RoutingStatus.published)
        session.add_all([job, decision])
        await activity.record(
            session,
            activity.PUBLISH_SUCCESS,
            f"Published {post.shortcode} to @{destination.ig_handle} (media: {result.published_media_id})",
            entity_type="publishing_job",
            entity_id=job_id,
            metadata={"published_media_id": result.published_media_id},
        )
        logger.info(f"[publish] {post.shortcode} -> @{destination.ig_handle}: published as {result.published_media_id}")
