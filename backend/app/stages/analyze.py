"""
Analyze stage: score virality, then route viral posts to destinations.

This is the routing fan-out point. One viral post may be routed to many
destination accounts, but translation is requested once per post.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from app import db
from app.errors import EntityNotFoundError
from app.jobs.base import TRANSLATE_QUEUE
from app.jobs.factory import get_job_queue
from app.models import DestinationAccount, Post, Translation
from app.services import activity, virality
from app.services.llm_provider import MATCH_SCORE_CUTOFF, get_llm_provider
from app.services.records import get_or_create_routing_decision

logger = logging.getLogger(__name__)


async def process_analyze_job(payload: dict[str, Any]) -> None:
    post_id = int(payload["post_id"])
    request_translation = False

    async with db.AsyncSessionLocal() as session:
        post = await session.get(Post, post_id)
        if post is None:
            raise EntityNotFoundError("Post", post_id)

        result = await virality.score_post(session, post)
        post.engagement_rate = result.engagement_rate
        post.viral_score = result.viral_score
        post.is_viral = result.is_viral
        session.add(post)
        await session.commit()

        logger.info(f"[analyze] Post {post.shortcode}: {result.reason}")
        if not result.is_viral:
            return

        await activity.record(
            session,
            activity.POST_VIRAL,
            f"Post {post.shortcode} flagged as viral ({result.viral_score:.1f}x)",
            entity_type="post",
            entity_id=post_id,
            metadata={"viral_score": result.viral_score, "engagement_rate": result.engagement_rate},
        )

        if not post.caption:
            logger.info(f"[analyze] Post {post.shortcode} has no caption, skipping topic routing")
            return

        destinations = (
            await session.execute(
                select(DestinationAccount)
                .where(DestinationAccount.is_active.is_(True))
                .order_by(DestinationAccount.id)
            )
        ).scalars().all()
        if not destinations:
            logger.info("[analyze] No active destination accounts, skipping routing")
            return

        provider = await get_llm_provider(session)
        matches = await provider.match_topics(post.caption, [(d.id, d.topic_description) for d in destinations])

        by_id = {d.id: d for d in destinations}
        matched = 0
        for match in matches:
            dest = by_id.get(match.destination_id)
            if dest is None or match.score < MATCH_SCORE_CUTOFF:
                continue
            matched += 1

            decision, created = await get_or_create_routing_decision(session, {
                "post_id": post_id,
                "destination_id": dest.id,
                "match_score": match.score,
                "match_reason": match.reason,
                "status": "pending",
                "overridden_by_user": False,
            })
            if not created:
                logger.info(f"[analyze] Post {post.shortcode} already routed to @{dest.ig_handle}")
                continue

            await activity.record(
                session,
                activity.POST_ROUTED,
                f"Post {post.shortcode} matched to @{dest.ig_handle} (score: {match.score:g})",
                entity_type="routing_decision",
                entity_id=decision.id,
                metadata={"post_id": post_id, "destination_id": dest.id, "score": match.score},
            )

        if matched:
            existing = (
                await session.execute(select(Translation.id).where(Translation.post_id == post_id))
            ).first()
            request_translation = existing is None
        await session.commit()

    if request_translation:
        await get_job_queue().submit(TRANSLATE_QUEUE, {"post_id": post_id})
