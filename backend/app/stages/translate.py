"""
Translate stage with a quality gate.

A result scoring below QUALITY_THRESHOLD is re-submitted with feedback until
MAX_RETRIES quality retries are spent; after that it is accepted as is. The
quality loop is separate from the queue's attempt-based retry, which only
sees adaptation-service failures.
"""
from __future__ import annotations

import logging
from typing import Any

from app import db
from app.errors import EntityNotFoundError, PreconditionError
from app.jobs.base import GENERATE_QUEUE, TRANSLATE_QUEUE
from app.jobs.factory import get_job_queue
from app.models import Post
from app.services import activity
from app.services.llm_provider import get_llm_provider
from app.services.records import get_or_create_translation
from app.state_machine import TranslationStatus, transition

logger = logging.getLogger(__name__)

QUALITY_THRESHOLD = 7
MAX_RETRIES = 3


def quality_feedback(score: float) -> str:
    return f"Previous score: {score:g}/10. Please improve naturalness and cultural adaptation."


async def process_translate_job(payload: dict[str, Any]) -> None:
    post_id = int(payload["post_id"])
    retry_count = int(payload.get("retry_count") or 0)
    feedback = payload.get("feedback")
    next_job: tuple[str, dict[str, Any]] | None = None

    async with db.AsyncSessionLocal() as session:
        post = await session.get(Post, post_id)
        if post is None:
            raise EntityNotFoundError("Post", post_id)
        if not post.caption:
            raise PreconditionError(f"Post {post_id} has no caption to translate")

        translation, _ = await get_or_create_translation(session, post, retry_count=retry_count)
        if translation.status == TranslationStatus.completed.value:
            logger.info(f"[translate] Post {post.shortcode} already translated, skipping")
            return

        transition(translation, TranslationStatus.translating)
        translation.retry_count = retry_count
        await session.commit()

        try:
            provider = await get_llm_provider(session)
            result = await provider.adapt_caption(post.caption, feedback)
        except Exception as exc:
            transition(translation, TranslationStatus.failed)
            session.add(translation)
            await activity.record(
                session,
                activity.TRANSLATION_FAILED,
                f"Translation failed for post {post.shortcode}: {exc}",
                entity_type="translation",
                entity_id=translation.id,
            )
            raise

        translation.translated_slides = result.slides
        translation.quality_score = result.quality_score
        score = result.quality_score

        if score < QUALITY_THRESHOLD and retry_count < MAX_RETRIES:
            # stays translating until the retry lands
            await session.commit()
            logger.info(
                f"[translate] Post {post.shortcode} scored {score:g}/10, retrying ({retry_count + 1}/{MAX_RETRIES})"
            )
            next_job = (
                TRANSLATE_QUEUE,
                {"post_id": post_id, "retry_count": retry_count + 1, "feedback": quality_feedback(score)},
            )
        else:
            if score < QUALITY_THRESHOLD:
                logger.info(
                    f"[translate] Post {post.shortcode} accepted at {score:g}/10 after {MAX_RETRIES} retries"
                )
            transition(translation, TranslationStatus.completed)
            session.add(translation)
            await activity.record(
                session,
                activity.TRANSLATION_COMPLETED,
                f"Post {post.shortcode} translated ({len(result.slides)} slides, quality: {score:g}/10)",
                entity_type="translation",
                entity_id=translation.id,
                metadata={"slides_count": len(result.slides), "quality_score": score},
            )
            next_job = (GENERATE_QUEUE, {"translation_id": translation.id, "post_id": post_id})

    if next_job is not None:
        await get_job_queue().submit(*next_job)
