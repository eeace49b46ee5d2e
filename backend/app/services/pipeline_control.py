"""
Operator actions on the pipeline: trigger scrape/analyze, approve or retry a
publishing job. Shared by the HTTP routes and usable from a shell.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import EntityNotFoundError
from app.jobs.base import ANALYZE_QUEUE, PUBLISH_QUEUE, SCRAPE_QUEUE
from app.jobs.factory import get_job_queue
from app.models import Post, PublishingJob, SourceChannel
from app.state_machine import PublishingStatus, transition

logger = logging.getLogger(__name__)


async def enqueue_scrape(session: AsyncSession, source_channel_id: int) -> SourceChannel:
    channel = await session.get(SourceChannel, source_channel_id)
    if channel is None:
        raise EntityNotFoundError("SourceChannel", source_channel_id)
    await get_job_queue().submit(SCRAPE_QUEUE, {"source_channel_id": channel.id})
    return channel


async def enqueue_scrape_all(session: AsyncSession) -> list[int]:
    rows = await session.execute(
        select(SourceChannel.id).where(SourceChannel.is_active.is_(True)).order_by(SourceChannel.id)
    )
    ids = [row[0] for row in rows.all()]
    queue = get_job_queue()
    for channel_id in ids:
        await queue.submit(SCRAPE_QUEUE, {"source_channel_id": channel_id})
    return ids


async def enqueue_analyze(session: AsyncSession, post_id: int) -> Post:
    post = await session.get(Post, post_id)
    if post is None:
        raise EntityNotFoundError("Post", post_id)
    await get_job_queue().submit(ANALYZE_QUEUE, {"post_id": post.id})
    return post


async def _load_job(session: AsyncSession, job_id: int) -> PublishingJob:
    job = await session.get(PublishingJob, job_id)
    if job is None:
        raise EntityNotFoundError("PublishingJob", job_id)
    return job


async def approve_publish(session: AsyncSession, job_id: int) -> PublishingJob:
    """awaiting_approval -> queued, stamped as operator-approved so Publish
    goes ahead even though the destination is not auto-publish."""
    job = await _load_job(session, job_id)
    transition(job, PublishingStatus.queued)
    job.approved_at = datetime.now(timezone.utc)
    session.add(job)
    await session.commit()
    logger.info(f"[pipeline] Publishing job {job_id} approved")

    await get_job_queue().submit(PUBLISH_QUEUE, {"publishing_job_id": job_id}, max_attempts=1)
    return job


async def retry_publish(session: AsyncSession, job_id: int) -> PublishingJob:
    """failed -> queued, then re-submit Publish."""
    job = await _load_job(session, job_id)
    transition(job, PublishingStatus.queued)
    job.error_log = None
    session.add(job)
    await session.commit()
    logger.info(f"[pipeline] Publishing job {job_id} re-queued for retry")

    await get_job_queue().submit(PUBLISH_QUEUE, {"publishing_job_id": job_id}, max_attempts=1)
    return job
