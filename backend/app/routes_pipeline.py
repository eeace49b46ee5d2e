"""
Pipeline trigger endpoints: scrape, analyze, approve / retry publish.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.services import pipeline_control

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])

SessionDep = Depends(get_session)


def _ok(message: str, **extra) -> dict:
    return {"success": True, "data": {"message": message, **extra}}


@router.post("/scrape/{source_id}")
async def trigger_scrape(source_id: int, session: AsyncSession = SessionDep):
    channel = await pipeline_control.enqueue_scrape(session, source_id)
    return _ok(f"Scrape queued for @{channel.ig_handle}")


@router.post("/scrape-all")
async def trigger_scrape_all(session: AsyncSession = SessionDep):
    ids = await pipeline_control.enqueue_scrape_all(session)
    if not ids:
        return _ok("No active source channels", source_ids=[])
    return _ok(f"Scrape queued for {len(ids)} source(s)", source_ids=ids)


@router.post("/analyze/{post_id}")
async def trigger_analyze(post_id: int, session: AsyncSession = SessionDep):
    post = await pipeline_control.enqueue_analyze(session, post_id)
    return _ok(f"Analysis queued for post {post.shortcode}")


@router.post("/approve-publish/{job_id}")
async def approve_publish(job_id: int, session: AsyncSession = SessionDep):
    await pipeline_control.approve_publish(session, job_id)
    return _ok(f"Publishing job {job_id} approved and queued")


@router.post("/retry-publish/{job_id}")
async def retry_publish(job_id: int, session: AsyncSession = SessionDep):
    await pipeline_control.retry_publish(session, job_id)
    return _ok(f"Publish retry queued for job {job_id}")
