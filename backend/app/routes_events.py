"""
Live event stream (SSE), recent activity, health and overview stats.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.models import ActivityLog, DestinationAccount, Post, PublishingJob, SourceChannel
from app.services.event_bus import Subscription, TooManySubscribers, get_event_bus
from app.state_machine import PublishingStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["events"])

SessionDep = Depends(get_session)

KEEPALIVE_SECONDS = 30.0


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


async def sse_events(sub: Subscription, keepalive_s: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
    """Frames for one subscriber: a ``connected`` event, then bus events with
    keep-alive comments while idle. Unsubscribes when the client goes away."""
    try:
        yield _sse({"type": "connected", "data": {}, "timestamp": datetime.now(timezone.utc).isoformat()})
        while True:
            try:
                event = await asyncio.wait_for(sub.get(), timeout=keepalive_s)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield _sse(event)
    finally:
        sub.close()


@router.get("/events")
async def stream_events():
    try:
        sub = get_event_bus().subscribe()
    except TooManySubscribers as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return StreamingResponse(
        sse_events(sub),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/activity")
async def recent_activity(
    limit: int = Query(default=50, ge=1),
    session: AsyncSession = SessionDep,
):
    limit = min(limit, 100)
    rows = (
        await session.execute(
            select(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit)
        )
    ).scalars().all()
    return {
        "success": True,
        "data": [
            {
                "id": row.id,
                "event_type": row.event_type,
                "entity_type": row.entity_type,
                "entity_id": row.entity_id,
                "message": row.message,
                "metadata": row.meta,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ],
    }


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/stats")
async def stats(session: AsyncSession = SessionDep):
    async def count(q) -> int:
        return int((await session.execute(q)).scalar() or 0)

    return {
        "success": True,
        "data": {
            "sources": await count(select(func.count(SourceChannel.id))),
            "destinations": await count(select(func.count(DestinationAccount.id))),
            "total_posts": await count(select(func.count(Post.id))),
            "viral_posts": await count(select(func.count(Post.id)).where(Post.is_viral.is_(True))),
            "published": await count(
                select(func.count(PublishingJob.id)).where(
                    PublishingJob.status == PublishingStatus.published.value
                )
            ),
        },
    }
