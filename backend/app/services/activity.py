"""
Audit trail: every notable pipeline event becomes an ``activity_log`` row and
is fanned out on the event bus. Observability only; nothing reads it back
for control flow.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ActivityLog
from app.services.event_bus import get_event_bus, get_event_relay

logger = logging.getLogger(__name__)

SCRAPE_STARTED = "scrape_started"
SCRAPE_COMPLETED = "scrape_completed"
POST_VIRAL = "post_viral"
POST_ROUTED = "post_routed"
TRANSLATION_COMPLETED = "translation_completed"
TRANSLATION_FAILED = "translation_failed"
SLIDE_GENERATED = "slide_generated"
SLIDE_FAILED = "slide_failed"
PUBLISH_STARTED = "publish_started"
PUBLISH_SUCCESS = "publish_success"
PUBLISH_FAILED = "publish_failed"
PUBLISH_AWAITING_APPROVAL = "publish_awaiting_approval"
ERROR = "error"


async def record(
    session: AsyncSession,
    event_type: str,
    message: str,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """Append an audit row, commit, and broadcast the event."""
    entry = ActivityLog(
        event_type=event_type,
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=metadata,
    )
    session.add(entry)
    await session.commit()

    broadcast({
        "type": event_type,
        "data": {
            "message": message,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": metadata,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    return entry


def broadcast(event: dict[str, Any]) -> None:
    """Local bus in direct mode; Redis relay when stages run in other processes."""
    relay = get_event_relay()
    if relay is None:
        get_event_bus().publish(event)
        return
    try:
        relay.publish(event)
    except RedisError as exc:
        logger.warning(f"[events] relay publish failed ({exc}), delivering {event.get('type')} locally only")
        get_event_bus().publish(event)
