from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from app import db
from app.errors import EntityNotFoundError
from app.integrations.apify_client import get_apify_client
from app.jobs.base import ANALYZE_QUEUE
from app.jobs.factory import get_job_queue
from app.models import Post, SourceChannel
from app.services import activity
from app.services.records import insert_post_if_new
from app.settings import get_settings

logger = logging.getLogger(__name__)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_scrape_input(ig_handle: str, results_limit: int) -> dict[str, Any]:
    handle = ig_handle.strip().lstrip("@")
    return {
        "directUrls": [f"https://www.instagram.com/{handle}/"],
        "resultsLimit": results_limit,
        "resultsType": "posts",
    }


def post_values_from_item(item: dict[str, Any], source_channel_id: int) -> dict[str, Any] | None:
    """Map one dataset item to Post columns; items without a shortcode are skipped."""
    shortcode = item.get("shortCode") or item.get("shortcode")
    if not shortcode:
        return None
    return {
        "source_channel_id": source_channel_id,
        "shortcode": shortcode,
        "caption": item.get("caption") or None,
        "likes_count": _parse_int(item.get("likesCount")),
        "comments_count": _parse_int(item.get("commentsCount")),
        "ig_timestamp": _parse_dt(item.get("timestamp")),
        "display_url": item.get("displayUrl") or None,
    }


async def process_scrape_job(payload: dict[str, Any]) -> None:
    source_channel_id = int(payload["source_channel_id"])
    settings = get_settings()

    async with db.AsyncSessionLocal() as session:
        channel = await session.get(SourceChannel, source_channel_id)
        if channel is None:
            raise EntityNotFoundError("SourceChannel", source_channel_id)
        handle = channel.ig_handle

        logger.info(f"[scrape] Processing scrape for @{handle} (channel {source_channel_id})")
        await activity.record(
            session,
            activity.SCRAPE_STARTED,
            f"Scraping @{handle}",
            entity_type="source_channel",
            entity_id=source_channel_id,
        )

        client = await get_apify_client(session)
        run_id = await client.start_run(
            settings.apify_actor_id, build_scrape_input(handle, settings.scrape_results_limit)
        )
        dataset_id = await client.wait_for_run(
            run_id,
            max_wait_s=settings.scrape_max_wait_sec,
            poll_interval_s=settings.scrape_poll_interval_sec,
        )
        items = await client.get_dataset_items(dataset_id)

        new_count = 0
        for item in items:
            values = post_values_from_item(item, source_channel_id)
            if values is None:
                continue
            if await insert_post_if_new(session, values):
                new_count += 1

        channel.last_scraped_at = datetime.now(timezone.utc)
        channel.total_posts_scraped = (channel.total_posts_scraped or 0) + new_count
        session.add(channel)
        await activity.record(
            session,
            activity.SCRAPE_COMPLETED,
            f"Scraped @{handle}: {new_count} new posts ({len(items)} total)",
            entity_type="source_channel",
            entity_id=source_channel_id,
            metadata={"new_posts": new_count, "total_fetched": len(items), "run_id": run_id},
        )
        logger.info(f"[scrape] Stored {new_count} new posts for @{handle}")

        unscored: list[int] = []
        if new_count > 0:
            rows = await session.execute(
                select(Post.id)
                .where(Post.source_channel_id == source_channel_id, Post.engagement_rate.is_(None))
                .order_by(Post.id)
            )
            unscored = [row[0] for row in rows.all()]

    queue = get_job_queue()
    for post_id in unscored:
        await queue.submit(ANALYZE_QUEUE, {"post_id": post_id})
