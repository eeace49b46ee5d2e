"""
Scrape Scheduler

Periodically enqueues Scrape for active source channels whose cadence has
elapsed since ``last_scraped_at``:
- 30min / hourly / daily (SourceChannel.scrape_frequency)
- one tick every SCHEDULER_TICK_MINUTES

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- SQLite has no advisory locks; every tick runs there
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app import db
from app.jobs.base import SCRAPE_QUEUE
from app.jobs.factory import get_job_queue
from app.models import ScrapeFrequency, SourceChannel
from app.settings import get_settings

logger = logging.getLogger("scheduler")

LOCK_SCRAPE_TICK = 910_001

FREQUENCY_INTERVALS: dict[str, timedelta] = {
    ScrapeFrequency.every_30_min.value: timedelta(minutes=30),
    ScrapeFrequency.hourly.value: timedelta(hours=1),
    ScrapeFrequency.daily.value: timedelta(days=1),
}


def is_due(channel: SourceChannel, now: datetime) -> bool:
    if channel.last_scraped_at is None:
        return True
    interval = FREQUENCY_INTERVALS.get(channel.scrape_frequency, FREQUENCY_INTERVALS["hourly"])
    last = channel.last_scraped_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    return now - last >= interval


class ScrapeScheduler:
    """APScheduler wrapper that feeds the scrape queue."""

    _instance: "ScrapeScheduler | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._running = False

    @classmethod
    def get_instance(cls) -> "ScrapeScheduler":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        if session.get_bind().dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self.run_tick,
            IntervalTrigger(minutes=settings.scheduler_tick_minutes),
            id="scrape_due_channels",
            name="Scrape due source channels",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (tick every {settings.scheduler_tick_minutes} min)")

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_tick(self, now: datetime | None = None) -> dict:
        """Enqueue Scrape for every due channel; returns the ids enqueued."""
        now = now or datetime.now(timezone.utc)
        async with db.AsyncSessionLocal() as session:
            if not await self._try_advisory_lock(session, LOCK_SCRAPE_TICK):
                logger.debug("[scrape_tick] Advisory lock not acquired, another instance is leader")
                return {"skipped": True, "enqueued": []}
            try:
                channels = (
                    await session.execute(
                        select(SourceChannel).where(SourceChannel.is_active.is_(True)).order_by(SourceChannel.id)
                    )
                ).scalars().all()
                due = [c.id for c in channels if is_due(c, now)]
            finally:
                await self._release_advisory_lock(session, LOCK_SCRAPE_TICK)

        queue = get_job_queue()
        for channel_id in due:
            await queue.submit(SCRAPE_QUEUE, {"source_channel_id": channel_id})
        if due:
            logger.info(f"[scrape_tick] Enqueued scrape for {len(due)} channel(s): {due}")
        return {"skipped": False, "enqueued": due}


scheduler_service = ScrapeScheduler.get_instance()
