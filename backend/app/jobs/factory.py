"""
Backend selection, done once per process.

QUEUE_BACKEND=direct|celery forces a backend. In ``auto`` mode an explicit
REDIS_URL selects Celery; otherwise the local probe URL is pinged and, if
nothing answers, the direct backend is used.
"""
from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from app.jobs.base import JobQueue
from app.jobs.direct import DirectJobQueue
from app.services.event_bus import enable_redis_relay
from app.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_queue: JobQueue | None = None


def broker_reachable(url: str, timeout_s: float = 1.0) -> bool:
    try:
        client = redis.Redis.from_url(url, socket_connect_timeout=timeout_s, socket_timeout=timeout_s)
        return bool(client.ping())
    except (RedisError, OSError):
        return False


def _celery_queue(settings: Settings) -> JobQueue:
    from app.jobs.durable import CeleryJobQueue
    from app.worker.celery_app import broker_url, celery_app

    # stages run in other processes; live events must cross over Redis too
    enable_redis_relay(broker_url)

    return CeleryJobQueue(
        celery_app,
        default_max_attempts=settings.job_max_attempts,
        default_initial_backoff=settings.job_initial_backoff_sec,
    )


def _direct_queue(settings: Settings) -> JobQueue:
    return DirectJobQueue(
        max_chain_depth=settings.direct_max_chain_depth,
        default_max_attempts=settings.job_max_attempts,
        default_initial_backoff=settings.job_initial_backoff_sec,
    )


def create_job_queue(settings: Settings | None = None) -> JobQueue:
    settings = settings or get_settings()
    mode = (settings.queue_backend or "auto").lower()

    if mode == "direct":
        logger.info("[queues] QUEUE_BACKEND=direct, in-process job processing")
        return _direct_queue(settings)
    if mode == "celery":
        logger.info("[queues] QUEUE_BACKEND=celery, durable job processing")
        return _celery_queue(settings)

    if settings.redis_url:
        logger.info("[queues] REDIS_URL configured, durable job processing")
        return _celery_queue(settings)
    if broker_reachable(settings.redis_probe_url):
        logger.info("[queues] Connected to local Redis, durable job processing")
        return _celery_queue(settings)

    logger.info("[queues] No Redis available, using in-process job processing")
    return _direct_queue(settings)


def get_job_queue() -> JobQueue:
    """Process-wide queue with every stage consumer registered."""
    global _queue
    if _queue is None:
        from app.stages.registry import register_stage_consumers

        queue = create_job_queue()
        register_stage_consumers(queue)
        _queue = queue
    return _queue


def set_job_queue(queue: JobQueue | None) -> None:
    global _queue
    _queue = queue
