"""
Celery tasks for the pipeline stages.

Importing this module binds one task per stage queue (``pipeline.<stage>``)
and makes the same Celery-backed queue the process-wide job queue, so stage
handlers running inside the worker chain to the next stage through Redis.
"""
from __future__ import annotations

import logging

from app.jobs.durable import CeleryJobQueue
from app.jobs.factory import set_job_queue
from app.services.event_bus import enable_redis_relay
from app.settings import get_settings
from app.stages.registry import register_stage_consumers
from app.worker.celery_app import broker_url, celery_app

logger = logging.getLogger(__name__)

settings = get_settings()

job_queue = CeleryJobQueue(
    celery_app,
    default_max_attempts=settings.job_max_attempts,
    default_initial_backoff=settings.job_initial_backoff_sec,
)
register_stage_consumers(job_queue, settings)
set_job_queue(job_queue)
enable_redis_relay(broker_url)

logger.info(f"[worker] stage tasks registered: {', '.join(job_queue.queue_names)}")
