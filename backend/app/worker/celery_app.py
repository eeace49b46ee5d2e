"""
Celery application for the pipeline stage queues.

Broker/backend: Redis (REDIS_URL, else the local probe URL).
One Celery queue per stage: scrape, analyze, translate, generate, publish.
"""
from celery import Celery

from app.jobs.base import STAGE_QUEUES
from app.settings import get_settings

settings = get_settings()
broker_url = settings.redis_url or settings.redis_probe_url

celery_app = Celery(
    "viral_pipeline",
    broker=broker_url,
    backend=broker_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=30 * 60,        # 30 minutes hard limit
    task_soft_time_limit=25 * 60,   # 25 minutes soft limit
    task_default_queue="scrape",
    task_create_missing_queues=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # visibility_timeout must exceed task_time_limit or long jobs get redelivered
    broker_transport_options={"visibility_timeout": 60 * 60},
    task_routes={f"pipeline.{name}": {"queue": name} for name in STAGE_QUEUES},
)

# Auto-discover stage consumers in app.worker.tasks
celery_app.autodiscover_tasks(["app.worker"])
