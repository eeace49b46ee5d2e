from __future__ import annotations

from app.jobs.base import (
    ANALYZE_QUEUE,
    GENERATE_QUEUE,
    PUBLISH_QUEUE,
    SCRAPE_QUEUE,
    TRANSLATE_QUEUE,
    JobHandler,
    JobQueue,
)
from app.settings import Settings, get_settings


def stage_handlers() -> dict[str, JobHandler]:
    from app.stages.analyze import process_analyze_job
    from app.stages.generate import process_generate_job
    from app.stages.publish import process_publish_job
    from app.stages.scrape import process_scrape_job
    from app.stages.translate import process_translate_job

    return {
        SCRAPE_QUEUE: process_scrape_job,
        ANALYZE_QUEUE: process_analyze_job,
        TRANSLATE_QUEUE: process_translate_job,
        GENERATE_QUEUE: process_generate_job,
        PUBLISH_QUEUE: process_publish_job,
    }


def register_stage_consumers(queue: JobQueue, settings: Settings | None = None) -> JobQueue:
    settings = settings or get_settings()
    for queue_name, handler in stage_handlers().items():
        queue.register_consumer(queue_name, handler, settings.stage_concurrency(queue_name))
    return queue
