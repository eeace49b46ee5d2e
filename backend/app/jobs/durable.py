"""
Durable job backend: Celery over Redis.

Each queue gets one Celery task, ``pipeline.<queue>``, routed to a Celery
queue of the same name. Producers only need ``send_task``; consumers are
bound in the worker process (app.worker.tasks). A failed job is retried with
exponential backoff (initial_backoff * 2**n) until max_attempts is spent,
except for errors that cannot succeed on retry.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Celery

from app.jobs.base import NON_RETRYABLE_ERRORS, JobHandler, JobQueue

logger = logging.getLogger(__name__)


def task_name(queue_name: str) -> str:
    return f"pipeline.{queue_name}"


async def _invoke(handler: JobHandler, payload: dict[str, Any]) -> None:
    from app.db import dispose_engine

    try:
        await handler(payload)
    finally:
        # asyncio.run() closes the loop; pooled connections must go with it
        await dispose_engine()


class CeleryJobQueue(JobQueue):
    backend_name = "celery"

    def __init__(self, celery_app: Celery, **kwargs):
        super().__init__(**kwargs)
        self.celery_app = celery_app

    async def submit(
        self,
        queue_name: str,
        payload: dict[str, Any],
        *,
        max_attempts: int | None = None,
        initial_backoff: float | None = None,
    ) -> None:
        result = self.celery_app.send_task(
            task_name(queue_name),
            kwargs={
                "payload": payload,
                "max_attempts": max_attempts or self.default_max_attempts,
                "initial_backoff": initial_backoff if initial_backoff is not None else self.default_initial_backoff,
            },
            queue=queue_name,
        )
        logger.info(f"[queue:{queue_name}] submitted celery job {result.id}")

    def register_consumer(self, queue_name: str, handler: JobHandler, concurrency: int = 1) -> None:
        super().register_consumer(queue_name, handler, concurrency)
        self._bind_task(queue_name, handler)

    def _bind_task(self, queue_name: str, handler: JobHandler) -> None:
        @self.celery_app.task(bind=True, shared=False, name=task_name(queue_name), queue=queue_name)
        def run_job(task, payload: dict, max_attempts: int = 3, initial_backoff: float = 5.0) -> None:
            attempt = task.request.retries + 1
            logger.info(f"[queue:{queue_name}] job {task.request.id} attempt {attempt}/{max_attempts}")
            try:
                asyncio.run(_invoke(handler, payload))
            except Exception as exc:
                if isinstance(exc, NON_RETRYABLE_ERRORS) or attempt >= max_attempts:
                    logger.error(
                        f"[queue:{queue_name}] job {task.request.id} abandoned after attempt {attempt}: {exc}"
                    )
                    raise
                countdown = initial_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"[queue:{queue_name}] job {task.request.id} failed ({exc}), retrying in {countdown:.0f}s"
                )
                raise task.retry(exc=exc, countdown=countdown, max_retries=max_attempts - 1)

    def worker_argv(self, queue_name: str) -> list[str]:
        """argv for a ``celery_app.worker_main`` serving one stage queue with
        that stage's own concurrency limit."""
        spec = self.consumer(queue_name)
        if spec is None:
            raise ValueError(f"no consumer registered for queue {queue_name!r}")
        return [
            "worker",
            "--loglevel=INFO",
            "-Q",
            queue_name,
            "-c",
            str(spec.concurrency),
            "-n",
            f"{queue_name}@%h",
        ]
