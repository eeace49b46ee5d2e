"""
Job queue contract shared by both execution backends.

    submit(queue_name, payload, max_attempts=..., initial_backoff=...)
    register_consumer(queue_name, handler, concurrency)

Handlers are ``async def handler(payload: dict) -> None`` and must not care
which backend runs them. They chain stages by calling ``submit`` themselves.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from app.errors import (
    ConfigurationError,
    EntityNotFoundError,
    InvalidTransitionError,
    PreconditionError,
)

SCRAPE_QUEUE = "scrape"
ANALYZE_QUEUE = "analyze"
TRANSLATE_QUEUE = "translate"
GENERATE_QUEUE = "generate"
PUBLISH_QUEUE = "publish"

STAGE_QUEUES = (SCRAPE_QUEUE, ANALYZE_QUEUE, TRANSLATE_QUEUE, GENERATE_QUEUE, PUBLISH_QUEUE)

# Retrying these cannot succeed: missing config, missing rows, bad input.
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    ConfigurationError,
    EntityNotFoundError,
    PreconditionError,
    InvalidTransitionError,
)

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class ConsumerSpec:
    queue_name: str
    handler: JobHandler
    concurrency: int = 1


class JobQueue(abc.ABC):
    """Submit/consume interface. See DirectJobQueue and CeleryJobQueue."""

    backend_name: str = "unknown"

    def __init__(self, *, default_max_attempts: int = 3, default_initial_backoff: float = 5.0):
        self.default_max_attempts = default_max_attempts
        self.default_initial_backoff = default_initial_backoff
        self._consumers: dict[str, ConsumerSpec] = {}

    @abc.abstractmethod
    async def submit(
        self,
        queue_name: str,
        payload: dict[str, Any],
        *,
        max_attempts: int | None = None,
        initial_backoff: float | None = None,
    ) -> None:
        ...

    def register_consumer(self, queue_name: str, handler: JobHandler, concurrency: int = 1) -> None:
        self._consumers[queue_name] = ConsumerSpec(queue_name, handler, max(1, concurrency))

    def consumer(self, queue_name: str) -> ConsumerSpec | None:
        return self._consumers.get(queue_name)

    @property
    def queue_names(self) -> list[str]:
        return list(self._consumers)
