"""
Direct (in-process) job backend, used when no broker is reachable.

``submit`` runs the consumer in the caller's context and returns only when
it has finished, so a stage that submits the next stage runs it to
completion first. No persistence, no concurrency limit, no retry: a failing
handler is logged and its job is lost.

Recursion is capped at ``max_chain_depth``. Jobs submitted deeper than that
are deferred and run by the outermost ``submit`` once its own handler
returns, which keeps the call stack bounded.
"""
from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

from app.jobs.base import JobHandler, JobQueue

logger = logging.getLogger(__name__)


class DirectJobQueue(JobQueue):
    backend_name = "direct"

    def __init__(self, *, max_chain_depth: int = 16, **kwargs):
        super().__init__(**kwargs)
        self.max_chain_depth = max(1, max_chain_depth)
        self._depth: ContextVar[int] = ContextVar(f"direct_queue_depth_{id(self)}", default=0)
        self._deferred: ContextVar[list[tuple[str, dict[str, Any]]] | None] = ContextVar(
            f"direct_queue_deferred_{id(self)}", default=None
        )

    @property
    def depth(self) -> int:
        return self._depth.get()

    async def submit(
        self,
        queue_name: str,
        payload: dict[str, Any],
        *,
        max_attempts: int | None = None,
        initial_backoff: float | None = None,
    ) -> None:
        spec = self.consumer(queue_name)
        if spec is None:
            logger.warning(f"[queue:{queue_name}] no consumer registered, job dropped: {payload}")
            return

        depth = self._depth.get()
        if depth >= self.max_chain_depth:
            deferred = self._deferred.get()
            if deferred is None:
                deferred = []
                self._deferred.set(deferred)
            deferred.append((queue_name, payload))
            logger.info(f"[queue:{queue_name}] chain depth {depth} reached, job deferred")
            return

        if depth > 0:
            await self._dispatch(queue_name, spec.handler, payload, depth)
            return

        deferred: list[tuple[str, dict[str, Any]]] = []
        token = self._deferred.set(deferred)
        try:
            await self._dispatch(queue_name, spec.handler, payload, depth)
            while deferred:
                next_queue, next_payload = deferred.pop(0)
                next_spec = self.consumer(next_queue)
                if next_spec is not None:
                    await self._dispatch(next_queue, next_spec.handler, next_payload, 0)
        finally:
            self._deferred.reset(token)

    async def _dispatch(self, queue_name: str, handler: JobHandler, payload: dict[str, Any], depth: int) -> None:
        token = self._depth.set(depth + 1)
        try:
            await handler(payload)
            logger.debug(f"[queue:{queue_name}] in-process job completed (depth={depth + 1})")
        except Exception as exc:
            logger.error(f"[queue:{queue_name}] in-process job failed and is lost: {exc!r}")
        finally:
            self._depth.reset(token)
