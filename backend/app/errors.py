"""
Pipeline error taxonomy.

- ConfigurationError: missing credential/setting. Never retried.
- ExternalServiceError: non-success response or terminal error status from an
  outside service. Fatal for the attempt; the queue's retry policy applies.
- ExternalTimeoutError: bounded polling ran out of time.
- EntityNotFoundError: a referenced row is gone (race or deleted dependency).
- PreconditionError: input rejected before any external call was made.
- InvalidTransitionError: illegal state-machine move.

Translation quality-gate rejections are not errors and have no class here.
"""
from __future__ import annotations

import re
from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(PipelineError):
    pass


class ExternalServiceError(PipelineError):
    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.service = service
        self.status_code = status_code
        self.body = body
        detail = f"{service}: {message}"
        if status_code is not None:
            detail += f" ({status_code})"
        if body:
            detail += f": {body[:400]}"
        super().__init__(detail)


class ExternalTimeoutError(ExternalServiceError):
    pass


class EntityNotFoundError(PipelineError):
    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PreconditionError(PipelineError):
    pass


class InvalidTransitionError(PipelineError):
    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: illegal transition {current} -> {target}")


_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "token=***"),
    (re.compile(r"key=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "key=***"),
]


def sanitize(text: str | None) -> str | None:
    """Strip credentials from error text before it is persisted or logged."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
