"""
Explicit per-entity status machines.

Workers never assign ``status`` directly; they call ``transition(entity, new)``,
which checks the move against the entity's table and raises
InvalidTransitionError on anything not listed.
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from app.errors import InvalidTransitionError


class TranslationStatus(str, Enum):
    pending = "pending"
    translating = "translating"
    completed = "completed"
    failed = "failed"


class SlideStatus(str, Enum):
    pending = "pending"
    generating = "generating"
    completed = "completed"
    failed = "failed"


class PublishingStatus(str, Enum):
    queued = "queued"
    creating_containers = "creating_containers"
    published = "published"
    failed = "failed"
    awaiting_approval = "awaiting_approval"


class RoutingStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    published = "published"


TRANSLATION_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"translating"},
    "translating": {"translating", "completed", "failed"},
    "failed": {"translating"},
    "completed": set(),
}

SLIDE_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"generating"},
    "generating": {"generating", "completed", "failed"},
    "failed": {"generating"},
    "completed": set(),
}

# awaiting_approval -> queued and failed -> queued are the manual edges
PUBLISHING_TRANSITIONS: dict[str, set[str]] = {
    "queued": {"creating_containers", "awaiting_approval"},
    "creating_containers": {"published", "failed"},
    "awaiting_approval": {"queued"},
    "failed": {"queued"},
    "published": set(),
}

ROUTING_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected", "published"},
    "approved": {"pending", "rejected", "published"},
    "rejected": {"pending", "approved"},
    "published": set(),
}

_TABLES: dict[str, dict[str, set[str]]] = {
    "Translation": TRANSLATION_TRANSITIONS,
    "CarouselSlide": SLIDE_TRANSITIONS,
    "PublishingJob": PUBLISHING_TRANSITIONS,
    "RoutingDecision": ROUTING_TRANSITIONS,
}


def _value(status: Any) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def can_transition(entity_name: str, current: Any, target: Any) -> bool:
    table = _TABLES[entity_name]
    return _value(target) in table.get(_value(current), set())


def transition(entity: Any, target: Any) -> None:
    """Move ``entity.status`` to ``target`` or raise InvalidTransitionError."""
    name = type(entity).__name__
    current = _value(entity.status)
    new = _value(target)
    if not can_transition(name, current, new):
        raise InvalidTransitionError(name, current, new)
    entity.status = new
