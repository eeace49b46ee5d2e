import pytest

from app.errors import InvalidTransitionError
from app.models import PublishingJob, RoutingDecision, Translation
from app.state_machine import PublishingStatus, TranslationStatus, can_transition, transition


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("queued", "creating_containers", True),
        ("queued", "awaiting_approval", True),
        ("creating_containers", "published", True),
        ("creating_containers", "failed", True),
        ("awaiting_approval", "queued", True),
        ("failed", "queued", True),
        ("queued", "published", False),
        ("published", "queued", False),
        ("failed", "creating_containers", False),
        ("awaiting_approval", "creating_containers", False),
    ],
)
def test_publishing_job_transitions(current, target, allowed):
    assert can_transition("PublishingJob", current, target) is allowed


def test_transition_updates_status():
    job = PublishingJob(routing_decision_id=1, status="queued")
    transition(job, PublishingStatus.creating_containers)
    assert job.status == "creating_containers"


def test_illegal_transition_raises_and_keeps_status():
    translation = Translation(post_id=1, status="completed")
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(translation, TranslationStatus.translating)
    assert translation.status == "completed"
    assert exc_info.value.current == "completed"


def test_quality_retry_self_transition_is_legal():
    translation = Translation(post_id=1, status="translating")
    transition(translation, "translating")
    assert translation.status == "translating"


def test_published_routing_decision_is_final():
    decision = RoutingDecision(post_id=1, destination_id=1, status="published")
    with pytest.raises(InvalidTransitionError):
        transition(decision, "pending")
