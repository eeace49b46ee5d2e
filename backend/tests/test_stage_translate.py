import pytest
from sqlalchemy import select

from app.errors import ConfigurationError
from app.jobs.base import GENERATE_QUEUE, TRANSLATE_QUEUE
from app.jobs.direct import DirectJobQueue
from app.jobs.factory import set_job_queue
from app.models import ActivityLog, Translation
from app.services import llm_provider
from app.stages.translate import MAX_RETRIES, process_translate_job, quality_feedback
from conftest import FakeLLM, make_channel, make_post


@pytest.fixture
def chained_queue():
    """Translate runs for real; generate submissions are only recorded."""
    generated: list[dict] = []

    async def record_generate(payload):
        generated.append(payload)

    queue = DirectJobQueue()
    queue.register_consumer(TRANSLATE_QUEUE, process_translate_job)
    queue.register_consumer(GENERATE_QUEUE, record_generate)
    set_job_queue(queue)
    return queue, generated


def test_feedback_mentions_previous_score():
    assert quality_feedback(5) == (
        "Previous score: 5/10. Please improve naturalness and cultural adaptation."
    )


async def test_good_translation_completes_first_time(session_maker, chained_queue):
    queue, generated = chained_queue
    async with session_maker() as session:
        post = await make_post(session, await make_channel(session), "GOOD", caption="Train hard")
    fake = FakeLLM(scores=(8,), slides=("שקופית 1", "שקופית 2", "שקופית 3"))
    llm_provider.set_llm_provider(fake)

    await queue.submit(TRANSLATE_QUEUE, {"post_id": post.id})

    async with session_maker() as session:
        translation = (await session.execute(select(Translation))).scalar_one()
    assert translation.status == "completed"
    assert translation.retry_count == 0
    assert translation.translated_slides == ["שקופית 1", "שקופית 2", "שקופית 3"]
    assert translation.original_caption == "Train hard"
    assert fake.adapt_calls == [("Train hard", None)]
    assert generated == [{"translation_id": translation.id, "post_id": post.id}]


async def test_low_quality_is_retried_with_feedback_then_accepted(session_maker, chained_queue):
    queue, generated = chained_queue
    async with session_maker() as session:
        post = await make_post(session, await make_channel(session), "MEH", caption="Eat clean")
    fake = FakeLLM(scores=(5,))
    llm_provider.set_llm_provider(fake)

    await queue.submit(TRANSLATE_QUEUE, {"post_id": post.id})

    assert len(fake.adapt_calls) == MAX_RETRIES + 1
    assert fake.adapt_calls[0][1] is None
    assert all(feedback == quality_feedback(5) for _, feedback in fake.adapt_calls[1:])

    async with session_maker() as session:
        translation = (await session.execute(select(Translation))).scalar_one()
        events = (await session.execute(select(ActivityLog.event_type))).scalars().all()
    assert translation.status == "completed"
    assert translation.retry_count == MAX_RETRIES
    assert translation.quality_score == 5
    assert events.count("translation_completed") == 1
    assert len(generated) == 1


async def test_quality_recovers_on_retry(session_maker, chained_queue):
    queue, generated = chained_queue
    async with session_maker() as session:
        post = await make_post(session, await make_channel(session), "OK", caption="Sleep more")
    fake = FakeLLM(scores=(6, 9))
    llm_provider.set_llm_provider(fake)

    await queue.submit(TRANSLATE_QUEUE, {"post_id": post.id})

    async with session_maker() as session:
        translation = (await session.execute(select(Translation))).scalar_one()
    assert len(fake.adapt_calls) == 2
    assert translation.retry_count == 1
    assert translation.quality_score == 9
    assert len(generated) == 1


async def test_completed_translation_is_not_redone(session_maker, job_queue):
    async with session_maker() as session:
        post = await make_post(session, await make_channel(session), "DONE", caption="x")
        session.add(Translation(post_id=post.id, status="completed", translated_slides=["a"]))
        await session.commit()
    fake = FakeLLM()
    llm_provider.set_llm_provider(fake)

    await process_translate_job({"post_id": post.id})

    assert fake.adapt_calls == []
    assert job_queue.submitted == []


async def test_adaptation_failure_marks_failed_and_raises(session_maker, job_queue):
    async with session_maker() as session:
        post = await make_post(session, await make_channel(session), "NOKEY", caption="x")

    # no provider override and no OPENAI_API_KEY configured
    with pytest.raises(ConfigurationError):
        await process_translate_job({"post_id": post.id})

    async with session_maker() as session:
        translation = (await session.execute(select(Translation))).scalar_one()
        events = (await session.execute(select(ActivityLog.event_type))).scalars().all()
    assert translation.status == "failed"
    assert "translation_failed" in events
    assert job_queue.submitted == []

    # a later attempt may pick the failed translation back up
    llm_provider.set_llm_provider(FakeLLM(scores=(9,)))
    await process_translate_job({"post_id": post.id})
    async with session_maker() as session:
        translation = (await session.execute(select(Translation))).scalar_one()
    assert translation.status == "completed"
    assert len(job_queue.payloads("generate")) == 1
