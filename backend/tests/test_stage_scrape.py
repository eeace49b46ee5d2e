import pytest
from sqlalchemy import func, select

from app.errors import ExternalServiceError
from app.integrations import apify_client
from app.models import ActivityLog, Post, SourceChannel
from app.stages.scrape import build_scrape_input, post_values_from_item, process_scrape_job
from conftest import make_channel


class FakeApify:
    def __init__(self, items, error: Exception | None = None):
        self.items = items
        self.error = error
        self.inputs: list[dict] = []

    async def start_run(self, actor_id, payload):
        self.inputs.append(payload)
        return "run-1"

    async def wait_for_run(self, run_id, *, max_wait_s, poll_interval_s):
        if self.error is not None:
            raise self.error
        return "ds-1"

    async def get_dataset_items(self, dataset_id, *, clean=True):
        return list(self.items)


ITEMS = [
    {"shortCode": "AAA", "caption": "first", "likesCount": 120, "commentsCount": 8,
     "timestamp": "2026-03-01T10:00:00.000Z", "displayUrl": "https://cdn/a.jpg"},
    {"shortCode": "BBB", "caption": "", "likesCount": -1, "commentsCount": 30},
    {"shortCode": "AAA", "caption": "duplicate in the same batch"},
    {"caption": "no shortcode"},
]


def test_scrape_input_targets_profile_url():
    assert build_scrape_input("@coach", 50) == {
        "directUrls": ["https://www.instagram.com/coach/"],
        "resultsLimit": 50,
        "resultsType": "posts",
    }


def test_item_mapping_keeps_hidden_likes_sentinel():
    values = post_values_from_item({"shortCode": "X", "likesCount": -1, "commentsCount": "7"}, 3)
    assert values["likes_count"] == -1
    assert values["comments_count"] == 7
    assert values["caption"] is None
    assert post_values_from_item({"caption": "x"}, 3) is None


async def test_scrape_stores_new_posts_once_and_requests_analysis(session_maker, job_queue):
    async with session_maker() as session:
        channel = await make_channel(session, "coach")
    fake = FakeApify(ITEMS)
    apify_client.set_apify_client(fake)

    await process_scrape_job({"source_channel_id": channel.id})
    await process_scrape_job({"source_channel_id": channel.id})

    async with session_maker() as session:
        posts = (await session.execute(select(Post).order_by(Post.shortcode))).scalars().all()
        assert [p.shortcode for p in posts] == ["AAA", "BBB"]
        assert posts[0].caption == "first"
        assert posts[0].ig_timestamp is not None
        assert posts[1].likes_count == -1

        refreshed = await session.get(SourceChannel, channel.id)
        assert refreshed.total_posts_scraped == 2
        assert refreshed.last_scraped_at is not None

        events = (
            await session.execute(select(ActivityLog.event_type).order_by(ActivityLog.id))
        ).scalars().all()
        assert events.count("scrape_completed") == 2

    # second run found nothing new, so nothing more is submitted
    assert sorted(p["post_id"] for p in job_queue.payloads("analyze")) == [p.id for p in posts]
    assert fake.inputs[0]["directUrls"] == ["https://www.instagram.com/coach/"]


async def test_scrape_failure_propagates(session_maker, job_queue):
    async with session_maker() as session:
        channel = await make_channel(session)
    apify_client.set_apify_client(FakeApify([], error=ExternalServiceError("apify", "run ended with status: FAILED")))

    with pytest.raises(ExternalServiceError):
        await process_scrape_job({"source_channel_id": channel.id})

    async with session_maker() as session:
        count = (await session.execute(select(func.count(Post.id)))).scalar()
    assert count == 0
    assert job_queue.submitted == []
