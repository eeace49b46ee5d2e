import httpx
import pytest_asyncio

from app.main import app
from app.models import PublishingJob
from conftest import make_carousel, make_channel, make_destination, make_post


@pytest_asyncio.fixture
async def client(session_maker):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_stats_counts(client, session):
    channel = await make_channel(session)
    await make_destination(session)
    await make_post(session, channel, "A", likes=1)
    await make_post(session, channel, "B", likes=1, is_viral=True)

    resp = await client.get("/api/stats")

    assert resp.json() == {
        "success": True,
        "data": {"sources": 1, "destinations": 1, "total_posts": 2, "viral_posts": 1, "published": 0},
    }


async def test_scrape_trigger_submits_job(client, session, job_queue):
    channel = await make_channel(session, "coach")

    resp = await client.post(f"/api/pipeline/scrape/{channel.id}")

    assert resp.status_code == 200
    assert resp.json()["data"]["message"] == "Scrape queued for @coach"
    assert job_queue.payloads("scrape") == [{"source_channel_id": channel.id}]


async def test_scrape_all_lists_active_sources(client, session, job_queue):
    a = await make_channel(session, "a")
    await make_channel(session, "b", is_active=False)

    resp = await client.post("/api/pipeline/scrape-all")

    assert resp.json()["data"]["source_ids"] == [a.id]


async def test_unknown_entities_are_404(client, job_queue):
    resp = await client.post("/api/pipeline/scrape/999")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "SourceChannel 999 not found"}

    resp = await client.post("/api/pipeline/analyze/999")
    assert resp.status_code == 404
    assert job_queue.submitted == []


async def test_approve_of_queued_job_is_conflict(client, session, job_queue):
    post = await make_post(session, await make_channel(session), "P", caption="x")
    dest = await make_destination(session)
    decision, _ = await make_carousel(session, post, dest, ["a"])
    job = PublishingJob(routing_decision_id=decision.id, status="queued")
    session.add(job)
    await session.commit()

    resp = await client.post(f"/api/pipeline/approve-publish/{job.id}")

    assert resp.status_code == 409
    assert resp.json()["success"] is False
    assert job_queue.submitted == []


async def test_activity_limit_is_capped(client, session):
    from app.services import activity

    for i in range(3):
        await activity.record(session, activity.SCRAPE_STARTED, f"run {i}")

    resp = await client.get("/api/activity", params={"limit": 2})
    data = resp.json()["data"]
    assert len(data) == 2
    assert data[0]["message"] == "run 2"

    resp = await client.get("/api/activity", params={"limit": 500})
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 3
