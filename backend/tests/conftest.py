import os
import tempfile

# db.py builds its engine at import; point it at SQLite before anything imports app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(), "import.db")
os.environ["QUEUE_BACKEND"] = "direct"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["IMAGES_DIR"] = os.path.join(tempfile.mkdtemp(), "images")
for _name in ("APIFY_TOKEN", "OPENAI_API_KEY", "GEMINI_API_KEY", "REDIS_URL", "PUBLIC_BASE_URL"):
    os.environ.pop(_name, None)

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import db
from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.db import Base, enable_sqlite_foreign_keys
from app.errors import ExternalServiceError
from app.integrations import apify_client, gemini_images, meta_graph
from app.jobs.base import JobQueue
from app.jobs.factory import set_job_queue
from app.models import (
    CarouselSlide,
    DestinationAccount,
    Post,
    RoutingDecision,
    SourceChannel,
    Translation,
)
from app.services import event_bus, llm_provider
from app.settings import get_settings


class RecordingJobQueue(JobQueue):
    """Collects submissions instead of running them."""

    backend_name = "recording"

    def __init__(self):
        super().__init__()
        self.submitted: list[tuple[str, dict[str, Any], int | None]] = []

    async def submit(self, queue_name, payload, *, max_attempts=None, initial_backoff=None):
        self.submitted.append((queue_name, payload, max_attempts))

    def payloads(self, queue_name: str) -> list[dict[str, Any]]:
        return [payload for name, payload, _ in self.submitted if name == queue_name]


@pytest_asyncio.fixture
async def session_maker(tmp_path, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}")
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(db, "AsyncSessionLocal", maker)
    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def job_queue():
    queue = RecordingJobQueue()
    set_job_queue(queue)
    yield queue
    set_job_queue(None)


@pytest.fixture
def images_dir(tmp_path, monkeypatch):
    path = tmp_path / "images"
    monkeypatch.setattr(get_settings(), "images_dir", str(path))
    return path


@pytest.fixture(autouse=True)
def reset_overrides():
    event_bus.set_event_bus(event_bus.EventBus())
    event_bus.set_event_relay(None)
    yield
    event_bus.set_event_relay(None)
    llm_provider.set_llm_provider(None)
    gemini_images.set_image_renderer(None)
    apify_client.set_apify_client(None)
    meta_graph.set_publisher(None)
    set_job_queue(None)


# ---- data builders --------------------------------------------------------

async def make_channel(session, handle="source", **kwargs) -> SourceChannel:
    channel = SourceChannel(ig_handle=handle, **kwargs)
    session.add(channel)
    await session.commit()
    return channel


async def make_destination(session, handle="dest", *, auto_publish=True, **kwargs) -> DestinationAccount:
    kwargs.setdefault("topic_description", "fitness and nutrition")
    dest = DestinationAccount(
        ig_user_id=f"ig-{handle}",
        ig_handle=handle,
        access_token=f"token-{handle}",
        auto_publish=auto_publish,
        **kwargs,
    )
    session.add(dest)
    await session.commit()
    return dest


async def make_post(session, channel, shortcode, *, likes=0, comments=0, caption="caption", **kwargs) -> Post:
    post = Post(
        source_channel_id=channel.id,
        shortcode=shortcode,
        likes_count=likes,
        comments_count=comments,
        caption=caption,
        **kwargs,
    )
    session.add(post)
    await session.commit()
    return post


async def make_carousel(session, post, destination, slides, *, completed=(), decision_status="pending"):
    """Post + routing decision + completed translation; ``completed`` lists
    content slide numbers already rendered."""
    decision = RoutingDecision(post_id=post.id, destination_id=destination.id, match_score=80, status=decision_status)
    translation = Translation(
        post_id=post.id,
        original_caption=post.caption,
        translated_slides=list(slides),
        quality_score=8,
        status="completed",
    )
    session.add_all([decision, translation])
    await session.commit()
    for number in completed:
        session.add(CarouselSlide(
            translation_id=translation.id,
            slide_number=number,
            status="completed",
            image_path=f"/images/carousels/{post.shortcode}/slide_{number}.png",
        ))
    await session.commit()
    return decision, translation


# ---- fake collaborators ---------------------------------------------------

class FakeLLM(llm_provider.LLMProvider):
    def __init__(self, *, matches=None, scores=(8,), slides=("slide one", "slide two")):
        self.matches = list(matches or [])
        self.scores = list(scores)
        self.slides = list(slides)
        self.adapt_calls: list[tuple[str, str | None]] = []
        self.match_calls = 0

    async def match_topics(self, caption, destinations):
        self.match_calls += 1
        return list(self.matches)

    async def adapt_caption(self, caption, feedback=None):
        self.adapt_calls.append((caption, feedback))
        score = self.scores[min(len(self.adapt_calls), len(self.scores)) - 1]
        return llm_provider.AdaptationResult(slides=list(self.slides), quality_score=score)


class FakeRenderer(gemini_images.ImageRenderer):
    def __init__(self, fail_times: int = 0):
        self.prompts: list[str] = []
        self.fail_times = fail_times

    async def render(self, prompt):
        self.prompts.append(prompt)
        if len(self.prompts) <= self.fail_times:
            raise ExternalServiceError("gemini", "render failed")
        return gemini_images.RenderedImage(image_base64="iVBORw0KGgo=")


class FakePublisher:
    def __init__(self, error: Exception | None = None):
        self.calls: list[dict[str, Any]] = []
        self.error = error

    async def publish_carousel(self, ig_user_id, access_token, image_urls, caption):
        self.calls.append({
            "ig_user_id": ig_user_id,
            "access_token": access_token,
            "image_urls": list(image_urls),
            "caption": caption,
        })
        if self.error is not None:
            raise self.error
        return meta_graph.CarouselPublishResult(
            published_media_id="media-1",
            parent_container_id="parent-1",
            child_container_ids=[f"child-{i}" for i in range(len(image_urls))],
        )
