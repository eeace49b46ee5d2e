from datetime import datetime, timedelta, timezone

import pytest

from app.services import settings_store, virality
from app.services.virality import Baseline, compute_baseline, engagement_rate, evaluate
from conftest import make_channel, make_post


def test_engagement_rate_modes():
    assert engagement_rate(100, 20) == (120.0, False)
    assert engagement_rate(-1, 40) == (40.0, True)


def test_compute_baseline_splits_modes():
    baseline = compute_baseline([(90, 10), (190, 10), (-1, 20), (-1, 40)])
    assert baseline.avg_rate == 150.0
    assert baseline.comments_only_avg_rate == 30.0
    assert baseline.post_count == 4


def test_insufficient_baseline_is_never_viral():
    result = evaluate(10_000, 5_000, Baseline(avg_rate=1.0, comments_only_avg_rate=0.0, post_count=9), 3.0)
    assert result.is_viral is False
    assert result.viral_score == 0.0
    assert result.engagement_rate == 15_000.0
    assert result.reason == "Insufficient baseline data (9/10 posts)"


def test_zero_baseline_guard():
    result = evaluate(-1, 30, Baseline(avg_rate=100.0, comments_only_avg_rate=0.0, post_count=12), 3.0)
    assert result.is_viral is False
    assert result.viral_score == 0.0
    assert result.reason == "Baseline rate is zero"


def test_threshold_comparison_is_inclusive():
    baseline = Baseline(avg_rate=100.0, comments_only_avg_rate=0.0, post_count=12)
    hit = evaluate(250, 50, baseline, 3.0)
    assert hit.viral_score == pytest.approx(3.0)
    assert hit.is_viral is True
    assert hit.reason == "3.0x above baseline (threshold: 3x)"

    miss = evaluate(190, 10, baseline, 3.0)
    assert miss.viral_score == pytest.approx(2.0)
    assert miss.is_viral is False


async def _seed_history(session, channel, count, likes, comments):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(count):
        await make_post(
            session, channel, f"{channel.ig_handle}-{i}", likes=likes, comments=comments,
            ig_timestamp=start + timedelta(hours=i),
        )


async def test_score_post_against_channel_history(session):
    channel = await make_channel(session)
    await _seed_history(session, channel, 12, likes=90, comments=10)

    viral = await make_post(session, channel, "new-viral", likes=250, comments=50)
    result = await virality.score_post(session, viral)
    assert result.viral_score == pytest.approx(3.0)
    assert result.is_viral is True

    flat = await make_post(session, channel, "new-flat", likes=190, comments=10)
    result = await virality.score_post(session, flat)
    assert result.is_viral is False


async def test_comments_only_post_uses_comments_baseline(session):
    channel = await make_channel(session)
    await _seed_history(session, channel, 12, likes=-1, comments=20)

    post = await make_post(session, channel, "hidden", likes=-1, comments=40)
    result = await virality.score_post(session, post)
    assert result.viral_score == pytest.approx(2.0)
    assert result.engagement_rate == 40.0


async def test_small_channel_never_viral(session):
    channel = await make_channel(session)
    await _seed_history(session, channel, 5, likes=1, comments=0)

    post = await make_post(session, channel, "huge", likes=1_000_000, comments=1)
    result = await virality.score_post(session, post)
    assert result.is_viral is False
    assert result.viral_score == 0.0


async def test_threshold_resolution_order(session):
    plain = await make_channel(session, "plain")
    custom = await make_channel(session, "custom", virality_threshold=5.0)

    assert await virality.get_threshold(session, plain.id) == 3.0
    assert await virality.get_threshold(session, custom.id) == 5.0

    await settings_store.set_value(session, settings_store.GLOBAL_VIRALITY_THRESHOLD, "2.5")
    assert await virality.get_threshold(session, plain.id) == 2.5
    assert await virality.get_threshold(session, custom.id) == 5.0

    await settings_store.set_value(session, settings_store.GLOBAL_VIRALITY_THRESHOLD, "not-a-number")
    assert await virality.get_threshold(session, plain.id) == 3.0


async def test_baseline_uses_most_recent_hundred(session):
    channel = await make_channel(session)
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    # oldest 20 are outliers and fall out of the sample
    for i in range(120):
        likes = 10_000 if i < 20 else 100
        await make_post(session, channel, f"p{i}", likes=likes, comments=0, ig_timestamp=start + timedelta(days=i))

    baseline = await virality.get_baseline(session, channel.id)
    assert baseline.post_count == 100
    assert baseline.avg_rate == 100.0
