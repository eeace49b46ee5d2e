"""
Virality Scorer

Scores a post against its source channel's recent history:

    viral_score = engagement_rate / baseline_rate

- engagement rate: likes + comments, or comments alone when the platform
  hides likes (likes_count == -1, "comments-only mode")
- baseline: mean rate over the channel's 100 most recent posts, computed
  separately for normal and comments-only posts
- viral iff viral_score >= threshold (channel override, then the
  ``global_virality_threshold`` setting, then 3.0)

Fewer than 10 baseline posts, or a zero baseline, never flags a post.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Post, SourceChannel
from app.services import settings_store

HIDDEN_LIKES = -1
DEFAULT_THRESHOLD_MULTIPLIER = 3.0
BASELINE_MIN_POSTS = 10
BASELINE_SAMPLE_SIZE = 100


@dataclass
class Baseline:
    avg_rate: float
    comments_only_avg_rate: float
    post_count: int


@dataclass
class ViralResult:
    engagement_rate: float
    viral_score: float
    is_viral: bool
    reason: str


def engagement_rate(likes: int, comments: int) -> tuple[float, bool]:
    """Return (rate, comments_only)."""
    if likes == HIDDEN_LIKES:
        return float(comments), True
    return float(likes + comments), False


def compute_baseline(samples: Iterable[tuple[int, int]]) -> Baseline:
    """Mean rates over (likes, comments) pairs, split by scoring mode."""
    total_rate = 0.0
    total_comments_only = 0.0
    count_normal = 0
    count_comments_only = 0

    for likes, comments in samples:
        rate, comments_only = engagement_rate(likes, comments)
        if comments_only:
            total_comments_only += rate
            count_comments_only += 1
        else:
            total_rate += rate
            count_normal += 1

    return Baseline(
        avg_rate=total_rate / count_normal if count_normal else 0.0,
        comments_only_avg_rate=total_comments_only / count_comments_only if count_comments_only else 0.0,
        post_count=count_normal + count_comments_only,
    )


def evaluate(likes: int, comments: int, baseline: Baseline, threshold: float) -> ViralResult:
    rate, comments_only = engagement_rate(likes, comments)

    if baseline.post_count < BASELINE_MIN_POSTS:
        return ViralResult(
            engagement_rate=rate,
            viral_score=0.0,
            is_viral=False,
            reason=f"Insufficient baseline data ({baseline.post_count}/{BASELINE_MIN_POSTS} posts)",
        )

    baseline_rate = baseline.comments_only_avg_rate if comments_only else baseline.avg_rate
    if baseline_rate == 0:
        return ViralResult(engagement_rate=rate, viral_score=0.0, is_viral=False, reason="Baseline rate is zero")

    viral_score = rate / baseline_rate
    is_viral = viral_score >= threshold
    if is_viral:
        reason = f"{viral_score:.1f}x above baseline (threshold: {threshold:g}x)"
    else:
        reason = f"{viral_score:.1f}x — below {threshold:g}x threshold"
    return ViralResult(engagement_rate=rate, viral_score=viral_score, is_viral=is_viral, reason=reason)


async def get_baseline(
    session: AsyncSession,
    source_channel_id: int,
    *,
    exclude_post_id: int | None = None,
) -> Baseline:
    q = select(Post.likes_count, Post.comments_count).where(Post.source_channel_id == source_channel_id)
    if exclude_post_id is not None:
        q = q.where(Post.id != exclude_post_id)
    q = q.order_by(func.coalesce(Post.ig_timestamp, Post.created_at).desc(), Post.id.desc()).limit(
        BASELINE_SAMPLE_SIZE
    )
    rows = (await session.execute(q)).all()
    return compute_baseline((likes, comments) for likes, comments in rows)


async def get_threshold(session: AsyncSession, source_channel_id: int) -> float:
    channel = await session.get(SourceChannel, source_channel_id)
    if channel is not None and channel.virality_threshold:
        return float(channel.virality_threshold)

    raw = await settings_store.get_value(session, settings_store.GLOBAL_VIRALITY_THRESHOLD)
    if raw is not None:
        try:
            value = float(raw)
        except ValueError:
            value = 0.0
        return value or DEFAULT_THRESHOLD_MULTIPLIER

    return DEFAULT_THRESHOLD_MULTIPLIER


async def score_post(session: AsyncSession, post: Post) -> ViralResult:
    """Score a stored post; the post itself is not part of its own baseline."""
    baseline = await get_baseline(session, post.source_channel_id, exclude_post_id=post.id)
    threshold = await get_threshold(session, post.source_channel_id)
    return evaluate(post.likes_count, post.comments_count, baseline, threshold)
