"""
Discover job handler: find trending clips and store them as candidates.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any

from clipworker.clients.discovery import SAMPLE_CLIPS, twitch_trend_score
from clipworker.constants import QueueName
from clipworker.db.repository import JobRepository
from clipworker.exceptions import ProcessingError
from clipworker.types.job import HandlerContext, HandlerResult
from clipworker.types.payloads import DiscoverConfig
from clipworker.worker.handlers.registry import parse_payload, register_handler

logger = logging.getLogger(__name__)


def _created_after(clip: dict[str, Any], cutoff: datetime) -> bool:
    created_at = clip.get("created_at")
    if not created_at:
        return True
    return datetime.fromisoformat(created_at.replace("Z", "+00:00")) >= cutoff


def score_twitch_clips(
    clips: list[dict[str, Any]],
    recency_days: int,
    max_results: int,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Drop clips older than the recency window, score by view velocity and keep the best."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=recency_days)
    scored = [
        {**clip, "viral_score": twitch_trend_score(clip["view_count"], clip.get("created_at"), now)}
        for clip in clips
        if _created_after(clip, cutoff)
    ]
    scored.sort(key=lambda clip: clip["viral_score"], reverse=True)
    return scored[:max_results]


def sample_clips(platform: str) -> list[dict[str, Any]]:
    return [
        {
            "url": clip["url"],
            "title": clip["title"],
            "thumbnail_url": None,
            "duration": random.randint(20, 59),
            "viral_score": random.randint(80, 99),
        }
        for clip in SAMPLE_CLIPS.get(platform, SAMPLE_CLIPS["youtube"])
    ]


@register_handler(QueueName.DISCOVER)
async def handle_discover(context: HandlerContext) -> HandlerResult:
    config = parse_payload(DiscoverConfig, context.payload)
    collaborators = context.collaborators
    platform = config.platform

    if platform == "twitch" and collaborators.twitch is not None:
        found = await collaborators.twitch.discover(config.keywords, config.max_results, config.recency_days)
        clips = score_twitch_clips(found, config.recency_days, config.max_results)
    elif platform == "youtube" and collaborators.youtube is not None:
        found = await collaborators.youtube.discover(config.keywords, config.max_results, config.recency_days)
        cutoff = datetime.now(timezone.utc) - timedelta(days=config.recency_days)
        clips = [clip for clip in found if _created_after(clip, cutoff)][: config.max_results]
    else:
        logger.info("Using sample clips, no API credentials", extra={"platform": platform})
        clips = sample_clips(platform)

    if not clips:
        raise ProcessingError(
            f"No trending results in last {config.recency_days} days. Try 30 days or a broader category.",
            step="discover",
        )
    if len(clips) < 5:
        logger.info("Few clips discovered", extra={"job_id": str(context.record_id), "count": len(clips)})

    async with context.session_factory() as session:
        stored = await JobRepository(session).replace_candidates(
            context.record_id, context.user_id, platform, clips
        )

    logger.info(
        "Discover job stored candidates",
        extra={"job_id": str(context.record_id), "platform": platform, "count": stored},
    )
    return HandlerResult(output={"candidates": stored, "platform": platform})
