"""
Content discovery clients for Twitch and YouTube.

Both return plain clip dicts (``url``, ``title``, ``thumbnail_url``,
``duration``, ``view_count``, ``viral_score``, ``created_at``) so the discover
handler can score and store them without knowing the provider.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from clipworker.clients.token_cache import TokenCache
from clipworker.exceptions import ProcessingError

logger = logging.getLogger(__name__)

TWITCH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
TWITCH_API_URL = "https://api.twitch.tv/helix"
YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"

DEFAULT_TWITCH_CATEGORY = "Just Chatting"

_ISO_DURATION = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

# Used for platforms without an API integration
SAMPLE_CLIPS: dict[str, list[dict[str, str]]] = {
    "youtube": [
        {"url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ", "title": "Trending Video Moment"},
        {"url": "https://www.youtube.com/watch?v=9bZkp7q19f0", "title": "Viral Dance Clip"},
        {"url": "https://www.youtube.com/watch?v=kJQP7kiw5Fk", "title": "Music Video Highlight"},
    ],
    "rumble": [
        {"url": "https://rumble.com/v2example1", "title": "Breaking News Clip"},
        {"url": "https://rumble.com/v2example2", "title": "Commentary Highlight"},
        {"url": "https://rumble.com/v2example3", "title": "Interview Moment"},
    ],
}


def _hours_since(timestamp: str | None, now: datetime, default: float = 24.0) -> float:
    if not timestamp:
        return default
    created = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    return max(1.0, (now - created).total_seconds() / 3600)


def twitch_trend_score(view_count: int, created_at: str | None, now: datetime) -> int:
    """Velocity score: views per hour dominates, total views add a log bonus."""
    views_per_hour = view_count / _hours_since(created_at, now)
    return min(100, round(40 + views_per_hour * 2 + math.log10(view_count + 1) * 5))


def youtube_viral_score(
    view_count: int,
    like_count: int,
    comment_count: int,
    published_at: str | None,
    now: datetime,
) -> int:
    hours = _hours_since(published_at, now)
    like_ratio = (like_count / view_count) * 100 if view_count > 0 else 0.0
    return min(
        100,
        round(
            30
            + (view_count / hours) * 0.5
            + like_ratio * 2
            + (comment_count / hours) * 10
            + math.log10(view_count + 1) * 3
        ),
    )


def parse_iso_duration(value: str | None, default: int = 60) -> int:
    match = _ISO_DURATION.fullmatch(value or "")
    if not match:
        return default
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_error:
        raise ProcessingError(
            f"{what} failed: {response.status_code} - {response.text[:200]}",
            step="discover",
        )


class TwitchClient:
    """
    Twitch Helix client using an app access token.

    The token lives in a process-local TokenCache and is refreshed on miss.
    """

    def __init__(self, client_id: str, client_secret: str, client: httpx.AsyncClient):
        self.client_id = client_id
        self._client_secret = client_secret
        self._client = client
        self.tokens = TokenCache(self._fetch_token)

    async def _fetch_token(self) -> tuple[str, float]:
        response = await self._client.post(
            TWITCH_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            },
        )
        _raise_for_status(response, "Twitch OAuth")
        data = response.json()
        return data["access_token"], float(data["expires_in"])

    async def _get(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        token = await self.tokens.get()
        response = await self._client.get(
            f"{TWITCH_API_URL}/{path}",
            params=params,
            headers={"Authorization": f"Bearer {token}", "Client-Id": self.client_id},
        )
        if response.status_code == 401:
            self.tokens.invalidate()
        _raise_for_status(response, f"Twitch {path}")
        return response.json().get("data") or []

    async def discover(self, keywords: str, max_clips: int, recency_days: int) -> list[dict[str, Any]]:
        """
        Find top clips for the category (or else channel) matching ``keywords``.

        Falls back to the default category when nothing matches.
        """
        game_id = None
        broadcaster_id = None

        if keywords:
            games = await self._get("search/categories", {"query": keywords, "first": 5})
            if games:
                game_id = games[0]["id"]
            else:
                channels = await self._get("search/channels", {"query": keywords, "first": 5})
                if channels:
                    broadcaster_id = channels[0]["id"]

        if game_id is None and broadcaster_id is None:
            defaults = await self._get("search/categories", {"query": DEFAULT_TWITCH_CATEGORY, "first": 5})
            if not defaults:
                raise ProcessingError("Unable to find any Twitch category to search clips for", step="discover")
            game_id = defaults[0]["id"]

        started_at = (datetime.now(timezone.utc) - timedelta(days=recency_days)).isoformat()
        params: dict[str, Any] = {"first": max_clips, "started_at": started_at}
        if game_id is not None:
            params["game_id"] = game_id
        else:
            params["broadcaster_id"] = broadcaster_id

        clips = await self._get("clips", params)
        logger.info("Twitch clips fetched", extra={"count": len(clips), "keywords": keywords})

        return [
            {
                "url": clip["url"],
                "title": clip.get("title"),
                "thumbnail_url": clip.get("thumbnail_url"),
                "duration": round(clip.get("duration") or 0),
                "view_count": clip.get("view_count") or 0,
                "created_at": clip.get("created_at"),
            }
            for clip in clips
        ]


class YouTubeClient:
    """YouTube Data API v3 client for short, recent, most-viewed videos."""

    def __init__(self, api_key: str, client: httpx.AsyncClient):
        self._api_key = api_key
        self._client = client

    async def discover(self, keywords: str, max_results: int, recency_days: int) -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        published_after = (now - timedelta(days=recency_days)).isoformat().replace("+00:00", "Z")

        response = await self._client.get(
            f"{YOUTUBE_API_URL}/search",
            params={
                "part": "snippet",
                "q": keywords or "trending",
                "type": "video",
                "order": "viewCount",
                "maxResults": max_results,
                "videoDuration": "short",
                "publishedAfter": published_after,
                "key": self._api_key,
            },
        )
        _raise_for_status(response, "YouTube search")
        video_ids = [
            item["id"]["videoId"]
            for item in response.json().get("items", [])
            if item.get("id", {}).get("videoId")
        ]
        if not video_ids:
            return []

        stats_response = await self._client.get(
            f"{YOUTUBE_API_URL}/videos",
            params={
                "part": "snippet,statistics,contentDetails",
                "id": ",".join(video_ids),
                "key": self._api_key,
            },
        )
        _raise_for_status(stats_response, "YouTube stats")

        videos = []
        for video in stats_response.json().get("items", []):
            stats = video.get("statistics", {})
            snippet = video.get("snippet", {})
            thumbnails = snippet.get("thumbnails", {})
            view_count = int(stats.get("viewCount", 0))
            published_at = snippet.get("publishedAt")
            videos.append(
                {
                    "url": f"https://www.youtube.com/watch?v={video['id']}",
                    "title": snippet.get("title") or "Untitled",
                    "thumbnail_url": (thumbnails.get("high") or thumbnails.get("default") or {}).get("url"),
                    "duration": parse_iso_duration(video.get("contentDetails", {}).get("duration")),
                    "view_count": view_count,
                    "viral_score": youtube_viral_score(
                        view_count,
                        int(stats.get("likeCount", 0)),
                        int(stats.get("commentCount", 0)),
                        published_at,
                        now,
                    ),
                    "created_at": published_at,
                }
            )
        return videos
