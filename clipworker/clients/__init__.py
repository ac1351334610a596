"""
External collaborators invoked by the handlers.

Each collaborator is a single-operation facade returning an artifact or
raising ProcessingError; the worker core never inspects their internals.
"""

from dataclasses import dataclass
from pathlib import Path

import httpx

from clipworker.clients.discovery import TwitchClient, YouTubeClient
from clipworker.clients.media import MediaEngine
from clipworker.clients.stock_media import SceneImage, StockMediaClient
from clipworker.clients.storage import StorageClient
from clipworker.clients.token_cache import TokenCache
from clipworker.clients.voice import VoiceClient
from clipworker.config import Settings


@dataclass
class Collaborators:
    """The set of external engines a worker delegates to."""

    media: MediaEngine
    storage: StorageClient
    voice: VoiceClient
    stock_media: StockMediaClient
    twitch: TwitchClient | None
    youtube: YouTubeClient | None
    http: httpx.AsyncClient
    work_dir: Path

    async def aclose(self) -> None:
        await self.http.aclose()


def build_collaborators(settings: Settings) -> Collaborators:
    """Wire collaborators from settings, sharing one HTTP connection pool."""
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True)

    twitch = None
    if settings.twitch_client_id and settings.twitch_client_secret:
        twitch = TwitchClient(settings.twitch_client_id, settings.twitch_client_secret, http)

    youtube = YouTubeClient(settings.youtube_api_key, http) if settings.youtube_api_key else None

    return Collaborators(
        media=MediaEngine(
            font_path=settings.media_font_path,
            download_timeout=settings.media_download_timeout_seconds,
            encode_timeout=settings.media_encode_timeout_seconds,
        ),
        storage=StorageClient(
            upload_url=settings.storage_upload_url,
            public_url=settings.storage_public_url,
            bucket=settings.storage_bucket,
            token=settings.storage_token,
            client=http,
        ),
        voice=VoiceClient(settings.elevenlabs_api_key, http),
        stock_media=StockMediaClient(settings.pexels_api_key, http),
        twitch=twitch,
        youtube=youtube,
        http=http,
        work_dir=Path(settings.media_work_dir),
    )


__all__ = [
    "Collaborators",
    "build_collaborators",
    "MediaEngine",
    "StorageClient",
    "VoiceClient",
    "StockMediaClient",
    "SceneImage",
    "TwitchClient",
    "YouTubeClient",
    "TokenCache",
]
