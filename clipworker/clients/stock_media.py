"""
Stock image search client (Pexels).

Per-scene failures are logged and skipped; a scene without an image falls
back to the previous one when the slideshow is assembled.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from pathlib import Path

import httpx

from clipworker.types.payloads import Scene

logger = logging.getLogger(__name__)

PEXELS_SEARCH_URL = "https://api.pexels.com/v1/search"
MAX_SCENES = 10
REQUEST_SPACING_SECONDS = 0.15


@dataclass
class SceneImage:
    path: Path
    scene_index: int
    text: str


class StockMediaClient:
    def __init__(self, api_key: str | None, client: httpx.AsyncClient):
        self._api_key = api_key
        self._client = client

    async def images_for_scenes(self, scenes: list[Scene], work_dir: Path) -> list[SceneImage]:
        """Download one portrait image per scene (first ten scenes only)."""
        if not self._api_key:
            logger.warning("PEXELS_API_KEY not configured, skipping scene images")
            return []

        images: list[SceneImage] = []
        for index, scene in enumerate(scenes[:MAX_SCENES]):
            try:
                image = await self._fetch_scene_image(scene, index, work_dir)
            except httpx.HTTPError as e:
                logger.warning("Scene image fetch failed", extra={"scene": index, "error": str(e)})
                image = None
            if image is not None:
                images.append(image)
            await asyncio.sleep(REQUEST_SPACING_SECONDS)
        return images

    async def _fetch_scene_image(self, scene: Scene, index: int, work_dir: Path) -> SceneImage | None:
        response = await self._client.get(
            PEXELS_SEARCH_URL,
            params={"query": scene.search_query, "orientation": "portrait", "per_page": 5, "size": "large"},
            headers={"Authorization": self._api_key},
        )
        if response.is_error:
            logger.info("Pexels search failed", extra={"scene": index, "status": response.status_code})
            return None

        photos = response.json().get("photos") or []
        if not photos:
            return None

        photo = random.choice(photos[:3])
        src = photo.get("src") or {}
        image_url = src.get("large2x") or src.get("large") or src.get("original")
        if not image_url:
            return None

        image_response = await self._client.get(image_url)
        if image_response.is_error:
            return None

        path = work_dir / f"scene_{index}.jpg"
        path.write_bytes(image_response.content)
        return SceneImage(path=path, scene_index=index, text=scene.text)
