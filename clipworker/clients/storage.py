"""
Object storage upload client.

Uploads rendered artifacts over HTTP and returns their public URL.
"""

import logging
from pathlib import Path

import httpx

from clipworker.exceptions import ProcessingError

logger = logging.getLogger(__name__)


class StorageClient:
    """
    Client for a bucket-style object store with public read URLs.

    Args:
        upload_url: Base URL objects are PUT to (``{upload_url}/{bucket}/{path}``).
        public_url: Base URL objects are publicly served from.
        bucket: Bucket name.
        token: Optional bearer token for uploads.
        client: Shared async HTTP client.
    """

    def __init__(
        self,
        upload_url: str | None,
        public_url: str | None,
        bucket: str,
        token: str | None,
        client: httpx.AsyncClient,
    ):
        self.upload_url = upload_url.rstrip("/") if upload_url else None
        self.public_url = (public_url or upload_url or "").rstrip("/")
        self.bucket = bucket
        self._token = token
        self._client = client

    def public_url_for(self, storage_path: str) -> str:
        return f"{self.public_url}/{self.bucket}/{storage_path}"

    async def upload(
        self,
        local_path: Path,
        storage_path: str,
        content_type: str = "video/mp4",
    ) -> str:
        """
        Upload a file, overwriting any existing object, and return its public URL.

        Raises:
            ProcessingError: If storage is not configured, the file is missing,
                or the upload fails.
        """
        if not self.upload_url:
            raise ProcessingError("Object storage is not configured", step="upload")
        if not local_path.exists():
            raise ProcessingError(f"Artifact not found: {local_path}", step="upload")

        headers = {"Content-Type": content_type, "x-upsert": "true"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        url = f"{self.upload_url}/{self.bucket}/{storage_path}"
        try:
            response = await self._client.put(url, content=local_path.read_bytes(), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProcessingError(f"Upload failed: {e}", step="upload") from e

        public = self.public_url_for(storage_path)
        logger.info("Uploaded artifact", extra={"storage_path": storage_path, "url": public})
        return public
