# screenshot_service/storage.py
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import httpx
from supabase import AsyncClient, StorageException, acreate_client

from screenshot_service.errors import ArtifactStoreError

logger = logging.getLogger(__name__)


def artifact_path(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"screenshots/{now:%Y/%m/%d}/{uuid.uuid4().hex}.png"


class ArtifactStore(ABC):
    """Durable object storage that turns image bytes into a public URL."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        pass

    async def close(self) -> None:
        pass


class SupabaseArtifactStore(ArtifactStore):
    def __init__(self, url: str, key: str, bucket: str):
        self._url = url
        self._key = key
        self.bucket = bucket
        self._client: Optional[AsyncClient] = None

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = await acreate_client(self._url, self._key)
        return self._client

    async def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        try:
            client = await self._get_client()
            bucket = client.storage.from_(self.bucket)
            await bucket.upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
            public_url = await bucket.get_public_url(path)
        except (StorageException, httpx.HTTPError) as exc:
            raise ArtifactStoreError(f"upload of {path} failed: {exc}") from exc
        logger.info("Uploaded %s (%d bytes)", path, len(data))
        return public_url
