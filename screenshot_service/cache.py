# screenshot_service/cache.py
"""Cache keys and the artifact-URL result cache."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from redis.exceptions import RedisError

from screenshot_service.errors import CacheStoreError
from screenshot_service.models import CaptureRequest

logger = logging.getLogger(__name__)

KEY_PREFIX = "screenshot:v1:"
ABSENT = "-"


def _text_field(value: Optional[str]) -> str:
    # length-prefixed so free text can never bleed into the next field
    if value is None:
        return ABSENT
    return f"{len(value)}:{value}"


def build_cache_key(request: CaptureRequest) -> str:
    """Derive the cache key for a request.

    Fields are written in a fixed order: url, viewport width and height,
    selector, clip. Text fields are length-prefixed and absent optional fields
    are written as ``-``, which no length-prefixed value can equal.
    """
    clip = request.clip
    clip_field = ABSENT if clip is None else f"{clip.x},{clip.y},{clip.width},{clip.height}"
    return KEY_PREFIX + "|".join(
        (
            _text_field(request.url),
            str(request.viewport_width),
            str(request.viewport_height),
            _text_field(request.selector),
            clip_field,
        )
    )


class ResultCache(ABC):
    """Key-value store for artifact URLs with write-once semantics."""

    backend = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store ``value`` unless an unexpired entry exists. Returns True if stored."""
        pass

    async def close(self) -> None:
        pass


class MemoryResultCache(ResultCache):
    """In-process cache, lost on restart."""

    backend = "memory"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        # no await before the write, so this is atomic on the event loop
        if await self.get(key) is not None:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    def size(self) -> int:
        return len(self._data)


class RedisResultCache(ResultCache):
    backend = "redis"

    def __init__(self, redis_client):
        self.redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisResultCache":
        from redis import asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis.get(key)
        except RedisError as exc:
            raise CacheStoreError(f"redis GET failed: {exc}") from exc
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            stored = await self.redis.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as exc:
            raise CacheStoreError(f"redis SET failed: {exc}") from exc
        return bool(stored)

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError as exc:
            logger.warning("Error closing redis connection: %s", exc)


def create_result_cache(redis_url: Optional[str] = None) -> ResultCache:
    if redis_url:
        logger.info("Using redis result cache")
        return RedisResultCache.from_url(redis_url)
    logger.info("REDIS_URL not set - using in-process result cache")
    return MemoryResultCache()
