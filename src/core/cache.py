"""Short-TTL JSON response cache. Every failure degrades to a cache miss."""

import json
import logging
from typing import Any, List, Optional

import redis
import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def metadata_key(owner_id: str, video_id: str) -> str:
    return f"video:{owner_id}:{video_id}:metadata"


def presigned_key(owner_id: str, video_id: str, variant: str, download: bool) -> str:
    return f"video:{owner_id}:{video_id}:presigned:{variant}:{'1' if download else '0'}"


def video_keys(owner_id: str, video_id: str) -> List[str]:
    """Every cache key that can hold a response for one video."""
    keys = [metadata_key(owner_id, video_id)]
    for variant in ("original", "transcoded"):
        keys += [presigned_key(owner_id, video_id, variant, flag) for flag in (True, False)]
    return keys


class ResponseCache:
    def __init__(self, client: aioredis.Redis, default_ttl: int = 30):
        self.client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int = 30) -> "ResponseCache":
        return cls(aioredis.from_url(url, decode_responses=True), default_ttl)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as exc:
            logger.warning(f"Cache get failed for key {key}: {exc}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
        except RedisError as exc:
            logger.warning(f"Cache set failed for key {key}: {exc}")

    async def delete_video(self, owner_id: str, video_id: str) -> None:
        """Drops every cached response for one video."""
        try:
            await self.client.delete(*video_keys(owner_id, video_id))
        except RedisError as exc:
            logger.warning(f"Cache invalidation failed for video {video_id}: {exc}")

    async def close(self) -> None:
        await self.client.aclose()


class SyncCacheInvalidator:
    """Blocking invalidation for the Celery worker, which has no event loop."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "SyncCacheInvalidator":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def delete_video(self, owner_id: str, video_id: str) -> None:
        try:
            self.client.delete(*video_keys(owner_id, video_id))
        except RedisError as exc:
            logger.warning(f"Cache invalidation failed for video {video_id}: {exc}")

    def close(self) -> None:
        self.client.close()
