from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.cache import ResponseCache, metadata_key, presigned_key


def test_key_layout():
    assert metadata_key("owner-a", "vid-1") == "video:owner-a:vid-1:metadata"
    assert presigned_key("owner-a", "vid-1", "transcoded", False) == "video:owner-a:vid-1:presigned:transcoded:0"


class TestResponseCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self, cache, redis_client):
        await cache.set("k", {"url": "https://signed.example/x"}, ttl=10)

        assert await cache.get("k") == {"url": "https://signed.example/x"}
        assert redis_client.ttls["k"] == 10

    @pytest.mark.asyncio
    async def test_default_ttl(self, cache, redis_client):
        await cache.set("k", {"a": 1})
        assert redis_client.ttls["k"] == 30

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, cache, redis_client):
        redis_client.values["k"] = "{not json"
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_misses(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        client.set.side_effect = RedisConnectionError("down")
        client.delete.side_effect = RedisConnectionError("down")
        cache = ResponseCache(client)

        assert await cache.get("k") is None
        await cache.set("k", {"a": 1})
        await cache.delete_video("owner-a", "vid-1")

    @pytest.mark.asyncio
    async def test_delete_video_drops_every_variant(self, cache, redis_client):
        keys = [metadata_key("owner-a", "vid-1")] + [
            presigned_key("owner-a", "vid-1", variant, flag)
            for variant in ("original", "transcoded")
            for flag in (True, False)
        ]
        for key in keys:
            redis_client.values[key] = "{}"
        redis_client.values[metadata_key("owner-a", "vid-2")] = "{}"

        await cache.delete_video("owner-a", "vid-1")

        assert list(redis_client.values) == [metadata_key("owner-a", "vid-2")]

    @pytest.mark.asyncio
    async def test_close(self, cache, redis_client):
        await cache.close()
        assert redis_client.closed
