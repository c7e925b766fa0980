from __future__ import annotations

import json
from typing import Any

from redis import asyncio as redis
from redis.asyncio.client import Redis


class RedisStatsBackend:
    name = "redis"

    def __init__(self, *, redis_url: str, key: str) -> None:
        self._redis_url = redis_url
        self._key = key
        self._redis: Redis | None = None

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = redis.from_url(self._redis_url, decode_responses=True)
        await self._redis.ping()

    async def close(self) -> None:
        if self._redis is None:
            return
        close = getattr(self._redis, "aclose", None)
        if close:
            await close()
        else:
            await self._redis.close()
        self._redis = None

    async def read_document(self) -> dict[str, Any] | None:
        raw = await self._require_redis().get(self._key)
        if raw is None:
            return None
        return json.loads(raw)

    async def write_document(self, document: dict[str, Any]) -> None:
        encoded = json.dumps(document, ensure_ascii=False, separators=(",", ":"), default=str)
        await self._require_redis().set(self._key, encoded)

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
