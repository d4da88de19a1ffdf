"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a Redis counter cache; admission runs as one Lua script
so concurrent workers cannot over-admit.
"""

from __future__ import annotations

from typing import Sequence

from redis.asyncio import Redis

from ..llms.types import JSONValue
from ..models import json_dumps, json_loads
from .base import CounterCache, CounterWindow

# KEYS: counter keys. ARGV: limit_1, ttl_1, limit_2, ttl_2, ...
_TRY_INCREMENT_ALL = """
for i, key in ipairs(KEYS) do
  local current = tonumber(redis.call('GET', key) or '0') or 0
  if current >= tonumber(ARGV[i * 2 - 1]) then
    return 0
  end
end
for i, key in ipairs(KEYS) do
  local value = redis.call('INCR', key)
  if value == 1 then
    redis.call('EXPIRE', key, tonumber(ARGV[i * 2]))
  end
end
return 1
"""


class RedisCounterCache(CounterCache):
    """Redis-backed cache; values are stored as JSON strings."""

    def __init__(self, *, url: str, namespace: str = "crmagents") -> None:
        super().__init__()
        self.url = url
        self.namespace = namespace
        self._redis_client: Redis | None = None
        self._script = None

    async def setup(self) -> None:
        self._redis_client = Redis.from_url(self.url, decode_responses=True)
        await self._redis_client.ping()
        self._script = self._redis_client.register_script(_TRY_INCREMENT_ALL)
        await super().setup()

    async def close(self) -> None:
        if self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
            self._script = None
        await super().close()

    def _redis(self) -> Redis:
        if self._redis_client is None:
            raise RuntimeError("RedisCounterCache is not initialized. Call setup() first.")
        return self._redis_client

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    async def get(self, key: str) -> JSONValue | None:
        self._ensure_setup()
        raw = await self._redis().get(self._key(key))
        if raw is None:
            return None
        return json_loads(raw)

    async def set(self, key: str, value: JSONValue, ttl_s: int) -> None:
        self._ensure_setup()
        await self._redis().set(self._key(key), json_dumps(value), ex=max(1, int(ttl_s)))

    async def try_increment_all(self, windows: Sequence[CounterWindow]) -> bool:
        self._ensure_setup()
        if not windows:
            return True
        keys = [self._key(window.key) for window in windows]
        args: list[int] = []
        for window in windows:
            args.extend([window.limit, max(1, int(window.ttl_s))])
        admitted = await self._script(keys=keys, args=args)
        return int(admitted) == 1
