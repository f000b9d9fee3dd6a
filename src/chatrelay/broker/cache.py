"""指纹缓存实现

RedisFingerprintCache: 多实例共享的 Redis 缓存（SET EX + SCAN 前缀删除）。
MemoryFingerprintCache: 进程内缓存，单实例部署与测试使用，时钟可注入。
"""

import time
from collections.abc import Callable

import structlog
from redis import asyncio as aioredis

log = structlog.get_logger()


class RedisFingerprintCache:
    """基于 redis.asyncio 的 TTL 缓存"""

    def __init__(self, redis_url: str, scan_count: int = 100) -> None:
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._scan_count = scan_count

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        await self._redis.set(key, value, ex=ttl_s)

    async def delete_by_prefix(self, prefix: str) -> int:
        """SCAN 匹配前缀后批量删除（不使用 KEYS，避免阻塞 Redis）"""
        keys = [
            key
            async for key in self._redis.scan_iter(
                match=f"{prefix}*", count=self._scan_count
            )
        ]
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryFingerprintCache:
    """进程内 TTL 缓存"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        # key -> (value, expires_at)
        self._entries: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_s)

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def keys(self) -> list[str]:
        return sorted(self._entries)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()
