from __future__ import annotations

import hmac
from typing import cast

from redis.asyncio import Redis


class IdempotencyGuard:
    def __init__(self, redis: Redis, ttl_seconds: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def seen(self, key: str) -> bool:
        return await self._redis.get(key) is not None

    async def check_and_set(self, key: str) -> bool:
        # True means first-seen key, False means duplicate.
        result = await self._redis.set(key, "1", ex=self._ttl, nx=True)
        return cast(bool, result)


def tokens_match(provided: str | None, expected: str) -> bool:
    if not expected:
        return True
    if provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
