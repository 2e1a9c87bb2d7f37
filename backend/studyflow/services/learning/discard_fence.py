"""
Discard Fence

When a user discards a session, other app instances may be in the middle of
loading the active session. The fence marks the discarded session id for a
short time (10 s by default) so those loads ignore it instead of
resurrecting it.

Two implementations share the same interface:
    - InMemoryDiscardFence: single process
    - RedisDiscardFence: shared between processes via SETEX
"""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import redis.asyncio as redis

from studyflow.config import yaml_config
from studyflow.db.redis import prefixed
from studyflow.utils import Clock, utc_now

redis_config: dict[str, Any] = yaml_config.get("redis", {})
focus_config: dict[str, Any] = yaml_config.get("focus", {})
FENCE_PREFIX: str = redis_config.get("discard_fence_prefix", "focus:discarded")
FENCE_TTL_SECONDS: int = focus_config.get("discard_fence_ttl", 10)


class InMemoryDiscardFence:
    """Process-local fence: session id → time it was discarded."""

    def __init__(self, ttl_seconds: int = FENCE_TTL_SECONDS, clock: Clock = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._fenced: dict[str, datetime] = {}

    async def mark(self, session_id: str) -> None:
        now = self.clock()
        self._evict_expired(now)
        self._fenced[session_id] = now

    async def is_fenced(self, session_id: str) -> bool:
        self._evict_expired(self.clock())
        return session_id in self._fenced

    def _evict_expired(self, now: datetime) -> None:
        expired = [sid for sid, marked_at in self._fenced.items() if now - marked_at >= self.ttl]
        for sid in expired:
            del self._fenced[sid]


class RedisDiscardFence:
    """Fence shared through Redis keys that expire on their own."""

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[redis.Redis]],
        ttl_seconds: int = FENCE_TTL_SECONDS,
        clock: Clock = utc_now,
    ):
        self.redis_factory = redis_factory
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _key(self, session_id: str) -> str:
        return prefixed(f"{FENCE_PREFIX}:{session_id}")

    async def mark(self, session_id: str) -> None:
        r = await self.redis_factory()
        await r.setex(self._key(session_id), self.ttl_seconds, self.clock().isoformat())

    async def is_fenced(self, session_id: str) -> bool:
        r = await self.redis_factory()
        return bool(await r.exists(self._key(session_id)))
