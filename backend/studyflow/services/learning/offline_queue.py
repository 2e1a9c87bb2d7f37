"""
Offline Session-End Queue

Durable retry queue for session completions that could not be written
because the learning store was unreachable.

Entries live in a Redis hash keyed by session id:

    HSETNX  enqueue, one entry per session id (duplicates ignored)
    HGETALL read every pending entry for a processing pass
    HDEL    remove an entry once its handler succeeded, or when it expired

Before its handler runs an entry is claimed with SET NX on a per-session
lock key, so passes in different processes never replay the same session
at once. An entry whose handler fails stays queued for the next pass,
unless it is older than OFFLINE_QUEUE_MAX_AGE_HOURS, in which case it is
dropped with a warning. A pass already in progress on the same queue makes
concurrent calls return immediately with skipped=True.

Usage:
    queue = FocusSessionQueue(get_redis)
    await queue.enqueue(QueuedSessionEnd(...))
    result = await queue.process(service.complete_queued_end)
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from studyflow.config import yaml_config
from studyflow.db.redis import prefixed
from studyflow.models.learning import QueuedSessionEnd, QueueProcessResult
from studyflow.utils import Clock, utc_now

logger = logging.getLogger(__name__)

redis_config: dict[str, Any] = yaml_config.get("redis", {})
focus_config: dict[str, Any] = yaml_config.get("focus", {})
QUEUE_KEY: str = redis_config.get("offline_queue_key", "focus:offline_queue")
MAX_AGE_HOURS: float = focus_config.get("offline_queue_max_age_hours", 24)
LOCK_SECONDS: int = focus_config.get("offline_queue_lock_seconds", 60)

RedisFactory = Callable[[], Awaitable[redis.Redis]]
QueueHandler = Callable[[QueuedSessionEnd], Awaitable[Any]]


class FocusSessionQueue:
    """Redis-backed, exactly-once-per-session retry queue."""

    def __init__(
        self,
        redis_factory: RedisFactory,
        key: str = QUEUE_KEY,
        max_age_hours: float = MAX_AGE_HOURS,
        lock_seconds: int = LOCK_SECONDS,
        clock: Clock = utc_now,
    ):
        """
        Args:
            redis_factory: Coroutine returning a Redis client (e.g. get_redis)
            key: Hash key, namespaced with the configured prefix
            max_age_hours: Failed entries older than this are dropped
            lock_seconds: Expiry of the per-session replay lock
            clock: Time source
        """
        self.redis_factory = redis_factory
        self.key = prefixed(key)
        self.max_age = timedelta(hours=max_age_hours)
        self.lock_seconds = lock_seconds
        self.clock = clock
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def enqueue(self, entry: QueuedSessionEnd) -> bool:
        """
        Queue a session end.

        Returns:
            False when the session is already queued
        """
        r = await self.redis_factory()
        added = await r.hsetnx(self.key, entry.session_id, entry.model_dump_json())
        if added:
            logger.info(f"Queued offline end for session {entry.session_id}")
        else:
            logger.debug(f"Session {entry.session_id} already queued")
        return bool(added)

    async def pending(self) -> list[QueuedSessionEnd]:
        """Queued entries, oldest first. Unreadable entries are removed."""
        r = await self.redis_factory()
        raw = await r.hgetall(self.key)
        entries: list[QueuedSessionEnd] = []
        for session_id, payload in raw.items():
            try:
                entries.append(QueuedSessionEnd.model_validate_json(payload))
            except PydanticValidationError as e:
                logger.warning(f"Dropping unreadable queue entry {session_id}: {e}")
                await r.hdel(self.key, session_id)
        return sorted(entries, key=lambda entry: entry.queued_at)

    async def size(self) -> int:
        r = await self.redis_factory()
        return await r.hlen(self.key)

    async def remove(self, session_id: str) -> None:
        r = await self.redis_factory()
        await r.hdel(self.key, session_id)

    async def clear(self) -> None:
        r = await self.redis_factory()
        await r.delete(self.key)

    def _lock_key(self, session_id: str) -> str:
        return f"{self.key}:lock:{session_id}"

    async def _claim(self, r: redis.Redis, session_id: str) -> bool:
        """
        Take the replay lock for one entry.

        Returns:
            False when another pass holds the lock or already removed the entry
        """
        lock_key = self._lock_key(session_id)
        if not await r.set(lock_key, self.clock().isoformat(), nx=True, ex=self.lock_seconds):
            return False
        if not await r.hexists(self.key, session_id):
            await r.delete(lock_key)
            return False
        return True

    async def process(
        self, handler: QueueHandler, user_id: Optional[str] = None
    ) -> QueueProcessResult:
        """
        Replay pending entries through `handler`.

        Args:
            handler: Coroutine completing one session end; raising keeps the
                entry queued (or drops it once expired)
            user_id: Only replay this user's entries

        Returns:
            QueueProcessResult listing processed, failed and dropped ids
        """
        if self._processing:
            return QueueProcessResult(skipped=True)

        self._processing = True
        result = QueueProcessResult()
        try:
            r = await self.redis_factory()
            for entry in await self.pending():
                if user_id is not None and entry.user_id != user_id:
                    continue
                if not await self._claim(r, entry.session_id):
                    logger.debug(f"Session {entry.session_id} is being replayed elsewhere")
                    continue
                try:
                    await self._replay(entry, handler, result)
                finally:
                    await r.delete(self._lock_key(entry.session_id))
        finally:
            self._processing = False

        if result.processed or result.dropped:
            logger.info(
                f"Offline queue pass: {len(result.processed)} processed, "
                f"{len(result.failed)} failed, {len(result.dropped)} dropped"
            )
        return result

    async def _replay(
        self, entry: QueuedSessionEnd, handler: QueueHandler, result: QueueProcessResult
    ) -> None:
        try:
            await handler(entry)
        except Exception as e:
            age = self.clock() - entry.queued_at
            if age > self.max_age:
                logger.warning(
                    f"Dropping queued end for session {entry.session_id} after {age}: {e}"
                )
                await self.remove(entry.session_id)
                result.dropped.append(entry.session_id)
            else:
                logger.error(
                    f"Replay failed for session {entry.session_id}, keeping it queued: {e}"
                )
                result.failed.append(entry.session_id)
            return

        await self.remove(entry.session_id)
        result.processed.append(entry.session_id)
