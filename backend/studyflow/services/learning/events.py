"""
Event Bus

Typed publish/subscribe used for session coordination between app instances
and for the stats-changed stream consumed by dashboards.

subscribe() returns an unsubscribe callable. Handlers may be plain functions
or coroutines; a failing handler is logged and does not stop delivery to the
others.

Usage:
    bus = EventBus()
    unsubscribe = bus.subscribe(StatsChangedEvent, on_stats)
    await bus.publish(StatsChangedEvent(user_id="u1", stats=stats, reason="review"))
    unsubscribe()

Across processes, RedisEventRelay forwards FocusSessionEvents over a Redis
pub/sub channel and republishes the ones it receives on the local bus.
"""

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import BaseModel, ConfigDict, Field

from studyflow.config import yaml_config
from studyflow.enums.learning import AutoPauseReason, FocusEventType
from studyflow.models.learning import UserGamificationStats
from studyflow.utils import utc_now

logger = logging.getLogger(__name__)

redis_config: dict[str, Any] = yaml_config.get("redis", {})
EVENTS_CHANNEL: str = redis_config.get("events_channel", "focus:events")
RECONNECT_SECONDS: float = redis_config.get("relay_reconnect_seconds", 5)


# ===========================================
# Events
# ===========================================


class DomainEvent(BaseModel):
    """Base for everything published on the bus."""

    model_config = ConfigDict(frozen=True)

    occurred_at: datetime = Field(default_factory=utc_now)


class FocusSessionEvent(DomainEvent):
    """
    Session-level change made by one timer instance.

    Other instances use it to converge on the same state.
    """

    type: FocusEventType
    user_id: str
    session_id: str
    instance_id: str
    segment_id: Optional[str] = None
    relayed: bool = False


class FocusGoalReachedEvent(DomainEvent):
    """The session's work time reached its goal (sent once per session)."""

    user_id: str
    session_id: str
    instance_id: str
    goal_minutes: int


class FocusAutoPausedEvent(DomainEvent):
    """The timer paused itself at a duration ceiling."""

    user_id: str
    session_id: str
    instance_id: str
    reason: AutoPauseReason
    elapsed_seconds: int


class StatsChangedEvent(DomainEvent):
    """A user's gamification stats changed."""

    user_id: str
    stats: UserGamificationStats
    reason: str


E = TypeVar("E", bound=DomainEvent)
Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """In-process typed event bus."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(
        self, event_type: type[E], handler: Callable[[E], Any]
    ) -> Callable[[], None]:
        """
        Register a handler for `event_type` and its subclasses.

        Returns:
            Callable that removes the handler; safe to call more than once
        """
        handlers = self._handlers[event_type]
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        """Deliver `event` to every matching handler."""
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        f"Event handler {getattr(handler, '__name__', handler)!r} "
                        f"failed for {type(event).__name__}"
                    )


class RedisEventRelay:
    """
    Bridges FocusSessionEvents between processes over Redis pub/sub.

    Outgoing: every local, non-relayed event is published to the channel
    together with this relay's origin id.
    Incoming: messages from other origins are republished locally with
    relayed=True so they are not sent back out.
    A dropped Redis connection is resubscribed after reconnect_seconds;
    any other listener failure is logged when the task ends.
    """

    def __init__(
        self,
        bus: EventBus,
        redis_client: redis.Redis,
        channel: str = EVENTS_CHANNEL,
        reconnect_seconds: float = RECONNECT_SECONDS,
    ):
        self.bus = bus
        self.redis = redis_client
        self.channel = channel
        self.reconnect_seconds = reconnect_seconds
        self.origin = str(uuid4())
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listener: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Begin forwarding local events and listening for remote ones."""
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(FocusSessionEvent, self.forward)
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen())
            self._listener.add_done_callback(self._listener_done)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def forward(self, event: FocusSessionEvent) -> None:
        if event.relayed:
            return
        envelope = json.dumps(
            {"origin": self.origin, "event": event.model_dump(mode="json")}
        )
        await self.redis.publish(self.channel, envelope)

    async def handle_message(self, data: Union[str, bytes]) -> Optional[FocusSessionEvent]:
        """
        Republish one raw channel message locally.

        Returns:
            The republished event, or None if it was ours or malformed
        """
        try:
            envelope = json.loads(data)
            if envelope.get("origin") == self.origin:
                return None
            event = FocusSessionEvent.model_validate(
                {**envelope["event"], "relayed": True}
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed event on {self.channel}: {e}")
            return None

        await self.bus.publish(event)
        return event

    async def _listen(self) -> None:
        while True:
            try:
                await self._consume()
                return
            except (RedisError, OSError) as e:
                logger.warning(
                    f"Lost subscription to {self.channel}: {e}; "
                    f"resubscribing in {self.reconnect_seconds}s"
                )
                await asyncio.sleep(self.reconnect_seconds)

    async def _consume(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.handle_message(message["data"])
        finally:
            await pubsub.aclose()

    def _listener_done(self, task: asyncio.Task) -> None:
        if self._listener is task:
            self._listener = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Event relay on {self.channel} stopped", exc_info=exc)
        else:
            logger.info(f"Event relay on {self.channel} closed")
