"""Room-based pub/sub for real-time pushes.

Subscribers get a bounded queue per connection. With a Redis relay every
publish goes through one pub/sub channel and a listener fans it out to local
rooms, so clients on any instance receive it.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.services.clock import utcnow

logger = logging.getLogger(__name__)

RELAY_CHANNEL = "productbazar:events"


@dataclass
class Subscription:
    queue: asyncio.Queue
    rooms: set[str] = field(default_factory=set)


class EventBus:
    def __init__(self, redis: aioredis.Redis | None = None, queue_size: int = 100):
        self.redis = redis
        self.queue_size = queue_size
        self._rooms: dict[str, set[int]] = defaultdict(set)
        self._subs: dict[int, Subscription] = {}
        self._listener: asyncio.Task | None = None

    def subscribe(self, *rooms: str) -> Subscription:
        sub = Subscription(queue=asyncio.Queue(maxsize=self.queue_size))
        self._subs[id(sub)] = sub
        for room in rooms:
            self.join(sub, room)
        return sub

    def join(self, sub: Subscription, room: str):
        sub.rooms.add(room)
        self._rooms[room].add(id(sub))

    def leave(self, sub: Subscription, room: str):
        sub.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(id(sub))
            if not members:
                del self._rooms[room]

    def unsubscribe(self, sub: Subscription):
        for room in list(sub.rooms):
            self.leave(sub, room)
        self._subs.pop(id(sub), None)

    @property
    def relaying(self) -> bool:
        return self._listener is not None and not self._listener.done()

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def _deliver(self, room: str, event: str, payload: dict) -> int:
        message = {"room": room, "event": event, "data": payload}
        delivered = 0
        for sub_id in list(self._rooms.get(room, ())):
            sub = self._subs.get(sub_id)
            if sub is None:
                continue
            try:
                sub.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full in room %s, dropping %s", room, event)
        return delivered

    async def publish(self, room: str, event: str, payload: dict):
        """Publish ``event`` to ``room``. Never raises."""
        if self.redis is not None and self._listener is not None:
            try:
                await self.redis.publish(
                    RELAY_CHANNEL,
                    json.dumps({"room": room, "event": event, "data": payload}, default=str),
                )
                return
            except (RedisError, OSError) as e:
                logger.error("Event relay publish failed for %s/%s, delivering locally: %s", room, event, e)
        self._deliver(room, event, payload)

    async def notify(self, user_id: str, notification_type: str, message: str, data: dict | None = None):
        await self.publish(
            f"user:{user_id}",
            "notification",
            {
                "type": notification_type,
                "message": message,
                "data": data or {},
                "timestamp": utcnow().isoformat(),
            },
        )

    async def start_relay(self):
        if self.redis is None or self._listener is not None:
            return
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(RELAY_CHANNEL)
        self._listener = asyncio.create_task(self._listen(pubsub), name="event-relay")
        logger.info("Event relay listening on %s", RELAY_CHANNEL)

    async def _listen(self, pubsub):
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    decoded = json.loads(message["data"])
                    self._deliver(decoded["room"], decoded["event"], decoded.get("data") or {})
                except (ValueError, KeyError, TypeError):
                    logger.warning("Ignoring malformed relay message")
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError):
            logger.exception("Event relay listener stopped")
            self._listener = None
        finally:
            await pubsub.aclose()

    async def stop(self):
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
            self._listener = None
