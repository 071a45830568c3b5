"""
Change feed transport: publish/subscribe on row inserts

Every insert into a watched table is published on a channel named
"{prefix}:{table}:{event}", e.g. "changes:messages:INSERT". Subscribers open
a channel, wait for the transport to acknowledge it, then iterate records
in the order the transport reports them.

    Store (after commit)                 Subscribers
    ─────────────────────                ───────────
    publish("messages", "INSERT", row)
            │
            ↓
    ┌───────────────────────────┐
    │ changes:messages:INSERT   │ ──→ ChangeChannel 1 (chat session A)
    │                           │ ──→ ChangeChannel 2 (chat session B)
    └───────────────────────────┘

Delivery is at-least-once and there is no resume cursor: a subscriber that
loses its connection must open a fresh channel and re-read history.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from bloodlink.core.config import get_settings
from bloodlink.core.errors import TransportError
from bloodlink.core.logger import get_logger

logger = get_logger(__name__)

INSERT = "INSERT"


def channel_name(prefix: str, table: str, event: str) -> str:
    return f"{prefix}:{table}:{event}"


def encode_record(record: Dict[str, Any]) -> str:
    """Rows travel as JSON; datetimes become ISO strings"""
    return json.dumps(record, default=lambda v: v.isoformat() if hasattr(v, "isoformat") else str(v))


class ChangeChannel(ABC):
    """One acknowledged subscription; async-iterate it to receive records"""

    def __init__(self, name: str):
        self.name = name

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._records()

    @abstractmethod
    def _records(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded records; raise TransportError on connection loss"""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery. Safe to call more than once."""


class ChangeFeed(ABC):
    """Publish/subscribe transport keyed by table and event"""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or get_settings().feed_channel_prefix
        self.messages_published = 0

    @abstractmethod
    async def publish(self, table: str, event: str, record: Dict[str, Any]) -> int:
        """Publish a row; returns the number of subscribers reached"""

    @abstractmethod
    async def open_channel(self, table: str, event: str) -> ChangeChannel:
        """Subscribe and return once the transport has acknowledged"""


# ============================================================================
# Redis Pub/Sub transport
# ============================================================================

class RedisChannel(ChangeChannel):
    def __init__(self, name: str, pubsub: Any):
        super().__init__(name)
        self._pubsub = pubsub
        self._closed = False

    async def _records(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for message in self._pubsub.listen():
                # Ignore subscription confirmations
                if message["type"] != "message":
                    continue

                try:
                    record = json.loads(message["data"])
                except (TypeError, json.JSONDecodeError):
                    logger.warning("Dropping undecodable change event", channel=self.name)
                    continue

                yield record
        except (RedisError, OSError) as e:
            if self._closed:
                return
            raise TransportError(f"Change feed connection lost on {self.name}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.name)
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            # Connection already gone; nothing left to release
            logger.debug("Channel close on dead connection", channel=self.name, error=str(e))


class RedisChangeFeed(ChangeFeed):
    """
    Change feed over Redis Pub/Sub.

    Uses one client for PUBLISH and a dedicated Pub/Sub connection per
    channel, since a subscribed connection blocks on listen().
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        ack_timeout: float = 5.0,
    ):
        super().__init__(prefix)
        self.redis_url = redis_url or get_settings().redis_url
        self.ack_timeout = ack_timeout
        self.redis = None

    async def connect(self) -> None:
        logger.info("Connecting change feed", redis_url=self.redis_url)
        self.redis = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        logger.info("Change feed disconnected")

    def _client(self) -> Any:
        if self.redis is None:
            raise TransportError("Change feed is not connected")
        return self.redis

    async def publish(self, table: str, event: str, record: Dict[str, Any]) -> int:
        name = channel_name(self.prefix, table, event)
        try:
            receivers = await self._client().publish(name, encode_record(record))
        except (RedisError, OSError) as e:
            raise TransportError(f"Publish to {name} failed") from e

        self.messages_published += 1
        logger.debug("Published change event", channel=name, subscribers=receivers)
        return receivers

    async def open_channel(self, table: str, event: str) -> ChangeChannel:
        name = channel_name(self.prefix, table, event)
        pubsub = self._client().pubsub()
        try:
            await pubsub.subscribe(name)
            ack = await pubsub.get_message(timeout=self.ack_timeout)
        except (RedisError, OSError) as e:
            raise TransportError(f"Subscribe to {name} failed") from e

        if not ack or ack.get("type") != "subscribe":
            await RedisChannel(name, pubsub).close()
            raise TransportError(f"Subscription to {name} was not acknowledged")

        logger.info("Subscribed to change feed", channel=name)
        return RedisChannel(name, pubsub)


# ============================================================================
# In-process transport
# ============================================================================

_CLOSED = object()


class InMemoryChannel(ChangeChannel):
    def __init__(self, name: str, feed: "InMemoryChangeFeed"):
        super().__init__(name)
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _deliver(self, item: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    async def _records(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield json.loads(item)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._detach(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryChangeFeed(ChangeFeed):
    """
    Change feed inside one event loop.

    Records are JSON round-tripped so subscribers see the same shapes the
    Redis transport produces. ``disconnect_all()`` simulates a dropped
    connection; ``available = False`` makes new subscriptions fail.
    """

    def __init__(self, prefix: Optional[str] = None):
        super().__init__(prefix)
        self.available = True
        self._channels: Dict[str, Set[InMemoryChannel]] = {}

    async def publish(self, table: str, event: str, record: Dict[str, Any]) -> int:
        name = channel_name(self.prefix, table, event)
        payload = encode_record(record)
        channels = list(self._channels.get(name, ()))
        for channel in channels:
            channel._deliver(payload)

        self.messages_published += 1
        return len(channels)

    async def open_channel(self, table: str, event: str) -> ChangeChannel:
        if not self.available:
            raise TransportError("Change feed unavailable")

        name = channel_name(self.prefix, table, event)
        channel = InMemoryChannel(name, self)
        self._channels.setdefault(name, set()).add(channel)
        # Yield once so subscription is a real suspension point
        await asyncio.sleep(0)
        return channel

    async def disconnect_all(self) -> None:
        """Break every open channel as if the connection dropped"""
        for channels in list(self._channels.values()):
            for channel in list(channels):
                channel._deliver(TransportError("Change feed connection lost"))
        self._channels.clear()

    def subscriber_count(self, table: str, event: str) -> int:
        return len(self._channels.get(channel_name(self.prefix, table, event), ()))

    def _detach(self, channel: InMemoryChannel) -> None:
        channels = self._channels.get(channel.name)
        if channels is not None:
            channels.discard(channel)
            if not channels:
                del self._channels[channel.name]
