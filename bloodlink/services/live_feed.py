"""
Live message feed - change-feed subscription for one pair of users

State machine per subscription:

    IDLE ──subscribe()──→ SUBSCRIBING ──ack──→ ACTIVE
                              │                  │
                              │ TransportError   │ connection lost
                              ↓                  ↓
                            ERROR ←──────────────┘
                              │
                              └──subscribe()──→ SUBSCRIBING ...

    any state ──unsubscribe()──→ CLOSED (terminal)

There is no resume cursor: after ERROR, callers open a fresh subscription
and re-read history to cover the gap.
"""
import asyncio
import contextlib
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError as SchemaError

from bloodlink.core.errors import TransportError
from bloodlink.core.logger import get_logger
from bloodlink.infrastructure.change_feed import INSERT, ChangeChannel, ChangeFeed
from bloodlink.schemas import Message
from bloodlink.services.message_store import MESSAGES_TABLE

logger = get_logger(__name__)

InsertCallback = Callable[[Message], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


class FeedState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    ERROR = "error"
    CLOSED = "closed"


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class LiveMessageFeed:
    """Delivers newly inserted messages between user_a and user_b, in either direction"""

    def __init__(
        self,
        change_feed: ChangeFeed,
        user_a: str,
        user_b: str,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.change_feed = change_feed
        self.user_a = user_a
        self.user_b = user_b
        self.on_error = on_error

        self.state = FeedState.IDLE
        self.delivered = 0

        self._on_insert: Optional[InsertCallback] = None
        self._channel: Optional[ChangeChannel] = None
        self._task: Optional[asyncio.Task] = None
        # Bumped on every subscribe/unsubscribe; stale work compares against it
        self._generation = 0

    async def subscribe(self, on_insert: InsertCallback) -> None:
        """
        Open the change-feed subscription and start delivering

        Returns once the transport has acknowledged (state ACTIVE).

        Raises:
            RuntimeError: Already subscribed or closed
            TransportError: Subscription could not be established (state ERROR)
        """
        if self.state not in (FeedState.IDLE, FeedState.ERROR):
            raise RuntimeError(f"Cannot subscribe while {self.state.value}")

        self._generation += 1
        generation = self._generation
        self._on_insert = on_insert
        self.state = FeedState.SUBSCRIBING

        try:
            channel = await self.change_feed.open_channel(MESSAGES_TABLE, INSERT)
        except TransportError:
            if generation == self._generation:
                self.state = FeedState.ERROR
            raise

        if generation != self._generation:
            # Unsubscribed while waiting for the acknowledgement
            await channel.close()
            return

        self._channel = channel
        self.state = FeedState.ACTIVE
        self._task = asyncio.create_task(self._pump(channel, generation))

        logger.debug("Live feed active", user_a=self.user_a, user_b=self.user_b)

    async def unsubscribe(self) -> None:
        """
        Stop delivery. No callback runs after this returns. Idempotent.
        """
        if self.state == FeedState.CLOSED:
            return

        self._generation += 1
        self.state = FeedState.CLOSED

        task, self._task = self._task, None
        channel, self._channel = self._channel, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if channel is not None:
            await channel.close()

        logger.debug("Live feed closed", user_a=self.user_a, user_b=self.user_b)

    def matches(self, message: Message) -> bool:
        return message.is_between(self.user_a, self.user_b)

    async def _pump(self, channel: ChangeChannel, generation: int) -> None:
        try:
            async for record in channel:
                if generation != self._generation:
                    return

                try:
                    message = Message.model_validate(record)
                except SchemaError:
                    logger.warning("Skipping malformed message event", channel=channel.name)
                    continue

                if not self.matches(message):
                    continue

                try:
                    await _call(self._on_insert, message)
                except Exception:
                    logger.exception("Insert callback failed", message_id=message.id)
                    continue

                self.delivered += 1

        except TransportError as e:
            if generation != self._generation:
                return

            self.state = FeedState.ERROR
            self._channel = None
            self._task = None
            await channel.close()

            logger.warning(
                "Live feed connection lost",
                user_a=self.user_a,
                user_b=self.user_b,
                error=str(e),
            )

            if self.on_error is not None:
                await _call(self.on_error, e)
