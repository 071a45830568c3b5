"""
Chat session - one live thread between the signed-in user and a counterparty

Combines the history load with the live feed. The transcript is keyed by
message id, so a message arriving through history, the live feed and the
local echo of send() is shown once, always in (created_at, id) order.
"""
import asyncio
import bisect
import contextlib
from typing import Callable, Dict, List, Optional, Set

from bloodlink.core.config import get_settings
from bloodlink.core.errors import NotAuthenticatedError, TransportError, ValidationError
from bloodlink.core.logger import get_logger
from bloodlink.core.retry import RetryConfig, retry_async
from bloodlink.infrastructure.change_feed import ChangeFeed
from bloodlink.infrastructure.identity import IdentityProvider
from bloodlink.schemas import Message
from bloodlink.services.live_feed import FeedState, LiveMessageFeed
from bloodlink.services.message_store import MessageStore

logger = get_logger(__name__)

TranscriptListener = Callable[[Message], None]


class ChatSession:
    """Owns one (current_user, counterparty) thread"""

    def __init__(
        self,
        message_store: MessageStore,
        change_feed: ChangeFeed,
        identity: IdentityProvider,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.message_store = message_store
        self.change_feed = change_feed
        self.identity = identity
        self.retry_config = retry_config or RetryConfig.from_settings(get_settings())

        self.current_user: Optional[str] = None
        self.counterparty: Optional[str] = None
        self.feed: Optional[LiveMessageFeed] = None
        self.last_error: Optional[Exception] = None

        self._messages: List[Message] = []
        self._ids: Set[int] = set()
        self._listeners: List[TranscriptListener] = []

        self._opened = False
        self._active = False
        self._released = False
        self._pending: Set[asyncio.Task] = set()
        self._recovery: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Task] = None
        self._remove_session_listener: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def transcript(self) -> List[Message]:
        """Messages oldest first"""
        return list(self._messages)

    def add_listener(self, listener: TranscriptListener) -> None:
        """Called once for every message newly added to the transcript"""
        self._listeners.append(listener)

    async def open(self, current_user: str, counterparty: str) -> None:
        """
        Load history, then subscribe to live inserts for this pair

        Raises:
            ValidationError: current_user and counterparty are the same
            NotAuthenticatedError: current_user is not the active identity
            TransportError: History could not be loaded
        """
        if self._opened:
            raise RuntimeError("Chat session already opened")
        if current_user == counterparty:
            raise ValidationError("Cannot open a chat with yourself")
        if await self.identity.get_current_user() != current_user:
            raise NotAuthenticatedError("Active session does not match the chat owner")

        self._opened = True
        self._active = True
        self.current_user = current_user
        self.counterparty = counterparty
        self._remove_session_listener = self.identity.add_listener(self._on_session_change)
        self.feed = LiveMessageFeed(
            self.change_feed,
            current_user,
            counterparty,
            on_error=self._on_feed_error,
        )

        try:
            await self._load_history()
        except TransportError:
            await self.close()
            raise

        if not self._active:
            return

        try:
            await self.feed.subscribe(self._on_live_message)
        except TransportError as e:
            logger.warning("Live feed unavailable on open", counterparty=counterparty, error=str(e))
            self._start_recovery()

        logger.info(
            "Chat session opened",
            user_id=current_user,
            counterparty=counterparty,
            messages=len(self._messages),
        )

    async def send(self, body: str) -> Message:
        """
        Append a message to the thread

        No timeout and no automatic retry: failures propagate to the caller.
        """
        if not self._active:
            raise RuntimeError("Chat session is not open")

        message = await self.message_store.append(self.current_user, self.counterparty, body)

        # Local echo; the feed event for the same id is dropped by dedup
        if self._active:
            self._merge([message])
        return message

    async def refresh(self) -> None:
        """Re-read the full history and merge it (manual refresh)"""
        if not self._active:
            raise RuntimeError("Chat session is not open")
        await self._load_history()

    async def close(self) -> None:
        """Cancel pending loads and release the subscription. Idempotent."""
        self._active = False
        if self._closing is not None:
            await self._closing
            return
        await self._release()

    def _merge(self, messages: List[Message]) -> List[Message]:
        added = []
        for message in messages:
            if message.id in self._ids:
                continue
            self._ids.add(message.id)
            bisect.insort(self._messages, message, key=lambda m: m.sort_key)
            added.append(message)

        for message in added:
            for listener in list(self._listeners):
                try:
                    listener(message)
                except Exception:
                    logger.exception("Transcript listener failed", message_id=message.id)
        return added

    async def _load_history(self) -> None:
        task = asyncio.create_task(
            self.message_store.history(self.current_user, self.counterparty)
        )
        self._pending.add(task)
        try:
            messages = await task
        except asyncio.CancelledError:
            if not self._active:
                return
            raise
        finally:
            self._pending.discard(task)

        if not self._active:
            logger.debug("Discarding history that arrived after close", counterparty=self.counterparty)
            return

        self._merge(messages)

    def _on_live_message(self, message: Message) -> None:
        if self._active:
            self._merge([message])

    def _on_feed_error(self, error: Exception) -> None:
        self.last_error = error
        if self._active:
            self._start_recovery()

    def _start_recovery(self) -> None:
        if self._recovery is not None and not self._recovery.done():
            return
        self._recovery = asyncio.create_task(self._recover())

    async def _recover(self) -> None:
        """Fresh subscription first, then a full history re-read to cover the gap"""
        try:
            await retry_async(
                self._resubscribe,
                config=self.retry_config,
                retry_on_exceptions=(TransportError,),
            )
        except TransportError as e:
            self.last_error = e
            logger.error("Live feed recovery gave up", counterparty=self.counterparty, error=str(e))
            return

        if not self._active:
            return

        try:
            await self._load_history()
        except TransportError as e:
            self.last_error = e
            logger.error("History re-fetch after reconnect failed", counterparty=self.counterparty, error=str(e))
            return

        self.last_error = None
        logger.info("Live feed recovered", counterparty=self.counterparty, messages=len(self._messages))

    async def _resubscribe(self) -> None:
        if not self._active or self.feed.state not in (FeedState.IDLE, FeedState.ERROR):
            return
        await self.feed.subscribe(self._on_live_message)

    def _on_session_change(self, user_id: Optional[str]) -> None:
        if user_id == self.current_user or not self._active:
            return

        logger.info("Session changed, closing chat", counterparty=self.counterparty)
        self._active = False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._closing = loop.create_task(self._release())

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True

        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None

        for task in list(self._pending):
            task.cancel()

        recovery, self._recovery = self._recovery, None
        if recovery is not None and recovery is not asyncio.current_task():
            recovery.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await recovery

        if self.feed is not None:
            await self.feed.unsubscribe()

        logger.info("Chat session closed", counterparty=self.counterparty)
