"""
Message store - append-only access to the one-to-one message log
"""
from typing import List

from sqlalchemy import and_, asc, desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from bloodlink.core.errors import NotAuthenticatedError, TransportError, ValidationError
from bloodlink.core.logger import get_logger
from bloodlink.infrastructure.change_feed import INSERT, ChangeFeed
from bloodlink.infrastructure.identity import IdentityProvider
from bloodlink.models import MessageRecord, utc_now
from bloodlink.schemas import Message

logger = get_logger(__name__)

MESSAGES_TABLE = MessageRecord.__tablename__


class MessageStore:
    """Service for message log operations"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        change_feed: ChangeFeed,
        identity: IdentityProvider,
    ):
        self.session_factory = session_factory
        self.change_feed = change_feed
        self.identity = identity

    async def append(self, sender_id: str, receiver_id: str, body: str) -> Message:
        """
        Persist a message and publish it on the change feed

        Args:
            sender_id: Sender user ID, must be the active identity
            receiver_id: Receiver user ID
            body: Message text, trimmed before storing

        Returns:
            Stored message with server-assigned id and timestamp

        Raises:
            ValidationError: Empty body, or sender and receiver are the same
            NotAuthenticatedError: No active identity, or it is not the sender
            TransportError: Datastore failure
        """
        text = (body or "").strip()
        if not text:
            raise ValidationError("Message body cannot be empty")
        if sender_id == receiver_id:
            raise ValidationError("Cannot send a message to yourself")

        current_user = await self.identity.require_user()
        if current_user != sender_id:
            raise NotAuthenticatedError("Active session does not match the sender")

        async with self.session_factory() as db:
            try:
                # Timestamps never go backwards, even if the clock does
                latest = await db.scalar(select(func.max(MessageRecord.created_at)))
                created_at = utc_now()
                if latest is not None and latest > created_at:
                    created_at = latest

                record = MessageRecord(
                    sender_id=sender_id,
                    receiver_id=receiver_id,
                    body=text,
                    created_at=created_at,
                )
                db.add(record)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise TransportError("Failed to store message") from e

            message = Message.model_validate(record)

        logger.info(
            "Message appended",
            message_id=message.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
        )

        try:
            await self.change_feed.publish(MESSAGES_TABLE, INSERT, message.model_dump(mode="json"))
        except TransportError as e:
            # The row is stored; live subscribers catch up on their next history load
            logger.error("Change event not published", message_id=message.id, error=str(e))

        return message

    async def history(self, user_a: str, user_b: str) -> List[Message]:
        """
        All messages between two users, oldest first

        Ties on timestamp keep insertion order. Safe to call repeatedly.

        Raises:
            NotAuthenticatedError: Active identity is not one of the pair
            TransportError: Datastore failure
        """
        await self._require_one_of(user_a, user_b)

        query = (
            select(MessageRecord)
            .where(
                or_(
                    and_(
                        MessageRecord.sender_id == user_a,
                        MessageRecord.receiver_id == user_b,
                    ),
                    and_(
                        MessageRecord.sender_id == user_b,
                        MessageRecord.receiver_id == user_a,
                    ),
                )
            )
            .order_by(asc(MessageRecord.created_at), asc(MessageRecord.id))
        )
        return await self._fetch(query)

    async def involving(self, user_id: str) -> List[Message]:
        """
        Every message the user sent or received, newest first

        This is the order the conversation aggregator expects.
        """
        await self._require_one_of(user_id)

        query = (
            select(MessageRecord)
            .where(
                or_(
                    MessageRecord.sender_id == user_id,
                    MessageRecord.receiver_id == user_id,
                )
            )
            .order_by(desc(MessageRecord.created_at), desc(MessageRecord.id))
        )
        return await self._fetch(query)

    async def _require_one_of(self, *user_ids: str) -> str:
        current_user = await self.identity.require_user()
        if current_user not in user_ids:
            raise NotAuthenticatedError("Active session is not a participant")
        return current_user

    async def _fetch(self, query) -> List[Message]:
        async with self.session_factory() as db:
            try:
                result = await db.execute(query)
                records = result.scalars().all()
            except SQLAlchemyError as e:
                raise TransportError("Failed to load messages") from e

        return [Message.model_validate(r) for r in records]
