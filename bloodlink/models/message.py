"""
Message log model
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Index

from .base import Base, utc_now


class MessageRecord(Base):
    """Append-only one-to-one message log"""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(String(64), nullable=False, index=True)
    receiver_id = Column(String(64), nullable=False, index=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    # Pair lookups in both directions are ordered by time
    __table_args__ = (
        Index('idx_message_pair', 'sender_id', 'receiver_id', 'created_at'),
    )

    def __repr__(self):
        return f"<MessageRecord(id={self.id}, from={self.sender_id}, to={self.receiver_id})>"
