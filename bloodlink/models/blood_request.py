"""
Blood request model
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Index

from .base import Base, utc_now


class BloodRequestRecord(Base):
    """Blood request posted by a recipient"""
    __tablename__ = "blood_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    requester_id = Column(String(64), nullable=False, index=True)
    blood_type = Column(String(3), nullable=False)
    location = Column(String(255), nullable=False)
    message = Column(Text, nullable=False, default="")
    urgency = Column(String(16), nullable=False, default="Medium")
    is_emergency = Column(Boolean, default=False, nullable=False)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('idx_request_status_created', 'status', 'created_at'),
    )

    def __repr__(self):
        return f"<BloodRequestRecord(id={self.id}, blood_type={self.blood_type}, status={self.status})>"
