"""
Profile model
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON

from .base import Base, utc_now


class ProfileRecord(Base):
    """Donor or recipient profile, keyed by the identity provider's user id"""
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    full_name = Column(String(120), nullable=False)
    role = Column(String(16), nullable=False, index=True)
    blood_type = Column(String(3), nullable=False, index=True)
    city = Column(String(120), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    # Raw preference document; parsed leniently on read
    notification_settings = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<ProfileRecord(id={self.id}, role={self.role}, blood_type={self.blood_type})>"
