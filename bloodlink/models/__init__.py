"""
Database models
"""
from .base import Base, utc_now
from .message import MessageRecord
from .profile import ProfileRecord
from .blood_request import BloodRequestRecord

__all__ = ["Base", "utc_now", "MessageRecord", "ProfileRecord", "BloodRequestRecord"]
