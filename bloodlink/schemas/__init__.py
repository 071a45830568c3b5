"""
Pydantic schemas
"""
from .message import Message
from .conversation import ConversationSummary
from .profile import (
    BloodType,
    Role,
    QuietHours,
    NotificationSetting,
    NOTIFICATION_CATEGORIES,
    Profile,
    ProfileUpdate,
    parse_clock,
)
from .blood_request import (
    BloodRequest,
    BloodRequestCreate,
    EmergencyRequestCreate,
    RequestStatus,
    Urgency,
)
from .notification import NotificationReason, NotificationTarget

__all__ = [
    "Message",
    "ConversationSummary",
    "BloodType",
    "Role",
    "QuietHours",
    "NotificationSetting",
    "NOTIFICATION_CATEGORIES",
    "Profile",
    "ProfileUpdate",
    "parse_clock",
    "BloodRequest",
    "BloodRequestCreate",
    "EmergencyRequestCreate",
    "RequestStatus",
    "Urgency",
    "NotificationReason",
    "NotificationTarget",
]
