"""
Notification matching output
"""
from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


class NotificationReason(str, Enum):
    EMERGENCY = "emergency"
    BLOOD_TYPE = "blood_type"
    NEARBY = "nearby"


class NotificationTarget(BaseModel):
    """A donor to alert and why"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    reason: NotificationReason
    # Emergency alerts always fire; the user's emergency toggle only picks the badge style
    emergency_badge: bool = False
    payload: Dict[str, str] = Field(default_factory=dict)
