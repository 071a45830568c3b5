"""
Blood request schemas
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .profile import BloodType


class Urgency(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class RequestStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class BloodRequest(BaseModel):
    """Blood request as stored"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    requester_id: str
    blood_type: BloodType
    location: str
    message: str = ""
    urgency: Urgency = Urgency.MEDIUM
    is_emergency: bool = False
    status: RequestStatus = RequestStatus.ACTIVE
    created_at: datetime


class BloodRequestCreate(BaseModel):
    """Schema for posting a regular request"""
    blood_type: BloodType
    location: str = Field(..., max_length=255)
    message: str = ""
    urgency: Urgency = Urgency.MEDIUM

    @field_validator("location")
    @classmethod
    def location_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("location is required")
        return v.strip()


class EmergencyRequestCreate(BaseModel):
    """Schema for the emergency broadcast form"""
    blood_type: BloodType
    hospital: str = Field(..., max_length=255)
    contact_number: str = Field(..., max_length=32)
    location: str = ""

    @field_validator("hospital", "contact_number")
    @classmethod
    def required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("field is required")
        return v.strip()
