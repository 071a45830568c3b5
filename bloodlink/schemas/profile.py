"""
Profile and notification preference schemas
"""
from datetime import time
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BloodType(str, Enum):
    """ABO/Rh blood groups"""

    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"


class Role(str, Enum):
    DONOR = "donor"
    RECIPIENT = "recipient"


NOTIFICATION_CATEGORIES = (
    "emergency_requests",
    "nearby_requests",
    "matching_blood_type",
    "donation_responses",
    "request_updates",
    "chat_messages",
    "donation_reminders",
    "app_updates",
)


def parse_clock(value: Any) -> Optional[time]:
    """Parse "HH:MM" into a time, or None if it is not a valid clock time"""
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return time(hour, minute)


class QuietHours(BaseModel):
    """Daily window during which non-emergency alerts are held back"""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"

    def window(self) -> Optional[Tuple[time, time]]:
        """Parsed (start, end), or None if either bound is malformed"""
        start = parse_clock(self.start)
        end = parse_clock(self.end)
        if start is None or end is None:
            return None
        return start, end


class NotificationSetting(BaseModel):
    """Per-category alert flags plus quiet hours.

    Field defaults are all False: anything missing from stored preference
    data means "disabled". Use ``defaults()`` for a brand-new profile.
    """
    model_config = ConfigDict(frozen=True)

    emergency_requests: bool = False
    nearby_requests: bool = False
    matching_blood_type: bool = False
    donation_responses: bool = False
    request_updates: bool = False
    chat_messages: bool = False
    donation_reminders: bool = False
    app_updates: bool = False
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    @classmethod
    def defaults(cls) -> "NotificationSetting":
        """Settings a new user starts with"""
        return cls(
            emergency_requests=True,
            nearby_requests=True,
            matching_blood_type=True,
            donation_responses=True,
            request_updates=True,
            chat_messages=True,
            donation_reminders=False,
            app_updates=False,
        )

    @classmethod
    def from_raw(cls, raw: Any) -> "NotificationSetting":
        """
        Build settings from stored preference data without ever raising.

        Accepts either a mapping of category -> bool, or the mobile client's
        list form ``[{"id": "chat_messages", "enabled": true}, ...]``. Quiet
        hours may sit under ``quiet_hours`` or ``quietHours``. Only a real
        boolean True enables a category.
        """
        if isinstance(raw, cls):
            return raw

        flags = {}
        quiet_raw: Any = None

        if isinstance(raw, dict):
            entries = raw.get("settings")
            if isinstance(entries, list):
                flags.update(_flags_from_list(entries))
            for category in NOTIFICATION_CATEGORIES:
                if category in raw:
                    flags[category] = raw[category] is True
            quiet_raw = raw.get("quiet_hours", raw.get("quietHours"))
        elif isinstance(raw, list):
            flags.update(_flags_from_list(raw))

        return cls(**flags, quiet_hours=_quiet_hours_from_raw(quiet_raw))


def _flags_from_list(entries: list) -> dict:
    flags = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        category = entry.get("id")
        if category in NOTIFICATION_CATEGORIES:
            flags[category] = entry.get("enabled") is True
    return flags


def _quiet_hours_from_raw(raw: Any) -> QuietHours:
    if isinstance(raw, QuietHours):
        return raw
    if not isinstance(raw, dict):
        return QuietHours()
    start = raw.get("start")
    end = raw.get("end")
    # Keep malformed bounds as given; the matcher treats them fail-safe
    return QuietHours(
        enabled=raw.get("enabled") is True,
        start=start if isinstance(start, str) else "",
        end=end if isinstance(end, str) else "",
    )


class Profile(BaseModel):
    """Donor or recipient profile"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    full_name: str
    role: Role
    blood_type: BloodType
    city: str
    is_verified: bool = False
    is_available: bool = True
    notification_settings: NotificationSetting = Field(default_factory=NotificationSetting.defaults)

    @field_validator("notification_settings", mode="before")
    @classmethod
    def parse_settings(cls, v: Any) -> NotificationSetting:
        if v is None:
            return NotificationSetting.defaults()
        return NotificationSetting.from_raw(v)


class ProfileUpdate(BaseModel):
    """Fields the owner may set on their profile"""

    full_name: str = Field(..., min_length=1, max_length=120)
    role: Role
    blood_type: BloodType
    city: str = Field(..., min_length=1, max_length=120)
    is_available: bool = True

    @field_validator("full_name", "city")
    @classmethod
    def strip_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()
