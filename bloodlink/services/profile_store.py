"""
Profile store - profiles, notification preferences and donor lookup
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from bloodlink.core.errors import (
    NotAuthenticatedError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from bloodlink.core.logger import get_logger
from bloodlink.infrastructure.identity import IdentityProvider
from bloodlink.models import ProfileRecord
from bloodlink.schemas import NotificationSetting, Profile, ProfileUpdate, Role

logger = get_logger(__name__)


class ProfileStore:
    """Service for profile operations"""

    def __init__(self, session_factory: async_sessionmaker, identity: IdentityProvider):
        self.session_factory = session_factory
        self.identity = identity

    async def save_profile(self, user_id: str, data: Dict[str, Any]) -> Profile:
        """
        Create or update the caller's own profile

        Args:
            user_id: Profile owner, must be the active identity
            data: full_name, role, blood_type, city, optional is_available

        Returns:
            Saved profile

        Raises:
            NotAuthenticatedError: Caller is not the owner
            ValidationError: A required field is missing or invalid
        """
        await self._require_owner(user_id)

        try:
            update = ProfileUpdate.model_validate(data)
        except SchemaError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ValidationError(f"Invalid profile fields: {fields}") from e

        async with self.session_factory() as db:
            try:
                record = await db.get(ProfileRecord, user_id)
                if record is None:
                    record = ProfileRecord(
                        id=user_id,
                        is_verified=False,
                        notification_settings=NotificationSetting.defaults().model_dump(),
                    )
                    db.add(record)

                record.full_name = update.full_name
                record.role = update.role.value
                record.blood_type = update.blood_type.value
                record.city = update.city
                record.is_available = update.is_available
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise TransportError("Failed to save profile") from e

            profile = Profile.model_validate(record)

        logger.info("Profile saved", user_id=user_id, role=profile.role.value)
        return profile

    async def save_notification_settings(
        self, user_id: str, settings: NotificationSetting
    ) -> NotificationSetting:
        """Replace the caller's notification preferences"""
        await self._require_owner(user_id)

        async with self.session_factory() as db:
            try:
                record = await db.get(ProfileRecord, user_id)
                if record is None:
                    raise NotFoundError(f"No profile for {user_id}")
                record.notification_settings = settings.model_dump()
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise TransportError("Failed to save notification settings") from e

        return settings

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        async with self.session_factory() as db:
            try:
                record = await db.get(ProfileRecord, user_id)
            except SQLAlchemyError as e:
                raise TransportError("Failed to load profile") from e

            return Profile.model_validate(record) if record else None

    async def display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Map user id -> full name for the ids that have a profile"""
        ids = list(set(user_ids))
        if not ids:
            return {}

        async with self.session_factory() as db:
            try:
                result = await db.execute(
                    select(ProfileRecord.id, ProfileRecord.full_name).where(ProfileRecord.id.in_(ids))
                )
            except SQLAlchemyError as e:
                raise TransportError("Failed to load display names") from e

            return {row.id: row.full_name for row in result}

    async def donor_candidates(self) -> List[Tuple[Profile, Any]]:
        """
        Every donor profile paired with its raw notification preferences

        Rows that no longer parse as a profile are skipped, not fatal.
        """
        async with self.session_factory() as db:
            try:
                result = await db.execute(
                    select(ProfileRecord).where(ProfileRecord.role == Role.DONOR.value)
                )
                records = result.scalars().all()
            except SQLAlchemyError as e:
                raise TransportError("Failed to load donors") from e

        candidates = []
        for record in records:
            try:
                profile = Profile.model_validate(record)
            except SchemaError:
                logger.warning("Skipping malformed donor profile", user_id=record.id)
                continue
            candidates.append((profile, record.notification_settings))

        return candidates

    async def _require_owner(self, user_id: str) -> None:
        current_user = await self.identity.require_user()
        if current_user != user_id:
            raise NotAuthenticatedError("Profiles can only be changed by their owner")
