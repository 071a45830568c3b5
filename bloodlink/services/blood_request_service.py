"""
Blood request service - posting requests and updating their status
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as SchemaError
from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from bloodlink.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    ValidationError,
)
from bloodlink.core.logger import get_logger
from bloodlink.infrastructure.change_feed import INSERT, ChangeFeed
from bloodlink.infrastructure.identity import IdentityProvider
from bloodlink.models import BloodRequestRecord, utc_now
from bloodlink.schemas import (
    BloodRequest,
    BloodRequestCreate,
    BloodType,
    EmergencyRequestCreate,
    RequestStatus,
    Urgency,
)

logger = get_logger(__name__)

REQUESTS_TABLE = BloodRequestRecord.__tablename__

EMERGENCY_TEMPLATE = (
    "EMERGENCY REQUEST\n\n"
    "Hospital: {hospital}\n"
    "Contact: {contact}\n"
    "Location: {location}\n\n"
    "This is an urgent blood requirement. Please respond immediately if you can donate."
)


def _validate(schema, data: Dict[str, Any]):
    try:
        return schema.model_validate(data)
    except SchemaError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ValidationError(f"Missing or invalid fields: {fields}") from e


class BloodRequestService:
    """Service for blood request operations"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        change_feed: ChangeFeed,
        identity: IdentityProvider,
    ):
        self.session_factory = session_factory
        self.change_feed = change_feed
        self.identity = identity

    async def create_request(self, data: Dict[str, Any]) -> BloodRequest:
        """
        Post a regular request for the signed-in user

        Args:
            data: blood_type, location, message, urgency

        Raises:
            NotAuthenticatedError: No active session
            ValidationError: Blood type or location missing/invalid
        """
        payload = _validate(BloodRequestCreate, data)
        requester_id = await self.identity.require_user()

        return await self._insert(
            requester_id=requester_id,
            blood_type=payload.blood_type,
            location=payload.location,
            message=payload.message.strip(),
            urgency=payload.urgency,
            is_emergency=False,
        )

    async def create_emergency_request(self, data: Dict[str, Any]) -> BloodRequest:
        """
        Post an emergency request

        Urgency is always Critical and the message is built from the
        hospital and contact details. The insert event is what triggers the
        emergency fan-out to donors.

        Args:
            data: blood_type, hospital, contact_number, optional location
        """
        payload = _validate(EmergencyRequestCreate, data)
        requester_id = await self.identity.require_user()

        return await self._insert(
            requester_id=requester_id,
            blood_type=payload.blood_type,
            location=payload.hospital,
            message=EMERGENCY_TEMPLATE.format(
                hospital=payload.hospital,
                contact=payload.contact_number,
                location=payload.location.strip() or payload.hospital,
            ),
            urgency=Urgency.CRITICAL,
            is_emergency=True,
        )

    async def update_status(self, request_id: int, status: Union[str, RequestStatus]) -> BloodRequest:
        """
        Change a request's status; only its requester may do this

        Raises:
            ValidationError: Unknown status
            NotFoundError: No such request
            PermissionDeniedError: Caller is not the requester
        """
        try:
            new_status = RequestStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown status: {status}") from e

        current_user = await self.identity.require_user()

        async with self.session_factory() as db:
            try:
                record = await db.get(BloodRequestRecord, request_id)
                if record is None:
                    raise NotFoundError(f"Blood request {request_id} not found")
                if record.requester_id != current_user:
                    raise PermissionDeniedError("Only the requester can change this request")

                record.status = new_status.value
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise TransportError("Failed to update blood request") from e

            request = BloodRequest.model_validate(record)

        logger.info("Blood request status changed", request_id=request_id, status=new_status.value)
        return request

    async def get_request(self, request_id: int) -> Optional[BloodRequest]:
        async with self.session_factory() as db:
            try:
                record = await db.get(BloodRequestRecord, request_id)
            except SQLAlchemyError as e:
                raise TransportError("Failed to load blood request") from e
            return BloodRequest.model_validate(record) if record else None

    async def list_active(self, blood_type: Optional[Union[str, BloodType]] = None) -> List[BloodRequest]:
        """Active requests, newest first, optionally for one blood type"""
        query = select(BloodRequestRecord).where(
            BloodRequestRecord.status == RequestStatus.ACTIVE.value
        )
        if blood_type:
            try:
                wanted = BloodType(blood_type)
            except ValueError as e:
                raise ValidationError(f"Unknown blood type: {blood_type}") from e
            query = query.where(BloodRequestRecord.blood_type == wanted.value)

        query = query.order_by(desc(BloodRequestRecord.created_at), desc(BloodRequestRecord.id))

        async with self.session_factory() as db:
            try:
                result = await db.execute(query)
                records = result.scalars().all()
            except SQLAlchemyError as e:
                raise TransportError("Failed to load blood requests") from e

        return [BloodRequest.model_validate(r) for r in records]

    async def _insert(
        self,
        requester_id: str,
        blood_type: BloodType,
        location: str,
        message: str,
        urgency: Urgency,
        is_emergency: bool,
    ) -> BloodRequest:
        async with self.session_factory() as db:
            try:
                record = BloodRequestRecord(
                    requester_id=requester_id,
                    blood_type=blood_type.value,
                    location=location,
                    message=message,
                    urgency=urgency.value,
                    is_emergency=is_emergency,
                    status=RequestStatus.ACTIVE.value,
                    created_at=utc_now(),
                )
                db.add(record)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise TransportError("Failed to store blood request") from e

            request = BloodRequest.model_validate(record)

        logger.info(
            "Blood request created",
            request_id=request.id,
            blood_type=request.blood_type.value,
            emergency=is_emergency,
        )

        try:
            await self.change_feed.publish(REQUESTS_TABLE, INSERT, request.model_dump(mode="json"))
        except TransportError as e:
            logger.error("Change event not published", request_id=request.id, error=str(e))

        return request
