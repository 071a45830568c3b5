import pytest

from bloodlink.core.errors import (
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bloodlink.schemas import RequestStatus, Urgency
from bloodlink.services.blood_request_service import REQUESTS_TABLE


@pytest.mark.asyncio
async def test_create_request(request_service, identity):
    identity.sign_in("recipient")

    request = await request_service.create_request({
        "blood_type": "B-",
        "location": "  Lacor Hospital, Gulu ",
        "message": "Surgery tomorrow",
        "urgency": "High",
    })

    assert request.id is not None
    assert request.requester_id == "recipient"
    assert request.location == "Lacor Hospital, Gulu"
    assert request.urgency == Urgency.HIGH
    assert request.status == RequestStatus.ACTIVE
    assert request.is_emergency is False


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [
    {"location": "Gulu"},
    {"blood_type": "C+", "location": "Gulu"},
    {"blood_type": "A+", "location": "   "},
    {"blood_type": "A+", "location": "Gulu", "urgency": "Whenever"},
])
async def test_create_request_validation(request_service, identity, data):
    identity.sign_in("recipient")

    with pytest.raises(ValidationError):
        await request_service.create_request(data)


@pytest.mark.asyncio
async def test_create_request_requires_session(request_service):
    with pytest.raises(NotAuthenticatedError):
        await request_service.create_request({"blood_type": "A+", "location": "Gulu"})


@pytest.mark.asyncio
async def test_emergency_request(request_service, identity, feed):
    channel = await feed.open_channel(REQUESTS_TABLE, "INSERT")
    identity.sign_in("recipient")

    request = await request_service.create_emergency_request({
        "blood_type": "O-",
        "hospital": "Mulago Hospital",
        "contact_number": "+256 700 000000",
        "location": "Kampala",
    })

    assert request.is_emergency is True
    assert request.urgency == Urgency.CRITICAL
    assert request.location == "Mulago Hospital"
    assert "Contact: +256 700 000000" in request.message

    record = await channel.__aiter__().__anext__()
    assert record["id"] == request.id
    assert record["is_emergency"] is True
    await channel.close()


@pytest.mark.asyncio
async def test_emergency_request_needs_hospital_and_contact(request_service, identity):
    identity.sign_in("recipient")

    with pytest.raises(ValidationError):
        await request_service.create_emergency_request({"blood_type": "O-", "hospital": "", "contact_number": "1"})


@pytest.mark.asyncio
async def test_only_requester_changes_status(request_service, identity):
    identity.sign_in("recipient")
    request = await request_service.create_request({"blood_type": "A+", "location": "Gulu"})

    identity.sign_in("someone-else")
    with pytest.raises(PermissionDeniedError):
        await request_service.update_status(request.id, "cancelled")

    identity.sign_in("recipient")
    updated = await request_service.update_status(request.id, RequestStatus.FULFILLED)
    assert updated.status == RequestStatus.FULFILLED
    assert updated.blood_type == request.blood_type


@pytest.mark.asyncio
async def test_update_status_errors(request_service, identity):
    identity.sign_in("recipient")

    with pytest.raises(NotFoundError):
        await request_service.update_status(999, "cancelled")
    with pytest.raises(ValidationError):
        await request_service.update_status(1, "archived")


@pytest.mark.asyncio
async def test_list_active_filters(request_service, identity):
    identity.sign_in("recipient")
    a = await request_service.create_request({"blood_type": "A+", "location": "Gulu"})
    b = await request_service.create_request({"blood_type": "O-", "location": "Lira"})
    c = await request_service.create_request({"blood_type": "A+", "location": "Arua"})
    await request_service.update_status(a.id, "cancelled")

    active = await request_service.list_active()
    assert [r.id for r in active] == [c.id, b.id]

    only_a = await request_service.list_active("A+")
    assert [r.id for r in only_a] == [c.id]

    with pytest.raises(ValidationError):
        await request_service.list_active("Q")
