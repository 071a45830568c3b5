import pytest
from sqlalchemy import update

from bloodlink.core.errors import NotAuthenticatedError, NotFoundError, ValidationError
from bloodlink.models import ProfileRecord
from bloodlink.schemas import NotificationSetting, QuietHours, Role


@pytest.mark.asyncio
async def test_save_profile_starts_with_default_settings(profile_store, identity):
    identity.sign_in("donor-1")

    profile = await profile_store.save_profile("donor-1", {
        "full_name": "  Amina Nakato ",
        "role": "donor",
        "blood_type": "O-",
        "city": "Kampala",
    })

    assert profile.full_name == "Amina Nakato"
    assert profile.role == Role.DONOR
    assert profile.is_verified is False
    assert profile.notification_settings == NotificationSetting.defaults()


@pytest.mark.asyncio
async def test_save_profile_updates_in_place(profile_store, create_profile, identity):
    await create_profile("donor-1", "Amina", city="Gulu")
    identity.sign_in("donor-1")

    await profile_store.save_profile("donor-1", {
        "full_name": "Amina N.",
        "role": "donor",
        "blood_type": "O-",
        "city": "Lira",
        "is_available": False,
    })

    stored = await profile_store.get_profile("donor-1")
    assert stored.full_name == "Amina N."
    assert stored.city == "Lira"
    assert stored.is_available is False


@pytest.mark.asyncio
async def test_only_owner_saves_profile(profile_store, identity):
    data = {"full_name": "X", "role": "donor", "blood_type": "A+", "city": "Gulu"}

    with pytest.raises(NotAuthenticatedError):
        await profile_store.save_profile("donor-1", data)

    identity.sign_in("someone-else")
    with pytest.raises(NotAuthenticatedError):
        await profile_store.save_profile("donor-1", data)


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [
    {"role": "donor", "blood_type": "A+", "city": "Gulu"},
    {"full_name": "X", "role": "nurse", "blood_type": "A+", "city": "Gulu"},
    {"full_name": "X", "role": "donor", "blood_type": "A", "city": "Gulu"},
    {"full_name": "X", "role": "donor", "blood_type": "A+", "city": "  "},
])
async def test_save_profile_validation(profile_store, identity, data):
    identity.sign_in("donor-1")

    with pytest.raises(ValidationError):
        await profile_store.save_profile("donor-1", data)


@pytest.mark.asyncio
async def test_save_notification_settings(profile_store, create_profile, identity):
    await create_profile("donor-1", "Amina")
    identity.sign_in("donor-1")
    settings = NotificationSetting(
        emergency_requests=True,
        quiet_hours=QuietHours(enabled=True, start="21:00", end="06:30"),
    )

    await profile_store.save_notification_settings("donor-1", settings)

    stored = await profile_store.get_profile("donor-1")
    assert stored.notification_settings == settings

    identity.sign_in("ghost")
    with pytest.raises(NotFoundError):
        await profile_store.save_notification_settings("ghost", settings)


@pytest.mark.asyncio
async def test_display_names(profile_store, create_profile):
    await create_profile("a", "Amina")
    await create_profile("b", "Brian", role="recipient")

    assert await profile_store.display_names(["a", "b", "c", "a"]) == {"a": "Amina", "b": "Brian"}
    assert await profile_store.display_names([]) == {}


@pytest.mark.asyncio
async def test_get_profile_missing(profile_store):
    assert await profile_store.get_profile("nobody") is None


@pytest.mark.asyncio
async def test_donor_candidates_keep_raw_settings(profile_store, create_profile, session_factory):
    await create_profile("d-1", "One", blood_type="O-")
    await create_profile("d-2", "Two", blood_type="A+")
    await create_profile("r-1", "Recipient", role="recipient")

    raw = {"settings": [{"id": "chat_messages", "enabled": True}], "quietHours": "bad"}
    async with session_factory() as db:
        await db.execute(
            update(ProfileRecord).where(ProfileRecord.id == "d-2").values(notification_settings=raw)
        )
        await db.commit()

    candidates = dict((p.id, settings) for p, settings in await profile_store.donor_candidates())

    assert set(candidates) == {"d-1", "d-2"}
    assert candidates["d-2"] == raw
    assert candidates["d-1"]["matching_blood_type"] is True


@pytest.mark.asyncio
async def test_donor_candidates_skip_broken_rows(profile_store, create_profile, session_factory):
    await create_profile("d-1", "One")
    await create_profile("d-2", "Two")

    async with session_factory() as db:
        await db.execute(
            update(ProfileRecord).where(ProfileRecord.id == "d-2").values(blood_type="unknown")
        )
        await db.commit()

    candidates = await profile_store.donor_candidates()

    assert [p.id for p, _ in candidates] == ["d-1"]
