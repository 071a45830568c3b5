from datetime import datetime, time

import pytest

from bloodlink.schemas import (
    BloodRequest,
    BloodType,
    NotificationReason,
    NotificationSetting,
    Profile,
    QuietHours,
)
from bloodlink.services.notification_matcher import (
    CAN_RECEIVE_FROM,
    NotificationMatcher,
    can_donate,
    is_within_quiet_hours,
    location_matches,
    should_notify_chat,
)

NOON = datetime(2026, 3, 1, 12, 0)
LATE = datetime(2026, 3, 1, 23, 30)


def blood_request(blood_type="A+", location="Mulago Hospital, Kampala", emergency=False, **extra):
    return BloodRequest(
        id=extra.pop("id", 1),
        requester_id=extra.pop("requester_id", "recipient"),
        blood_type=blood_type,
        location=location,
        message="please help",
        urgency="Critical" if emergency else "Medium",
        is_emergency=emergency,
        created_at=NOON,
        **extra,
    )


def donor(id, blood_type="O+", city="Kampala", role="donor"):
    return Profile(id=id, full_name=id.title(), role=role, blood_type=blood_type, city=city)


def prefs(**flags):
    quiet = flags.pop("quiet_hours", None)
    data = {category: flags.get(category, False) for category in flags}
    if quiet is not None:
        data["quiet_hours"] = quiet
    return data


QUIET_NIGHT = {"enabled": True, "start": "22:00", "end": "08:00"}


@pytest.mark.parametrize("clock,expected", [
    (time(23, 30), True),
    (time(5, 0), True),
    (time(22, 0), True),
    (time(8, 0), False),
    (time(12, 0), False),
    (time(21, 59), False),
])
def test_quiet_hours_wrap_past_midnight(clock, expected):
    quiet = QuietHours(enabled=True, start="22:00", end="08:00")
    assert is_within_quiet_hours(quiet, clock) is expected


def test_quiet_hours_same_day_window():
    quiet = QuietHours(enabled=True, start="13:00", end="15:00")
    assert is_within_quiet_hours(quiet, time(14, 0))
    assert not is_within_quiet_hours(quiet, time(15, 0))
    assert not is_within_quiet_hours(quiet, time(12, 59))


def test_quiet_hours_disabled_or_empty():
    assert not is_within_quiet_hours(QuietHours(enabled=False), time(23, 30))
    assert not is_within_quiet_hours(QuietHours(enabled=True, start="09:00", end="09:00"), time(9, 0))


def test_malformed_quiet_hours_fail_safe():
    quiet = QuietHours(enabled=True, start="late", end="25:00")
    assert is_within_quiet_hours(quiet, time(12, 0))


def test_compatibility_table():
    assert can_donate("O-", "AB+")
    assert can_donate("O-", "O-")
    assert can_donate("A-", "AB+")
    assert not can_donate("A+", "O-")
    assert not can_donate("AB+", "A+")
    assert not can_donate("Z", "A+")
    assert CAN_RECEIVE_FROM[BloodType.O_NEG] == {BloodType.O_NEG}
    assert len(CAN_RECEIVE_FROM[BloodType.AB_POS]) == 8
    assert CAN_RECEIVE_FROM[BloodType.A_POS] == {
        BloodType.A_POS, BloodType.A_NEG, BloodType.O_POS, BloodType.O_NEG,
    }


def test_o_negative_request_matches_only_o_negative_donors():
    matcher = NotificationMatcher()
    candidates = [
        (donor(name, blood_type=bt, city="Gulu"), prefs(matching_blood_type=True))
        for name, bt in [("a", "A+"), ("b", "O+"), ("c", "O-"), ("d", "AB-")]
    ]

    targets = matcher.match(blood_request("O-", location="Mbarara"), candidates, now=NOON)

    assert [t.user_id for t in targets] == ["c"]
    assert targets[0].reason == NotificationReason.BLOOD_TYPE


def test_emergency_overrides_toggle_and_quiet_hours():
    matcher = NotificationMatcher()
    settings = prefs(emergency_requests=False, quiet_hours=QUIET_NIGHT)

    targets = matcher.match(
        blood_request("B+", location="Far away", emergency=True),
        [(donor("d1", blood_type="A+", city="Elsewhere"), settings)],
        now=LATE,
    )

    assert len(targets) == 1
    assert targets[0].reason == NotificationReason.EMERGENCY
    assert targets[0].emergency_badge is False
    assert targets[0].payload["title"] == "Emergency blood request"


def test_emergency_badge_follows_toggle():
    matcher = NotificationMatcher()

    targets = matcher.match(
        blood_request(emergency=True),
        [(donor("d1"), prefs(emergency_requests=True))],
        now=NOON,
    )

    assert targets[0].emergency_badge is True


def test_blood_type_takes_precedence_over_nearby():
    matcher = NotificationMatcher()
    settings = prefs(matching_blood_type=True, nearby_requests=True)

    targets = matcher.match(
        blood_request("AB+", location="Kampala"),
        [(donor("d1", blood_type="O-", city="Kampala"), settings)],
        now=NOON,
    )

    assert targets[0].reason == NotificationReason.BLOOD_TYPE


def test_nearby_when_blood_type_disabled():
    matcher = NotificationMatcher()

    targets = matcher.match(
        blood_request("AB+", location="Nsambya Hospital, kampala"),
        [
            (donor("near", blood_type="O-", city="Kampala"), prefs(nearby_requests=True)),
            (donor("far", blood_type="O-", city="Gulu"), prefs(nearby_requests=True)),
        ],
        now=NOON,
    )

    assert [(t.user_id, t.reason) for t in targets] == [("near", NotificationReason.NEARBY)]


def test_quiet_hours_suppress_non_emergency():
    matcher = NotificationMatcher()
    settings = prefs(matching_blood_type=True, nearby_requests=True, quiet_hours=QUIET_NIGHT)
    candidates = [(donor("d1", blood_type="O-"), settings)]

    assert matcher.match(blood_request(), candidates, now=LATE) == []
    assert len(matcher.match(blood_request(), candidates, now=NOON)) == 1


def test_default_clock_used_when_now_missing():
    matcher = NotificationMatcher(clock=lambda: LATE)
    settings = prefs(matching_blood_type=True, quiet_hours=QUIET_NIGHT)

    assert matcher.match(blood_request(), [(donor("d1", blood_type="O-"), settings)]) == []


@pytest.mark.parametrize("raw", [
    None,
    {},
    "garbage",
    42,
    {"matching_blood_type": "yes", "nearby_requests": 1},
    {"quiet_hours": "always"},
    [{"id": "matching_blood_type"}, "junk", {"enabled": True}],
])
def test_malformed_preferences_never_raise_and_disable(raw):
    matcher = NotificationMatcher()

    targets = matcher.match(blood_request("AB+"), [(donor("d1", blood_type="O-"), raw)], now=NOON)
    assert targets == []

    emergency = matcher.match(
        blood_request("AB+", emergency=True), [(donor("d1", blood_type="O-"), raw)], now=NOON
    )
    assert [t.reason for t in emergency] == [NotificationReason.EMERGENCY]


def test_mobile_list_preferences_are_understood():
    raw = {
        "settings": [
            {"id": "matching_blood_type", "enabled": True},
            {"id": "nearby_requests", "enabled": False},
        ],
        "quietHours": {"enabled": False, "start": "22:00", "end": "08:00"},
    }

    settings = NotificationSetting.from_raw(raw)

    assert settings.matching_blood_type is True
    assert settings.nearby_requests is False
    assert settings.quiet_hours.enabled is False


def test_requester_and_recipients_are_skipped():
    matcher = NotificationMatcher()
    candidates = [
        (donor("recipient", blood_type="O-"), prefs(matching_blood_type=True)),
        (donor("other", blood_type="O-", role="recipient"), prefs(matching_blood_type=True)),
        (donor("d1", blood_type="O-"), prefs(matching_blood_type=True)),
    ]

    targets = matcher.match(blood_request(emergency=True), candidates, now=NOON)

    assert [t.user_id for t in targets] == ["d1"]


def test_closed_request_alerts_nobody():
    matcher = NotificationMatcher()

    targets = matcher.match(
        blood_request(emergency=True, status="fulfilled"),
        [(donor("d1"), prefs())],
        now=NOON,
    )

    assert targets == []


def test_location_heuristic():
    assert location_matches("Kampala", "Mulago Hospital, KAMPALA")
    assert location_matches("Fort Portal", "fort-portal referral")
    assert location_matches("Kampala Central", "Kampala")
    assert not location_matches("Kampala", "Kamp")
    assert not location_matches("", "Kampala")
    assert not location_matches(None, "Kampala")


def test_chat_notifications_respect_toggle_and_quiet_hours():
    assert should_notify_chat({"chat_messages": True}, NOON)
    assert not should_notify_chat({"chat_messages": False}, NOON)
    assert not should_notify_chat({}, NOON)
    assert not should_notify_chat({"chat_messages": True, "quiet_hours": QUIET_NIGHT}, LATE)
