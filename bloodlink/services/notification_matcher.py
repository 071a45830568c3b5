"""
Notification matcher - decides which donors are alerted about a blood request

Precedence for each donor:
1. Emergency request      -> always notify (quiet hours and toggles ignored)
2. Matching blood type    -> notify if enabled and the donor can give to the request
3. Nearby request         -> notify if enabled and the donor's city matches
4. Otherwise              -> no alert
Quiet hours then drop every non-emergency alert.

Preference data is never trusted: anything missing or malformed counts as
"disabled", so bad data can only cost an alert, never add one.
"""
import re
from datetime import datetime, time
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from bloodlink.core.logger import get_logger
from bloodlink.schemas import (
    BloodRequest,
    BloodType,
    NotificationReason,
    NotificationSetting,
    NotificationTarget,
    Profile,
    QuietHours,
    RequestStatus,
    Role,
)

logger = get_logger(__name__)

ALL_TYPES = frozenset(BloodType)

# Donor type -> recipient types it can safely give to
CAN_DONATE_TO: Dict[BloodType, FrozenSet[BloodType]] = {
    BloodType.O_NEG: ALL_TYPES,
    BloodType.O_POS: frozenset({BloodType.O_POS, BloodType.A_POS, BloodType.B_POS, BloodType.AB_POS}),
    BloodType.A_NEG: frozenset({BloodType.A_NEG, BloodType.A_POS, BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.A_POS: frozenset({BloodType.A_POS, BloodType.AB_POS}),
    BloodType.B_NEG: frozenset({BloodType.B_NEG, BloodType.B_POS, BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.B_POS: frozenset({BloodType.B_POS, BloodType.AB_POS}),
    BloodType.AB_NEG: frozenset({BloodType.AB_NEG, BloodType.AB_POS}),
    BloodType.AB_POS: frozenset({BloodType.AB_POS}),
}

CAN_RECEIVE_FROM: Dict[BloodType, FrozenSet[BloodType]] = {
    recipient: frozenset(donor for donor, targets in CAN_DONATE_TO.items() if recipient in targets)
    for recipient in BloodType
}


def _blood_type(value: Any) -> Optional[BloodType]:
    try:
        return BloodType(value)
    except ValueError:
        return None


def can_donate(donor_type: Union[str, BloodType], recipient_type: Union[str, BloodType]) -> bool:
    """True if blood of donor_type can be given to a recipient of recipient_type"""
    donor = _blood_type(donor_type)
    recipient = _blood_type(recipient_type)
    if donor is None or recipient is None:
        return False
    return recipient in CAN_DONATE_TO[donor]


def is_within_quiet_hours(quiet_hours: QuietHours, at: time) -> bool:
    """
    Check whether `at` falls in [start, end)

    A window with start > end wraps past midnight; start == end is empty.
    Enabled quiet hours with unparseable bounds count as "inside".
    """
    if not quiet_hours.enabled:
        return False

    window = quiet_hours.window()
    if window is None:
        return True

    start, end = window
    at = at.replace(second=0, microsecond=0, tzinfo=None)
    if start == end:
        return False
    if start < end:
        return start <= at < end
    return at >= start or at < end


_TOKEN = re.compile(r"[^\w]+", re.UNICODE)


def _tokens(text: Any) -> Tuple[str, ...]:
    if not isinstance(text, str):
        return ()
    return tuple(t for t in _TOKEN.split(text.casefold()) if t)


def _contains(haystack: Tuple[str, ...], needle: Tuple[str, ...]) -> bool:
    size = len(needle)
    return any(haystack[i:i + size] == needle for i in range(len(haystack) - size + 1))


def location_matches(city: Any, location: Any) -> bool:
    """
    Heuristic city match on free-text locations

    Case and punctuation are ignored; the city's words must appear in order
    inside the location (or the other way round for a short location).
    """
    city_tokens = _tokens(city)
    location_tokens = _tokens(location)
    if not city_tokens or not location_tokens:
        return False
    return _contains(location_tokens, city_tokens) or _contains(city_tokens, location_tokens)


def _clock(now: Union[datetime, time]) -> time:
    return now.time() if isinstance(now, datetime) else now


def should_notify_chat(raw_settings: Any, now: Union[datetime, time]) -> bool:
    """Whether a new chat message alerts its receiver"""
    settings = NotificationSetting.from_raw(raw_settings)
    if not settings.chat_messages:
        return False
    return not is_within_quiet_hours(settings.quiet_hours, _clock(now))


def build_payload(request: BloodRequest, reason: NotificationReason) -> Dict[str, str]:
    blood_type = request.blood_type.value
    if reason == NotificationReason.EMERGENCY:
        title = "Emergency blood request"
        body = f"{blood_type} needed urgently at {request.location}"
    elif reason == NotificationReason.BLOOD_TYPE:
        title = "Your blood type is needed"
        body = f"A {request.urgency.value.lower()} urgency request for {blood_type} at {request.location}"
    else:
        title = "Blood request nearby"
        body = f"{blood_type} needed at {request.location}"

    return {
        "title": title,
        "body": body,
        "request_id": str(request.id),
        "reason": reason.value,
    }


class NotificationMatcher:
    """Selects donors to alert for one blood request"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        # Quiet hours are compared against this wall clock
        self.clock = clock or datetime.now

    def decide(
        self,
        request: BloodRequest,
        profile: Profile,
        raw_settings: Any,
        at: time,
    ) -> Optional[NotificationTarget]:
        """Apply the precedence rules to one donor; None means no alert"""
        settings = NotificationSetting.from_raw(raw_settings)

        if request.is_emergency:
            reason = NotificationReason.EMERGENCY
        elif settings.matching_blood_type and can_donate(profile.blood_type, request.blood_type):
            reason = NotificationReason.BLOOD_TYPE
        elif settings.nearby_requests and location_matches(profile.city, request.location):
            reason = NotificationReason.NEARBY
        else:
            return None

        if reason != NotificationReason.EMERGENCY and is_within_quiet_hours(settings.quiet_hours, at):
            return None

        return NotificationTarget(
            user_id=profile.id,
            reason=reason,
            emergency_badge=reason == NotificationReason.EMERGENCY and settings.emergency_requests,
            payload=build_payload(request, reason),
        )

    def match(
        self,
        request: BloodRequest,
        candidates: Iterable[Tuple[Profile, Any]],
        now: Optional[Union[datetime, time]] = None,
    ) -> List[NotificationTarget]:
        """
        Donors to alert for a request, in candidate order

        Args:
            request: The new blood request
            candidates: (donor profile, raw notification preferences) pairs
            now: Evaluation time for quiet hours (defaults to the clock)

        Returns:
            One target per alerted donor, tagged with the triggering reason
        """
        if request.status != RequestStatus.ACTIVE:
            return []

        at = _clock(now if now is not None else self.clock())
        targets = []
        seen = set()

        for profile, raw_settings in candidates:
            if profile.role != Role.DONOR or profile.id == request.requester_id:
                continue
            if profile.id in seen:
                continue
            seen.add(profile.id)

            target = self.decide(request, profile, raw_settings, at)
            if target is not None:
                targets.append(target)

        logger.info(
            "Request matched",
            request_id=request.id,
            emergency=request.is_emergency,
            targets=len(targets),
        )
        return targets
