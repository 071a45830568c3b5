"""
Service layer - business logic
"""
from .message_store import MessageStore
from .profile_store import ProfileStore
from .conversation_aggregator import ConversationList, filter_summaries, summarize
from .live_feed import FeedState, LiveMessageFeed
from .chat_session import ChatSession
from .notification_matcher import (
    NotificationMatcher,
    can_donate,
    is_within_quiet_hours,
    location_matches,
    should_notify_chat,
)
from .blood_request_service import BloodRequestService

__all__ = [
    "MessageStore",
    "ProfileStore",
    "ConversationList",
    "filter_summaries",
    "summarize",
    "FeedState",
    "LiveMessageFeed",
    "ChatSession",
    "NotificationMatcher",
    "can_donate",
    "is_within_quiet_hours",
    "location_matches",
    "should_notify_chat",
    "BloodRequestService",
]
