"""
Conversation aggregator - folds the message log into one summary per counterparty
"""
from typing import Dict, Iterable, List, Mapping, Optional

from bloodlink.core.config import get_settings
from bloodlink.core.logger import get_logger
from bloodlink.schemas import ConversationSummary, Message

logger = get_logger(__name__)


def summarize(
    current_user: str,
    messages: Iterable[Message],
    display_names: Optional[Mapping[str, str]] = None,
    unknown_name: Optional[str] = None,
) -> Dict[str, ConversationSummary]:
    """
    Reduce messages to counterparty -> summary of the latest message

    Feed messages newest first (as MessageStore.involving returns them):
    the first message seen for a counterparty is kept unless a later one in
    the input is strictly newer, so equal timestamps keep the earlier input.

    Args:
        current_user: User whose conversation list this is
        messages: Messages involving current_user, newest first
        display_names: Counterparty id -> name
        unknown_name: Name used when a counterparty has no profile

    Returns:
        One summary per distinct counterparty
    """
    names = display_names or {}
    fallback = unknown_name or get_settings().unknown_user_name

    latest: Dict[str, Message] = {}
    for msg in messages:
        if not msg.involves(current_user):
            continue

        counterparty = msg.counterparty(current_user)
        if counterparty == current_user:
            continue

        kept = latest.get(counterparty)
        if kept is None or msg.created_at > kept.created_at:
            latest[counterparty] = msg

    return {
        counterparty: ConversationSummary(
            counterparty_id=counterparty,
            counterparty_name=names.get(counterparty) or fallback,
            last_message=msg.body,
            last_message_at=msg.created_at,
            last_message_is_mine=msg.sender_id == current_user,
        )
        for counterparty, msg in latest.items()
    }


def filter_summaries(
    summaries: Mapping[str, ConversationSummary], query: str
) -> Dict[str, ConversationSummary]:
    """Case-insensitive substring match on display name; input is left untouched"""
    needle = (query or "").casefold()
    if not needle:
        return dict(summaries)

    return {
        counterparty: summary
        for counterparty, summary in summaries.items()
        if needle in summary.counterparty_name.casefold()
    }


def most_recent_first(summaries: Mapping[str, ConversationSummary]) -> List[ConversationSummary]:
    return sorted(summaries.values(), key=lambda s: s.last_message_at, reverse=True)


class ConversationList:
    """Loads the conversation list for the signed-in user"""

    def __init__(self, message_store, profile_store):
        self.message_store = message_store
        self.profile_store = profile_store

    async def load(self, current_user: str, query: str = "") -> List[ConversationSummary]:
        messages = await self.message_store.involving(current_user)
        counterparties = {m.counterparty(current_user) for m in messages}
        names = await self.profile_store.display_names(counterparties)

        summaries = filter_summaries(summarize(current_user, messages, names), query)

        logger.debug(
            "Conversation list loaded",
            user_id=current_user,
            conversations=len(summaries),
        )
        return most_recent_first(summaries)
