"""
Conversation list schemas
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ConversationSummary(BaseModel):
    """One row of the conversation list, derived from the message log"""
    model_config = ConfigDict(frozen=True)

    counterparty_id: str
    counterparty_name: str
    last_message: str
    last_message_at: datetime
    last_message_is_mine: bool
    # No read receipts exist yet, so this stays at zero
    unread_count: int = 0
