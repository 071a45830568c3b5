"""
Message Pydantic schemas
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Message(BaseModel):
    """Stored message; immutable once the datastore has assigned id and timestamp"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    sender_id: str
    receiver_id: str
    body: str
    created_at: datetime

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def is_between(self, user_a: str, user_b: str) -> bool:
        """True if the message belongs to the unordered pair {user_a, user_b}"""
        return (
            (self.sender_id == user_a and self.receiver_id == user_b)
            or (self.sender_id == user_b and self.receiver_id == user_a)
        )

    def counterparty(self, user_id: str) -> str:
        """The participant that is not user_id"""
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    @property
    def sort_key(self):
        return (self.created_at, self.id)
