from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class Conversation(BaseModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    created_at: Optional[datetime] = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def other_party(self, user_id: str) -> str:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


class ConversationSummary(Conversation):
    """Conversation joined with its listing title for the inbox."""
    listing_title: Optional[str] = None
    unread_count: int = 0


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    body: str
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None


class MessageCreate(BaseModel):
    body: str


class ConversationCreate(BaseModel):
    listing_id: str
    body: Optional[str] = None
