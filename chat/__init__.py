"""Conversations and messages between buyers and sellers.

A conversation is keyed by (listing, buyer); there is at most one per pair
and the backend enforces that with a unique index. Messages are append-only
and read back oldest first. Every call takes the acting ``Identity``
explicitly.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from auth import Identity, require_identity
from backend import (
    Backend, DuplicateRecordError, InvalidArgumentError, PermissionDeniedError, ReferenceNotFoundError
)
from .models import (
    Conversation, ConversationSummary, Message, MessageCreate, ConversationCreate
)

logger = logging.getLogger(__name__)

class ChatError(Exception):
    """Base exception for chat operations."""
    pass

class EmptyMessageError(ChatError):
    """Raised when a message body is empty or only whitespace."""
    pass

class ConversationNotFoundError(ChatError):
    """Raised when a conversation does not exist."""
    pass

class NotParticipantError(ChatError):
    """Raised when the caller is neither buyer nor seller of a conversation."""
    pass

class ListingUnavailableError(ChatError):
    """Raised when contacting the owner of a listing that does not exist."""
    pass

def clean_body(body: Optional[str]) -> str:
    """Trim a message body, rejecting empty ones."""
    text = (body or "").strip()
    if not text:
        raise EmptyMessageError("Message cannot be empty")
    return text

class ChatManager:
    """Manager class for conversations and messages."""

    def __init__(self, backend: Optional[Backend] = None):
        self.backend = backend or Backend()

    async def _find_conversation(self, listing_id: str, buyer_id: str) -> Optional[Dict]:
        return await self.backend.select_one(
            'conversations',
            filters={'listing_id': listing_id, 'buyer_id': buyer_id}
        )

    async def create_conversation(
        self,
        identity: Identity,
        listing_id: str,
        seller_id: str
    ) -> Conversation:
        """Get the caller's conversation about a listing, creating it if needed.

        Args:
            identity: The buyer starting the conversation
            listing_id: The listing being discussed
            seller_id: The listing owner

        Returns:
            The existing or newly created conversation

        Raises:
            AuthRequiredError: If there is no signed-in user
            ChatError: If the caller is the seller
            ListingUnavailableError: If the listing no longer exists
        """
        identity = require_identity(identity)
        if identity.user_id == seller_id:
            raise ChatError("You cannot start a conversation about your own listing")

        existing = await self._find_conversation(listing_id, identity.user_id)
        if existing:
            return Conversation.model_validate(existing)

        try:
            row = await self.backend.insert('conversations', {
                'listing_id': listing_id,
                'buyer_id': identity.user_id,
                'seller_id': seller_id
            })
        except DuplicateRecordError:
            # Another request created it between our read and insert
            row = await self._find_conversation(listing_id, identity.user_id)
            if not row:
                raise
            logger.debug(f"Conversation for {listing_id}/{identity.user_id} created concurrently")
            return Conversation.model_validate(row)
        except ReferenceNotFoundError:
            raise ListingUnavailableError(f"Listing {listing_id} not found")

        logger.info(f"Conversation {row['id']} started on listing {listing_id}")
        return Conversation.model_validate(row)

    async def get_conversation(self, identity: Identity, conversation_id: str) -> Conversation:
        """Get a conversation the caller takes part in.

        Raises:
            ConversationNotFoundError: If it does not exist
            NotParticipantError: If the caller is not buyer or seller
        """
        identity = require_identity(identity)
        try:
            row = await self.backend.select_one('conversations', filters={'id': conversation_id})
        except InvalidArgumentError:
            row = None
        if not row:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        conversation = Conversation.model_validate(row)
        if not conversation.is_participant(identity.user_id):
            raise NotParticipantError("You are not part of this conversation")
        return conversation

    async def send_message(self, identity: Identity, conversation_id: str, body: str) -> Message:
        """Append a message to a conversation as the caller.

        Args:
            identity: The sender, who must be buyer or seller
            conversation_id: Target conversation
            body: Message text, stored trimmed

        Returns:
            The stored message

        Raises:
            EmptyMessageError: If the body is empty or whitespace
            ConversationNotFoundError: If the conversation does not exist
            NotParticipantError: If the caller is not a participant
        """
        text = clean_body(body)
        await self.get_conversation(identity, conversation_id)

        try:
            row = await self.backend.insert('messages', {
                'conversation_id': conversation_id,
                'sender_id': identity.user_id,
                'body': text
            })
        except PermissionDeniedError as e:
            raise NotParticipantError(f"Message rejected: {e}") from e
        except ReferenceNotFoundError as e:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found") from e

        return Message.model_validate(row)

    async def get_messages(self, identity: Identity, conversation_id: str) -> List[Message]:
        """Get all messages of a conversation, oldest first."""
        await self.get_conversation(identity, conversation_id)
        rows = await self.backend.select(
            'messages',
            filters={'conversation_id': conversation_id},
            order_by='created_at'
        )
        return [Message.model_validate(row) for row in rows]

    async def get_my_conversations(self, identity: Identity) -> List[ConversationSummary]:
        """Get the caller's conversations as buyer or seller, newest first.

        Each conversation carries its listing title and the number of
        messages from the other party the caller has not read yet.
        """
        identity = require_identity(identity)
        rows = await self.backend.select(
            'conversations',
            either={'buyer_id': identity.user_id, 'seller_id': identity.user_id},
            order_by='created_at',
            descending=True
        )
        if not rows:
            return []

        conversation_ids = [row['id'] for row in rows]
        listing_ids = sorted({row['listing_id'] for row in rows})

        titles = {
            listing['id']: listing['title']
            for listing in await self.backend.select(
                'listings', columns=('id', 'title'), filters={'id': listing_ids}
            )
        }

        unread: Dict[str, int] = {}
        for message in await self.backend.select(
            'messages',
            columns=('conversation_id', 'sender_id'),
            filters={'conversation_id': conversation_ids, 'read_at': None}
        ):
            if message['sender_id'] != identity.user_id:
                unread[message['conversation_id']] = unread.get(message['conversation_id'], 0) + 1

        return [
            ConversationSummary(
                **row,
                listing_title=titles.get(row['listing_id']),
                unread_count=unread.get(row['id'], 0)
            )
            for row in rows
        ]

    async def mark_read(self, identity: Identity, conversation_id: str) -> int:
        """Mark the other party's unread messages as read.

        Returns:
            Number of messages marked
        """
        conversation = await self.get_conversation(identity, conversation_id)
        rows = await self.backend.update(
            'messages',
            {'read_at': datetime.now(timezone.utc)},
            filters={
                'conversation_id': conversation_id,
                'sender_id': conversation.other_party(identity.user_id),
                'read_at': None
            }
        )
        return len(rows)

    async def start_conversation(self, identity: Identity, listing_id: str) -> Conversation:
        """Create-or-get the conversation about a listing with its owner as seller.

        Raises:
            ListingUnavailableError: If the listing does not exist
        """
        try:
            listing = await self.backend.select_one(
                'listings', columns=('id', 'owner_id'), filters={'id': listing_id}
            )
        except InvalidArgumentError:
            listing = None
        if not listing:
            raise ListingUnavailableError(f"Listing {listing_id} not found")
        return await self.create_conversation(identity, listing_id, listing['owner_id'])

    async def contact_seller(self, identity: Identity, listing_id: str, body: str) -> Message:
        """Start or continue a conversation with a listing's owner and send a message.

        Raises:
            EmptyMessageError: If the body is empty, before anything is created
            ListingUnavailableError: If the listing does not exist
            ChatError: If the listing belongs to the caller
        """
        identity = require_identity(identity)
        text = clean_body(body)

        conversation = await self.start_conversation(identity, listing_id)
        return await self.send_message(identity, conversation.id, text)

__all__ = [
    'ChatManager',
    'ChatError',
    'EmptyMessageError',
    'ConversationNotFoundError',
    'NotParticipantError',
    'ListingUnavailableError',
    'Conversation',
    'ConversationSummary',
    'Message',
    'MessageCreate',
    'ConversationCreate',
    'clean_body'
]
