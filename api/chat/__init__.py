"""
Chat endpoints for conversations between buyers and listing owners.
"""

from typing import List

from fastapi import APIRouter, Depends, Security, status

from auth import Identity, get_current_user
from backend import BackendError
from chat import (
    ChatManager, ChatError, ConversationNotFoundError, NotParticipantError,
    ListingUnavailableError, Conversation, ConversationSummary, ConversationCreate,
    Message, MessageCreate
)
from ..dependencies import get_chat_manager
from ..errors import bad_request, forbidden, not_found, service_unavailable

# Create router
router = APIRouter(
    prefix="/chat",
    tags=["Chat"]
)

@router.get("/conversations", response_model=List[ConversationSummary])
async def get_conversations(
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Get the authenticated user's conversations, newest first."""
    try:
        return await chat.get_my_conversations(identity)
    except BackendError as e:
        raise service_unavailable("get_conversations", e)

@router.post("/conversations", response_model=Conversation)
async def create_conversation(
    request: ConversationCreate,
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Open (or reopen) the conversation about a listing with its owner.

    The seller is always the listing's owner. An optional first message is
    sent right away.
    """
    try:
        if request.body is not None:
            message = await chat.contact_seller(identity, request.listing_id, request.body)
            return await chat.get_conversation(identity, message.conversation_id)
        return await chat.start_conversation(identity, request.listing_id)
    except ListingUnavailableError as e:
        raise not_found(e)
    except ChatError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("create_conversation", e)

@router.get("/conversations/{conversation_id}/messages", response_model=List[Message])
async def get_messages(
    conversation_id: str,
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Get a conversation's messages, oldest first."""
    try:
        return await chat.get_messages(identity, conversation_id)
    except ConversationNotFoundError as e:
        raise not_found(e)
    except NotParticipantError as e:
        raise forbidden(e)
    except BackendError as e:
        raise service_unavailable("get_messages", e)

@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED
)
async def send_message(
    conversation_id: str,
    request: MessageCreate,
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Send a message in a conversation."""
    try:
        return await chat.send_message(identity, conversation_id, request.body)
    except ConversationNotFoundError as e:
        raise not_found(e)
    except NotParticipantError as e:
        raise forbidden(e)
    except ChatError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("send_message", e)

@router.post("/conversations/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Mark the other party's messages in a conversation as read."""
    try:
        return {"marked": await chat.mark_read(identity, conversation_id)}
    except ConversationNotFoundError as e:
        raise not_found(e)
    except NotParticipantError as e:
        raise forbidden(e)
    except BackendError as e:
        raise service_unavailable("mark_read", e)

# Export the router
__all__ = ['router']
