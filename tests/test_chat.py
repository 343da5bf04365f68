"""Tests for the chat module."""

import asyncio
import pytest
import pytest_asyncio

from auth import AuthRequiredError, Identity
from backend import BackendUnavailableError
from chat import (
    ChatManager,
    ChatError,
    EmptyMessageError,
    ConversationNotFoundError,
    NotParticipantError,
    ListingUnavailableError
)
from conftest import SELLER_ID

@pytest_asyncio.fixture
async def chat(backend):
    return ChatManager(backend)

@pytest_asyncio.fixture
async def conversation(chat, buyer, listing):
    return await chat.create_conversation(buyer, listing['id'], SELLER_ID)

@pytest.mark.asyncio
async def test_create_conversation_sets_buyer_and_seller(chat, buyer, listing):
    """The caller becomes the buyer and the supplied owner the seller."""
    conversation = await chat.create_conversation(buyer, listing['id'], SELLER_ID)

    assert conversation.listing_id == listing['id']
    assert conversation.buyer_id == buyer.user_id
    assert conversation.seller_id == SELLER_ID
    assert conversation.created_at is not None

@pytest.mark.asyncio
async def test_create_conversation_twice_returns_same(chat, backend, buyer, listing):
    first = await chat.create_conversation(buyer, listing['id'], SELLER_ID)
    second = await chat.create_conversation(buyer, listing['id'], SELLER_ID)

    assert first.id == second.id
    assert len(backend.tables['conversations']) == 1

@pytest.mark.asyncio
async def test_concurrent_create_conversation_resolves_to_one(chat, backend, buyer, listing):
    """Racing creators both end up with the row that won the insert."""
    first, second = await asyncio.gather(
        chat.create_conversation(buyer, listing['id'], SELLER_ID),
        chat.create_conversation(buyer, listing['id'], SELLER_ID)
    )

    assert first.id == second.id
    assert len(backend.tables['conversations']) == 1

@pytest.mark.asyncio
async def test_different_buyers_get_different_conversations(chat, buyer, stranger, listing):
    first = await chat.create_conversation(buyer, listing['id'], SELLER_ID)
    second = await chat.create_conversation(stranger, listing['id'], SELLER_ID)

    assert first.id != second.id

@pytest.mark.asyncio
async def test_create_conversation_requires_identity(chat, listing):
    with pytest.raises(AuthRequiredError):
        await chat.create_conversation(None, listing['id'], SELLER_ID)

@pytest.mark.asyncio
async def test_owner_cannot_open_conversation_on_own_listing(chat, seller, listing):
    with pytest.raises(ChatError):
        await chat.create_conversation(seller, listing['id'], SELLER_ID)

@pytest.mark.asyncio
async def test_send_message_stores_trimmed_body(chat, buyer, conversation):
    message = await chat.send_message(buyer, conversation.id, "  Is it still available?  ")

    assert message.body == "Is it still available?"
    assert message.sender_id == buyer.user_id
    assert message.conversation_id == conversation.id
    assert message.read_at is None

@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["", "   ", "\n\t "])
async def test_send_message_rejects_empty_body(chat, backend, buyer, conversation, body):
    with pytest.raises(EmptyMessageError):
        await chat.send_message(buyer, conversation.id, body)

    assert backend.tables['messages'] == []

@pytest.mark.asyncio
async def test_send_message_rejects_non_participant(chat, backend, stranger, conversation):
    with pytest.raises(NotParticipantError):
        await chat.send_message(stranger, conversation.id, "hello")

    assert backend.tables['messages'] == []

@pytest.mark.asyncio
async def test_send_message_unknown_conversation(chat, buyer):
    with pytest.raises(ConversationNotFoundError):
        await chat.send_message(buyer, "does-not-exist", "hello")

@pytest.mark.asyncio
async def test_messages_are_ordered_oldest_first(chat, buyer, seller, conversation):
    await chat.send_message(buyer, conversation.id, "Hi")
    await chat.send_message(seller, conversation.id, "Hello!")
    await chat.send_message(buyer, conversation.id, "Can I visit tomorrow?")

    messages = await chat.get_messages(buyer, conversation.id)
    timestamps = [m.created_at for m in messages]

    assert [m.body for m in messages] == ["Hi", "Hello!", "Can I visit tomorrow?"]
    assert timestamps == sorted(timestamps)

@pytest.mark.asyncio
async def test_sent_message_becomes_last(chat, buyer, seller, conversation):
    await chat.send_message(buyer, conversation.id, "first")
    sent = await chat.send_message(seller, conversation.id, "latest")

    messages = await chat.get_messages(seller, conversation.id)

    assert messages[-1].id == sent.id

@pytest.mark.asyncio
async def test_get_messages_requires_participant(chat, stranger, conversation):
    with pytest.raises(NotParticipantError):
        await chat.get_messages(stranger, conversation.id)

@pytest.mark.asyncio
async def test_my_conversations_newest_first_with_titles(chat, backend, buyer, seller, listing):
    other = backend.add_listing(SELLER_ID, title='Bike', status='active')

    older = await chat.create_conversation(buyer, listing['id'], SELLER_ID)
    newer = await chat.create_conversation(buyer, other['id'], SELLER_ID)

    for identity in (buyer, seller):
        conversations = await chat.get_my_conversations(identity)
        assert [c.id for c in conversations] == [newer.id, older.id]
        assert [c.listing_title for c in conversations] == ['Bike', 'Apartment downtown']

@pytest.mark.asyncio
async def test_my_conversations_excludes_others(chat, stranger, conversation):
    assert await chat.get_my_conversations(stranger) == []

@pytest.mark.asyncio
async def test_unread_count_and_mark_read(chat, buyer, seller, conversation):
    await chat.send_message(buyer, conversation.id, "one")
    await chat.send_message(buyer, conversation.id, "two")
    await chat.send_message(seller, conversation.id, "reply")

    [summary] = await chat.get_my_conversations(seller)
    assert summary.unread_count == 2

    marked = await chat.mark_read(seller, conversation.id)
    assert marked == 2

    [summary] = await chat.get_my_conversations(seller)
    assert summary.unread_count == 0

    # The seller's own reply is still unread for the buyer
    [summary] = await chat.get_my_conversations(buyer)
    assert summary.unread_count == 1

@pytest.mark.asyncio
async def test_contact_seller_opens_conversation_and_sends(chat, backend, buyer, listing):
    message = await chat.contact_seller(buyer, listing['id'], "Interested!")
    again = await chat.contact_seller(buyer, listing['id'], "Still interested")

    assert message.conversation_id == again.conversation_id
    conversation = backend.tables['conversations'][0]
    assert conversation['seller_id'] == SELLER_ID
    assert len(backend.tables['messages']) == 2

@pytest.mark.asyncio
async def test_contact_seller_empty_body_creates_nothing(chat, backend, buyer, listing):
    with pytest.raises(EmptyMessageError):
        await chat.contact_seller(buyer, listing['id'], "  ")

    assert backend.tables['conversations'] == []

@pytest.mark.asyncio
async def test_contact_seller_unknown_listing(chat, buyer):
    with pytest.raises(ListingUnavailableError):
        await chat.contact_seller(buyer, "missing", "hello")

@pytest.mark.asyncio
async def test_backend_failure_propagates(chat, backend, buyer, conversation):
    backend.unavailable = True

    with pytest.raises(BackendUnavailableError):
        await chat.get_messages(buyer, conversation.id)

@pytest.mark.asyncio
async def test_conversation_on_deleted_listing(chat, buyer):
    with pytest.raises(ListingUnavailableError):
        await chat.create_conversation(buyer, '44444444-4444-4444-4444-444444444444', SELLER_ID)
