"""
Tests for conversation history and undo.

These tests demonstrate:
- Testing the undo stack as pure state transitions
- Testing chain linkage (session continuation, previous_message_id)
- Testing the persisted record shape that durable backends must honor
"""

import pytest

from chatrelay.domain.domain_value import ChatMessage, ChatRequest, ChatResponse, ExchangeId
from chatrelay.domain.errors import ExchangeNotFoundError, StorageError
from chatrelay.domain.history import EphemeralChatHistoryStore, HistoryStack


def request(text: str) -> ChatRequest:
    return ChatRequest(messages=(ChatMessage.user(text),))


def response(text: str) -> ChatResponse:
    return ChatResponse(messages=(ChatMessage.assistant(text),), text=text)


@pytest.mark.asyncio
async def test_undo_restores_previous_exchange(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Testing the core undo contract.

    set A, set B, undo -> A is current and nothing is left to undo.
    """
    a = await history.store(None, request("a"), response("A"))
    b = await history.store(a, request("b"), response("B"))
    history.set_current(a)
    history.set_current(b)

    assert history.undo() == a
    assert history.get_current() == a
    assert history.stack.depth == 0


def test_clearing_current_does_not_push():
    """
    Demonstrates: Testing a transition edge case on the pure stack.

    Setting current to None must not push the old current, so a later undo
    cannot resurrect an exchange the user cleared.
    """
    stack = HistoryStack()
    assert stack.with_current(None).depth == 0


@pytest.mark.asyncio
async def test_set_current_to_none_keeps_undo_stack(history: EphemeralChatHistoryStore):
    a = await history.store(None, request("a"), response("A"))
    b = await history.store(a, request("b"), response("B"))
    history.set_current(a)
    history.set_current(b)

    history.set_current(None)

    assert history.get_current() is None
    assert history.stack.depth == 1
    assert history.undo() == a


def test_undo_on_empty_stack_clears_current():
    stack = HistoryStack().popped()

    assert stack.current is None
    assert stack.depth == 0


@pytest.mark.asyncio
async def test_restore_replaces_current_without_pushing(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Testing the rollback helper used by failed turns.
    """
    a = await history.store(None, request("a"), response("A"))
    b = await history.store(None, request("b"), response("B"))
    history.set_current(a)

    history.restore(b)

    assert history.get_current() == b
    assert history.stack.depth == 0


@pytest.mark.asyncio
async def test_store_does_not_move_current(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Testing store/commit separation.

    Persisting an exchange is not committing it; only set_current commits.
    """
    exchange = await history.store(None, request("a"), response("A"))

    assert history.get_current() is None
    assert len(history) == 1
    assert await history.retrieve(exchange.id) == exchange


@pytest.mark.asyncio
async def test_store_continues_session_and_links_previous(history: EphemeralChatHistoryStore):
    first = await history.store(None, request("a"), response("A"))
    second = await history.store(first, request("b"), response("B"))

    assert first.previous_message_id is None
    assert second.previous_message_id == first.id
    assert second.session_id == first.session_id


@pytest.mark.asyncio
async def test_sibling_exchanges_share_previous_message_id(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Testing branching history.

    Two exchanges stored after the same previous exchange both point at it
    (e.g. a failed turn recorded next to its successful retry).
    """
    root = await history.store(None, request("a"), response("A"))

    left = await history.store(root, request("b"), response("B"))
    right = await history.store(root, request("b"), ChatResponse.failed("boom"))

    assert left.previous_message_id == right.previous_message_id == root.id
    assert left.id != right.id


@pytest.mark.asyncio
async def test_new_conversation_starts_new_session(history: EphemeralChatHistoryStore):
    first = await history.store(None, request("a"), response("A"))
    second = await history.store(None, request("b"), response("B"))

    assert first.session_id != second.session_id


@pytest.mark.asyncio
async def test_retrieve_unknown_id_raises(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Testing the error taxonomy at the storage seam.

    The error is both a StorageError and a KeyError.
    """
    with pytest.raises(ExchangeNotFoundError) as exc_info:
        await history.retrieve(ExchangeId())

    assert isinstance(exc_info.value, StorageError)
    assert isinstance(exc_info.value, KeyError)
    assert "not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_chain_walks_back_to_the_first_exchange(history: EphemeralChatHistoryStore):
    a = await history.store(None, request("a"), response("A"))
    b = await history.store(a, request("b"), response("B"))
    c = await history.store(b, request("c"), response("C"))
    history.set_current(c)

    assert await history.chain() == [a, b, c]
    assert await history.chain(b) == [a, b]


@pytest.mark.asyncio
async def test_chain_of_empty_history_is_empty(history: EphemeralChatHistoryStore):
    assert await history.chain() == []


@pytest.mark.asyncio
async def test_record_uses_camel_case_keys(history: EphemeralChatHistoryStore):
    """
    Demonstrates: Pinning the persisted shape.

    Durable backends store to_record() output, so the key set is a contract.
    """
    first = await history.store(None, request("a"), response("A"))
    second = await history.store(first, request("b"), response("B"))

    record = second.to_record()

    assert set(record) == {
        "id",
        "sessionId",
        "request",
        "response",
        "createdAt",
        "updatedAt",
        "previousMessageId",
    }
    assert record["previousMessageId"] == str(first.id)
    assert type(second).from_record(record) == second
