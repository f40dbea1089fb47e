"""Message Compaction and Resequencing.

Pure functions over message lists. Summary compaction (which needs a model)
lives on the TurnOrchestrator.
"""

from __future__ import annotations

from collections.abc import Sequence

from .domain_type import MessageRole
from .domain_value import ChatMessage

DEFAULT_MAX_CONTEXT_MESSAGES = 20

USER_PLACEHOLDER = "Continue."
ASSISTANT_PLACEHOLDER = "I'll continue."
OPENING_PLACEHOLDER = "Hello"


def compact_messages(
    messages: Sequence[ChatMessage],
    max_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES,
) -> tuple[ChatMessage, ...]:
    """Trim a message list to max_messages by message count.

    System messages are always kept and moved ahead of the rest; the most
    recent non-system messages fill the remaining slots. When system messages
    alone reach the limit, only they are returned.
    """
    if len(messages) <= max_messages:
        return tuple(messages)

    system = [message for message in messages if message.role == MessageRole.SYSTEM]
    others = [message for message in messages if message.role != MessageRole.SYSTEM]

    keep = max_messages - len(system)
    if keep <= 0:
        return tuple(system)
    return (*system, *others[-keep:])


def resequence_messages(messages: Sequence[ChatMessage]) -> tuple[ChatMessage, ...]:
    """Rewrite messages into strict user/assistant alternation.

    Some providers reject consecutive same-role turns or a conversation that
    does not open with the user. Steps:
        1. Merge consecutive same-role text messages (joined by a blank line)
        2. Move system messages to the front
        3. Open with a user "Hello" if the first turn is the assistant's
        4. Insert "Continue." / "I'll continue." where a turn is missing
        5. End with a user "Continue." if the last turn is not the user's

    Tool messages and assistant messages carrying tool calls are passed
    through untouched and do not take part in the alternation.
    """
    if not messages:
        return ()

    merged: list[ChatMessage] = []
    for message in messages:
        last = merged[-1] if merged else None
        if last is not None and _mergeable(last) and _mergeable(message) and last.role == message.role:
            merged[-1] = last.model_copy(update={"content": f"{last.content}\n\n{message.content}"})
        else:
            merged.append(message)

    system = [message for message in merged if message.role == MessageRole.SYSTEM]
    others = [message for message in merged if message.role != MessageRole.SYSTEM]
    if not others:
        return tuple(merged)

    sequenced: list[ChatMessage] = list(system)
    expected = MessageRole.USER
    first_turn = next((message for message in others if _mergeable(message)), None)
    if first_turn is not None and first_turn.role != MessageRole.USER:
        sequenced.append(ChatMessage.user(OPENING_PLACEHOLDER))
        expected = MessageRole.ASSISTANT

    for message in others:
        if not _mergeable(message):
            sequenced.append(message)
            # tool results are answered by the assistant
            expected = MessageRole.ASSISTANT if message.role == MessageRole.TOOL else MessageRole.USER
            continue
        if message.role != expected:
            sequenced.append(_placeholder(expected))
        sequenced.append(message)
        expected = MessageRole.ASSISTANT if message.role == MessageRole.USER else MessageRole.USER

    if sequenced[-1].role != MessageRole.USER:
        sequenced.append(ChatMessage.user(USER_PLACEHOLDER))
    return tuple(sequenced)


def _mergeable(message: ChatMessage) -> bool:
    return message.role != MessageRole.TOOL and not message.tool_calls


def _placeholder(role: MessageRole) -> ChatMessage:
    if role == MessageRole.USER:
        return ChatMessage.user(USER_PLACEHOLDER)
    return ChatMessage.assistant(ASSISTANT_PLACEHOLDER)


__all__ = [
    "DEFAULT_MAX_CONTEXT_MESSAGES",
    "compact_messages",
    "resequence_messages",
]
