"""Request Assembly - Deterministic Message Construction for One Turn.

Builds the outbound ChatRequest from the system prompt, the prior exchange,
memories, context items and the current input. Order is fixed:

    1. validate input (before any provider is polled)
    2. system prompt           -> lead segment
    3. prior exchange          -> prior segment (continuation), or
       memories                -> system memories into lead, others into prior
    4. current input           -> current segment
    5. context items           -> lead / prior / tail by position (deduplicated)
    6. generation parameters
    7. tools, keyed by sanitized name

Final message order: lead + prior + current + tail.

Providers are injected at construction; nothing is discovered globally.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from .compaction import compact_messages
from .domain_type import ContextPosition, MessageRole
from .domain_value import ChatMessage, ChatRequest, ContextItem, GenerationParameters
from .errors import InputValidationError
from .history import ChatHistoryStore
from .session import SessionContext
from .tools import ToolDispatcher, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 15

TurnInput = str | ChatMessage | list[ChatMessage]
SystemPrompt = str | ChatMessage | Callable[[SessionContext], str | ChatMessage]


@runtime_checkable
class MemoryProvider(Protocol):
    """Contributes memory messages to the first turn of a conversation."""

    def get_memories(self, context: SessionContext) -> AsyncIterator[ChatMessage]: ...


@runtime_checkable
class ContextItemProvider(Protocol):
    """Contributes placed context items to every eligible turn."""

    def get_context_items(self, context: SessionContext) -> AsyncIterator[ContextItem]: ...


class TurnOptions(BaseModel):
    """Per-Turn Configuration.

    Attributes:
        input: User text, one message, or a list of messages used verbatim
        model: Requirement query for model selection
        system_prompt: Text, message, or callable of the session context
        include_prior_messages: Continue from the current exchange
        include_memories: Pull memories when not continuing
        include_context_items: Pull context items from providers
        include_tools: Attach the active tools
        max_steps: Model/tool round-trip budget
        parallel_tools: Run tool calls of this turn concurrently
    """

    input: TurnInput
    model: str = ""
    system_prompt: SystemPrompt | None = None
    include_prior_messages: bool = True
    include_memories: bool = True
    include_context_items: bool = True
    include_tools: bool = True
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    max_tokens: int | None = None
    parallel_tools: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def generation_parameters(self) -> GenerationParameters:
        return GenerationParameters(
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            stop_sequences=self.stop_sequences,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            max_tokens=self.max_tokens,
        )


class AssembledTurn(BaseModel):
    """The request plus the dispatcher that executes its tools."""

    request: ChatRequest
    dispatcher: ToolDispatcher

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


def normalize_input(value: TurnInput) -> list[ChatMessage]:
    """Turn input as messages.

    Raises:
        InputValidationError: If the input is empty or blank
    """
    if isinstance(value, str):
        messages = [ChatMessage.user(value)]
    elif isinstance(value, ChatMessage):
        messages = [value]
    else:
        messages = list(value)

    if not messages or all(not message.content.strip() and not message.tool_calls for message in messages):
        raise InputValidationError("Turn input must contain at least one non-empty message")
    return messages


def resolve_system_prompt(prompt: SystemPrompt | None, context: SessionContext) -> ChatMessage | None:
    if prompt is None:
        return None
    if callable(prompt) and not isinstance(prompt, ChatMessage):
        prompt = prompt(context)
    if isinstance(prompt, ChatMessage):
        return prompt
    return ChatMessage.system(prompt)


class RequestAssembler:
    """Builds ChatRequests Against One History Store.

    Args:
        history: Store whose current exchange is continued
        memory_providers: Polled for memories when not continuing
        context_providers: Polled for context items on every turn
        tool_registry: Source of active tools (None = no tools)
        max_context_messages: Trim by message count when set
    """

    def __init__(
        self,
        history: ChatHistoryStore,
        *,
        memory_providers: Sequence[MemoryProvider] = (),
        context_providers: Sequence[ContextItemProvider] = (),
        tool_registry: ToolRegistry | None = None,
        max_context_messages: int | None = None,
    ):
        self.history = history
        self.memory_providers = list(memory_providers)
        self.context_providers = list(context_providers)
        self.tool_registry = tool_registry
        self.max_context_messages = max_context_messages

    async def build(self, options: TurnOptions, context: SessionContext) -> AssembledTurn:
        """Assemble the request for one turn.

        Raises:
            InputValidationError: If the input is empty
        """
        current = normalize_input(options.input)

        lead: list[ChatMessage] = []
        prior: list[ChatMessage] = []
        tail: list[ChatMessage] = []

        system_message = resolve_system_prompt(options.system_prompt, context)
        if system_message is not None:
            lead.append(system_message)

        previous = self.history.get_current()
        if options.include_prior_messages and previous is not None:
            prior_request = list(previous.request.messages)
            # The fresh system prompt supersedes the stored one
            if prior_request and prior_request[0].role == MessageRole.SYSTEM:
                prior_request = prior_request[1:]
            prior.extend(prior_request)
            if previous.response is not None:
                prior.extend(previous.response.messages)
        elif options.include_memories:
            for provider in self.memory_providers:
                async for memory in provider.get_memories(context):
                    if memory.role == MessageRole.SYSTEM:
                        lead.append(memory)
                    else:
                        prior.append(memory)

        if options.include_context_items:
            await self._place_context_items(context, lead, prior, current, tail)

        messages = [*lead, *prior, *current, *tail]
        if self.max_context_messages is not None:
            messages = list(compact_messages(messages, self.max_context_messages))

        if options.include_tools and self.tool_registry is not None:
            dispatcher = self.tool_registry.dispatcher(parallel=options.parallel_tools)
        else:
            dispatcher = ToolDispatcher((), parallel=options.parallel_tools)

        request = ChatRequest(
            messages=tuple(messages),
            tools=dispatcher.specs,
            parameters=options.generation_parameters(),
            max_steps=options.max_steps,
            parallel_tools=options.parallel_tools,
        )
        logger.debug("Assembled request with %d messages and %d tools", len(messages), len(request.tools))
        return AssembledTurn(request=request, dispatcher=dispatcher)

    async def _place_context_items(
        self,
        context: SessionContext,
        lead: list[ChatMessage],
        prior: list[ChatMessage],
        current: list[ChatMessage],
        tail: list[ChatMessage],
    ) -> None:
        seen = {
            message.content
            for message in (*lead, *prior, *current)
            if message.role == MessageRole.USER
        }
        for provider in self.context_providers:
            async for item in provider.get_context_items(context):
                message = item.to_message()
                if item.position == ContextPosition.AFTER_CURRENT_MESSAGE:
                    tail.append(message)
                    continue
                if message.content in seen:
                    logger.debug("Skipping context item already present in the conversation")
                    continue
                seen.add(message.content)
                if item.position == ContextPosition.AFTER_SYSTEM_MESSAGE:
                    lead.append(message)
                else:
                    prior.append(message)


__all__ = [
    "AssembledTurn",
    "ContextItemProvider",
    "DEFAULT_MAX_STEPS",
    "MemoryProvider",
    "RequestAssembler",
    "TurnOptions",
    "normalize_input",
    "resolve_system_prompt",
]
