"""Value Layer - Messages, Requests, Responses and Stored Exchanges.

This module holds the immutable records that flow through a turn:

Architecture:
    - Identity (our layer): ExchangeId, SessionId
    - Outbound content: ChatMessage, ContextItem, ToolSpec, ChatRequest
    - Inbound content: ChatResponse with TokenUsage, ResponseCost, ResponseTiming
    - Persistence: StoredExchange (one request/response pair in a chain)

Every model is frozen. Updates go through model_copy(update=...) so a
request embedded in a stored exchange can never change under it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, RootModel
from pydantic.alias_generators import to_camel

from .domain_type import ContextPosition, FinishReason, MessageRole


class ExchangeId(RootModel[UUID]):
    """Unique Identifier for a Stored Exchange.

    Uses Pydantic's RootModel pattern to create a strongly-typed UUID wrapper.

    Usage:
        >>> exchange_id = ExchangeId()  # Auto-generates UUID
        >>> str(exchange_id)
        '550e8400-e29b-41d4-a716-446655440000'
    """

    root: UUID = Field(default_factory=uuid4)
    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return str(self.root)


class SessionId(RootModel[UUID]):
    """Unique Identifier for a Conversation Session.

    A session is created lazily on the first stored exchange and shared by
    every exchange chained after it.
    """

    root: UUID = Field(default_factory=uuid4)
    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return str(self.root)


class ToolCall(BaseModel):
    """A tool invocation requested by the model inside an assistant message."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ChatMessage(BaseModel):
    """One Role-Tagged Message of an Outbound Request.

    Attributes:
        role: system, user, assistant or tool
        content: Text content
        tool_calls: Calls requested by an assistant turn
        tool_call_id: For tool-role messages, the call being answered
        tool_name: For tool-role messages, the tool that produced the content
    """

    role: MessageRole
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role=MessageRole.ASSISTANT, content=content)


class ContextItem(BaseModel):
    """Ambient context contributed by a provider, placed by position."""

    content: str
    position: ContextPosition = ContextPosition.AFTER_PRIOR_MESSAGES

    model_config = ConfigDict(frozen=True)

    def to_message(self) -> ChatMessage:
        return ChatMessage.user(self.content)


class ToolSpec(BaseModel):
    """Model-facing description of a tool attached to a request."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    model_config = ConfigDict(frozen=True)


class GenerationParameters(BaseModel):
    """Sampling parameters forwarded to the model client.

    None means "provider default"; only explicitly set values are sent.
    """

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    max_tokens: int | None = None

    model_config = ConfigDict(frozen=True)


class ChatRequest(BaseModel):
    """Assembled Outbound Request for One Turn.

    Attributes:
        messages: Ordered messages, at most one leading system prompt
        tools: Sanitized tool name -> ToolSpec
        parameters: Sampling parameters
        max_steps: Upper bound on model/tool round trips
        parallel_tools: Whether tool calls of this request may run concurrently
    """

    messages: tuple[ChatMessage, ...]
    tools: dict[str, ToolSpec] = Field(default_factory=dict)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    max_steps: int = Field(default=15, ge=1)
    parallel_tools: bool = False

    model_config = ConfigDict(frozen=True)

    def with_messages(self, messages: tuple[ChatMessage, ...]) -> ChatRequest:
        return self.model_copy(update={"messages": messages})


class TokenUsage(BaseModel):
    """Token accounting reported by the model client."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def total(self) -> int:
        """Reported total, or input + output when the provider omits it."""
        if self.total_tokens:
            return self.total_tokens
        return self.input_tokens + self.output_tokens


class ResponseCost(BaseModel):
    """Dollar cost of a response, split by token class."""

    input: float | None = None
    cached_input: float | None = None
    output: float | None = None
    reasoning: float | None = None
    total: float = 0.0

    model_config = ConfigDict(frozen=True)


class ResponseTiming(BaseModel):
    """Wall-clock timing of a model call."""

    elapsed_ms: float
    tokens_per_sec: float | None = None
    total_tokens: int | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def measure(cls, elapsed_ms: float, usage: TokenUsage) -> ResponseTiming:
        tokens_per_sec: float | None = None
        if elapsed_ms > 0 and usage.output_tokens > 0:
            tokens_per_sec = usage.output_tokens / (elapsed_ms / 1000)
        total = usage.total
        return cls(elapsed_ms=elapsed_ms, tokens_per_sec=tokens_per_sec, total_tokens=total or None)


class ChatResponse(BaseModel):
    """Normalized Model Response.

    Attributes:
        messages: Assistant and tool messages produced during the run
        text: Final text output
        usage: Token counts
        model_id: Concrete model that answered
        timestamp: When the response was produced
        finish_reason: Why generation stopped
        cost: Dollar cost
        timing: Wall-clock timing, filled in by the orchestrator
        error: Set on error-flagged responses recorded for failed turns
    """

    messages: tuple[ChatMessage, ...] = ()
    text: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finish_reason: FinishReason = FinishReason.UNKNOWN
    cost: ResponseCost = Field(default_factory=ResponseCost)
    timing: ResponseTiming | None = None
    error: str | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def failed(cls, error: str) -> ChatResponse:
        return cls(error=error, finish_reason=FinishReason.ERROR)

    @property
    def is_error(self) -> bool:
        return self.error is not None


class StoredExchange(BaseModel):
    """One Stored Request/Response Pair in a Conversation Chain.

    Exchanges are immutable once stored; the chain is formed by
    previous_message_id pointing at the exchange this one continued.

    Persisted Shape:
        to_record() dumps with camelCase keys:
        {id, sessionId, request, response, createdAt, updatedAt, previousMessageId}
        Any durable backend must round-trip this shape.
    """

    id: ExchangeId = Field(default_factory=ExchangeId)
    session_id: SessionId
    request: ChatRequest
    response: ChatResponse | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    previous_message_id: ExchangeId | None = None

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> StoredExchange:
        return cls.model_validate(record)


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ContextItem",
    "ExchangeId",
    "GenerationParameters",
    "ResponseCost",
    "ResponseTiming",
    "SessionId",
    "StoredExchange",
    "TokenUsage",
    "ToolCall",
    "ToolSpec",
]
