# src/chatrelay/api/contracts/conversation.py
"""Conversation API contracts - use domain types directly."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ...domain.domain_value import (
    ExchangeId,
    ResponseCost,
    ResponseTiming,
    SessionId,
    StoredExchange,
    TokenUsage,
)


class TurnRequest(BaseModel):
    """Request to run one conversation turn."""

    text: str = Field(
        min_length=1,
        max_length=10_000,
        description="User message to send",
        examples=["Summarize the last release notes in three bullets."],
    )
    model: str | None = Field(
        default=None,
        description=(
            "Requirement query: a registered name ('openai:gpt-5'), filters "
            "('auto:intelligence>=4,speed>2') or name with features ('openai:gpt-5?websearch=1'). "
            "Leave empty for the configured default."
        ),
        examples=["auto:intelligence>=4"],
    )
    include_prior_messages: bool = Field(default=True, description="Continue the current conversation")
    include_tools: bool = Field(default=True, description="Let the model call the active tools")
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)


class TurnResponse(BaseModel):
    """Result of a committed turn."""

    exchange_id: ExchangeId = Field(description="Stored exchange for this turn")
    session_id: SessionId = Field(description="Conversation session")
    text: str = Field(description="AI response text")
    model_id: str = Field(description="Model that answered")
    usage: TokenUsage
    cost: ResponseCost
    timing: ResponseTiming | None = None
    compacted: bool = Field(default=False, description="Whether the conversation was summarized afterwards")


class CurrentExchangeResponse(BaseModel):
    """The current exchange and how many undo steps remain."""

    exchange: StoredExchange | None = None
    undo_depth: int = Field(ge=0)
