"""
Shared test fixtures and configuration.

Strategy:
- No network and no API keys: model calls go through ScriptedChatClient,
  a ChatClient whose replies are scripted per test
- Registries, stores and orchestrators are built fresh for every test
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from chatrelay.domain.conversation import TurnOrchestrator
from chatrelay.domain.domain_type import FinishReason
from chatrelay.domain.domain_value import ChatMessage, ChatRequest, ChatResponse, TokenUsage
from chatrelay.domain.history import EphemeralChatHistoryStore
from chatrelay.domain.model_catalog import ModelEntry
from chatrelay.domain.model_registry import ModelRegistry
from chatrelay.domain.request_builder import RequestAssembler
from chatrelay.domain.session import SessionContext
from chatrelay.domain.tools import ToolDispatcher, ToolRegistry

Reply = str | Exception | Callable[[ChatRequest, SessionContext, ToolDispatcher | None], Awaitable[str]]


class ChatScript:
    """Scripted replies shared by every client a registry creates.

    Replies are consumed in order; once exhausted, default_reply is used.
    An Exception reply is raised instead of answering.
    """

    def __init__(self, *replies: Reply, usage: TokenUsage | None = None):
        self.replies: list[Reply] = list(replies)
        self.default_reply = "ok"
        self.usage = usage or TokenUsage(input_tokens=100, output_tokens=20)
        self.requests: list[ChatRequest] = []
        self.dispatchers: list[ToolDispatcher | None] = []
        self.clients: list[ScriptedChatClient] = []

    def factory(self, entry: ModelEntry, features: dict[str, Any]) -> ScriptedChatClient:
        client = ScriptedChatClient(entry, features, self)
        self.clients.append(client)
        return client

    def next_reply(self) -> Reply:
        return self.replies.pop(0) if self.replies else self.default_reply


class ScriptedChatClient:
    """ChatClient answering from a ChatScript."""

    def __init__(self, entry: ModelEntry, features: dict[str, Any], script: ChatScript):
        self.entry = entry
        self.features = features
        self.script = script

    @property
    def model_id(self) -> str:
        return self.entry.model_id

    async def stream_chat(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[str, ChatResponse]:
        self.script.requests.append(request)
        self.script.dispatchers.append(tools)
        reply = self.script.next_reply()
        if isinstance(reply, Exception):
            raise reply
        text = reply if isinstance(reply, str) else await reply(request, context, tools)
        context.emit_output(text)
        usage = self.script.usage
        return text, ChatResponse(
            messages=(ChatMessage.assistant(text),),
            text=text,
            usage=usage,
            model_id=self.entry.model_id,
            finish_reason=FinishReason.STOP,
            cost=self.entry.calculate_cost(usage),
        )

    text_chat = stream_chat


def make_entry(model_id: str = "m1", provider: str = "test", **fields: Any) -> ModelEntry:
    """ModelEntry with only the given scores set."""
    return ModelEntry(model_id=model_id, provider=provider, **fields)


@pytest.fixture
def context() -> SessionContext:
    """Non-interactive session context."""
    return SessionContext("test")


@pytest.fixture
def script() -> ChatScript:
    return ChatScript()


@pytest.fixture
def registry(script: ChatScript) -> ModelRegistry:
    """Registry with one priced chat model named "test:m1" (8k context)."""
    registry = ModelRegistry(chat_client_factory=script.factory)
    registry.chat.register(
        "test:m1",
        make_entry(
            "m1",
            context_length=8000,
            intelligence=4,
            cost_per_million_input_tokens=1.0,
            cost_per_million_output_tokens=2.0,
        ),
    )
    return registry


@pytest.fixture
def history() -> EphemeralChatHistoryStore:
    return EphemeralChatHistoryStore()


@pytest.fixture
def tool_registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def assembler(history: EphemeralChatHistoryStore, tool_registry: ToolRegistry) -> RequestAssembler:
    return RequestAssembler(history, tool_registry=tool_registry)


@pytest.fixture
def orchestrator(
    registry: ModelRegistry,
    history: EphemeralChatHistoryStore,
    assembler: RequestAssembler,
) -> TurnOrchestrator:
    return TurnOrchestrator(registry, history, assembler, default_model="test:m1")


@pytest.fixture
def entry_factory() -> Callable[..., ModelEntry]:
    """make_entry as a fixture, for tests that build their own registries."""
    return make_entry
