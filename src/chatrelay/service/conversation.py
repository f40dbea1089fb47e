"""Thin orchestration service - wires the domain together and delegates to it."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..config import Settings
from ..domain.conversation import TurnOrchestrator, TurnResult
from ..domain.domain_type import ModelCategory
from ..domain.domain_value import ExchangeId, StoredExchange
from ..domain.history import ChatHistoryStore, EphemeralChatHistoryStore
from ..domain.model_catalog import ModelCatalog, ModelStatusReport
from ..domain.model_registry import ClientFactory, ModelRegistry
from ..domain.request_builder import ContextItemProvider, MemoryProvider, RequestAssembler, TurnOptions
from ..domain.session import SessionContext
from ..domain.tools import ToolRegistry


class ChatService:
    """
    Pure infrastructure orchestrator - zero business logic.

    Service responsibilities:
    1. Own the model registry, history store and tool registry
    2. Apply configured turn defaults (system prompt, step budget, tool policy)
    3. Delegate turns and compaction to TurnOrchestrator

    One service holds one conversation. Turns, compaction and undo are
    serialized by a lock, since HTTP requests may arrive concurrently.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        history: ChatHistoryStore | None = None,
        tools: ToolRegistry | None = None,
        memory_providers: Sequence[MemoryProvider] = (),
        context_providers: Sequence[ContextItemProvider] = (),
        default_model: str = "",
        system_prompt: str | None = None,
        max_steps: int = 15,
        parallel_tools: bool = False,
        max_context_messages: int | None = None,
        auto_compact: bool = False,
        compaction_threshold: float = 0.9,
    ):
        self.registry = registry
        self.history = history if history is not None else EphemeralChatHistoryStore()
        self.tools = tools if tools is not None else ToolRegistry()
        self.system_prompt = system_prompt
        self.max_steps = max_steps
        self.parallel_tools = parallel_tools
        self.assembler = RequestAssembler(
            self.history,
            memory_providers=memory_providers,
            context_providers=context_providers,
            tool_registry=self.tools,
            max_context_messages=max_context_messages,
        )
        self.orchestrator = TurnOrchestrator(
            registry,
            self.history,
            self.assembler,
            default_model=default_model,
            auto_compact=auto_compact,
            compaction_threshold=compaction_threshold,
        )
        self._lock = asyncio.Lock()

    async def send(
        self,
        text: str,
        context: SessionContext,
        *,
        model: str | None = None,
        **overrides: Any,
    ) -> TurnResult:
        """
        Run one turn with configured defaults.

        Args:
            text: User message text
            context: Session context (abort signal, output sink, confirm prompt)
            model: Requirement query; None uses the configured default
            overrides: Any other TurnOptions field

        Returns:
            Committed turn result
        """
        options: dict[str, Any] = {
            "system_prompt": self.system_prompt,
            "max_steps": self.max_steps,
            "parallel_tools": self.parallel_tools,
        }
        options.update(overrides)
        async with self._lock:
            return await self.orchestrator.run_turn(TurnOptions(input=text, model=model or "", **options), context)

    async def compact(self, context: SessionContext, model: str | None = None) -> StoredExchange | None:
        async with self._lock:
            return await self.orchestrator.compact(context, model=model)

    def current(self) -> StoredExchange | None:
        return self.history.get_current()

    async def undo(self) -> StoredExchange | None:
        """Waits for any running turn before popping the undo stack."""
        async with self._lock:
            return self.history.undo()

    async def exchange(self, exchange_id: ExchangeId) -> StoredExchange:
        return await self.history.retrieve(exchange_id)

    async def statuses(self, category: ModelCategory) -> dict[str, dict[str, ModelStatusReport]]:
        return await self.registry.for_category(category).statuses_by_provider()

    async def prewarm(self) -> None:
        await self.registry.prewarm()

    async def close(self) -> None:
        await self.orchestrator.drain()


def create_chat_service(settings: Settings, chat_client_factory: ClientFactory[Any] | None = None) -> ChatService:
    """
    Factory function for creating ChatService.

    Service owns its own construction logic - deps.py just calls this.

    Args:
        settings: Application settings (catalog path, probe and turn defaults)
        chat_client_factory: Override for the pydantic-ai client (tests)

    Returns:
        Configured ChatService ready for use
    """
    catalog = ModelCatalog.from_json_file(Path(settings.model_catalog_path))
    registry = ModelRegistry(chat_client_factory)
    registry.initialize_from_catalog(
        catalog,
        cache_seconds=settings.probe_cache_seconds,
        timeout=settings.probe_timeout_seconds,
    )
    return ChatService(
        registry,
        default_model=settings.default_model,
        system_prompt=settings.system_prompt,
        max_steps=settings.max_steps,
        parallel_tools=settings.parallel_tools,
        max_context_messages=settings.max_context_messages,
        auto_compact=settings.auto_compact,
        compaction_threshold=settings.compaction_threshold,
    )


__all__ = ["ChatService", "create_chat_service"]
