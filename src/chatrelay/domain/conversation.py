"""Turn Orchestrator - The Per-Turn Control Loop.

Drives one user-to-model round trip and keeps history consistent whatever
happens along the way.

State Machine:
    IDLE ─> RESOLVING_MODEL ─> AWAITING_RESPONSE ─> COMMITTING ─> IDLE
                  │                   │                  └──> COMPACTING ─> IDLE
                  └───────> FAILED <──┘

Failure Guarantees:
    - Empty input or model requirement: InputValidationError, nothing touched
    - No online model: ModelNotFoundError, history untouched
    - Model failure or abort: an error-flagged exchange is stored in the
      background (never committed), the pre-turn current exchange is
      restored, InvocationError is raised
    - Storage failure: propagated verbatim after restoring current

Compaction:
    After a commit, if the turn's token usage exceeds compaction_threshold of
    the model's context length, the conversation is summarized
    (automatically with auto_compact, otherwise only if the user confirms).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict

from .domain_type import MessageRole, TurnState
from .domain_value import ChatResponse, ChatRequest, ResponseTiming, StoredExchange, TokenUsage
from .errors import ChatRelayError, InputValidationError, InvocationError
from .history import ChatHistoryStore
from .model_catalog import ModelEntry
from .model_registry import ModelRegistry
from .request_builder import RequestAssembler, TurnOptions
from .session import SessionContext

logger = logging.getLogger(__name__)

DEFAULT_COMPACTION_THRESHOLD = 0.9
COST_DECIMALS = 4

SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that creates comprehensive summaries of conversations."
SUMMARY_PROMPT = (
    "Please provide a detailed summary of the prior conversation, including all important details, "
    "context, and what was being worked on"
)
COMPACTION_QUESTION = "The conversation is close to the model's context limit. Compact it now?"


class TurnResult(BaseModel):
    """Outcome of a committed turn."""

    text: str
    response: ChatResponse
    exchange: StoredExchange
    model_id: str
    compacted: bool = False

    model_config = ConfigDict(frozen=True)


class TurnOrchestrator:
    """Runs Turns Against One Registry and One History Store.

    Args:
        registry: Model registry; chat clients come from registry.chat
        history: Conversation store; committed exchanges become current
        assembler: Builds the request for each turn
        default_model: Requirement query used when a turn names none
        auto_compact: Compact without asking when the context fills up
        compaction_threshold: Fraction of context length that triggers compaction

    Turns on one orchestrator must not overlap (see ChatHistoryStore).
    """

    def __init__(
        self,
        registry: ModelRegistry,
        history: ChatHistoryStore,
        assembler: RequestAssembler,
        *,
        default_model: str = "",
        auto_compact: bool = False,
        compaction_threshold: float = DEFAULT_COMPACTION_THRESHOLD,
    ):
        self.registry = registry
        self.history = history
        self.assembler = assembler
        self.default_model = default_model
        self.auto_compact = auto_compact
        self.compaction_threshold = compaction_threshold
        self.state = TurnState.IDLE
        self._pending: set[asyncio.Task[Any]] = set()

    async def run_turn(self, options: TurnOptions, context: SessionContext) -> TurnResult:
        """Run one turn and commit its exchange as current.

        An abort left over from an earlier turn is cleared first.

        Raises:
            InputValidationError: Empty input or model requirement
            ModelNotFoundError: No online model satisfies the requirement
            InvocationError: The model call failed or was aborted
            StorageError: The history backend failed
        """
        context.reset_abort()
        model = (options.model or self.default_model).strip()
        if not model:
            raise InputValidationError("No model requirement given for this turn")

        previous = self.history.get_current()
        turn = await self.assembler.build(options, context)

        self._enter(TurnState.RESOLVING_MODEL)
        try:
            client = await self.registry.chat.resolve_first_online(model)
        except ChatRelayError:
            self._enter(TurnState.FAILED)
            raise
        logger.info("Using model %s", client.entry.qualified_name)

        self._enter(TurnState.AWAITING_RESPONSE)
        started = time.perf_counter()
        try:
            text, response = await client.stream_chat(turn.request, context, turn.dispatcher)
        except Exception as exc:
            self._enter(TurnState.FAILED)
            self._store_failure(previous, turn.request, exc)
            self.history.restore(previous)
            logger.warning("Model response failed, restoring prior chat state: %s", exc)
            if isinstance(exc, InvocationError):
                raise
            raise InvocationError(f"Model {client.entry.qualified_name} failed: {exc}") from exc
        elapsed_ms = (time.perf_counter() - started) * 1000
        response = self._finalize(response, elapsed_ms)

        self._enter(TurnState.COMMITTING)
        try:
            exchange = await self.history.store(previous, turn.request, response)
        except Exception:
            self._enter(TurnState.FAILED)
            self.history.restore(previous)
            raise
        self.history.set_current(exchange)

        for tool in turn.dispatcher.tools:
            if tool.after_chat_complete is not None:
                await tool.after_chat_complete(context)

        compacted = False
        if self.needs_compaction(client.entry, response.usage):
            if self.auto_compact or await context.ask(COMPACTION_QUESTION):
                self._enter(TurnState.COMPACTING)
                try:
                    compacted = await self.compact(context, model=model) is not None
                except ChatRelayError as exc:
                    logger.warning("Context compaction failed, keeping full history: %s", exc)

        self._enter(TurnState.IDLE)
        return TurnResult(
            text=text or "",
            response=response,
            exchange=self.history.get_current() or exchange,
            model_id=response.model_id or client.model_id,
            compacted=compacted,
        )

    async def compact(self, context: SessionContext, *, model: str | None = None) -> StoredExchange | None:
        """Replace the conversation with a model-written summary.

        The summary exchange keeps only the system messages of its request,
        history is cleared, and the summary becomes the only exchange.
        Returns None when there is nothing to compact. The summary is stored
        before history is cleared, so a StorageError leaves history as it was.
        """
        if self.history.get_current() is None:
            return None

        context.reset_abort()
        requirement = (model or self.default_model).strip()
        if not requirement:
            raise InputValidationError("No model requirement given for compaction")

        turn = await self.assembler.build(
            TurnOptions(
                input=SUMMARY_PROMPT,
                model=requirement,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                include_prior_messages=True,
                include_memories=True,
                include_context_items=False,
                include_tools=False,
            ),
            context,
        )
        client = await self.registry.chat.resolve_first_online(requirement)
        try:
            _, response = await client.stream_chat(turn.request, context)
        except InvocationError:
            raise
        except Exception as exc:
            raise InvocationError(f"Summary request to {client.entry.qualified_name} failed: {exc}") from exc

        request = turn.request.with_messages(
            tuple(message for message in turn.request.messages if message.role == MessageRole.SYSTEM)
        )
        exchange = await self.history.store(None, request, response)
        self.history.clear()
        self.history.set_current(exchange)
        logger.info("Context compacted successfully")
        return exchange

    def needs_compaction(self, entry: ModelEntry, usage: TokenUsage) -> bool:
        if not entry.context_length:
            return False
        return usage.total > self.compaction_threshold * entry.context_length

    async def drain(self) -> None:
        """Wait for background error-exchange writes (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ------------------------------------------------------------------

    def _enter(self, state: TurnState) -> None:
        logger.debug("Turn state %s -> %s", self.state, state)
        self.state = state

    @staticmethod
    def _finalize(response: ChatResponse, elapsed_ms: float) -> ChatResponse:
        cost = response.cost.model_copy(update={"total": round(response.cost.total, COST_DECIMALS)})
        return response.model_copy(
            update={"timing": ResponseTiming.measure(elapsed_ms, response.usage), "cost": cost}
        )

    def _store_failure(self, previous: StoredExchange | None, request: ChatRequest, error: Exception) -> None:
        """Record the failed turn without waiting for it (or committing it)."""
        task = asyncio.ensure_future(self.history.store(previous, request, ChatResponse.failed(str(error))))
        self._pending.add(task)
        task.add_done_callback(self._failure_stored)

    def _failure_stored(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Could not record failed exchange: %s", task.exception())


__all__ = [
    "COMPACTION_QUESTION",
    "SUMMARY_PROMPT",
    "SUMMARY_SYSTEM_PROMPT",
    "TurnOrchestrator",
    "TurnResult",
]
