"""Conversation History - Exchange Chains with Stack-Based Undo.

A conversation is a chain of StoredExchange records linked backwards by
previous_message_id. What the user sees as "the conversation" is whichever
exchange is current; undo restores the exchange that was current before.

Architecture:
    HistoryStack: pure (current, previous) state with transition functions
    ChatHistoryStore: undo/commit semantics over a HistoryStack + abstract
                      store/retrieve persistence
    EphemeralChatHistoryStore: in-process dict backend

Commit vs Store:
    store() persists a new exchange and returns it; it never moves the
    current pointer. The orchestrator commits with set_current() only after
    a turn succeeds, so a failed turn cannot leave history pointing at a
    half-finished exchange.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict

from .domain_value import ChatRequest, ChatResponse, ExchangeId, SessionId, StoredExchange
from .errors import ExchangeNotFoundError

logger = logging.getLogger(__name__)


class HistoryStack(BaseModel):
    """Current Exchange Plus the Undo Stack (top = last element).

    Every transition returns a new stack; instances never change.
    """

    current: StoredExchange | None = None
    previous: tuple[StoredExchange, ...] = ()

    model_config = ConfigDict(frozen=True)

    def with_current(self, exchange: StoredExchange | None) -> HistoryStack:
        """Make exchange current.

        The old current is pushed only when both old and new are set, so
        clearing current never pushes and never evicts the stack.
        """
        previous = self.previous
        if self.current is not None and exchange is not None:
            previous = (*previous, self.current)
        return HistoryStack(current=exchange, previous=previous)

    def popped(self) -> HistoryStack:
        """Undo: stack top becomes current (None when the stack is empty)."""
        if not self.previous:
            return HistoryStack()
        return HistoryStack(current=self.previous[-1], previous=self.previous[:-1])

    def restored(self, exchange: StoredExchange | None) -> HistoryStack:
        """Replace current without touching the stack."""
        return HistoryStack(current=exchange, previous=self.previous)

    def cleared(self) -> HistoryStack:
        return HistoryStack()

    @property
    def depth(self) -> int:
        return len(self.previous)


class ChatHistoryStore(ABC):
    """Undo Semantics Over an Abstract Exchange Backend.

    Concurrency:
        Two turns running concurrently against one store are not
        synchronized: store() and set_current() race. Callers must serialize
        turns per store; this is fine for a single-user session.

    Subclasses implement persistence (_save, _load). Backends must round-trip
    the StoredExchange.to_record() shape.
    """

    def __init__(self) -> None:
        self._stack = HistoryStack()

    @property
    def stack(self) -> HistoryStack:
        return self._stack

    def get_current(self) -> StoredExchange | None:
        return self._stack.current

    def set_current(self, exchange: StoredExchange | None) -> None:
        self._stack = self._stack.with_current(exchange)

    def undo(self) -> StoredExchange | None:
        """Pop the undo stack into current and return the new current."""
        self._stack = self._stack.popped()
        return self._stack.current

    def restore(self, exchange: StoredExchange | None) -> None:
        """Rollback helper: put exchange back as current without pushing."""
        self._stack = self._stack.restored(exchange)

    def clear(self) -> None:
        self._stack = self._stack.cleared()

    async def store(
        self,
        previous: StoredExchange | None,
        request: ChatRequest,
        response: ChatResponse | None,
    ) -> StoredExchange:
        """Persist a new exchange chained after previous.

        The session continues from previous, or a new session starts when
        there is no previous exchange. Does not change the current pointer.

        Raises:
            StorageError: If the backend fails (propagated verbatim)
        """
        now = datetime.now(UTC)
        exchange = StoredExchange(
            id=ExchangeId(),
            session_id=previous.session_id if previous is not None else SessionId(),
            request=request,
            response=response,
            created_at=now,
            updated_at=now,
            previous_message_id=previous.id if previous is not None else None,
        )
        await self._save(exchange)
        logger.debug("Stored exchange %s (previous=%s)", exchange.id, exchange.previous_message_id)
        return exchange

    async def retrieve(self, exchange_id: ExchangeId) -> StoredExchange:
        """Load an exchange by id.

        Raises:
            ExchangeNotFoundError: If no exchange has that id
        """
        exchange = await self._load(exchange_id)
        if exchange is None:
            raise ExchangeNotFoundError(f"Exchange {exchange_id} not found")
        return exchange

    async def chain(self, exchange: StoredExchange | None = None) -> list[StoredExchange]:
        """Exchanges from the start of the conversation up to exchange (default: current)."""
        node = exchange if exchange is not None else self.get_current()
        chain: list[StoredExchange] = []
        while node is not None:
            chain.append(node)
            if node.previous_message_id is None:
                break
            node = await self.retrieve(node.previous_message_id)
        chain.reverse()
        return chain

    @abstractmethod
    async def _save(self, exchange: StoredExchange) -> None: ...

    @abstractmethod
    async def _load(self, exchange_id: ExchangeId) -> StoredExchange | None: ...


class EphemeralChatHistoryStore(ChatHistoryStore):
    """In-memory backend; everything is lost with the process."""

    def __init__(self) -> None:
        super().__init__()
        self._exchanges: dict[ExchangeId, StoredExchange] = {}

    async def _save(self, exchange: StoredExchange) -> None:
        self._exchanges[exchange.id] = exchange

    async def _load(self, exchange_id: ExchangeId) -> StoredExchange | None:
        return self._exchanges.get(exchange_id)

    def __len__(self) -> int:
        return len(self._exchanges)


__all__ = ["ChatHistoryStore", "EphemeralChatHistoryStore", "HistoryStack"]
