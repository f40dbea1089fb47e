"""Session Context - Per-Session Runtime Handles Shared by a Turn.

The context travels with every turn: system prompt callables and context
providers read from it, the model client watches its abort signal, and the
orchestrator asks it for confirmation before compacting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

OutputSink = Callable[[str], None]
ConfirmPrompt = Callable[[str], Awaitable[bool]]


class SessionContext:
    """Runtime handles for one conversational session.

    Attributes:
        name: Session or agent name, available to system prompt callables
        state: Free-form data for providers and prompt callables
        on_output: Receives streamed text deltas
        confirm: Asks the user a yes/no question (None = non-interactive)
    """

    def __init__(
        self,
        name: str = "default",
        *,
        state: dict[str, Any] | None = None,
        on_output: OutputSink | None = None,
        confirm: ConfirmPrompt | None = None,
    ):
        self.name = name
        self.state = state if state is not None else {}
        self.on_output = on_output
        self.confirm = confirm
        self._abort = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> None:
        """Abort the in-flight model run (tool calls keep running)."""
        self._abort.set()

    def reset_abort(self) -> None:
        """Called by the orchestrator when a turn starts."""
        self._abort.clear()

    async def wait_for_abort(self) -> None:
        await self._abort.wait()

    def emit_output(self, text: str) -> None:
        if self.on_output is not None:
            self.on_output(text)

    async def ask(self, question: str) -> bool:
        """Yes/no confirmation; without a prompt callback the answer is no."""
        if self.confirm is None:
            return False
        return await self.confirm(question)


__all__ = ["ConfirmPrompt", "OutputSink", "SessionContext"]
