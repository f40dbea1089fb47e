"""Chat Client - The Model-Invocation Boundary.

The orchestrator talks to models only through the ChatClient protocol. The
default implementation adapts a Pydantic AI Agent:

    ChatRequest ──to_model_messages──> message_history + user_prompt
                                          │
                  Agent.run / run_stream (tools via FunctionToolset)
                                          │
    ChatResponse <──from_model_messages── new_messages(), usage()

Key Insight:
    Pydantic AI Agents are stateless executors. History, tools, settings and
    output type are all passed per run, so one Agent per selected entry can
    serve every turn.

Cancellation:
    A run races against the session's abort signal. When the signal fires
    the run task is cancelled and InvocationError is raised; tool calls are
    shielded by the dispatcher and finish on their own.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import Tool
from pydantic_ai.toolsets import FunctionToolset
from pydantic_ai.usage import UsageLimits

from .compaction import resequence_messages
from .domain_type import FinishReason, MessageRole
from .domain_value import ChatMessage, ChatRequest, ChatResponse, TokenUsage, ToolCall, ToolSpec
from .errors import InvocationError
from .model_catalog import ModelEntry
from .session import SessionContext
from .tools import ToolDispatcher

if TYPE_CHECKING:
    from pydantic_ai import Agent

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT")

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_call": FinishReason.TOOL_CALLS,
    "error": FinishReason.ERROR,
}


class ChatClient(Protocol):
    """What the orchestrator needs from a model backend."""

    entry: ModelEntry

    @property
    def model_id(self) -> str: ...

    async def stream_chat(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[str, ChatResponse]: ...

    async def text_chat(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[str, ChatResponse]: ...

    async def generate_object(
        self,
        request: ChatRequest,
        output_type: type[OutputT],
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[OutputT, ChatResponse]: ...


# ---------------------------------------------------------------------------
# Message conversion
# ---------------------------------------------------------------------------


def to_model_messages(messages: tuple[ChatMessage, ...] | list[ChatMessage]) -> list[ModelMessage]:
    """Convert our role-tagged messages to Pydantic AI message history."""
    converted: list[ModelMessage] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            converted.append(ModelRequest(parts=[SystemPromptPart(content=message.content)]))
        elif message.role == MessageRole.USER:
            converted.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
        elif message.role == MessageRole.TOOL:
            converted.append(
                ModelRequest(
                    parts=[
                        ToolReturnPart(
                            tool_name=message.tool_name or "",
                            content=message.content,
                            tool_call_id=message.tool_call_id or "",
                        )
                    ]
                )
            )
        else:
            parts: list[TextPart | ToolCallPart] = []
            if message.content or not message.tool_calls:
                parts.append(TextPart(content=message.content))
            for call in message.tool_calls:
                parts.append(ToolCallPart(tool_name=call.name, args=call.arguments, tool_call_id=call.id))
            converted.append(ModelResponse(parts=parts))
    return converted


def from_model_messages(messages: list[ModelMessage]) -> tuple[ChatMessage, ...]:
    """Assistant and tool messages produced by a run (user prompts are skipped)."""
    converted: list[ChatMessage] = []
    for message in messages:
        if isinstance(message, ModelResponse):
            text = "".join(part.content for part in message.parts if isinstance(part, TextPart))
            calls = tuple(
                ToolCall(id=part.tool_call_id, name=part.tool_name, arguments=part.args_as_dict())
                for part in message.parts
                if isinstance(part, ToolCallPart)
            )
            if text or calls:
                converted.append(ChatMessage(role=MessageRole.ASSISTANT, content=text, tool_calls=calls))
            continue
        for part in message.parts:
            if isinstance(part, ToolReturnPart):
                converted.append(
                    ChatMessage(
                        role=MessageRole.TOOL,
                        content=part.model_response_str(),
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                    )
                )
    return tuple(converted)


def model_settings_for(request: ChatRequest, features: dict[str, Any] | None = None) -> ModelSettings:
    """Only explicitly set parameters are forwarded."""
    params = request.parameters
    settings = ModelSettings(parallel_tool_calls=request.parallel_tools)
    if params.temperature is not None:
        settings["temperature"] = params.temperature
    if params.top_p is not None:
        settings["top_p"] = params.top_p
    if params.max_tokens is not None:
        settings["max_tokens"] = params.max_tokens
    if params.presence_penalty is not None:
        settings["presence_penalty"] = params.presence_penalty
    if params.frequency_penalty is not None:
        settings["frequency_penalty"] = params.frequency_penalty
    if params.stop_sequences:
        settings["stop_sequences"] = list(params.stop_sequences)

    # top_k and selected features have no portable setting; providers read them from the body
    extra_body: dict[str, Any] = dict(features or {})
    if params.top_k is not None:
        extra_body["top_k"] = params.top_k
    if extra_body:
        settings["extra_body"] = extra_body
    return settings


# ---------------------------------------------------------------------------
# Pydantic AI adapter
# ---------------------------------------------------------------------------


class PydanticAIChatClient:
    """ChatClient Backed by a Pydantic AI Agent.

    Args:
        entry: Selected model entry; entry.impl is the Agent model
               ("openai:gpt-5" style string or a pydantic_ai Model instance)
        features: Parsed feature parameters from the model query

    Example:
        >>> client = await registry.chat.resolve_first_online("openai:intelligence>=4")
        >>> text, response = await client.stream_chat(request, context, dispatcher)
    """

    def __init__(self, entry: ModelEntry, features: dict[str, Any] | None = None):
        self.entry = entry
        self.features = dict(features or {})
        self._agent: Agent[None, Any] | None = None

    @property
    def model_id(self) -> str:
        return self.entry.model_id

    @property
    def agent(self) -> Agent[None, Any]:
        """Lazy-initialized Agent (cached for the client's lifetime)."""
        if self._agent is None:
            from pydantic_ai import Agent

            if self.entry.impl is None:
                raise InvocationError(f"Model {self.entry.qualified_name} has no invocation handle")
            self._agent = Agent(self.entry.impl, output_type=str)
        return self._agent

    async def stream_chat(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[str, ChatResponse]:
        """Stream text deltas to context.emit_output and return the final text."""
        user_prompt, run_options = self._prepare(request, context, tools)

        async def run() -> tuple[str, ChatResponse]:
            async with self.agent.run_stream(user_prompt, **run_options) as result:
                async for delta in result.stream_text(delta=True):
                    context.emit_output(delta)
                text = await result.get_output()
                return text, self._response(result.new_messages(), result.usage(), text)

        return await self._guard(run, context)

    async def text_chat(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[str, ChatResponse]:
        user_prompt, run_options = self._prepare(request, context, tools)

        async def run() -> tuple[str, ChatResponse]:
            result = await self.agent.run(user_prompt, **run_options)
            return result.output, self._response(result.new_messages(), result.usage(), result.output)

        return await self._guard(run, context)

    async def generate_object(
        self,
        request: ChatRequest,
        output_type: type[OutputT],
        context: SessionContext,
        tools: ToolDispatcher | None = None,
    ) -> tuple[OutputT, ChatResponse]:
        """Structured output validated against output_type."""
        user_prompt, run_options = self._prepare(request, context, tools)

        async def run() -> tuple[OutputT, ChatResponse]:
            result = await self.agent.run(user_prompt, output_type=output_type, **run_options)
            return result.output, self._response(result.new_messages(), result.usage(), None)

        return await self._guard(run, context)

    # ------------------------------------------------------------------

    def _prepare(
        self,
        request: ChatRequest,
        context: SessionContext,
        tools: ToolDispatcher | None,
    ) -> tuple[str | None, dict[str, Any]]:
        messages = request.messages
        if self.entry.requires_alternation:
            messages = resequence_messages(messages)
        history = to_model_messages(messages)
        user_prompt: str | None = None
        # Pydantic AI takes the newest user message as the run prompt
        if messages and messages[-1].role == MessageRole.USER:
            history.pop()
            user_prompt = messages[-1].content

        run_options: dict[str, Any] = {
            "message_history": history or None,
            "model_settings": model_settings_for(request, self.features),
            "usage_limits": UsageLimits(request_limit=request.max_steps),
        }
        if tools is not None and request.tools:
            run_options["toolsets"] = [self._toolset(request.tools, tools, context)]
        return user_prompt, run_options

    @staticmethod
    def _toolset(specs: dict[str, ToolSpec], dispatcher: ToolDispatcher, context: SessionContext) -> FunctionToolset:
        def bind(name: str) -> Callable[..., Awaitable[Any]]:
            async def call(**kwargs: Any) -> Any:
                return await dispatcher.call(name, kwargs, context)

            return call

        return FunctionToolset(
            [
                Tool.from_schema(
                    bind(key),
                    name=key,
                    description=spec.description,
                    json_schema=spec.input_schema,
                )
                for key, spec in specs.items()
            ]
        )

    def _response(self, messages: list[ModelMessage], run_usage: Any, text: str | None) -> ChatResponse:
        usage = TokenUsage(
            input_tokens=run_usage.input_tokens,
            output_tokens=run_usage.output_tokens,
            cached_input_tokens=run_usage.cache_read_tokens,
            reasoning_tokens=run_usage.details.get("reasoning_tokens", 0),
            total_tokens=run_usage.total_tokens,
        )
        responses = [message for message in messages if isinstance(message, ModelResponse)]
        last = responses[-1] if responses else None

        update: dict[str, Any] = {}
        if last is not None:
            update["timestamp"] = last.timestamp
            if last.finish_reason is not None:
                update["finish_reason"] = _FINISH_REASONS.get(last.finish_reason, FinishReason.OTHER)
        if "finish_reason" not in update and text is not None:
            update["finish_reason"] = FinishReason.STOP

        return ChatResponse(
            messages=from_model_messages(messages),
            text=text,
            usage=usage,
            model_id=(last.model_name if last is not None and last.model_name else self.model_id),
            cost=self.entry.calculate_cost(usage),
            **update,
        )

    async def _guard(self, run: Callable[[], Awaitable[OutputT]], context: SessionContext) -> OutputT:
        """Await run() unless the session aborts first."""
        task = asyncio.ensure_future(run())
        abort = asyncio.ensure_future(context.wait_for_abort())
        try:
            done, _ = await asyncio.wait({task, abort}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            abort.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Model run on %s aborted", self.entry.qualified_name)
        raise InvocationError(f"Model run on {self.entry.qualified_name} aborted")


__all__ = [
    "ChatClient",
    "PydanticAIChatClient",
    "from_model_messages",
    "model_settings_for",
    "to_model_messages",
]
