"""Domain Layer - Model Routing, Request Assembly and Conversation History.

Key Components:
    - ModelRegistry / CapabilityRegistry: requirement-based model selection
    - ModelCatalog: declarative provider/model metadata with availability probes
    - ChatHistoryStore: exchange chains with stack-based undo
    - RequestAssembler: deterministic message construction per turn
    - ToolRegistry / ToolDispatcher: tool execution policy and failure isolation
    - TurnOrchestrator: the per-turn control loop

Design Principles:
    - Immutable by Default: records use frozen=True, updates via model_copy
    - Explicit Dependencies: providers and stores are injected, never discovered
    - Pydantic AI at the Edge: only chat_client.py talks to the model SDK
"""

from .chat_client import ChatClient, PydanticAIChatClient
from .compaction import compact_messages, resequence_messages
from .conversation import TurnOrchestrator, TurnResult
from .domain_type import (
    ComparisonOperator,
    ContextPosition,
    FeatureType,
    FinishReason,
    MessageRole,
    ModelCategory,
    ModelStatus,
    TurnState,
)
from .domain_value import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ContextItem,
    ExchangeId,
    GenerationParameters,
    ResponseCost,
    ResponseTiming,
    SessionId,
    StoredExchange,
    TokenUsage,
    ToolCall,
    ToolSpec,
)
from .errors import (
    ChatRelayError,
    ExchangeNotFoundError,
    InputValidationError,
    InvocationError,
    ModelNotFoundError,
    RequirementSyntaxError,
    StorageError,
)
from .history import ChatHistoryStore, EphemeralChatHistoryStore, HistoryStack
from .model_catalog import FeatureSpec, ModelCatalog, ModelEntry, ModelStatusReport
from .model_registry import BoundModel, CapabilityRegistry, ModelRegistry
from .request_builder import AssembledTurn, ContextItemProvider, MemoryProvider, RequestAssembler, TurnOptions
from .requirements import Condition, RequirementQuery
from .session import SessionContext
from .tools import ToolDefinition, ToolDispatcher, ToolRegistry, sanitize_tool_name

__all__ = [
    "AssembledTurn",
    "BoundModel",
    "CapabilityRegistry",
    "ChatClient",
    "ChatHistoryStore",
    "ChatMessage",
    "ChatRelayError",
    "ChatRequest",
    "ChatResponse",
    "ComparisonOperator",
    "Condition",
    "ContextItem",
    "ContextItemProvider",
    "ContextPosition",
    "EphemeralChatHistoryStore",
    "ExchangeId",
    "ExchangeNotFoundError",
    "FeatureSpec",
    "FeatureType",
    "FinishReason",
    "GenerationParameters",
    "HistoryStack",
    "InputValidationError",
    "InvocationError",
    "MemoryProvider",
    "MessageRole",
    "ModelCatalog",
    "ModelCategory",
    "ModelEntry",
    "ModelNotFoundError",
    "ModelRegistry",
    "ModelStatus",
    "ModelStatusReport",
    "PydanticAIChatClient",
    "RequestAssembler",
    "RequirementQuery",
    "RequirementSyntaxError",
    "ResponseCost",
    "ResponseTiming",
    "SessionContext",
    "SessionId",
    "StorageError",
    "StoredExchange",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolSpec",
    "TurnOptions",
    "TurnOrchestrator",
    "TurnResult",
    "TurnState",
    "compact_messages",
    "resequence_messages",
    "sanitize_tool_name",
]
