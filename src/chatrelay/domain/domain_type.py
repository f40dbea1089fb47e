"""Domain Type System - Core Enumerations.

Defines type-safe constants using Python's StrEnum for domain concepts.
Using StrEnum instead of plain Enum provides automatic string coercion
and better JSON serialization without custom encoders.
"""

from enum import StrEnum


class ModelCategory(StrEnum):
    """Capability Category of a Registered Model.

    Each category owns its own CapabilityRegistry. Chat models are selected
    by requirement queries; embedding and image models by name only.
    """

    CHAT = "chat"
    EMBEDDING = "embedding"
    IMAGE = "image"


class MessageRole(StrEnum):
    """Role tag of a message in an outbound chat request."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContextPosition(StrEnum):
    """Splice Point for a Context Item in the Assembled Message List.

    Placements:
        AFTER_SYSTEM_MESSAGE: After the leading system messages
        AFTER_PRIOR_MESSAGES: After prior conversation, before current input
        AFTER_CURRENT_MESSAGE: At the very end of the request
    """

    AFTER_SYSTEM_MESSAGE = "afterSystemMessage"
    AFTER_PRIOR_MESSAGES = "afterPriorMessages"
    AFTER_CURRENT_MESSAGE = "afterCurrentMessage"


class ComparisonOperator(StrEnum):
    """Operators accepted by the requirement query language.

    EQUALS_IMPLICIT is the empty operator (a bare value), evaluated as EQUALS.
    """

    EQUALS_IMPLICIT = ""
    EQUALS = "="
    GREATER = ">"
    LESS = "<"
    GREATER_OR_EQUAL = ">="
    LESS_OR_EQUAL = "<="


class ModelStatus(StrEnum):
    """Online Status of a Registered Model.

    States:
        ONLINE: Available and already warm
        COLD: Available but requires a cold start
        OFFLINE: Availability probe failed or returned False
    """

    ONLINE = "online"
    COLD = "cold"
    OFFLINE = "offline"


class FeatureType(StrEnum):
    """Value type of a model feature passed as a query parameter."""

    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ENUM = "enum"


class TurnState(StrEnum):
    """Turn Orchestrator Lifecycle States.

    Transitions:
        IDLE -> RESOLVING_MODEL -> AWAITING_RESPONSE -> COMMITTING -> IDLE
        COMMITTING -> COMPACTING -> IDLE (context nearly full)
        RESOLVING_MODEL | AWAITING_RESPONSE -> FAILED
    """

    IDLE = "idle"
    RESOLVING_MODEL = "resolving_model"
    AWAITING_RESPONSE = "awaiting_response"
    COMMITTING = "committing"
    COMPACTING = "compacting"
    FAILED = "failed"


class FinishReason(StrEnum):
    """Why the model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


__all__ = [
    "ComparisonOperator",
    "ContextPosition",
    "FeatureType",
    "FinishReason",
    "MessageRole",
    "ModelCategory",
    "ModelStatus",
    "TurnState",
]
