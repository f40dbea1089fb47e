"""chatrelay package exports."""

from .config import Settings, settings
from .domain import ModelRegistry, TurnOrchestrator
from .service import ChatService

__all__ = [
    "ChatService",
    "ModelRegistry",
    "Settings",
    "TurnOrchestrator",
    "settings",
]
