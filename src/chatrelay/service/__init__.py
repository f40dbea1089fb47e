"""Service layer exports."""

from .conversation import ChatService, create_chat_service

__all__ = ["ChatService", "create_chat_service"]
