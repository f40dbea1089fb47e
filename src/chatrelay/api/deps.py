"""API dependency wiring."""

from functools import lru_cache

from ..config import settings
from ..service import ChatService, create_chat_service


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    """
    Create the chat service from settings (cached singleton).

    Service factory handles all construction logic - deps.py is just thin DI glue.
    """
    return create_chat_service(settings)
