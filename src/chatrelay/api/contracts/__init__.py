from .conversation import (
    CurrentExchangeResponse,
    TurnRequest,
    TurnResponse,
)
from .health import HealthResponse
from .models import ModelStatusView

__all__ = [
    "CurrentExchangeResponse",
    "HealthResponse",
    "ModelStatusView",
    "TurnRequest",
    "TurnResponse",
]
