"""Conversation API Router - thin HTTP layer over the chat service."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from ...domain.domain_value import ExchangeId, StoredExchange
from ...domain.errors import (
    ExchangeNotFoundError,
    InputValidationError,
    InvocationError,
    ModelNotFoundError,
    StorageError,
)
from ...domain.session import SessionContext
from ...service import ChatService
from ..contracts import CurrentExchangeResponse, TurnRequest, TurnResponse
from ..deps import get_chat_service

router = APIRouter(prefix="/conversation", tags=["conversation"])


def _current(service: ChatService) -> CurrentExchangeResponse:
    return CurrentExchangeResponse(exchange=service.current(), undo_depth=service.history.stack.depth)


@router.post("/turn", response_model=TurnResponse)
async def run_turn(
    request: TurnRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> TurnResponse:
    """
    Run one turn and commit it as the current exchange.

    Thin orchestration layer:
    1. Map the contract to turn options
    2. Delegate to the service (domain owns routing, assembly and history)
    3. Map domain errors to HTTP status codes
    """
    overrides = request.model_dump(exclude={"text", "model"}, exclude_none=True)
    try:
        result = await service.send(request.text, SessionContext("http"), model=request.model, **overrides)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvocationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return TurnResponse(
        exchange_id=result.exchange.id,
        session_id=result.exchange.session_id,
        text=result.text,
        model_id=result.model_id,
        usage=result.response.usage,
        cost=result.response.cost,
        timing=result.response.timing,
        compacted=result.compacted,
    )


@router.post("/undo", response_model=CurrentExchangeResponse)
async def undo(
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> CurrentExchangeResponse:
    """Restore the exchange that was current before the last commit."""
    await service.undo()
    return _current(service)


@router.post("/compact", response_model=CurrentExchangeResponse)
async def compact(
    service: Annotated[ChatService, Depends(get_chat_service)],
    model: str | None = None,
) -> CurrentExchangeResponse:
    """Summarize the conversation into a single exchange."""
    try:
        await service.compact(SessionContext("http"), model=model)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ModelNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvocationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _current(service)


@router.get("/current", response_model=CurrentExchangeResponse)
async def get_current(
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> CurrentExchangeResponse:
    """Current exchange of the conversation (null before the first turn)."""
    return _current(service)


@router.get("/exchanges/{exchange_id}", response_model=StoredExchange)
async def get_exchange(
    exchange_id: UUID,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> StoredExchange:
    """Any stored exchange by id, including error-flagged ones."""
    try:
        return await service.exchange(ExchangeId(root=exchange_id))
    except ExchangeNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
