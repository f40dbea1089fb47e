"""Model status router - probe results grouped by provider."""

from typing import Annotated

from fastapi import APIRouter, Depends

from ...domain.domain_type import ModelCategory
from ...service import ChatService
from ..contracts import ModelStatusView
from ..deps import get_chat_service

router = APIRouter(prefix="/models", tags=["models"])


@router.get("/{category}", response_model=dict[str, dict[str, ModelStatusView]])
async def list_model_statuses(
    category: ModelCategory,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> dict[str, dict[str, ModelStatusView]]:
    """Probe every registered model of a category (provider -> name -> status)."""
    grouped = await service.statuses(category)
    return {
        provider: {name: ModelStatusView.from_report(report) for name, report in reports.items()}
        for provider, reports in grouped.items()
    }
