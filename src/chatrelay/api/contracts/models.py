"""Model status API contracts."""

from __future__ import annotations

from pydantic import BaseModel

from ...domain.domain_type import ModelCategory, ModelStatus
from ...domain.model_catalog import ModelStatusReport


class ModelStatusView(BaseModel):
    """Probe result for one registered model."""

    status: ModelStatus
    available: bool
    hot: bool
    model_id: str
    provider: str
    category: ModelCategory
    context_length: int | None = None
    cost_per_million_input_tokens: float | None = None
    cost_per_million_output_tokens: float | None = None

    @classmethod
    def from_report(cls, report: ModelStatusReport) -> ModelStatusView:
        entry = report.entry
        return cls(
            status=report.status,
            available=report.available,
            hot=report.hot,
            model_id=entry.model_id,
            provider=entry.provider,
            category=entry.category,
            context_length=entry.context_length,
            cost_per_million_input_tokens=entry.cost_per_million_input_tokens,
            cost_per_million_output_tokens=entry.cost_per_million_output_tokens,
        )
