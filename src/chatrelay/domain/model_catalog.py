"""Model Catalog - Configuration-Driven Model Entries.

Provides type-safe, validated descriptions of the models each provider offers
and turns them into registry entries. The catalog is loaded from JSON
configuration; provider adapters stay declarative (an API-key variable or a
probe URL plus a list of models).

Architecture:
    ModelCatalog: Root container, loaded from model_metadata.json
    ├─ ProviderCatalog: Per-provider wiring (agent prefix, availability probe)
    │  └─ ModelMetadata: One model with scores and pricing
    └─ ModelEntry: Immutable registry record built from the two above

Key Features:
    - Requirement Lookup: entries expose fields by camelCase alias or snake_case
    - Cost Accounting: per-million pricing with cached/reasoning fallbacks
    - Availability Probes: async, cached, never raising into callers
"""

from __future__ import annotations

import json
import logging
import math
import os
import time
from collections.abc import Awaitable, Callable
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .domain_type import FeatureType, ModelCategory, ModelStatus
from .domain_value import ResponseCost, TokenUsage
from .errors import InputValidationError

logger = logging.getLogger(__name__)

AvailabilityProbe = Callable[[], Awaitable[bool]]

# Sentinel used in .env templates for keys nobody filled in
MISSING_API_KEY = "NEED-API-KEY"


class FeatureSpec(BaseModel):
    """A Tunable Model Feature Selected via Query Parameters.

    Example:
        "openai:gpt-5?websearch=1" enables the boolean feature "websearch".

    Parsing Rules:
        boolean: "1" or "true" (any case) is True, everything else False
        number: numeric text, falls back to default_value when not a number
        enum: must be one of values, falls back to default_value
        string: passed through
    """

    type: FeatureType
    description: str = ""
    default_value: bool | float | str
    values: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    def parse(self, raw: str) -> bool | float | str:
        if self.type == FeatureType.BOOLEAN:
            return raw == "1" or raw.lower() == "true"
        if self.type == FeatureType.NUMBER:
            try:
                number = float(raw)
            except ValueError:
                return self.default_value
            return self.default_value if math.isnan(number) else number
        if self.type == FeatureType.ENUM:
            return raw if raw in self.values else self.default_value
        return raw


class ModelEntry(BaseModel):
    """One Registered, Concrete Model Implementation.

    Immutable record created at provider-initialization time. The registry
    stores entries under a logical name; several entries may share a name
    (fan-out across providers).

    Attributes:
        model_id: Provider's identifier for the model
        provider: Owning provider code
        category: chat, embedding or image
        context_length .. tools: Capability scores (higher is better)
        cost_per_million_*: Pricing in dollars per million tokens
        is_available / is_hot: Optional async probes
        impl: Invocation handle passed to the model client
        features: Query-parameter features the model accepts
        requires_alternation: Provider rejects anything but strict user/assistant turns

    Requirement Lookup:
        Query keys match either the camelCase alias ("contextLength") or the
        field name ("context_length"). Unknown keys read as None.
    """

    model_id: str
    provider: str
    category: ModelCategory = ModelCategory.CHAT
    context_length: int | None = None
    max_completion_tokens: int | None = None
    reasoning: float | None = None
    speed: float | None = None
    intelligence: float | None = None
    web_search: float | None = None
    research: float | None = None
    tools: float | None = None
    cost_per_million_input_tokens: float | None = None
    cost_per_million_output_tokens: float | None = None
    cost_per_million_cached_input_tokens: float | None = None
    cost_per_million_reasoning_tokens: float | None = None
    features: dict[str, FeatureSpec] = Field(default_factory=dict)
    requires_alternation: bool = False
    is_available: AvailabilityProbe | None = Field(default=None, exclude=True)
    is_hot: AvailabilityProbe | None = Field(default=None, exclude=True)
    impl: Any = Field(default=None, exclude=True)

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @property
    def qualified_name(self) -> str:
        """Default registry name: provider:model_id."""
        return f"{self.provider}:{self.model_id}"

    def requirement_value(self, key: str) -> Any:
        """Raw field value addressed by a requirement key (None if unknown)."""
        field = _requirement_fields().get(key)
        return getattr(self, field) if field else None

    async def check_available(self) -> bool:
        """Run the availability probe; a missing probe counts as available."""
        if self.is_available is None:
            return True
        try:
            return bool(await self.is_available())
        except Exception as exc:
            logger.debug("Availability probe failed for %s: %s", self.qualified_name, exc)
            return False

    async def check_hot(self) -> bool:
        """Run the warm-start probe; a missing probe counts as hot."""
        if self.is_hot is None:
            return True
        try:
            return bool(await self.is_hot())
        except Exception as exc:
            logger.debug("Hot probe failed for %s: %s", self.qualified_name, exc)
            return False

    def calculate_cost(self, usage: TokenUsage) -> ResponseCost:
        """Dollar cost of a usage record.

        Cached input falls back to the input rate, reasoning to the output
        rate. Token classes with zero usage report None.
        """
        input_rate = (self.cost_per_million_input_tokens or 0) / 1_000_000
        output_rate = (self.cost_per_million_output_tokens or 0) / 1_000_000
        cached_rate = (
            self.cost_per_million_cached_input_tokens
            if self.cost_per_million_cached_input_tokens is not None
            else (self.cost_per_million_input_tokens or 0)
        ) / 1_000_000
        reasoning_rate = (
            self.cost_per_million_reasoning_tokens
            if self.cost_per_million_reasoning_tokens is not None
            else (self.cost_per_million_output_tokens or 0)
        ) / 1_000_000

        cost_input = usage.input_tokens * input_rate if usage.input_tokens else None
        cost_cached = usage.cached_input_tokens * cached_rate if usage.cached_input_tokens else None
        cost_output = usage.output_tokens * output_rate if usage.output_tokens else None
        cost_reasoning = usage.reasoning_tokens * reasoning_rate if usage.reasoning_tokens else None

        return ResponseCost(
            input=cost_input,
            cached_input=cost_cached,
            output=cost_output,
            reasoning=cost_reasoning,
            total=(cost_input or 0) + (cost_cached or 0) + (cost_output or 0) + (cost_reasoning or 0),
        )


@lru_cache(maxsize=1)
def _requirement_fields() -> dict[str, str]:
    """Requirement key (field name or camelCase alias) -> ModelEntry field."""
    lookup: dict[str, str] = {}
    for name, info in ModelEntry.model_fields.items():
        if name in {"is_available", "is_hot", "impl", "requires_alternation"}:
            continue
        lookup[name] = name
        if info.alias:
            lookup[info.alias] = name
    return lookup


class ModelStatusReport(BaseModel):
    """Probe results for one registered entry."""

    status: ModelStatus
    available: bool
    hot: bool
    entry: ModelEntry

    model_config = ConfigDict(frozen=True)

    @classmethod
    async def probe(cls, entry: ModelEntry) -> ModelStatusReport:
        available = await entry.check_available()
        hot = await entry.check_hot()
        if not available:
            status = ModelStatus.OFFLINE
        elif hot:
            status = ModelStatus.ONLINE
        else:
            status = ModelStatus.COLD
        return cls(status=status, available=available, hot=hot, entry=entry)


# ---------------------------------------------------------------------------
# Availability probes
# ---------------------------------------------------------------------------


class CachedHttpProbe:
    """Availability Probe Backed by an HTTP GET, Cached on Success.

    A successful response is remembered for cache_seconds; failures are not
    cached, so the next call retries immediately.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        cache_seconds: float = 30.0,
        timeout: float = 1.0,
    ):
        self.url = url
        self.headers = headers or {}
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._last_success: float | None = None

    async def __call__(self) -> bool:
        now = time.monotonic()
        if self._last_success is not None and now - self._last_success < self.cache_seconds:
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url, headers=self.headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("Probe %s failed: %s", self.url, exc)
            self._last_success = None
            return False
        self._last_success = now
        return True


def api_key_probe(env_var: str) -> AvailabilityProbe:
    """Probe that reports available when the API key variable is filled in."""

    async def probe() -> bool:
        key = os.environ.get(env_var, "")
        return bool(key and key != MISSING_API_KEY)

    return probe


# ---------------------------------------------------------------------------
# Catalog definitions (loaded from configuration)
# ---------------------------------------------------------------------------


class ModelMetadata(BaseModel):
    """One Model as Declared in model_metadata.json.

    Capability scores are opaque numbers supplied by configuration; the
    registry only compares them.
    """

    model_id: str
    category: ModelCategory = ModelCategory.CHAT
    context_length: int | None = None
    max_completion_tokens: int | None = None
    reasoning: float | None = None
    speed: float | None = None
    intelligence: float | None = None
    web_search: float | None = None
    research: float | None = None
    tools: float | None = None
    cost_per_million_input_tokens: float | None = None
    cost_per_million_output_tokens: float | None = None
    cost_per_million_cached_input_tokens: float | None = None
    cost_per_million_reasoning_tokens: float | None = None
    features: dict[str, FeatureSpec] = Field(default_factory=dict)
    notes: str | None = None

    model_config = ConfigDict(frozen=True)

    def to_entry(self, provider: ProviderCatalog, probe: AvailabilityProbe | None) -> ModelEntry:
        data = self.model_dump(exclude={"notes", "features"})
        return ModelEntry(
            **data,
            features=self.features,
            provider=provider.provider,
            is_available=probe,
            impl=f"{provider.agent_prefix}:{self.model_id}",
            requires_alternation=provider.requires_alternation,
        )


class ProviderCatalog(BaseModel):
    """Per-Provider Wiring and Model List.

    Attributes:
        provider: Provider code, injected from the JSON key
        agent_prefix: pydantic-ai model prefix (e.g. "openai", "anthropic")
        api_key_env: Environment variable holding the API key
        probe_url: URL whose successful GET marks the provider online
        requires_alternation: Resequence messages into strict user/assistant turns
        models: Declared models
    """

    provider: str
    agent_prefix: str
    api_key_env: str | None = None
    probe_url: str | None = None
    requires_alternation: bool = False
    models: tuple[ModelMetadata, ...] = ()

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_duplicate_model_ids(self) -> ProviderCatalog:
        """Validate No Duplicate Model Identifiers within a provider."""
        all_ids = [model.model_id for model in self.models]
        if len(all_ids) != len(set(all_ids)):
            duplicates = sorted({x for x in all_ids if all_ids.count(x) > 1})
            raise ValueError(f"Duplicate model identifiers for provider '{self.provider}': {duplicates}")
        return self

    def find_model(self, model_id: str) -> ModelMetadata:
        """Find declared model by id.

        Raises:
            KeyError: If model_id not declared for this provider
        """
        wanted = model_id.strip()
        model = next((model for model in self.models if model.model_id == wanted), None)
        if model is None:
            raise KeyError(f"Model '{model_id}' not registered for provider '{self.provider}'")
        return model

    def build_probe(self, *, cache_seconds: float = 30.0, timeout: float = 1.0) -> AvailabilityProbe | None:
        if self.probe_url:
            headers: dict[str, str] = {}
            if self.api_key_env and os.environ.get(self.api_key_env):
                headers["Authorization"] = f"Bearer {os.environ[self.api_key_env]}"
            return CachedHttpProbe(self.probe_url, headers=headers, cache_seconds=cache_seconds, timeout=timeout)
        if self.api_key_env:
            return api_key_probe(self.api_key_env)
        return None

    def build_entries(self, *, cache_seconds: float = 30.0, timeout: float = 1.0) -> tuple[ModelEntry, ...]:
        """Registry entries for every declared model, sharing one probe."""
        probe = self.build_probe(cache_seconds=cache_seconds, timeout=timeout)
        return tuple(model.to_entry(self, probe) for model in self.models)


class ModelCatalog(RootModel[dict[str, ProviderCatalog]]):
    """Catalog of providers - wraps dict for type safety and validation."""

    root: dict[str, ProviderCatalog]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelCatalog:
        """Load catalog from dict, explicitly injecting provider keys - no mutation."""
        enriched = {key: {**provider_data, "provider": key} for key, provider_data in data.items()}
        return cls.model_validate(enriched)

    @classmethod
    def from_json_file(cls, path: Path) -> ModelCatalog:
        """Load and validate catalog from JSON."""
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(data)

    def provider(self, provider: str) -> ProviderCatalog:
        if provider not in self.root:
            raise KeyError(f"Provider '{provider}' not registered")
        return self.root[provider]

    def entries(self, *, cache_seconds: float = 30.0, timeout: float = 1.0) -> tuple[ModelEntry, ...]:
        return tuple(
            entry
            for provider in self.root.values()
            for entry in provider.build_entries(cache_seconds=cache_seconds, timeout=timeout)
        )


def parse_feature_query(entry: ModelEntry, query: str) -> dict[str, bool | float | str]:
    """Parse "k=v&flag" feature parameters against an entry's FeatureSpecs.

    A key without a value means "1".

    Raises:
        InputValidationError: If a key is not a declared feature
    """
    features: dict[str, bool | float | str] = {}
    for part in query.split("&"):
        if not part:
            continue
        raw_key, sep, raw_value = part.partition("=")
        key = unquote(raw_key)
        spec = entry.features.get(key)
        if spec is None:
            raise InputValidationError(f'Unknown feature "{key}" for model {entry.qualified_name}')
        features[key] = spec.parse(unquote(raw_value) if sep else "1")
    return features


__all__ = [
    "AvailabilityProbe",
    "CachedHttpProbe",
    "FeatureSpec",
    "ModelCatalog",
    "ModelEntry",
    "ModelMetadata",
    "ModelStatusReport",
    "ProviderCatalog",
    "api_key_probe",
    "parse_feature_query",
]
