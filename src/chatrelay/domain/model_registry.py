"""Model Registry - Requirement-Based Selection over Registered Models.

Holds named model entries per capability category and picks one per turn.

Architecture:
    ModelRegistry: One CapabilityRegistry per category
    ├─ chat: selected by RequirementQuery, ranked by estimated price
    ├─ embedding: selected by name
    └─ image: selected by name

Selection Flow (chat):
    1. resolve(query): parse -> filter every entry -> rank ascending by price
    2. resolve_first_online(query): probe candidates in rank order and build a
       client for the first available one (short-circuits, never probes all)

Entries are append-only: registering a name twice keeps both entries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .domain_type import ModelCategory
from .errors import ModelNotFoundError
from .model_catalog import ModelCatalog, ModelEntry, ModelStatusReport, parse_feature_query
from .requirements import RequirementQuery

logger = logging.getLogger(__name__)

# Placeholder rate for entries without pricing so they rank last.
# TODO: confirm with product whether uncosted models should rank last or be excluded
FALLBACK_COST_PER_MILLION = 600.0
RANKING_OUTPUT_TOKENS = 1000

ClientT = TypeVar("ClientT")
ClientFactory = Callable[[ModelEntry, dict[str, Any]], ClientT]
Query = str | Mapping[str, Any]


def estimated_price(entry: ModelEntry, context_length: int) -> float:
    """Dollar estimate of one request: context_length input + 1000 output tokens."""
    input_cost = entry.cost_per_million_input_tokens
    output_cost = entry.cost_per_million_output_tokens
    if input_cost is None:
        input_cost = FALLBACK_COST_PER_MILLION
    if output_cost is None:
        output_cost = FALLBACK_COST_PER_MILLION
    return (context_length * input_cost + RANKING_OUTPUT_TOKENS * output_cost) / 1_000_000


class BoundModel(BaseModel):
    """Selected entry plus parsed features, for categories without a chat client."""

    entry: ModelEntry
    features: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def create(cls, entry: ModelEntry, features: dict[str, Any]) -> BoundModel:
        return cls(entry=entry, features=features)


class CapabilityRegistry(Generic[ClientT]):
    """Registered Entries of One Category and the Selection Algorithm.

    Args:
        category: Category served by this registry
        client_factory: Builds a client from (entry, features)
        match_requirements: True for requirement queries, False for name-only

    Concurrency:
        Registration is synchronous. When an event loop is running, each
        registration schedules a fire-and-forget probe pass so probe caches
        are warm before the first turn.
    """

    def __init__(
        self,
        category: ModelCategory,
        client_factory: ClientFactory[ClientT],
        *,
        match_requirements: bool = True,
    ):
        self.category = category
        self.client_factory = client_factory
        self.match_requirements = match_requirements
        self._entries: dict[str, list[ModelEntry]] = {}
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, entry: ModelEntry) -> None:
        """Append entry under name (never replaces earlier entries)."""
        self._entries.setdefault(name, []).append(entry)
        self._schedule_prewarm((entry,))

    def register_all(self, entries: Mapping[str, ModelEntry | Sequence[ModelEntry]]) -> None:
        for name, value in entries.items():
            for entry in (value,) if isinstance(value, ModelEntry) else value:
                self.register(name, entry)

    def register_entries(self, entries: Iterable[ModelEntry]) -> None:
        """Register each entry under its provider:model_id name."""
        for entry in entries:
            self.register(entry.qualified_name, entry)

    def names(self) -> list[str]:
        """Registered names in order of first registration."""
        return list(self._entries)

    def entries(self, name: str) -> tuple[ModelEntry, ...]:
        return tuple(self._entries.get(name, ()))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def resolve(self, query: Query) -> list[ModelEntry]:
        """Eligible entries for query, cheapest first (possibly empty).

        Raises:
            RequirementSyntaxError: If the query has an unknown operator
        """
        if not self.match_requirements:
            name = query if isinstance(query, str) else query.get("model")
            return list(self._entries.get(name, ())) if name else []

        requirements = RequirementQuery.parse(query, known_names=self._entries)
        context_length = requirements.estimated_context_length()

        eligible = [
            entry
            for name, entries in self._entries.items()
            for entry in entries
            if requirements.matches(name, entry)
        ]
        # sorted() is stable, so equal prices keep registration order
        ranked = sorted(eligible, key=lambda entry: estimated_price(entry, context_length))
        logger.debug("Resolved %r to %d %s candidates", query, len(ranked), self.category)
        return ranked

    async def resolve_first_online(self, query: Query, *, prefer_hot: bool = False) -> ClientT:
        """Client for the cheapest available candidate.

        Feature parameters may follow a "?" (e.g. "openai:gpt-5?websearch=1").
        With prefer_hot, a warm candidate wins over a cheaper cold one.

        Raises:
            ModelNotFoundError: If no candidate answers its availability probe
            InputValidationError: If a feature parameter is not declared
        """
        feature_query = ""
        if isinstance(query, str) and "?" in query:
            query, _, feature_query = query.partition("?")

        candidates = self.resolve(query)

        selected: ModelEntry | None = None
        if prefer_hot:
            cold: list[ModelEntry] = []
            for entry in candidates:
                if not await entry.check_available():
                    continue
                if await entry.check_hot():
                    selected = entry
                    break
                cold.append(entry)
            if selected is None and cold:
                selected = cold[0]
        else:
            for entry in candidates:
                if await entry.check_available():
                    selected = entry
                    break

        if selected is None:
            raise ModelNotFoundError(f"No online {self.category} model found for {query!r}")

        features = parse_feature_query(selected, feature_query) if feature_query else {}
        logger.info("Selected %s model %s", self.category, selected.qualified_name)
        return self.client_factory(selected, features)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def statuses(self) -> dict[str, tuple[ModelStatusReport, ...]]:
        """Probe every entry; name -> one report per entry."""
        reports: dict[str, tuple[ModelStatusReport, ...]] = {}
        for name, entries in self._entries.items():
            reports[name] = tuple([await ModelStatusReport.probe(entry) for entry in entries])
        return reports

    async def statuses_by_provider(self) -> dict[str, dict[str, ModelStatusReport]]:
        grouped: dict[str, dict[str, ModelStatusReport]] = {}
        for name, reports in (await self.statuses()).items():
            for report in reports:
                grouped.setdefault(report.entry.provider, {})[name] = report
        return grouped

    async def prewarm(self, entries: Iterable[ModelEntry] | None = None) -> None:
        """Run every availability probe once; failures are swallowed."""
        targets = list(entries) if entries is not None else [e for es in self._entries.values() for e in es]
        for entry in targets:
            await entry.check_available()

    def _schedule_prewarm(self, entries: Sequence[ModelEntry]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the application calls prewarm() on startup
            return
        task = loop.create_task(self.prewarm(entries))
        self._background.add(task)
        task.add_done_callback(self._background.discard)


class ModelRegistry:
    """Registry of AI Models Grouped by Category.

    Example:
        >>> registry = ModelRegistry()
        >>> registry.initialize_from_catalog(catalog)
        >>> client = await registry.chat.resolve_first_online("auto:intelligence>=4")
    """

    def __init__(self, chat_client_factory: ClientFactory[Any] | None = None):
        if chat_client_factory is None:
            from .chat_client import PydanticAIChatClient

            chat_client_factory = PydanticAIChatClient
        self.chat: CapabilityRegistry[Any] = CapabilityRegistry(ModelCategory.CHAT, chat_client_factory)
        self.embedding: CapabilityRegistry[BoundModel] = CapabilityRegistry(
            ModelCategory.EMBEDDING, BoundModel.create, match_requirements=False
        )
        self.image: CapabilityRegistry[BoundModel] = CapabilityRegistry(
            ModelCategory.IMAGE, BoundModel.create, match_requirements=False
        )

    def for_category(self, category: ModelCategory) -> CapabilityRegistry[Any]:
        return {
            ModelCategory.CHAT: self.chat,
            ModelCategory.EMBEDDING: self.embedding,
            ModelCategory.IMAGE: self.image,
        }[category]

    def register_entries(self, entries: Iterable[ModelEntry]) -> None:
        """Route each entry to its category's registry."""
        for entry in entries:
            self.for_category(entry.category).register(entry.qualified_name, entry)

    def initialize_from_catalog(
        self,
        catalog: ModelCatalog,
        *,
        cache_seconds: float = 30.0,
        timeout: float = 1.0,
    ) -> None:
        self.register_entries(catalog.entries(cache_seconds=cache_seconds, timeout=timeout))

    async def prewarm(self) -> None:
        for registry in (self.chat, self.embedding, self.image):
            await registry.prewarm()


__all__ = [
    "FALLBACK_COST_PER_MILLION",
    "BoundModel",
    "CapabilityRegistry",
    "ModelRegistry",
    "estimated_price",
]
