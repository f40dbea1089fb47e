"""
Tests for requirement-based model selection.

These tests demonstrate:
- Testing business rules (filtering, price ranking, tie order)
- Testing the query language as a pinned contract (operators, loose equality)
- Testing probe handling (unavailable, failing, hot/cold preference)
- NOT testing Pydantic field validation
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from chatrelay.domain.errors import InputValidationError, ModelNotFoundError, RequirementSyntaxError
from chatrelay.domain.model_catalog import FeatureSpec, ModelEntry
from chatrelay.domain.model_registry import (
    FALLBACK_COST_PER_MILLION,
    BoundModel,
    CapabilityRegistry,
    ModelRegistry,
    estimated_price,
)
from chatrelay.domain.domain_type import FeatureType, ModelCategory, ModelStatus
from chatrelay.domain.requirements import Condition, RequirementQuery


async def online() -> bool:
    return True


async def offline() -> bool:
    return False


async def broken() -> bool:
    raise RuntimeError("probe exploded")


def build_registry(factory: Callable, entries: dict[str, ModelEntry]) -> CapabilityRegistry:
    registry: CapabilityRegistry = CapabilityRegistry(ModelCategory.CHAT, factory)
    for name, entry in entries.items():
        registry.register(name, entry)
    return registry


def bind(entry: ModelEntry, features: dict) -> BoundModel:
    return BoundModel.create(entry, features)


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------


def test_compact_query_parses_provider_and_filters():
    """
    Demonstrates: The compact grammar "provider:key<op>value,...".
    """
    query = RequirementQuery.parse("openai:contextLength>=100000,speed>3")

    assert query.conditions == (
        Condition(key="provider", operator="", value="openai"),
        Condition(key="contextLength", operator=">=", value="100000"),
        Condition(key="speed", operator=">", value="3"),
    )


def test_bare_value_condition_means_implicit_equality():
    query = RequirementQuery.parse({"contextLength": 8000})

    assert query.conditions[0].operator == ""
    assert query.conditions[0].value == "8000"


def test_auto_and_empty_provider_mean_any_provider():
    """
    Demonstrates: "auto" is not a provider name, it removes the provider filter.
    """
    assert RequirementQuery.parse("auto:intelligence>=4").conditions == (
        Condition(key="intelligence", operator=">=", value="4"),
    )
    assert RequirementQuery.parse({"provider": "", "speed": ">1"}).conditions == (
        Condition(key="speed", operator=">", value="1"),
    )


def test_query_without_colon_is_a_name():
    assert RequirementQuery.parse("gpt-5").conditions == (Condition(key="name", operator="", value="gpt-5"),)


def test_mapping_drops_none_values():
    query = RequirementQuery.parse({"intelligence": None, "speed": ">=2"})

    assert [condition.key for condition in query.conditions] == ["speed"]


def test_malformed_filter_is_ignored():
    """
    Demonstrates: Filters that do not match key<op>value are skipped, not fatal.
    """
    query = RequirementQuery.parse("test:garbage,intelligence>=4")

    assert [condition.key for condition in query.conditions] == ["provider", "intelligence"]


@pytest.mark.parametrize(
    "query",
    [
        "test:intelligence<<3",
        "test:intelligence><3",
        {"intelligence": "<>3"},
        {"intelligence": ">>3"},
    ],
)
def test_unknown_operator_raises_syntax_error(query):
    """
    Demonstrates: Operators outside =, >, <, >=, <= are rejected before evaluation.
    """
    with pytest.raises(RequirementSyntaxError):
        RequirementQuery.parse(query)


def test_syntax_error_is_a_validation_error():
    with pytest.raises(InputValidationError):
        RequirementQuery.parse({"speed": "<<1"})


def test_estimated_context_length_is_raised_by_context_bound():
    assert RequirementQuery.parse("p:intelligence>1").estimated_context_length() == 10_000
    assert RequirementQuery.parse("p:contextLength>=8000").estimated_context_length() == 10_000
    assert RequirementQuery.parse("p:contextLength>=100000").estimated_context_length() == 100_000


def test_estimated_context_length_ignores_unparseable_bound():
    assert RequirementQuery.parse({"contextLength": ">=lots"}).estimated_context_length() == 10_000


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def test_resolve_ranks_matching_entries_by_price(entry_factory):
    """
    Demonstrates: The reference example - both entries match, cheaper first.
    """
    registry = build_registry(
        bind,
        {
            "m1provider:m1b": entry_factory("m1b", "m1provider", context_length=8000, cost_per_million_input_tokens=5),
            "m1provider:m1": entry_factory("m1", "m1provider", context_length=8000, cost_per_million_input_tokens=1),
        },
    )

    ranked = registry.resolve("m1provider:contextLength>=8000")

    assert [entry.model_id for entry in ranked] == ["m1", "m1b"]


def test_resolve_never_returns_entries_failing_a_bound(entry_factory):
    """
    Demonstrates: Filter soundness over every registered entry, including unscored ones.
    """
    entries = {f"p:s{speed}": entry_factory(f"s{speed}", "p", speed=speed) for speed in range(1, 10)}
    entries["p:unscored"] = entry_factory("unscored", "p")
    registry = build_registry(bind, entries)

    ranked = registry.resolve("p:speed>5")

    assert ranked
    assert all(entry.speed is not None and entry.speed > 5 for entry in ranked)
    assert {entry.model_id for entry in ranked} == {"s6", "s7", "s8", "s9"}


def test_resolve_exact_name_returns_only_that_names_entries(entry_factory):
    """
    Demonstrates: A registered name wins over parsing and keeps all its entries, cheapest first.
    """
    registry = build_registry(bind, {"other:x": entry_factory("x", "other", cost_per_million_input_tokens=0.1)})
    registry.register("shared:chat", entry_factory("pricey", "a", cost_per_million_input_tokens=9))
    registry.register("shared:chat", entry_factory("cheap", "b", cost_per_million_input_tokens=1))

    ranked = registry.resolve("shared:chat")

    assert [entry.model_id for entry in ranked] == ["cheap", "pricey"]


def test_register_is_append_only(entry_factory):
    registry = build_registry(bind, {})
    registry.register("n", entry_factory("a"))
    registry.register("n", entry_factory("b"))

    assert [entry.model_id for entry in registry.entries("n")] == ["a", "b"]
    assert registry.names() == ["n"]


def test_equal_prices_keep_registration_order(entry_factory):
    registry = build_registry(
        bind,
        {
            "p:first": entry_factory("first", "p", cost_per_million_input_tokens=1, cost_per_million_output_tokens=1),
            "p:second": entry_factory("second", "p", cost_per_million_input_tokens=1, cost_per_million_output_tokens=1),
        },
    )

    assert [entry.model_id for entry in registry.resolve({"provider": "p"})] == ["first", "second"]


def test_missing_costs_use_fallback_rate(entry_factory):
    """
    Demonstrates: Unpriced entries are ranked with a placeholder rate, so they sort last.
    """
    unpriced = entry_factory("local", "p")
    priced = entry_factory("hosted", "p", cost_per_million_input_tokens=3, cost_per_million_output_tokens=15)
    registry = build_registry(bind, {"p:local": unpriced, "p:hosted": priced})

    assert estimated_price(unpriced, 10_000) == pytest.approx(
        (10_000 * FALLBACK_COST_PER_MILLION + 1000 * FALLBACK_COST_PER_MILLION) / 1e6
    )
    assert [entry.model_id for entry in registry.resolve({"provider": "p"})] == ["hosted", "local"]


def test_context_bound_changes_ranking(entry_factory):
    """
    Demonstrates: A larger context estimate weighs input price more heavily.
    """
    input_heavy = entry_factory(
        "input-heavy", "p", context_length=200_000, cost_per_million_input_tokens=10, cost_per_million_output_tokens=1
    )
    output_heavy = entry_factory(
        "output-heavy", "p", context_length=200_000, cost_per_million_input_tokens=1, cost_per_million_output_tokens=100
    )
    registry = build_registry(bind, {"p:a": output_heavy, "p:b": input_heavy})

    assert registry.resolve({"provider": "p"})[0].model_id == "input-heavy"
    assert registry.resolve("p:contextLength>=100000")[0].model_id == "output-heavy"


def test_equality_is_loose_between_numbers_and_text(entry_factory):
    """
    Demonstrates: The pinned loose-equality contract ("8000" equals 8000).
    """
    registry = build_registry(bind, {"p:m": entry_factory("m", "p", context_length=8000)})

    assert registry.resolve({"contextLength": "8000"})
    assert registry.resolve({"contextLength": "=8000"})
    assert registry.resolve("p:context_length=8000")
    assert not registry.resolve({"contextLength": "8001"})


def test_missing_field_never_matches(entry_factory):
    registry = build_registry(bind, {"p:m": entry_factory("m", "p")})

    assert registry.resolve("p:speed>0") == []
    assert registry.resolve("p:speed<100") == []
    assert registry.resolve({"speed": "0"}) == []


def test_text_fields_compare_lexicographically(entry_factory):
    registry = build_registry(bind, {"beta:m": entry_factory("m", "beta")})

    assert registry.resolve({"provider": ">alpha"})
    assert not registry.resolve({"provider": ">gamma"})


def test_name_condition_compares_registry_name(entry_factory):
    registry = build_registry(bind, {"alias:fast": entry_factory("real-id", "p")})

    assert registry.resolve({"name": "alias:fast"})
    assert not registry.resolve({"name": "p:real-id"})


def test_resolve_with_no_match_returns_empty_list(entry_factory):
    registry = build_registry(bind, {"p:m": entry_factory("m", "p", intelligence=1)})

    assert registry.resolve("p:intelligence>=5") == []


# ---------------------------------------------------------------------------
# Online selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_first_online_skips_offline_and_failing_probes(entry_factory):
    """
    Demonstrates: Probe failures count as unavailable and never reach the caller.
    """
    registry = build_registry(
        bind,
        {
            "p:cheapest": entry_factory("cheapest", "p", cost_per_million_input_tokens=0.1, is_available=offline),
            "p:cheap": entry_factory("cheap", "p", cost_per_million_input_tokens=0.5, is_available=broken),
            "p:fine": entry_factory("fine", "p", cost_per_million_input_tokens=1, is_available=online),
        },
    )

    bound = await registry.resolve_first_online({"provider": "p"})

    assert bound.entry.model_id == "fine"


@pytest.mark.asyncio
async def test_resolve_first_online_stops_at_first_available(entry_factory):
    calls: list[str] = []

    def probe(name: str):
        async def check() -> bool:
            calls.append(name)
            return True

        return check

    registry = build_registry(
        bind,
        {
            "p:a": entry_factory("a", "p", cost_per_million_input_tokens=1, is_available=probe("a")),
            "p:b": entry_factory("b", "p", cost_per_million_input_tokens=2, is_available=probe("b")),
        },
    )
    await asyncio.sleep(0)  # let the registration pre-warm finish
    calls.clear()

    await registry.resolve_first_online({"provider": "p"})

    assert calls == ["a"]


@pytest.mark.asyncio
async def test_resolve_first_online_raises_when_nothing_is_online(entry_factory):
    registry = build_registry(bind, {"p:m": entry_factory("m", "p", is_available=offline)})

    with pytest.raises(ModelNotFoundError):
        await registry.resolve_first_online("p:m")


@pytest.mark.asyncio
async def test_resolve_first_online_raises_for_unknown_requirement(entry_factory):
    registry = build_registry(bind, {"p:m": entry_factory("m", "p")})

    with pytest.raises(ModelNotFoundError):
        await registry.resolve_first_online("nobody:intelligence>99")


@pytest.mark.asyncio
async def test_prefer_hot_picks_warm_model_over_cheaper_cold_one(entry_factory):
    """
    Demonstrates: Hot pass first, cold fallback second.
    """
    registry = build_registry(
        bind,
        {
            "p:cold": entry_factory("cold", "p", cost_per_million_input_tokens=0.1, is_hot=offline),
            "p:hot": entry_factory("hot", "p", cost_per_million_input_tokens=5, is_hot=online),
        },
    )

    assert (await registry.resolve_first_online({"provider": "p"}, prefer_hot=True)).entry.model_id == "hot"
    assert (await registry.resolve_first_online({"provider": "p"})).entry.model_id == "cold"


@pytest.mark.asyncio
async def test_prefer_hot_falls_back_to_cold_model(entry_factory):
    registry = build_registry(bind, {"p:cold": entry_factory("cold", "p", is_hot=broken)})

    assert (await registry.resolve_first_online("p:cold", prefer_hot=True)).entry.model_id == "cold"


@pytest.mark.asyncio
async def test_feature_parameters_are_parsed_for_the_selected_entry(entry_factory):
    """
    Demonstrates: "?k=v&flag" after the requirement selects typed features.
    """
    features = {
        "websearch": FeatureSpec(type=FeatureType.BOOLEAN, default_value=False),
        "effort": FeatureSpec(type=FeatureType.ENUM, default_value="medium", values=("low", "medium", "high")),
        "budget": FeatureSpec(type=FeatureType.NUMBER, default_value=0),
    }
    registry = build_registry(bind, {"p:m": entry_factory("m", "p", features=features)})

    bound = await registry.resolve_first_online("p:m?websearch&effort=high&budget=2.5")

    assert bound.features == {"websearch": True, "effort": "high", "budget": 2.5}


@pytest.mark.asyncio
async def test_unknown_feature_parameter_is_rejected(entry_factory):
    registry = build_registry(bind, {"p:m": entry_factory("m", "p")})

    with pytest.raises(InputValidationError):
        await registry.resolve_first_online("p:m?turbo=1")


# ---------------------------------------------------------------------------
# Categories and status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embedding_registry_selects_by_name_only(entry_factory):
    registry = ModelRegistry(chat_client_factory=bind)
    registry.register_entries([entry_factory("embed-small", "p", category=ModelCategory.EMBEDDING)])

    assert registry.embedding.resolve("p:embed-small")
    assert registry.embedding.resolve({"model": "p:embed-small"})
    assert registry.embedding.resolve("p:contextLength>1") == []
    assert registry.chat.names() == []

    bound = await registry.embedding.resolve_first_online("p:embed-small")
    assert bound.entry.model_id == "embed-small"


@pytest.mark.asyncio
async def test_statuses_report_online_cold_and_offline(entry_factory):
    registry = build_registry(
        bind,
        {
            "a:up": entry_factory("up", "a"),
            "a:cold": entry_factory("cold", "a", is_hot=offline),
            "b:down": entry_factory("down", "b", is_available=offline),
        },
    )

    grouped = await registry.statuses_by_provider()

    assert grouped["a"]["a:up"].status == ModelStatus.ONLINE
    assert grouped["a"]["a:cold"].status == ModelStatus.COLD
    assert grouped["b"]["b:down"].status == ModelStatus.OFFLINE
