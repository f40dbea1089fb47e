"""Requirement Queries - Typed Filters for Model Selection.

A requirement query selects registry entries by capability. Three input
forms are accepted and all parse into one RequirementQuery:

    "anthropic:claude-sonnet"          exact registered name -> {name: ...}
    "openai:contextLength>=100000,speed>3"
                                       provider + comma-separated filters
    {"intelligence": ">=4", "provider": "auto"}
                                       mapping of key -> condition

Grammar:
    query     := NAME | PROVIDER ":" filter ("," filter)*
    filter    := KEY OP VALUE          KEY = [a-zA-Z0-9_]+, OP = [><]?[><=]
    condition := OP? VALUE             OP = [<>]?[=<>]?, VALUE not starting with = < >

Comparison Semantics (pinned for compatibility):
    "=" / "":  loose equality (numbers compare numerically against the
               text, strings compare as text, missing fields never match).
               The "name" key compares the entry's registry name.
    ">" "<" ">=" "<=": relational comparison of the raw field against the
               raw text: text-vs-text compares lexicographically, anything
               else compares numerically; missing or non-numeric never match.
    Anything else the condition grammar admits ("<<", "<>", ...) is rejected.
"""

from __future__ import annotations

import logging
import math
import operator
import re
from collections.abc import Callable, Collection, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from .domain_type import ComparisonOperator
from .errors import RequirementSyntaxError

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_CONTEXT_LENGTH = 10_000
ANY_PROVIDER = "auto"

_FILTER_PATTERN = re.compile(r"^([a-zA-Z0-9_]+)([><]?[><=])(.+)$", re.DOTALL)
_CONDITION_PATTERN = re.compile(r"^([<>]?[=<>]?)([^=<>].*)$", re.DOTALL)
_DECIMAL_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_LEADING_INTEGER = re.compile(r"^\s*([+-]?\d+)")
_RADIX_PREFIXES = {"0x": 16, "0o": 8, "0b": 2}

_RELATIONAL: dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GREATER: operator.gt,
    ComparisonOperator.LESS: operator.lt,
    ComparisonOperator.GREATER_OR_EQUAL: operator.ge,
    ComparisonOperator.LESS_OR_EQUAL: operator.le,
}


def to_number(value: Any) -> float:
    """Numeric coercion with JavaScript Number() rules (NaN when invalid)."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        return float(value)
    if not isinstance(value, str):
        return math.nan

    text = value.strip()
    if not text:
        return 0.0
    if _DECIMAL_PATTERN.match(text):
        return float(text)
    if text in {"Infinity", "+Infinity"}:
        return math.inf
    if text == "-Infinity":
        return -math.inf
    radix = _RADIX_PREFIXES.get(text[:2].lower())
    if radix is not None:
        try:
            return float(int(text[2:], radix))
        except ValueError:
            return math.nan
    return math.nan


def to_text(value: Any) -> str:
    """String coercion with JavaScript String() rules for scalar values."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def loose_equals(field: Any, value: str) -> bool:
    """Loose equality between an entry field and query text.

    Strings and numbers are allowed to coexist, so 8000 equals "8000".
    """
    if field is None:
        return False
    if isinstance(field, str):
        return field == value
    if isinstance(field, bool | int | float):
        return to_number(field) == to_number(value)
    return to_text(field) == value


def loose_compare(field: Any, op: ComparisonOperator, value: str) -> bool:
    """Relational comparison between an entry field and query text."""
    compare = _RELATIONAL[op]
    if isinstance(field, str):
        return compare(field, value)
    left = to_number(field)
    right = to_number(value)
    if math.isnan(left) or math.isnan(right):
        return False
    return compare(left, right)


def leading_integer(value: str) -> int | None:
    """Integer prefix of value (like parseInt), or None."""
    match = _LEADING_INTEGER.match(value)
    return int(match.group(1)) if match else None


class Condition(BaseModel):
    """One Parsed Requirement: key, operator and raw value text."""

    key: str
    operator: ComparisonOperator
    value: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(cls, key: str, condition: Any) -> Condition:
        """Parse "<op><value>" (or a bare value) for key.

        Raises:
            RequirementSyntaxError: If the operator is outside the supported set
        """
        text = to_text(condition)
        match = _CONDITION_PATTERN.match(text)
        if match is None:
            raise RequirementSyntaxError(f"Unknown operator in requirement '{key}': {text!r}")
        raw_operator, value = match.groups()
        try:
            op = ComparisonOperator(raw_operator)
        except ValueError:
            raise RequirementSyntaxError(f"Unknown operator '{raw_operator}'") from None
        return cls(key=key, operator=op, value=value)

    def matches(self, name: str, entry: Any) -> bool:
        if self.operator in (ComparisonOperator.EQUALS, ComparisonOperator.EQUALS_IMPLICIT):
            if self.key == "name":
                return name == self.value
            return loose_equals(entry.requirement_value(self.key), self.value)
        return loose_compare(entry.requirement_value(self.key), self.operator, self.value)


class RequirementQuery(BaseModel):
    """Parsed Requirement Query - a conjunction of Conditions.

    An entry is eligible only when every condition passes. An empty query
    matches every entry.
    """

    conditions: tuple[Condition, ...] = ()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(
        cls,
        query: str | Mapping[str, Any],
        known_names: Collection[str] = (),
    ) -> RequirementQuery:
        """Normalize any accepted query form.

        Args:
            query: Bare name, compact "provider:filters" string, or mapping
            known_names: Registered names; an exact match wins over parsing

        Raises:
            RequirementSyntaxError: If any condition carries an unknown operator
        """
        if isinstance(query, str):
            requirements = cls._parse_compact(query, known_names)
        else:
            requirements = {key: value for key, value in query.items() if value is not None}

        provider = requirements.get("provider")
        if provider is not None and to_text(provider) in {ANY_PROVIDER, ""}:
            del requirements["provider"]

        return cls(conditions=tuple(Condition.parse(key, value) for key, value in requirements.items()))

    @staticmethod
    def _parse_compact(query: str, known_names: Collection[str]) -> dict[str, Any]:
        if query in known_names:
            return {"name": query}

        parts = query.split(":")
        if len(parts) < 2 or not parts[1]:
            return {"name": parts[0]}

        requirements: dict[str, Any] = {"provider": parts[0]}
        for requirement in parts[1].split(","):
            match = _FILTER_PATTERN.match(requirement)
            if match is None:
                logger.warning("Ignoring malformed requirement filter %r in %r", requirement, query)
                continue
            key, op, value = match.groups()
            requirements[key] = f"{op}{value}"
        return requirements

    def estimated_context_length(self, baseline: int = DEFAULT_ESTIMATED_CONTEXT_LENGTH) -> int:
        """Context size used for price ranking: baseline raised to any contextLength bound."""
        estimate = baseline
        for condition in self.conditions:
            if condition.key in {"contextLength", "context_length"}:
                bound = leading_integer(condition.value)
                if bound is not None:
                    estimate = max(estimate, bound)
        return estimate

    def matches(self, name: str, entry: Any) -> bool:
        return all(condition.matches(name, entry) for condition in self.conditions)


__all__ = [
    "ANY_PROVIDER",
    "Condition",
    "DEFAULT_ESTIMATED_CONTEXT_LENGTH",
    "RequirementQuery",
    "leading_integer",
    "loose_compare",
    "loose_equals",
    "to_number",
    "to_text",
]
