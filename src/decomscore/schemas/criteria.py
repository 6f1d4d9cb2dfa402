"""Filter criteria schemas and their compiled clause variants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _swap_inverted_bounds(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    min_key = "Min" if "Min" in data else "min"
    max_key = "Max" if "Max" in data else "max"
    low, high = data.get(min_key), data.get(max_key)
    if isinstance(low, (int, float)) and isinstance(high, (int, float)) and low > high:
        return {**data, min_key: high, max_key: low}
    return data


class IntRange(BaseModel):
    """Inclusive integer bounds; either side may be open."""

    min: int | None = Field(default=None, alias="Min")
    max: int | None = Field(default=None, alias="Max")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _order_bounds(cls, data: Any) -> Any:
        return _swap_inverted_bounds(data)


class DoubleRange(BaseModel):
    """Inclusive floating point bounds; either side may be open."""

    min: float | None = Field(default=None, alias="Min")
    max: float | None = Field(default=None, alias="Max")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _order_bounds(cls, data: Any) -> Any:
        return _swap_inverted_bounds(data)


@dataclass(frozen=True, slots=True)
class StringInClause:
    field: str
    values: tuple[str, ...]
    kind: Literal["string_in"] = "string_in"


@dataclass(frozen=True, slots=True)
class StringNotInClause:
    field: str
    values: tuple[str, ...]
    kind: Literal["string_not_in"] = "string_not_in"


@dataclass(frozen=True, slots=True)
class ContainsAnyClause:
    field: str
    values: tuple[str, ...]
    kind: Literal["contains_any"] = "contains_any"


@dataclass(frozen=True, slots=True)
class BoolEqualsClause:
    field: str
    expected: bool
    kind: Literal["bool_equals"] = "bool_equals"


@dataclass(frozen=True, slots=True)
class IntRangeClause:
    field: str
    min: int | None
    max: int | None
    kind: Literal["int_range"] = "int_range"


@dataclass(frozen=True, slots=True)
class DoubleRangeClause:
    field: str
    min: float | None
    max: float | None
    kind: Literal["double_range"] = "double_range"


Clause = Union[
    StringInClause,
    StringNotInClause,
    ContainsAnyClause,
    BoolEqualsClause,
    IntRangeClause,
    DoubleRangeClause,
]


class Criteria(BaseModel):
    """Composable filter over record attributes.

    Accepts both snake_case keys and the PascalCase keys emitted by the
    request-parsing layer (``StringIn``, ``DoubleRanges``, ``SortBy`` ...).
    """

    string_in: dict[str, list[str]] = Field(default_factory=dict, alias="StringIn")
    string_not_in: dict[str, list[str]] = Field(default_factory=dict, alias="StringNotIn")
    string_contains_any: dict[str, list[str]] = Field(
        default_factory=dict, alias="StringContainsAny"
    )
    bool_equals: dict[str, bool] = Field(default_factory=dict, alias="BoolEquals")
    int_ranges: dict[str, IntRange] = Field(default_factory=dict, alias="IntRanges")
    double_ranges: dict[str, DoubleRange] = Field(default_factory=dict, alias="DoubleRanges")
    sort_by: str | None = Field(default=None, alias="SortBy")
    sort_descending: bool = Field(default=True, alias="SortDescending")
    skip: int = Field(default=0, ge=0, alias="Skip")
    take: int | None = Field(default=None, ge=0, alias="Take")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    def to_clauses(self) -> list[Clause]:
        """Compile the maps into tagged clauses in evaluation order."""
        clauses: list[Clause] = []
        clauses.extend(
            StringInClause(field, tuple(values))
            for field, values in self.string_in.items()
            if values
        )
        clauses.extend(
            StringNotInClause(field, tuple(values))
            for field, values in self.string_not_in.items()
            if values
        )
        clauses.extend(
            ContainsAnyClause(field, tuple(values))
            for field, values in self.string_contains_any.items()
            if values
        )
        clauses.extend(
            BoolEqualsClause(field, expected) for field, expected in self.bool_equals.items()
        )
        clauses.extend(
            IntRangeClause(field, bounds.min, bounds.max)
            for field, bounds in self.int_ranges.items()
        )
        clauses.extend(
            DoubleRangeClause(field, bounds.min, bounds.max)
            for field, bounds in self.double_ranges.items()
        )
        return clauses

    def filter_only(self) -> "Criteria":
        """Copy without sorting or paging, for filter-then-score flows."""
        return self.model_copy(update={"sort_by": None, "skip": 0, "take": None})


class MultiCriteriaPlan(BaseModel):
    """Several criteria combined by union or intersection, then sorted and paged once."""

    mode: Literal["union", "intersect"] = Field(default="union", alias="Mode")
    items: list[Criteria] = Field(default_factory=list, alias="Items")
    sort_by: str | None = Field(default=None, alias="SortBy")
    sort_descending: bool = Field(default=True, alias="SortDescending")
    skip: int = Field(default=0, ge=0, alias="Skip")
    take: int | None = Field(default=None, ge=0, alias="Take")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _lower_mode(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("mode", "Mode"):
                if isinstance(data.get(key), str):
                    data = {**data, key: data[key].strip().lower()}
        return data
