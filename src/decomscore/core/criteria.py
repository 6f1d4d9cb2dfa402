"""Criteria evaluation: conjunctive clauses, sorting, paging and set plans."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

import structlog

from ..schemas import ClusterRecord, Criteria, MultiCriteriaPlan
from ..schemas.criteria import (
    BoolEqualsClause,
    Clause,
    ContainsAnyClause,
    DoubleRangeClause,
    IntRangeClause,
    StringInClause,
    StringNotInClause,
)
from .accessors import AccessorRegistry, FieldKind, default_registry
from .features import FeatureRegistry
from .normalization import normalizer_for
from .scoring import percentile

_NUMERIC = (FieldKind.DOUBLE, FieldKind.INTEGER)

UNKNOWN_VALUE = "(null)"


@dataclass(frozen=True, slots=True)
class ValueCount:
    value: str
    count: int


@dataclass(frozen=True, slots=True)
class FieldSummary:
    """Distribution of a numeric field; bounds are ``None`` when nothing was observed."""

    field: str
    count: int
    nulls: int
    min: float | None = None
    p25: float | None = None
    median: float | None = None
    p75: float | None = None
    max: float | None = None
    mean: float | None = None


def within_bounds(value: float | None, low: float | None, high: float | None) -> bool:
    """Inclusive bounds check; an unknown value never satisfies a bound."""
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class CriteriaEvaluator:
    """Apply :class:`Criteria` and :class:`MultiCriteriaPlan` to record collections."""

    def __init__(
        self,
        *,
        accessors: AccessorRegistry | None = None,
        features: FeatureRegistry | None = None,
    ) -> None:
        self._accessors = accessors or default_registry()
        self._features = features or FeatureRegistry(self._accessors)
        self._logger = structlog.get_logger(__name__)

    def apply(self, records: Iterable[ClusterRecord], criteria: Criteria) -> list[ClusterRecord]:
        matched = self.filter(records, criteria)
        ordered = self.sort(matched, criteria.sort_by, descending=criteria.sort_descending)
        return self._page(ordered, criteria.skip, criteria.take)

    def filter(self, records: Iterable[ClusterRecord], criteria: Criteria) -> list[ClusterRecord]:
        """Keep records matching every clause, preserving input order."""
        predicates = [self._compile(clause) for clause in criteria.to_clauses()]
        return [record for record in records if all(p(record) for p in predicates)]

    def apply_many(
        self,
        records: Iterable[ClusterRecord],
        plan: MultiCriteriaPlan,
    ) -> list[ClusterRecord]:
        """Evaluate each plan item against the full set and fold by union or intersection."""
        population = list(records)
        if not plan.items:
            return []

        identities = {id(record): self._identity(record, index) for index, record in enumerate(population)}

        combined: dict[Any, ClusterRecord] | None = None
        for criteria in plan.items:
            result = {identities[id(record)]: record for record in self.apply(population, criteria)}
            if combined is None:
                combined = result
            elif plan.mode == "intersect":
                combined = {key: record for key, record in combined.items() if key in result}
            else:
                for key, record in result.items():
                    combined.setdefault(key, record)

        merged = list(combined.values()) if combined else []
        self._logger.debug(
            "criteria.plan_applied",
            mode=plan.mode,
            items=len(plan.items),
            population=len(population),
            matched=len(merged),
        )
        ordered = self.sort(merged, plan.sort_by, descending=plan.sort_descending)
        return self._page(ordered, plan.skip, plan.take)

    def sort(
        self,
        records: Sequence[ClusterRecord],
        field: str | None,
        *,
        descending: bool = True,
    ) -> list[ClusterRecord]:
        """Stable sort by ``field`` with unknown values last in either direction.

        An unrecognized field leaves the order untouched.
        """
        getter = self._sort_getter(field)
        if getter is None:
            return list(records)

        present: list[tuple[Any, ClusterRecord]] = []
        missing: list[ClusterRecord] = []
        for record in records:
            value = getter(record)
            if value is None:
                missing.append(record)
            else:
                present.append((value.casefold() if isinstance(value, str) else value, record))
        present.sort(key=lambda item: item[0], reverse=descending)
        return [record for _, record in present] + missing

    def distinct(
        self,
        records: Iterable[ClusterRecord],
        field: str,
    ) -> list[ValueCount] | None:
        """Distinct values of ``field`` with counts, most frequent first.

        Values group case-insensitively under their first-seen spelling;
        unknown values are counted as ``"(null)"``. ``None`` for an
        unrecognized field.
        """
        accessor = self._accessors.resolve(field)
        if accessor is None:
            return None

        counts: dict[str, int] = {}
        labels: dict[str, str] = {}
        for record in records:
            value = accessor(record)
            text = UNKNOWN_VALUE if value is None else str(value)
            key = text.casefold()
            labels.setdefault(key, text)
            counts[key] = counts.get(key, 0) + 1

        items = [ValueCount(value=labels[key], count=count) for key, count in counts.items()]
        items.sort(key=lambda item: (-item.count, item.value.casefold()))
        return items

    def summary_stats(
        self,
        records: Iterable[ClusterRecord],
        field: str,
    ) -> FieldSummary | None:
        """Min, quartiles, max and mean of a numeric or derived field.

        ``None`` when ``field`` is unknown or not numeric.
        """
        getter = self._numeric_getter(field)
        if getter is None:
            return None
        name, read = getter

        values: list[float] = []
        total = 0
        for record in records:
            total += 1
            value = read(record)
            if value is not None and math.isfinite(value):
                values.append(float(value))
        values.sort()

        if not values:
            return FieldSummary(field=name, count=0, nulls=total)
        return FieldSummary(
            field=name,
            count=len(values),
            nulls=total - len(values),
            min=values[0],
            p25=percentile(values, 0.25),
            median=percentile(values, 0.5),
            p75=percentile(values, 0.75),
            max=values[-1],
            mean=math.fsum(values) / len(values),
        )

    def _numeric_getter(
        self, field: str
    ) -> tuple[str, Callable[[ClusterRecord], float | None]] | None:
        accessor = self._accessors.resolve_kind(field, *_NUMERIC)
        if accessor is not None:
            return accessor.name, accessor
        feature = self._features.resolve(field)
        if feature is None or not self._features.is_derived(feature):
            return None
        return feature, lambda record: self._features.derived_value(feature, record)[1]

    @staticmethod
    def _page(records: list[ClusterRecord], skip: int, take: int | None) -> list[ClusterRecord]:
        end = None if take is None else skip + take
        return records[skip:end]

    @staticmethod
    def _identity(record: ClusterRecord, index: int) -> Any:
        record_id = record.record_id
        if record_id:
            return record_id.strip().casefold()
        return ("#position", index)

    def _sort_getter(self, field: str | None) -> Callable[[ClusterRecord], Any] | None:
        if not field:
            return None
        accessor = self._accessors.resolve(field)
        if accessor is not None:
            return accessor
        feature = self._features.resolve(field)
        if feature is not None and self._features.is_derived(feature):
            return lambda record: self._features.derived_value(feature, record)[1]
        return None

    def _no_match(self, clause: Clause) -> Callable[[ClusterRecord], bool]:
        self._logger.debug("criteria.unknown_field", field=clause.field, clause=clause.kind)
        return lambda record: False

    def _compile(self, clause: Clause) -> Callable[[ClusterRecord], bool]:
        if isinstance(clause, (StringInClause, StringNotInClause, ContainsAnyClause)):
            return self._compile_string(clause)
        if isinstance(clause, BoolEqualsClause):
            accessor = self._accessors.resolve_kind(clause.field, FieldKind.BOOLEAN)
            if accessor is None:
                return self._no_match(clause)
            return lambda record: accessor(record) is clause.expected
        if isinstance(clause, IntRangeClause):
            accessor = self._accessors.resolve_kind(clause.field, FieldKind.INTEGER)
            if accessor is None:
                return self._no_match(clause)
            return lambda record: within_bounds(accessor(record), clause.min, clause.max)
        if isinstance(clause, DoubleRangeClause):
            return self._compile_double_range(clause)
        raise TypeError(f"Unsupported clause: {clause!r}")

    def _compile_string(
        self,
        clause: StringInClause | StringNotInClause | ContainsAnyClause,
    ) -> Callable[[ClusterRecord], bool]:
        accessor = self._accessors.resolve_kind(clause.field, FieldKind.STRING)
        if accessor is None:
            return self._no_match(clause)
        normalize = normalizer_for(accessor.name)
        wanted = {normalize(value) for value in clause.values}
        wanted.discard("")

        if isinstance(clause, StringInClause):
            def predicate(record: ClusterRecord) -> bool:
                value = accessor(record)
                return value is not None and normalize(value) in wanted
        elif isinstance(clause, StringNotInClause):
            def predicate(record: ClusterRecord) -> bool:
                value = accessor(record)
                return value is None or normalize(value) not in wanted
        else:
            def predicate(record: ClusterRecord) -> bool:
                value = accessor(record)
                if value is None:
                    return False
                haystack = normalize(value)
                return any(needle in haystack for needle in wanted)
        return predicate

    def _compile_double_range(self, clause: DoubleRangeClause) -> Callable[[ClusterRecord], bool]:
        accessor = self._accessors.resolve_kind(clause.field, *_NUMERIC)
        if accessor is not None:
            return lambda record: within_bounds(accessor(record), clause.min, clause.max)
        feature = self._features.resolve(clause.field)
        if feature is None or not self._features.is_derived(feature):
            return self._no_match(clause)
        return lambda record: within_bounds(
            self._features.derived_value(feature, record)[1], clause.min, clause.max
        )
