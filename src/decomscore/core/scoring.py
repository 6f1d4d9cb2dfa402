"""Explainable weighted scoring over a cluster population."""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

import structlog

from ..schemas import ClusterRecord
from .features import FeatureKind, FeatureRegistry
from .weights import WeightConfig

NEUTRAL = 0.5


@dataclass
class ScoringConfig:
    """Normalization and weighting options for a scoring pass."""

    winsorize: bool = True
    lower_quantile: float = 0.02
    upper_quantile: float = 0.98
    per_feature_quantiles: dict[str, tuple[float, float]] = None  # type: ignore[assignment]
    rank_normalize: tuple[str, ...] = ()
    include_all_numeric: bool = False
    include_all_numeric_budget: float = 0.0
    min_winsorize_population: int = 5
    degenerate_epsilon: float = 1e-9

    def __post_init__(self) -> None:
        if self.per_feature_quantiles is None:
            self.per_feature_quantiles = {}
        self.per_feature_quantiles = {
            name: (float(bounds[0]), float(bounds[1]))
            for name, bounds in self.per_feature_quantiles.items()
        }
        self.rank_normalize = tuple(self.rank_normalize)


@dataclass(frozen=True, slots=True)
class FactorStatistics:
    """Observed bounds for one feature, after optional winsorization."""

    min: float | None
    max: float | None
    count: int = 0


@dataclass(frozen=True, slots=True)
class FactorContribution:
    """How a single feature moved a record's score.

    ``normalized`` is the value actually weighted: min-max scaled into
    [0, 1] and already inverted when lower raw values are preferred.
    """

    feature: str
    raw: float | None
    normalized: float
    inverted: bool
    weight: float
    contribution: float
    min_seen: float | None
    max_seen: float | None
    kind: FeatureKind


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    record_id: str
    score: float
    factors: tuple[FactorContribution, ...]
    record: ClusterRecord | None = field(default=None, compare=False, repr=False)

    def top_factors(self, limit: int = 5) -> tuple[FactorContribution, ...]:
        """Factors with the largest absolute contribution first."""
        ranked = sorted(self.factors, key=lambda factor: abs(factor.contribution), reverse=True)
        return tuple(ranked[:limit])


@dataclass(slots=True)
class ScoreResult:
    rankings: list[ScoreBreakdown]
    applied_weights: dict[str, float]
    feature_stats: dict[str, FactorStatistics]
    ignored_features: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WhatIfResult:
    """Score of one record before and after hypothetical edits."""

    record_id: str
    before: ScoreBreakdown
    after: ScoreBreakdown
    delta: float
    ignored_edits: tuple[str, ...] = ()


def percentile(sorted_values: Sequence[float], q: float) -> float:
    """Linearly interpolated percentile of an ascending sequence."""
    if not sorted_values:
        return math.nan
    if q <= 0:
        return sorted_values[0]
    if q >= 1:
        return sorted_values[-1]
    position = (len(sorted_values) - 1) * q
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return sorted_values[lower]
    fraction = position - lower
    return sorted_values[lower] * (1 - fraction) + sorted_values[upper] * fraction


def empirical_cdf(sorted_values: Sequence[float], value: float) -> float:
    """Share of observed values at or below ``value``."""
    if not sorted_values:
        return NEUTRAL
    return bisect_right(sorted_values, value) / len(sorted_values)


class ScoringEngine:
    """Rank records by a weighted sum of normalized features.

    Every call recomputes population statistics from the records it is given;
    the engine keeps no state between calls.
    """

    def __init__(
        self,
        *,
        features: FeatureRegistry | None = None,
        config: ScoringConfig | None = None,
        default_weights: WeightConfig | None = None,
    ) -> None:
        self._features = features or FeatureRegistry()
        self._config = config or ScoringConfig()
        self._default_weights = default_weights
        self._logger = structlog.get_logger(__name__)

    @property
    def features(self) -> FeatureRegistry:
        return self._features

    @property
    def config(self) -> ScoringConfig:
        return self._config

    @property
    def default_weights(self) -> WeightConfig:
        return self._default_weights if self._default_weights is not None else WeightConfig.default()

    def score_all(
        self,
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> ScoreResult:
        population = list(records)
        options = options or self._config
        applied, ignored = self._prepare_weights(population, weights, options)
        stats, observed = self._compute_stats(population, applied, options)
        rank_features = self._resolve_names(options.rank_normalize)

        rankings = [
            self._score_record(
                record,
                applied,
                stats,
                observed,
                rank_features,
                epsilon=options.degenerate_epsilon,
            )
            for record in population
        ]
        rankings.sort(key=lambda item: item.score, reverse=True)

        self._logger.debug(
            "scoring.completed",
            records=len(population),
            features=len(applied),
            ignored=ignored,
        )
        return ScoreResult(
            rankings=rankings,
            applied_weights=applied,
            feature_stats=stats,
            ignored_features=ignored,
        )

    def explain(
        self,
        record_id: str,
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> ScoreBreakdown | None:
        """Breakdown for one record, scored against the whole population."""
        wanted = record_id.strip().casefold()
        result = self.score_all(records, weights, options)
        for breakdown in result.rankings:
            if breakdown.record_id.casefold() == wanted:
                return breakdown
        return None

    def applied_stats(
        self,
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> dict[str, FactorStatistics]:
        """Normalization bounds the scorer would use for these inputs."""
        population = list(records)
        options = options or self._config
        applied, _ = self._prepare_weights(population, weights, options)
        stats, _ = self._compute_stats(population, applied, options)
        return stats

    def compare(
        self,
        record_ids: Iterable[str],
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> ScoreResult:
        """Score the population and keep only the requested records, best first.

        Unknown ids are skipped.
        """
        wanted = {record_id.strip().casefold() for record_id in record_ids}
        result = self.score_all(records, weights, options)
        result.rankings = [
            item for item in result.rankings if item.record_id.casefold() in wanted
        ]
        return result

    def what_if(
        self,
        record_id: str,
        edits: Mapping[str, Any],
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> WhatIfResult | None:
        """Rescore one record with ``edits`` applied; ``None`` if the id is absent."""
        population = list(records)
        wanted = record_id.strip().casefold()
        target = next(
            (
                record
                for record in population
                if record.record_id and record.record_id.casefold() == wanted
            ),
            None,
        )
        if target is None:
            return None
        (result,) = self.bulk_what_if([target], edits, population, weights, options)
        return result

    def bulk_what_if(
        self,
        cohort: Iterable[ClusterRecord],
        edits: Mapping[str, Any],
        records: Iterable[ClusterRecord],
        weights: WeightConfig | None = None,
        options: ScoringConfig | None = None,
    ) -> list[WhatIfResult]:
        """Apply ``edits`` to every cohort member and rescore the population.

        ``cohort`` must hold records taken from ``records``; both passes use
        statistics over the whole population, so edits can move the
        normalization bounds. Results are ordered by the edited score.
        """
        population = list(records)
        members = {id(record) for record in cohort}

        edited_population: list[ClusterRecord] = []
        origin: dict[int, int] = {}
        ignored: list[str] = []
        for record in population:
            if id(record) in members:
                edited, unknown = record.with_edits(edits)
                ignored = unknown
                origin[id(edited)] = id(record)
                edited_population.append(edited)
            else:
                edited_population.append(record)

        if not origin:
            return []
        if ignored:
            self._logger.warning("scoring.edits_ignored", fields=ignored)

        before = {
            id(item.record): item
            for item in self.score_all(population, weights, options).rankings
        }
        results: list[WhatIfResult] = []
        for item in self.score_all(edited_population, weights, options).rankings:
            source = origin.get(id(item.record))
            if source is None:
                continue
            previous = before[source]
            results.append(
                WhatIfResult(
                    record_id=previous.record_id,
                    before=previous,
                    after=item,
                    delta=round(item.score - previous.score, 6),
                    ignored_edits=tuple(ignored),
                )
            )
        return results

    def _prepare_weights(
        self,
        population: Sequence[ClusterRecord],
        weights: WeightConfig | None,
        options: ScoringConfig,
    ) -> tuple[dict[str, float], list[str]]:
        source = weights if weights is not None else self._default_weights
        if source is None:
            source = WeightConfig.default()

        resolved: dict[str, float] = {}
        ignored: list[str] = []
        for name, weight in source.weights.items():
            feature = self._features.resolve(name)
            if feature is None:
                ignored.append(name)
                continue
            resolved[feature] = resolved.get(feature, 0.0) + weight

        if ignored:
            self._logger.warning("scoring.features_ignored", features=ignored)

        if options.include_all_numeric and options.include_all_numeric_budget > 0:
            resolved.update(
                self._exploration_weights(population, resolved, options.include_all_numeric_budget)
            )

        rebalanced = WeightConfig(weights=resolved).rebalance()
        return rebalanced.active(), ignored

    def _exploration_weights(
        self,
        population: Sequence[ClusterRecord],
        explicit: dict[str, float],
        budget: float,
    ) -> dict[str, float]:
        candidates = [
            name
            for name in self._features.exploration_candidates()
            if name not in explicit
            and any(self._features.value(name, record) is not None for record in population)
        ]
        if not candidates:
            return {}
        share = budget / len(candidates)
        return {name: share for name in candidates}

    def _resolve_names(self, names: Iterable[str]) -> set[str]:
        resolved = (self._features.resolve(name) for name in names)
        return {name for name in resolved if name is not None}

    def _quantiles(self, feature: str, options: ScoringConfig) -> tuple[float, float]:
        lower, upper = options.lower_quantile, options.upper_quantile
        for name, bounds in options.per_feature_quantiles.items():
            if self._features.resolve(name) == feature:
                lower, upper = bounds
                break
        return min(max(lower, 0.0), 0.49), min(max(upper, 0.51), 1.0)

    def _compute_stats(
        self,
        population: Sequence[ClusterRecord],
        applied: dict[str, float],
        options: ScoringConfig,
    ) -> tuple[dict[str, FactorStatistics], dict[str, list[float]]]:
        stats: dict[str, FactorStatistics] = {}
        observed: dict[str, list[float]] = {}
        for feature in applied:
            values: list[float] = []
            for record in population:
                value = self._features.value(feature, record)
                if value is not None and math.isfinite(value):
                    values.append(value)
            values.sort()
            observed[feature] = values

            if not values:
                stats[feature] = FactorStatistics(min=None, max=None, count=0)
            elif options.winsorize and len(values) >= options.min_winsorize_population:
                lower, upper = self._quantiles(feature, options)
                stats[feature] = FactorStatistics(
                    min=percentile(values, lower),
                    max=percentile(values, upper),
                    count=len(values),
                )
            else:
                stats[feature] = FactorStatistics(min=values[0], max=values[-1], count=len(values))
        return stats, observed

    def _normalize(
        self,
        raw: float | None,
        bounds: FactorStatistics,
        *,
        epsilon: float,
        sorted_values: Sequence[float] | None = None,
    ) -> float:
        if raw is None or not math.isfinite(raw):
            return NEUTRAL
        if bounds.min is None or bounds.max is None:
            return NEUTRAL
        if abs(bounds.max - bounds.min) < epsilon:
            return NEUTRAL
        clamped = min(max(raw, bounds.min), bounds.max)
        if sorted_values:
            return empirical_cdf(sorted_values, clamped)
        scaled = (clamped - bounds.min) / (bounds.max - bounds.min)
        if not math.isfinite(scaled):
            return NEUTRAL
        return min(max(scaled, 0.0), 1.0)

    def _score_record(
        self,
        record: ClusterRecord,
        applied: dict[str, float],
        stats: dict[str, FactorStatistics],
        observed: dict[str, list[float]],
        rank_features: set[str],
        *,
        epsilon: float,
    ) -> ScoreBreakdown:
        total = 0.0
        factors: list[FactorContribution] = []
        for feature, weight in applied.items():
            raw = self._features.value(feature, record)
            bounds = stats[feature]
            inverted = not self._features.higher_is_better(feature)
            normalized = self._normalize(
                raw,
                bounds,
                epsilon=epsilon,
                sorted_values=observed[feature] if feature in rank_features else None,
            )
            if inverted:
                normalized = 1.0 - normalized
            contribution = weight * normalized
            total += contribution
            factors.append(
                FactorContribution(
                    feature=feature,
                    raw=raw,
                    normalized=normalized,
                    inverted=inverted,
                    weight=weight,
                    contribution=contribution,
                    min_seen=bounds.min,
                    max_seen=bounds.max,
                    kind="derived" if self._features.is_derived(feature) else "raw",
                )
            )
        return ScoreBreakdown(
            record_id=record.record_id or "(unknown)",
            score=round(total, 6),
            factors=tuple(factors),
            record=record,
        )
