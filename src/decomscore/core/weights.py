"""Named feature weights with rebalancing."""

from __future__ import annotations

import math
from typing import Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..schemas.cluster import canonical_key

_SUM_TOLERANCE = 1e-12

logger = structlog.get_logger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "cluster_age_years": 0.2126,
    "effective_core_utilization": 0.2415,
    "idle_core_volume": 0.1159,
    "region_health_score": 0.0773,
    "oos_node_ratio": 0.1449,
    "stranded_cores_ratio_dng": 0.0580,
    "stranded_cores_ratio_tip": 0.0193,
    "decommission_years_remaining": 0.0483,
    "hotness_rank": 0.0193,
    "has_sql": 0.0290,
    "has_platform_tenant": 0.0145,
    "has_warp": 0.0145,
    "has_slb": 0.0048,
}


class WeightConfig(BaseModel):
    """Feature name to weight mapping.

    Weights at or below zero disable a feature. Scoring always consumes the
    rebalanced form, where active weights sum to 1.0.
    """

    weights: dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("weights")
    @classmethod
    def _finite(cls, value: dict[str, float]) -> dict[str, float]:
        bad = sorted(name for name, weight in value.items() if not math.isfinite(weight))
        if bad:
            raise ValueError(f"weights must be finite numbers: {', '.join(bad)}")
        return value

    @classmethod
    def default(cls) -> "WeightConfig":
        return cls(weights=DEFAULT_WEIGHTS).rebalance()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float] | None) -> "WeightConfig":
        """Build from a plain mapping, merging keys that differ only in spelling."""
        merged: dict[str, float] = {}
        first_spelling: dict[str, str] = {}
        for name, weight in (mapping or {}).items():
            key = canonical_key(name)
            label = first_spelling.setdefault(key, name)
            merged[label] = merged.get(label, 0.0) + float(weight)
        return cls(weights=merged)

    def rebalance(self) -> "WeightConfig":
        """Scale active weights to sum to 1.0 and clamp the rest to zero.

        A vector with no positive weight is returned with negatives clamped
        but otherwise unchanged. Rebalancing a rebalanced vector returns the
        same values.
        """
        clamped = {name: max(0.0, weight) for name, weight in self.weights.items()}
        total = math.fsum(clamped.values())
        if total <= 0.0 or abs(total - 1.0) <= _SUM_TOLERANCE:
            return WeightConfig(weights=clamped)
        return WeightConfig(weights={name: weight / total for name, weight in clamped.items()})

    def active(self) -> dict[str, float]:
        return {name: weight for name, weight in self.weights.items() if weight > 0}

    def total(self) -> float:
        return math.fsum(self.active().values())

    def primary_feature(self) -> str | None:
        """Highest weighted active feature; first listed wins ties."""
        active = self.active()
        if not active:
            return None
        return max(active, key=lambda name: active[name])

    def with_weight(self, name: str, weight: float) -> "WeightConfig":
        return WeightConfig(weights={**self.weights, name: weight})

    def merge(
        self,
        overrides: Mapping[str, float | None] | None,
        *,
        normalize_rest: bool = True,
    ) -> "WeightConfig":
        """Apply partial overrides on top of this vector and rebalance.

        Override keys match existing names in any spelling; unknown keys and
        ``None`` values are skipped, negatives clamp to zero. With
        ``normalize_rest`` the untouched weights are scaled to fill whatever
        the overrides leave below 1.0, or zeroed when the overrides already
        reach it. Without it, the combined vector is simply rebalanced.
        """
        by_key = {canonical_key(name): name for name in self.weights}
        result = dict(self.weights)

        applied: dict[str, float] = {}
        unknown: list[str] = []
        for name, weight in (overrides or {}).items():
            if weight is None:
                continue
            target = by_key.get(canonical_key(name))
            if target is None:
                unknown.append(name)
                continue
            if not math.isfinite(weight):
                raise ValueError(f"weight for {name!r} must be a finite number")
            applied[target] = max(0.0, float(weight))

        if unknown:
            logger.warning("weights.unknown_override", features=unknown)

        result.update(applied)

        if normalize_rest:
            claimed = math.fsum(applied.values())
            rest = [name for name in result if name not in applied]
            if claimed < 1.0 - _SUM_TOLERANCE:
                rest_total = math.fsum(max(0.0, result[name]) for name in rest)
                if rest_total > 0:
                    scale = (1.0 - claimed) / rest_total
                    for name in rest:
                        result[name] = max(0.0, result[name]) * scale
            else:
                for name in rest:
                    result[name] = 0.0

        return WeightConfig(weights=result).rebalance()
