"""Core filtering, eligibility and scoring engine components."""

from __future__ import annotations

# NOTE: keep imports explicit for export clarity.
from .accessors import Accessor, AccessorRegistry, FieldKind, default_registry
from .criteria import CriteriaEvaluator, FieldSummary, ValueCount
from .eligibility import (
    EligibilityGate,
    EligibilityReport,
    EligibilityResult,
    EligibleSoon,
    GroupSummary,
    IneligibleRecord,
)
from .features import FeatureInfo, FeatureRegistry
from .scoring import (
    FactorContribution,
    FactorStatistics,
    ScoreBreakdown,
    ScoreResult,
    ScoringConfig,
    ScoringEngine,
    WhatIfResult,
)
from .weights import WeightConfig

__all__ = [
    "Accessor",
    "AccessorRegistry",
    "CriteriaEvaluator",
    "EligibilityGate",
    "EligibilityReport",
    "EligibilityResult",
    "EligibleSoon",
    "FactorContribution",
    "FactorStatistics",
    "FeatureInfo",
    "FeatureRegistry",
    "FieldKind",
    "FieldSummary",
    "GroupSummary",
    "IneligibleRecord",
    "ScoreBreakdown",
    "ScoreResult",
    "ScoringConfig",
    "ScoringEngine",
    "ValueCount",
    "WeightConfig",
    "WhatIfResult",
    "default_registry",
]
