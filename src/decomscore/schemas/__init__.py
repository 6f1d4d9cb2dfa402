"""Pydantic schema definitions for records and engine configuration."""

from __future__ import annotations

from .cluster import ClusterRecord, canonical_key
from .criteria import Criteria, DoubleRange, IntRange, MultiCriteriaPlan
from .eligibility import EligibilityRules

__all__ = [
    "ClusterRecord",
    "Criteria",
    "DoubleRange",
    "EligibilityRules",
    "IntRange",
    "MultiCriteriaPlan",
    "canonical_key",
]
