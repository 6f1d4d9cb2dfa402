"""Pydantic configuration schema for CLI YAML input."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .criteria import Criteria
from .eligibility import EligibilityRules


class ScoringSettings(BaseModel):
    winsorize: bool | None = None
    lower_quantile: float | None = Field(default=None, ge=0.0, le=1.0)
    upper_quantile: float | None = Field(default=None, ge=0.0, le=1.0)
    per_feature_quantiles: dict[str, tuple[float, float]] | None = None
    rank_normalize: list[str] | None = None
    include_all_numeric: bool | None = None
    include_all_numeric_budget: float | None = Field(default=None, ge=0.0)
    min_winsorize_population: int | None = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    weights: dict[str, float] | None = None
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    eligibility: EligibilityRules | None = None
    criteria: Criteria | None = None

    model_config = ConfigDict(extra="forbid")

    def to_settings(self) -> dict[str, Any]:
        settings: dict[str, Any] = {}
        if self.weights:
            settings["weights"] = dict(self.weights)
        scoring = self.scoring.model_dump(exclude_none=True)
        if scoring:
            settings["scoring"] = scoring
        if self.eligibility is not None:
            settings["eligibility"] = self.eligibility.model_dump()
        if self.criteria is not None:
            settings["criteria"] = self.criteria.model_dump()
        return settings


def load_config(raw: Any) -> AppConfig:
    if not isinstance(raw, dict):
        raise ValidationError.from_exception_data(
            "AppConfig",
            [{"type": "dict_type", "loc": ("config",), "input": raw}],
        )
    return AppConfig.model_validate(raw)
