"""Eligibility rule schema."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .criteria import DoubleRange, IntRange


class EligibilityRules(BaseModel):
    """Configurable pass/fail policy applied before ranking.

    Baseline checks cover cluster age, core utilization (percent units) and
    region allow/deny lists. The generic maps share the shapes used by
    :class:`~decomscore.schemas.criteria.Criteria`.
    """

    enabled: bool = Field(default=True, alias="Enabled")
    enforce_age: bool = Field(default=True, alias="EnforceAge")
    enforce_utilization: bool = Field(default=True, alias="EnforceUtilization")
    enforce_allowed_regions: bool = Field(default=True, alias="EnforceAllowedRegions")
    enforce_excluded_regions: bool = Field(default=True, alias="EnforceExcludedRegions")
    min_age_years: float = Field(default=6, alias="MinAgeYears")
    max_utilization_percent: float = Field(
        default=30,
        validation_alias=AliasChoices(
            "max_utilization_percent",
            "MaxUtilizationPercent",
            "MaxCoreUtilizationPercent",
        ),
    )

    allowed_regions: list[str] = Field(default_factory=list, alias="AllowedRegions")
    excluded_regions: list[str] = Field(default_factory=list, alias="ExcludedRegions")

    string_in: dict[str, list[str]] = Field(default_factory=dict, alias="StringIn")
    string_not_in: dict[str, list[str]] = Field(default_factory=dict, alias="StringNotIn")
    bool_equals: dict[str, bool] = Field(default_factory=dict, alias="BoolEquals")
    int_ranges: dict[str, IntRange] = Field(default_factory=dict, alias="IntRanges")
    double_ranges: dict[str, DoubleRange] = Field(default_factory=dict, alias="DoubleRanges")

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @classmethod
    def disabled(cls) -> "EligibilityRules":
        return cls(enabled=False)
