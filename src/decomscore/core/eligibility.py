"""Rule-based eligibility gate with full failure explanations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..schemas import ClusterRecord, EligibilityRules
from .accessors import AccessorRegistry, FieldKind, default_registry
from .normalization import normalize_region, normalizer_for

UNKNOWN_GROUP = "(unknown)"
DAYS_PER_YEAR = 365.0


@dataclass(slots=True)
class EligibilityResult:
    """Outcome for a single record."""

    passed: bool
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class IneligibleRecord:
    record: ClusterRecord
    reasons: list[str]


@dataclass(slots=True)
class EligibilityReport:
    """Partition of a collection into passing and failing records."""

    eligible: list[ClusterRecord]
    ineligible: list[IneligibleRecord]


@dataclass(frozen=True, slots=True)
class GroupSummary:
    group: str
    total: int
    passed: int
    failed: int


@dataclass(slots=True)
class EligibleSoon:
    """A failing record that passes once only its age moves forward."""

    record: ClusterRecord
    current_age_years: float
    projected_age_years: float
    days: int
    reasons_now: list[str]


def _fmt(value: float) -> str:
    return f"{value:g}"


def _bounds_text(low: float | None, high: float | None) -> str:
    parts = []
    if low is not None:
        parts.append(f"≥ {_fmt(low)}")
    if high is not None:
        parts.append(f"≤ {_fmt(high)}")
    return " and ".join(parts) if parts else "a value"


class EligibilityGate:
    """Evaluate :class:`EligibilityRules` without short-circuiting.

    Every enabled check runs, so a failing record carries the complete list of
    violated rules rather than only the first one.
    """

    def __init__(self, *, accessors: AccessorRegistry | None = None) -> None:
        self._accessors = accessors or default_registry()

    def is_eligible(self, record: ClusterRecord, rules: EligibilityRules) -> EligibilityResult:
        if not rules.enabled:
            return EligibilityResult(passed=True)

        reasons: list[str] = []
        reasons.extend(self._baseline_reasons(record, rules))
        reasons.extend(self._string_in_reasons(record, rules))
        reasons.extend(self._string_not_in_reasons(record, rules))
        reasons.extend(self._bool_reasons(record, rules))
        reasons.extend(self._range_reasons(record, rules))
        return EligibilityResult(passed=not reasons, reasons=reasons)

    def filter_eligible(
        self,
        records: Iterable[ClusterRecord],
        rules: EligibilityRules,
    ) -> EligibilityReport:
        eligible: list[ClusterRecord] = []
        ineligible: list[IneligibleRecord] = []
        for record in records:
            result = self.is_eligible(record, rules)
            if result.passed:
                eligible.append(record)
            else:
                ineligible.append(IneligibleRecord(record=record, reasons=result.reasons))
        return EligibilityReport(eligible=eligible, ineligible=ineligible)

    def summary_by(
        self,
        records: Iterable[ClusterRecord],
        rules: EligibilityRules,
        field: str,
    ) -> list[GroupSummary] | None:
        """Pass/fail counts per value of ``field``, ordered by group name.

        String values group under their normalized spelling, labelled with
        the first spelling seen. ``None`` for an unrecognized field.
        """
        accessor = self._accessors.resolve(field)
        if accessor is None:
            return None
        normalize = normalizer_for(accessor.name)

        labels: dict[str, str] = {}
        tallies: dict[str, list[int]] = {}
        for record in records:
            value = accessor(record)
            if value is None:
                label = key = UNKNOWN_GROUP
            elif isinstance(value, str):
                label, key = value, normalize(value)
            else:
                label = str(value)
                key = label.casefold()
            labels.setdefault(key, label)
            tally = tallies.setdefault(key, [0, 0])
            tally[0 if self.is_eligible(record, rules).passed else 1] += 1

        return [
            GroupSummary(
                group=labels[key],
                total=passed + failed,
                passed=passed,
                failed=failed,
            )
            for key, (passed, failed) in sorted(tallies.items())
        ]

    def eligible_soon(
        self,
        records: Iterable[ClusterRecord],
        rules: EligibilityRules,
        days: int = 90,
    ) -> list[EligibleSoon]:
        """Failing records that pass once ``days`` are added to their age.

        Records of unknown age are not projected.
        """
        delta = max(0, days) / DAYS_PER_YEAR
        upcoming: list[EligibleSoon] = []
        for record in records:
            now = self.is_eligible(record, rules)
            if now.passed or record.cluster_age_years is None:
                continue
            projected = record.cluster_age_years + delta
            aged = record.model_copy(update={"cluster_age_years": projected})
            if self.is_eligible(aged, rules).passed:
                upcoming.append(
                    EligibleSoon(
                        record=record,
                        current_age_years=record.cluster_age_years,
                        projected_age_years=projected,
                        days=max(0, days),
                        reasons_now=now.reasons,
                    )
                )
        return upcoming

    @staticmethod
    def _baseline_reasons(record: ClusterRecord, rules: EligibilityRules) -> list[str]:
        reasons: list[str] = []

        if rules.enforce_age:
            age = record.cluster_age_years
            if age is None:
                reasons.append(
                    f"cluster_age_years unknown, required ≥ {_fmt(rules.min_age_years)}"
                )
            elif age < rules.min_age_years:
                reasons.append(
                    f"cluster_age_years {age:.1f} < minimum {_fmt(rules.min_age_years)}"
                )

        if rules.enforce_utilization:
            utilization = record.core_utilization
            if utilization is None:
                reasons.append(
                    f"core_utilization unknown, required ≤ {_fmt(rules.max_utilization_percent)}"
                )
            elif utilization > rules.max_utilization_percent:
                reasons.append(
                    f"core_utilization {utilization:.1f}% > maximum "
                    f"{rules.max_utilization_percent:.1f}%"
                )

        region = normalize_region(record.region)
        shown = record.region if record.region is not None else "null"
        if rules.enforce_allowed_regions and rules.allowed_regions:
            allowed = {normalize_region(item) for item in rules.allowed_regions}
            if region not in allowed:
                reasons.append(f"region '{shown}' not in allowed regions")
        if rules.enforce_excluded_regions and rules.excluded_regions:
            excluded = {normalize_region(item) for item in rules.excluded_regions}
            excluded.discard("")
            if region in excluded:
                reasons.append(f"region '{shown}' is in excluded regions")

        return reasons

    def _string_in_reasons(self, record: ClusterRecord, rules: EligibilityRules) -> list[str]:
        reasons: list[str] = []
        for name, values in rules.string_in.items():
            accessor = self._accessors.resolve_kind(name, FieldKind.STRING)
            if accessor is None:
                reasons.append(f"field '{name}' not found for string_in")
                continue
            normalize = normalizer_for(accessor.name)
            allowed = {normalize(value) for value in values}
            raw = accessor(record)
            if raw is None:
                reasons.append(f"{accessor.name} unknown, required one of {sorted(values)}")
            elif normalize(raw) not in allowed:
                reasons.append(f"{accessor.name} '{raw}' not in allowed set")
        return reasons

    def _string_not_in_reasons(self, record: ClusterRecord, rules: EligibilityRules) -> list[str]:
        reasons: list[str] = []
        for name, values in rules.string_not_in.items():
            accessor = self._accessors.resolve_kind(name, FieldKind.STRING)
            if accessor is None:
                reasons.append(f"field '{name}' not found for string_not_in")
                continue
            normalize = normalizer_for(accessor.name)
            denied = {normalize(value) for value in values}
            denied.discard("")
            raw = accessor(record)
            if raw is not None and normalize(raw) in denied:
                reasons.append(f"{accessor.name} '{raw}' is in excluded set")
        return reasons

    def _bool_reasons(self, record: ClusterRecord, rules: EligibilityRules) -> list[str]:
        reasons: list[str] = []
        for name, expected in rules.bool_equals.items():
            accessor = self._accessors.resolve_kind(name, FieldKind.BOOLEAN)
            if accessor is None:
                reasons.append(f"field '{name}' not found for bool_equals")
                continue
            actual = accessor(record)
            if actual is None:
                reasons.append(f"{accessor.name} unknown, required {expected}")
            elif actual is not expected:
                reasons.append(f"{accessor.name} must be {expected} (actual: {actual})")
        return reasons

    def _range_reasons(self, record: ClusterRecord, rules: EligibilityRules) -> list[str]:
        reasons: list[str] = []
        checks = [
            ("int_ranges", name, bounds, (FieldKind.INTEGER,))
            for name, bounds in rules.int_ranges.items()
        ]
        checks.extend(
            ("double_ranges", name, bounds, (FieldKind.DOUBLE, FieldKind.INTEGER))
            for name, bounds in rules.double_ranges.items()
        )
        for family, name, bounds, kinds in checks:
            accessor = self._accessors.resolve_kind(name, *kinds)
            if accessor is None:
                reasons.append(f"field '{name}' not found for {family}")
                continue
            value = accessor(record)
            if value is None:
                reasons.append(
                    f"{accessor.name} unknown, required {_bounds_text(bounds.min, bounds.max)}"
                )
                continue
            if bounds.min is not None and value < bounds.min:
                reasons.append(f"{accessor.name} {_fmt(value)} < minimum {_fmt(bounds.min)}")
            if bounds.max is not None and value > bounds.max:
                reasons.append(f"{accessor.name} {_fmt(value)} > maximum {_fmt(bounds.max)}")
        return reasons
