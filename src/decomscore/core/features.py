"""Scoring features: raw numeric attributes plus derived ratios."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Literal, Mapping

from ..schemas.cluster import ClusterRecord, canonical_key
from .accessors import AccessorRegistry, FieldKind, default_registry

FeatureKind = Literal["raw", "derived"]
DerivedFn = Callable[[ClusterRecord], "float | None"]

# Sometimes exported on a 0-100 scale, sometimes as 0-1 ratios.
PERCENT_LIKE: frozenset[str] = frozenset(
    {"core_utilization", "vm_density", "out_of_services_percentage"}
)


def coerce_ratio(feature: str, value: float | None) -> float | None:
    if value is None:
        return None
    if feature in PERCENT_LIKE and value > 1.0:
        return value / 100.0
    return value


def _ratio(numerator: float | None, denominator: float | None) -> float | None:
    if numerator is None or denominator is None:
        return None
    if denominator <= 0 or numerator < 0:
        return None
    return numerator / denominator


def _effective_core_utilization(r: ClusterRecord) -> float | None:
    ratio = _ratio(r.used_cores, r.total_physical_cores)
    if ratio is not None:
        return ratio
    return coerce_ratio("core_utilization", r.core_utilization)


def _idle_core_volume(r: ClusterRecord) -> float | None:
    ratio = _ratio(r.used_cores, r.total_physical_cores)
    if ratio is None:
        return None
    return (1.0 - ratio) * r.total_physical_cores


def _stranded_cores_total(r: ClusterRecord) -> float | None:
    parts = (r.stranded_cores_dng, r.stranded_cores_tip, r.stranded_cores_32vms)
    if any(part is None for part in parts):
        return None
    return float(sum(parts))


def _healthy_node_ratio(r: ClusterRecord) -> float | None:
    oos = _ratio(r.out_of_service_nodes, r.total_nodes)
    return None if oos is None else 1.0 - oos


def _hotness_rank(r: ClusterRecord) -> float | None:
    if r.region_hotness_priority is None:
        return None
    return float(r.region_hotness_priority)


DERIVED_FEATURES: Mapping[str, DerivedFn] = MappingProxyType(
    {
        "effective_core_utilization": _effective_core_utilization,
        "idle_core_volume": _idle_core_volume,
        "stranded_cores_ratio_dng": lambda r: _ratio(r.stranded_cores_dng, r.total_physical_cores),
        "stranded_cores_ratio_tip": lambda r: _ratio(r.stranded_cores_tip, r.total_physical_cores),
        "stranded_cores_ratio_32vms": lambda r: _ratio(
            r.stranded_cores_32vms, r.total_physical_cores
        ),
        "stranded_cores_total": _stranded_cores_total,
        "oos_node_ratio": lambda r: _ratio(r.out_of_service_nodes, r.total_nodes),
        "healthy_node_ratio": _healthy_node_ratio,
        "dng_node_ratio": lambda r: _ratio(r.dng_nodes, r.total_nodes),
        "hotness_rank": _hotness_rank,
        "sql_ratio": lambda r: _ratio(r.vm_count_sql, r.vm_count),
        "non_spannable_ratio": lambda r: _ratio(
            r.used_cores_non_sql_non_spannable, r.used_cores_non_sql
        ),
        "spannable_utilization_ratio": lambda r: _ratio(
            r.used_cores_non_sql_spannable, r.used_cores
        ),
    }
)

# True: a higher value makes a cluster a better decommission candidate.
HIGHER_IS_BETTER: Mapping[str, bool] = MappingProxyType(
    {
        "cluster_age_years": True,
        "decommission_years_remaining": False,
        "effective_core_utilization": False,
        "core_utilization": False,
        "vm_density": False,
        "idle_core_volume": True,
        "oos_node_ratio": True,
        "healthy_node_ratio": False,
        "dng_node_ratio": True,
        "stranded_cores_ratio_dng": True,
        "stranded_cores_ratio_tip": True,
        "stranded_cores_ratio_32vms": True,
        "stranded_cores_total": True,
        "region_health_score": False,
        "is_hot_region": False,
        "hotness_rank": False,
        "has_sql": False,
        "has_platform_tenant": False,
        "has_slb": False,
        "has_warp": False,
        "has_ud_greater_than_10": False,
        "has_instances_greater_than_10": False,
        "is_target_mp": False,
        "sql_ratio": False,
        "non_spannable_ratio": False,
        "spannable_utilization_ratio": False,
    }
)

DESCRIPTIONS: Mapping[str, str] = MappingProxyType(
    {
        "cluster_age_years": "Age of the cluster in years; older raises decommission priority.",
        "effective_core_utilization": "Used cores over physical cores; lower utilization raises priority.",
        "idle_core_volume": "Idle physical cores, (1 - utilization) x total cores.",
        "region_health_score": "Region health score; poorer health raises priority.",
        "oos_node_ratio": "Share of out-of-service nodes; higher suggests maintenance issues.",
        "healthy_node_ratio": "Share of nodes in service.",
        "dng_node_ratio": "Share of Do Not Grow nodes.",
        "stranded_cores_ratio_dng": "Cores stranded by Do Not Grow status, over physical cores.",
        "stranded_cores_ratio_tip": "Cores stranded by test/dev workloads, over physical cores.",
        "stranded_cores_ratio_32vms": "Cores stranded by 32-core VM constraints, over physical cores.",
        "stranded_cores_total": "Sum of DNG, TIP and 32-VM stranded cores.",
        "is_hot_region": "Cluster sits in a high-demand region.",
        "hotness_rank": "Hot region priority; hotter regions are penalized.",
        "decommission_years_remaining": "Years until planned retirement; fewer years raises priority.",
        "has_sql": "Hosts SQL workloads; harder to decommission.",
        "has_slb": "Hosts load-balancer workloads; harder to decommission.",
        "has_warp": "Hosts WARP workloads; harder to decommission.",
        "has_platform_tenant": "Hosts platform tenants; harder to decommission.",
        "sql_ratio": "Share of SQL VMs.",
        "non_spannable_ratio": "Share of non-SQL cores used by non-spannable VMs.",
        "spannable_utilization_ratio": "Share of used cores held by spannable VMs.",
    }
)

# Identifiers and categorical fields never receive exploration weight.
EXPLORATION_DENYLIST: frozenset[str] = frozenset(
    {
        "cluster",
        "cluster_id",
        "region",
        "availability_zone",
        "data_center",
        "physical_az",
        "intent",
        "cloud_type",
        "region_type",
        "manufacturer",
        "mem_category",
        "sku_name",
        "region_health_level",
        "hot_region_vm_series",
    }
)


@dataclass(frozen=True, slots=True)
class FeatureInfo:
    """Catalog entry for discovery and help surfaces."""

    name: str
    kind: FeatureKind
    unit: str
    higher_is_better: bool
    description: str


class FeatureRegistry:
    """Resolve feature names to raw or derived values."""

    def __init__(
        self,
        accessors: AccessorRegistry | None = None,
        *,
        derived: Mapping[str, DerivedFn] = DERIVED_FEATURES,
        directions: Mapping[str, bool] = HIGHER_IS_BETTER,
    ) -> None:
        self._accessors = accessors or default_registry()
        self._derived = MappingProxyType(dict(derived))
        self._derived_keys = MappingProxyType({canonical_key(name): name for name in derived})
        self._directions = directions

    def resolve(self, name: str | None) -> str | None:
        """Canonical feature name for ``name``, derived features first."""
        if not name:
            return None
        derived = self._derived_keys.get(canonical_key(name))
        if derived is not None:
            return derived
        accessor = self._accessors.resolve_kind(
            name, FieldKind.DOUBLE, FieldKind.INTEGER, FieldKind.BOOLEAN
        )
        return accessor.name if accessor else None

    def is_derived(self, feature: str) -> bool:
        return feature in self._derived

    def higher_is_better(self, feature: str) -> bool:
        return self._directions.get(feature, True)

    def value(self, feature: str, record: ClusterRecord) -> float | None:
        """Feature value for ``record``; ``feature`` must already be resolved."""
        if feature in self._derived:
            raw = self._derived[feature](record)
        else:
            accessor = self._accessors.resolve(feature)
            if accessor is None:
                return None
            raw = accessor(record)
            if isinstance(raw, bool):
                raw = 1.0 if raw else 0.0
        if raw is None:
            return None
        return coerce_ratio(feature, float(raw))

    def derived_value(self, name: str, record: ClusterRecord) -> tuple[bool, float | None]:
        """Return ``(found, value)`` for a derived feature lookup by any spelling."""
        feature = self._derived_keys.get(canonical_key(name))
        if feature is None:
            return False, None
        return True, self._derived[feature](record)

    def exploration_candidates(self) -> list[str]:
        """Numeric and derived features eligible for the exploration budget."""
        names = self._accessors.names(FieldKind.DOUBLE, FieldKind.INTEGER)
        names.extend(self._derived)
        return sorted(name for name in set(names) if name not in EXPLORATION_DENYLIST)

    def catalog(self) -> list[FeatureInfo]:
        entries: list[FeatureInfo] = []
        for name, kind in self._accessors.list_fields():
            if kind is FieldKind.STRING:
                continue
            if kind is FieldKind.BOOLEAN:
                unit = "bool"
            elif name in PERCENT_LIKE:
                unit = "percent"
            else:
                unit = "count/ratio"
            entries.append(self._info(name, "raw", unit))
        for name in self._derived:
            unit = "ratio" if "ratio" in name else "count/ratio"
            entries.append(self._info(name, "derived", unit))
        return sorted(entries, key=lambda info: (info.kind, info.name))

    def _info(self, name: str, kind: FeatureKind, unit: str) -> FeatureInfo:
        return FeatureInfo(
            name=name,
            kind=kind,
            unit=unit,
            higher_is_better=self.higher_is_better(name),
            description=DESCRIPTIONS.get(name, f"Scoring factor: {name}"),
        )
