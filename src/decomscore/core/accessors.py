"""Name-indexed typed getters over :class:`ClusterRecord`."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from operator import attrgetter
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from ..schemas.cluster import ClusterRecord, canonical_key


class FieldKind(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DOUBLE = "double"


_S, _B, _I, _D = FieldKind.STRING, FieldKind.BOOLEAN, FieldKind.INTEGER, FieldKind.DOUBLE

# Timestamps are not indexed.
CLUSTER_FIELDS: tuple[tuple[str, FieldKind], ...] = (
    ("cluster", _S),
    ("cluster_id", _S),
    ("region", _S),
    ("availability_zone", _S),
    ("data_center", _S),
    ("physical_az", _S),
    ("cluster_age_years", _D),
    ("cluster_age_days", _I),
    ("decommission_years_remaining", _D),
    ("intent", _S),
    ("intent_is_sellable", _B),
    ("generation", _S),
    ("manufacturer", _S),
    ("mem_category", _S),
    ("sku_name", _S),
    ("servers", _I),
    ("num_racks", _I),
    ("is_ultra_ssd_enabled", _B),
    ("is_specialty_sku", _B),
    ("cloud_type", _S),
    ("region_type", _S),
    ("transition_sku_category", _S),
    ("physical_cores_per_node", _I),
    ("mp_count_in_cluster", _I),
    ("rack_count_in_cluster", _I),
    ("is_live", _B),
    ("cluster_type", _S),
    ("is_target_mp", _B),
    ("total_physical_cores", _D),
    ("used_cores", _D),
    ("used_cores_sql", _D),
    ("used_cores_non_sql", _D),
    ("used_cores_non_sql_spannable", _D),
    ("used_cores_non_sql_non_spannable", _D),
    ("core_utilization", _D),
    ("vm_count", _I),
    ("vm_count_sql", _I),
    ("vm_count_non_sql", _I),
    ("vm_count_non_sql_spannable", _I),
    ("vm_count_non_sql_non_spannable", _I),
    ("max_supported_vms", _I),
    ("vm_density", _D),
    ("total_nodes", _I),
    ("out_of_service_nodes", _I),
    ("dng_nodes", _I),
    ("stranded_cores_dng", _D),
    ("stranded_cores_tip", _D),
    ("out_of_services_percentage", _D),
    ("node_count_i_own_machine", _I),
    ("node_count_32vms", _I),
    ("stranded_cores_32vms", _D),
    ("has_platform_tenant", _B),
    ("has_warp", _B),
    ("has_slb", _B),
    ("has_sql", _B),
    ("has_ud_greater_than_10", _B),
    ("has_instances_greater_than_10", _B),
    ("total_instances", _I),
    ("tenant_count", _I),
    ("tenant_with_max_fd", _S),
    ("is_hot_region", _B),
    ("region_hotness_priority", _I),
    ("hot_region_vm_series", _S),
    ("region_health_score", _D),
    ("region_health_level", _S),
)

DEFAULT_ALIASES: dict[str, str] = {
    "Age": "cluster_age_years",
    "AgeYears": "cluster_age_years",
    "Util": "core_utilization",
    "Utilization": "core_utilization",
    "Health": "region_health_score",
    "Stranded": "stranded_cores_dng",
    "DC": "data_center",
}


@dataclass(frozen=True, slots=True)
class Accessor:
    """Typed getter for one record attribute."""

    name: str
    kind: FieldKind
    getter: Callable[[ClusterRecord], Any]

    def __call__(self, record: ClusterRecord) -> Any:
        return self.getter(record)


class AccessorRegistry:
    """Immutable lookup of attribute getters, partitioned by kind.

    Lookups ignore case and separators, so ``ClusterAgeYears`` and
    ``cluster_age_years`` resolve to the same accessor.
    """

    def __init__(
        self,
        fields: Iterable[tuple[str, FieldKind]] = CLUSTER_FIELDS,
        *,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        by_key: dict[str, Accessor] = {}
        for name, kind in fields:
            by_key[canonical_key(name)] = Accessor(name=name, kind=kind, getter=attrgetter(name))
        self._fields = tuple(by_key.values())

        for alias, target in (DEFAULT_ALIASES if aliases is None else aliases).items():
            accessor = by_key.get(canonical_key(target))
            if accessor is not None:
                by_key.setdefault(canonical_key(alias), accessor)

        self._by_key: Mapping[str, Accessor] = MappingProxyType(by_key)

    def resolve(self, name: str | None) -> Accessor | None:
        if not name:
            return None
        return self._by_key.get(canonical_key(name))

    def resolve_kind(self, name: str | None, *kinds: FieldKind) -> Accessor | None:
        """Resolve ``name`` only if its kind is one of ``kinds``."""
        accessor = self.resolve(name)
        if accessor is None or accessor.kind not in kinds:
            return None
        return accessor

    def list_fields(self) -> list[tuple[str, FieldKind]]:
        return [(accessor.name, accessor.kind) for accessor in self._fields]

    def names(self, *kinds: FieldKind) -> list[str]:
        return [
            accessor.name
            for accessor in self._fields
            if not kinds or accessor.kind in kinds
        ]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None


@lru_cache(maxsize=1)
def default_registry() -> AccessorRegistry:
    """Process-wide registry, built on first use."""
    return AccessorRegistry()
