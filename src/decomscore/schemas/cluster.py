"""Cluster record schema and key canonicalization."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, model_validator

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def canonical_key(name: str) -> str:
    """Lower-case a field name and drop separators.

    ``ClusterAgeYears``, ``cluster_age_years`` and ``UsedCores_SQL`` style
    spellings all collapse to the same key.
    """
    return _NON_ALNUM.sub("", name.lower())


class ClusterRecord(BaseModel):
    """Cluster facts used for decommission analysis.

    Every attribute is nullable; ``None`` means the value is unknown.
    """

    # Identification & region
    cluster: str | None = None
    cluster_id: str | None = None
    region: str | None = None
    availability_zone: str | None = None
    data_center: str | None = None
    physical_az: str | None = None

    # Age & decommission timeline
    cluster_age_years: float | None = None
    cluster_age_days: int | None = None
    decommission_years_remaining: float | None = None

    # Intent
    intent: str | None = None
    intent_is_sellable: bool | None = None

    # Hardware & infrastructure
    generation: str | None = None
    manufacturer: str | None = None
    mem_category: str | None = None
    sku_name: str | None = None
    servers: int | None = None
    num_racks: int | None = None
    is_ultra_ssd_enabled: bool | None = None
    is_specialty_sku: bool | None = None
    cloud_type: str | None = None
    region_type: str | None = None
    transition_sku_category: str | None = None
    physical_cores_per_node: int | None = None
    mp_count_in_cluster: int | None = None
    rack_count_in_cluster: int | None = None
    is_live: bool | None = None
    cluster_type: str | None = None
    is_target_mp: bool | None = None

    # Core utilization
    total_physical_cores: float | None = None
    used_cores: float | None = None
    used_cores_sql: float | None = None
    used_cores_non_sql: float | None = None
    used_cores_non_sql_spannable: float | None = None
    used_cores_non_sql_non_spannable: float | None = None
    core_utilization: float | None = None

    # VM counts
    vm_count: int | None = None
    vm_count_sql: int | None = None
    vm_count_non_sql: int | None = None
    vm_count_non_sql_spannable: int | None = None
    vm_count_non_sql_non_spannable: int | None = None
    max_supported_vms: int | None = None
    vm_density: float | None = None

    # Nodes & stranding
    total_nodes: int | None = None
    out_of_service_nodes: int | None = None
    dng_nodes: int | None = None
    stranded_cores_dng: float | None = None
    stranded_cores_tip: float | None = None
    out_of_services_percentage: float | None = None
    node_count_i_own_machine: int | None = None
    node_count_32vms: int | None = None
    stranded_cores_32vms: float | None = None

    # Tenant / platform workloads
    has_platform_tenant: bool | None = None
    has_warp: bool | None = None
    has_slb: bool | None = None
    has_sql: bool | None = None
    has_ud_greater_than_10: bool | None = None
    has_instances_greater_than_10: bool | None = None
    total_instances: int | None = None
    tenant_count: int | None = None
    tenant_with_max_fd: str | None = None

    # Hot regions
    is_hot_region: bool | None = None
    region_hotness_priority: int | None = None
    hot_region_vm_series: str | None = None
    latest_hot_timestamp: datetime | None = None

    # Regional health
    region_health_score: float | None = None
    region_health_level: str | None = None
    region_health_projected_time: datetime | None = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _canonicalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        by_key = {canonical_key(name): name for name in cls.model_fields}
        remapped: dict[str, Any] = {}
        for key, value in data.items():
            target = by_key.get(canonical_key(str(key)), key)
            remapped[target] = value
        return remapped

    @property
    def record_id(self) -> str | None:
        """Stable identity used for set algebra and explain lookups."""
        return self.cluster or self.cluster_id

    def with_edits(self, edits: Mapping[str, Any]) -> tuple["ClusterRecord", list[str]]:
        """Validated copy with ``edits`` applied, plus the edit keys that matched no field."""
        by_key = {canonical_key(name): name for name in type(self).model_fields}
        update: dict[str, Any] = {}
        unknown: list[str] = []
        for key, value in edits.items():
            target = by_key.get(canonical_key(str(key)))
            if target is None:
                unknown.append(key)
            else:
                update[target] = value
        if not update:
            return self, unknown
        return type(self).model_validate({**self.model_dump(), **update}), unknown
