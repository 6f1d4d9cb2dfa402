from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from decomscore.core import default_registry
from decomscore.schemas import ClusterRecord, Criteria, MultiCriteriaPlan, canonical_key


def test_canonical_key_strips_case_and_separators():
    assert canonical_key("UsedCores_SQL") == "usedcoressql"
    assert canonical_key("used_cores_sql") == "usedcoressql"
    assert canonical_key(" Cluster-Age Years ") == "clusterageyears"


def test_record_accepts_any_key_spelling():
    record = ClusterRecord.model_validate(
        {
            "Cluster": "BN4PrdApp01",
            "ClusterAgeYears": 7.2,
            "UsedCores_SQL": 120,
            "HasSQL": True,
            "Region": "eastus",
            "SomethingElse": "ignored",
        }
    )

    assert record.cluster == "BN4PrdApp01"
    assert record.cluster_age_years == pytest.approx(7.2)
    assert record.used_cores_sql == pytest.approx(120.0)
    assert record.has_sql is True
    assert record.region == "eastus"


def test_missing_attributes_are_unknown_not_zero():
    record = ClusterRecord()

    assert record.core_utilization is None
    assert record.has_sql is None
    assert record.record_id is None


def test_record_id_falls_back_to_cluster_id():
    assert ClusterRecord(cluster="A", cluster_id="id-1").record_id == "A"
    assert ClusterRecord(cluster_id="id-1").record_id == "id-1"


def test_timestamps_are_parsed():
    record = ClusterRecord.model_validate({"LatestHotTimestamp": "2024-05-01T12:00:00Z"})

    assert isinstance(record.latest_hot_timestamp, datetime)


def test_records_are_immutable():
    record = ClusterRecord(cluster="A")

    with pytest.raises(ValidationError):
        record.cluster = "B"


def test_accessor_table_covers_every_scalar_field():
    indexed = {name for name, _ in default_registry().list_fields()}
    timestamps = {"latest_hot_timestamp", "region_health_projected_time"}

    assert indexed == set(ClusterRecord.model_fields) - timestamps


def test_criteria_accepts_pascal_case_and_compiles_in_order():
    criteria = Criteria.model_validate(
        {
            "DoubleRanges": {"AgeYears": {"Min": 5}},
            "StringNotIn": {"Region": ["westus2"]},
            "BoolEquals": {"HasSql": False},
            "StringIn": {"Intent": []},
        }
    )

    kinds = [clause.kind for clause in criteria.to_clauses()]

    assert kinds == ["string_not_in", "bool_equals", "double_range"]


def test_criteria_rejects_unknown_sections():
    with pytest.raises(ValidationError):
        Criteria.model_validate({"StringLike": {"Region": ["x"]}})


def test_filter_only_drops_sorting_and_paging():
    criteria = Criteria(sort_by="servers", skip=2, take=3, string_in={"region": ["eastus"]})

    stripped = criteria.filter_only()

    assert (stripped.sort_by, stripped.skip, stripped.take) == (None, 0, None)
    assert stripped.string_in == criteria.string_in


def test_plan_rejects_unknown_mode():
    with pytest.raises(ValidationError):
        MultiCriteriaPlan(mode="xor")
