from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from decomscore.cli import app


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


RECORDS = [
    {"Cluster": "A", "Region": "eastus", "ClusterAgeYears": 10, "CoreUtilization": 10,
     "UsedCores": 10, "TotalPhysicalCores": 100},
    {"Cluster": "B", "Region": "East US", "ClusterAgeYears": 8, "CoreUtilization": 20,
     "UsedCores": 20, "TotalPhysicalCores": 100},
    {"Cluster": "C", "Region": "West US 2", "ClusterAgeYears": 12, "CoreUtilization": 5,
     "UsedCores": 5, "TotalPhysicalCores": 100},
    {"Cluster": "D", "Region": "eastus", "ClusterAgeYears": 3, "CoreUtilization": 5,
     "UsedCores": 5, "TotalPhysicalCores": 100},
    {"Cluster": "E", "Region": "eastus", "ClusterAgeYears": 9, "CoreUtilization": 50,
     "UsedCores": 50, "TotalPhysicalCores": 100},
]

CONFIG = {
    "weights": {"ClusterAgeYears": 0.5, "EffectiveCoreUtilization": 0.5},
    "eligibility": {"MinAgeYears": 6, "MaxUtilizationPercent": 30},
    "criteria": {"StringNotIn": {"Region": ["westus2"]}},
}


def write_records(path: Path, records: list[dict], *, extra_lines: tuple[str, ...] = ()) -> None:
    lines = [json.dumps(item, ensure_ascii=False) for item in records]
    lines.extend(extra_lines)
    path.write_text("\n".join(lines), encoding="utf-8")


def write_yaml(path: Path, payload: object) -> None:
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")


def test_cli_ranks_clusters_and_writes_report(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    output_path = tmp_path / "out" / "ranking.json"
    audit_path = tmp_path / "audit.jsonl"
    write_records(records_path, RECORDS, extra_lines=("{broken",))
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        [
            "rank",
            "--records",
            str(records_path),
            "--output",
            str(output_path),
            "--config",
            str(config_path),
            "--log-level",
            "WARNING",
            "--audit-log",
            str(audit_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Ranked 2 clusters" in result.stdout

    rendered = json.loads(output_path.read_text(encoding="utf-8"))
    metadata = rendered["metadata"]
    assert metadata["record_count"] == 5
    assert metadata["filtered_count"] == 4
    assert metadata["eligible_count"] == 2
    assert metadata["ineligible_count"] == 2
    assert len(metadata["errors"]) == 1
    assert metadata["errors"][0].startswith("line 6:")
    assert metadata["applied_weights"] == {
        "cluster_age_years": 0.5,
        "effective_core_utilization": 0.5,
    }
    assert metadata["timestamp"]
    assert metadata["app_version"]

    results = rendered["results"]
    assert [item["cluster"] for item in results] == ["A", "B"]
    assert [item["rank"] for item in results] == [1, 2]
    assert results[0]["score"] > results[1]["score"]
    assert {factor["feature"] for factor in results[0]["factors"]} == {
        "cluster_age_years",
        "effective_core_utilization",
    }

    ineligible = {item["cluster"]: item["reasons"] for item in rendered["ineligible"]}
    assert set(ineligible) == {"D", "E"}
    assert any("cluster_age_years" in reason for reason in ineligible["D"])
    assert any("core_utilization" in reason for reason in ineligible["E"])

    audit_lines = audit_path.read_text(encoding="utf-8").strip().splitlines()
    assert [json.loads(line)["cluster"] for line in audit_lines] == ["A", "B"]


def test_cli_rank_respects_top(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    output_path = tmp_path / "ranking.json"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        [
            "rank",
            "--records",
            str(records_path),
            "--output",
            str(output_path),
            "--config",
            str(config_path),
            "--top",
            "1",
            "--log-level",
            "WARNING",
        ],
    )

    assert result.exit_code == 0, result.output
    rendered = json.loads(output_path.read_text(encoding="utf-8"))
    assert [item["cluster"] for item in rendered["results"]] == ["A"]
    assert rendered["metadata"]["errors"] == []


def test_cli_rejects_invalid_config(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, {"scoring": {"lower_quantile": 5}})

    result = runner.invoke(
        app,
        [
            "rank",
            "--records",
            str(records_path),
            "--output",
            str(tmp_path / "ranking.json"),
            "--config",
            str(config_path),
        ],
    )

    assert result.exit_code == 2
    assert not (tmp_path / "ranking.json").exists()


def test_cli_explain_prints_breakdown(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        ["explain", "c", "--records", str(records_path), "--config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["cluster"] == "C"
    assert 0.0 <= payload["score"] <= 1.0
    total = sum(factor["contribution"] for factor in payload["factors"])
    assert payload["score"] == pytest.approx(total, abs=1e-6)


def test_cli_explain_unknown_cluster_fails(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    write_records(records_path, RECORDS)

    result = runner.invoke(app, ["explain", "nope", "--records", str(records_path)])

    assert result.exit_code == 1


def test_cli_features_lists_catalog(runner: CliRunner) -> None:
    result = runner.invoke(app, ["features"])

    assert result.exit_code == 0, result.output
    catalog = json.loads(result.stdout)
    names = {entry["name"] for entry in catalog}
    assert {"cluster_age_years", "effective_core_utilization", "has_sql"} <= names
    assert all(set(entry) == {"name", "kind", "unit", "higher_is_better", "description"} for entry in catalog)


def test_cli_compare_lists_clusters_side_by_side(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        ["compare", "A", "b", "zzz", "--records", str(records_path), "--config", str(config_path), "--top", "1"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert [item["cluster"] for item in payload["clusters"]] == ["A", "B"]
    assert payload["clusters"][0]["score"] > payload["clusters"][1]["score"]
    assert all(len(item["top_factors"]) == 1 for item in payload["clusters"])
    assert payload["missing"] == ["zzz"]


def test_cli_what_if_reports_delta(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        [
            "what-if",
            "D",
            "--edits",
            '{"ClusterAgeYears": 20}',
            "--records",
            str(records_path),
            "--config",
            str(config_path),
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["cluster"] == "D"
    assert payload["after"]["score"] > payload["before"]["score"]
    assert payload["delta"] == pytest.approx(payload["after"]["score"] - payload["before"]["score"], abs=1e-6)
    assert payload["ignored_edits"] == []


def test_cli_what_if_rejects_bad_edits(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    write_records(records_path, RECORDS)

    broken = runner.invoke(app, ["what-if", "A", "--edits", "{nope", "--records", str(records_path)])
    invalid = runner.invoke(
        app, ["what-if", "A", "--edits", '{"ClusterAgeYears": "old"}', "--records", str(records_path)]
    )
    missing = runner.invoke(
        app, ["what-if", "nope", "--edits", '{"ClusterAgeYears": 1}', "--records", str(records_path)]
    )

    assert broken.exit_code == 2
    assert invalid.exit_code == 2
    assert missing.exit_code == 1


def test_cli_bulk_what_if_applies_edits_to_cohort(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        [
            "bulk-what-if",
            "--criteria",
            '{"StringIn": {"Region": ["eastus"]}}',
            "--edits",
            '{"UsedCores": 0}',
            "--records",
            str(records_path),
            "--config",
            str(config_path),
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["count"] == 4
    assert {item["cluster"] for item in payload["items"]} == {"A", "B", "D", "E"}
    after = [item["after_score"] for item in payload["items"]]
    assert after == sorted(after, reverse=True)
    assert all(item["delta"] >= 0 for item in payload["items"])


def test_cli_weights_merges_overrides(runner: CliRunner) -> None:
    result = runner.invoke(app, ["weights", "--set", '{"HasSql": 0.5}'])
    rejected = runner.invoke(app, ["weights", "--set", '{"HasSql": "high"}'])

    assert result.exit_code == 0, result.output
    merged = json.loads(result.stdout)
    assert merged["has_sql"] == pytest.approx(0.5)
    assert sum(merged.values()) == pytest.approx(1.0)
    assert rejected.exit_code == 2


def test_cli_eligibility_summary_groups_by_region(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        ["eligibility-summary", "--by", "Region", "--records", str(records_path), "--config", str(config_path)],
    )
    unknown = runner.invoke(
        app, ["eligibility-summary", "--by", "Nope", "--records", str(records_path)]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == [
        {"group": "eastus", "total": 4, "passed": 2, "failed": 2},
        {"group": "West US 2", "total": 1, "passed": 1, "failed": 0},
    ]
    assert unknown.exit_code == 1


def test_cli_eligible_soon_lists_aging_clusters(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    config_path = tmp_path / "config.yaml"
    write_records(records_path, RECORDS)
    write_yaml(config_path, CONFIG)

    result = runner.invoke(
        app,
        ["eligible-soon", "--days", "3650", "--records", str(records_path), "--config", str(config_path)],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["days"] == 3650
    assert [item["cluster"] for item in payload["items"]] == ["D"]


def test_cli_distinct_and_stats(tmp_path: Path, runner: CliRunner) -> None:
    records_path = tmp_path / "clusters.jsonl"
    write_records(records_path, RECORDS)

    regions = runner.invoke(app, ["distinct", "Region", "--records", str(records_path)])
    ages = runner.invoke(app, ["stats", "ClusterAgeYears", "--records", str(records_path)])
    fallback = runner.invoke(app, ["stats", "Region", "--records", str(records_path)])
    unknown = runner.invoke(app, ["stats", "Nope", "--records", str(records_path)])

    assert regions.exit_code == 0, regions.output
    assert json.loads(regions.stdout) == [
        {"value": "eastus", "count": 3},
        {"value": "East US", "count": 1},
        {"value": "West US 2", "count": 1},
    ]
    assert ages.exit_code == 0, ages.output
    summary = json.loads(ages.stdout)
    assert summary["field"] == "cluster_age_years"
    assert (summary["count"], summary["nulls"]) == (5, 0)
    assert (summary["min"], summary["median"], summary["max"]) == (3.0, 9.0, 12.0)
    assert json.loads(fallback.stdout) == json.loads(regions.stdout)
    assert unknown.exit_code == 1
