"""Ranking pipeline assembly and execution."""

from __future__ import annotations

import json
import math
from dataclasses import asdict
from pathlib import Path

import pendulum
import structlog
from pydantic import ValidationError

from .core import (
    CriteriaEvaluator,
    EligibilityGate,
    FeatureRegistry,
    ScoreBreakdown,
    ScoringEngine,
    WeightConfig,
)
from .schemas import ClusterRecord, Criteria, EligibilityRules
from . import __version__


class RecordLoadError(ValueError):
    """Raised when record loading encounters invalid lines."""

    def __init__(self, errors: list[str], partial: list[ClusterRecord]):
        super().__init__("Record loading failed")
        self.errors = errors
        self.partial = partial

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Record loading failed: {self.errors}"


class RecordLoader:
    """Load cluster records from a JSON Lines export."""

    def load(self, path: Path) -> list[ClusterRecord]:
        records: list[ClusterRecord] = []
        errors: list[str] = []
        with path.open("r", encoding="utf-8") as handle:
            for idx, line in enumerate(handle, start=1):
                raw = line.strip()
                if not raw:
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError as exc:
                    errors.append(f"line {idx}: invalid JSON ({exc})")
                    continue
                if not isinstance(payload, dict):
                    errors.append(f"line {idx}: expected a JSON object")
                    continue
                try:
                    record = ClusterRecord.model_validate(payload)
                except ValidationError as exc:
                    errors.append(f"line {idx}: {exc.error_count()} invalid field(s) ({exc})")
                    continue
                records.append(record)
        if errors:
            raise RecordLoadError(errors, records)
        return records


class OutputWriter:
    """Persist ranking reports."""

    def write(self, path: Path, payload: dict | list[dict]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default),
            encoding="utf-8",
        )


def serialize_breakdown(breakdown: ScoreBreakdown) -> dict:
    """Plain-dict view of a breakdown, without the source record."""
    return {
        "cluster": breakdown.record_id,
        "score": breakdown.score,
        "factors": [asdict(factor) for factor in breakdown.factors],
    }


def tie_break(
    rankings: list[ScoreBreakdown],
    primary: str | None,
    features: FeatureRegistry,
) -> list[ScoreBreakdown]:
    """Order by score, then by the primary feature in its preferred direction.

    Records with no value for the primary feature go last within a score tier.
    """
    if primary is None:
        return list(rankings)

    higher_is_better = features.higher_is_better(primary)

    def key(breakdown: ScoreBreakdown) -> tuple[float, int, float]:
        raw = next(
            (factor.raw for factor in breakdown.factors if factor.feature == primary),
            None,
        )
        if raw is None or not math.isfinite(raw):
            return (-breakdown.score, 1, 0.0)
        return (-breakdown.score, 0, -raw if higher_is_better else raw)

    return sorted(rankings, key=key)


class DecommissionPipeline:
    """End-to-end ranking orchestrator: filter, gate, score, report."""

    def __init__(
        self,
        *,
        evaluator: CriteriaEvaluator,
        gate: EligibilityGate,
        engine: ScoringEngine,
        loader: RecordLoader | None = None,
        writer: OutputWriter | None = None,
        criteria: Criteria | None = None,
        rules: EligibilityRules | None = None,
    ) -> None:
        self._evaluator = evaluator
        self._gate = gate
        self._engine = engine
        self._loader = loader or RecordLoader()
        self._writer = writer or OutputWriter()
        self._criteria = criteria or Criteria()
        self._rules = rules or EligibilityRules()
        self._logger = structlog.get_logger(__name__)

    @property
    def engine(self) -> ScoringEngine:
        return self._engine

    def load(self, records_path: Path) -> tuple[list[ClusterRecord], list[str]]:
        """Load records, downgrading per-line failures to collected errors."""
        try:
            return self._loader.load(records_path), []
        except RecordLoadError as exc:
            self._logger.warning("records.partial_load", errors=exc.errors)
            return exc.partial, list(exc.errors)

    def run(
        self,
        *,
        records_path: Path,
        output_path: Path,
        top_n: int | None = None,
        audit_logger: "AuditLogger | None" = None,
    ) -> list[dict]:
        records, load_errors = self.load(records_path)

        filtered = self._evaluator.filter(records, self._criteria.filter_only())
        report = self._gate.filter_eligible(filtered, self._rules)
        candidates = {id(record) for record in report.eligible}

        # statistics come from every loaded record, not only the candidates
        scored = self._engine.score_all(records)
        primary = WeightConfig(weights=scored.applied_weights).primary_feature()
        rankings = tie_break(
            [item for item in scored.rankings if id(item.record) in candidates],
            primary,
            self._engine.features,
        )
        if top_n is not None:
            rankings = rankings[:top_n]

        serialized_results: list[dict] = []
        for rank, breakdown in enumerate(rankings, start=1):
            entry = {"rank": rank, **serialize_breakdown(breakdown)}
            serialized_results.append(entry)

            if audit_logger:
                audit_logger.append(
                    {
                        "cluster": breakdown.record_id,
                        "rank": rank,
                        "score": breakdown.score,
                        "contributions": {
                            factor.feature: factor.contribution for factor in breakdown.factors
                        },
                    }
                )

            self._logger.info(
                "pipeline.result",
                cluster=breakdown.record_id,
                rank=rank,
                score=breakdown.score,
            )

        ineligible = [
            {"cluster": item.record.record_id, "reasons": item.reasons}
            for item in report.ineligible
        ]

        metadata = {
            "record_count": len(records),
            "filtered_count": len(filtered),
            "eligible_count": len(report.eligible),
            "ineligible_count": len(report.ineligible),
            "ranked_count": len(serialized_results),
            "primary_feature": primary,
            "applied_weights": scored.applied_weights,
            "ignored_features": scored.ignored_features,
            "errors": load_errors,
            "timestamp": pendulum.now().to_iso8601_string(),
            "app_version": __version__,
        }
        payload_with_meta = {
            "metadata": metadata,
            "results": serialized_results,
            "ineligible": ineligible,
        }

        self._writer.write(output_path, payload_with_meta)
        return serialized_results

    def explain(self, record_id: str, records_path: Path) -> dict | None:
        """Breakdown for one cluster, scored against the whole loaded population."""
        records, _ = self.load(records_path)
        breakdown = self._engine.explain(record_id, records)
        if breakdown is None:
            return None
        return serialize_breakdown(breakdown)

    def compare(self, record_ids: list[str], records_path: Path, *, limit: int = 5) -> dict:
        """Side-by-side scores of several clusters with their strongest factors."""
        records, _ = self.load(records_path)
        result = self._engine.compare(record_ids, records)
        found = {item.record_id.casefold() for item in result.rankings}
        return {
            "clusters": [
                {
                    "cluster": item.record_id,
                    "score": item.score,
                    "top_factors": [asdict(factor) for factor in item.top_factors(limit)],
                }
                for item in result.rankings
            ],
            "missing": [name for name in record_ids if name.strip().casefold() not in found],
            "applied_weights": result.applied_weights,
        }

    def what_if(self, record_id: str, edits: dict, records_path: Path) -> dict | None:
        """Before and after breakdowns of one cluster with ``edits`` applied."""
        records, _ = self.load(records_path)
        result = self._engine.what_if(record_id, edits, records)
        if result is None:
            return None
        return {
            "cluster": result.record_id,
            "before": serialize_breakdown(result.before),
            "after": serialize_breakdown(result.after),
            "delta": result.delta,
            "edits": edits,
            "ignored_edits": list(result.ignored_edits),
        }

    def bulk_what_if(self, criteria: Criteria, edits: dict, records_path: Path) -> dict:
        """Apply ``edits`` to every cluster selected by ``criteria`` and rescore."""
        records, _ = self.load(records_path)
        cohort = self._evaluator.apply(records, criteria)
        results = self._engine.bulk_what_if(cohort, edits, records)
        self._logger.info("pipeline.bulk_what_if", cohort=len(cohort), edits=sorted(edits))
        return {
            "count": len(results),
            "items": [
                {
                    "cluster": item.record_id,
                    "before_score": item.before.score,
                    "after_score": item.after.score,
                    "delta": item.delta,
                }
                for item in results
            ],
            "ignored_edits": list(results[0].ignored_edits) if results else [],
        }

    def merged_weights(self, overrides: dict, *, normalize_rest: bool = True) -> dict[str, float]:
        """Configured weights with ``overrides`` merged in, rebalanced."""
        merged = self._engine.default_weights.merge(overrides, normalize_rest=normalize_rest)
        return merged.weights

    def eligibility_summary(
        self,
        field: str,
        records_path: Path,
        *,
        criteria: Criteria | None = None,
    ) -> list[dict] | None:
        """Eligibility pass/fail counts per value of ``field``."""
        records, _ = self.load(records_path)
        selected = self._evaluator.apply(records, criteria or Criteria())
        groups = self._gate.summary_by(selected, self._rules, field)
        if groups is None:
            return None
        return [asdict(group) for group in groups]

    def eligible_soon(
        self,
        records_path: Path,
        *,
        days: int = 90,
        criteria: Criteria | None = None,
    ) -> dict:
        """Clusters that pass eligibility once ``days`` of age are added."""
        records, _ = self.load(records_path)
        selected = self._evaluator.apply(records, criteria or Criteria())
        upcoming = self._gate.eligible_soon(selected, self._rules, days)
        return {
            "days": max(0, days),
            "count": len(upcoming),
            "items": [
                {
                    "cluster": item.record.record_id,
                    "current_age_years": item.current_age_years,
                    "projected_age_years": item.projected_age_years,
                    "reasons_now": item.reasons_now,
                }
                for item in upcoming
            ],
        }

    def distinct(
        self,
        field: str,
        records_path: Path,
        *,
        criteria: Criteria | None = None,
    ) -> list[dict] | None:
        records, _ = self.load(records_path)
        selected = self._evaluator.apply(records, criteria or Criteria())
        values = self._evaluator.distinct(selected, field)
        if values is None:
            return None
        return [asdict(item) for item in values]

    def field_stats(
        self,
        field: str,
        records_path: Path,
        *,
        criteria: Criteria | None = None,
    ) -> dict | None:
        """Numeric summary of ``field`` over the selected clusters."""
        records, _ = self.load(records_path)
        selected = self._evaluator.apply(records, criteria or Criteria())
        summary = self._evaluator.summary_stats(selected, field)
        if summary is None:
            return None
        return asdict(summary)


def _json_default(value):  # type: ignore[override]
    if isinstance(value, pendulum.DateTime):
        return value.to_iso8601_string()
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class AuditLogger:
    """Append-only audit logger writing JSON lines."""

    def __init__(self, path: Path):
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: dict) -> None:
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False, default=_json_default))
            handle.write("\n")
