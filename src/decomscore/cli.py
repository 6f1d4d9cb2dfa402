"""Typer CLI entrypoint for the decommission ranking pipeline."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional

import typer
import yaml
from pydantic import ValidationError

from .container import create_container
from .logging import configure_logging
from .pipeline import AuditLogger
from .schemas import Criteria
from .schemas.config import load_config

app = typer.Typer(help="Cluster decommission ranking CLI.")


def _load_settings(config: Path | None) -> dict[str, Any]:
    if not config:
        return {}
    with config.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    try:
        return load_config(loaded).to_settings()
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid config file: {exc}", param_hint="config") from exc


def _json_object(text: str | None, param_name: str) -> dict[str, Any]:
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON: {exc}", param_hint=param_name) from exc
    if not isinstance(payload, dict):
        raise typer.BadParameter("Expected a JSON object.", param_hint=param_name)
    return payload


def _criteria(text: str | None) -> Criteria:
    try:
        return Criteria.model_validate(_json_object(text, "criteria"))
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid criteria: {exc}", param_hint="criteria") from exc


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _unknown_field(field: str) -> None:
    typer.echo(f"Unknown field {field!r}.", err=True)
    raise typer.Exit(code=1)


@app.command()
def rank(
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    output: Path = typer.Option(
        ...,
        exists=False,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Output JSON path.",
    ),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    top: Optional[int] = typer.Option(None, min=0, help="Keep only the N best ranked clusters."),
    log_level: str = typer.Option("INFO", help="Log level for structured logging."),
    audit_log: Optional[Path] = typer.Option(None, dir_okay=False, help="Audit log output (JSONL)."),
) -> None:
    """Filter, gate and rank clusters for decommission."""
    settings = _load_settings(config)

    configure_logging(log_level)

    container = create_container(settings=settings)
    pipeline = container.pipeline()
    audit_logger = AuditLogger(audit_log) if audit_log else None

    results = pipeline.run(
        records_path=records,
        output_path=output,
        top_n=top,
        audit_logger=audit_logger,
    )
    typer.echo(f"Ranked {len(results)} clusters. Results saved to {output}.")


@app.command()
def explain(
    cluster: str = typer.Argument(..., help="Cluster name or id."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("WARNING", help="Log level for structured logging."),
) -> None:
    """Print the score breakdown of one cluster as JSON."""
    settings = _load_settings(config)

    configure_logging(log_level)

    pipeline = create_container(settings=settings).pipeline()
    breakdown = pipeline.explain(cluster, records)
    if breakdown is None:
        typer.echo(f"Cluster {cluster!r} not found in {records}.", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(breakdown, ensure_ascii=False, indent=2))


@app.command()
def compare(
    clusters: List[str] = typer.Argument(..., help="Two or more cluster names or ids."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    top: int = typer.Option(5, min=1, help="Factors shown per cluster."),
    log_level: str = typer.Option("WARNING", help="Log level for structured logging."),
) -> None:
    """Print several clusters side by side with their strongest factors."""
    settings = _load_settings(config)

    configure_logging(log_level)

    pipeline = create_container(settings=settings).pipeline()
    _echo_json(pipeline.compare(clusters, records, limit=top))


@app.command("what-if")
def what_if(
    cluster: str = typer.Argument(..., help="Cluster name or id."),
    edits: str = typer.Option(..., help='Field edits as JSON, e.g. {"CoreUtilization": 25}.'),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("WARNING", help="Log level for structured logging."),
) -> None:
    """Rescore one cluster with hypothetical field edits."""
    settings = _load_settings(config)
    changes = _json_object(edits, "edits")

    configure_logging(log_level)

    pipeline = create_container(settings=settings).pipeline()
    try:
        outcome = pipeline.what_if(cluster, changes, records)
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid edits: {exc}", param_hint="edits") from exc
    if outcome is None:
        typer.echo(f"Cluster {cluster!r} not found in {records}.", err=True)
        raise typer.Exit(code=1)
    _echo_json(outcome)


@app.command("bulk-what-if")
def bulk_what_if(
    edits: str = typer.Option(..., help="Field edits as JSON, applied to every selected cluster."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    criteria: Optional[str] = typer.Option(None, help="Criteria JSON selecting the cohort."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("WARNING", help="Log level for structured logging."),
) -> None:
    """Rescore a filtered cohort with the same edits applied to each cluster."""
    settings = _load_settings(config)
    changes = _json_object(edits, "edits")
    cohort = _criteria(criteria)

    configure_logging(log_level)

    pipeline = create_container(settings=settings).pipeline()
    try:
        outcome = pipeline.bulk_what_if(cohort, changes, records)
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid edits: {exc}", param_hint="edits") from exc
    _echo_json(outcome)


@app.command()
def weights(
    set_: Optional[str] = typer.Option(None, "--set", help='Partial weight overrides as JSON, e.g. {"HasSql": 0.3}.'),
    normalize_rest: bool = typer.Option(
        True, "--normalize-rest/--no-normalize-rest", help="Scale untouched weights to fill the remainder."
    ),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
) -> None:
    """Print the configured weights, optionally merged with overrides."""
    settings = _load_settings(config)
    overrides = _json_object(set_, "set")
    bad = sorted(
        name
        for name, value in overrides.items()
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)))
    )
    if bad:
        raise typer.BadParameter(f"Weights must be numbers: {', '.join(bad)}", param_hint="set")

    configure_logging("WARNING")
    pipeline = create_container(settings=settings).pipeline()
    try:
        merged = pipeline.merged_weights(overrides, normalize_rest=normalize_rest)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="set") from exc
    _echo_json(merged)


@app.command("eligibility-summary")
def eligibility_summary(
    by: str = typer.Option("Region", help="Field to group by."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    criteria: Optional[str] = typer.Option(None, help="Criteria JSON narrowing the population."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
) -> None:
    """Print eligibility pass/fail counts grouped by a field."""
    settings = _load_settings(config)
    selection = _criteria(criteria)

    configure_logging("WARNING")
    pipeline = create_container(settings=settings).pipeline()
    groups = pipeline.eligibility_summary(by, records, criteria=selection)
    if groups is None:
        _unknown_field(by)
    _echo_json(groups)


@app.command("eligible-soon")
def eligible_soon(
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    days: int = typer.Option(90, min=0, help="Lookahead window in days."),
    criteria: Optional[str] = typer.Option(None, help="Criteria JSON narrowing the population."),
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
) -> None:
    """Print clusters that become eligible once only their age moves forward."""
    settings = _load_settings(config)
    selection = _criteria(criteria)

    configure_logging("WARNING")
    pipeline = create_container(settings=settings).pipeline()
    _echo_json(pipeline.eligible_soon(records, days=days, criteria=selection))


@app.command()
def distinct(
    field: str = typer.Argument(..., help="Field name."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    criteria: Optional[str] = typer.Option(None, help="Criteria JSON narrowing the population."),
) -> None:
    """Print distinct values of a field with their counts."""
    selection = _criteria(criteria)
    configure_logging("WARNING")
    pipeline = create_container().pipeline()
    values = pipeline.distinct(field, records, criteria=selection)
    if values is None:
        _unknown_field(field)
    _echo_json(values)


@app.command()
def stats(
    field: str = typer.Argument(..., help="Numeric or derived field name."),
    records: Path = typer.Option(..., exists=True, readable=True, dir_okay=False, help="Cluster records JSONL path."),
    criteria: Optional[str] = typer.Option(None, help="Criteria JSON narrowing the population."),
) -> None:
    """Print min, quartiles, max and mean of a numeric field.

    Non-numeric fields fall back to distinct value counts.
    """
    selection = _criteria(criteria)
    configure_logging("WARNING")
    pipeline = create_container().pipeline()
    summary = pipeline.field_stats(field, records, criteria=selection)
    if summary is not None:
        _echo_json(summary)
        return
    values = pipeline.distinct(field, records, criteria=selection)
    if values is None:
        _unknown_field(field)
    _echo_json(values)


@app.command()
def features() -> None:
    """Print the catalog of scoring features as JSON."""
    registry = create_container().feature_registry()
    typer.echo(
        json.dumps([asdict(info) for info in registry.catalog()], ensure_ascii=False, indent=2)
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
