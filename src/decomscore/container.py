"""Dependency injection container for the ranking system."""

from __future__ import annotations

from dependency_injector import containers, providers

from .core import (
    AccessorRegistry,
    CriteriaEvaluator,
    EligibilityGate,
    FeatureRegistry,
    ScoringConfig,
    ScoringEngine,
    WeightConfig,
)
from .pipeline import DecommissionPipeline, RecordLoader
from .schemas import Criteria, EligibilityRules


class DecommissionContainer(containers.DeclarativeContainer):
    """Dependency-injector container definition."""

    accessor_registry = providers.Singleton(AccessorRegistry)
    feature_registry = providers.Singleton(FeatureRegistry, accessors=accessor_registry)

    scoring_config = providers.Singleton(ScoringConfig)
    default_weights = providers.Singleton(WeightConfig.default)
    eligibility_rules = providers.Singleton(EligibilityRules)
    criteria = providers.Singleton(Criteria)

    criteria_evaluator = providers.Singleton(
        CriteriaEvaluator,
        accessors=accessor_registry,
        features=feature_registry,
    )
    eligibility_gate = providers.Singleton(EligibilityGate, accessors=accessor_registry)
    scoring_engine = providers.Singleton(
        ScoringEngine,
        features=feature_registry,
        config=scoring_config,
        default_weights=default_weights,
    )

    record_loader = providers.Factory(RecordLoader)

    pipeline = providers.Factory(
        DecommissionPipeline,
        evaluator=criteria_evaluator,
        gate=eligibility_gate,
        engine=scoring_engine,
        loader=record_loader,
        criteria=criteria,
        rules=eligibility_rules,
    )


def create_container(*, settings: dict | None = None) -> DecommissionContainer:
    """Instantiate container with optional overrides."""

    container = DecommissionContainer()

    if not settings:
        return container

    if settings.get("scoring"):
        container.scoring_config.override(
            providers.Singleton(ScoringConfig, **settings["scoring"])
        )

    if settings.get("weights"):
        container.default_weights.override(
            providers.Singleton(WeightConfig.from_mapping, settings["weights"])
        )

    if settings.get("eligibility") is not None:
        container.eligibility_rules.override(
            providers.Singleton(EligibilityRules.model_validate, settings["eligibility"])
        )

    if settings.get("criteria") is not None:
        container.criteria.override(
            providers.Singleton(Criteria.model_validate, settings["criteria"])
        )

    return container
