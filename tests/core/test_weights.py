from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from decomscore.core import WeightConfig
from decomscore.core.weights import DEFAULT_WEIGHTS


def test_rebalance_sums_to_one_and_is_idempotent():
    config = WeightConfig(weights={"age": 2.0, "util": 1.0, "health": 1.0})

    once = config.rebalance()
    twice = once.rebalance()

    assert once.total() == pytest.approx(1.0)
    assert once.weights["age"] == pytest.approx(0.5)
    assert twice.weights == once.weights


def test_negative_weights_are_disabled():
    config = WeightConfig(weights={"age": 1.0, "util": -3.0}).rebalance()

    assert config.weights == {"age": 1.0, "util": 0.0}
    assert config.active() == {"age": 1.0}


def test_zero_sum_vector_is_left_alone():
    config = WeightConfig(weights={"age": 0.0, "util": -1.0}).rebalance()

    assert config.weights == {"age": 0.0, "util": 0.0}
    assert config.active() == {}
    assert config.primary_feature() is None


def test_non_finite_weights_are_rejected():
    with pytest.raises(ValidationError):
        WeightConfig(weights={"age": math.nan})
    with pytest.raises(ValidationError):
        WeightConfig(weights={"age": math.inf})


def test_from_mapping_merges_spelling_variants():
    config = WeightConfig.from_mapping({"ClusterAgeYears": 0.25, "cluster_age_years": 0.25, "Util": 0.5})

    assert config.weights == {"ClusterAgeYears": 0.5, "Util": 0.5}


def test_default_weights_are_rebalanced():
    config = WeightConfig.default()

    assert config.total() == pytest.approx(1.0)
    assert set(config.weights) == set(DEFAULT_WEIGHTS)
    assert config.primary_feature() == "effective_core_utilization"


def test_with_weight_returns_new_config():
    base = WeightConfig(weights={"age": 1.0})

    updated = base.with_weight("util", 1.0)

    assert base.weights == {"age": 1.0}
    assert updated.rebalance().weights == {"age": 0.5, "util": 0.5}


BASE = WeightConfig(weights={"age": 0.5, "util": 0.3, "health": 0.2})


def test_merge_scales_untouched_weights_into_the_remainder():
    merged = BASE.merge({"Age": 0.6})

    assert merged.weights == pytest.approx({"age": 0.6, "util": 0.24, "health": 0.16})
    assert merged.total() == pytest.approx(1.0)


def test_merge_without_normalize_rest_rebalances_everything():
    merged = BASE.merge({"age": 0.6}, normalize_rest=False)

    assert merged.weights == pytest.approx({"age": 0.6 / 1.1, "util": 0.3 / 1.1, "health": 0.2 / 1.1})


def test_merge_overrides_claiming_everything_zero_the_rest():
    merged = BASE.merge({"age": 1.5})

    assert merged.weights == pytest.approx({"age": 1.0, "util": 0.0, "health": 0.0})
    assert merged.active() == pytest.approx({"age": 1.0})


def test_merge_skips_unknown_and_null_overrides_and_clamps_negatives():
    unchanged = BASE.merge({"nope": 0.5, "util": None})
    disabled = BASE.merge({"age": -1.0})

    assert unchanged.weights == pytest.approx(BASE.weights)
    assert disabled.weights == pytest.approx({"age": 0.0, "util": 0.6, "health": 0.4})


def test_merge_rejects_non_finite_override():
    with pytest.raises(ValueError):
        BASE.merge({"age": math.nan})
