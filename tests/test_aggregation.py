"""Tests for refineloop.aggregation (weighted, renormalized totals)."""

import pytest

from refineloop.aggregation import aggregate
from refineloop.core.errors import ConfigurationInvalid, NoScorersAvailable
from refineloop.models import MissingSignal, ScoreResult

WEIGHTS = {"F": 0.5, "L": 0.3, "C": 0.2}


def _results(**values):
    return {name: ScoreResult(name, value) for name, value in values.items()}


def test_weighted_sum():
    # 0.5*0.9 + 0.3*0.8 + 0.2*0.7 = 0.83
    score = aggregate(_results(F=0.9, L=0.8, C=0.7), WEIGHTS)
    assert score.total == pytest.approx(0.83)
    assert list(score.breakdown) == ["F", "L", "C"]
    assert score.missing == {}


def test_missing_signal_renormalized():
    results = _results(F=0.9, L=0.8)
    results["C"] = MissingSignal("C", "timed out")
    # (0.45 + 0.24) / 0.8
    score = aggregate(results, WEIGHTS)
    assert score.total == pytest.approx(0.8625)
    assert "C" in score.missing
    assert "C" not in score.breakdown


def test_missing_is_not_zero():
    with_zero = aggregate(_results(F=0.9, L=0.8, C=0.0), WEIGHTS)
    without = aggregate({**_results(F=0.9, L=0.8), "C": MissingSignal("C", "down")}, WEIGHTS)
    assert with_zero.total < without.total


def test_absent_and_none_treated_as_missing():
    score = aggregate({"F": ScoreResult("F", 0.6), "L": None}, WEIGHTS)
    assert score.total == pytest.approx(0.6)
    assert set(score.missing) == {"L", "C"}


def test_weights_need_not_sum_to_one():
    score = aggregate(_results(F=1.0, L=0.0), {"F": 3.0, "L": 1.0})
    assert score.total == pytest.approx(0.75)


def test_all_unavailable_raises():
    results = {s: MissingSignal(s, "down") for s in WEIGHTS}
    with pytest.raises(NoScorersAvailable):
        aggregate(results, WEIGHTS)


def test_empty_results_raises():
    with pytest.raises(NoScorersAvailable):
        aggregate({}, WEIGHTS)


def test_only_zero_weight_available_raises():
    results = {"F": MissingSignal("F", "down"), "Z": ScoreResult("Z", 0.9)}
    with pytest.raises(NoScorersAvailable):
        aggregate(results, {"F": 1.0, "Z": 0.0})


def test_negative_weight_rejected():
    with pytest.raises(ConfigurationInvalid):
        aggregate(_results(F=0.5), {"F": -1.0})


def test_unweighted_signal_rejected():
    with pytest.raises(ConfigurationInvalid):
        aggregate(_results(X=0.5), WEIGHTS)


@pytest.mark.parametrize(
    "values,weights",
    [
        ({"F": 0.0}, {"F": 0.1}),
        ({"F": 1.0, "L": 1.0}, {"F": 7.0, "L": 0.001}),
        ({"F": 0.33, "L": 0.67, "C": 1.0}, {"F": 0.1, "L": 0.2, "C": 0.7}),
        ({"F": 1.0, "L": 0.0}, {"F": 0.0, "L": 5.0}),
    ],
)
def test_total_in_unit_interval(values, weights):
    score = aggregate(_results(**values), weights)
    assert 0.0 <= score.total <= 1.0


@pytest.mark.parametrize("bad", [float("inf"), float("nan")])
def test_non_finite_weight_rejected(bad):
    with pytest.raises(ConfigurationInvalid, match="finite"):
        aggregate(_results(F=0.0, L=0.0), {"F": bad, "L": 1.0})


def test_overflowing_weights_rejected():
    # Each weight is finite but their sum is not.
    with pytest.raises(ConfigurationInvalid, match="non-finite total"):
        aggregate(_results(F=1.0, L=1.0), {"F": 1e308, "L": 1e308})
