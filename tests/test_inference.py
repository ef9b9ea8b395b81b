"""Tests for t-based inference on pooled coefficients."""

from __future__ import annotations

import math

import pytest
from scipy import stats

from mipool.exceptions import InvalidConfidenceLevel
from mipool.inference import reference_distribution, summarize
from mipool.poolers import pool
from mipool.records import PerImputationResult, PooledResult


def _pooled(beta_bar: float = 1.0, V_total: float = 0.04, df_total: float = 7.5) -> PooledResult:
    return PooledResult(
        coefficient_name="x",
        m=5,
        beta_bar=beta_bar,
        V_bar=V_total / 2,
        B=V_total / 2 * 5 / 6,
        eta_bar=30.0,
        V_total=V_total,
        gamma=0.5,
        df_m=16.0,
        df_obs=df_total,
        df_total=df_total,
    )


def test_summarize_three_imputation_example() -> None:
    pooled = pool([
        PerImputationResult("x", 1.0, 0.1, 20),
        PerImputationResult("x", 1.2, 0.1, 20),
        PerImputationResult("x", 0.8, 0.1, 20),
    ])
    summary = summarize(pooled)

    se = math.sqrt(0.01 + 0.04 * 4 / 3)
    assert summary.std_error == pytest.approx(se)
    assert summary.t_statistic == pytest.approx(1.0 / se)
    assert summary.df == pooled.df_total
    assert summary.p_value == pytest.approx(2 * (1 - stats.t.cdf(1.0 / se, pooled.df_total)))
    assert summary.critical_value == pytest.approx(stats.t.ppf(0.975, pooled.df_total))
    assert summary.ci_lower == pytest.approx(1.0 - se * summary.critical_value)
    assert summary.ci_upper == pytest.approx(1.0 + se * summary.critical_value)
    assert summary.coefficient_name == "x"
    assert summary.confidence_level == 0.95


def test_confidence_interval_is_symmetric() -> None:
    summary = summarize(_pooled(beta_bar=-3.21, V_total=0.37, df_total=4.2), confidence_level=0.9)
    assert summary.ci_upper - summary.estimate == pytest.approx(summary.estimate - summary.ci_lower)
    assert summary.ci_lower < summary.estimate < summary.ci_upper


def test_p_value_decreases_in_absolute_t() -> None:
    p_values = [summarize(_pooled(beta_bar=b)).p_value for b in (0.0, 0.1, 0.3, 0.6, 1.2, 2.4, 4.8)]
    assert p_values[0] == pytest.approx(1.0)
    assert all(a > b for a, b in zip(p_values, p_values[1:]))


def test_p_value_depends_on_absolute_t() -> None:
    assert summarize(_pooled(beta_bar=0.5)).p_value == pytest.approx(summarize(_pooled(beta_bar=-0.5)).p_value)


def test_null_value_shifts_t_but_not_interval() -> None:
    base = summarize(_pooled(beta_bar=1.0))
    shifted = summarize(_pooled(beta_bar=1.0), null_value=1.0)
    assert shifted.t_statistic == pytest.approx(0.0)
    assert shifted.p_value == pytest.approx(1.0)
    assert shifted.null_value == 1.0
    assert (shifted.ci_lower, shifted.ci_upper) == (base.ci_lower, base.ci_upper)


def test_non_integer_df_lies_between_integer_neighbours() -> None:
    low = summarize(_pooled(df_total=3.0)).critical_value
    mid = summarize(_pooled(df_total=3.5)).critical_value
    high = summarize(_pooled(df_total=4.0)).critical_value
    assert high < mid < low


def test_infinite_df_uses_normal_distribution() -> None:
    summary = summarize(_pooled(beta_bar=0.2, V_total=0.01, df_total=math.inf))
    assert summary.critical_value == pytest.approx(stats.norm.ppf(0.975))
    assert summary.p_value == pytest.approx(2 * stats.norm.sf(2.0))


def test_reference_distribution_switches_on_infinite_df() -> None:
    assert reference_distribution(math.inf).ppf(0.975) == pytest.approx(1.959964, abs=1e-6)
    assert reference_distribution(10.0).ppf(0.975) == pytest.approx(2.228139, abs=1e-6)


@pytest.mark.parametrize("level", [0.0, 1.0, -0.5, 1.5, 95])
def test_invalid_confidence_level_raises(level: float) -> None:
    with pytest.raises(InvalidConfidenceLevel):
        summarize(_pooled(), confidence_level=level)


def test_extreme_t_keeps_positive_p_value() -> None:
    summary = summarize(_pooled(beta_bar=5.0, V_total=0.01, df_total=50.0))
    assert 0 < summary.p_value < 1e-30


def test_summary_to_dict_round_trips_fields() -> None:
    summary = summarize(_pooled(), confidence_level=0.9, null_value=0.25)
    payload = summary.to_dict()
    assert payload["confidence_level"] == 0.9
    assert payload["null_value"] == 0.25
    assert payload["ci_lower"] == summary.ci_lower
