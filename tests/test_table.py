"""Tests for the per-coefficient result table."""

from __future__ import annotations

import json
import logging
import math

import numpy as np
import pytest

from mipool.exceptions import InsufficientImputations, InvalidConfidenceLevel, NonPositiveDegreesOfFreedom
from mipool.inference import summarize
from mipool.poolers import SufficientStats, pool
from mipool.records import PerImputationResult
from mipool.table import TABLE_COLUMNS, ResultTable, build


def _interleaved_records() -> list[PerImputationResult]:
    # Three imputations of a model with coefficients in the order (Intercept), x, z
    values = {
        "(Intercept)": ([2.01, 1.97, 2.05], [0.30, 0.31, 0.29], [24.2, 23.8, 24.9]),
        "x": ([1.0, 1.2, 0.8], [0.1, 0.1, 0.1], [20.0, 20.0, 20.0]),
        "z": ([-0.41, -0.38, -0.45], [0.12, 0.11, 0.13], [17.5, 18.0, 16.9]),
    }
    records = []
    for imputation in range(3):
        for name, (estimates, std_errors, dfs) in values.items():
            records.append(PerImputationResult(
                name, estimates[imputation], std_errors[imputation], dfs[imputation], imputation=imputation + 1
            ))
    return records


# ---------------------------------------------------------------------------
# Grouping and ordering


def test_build_preserves_first_seen_order() -> None:
    table = build(_interleaved_records())
    assert table.coefficient_names == ["(Intercept)", "x", "z"]
    assert len(table) == 3
    assert table.ok


def test_rows_match_pool_and_summarize() -> None:
    records = _interleaved_records()
    table = ResultTable.build(records)
    expected = summarize(pool([r for r in records if r.coefficient_name == "x"]))

    row = table["x"]
    assert row.ok
    assert row.m == 3
    assert row.summary == expected
    record = row.to_record()
    assert record["estimate"] == pytest.approx(1.0)
    assert record["fraction_missing_info"] == pytest.approx(16 / 19)
    assert record["df"] == pytest.approx(1.4257, abs=1e-4)
    assert record["error"] is None


def test_row_order_follows_first_appearance_not_alphabet() -> None:
    records = [
        PerImputationResult("zeta", 1.0, 0.1, 10),
        PerImputationResult("alpha", 1.0, 0.1, 10),
        PerImputationResult("zeta", 1.1, 0.1, 10),
        PerImputationResult("alpha", 0.9, 0.1, 10),
    ]
    assert build(records).coefficient_names == ["zeta", "alpha"]


def test_unknown_coefficient_lookup_raises_key_error() -> None:
    with pytest.raises(KeyError):
        build(_interleaved_records())["w"]


# ---------------------------------------------------------------------------
# Failure policy


def _records_with_failures() -> list[PerImputationResult]:
    records = _interleaved_records()
    records.append(PerImputationResult("lonely", 0.3, 0.1, 12.0))
    records.append(PerImputationResult("broken", 0.3, 0.1, 12.0))
    records.append(PerImputationResult("broken", 0.4, 0.1, -1.0))
    return records


def test_failed_coefficients_keep_marked_rows(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="mipool.table"):
        table = build(_records_with_failures())

    assert table.coefficient_names == ["(Intercept)", "x", "z", "lonely", "broken"]
    assert not table.ok
    assert [row.coefficient for row in table.failed] == ["lonely", "broken"]
    assert isinstance(table["lonely"].exception, InsufficientImputations)
    assert isinstance(table["broken"].exception, NonPositiveDegreesOfFreedom)
    assert table["lonely"].error.startswith("InsufficientImputations")
    assert "lonely" in caplog.text


def test_tiny_between_variance_keeps_every_row() -> None:
    records = _records_with_failures()
    records.append(PerImputationResult("tiny", 0.0, 1.0, 20.0))
    records.append(PerImputationResult("tiny", 1e-100, 1.0, 20.0))
    table = build(records)

    assert table.coefficient_names == ["(Intercept)", "x", "z", "lonely", "broken", "tiny"]
    assert table["tiny"].ok
    assert math.isinf(table["tiny"].pooled.df_m)
    assert table["tiny"].summary.df == table["tiny"].pooled.df_obs
    assert [row.coefficient for row in table.failed] == ["lonely", "broken"]


def test_failed_rows_are_distinguishable_in_dataframe() -> None:
    df = build(_records_with_failures()).to_dataframe()

    assert list(df.columns) == [c for c in TABLE_COLUMNS if c != "coefficient"]
    assert df.loc["lonely", "error"].startswith("InsufficientImputations")
    assert np.isnan(df.loc["lonely", "estimate"])
    ok_rows = df[df["error"].isna()]
    assert len(ok_rows) == 3
    assert not ok_rows.drop(columns="error").isna().any().any()


def test_raise_for_errors_raises_first_failure() -> None:
    table = build(_records_with_failures())
    with pytest.raises(InsufficientImputations):
        table.raise_for_errors()


def test_raise_for_errors_is_silent_when_all_ok() -> None:
    build(_interleaved_records()).raise_for_errors()


def test_invalid_confidence_level_aborts_build() -> None:
    with pytest.raises(InvalidConfidenceLevel):
        build(_interleaved_records(), confidence_level=1.2)


# ---------------------------------------------------------------------------
# Configuration


def test_null_values_apply_per_coefficient(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="mipool.table"):
        table = build(_interleaved_records(), null_values={"x": 1.0, "missing": 3.0})

    assert table["x"].summary.t_statistic == pytest.approx(0.0)
    assert table["x"].summary.null_value == 1.0
    assert table["z"].summary.null_value == 0.0
    assert "missing" in caplog.text


def test_confidence_level_widens_interval() -> None:
    narrow = build(_interleaved_records(), confidence_level=0.8)["z"].summary
    wide = build(_interleaved_records(), confidence_level=0.99)["z"].summary
    assert wide.ci_upper - wide.ci_lower > narrow.ci_upper - narrow.ci_lower


def test_parallel_build_matches_sequential() -> None:
    records = _records_with_failures()
    sequential = build(records)
    parallel = build(records, n_jobs=2)

    assert parallel.coefficient_names == sequential.coefficient_names
    for a, b in zip(sequential, parallel):
        assert a.ok == b.ok
        assert a.summary == b.summary
    assert parallel["broken"].exception.coefficient_name == "broken"


def test_from_sufficient_stats_matches_build() -> None:
    stats = [
        SufficientStats(coefficient_name="x", m=3, beta_bar=1.0, V_bar=0.01, B=0.04, eta_bar=20.0),
        SufficientStats(coefficient_name="lonely", m=1),
    ]
    table = ResultTable.from_sufficient_stats(stats)
    assert table.coefficient_names == ["x", "lonely"]
    assert table["x"].pooled.gamma == pytest.approx(16 / 19)
    assert not table["lonely"].ok


# ---------------------------------------------------------------------------
# Output


def test_to_dict_is_json_serializable() -> None:
    payload = build(_records_with_failures()).to_dict()
    encoded = json.dumps(payload, allow_nan=False)

    assert "mipool_version" in payload and "computed_at" in payload
    assert payload["rows"][3]["estimate"] is None
    assert json.loads(encoded)["rows"][1]["coefficient"] == "x"


def test_to_string_lists_coefficients_and_failures() -> None:
    text = build(_records_with_failures()).to_string(precision=3)
    assert "POOLED MULTIPLE-IMPUTATION RESULTS" in text
    assert "(Intercept)" in text
    assert "FAILED COEFFICIENTS" in text
    assert "lonely (m=1)" in text
    assert "95% CI" in text


def test_tidy_df_has_one_row_per_coefficient() -> None:
    df = build(_interleaved_records()).to_tidy_df()
    assert list(df["coefficient"]) == ["(Intercept)", "x", "z"]
    assert (df["m"] == 3).all()
    assert not math.isnan(df.loc[1, "ci_lower"])
