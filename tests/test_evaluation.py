"""Tests for normalization, delta computation, and evaluation metrics."""

import numpy as np
import pandas as pd
import pytest

from src.evaluation.delta import (
    DELTA_COLUMNS,
    classify_significance,
    compute_deltas,
    find_unmatched,
)
from src.evaluation.metrics import compute_metrics, delta_metrics
from src.evaluation.normalization import FORECAST_COLUMNS, forecast_to_long, normalize_forecasts


def _forecasts(rows: list[tuple]) -> pd.DataFrame:
    """Forecast records from (iso_code, year, mean, lower_ci, upper_ci) tuples."""
    df = pd.DataFrame(rows, columns=["iso_code", "year", "mean", "lower_ci", "upper_ci"])
    df["method"] = "ARIMA(0,1,0)"
    df["confidence_level"] = 0.95
    df["step"] = df["year"] - 2019
    return df[FORECAST_COLUMNS]


def _observations(rows: list[tuple]) -> pd.DataFrame:
    """Coverage rows from (iso_code, year, coverage) tuples."""
    df = pd.DataFrame(rows, columns=["iso_code", "year", "coverage"])
    df["country"] = "Country " + df["iso_code"]
    df["region"] = "AFR"
    df["income_group"] = "LIC"
    return df


# ---------------------------------------------------------------------------
#  forecast_to_long
# ---------------------------------------------------------------------------

class TestForecastToLong:
    """Tests for step-indexed -> per-year reshaping."""

    def test_year_from_step(self):
        """Target year is train_end + step regardless of row order."""
        raw = pd.DataFrame({
            "step": [2, 1],
            "mean": [0.8, 0.9],
            "se": [0.02, 0.01],
            "lower_ci": [0.76, 0.88],
            "upper_ci": [0.84, 0.92],
        })
        long = forecast_to_long(raw, "AAA", "ARIMA(0,1,0)", train_end=2019, confidence_level=0.95)
        assert list(long.columns) == FORECAST_COLUMNS
        assert long["year"].tolist() == [2020, 2021]
        assert long["mean"].tolist() == [0.9, 0.8]
        assert (long["iso_code"] == "AAA").all()


# ---------------------------------------------------------------------------
#  normalize_forecasts
# ---------------------------------------------------------------------------

class TestNormalizeForecasts:
    """Tests for clamping forecasts into [0, cap]."""

    def test_upper_capped(self):
        """A mean of 1.02 is capped to 0.99."""
        fc = _forecasts([("AAA", 2020, 1.02, 1.00, 1.04)])
        out = normalize_forecasts(fc, cap=0.99)
        assert out["mean"].iloc[0] == pytest.approx(0.99)
        assert out["upper_ci"].iloc[0] == pytest.approx(0.99)
        assert out["lower_ci"].iloc[0] == pytest.approx(0.99)

    def test_lower_floored(self):
        """A lower bound of -0.03 is floored to 0."""
        fc = _forecasts([("AAA", 2020, 0.05, -0.03, 0.13)])
        out = normalize_forecasts(fc)
        assert out["lower_ci"].iloc[0] == 0.0
        assert out["mean"].iloc[0] == pytest.approx(0.05)
        assert out["upper_ci"].iloc[0] == pytest.approx(0.13)

    def test_ordering_and_range_invariant(self):
        """After clamping, 0 <= lower <= mean <= upper <= cap for every row."""
        rng = np.random.default_rng(3)
        mean = rng.uniform(-0.2, 1.2, 200)
        half = rng.uniform(0, 0.3, 200)
        fc = pd.DataFrame({
            "iso_code": [f"C{i:03d}" for i in range(200)],
            "year": 2020,
            "mean": mean,
            "lower_ci": mean - half,
            "upper_ci": mean + half,
        })
        fc["method"] = "x"
        fc["confidence_level"] = 0.95
        fc["step"] = 1
        out = normalize_forecasts(fc[FORECAST_COLUMNS], cap=0.99)
        assert (out["lower_ci"] >= 0).all()
        assert (out["upper_ci"] <= 0.99).all()
        assert (out["lower_ci"] <= out["mean"]).all()
        assert (out["mean"] <= out["upper_ci"]).all()

    def test_input_not_modified(self):
        fc = _forecasts([("AAA", 2020, 1.02, 1.00, 1.04)])
        normalize_forecasts(fc)
        assert fc["mean"].iloc[0] == 1.02


# ---------------------------------------------------------------------------
#  compute_deltas / classify_significance
# ---------------------------------------------------------------------------

class TestComputeDeltas:
    """Tests for reported-minus-expected deltas."""

    def test_delta_arithmetic(self):
        fc = _forecasts([("AAA", 2020, 0.90, 0.85, 0.95)])
        obs = _observations([("AAA", 2020, 0.70)])
        deltas = compute_deltas(fc, obs)
        row = deltas.iloc[0]
        assert list(deltas.columns) == DELTA_COLUMNS
        assert row["delta"] == pytest.approx(-0.20)
        assert row["lower_delta"] == pytest.approx(-0.15)
        assert row["upper_delta"] == pytest.approx(-0.25)
        assert row["ci_width"] == pytest.approx(0.10)
        assert not row["within_ci"]

    def test_boundary_is_within(self):
        """A reported value equal to a bound counts as inside the interval."""
        fc = _forecasts([("AAA", 2020, 0.90, 0.85, 0.95), ("BBB", 2020, 0.90, 0.85, 0.95)])
        obs = _observations([("AAA", 2020, 0.85), ("BBB", 2020, 0.95)])
        deltas = compute_deltas(fc, obs)
        assert deltas["within_ci"].all()

    def test_unmatched_rows_dropped(self):
        """Forecast years without reported coverage are not zero-filled."""
        fc = _forecasts([("AAA", 2020, 0.9, 0.85, 0.95), ("AAA", 2021, 0.9, 0.84, 0.96)])
        obs = _observations([("AAA", 2020, 0.88), ("AAA", 2021, np.nan)])
        deltas = compute_deltas(fc, obs)
        assert deltas["year"].tolist() == [2020]

        unmatched = find_unmatched(fc, obs)
        assert unmatched["year"].tolist() == [2021]

    def test_metadata_joined(self):
        fc = _forecasts([("AAA", 2020, 0.9, 0.85, 0.95)])
        obs = _observations([("AAA", 2020, 0.88)])
        row = compute_deltas(fc, obs).iloc[0]
        assert row["country"] == "Country AAA"
        assert row["income_group"] == "LIC"

    def test_duplicate_forecasts_raise(self):
        fc = _forecasts([("AAA", 2020, 0.9, 0.85, 0.95), ("AAA", 2020, 0.8, 0.75, 0.85)])
        obs = _observations([("AAA", 2020, 0.88)])
        with pytest.raises(ValueError, match="duplicate"):
            compute_deltas(fc, obs)

    def test_empty_forecasts(self):
        """No forecasts gives an empty table with the full schema."""
        obs = _observations([("AAA", 2020, 0.88)])
        deltas = compute_deltas(pd.DataFrame(columns=FORECAST_COLUMNS), obs)
        assert deltas.empty
        assert list(deltas.columns) == DELTA_COLUMNS


class TestClassifySignificance:
    """Tests for decline / increase / none labelling."""

    def test_labels(self):
        fc = _forecasts([
            ("AAA", 2020, 0.90, 0.85, 0.95),
            ("BBB", 2020, 0.70, 0.65, 0.75),
            ("CCC", 2020, 0.80, 0.70, 0.90),
        ])
        obs = _observations([("AAA", 2020, 0.60), ("BBB", 2020, 0.80), ("CCC", 2020, 0.72)])
        labelled = classify_significance(compute_deltas(fc, obs))
        assert labelled.set_index("iso_code")["significance"].to_dict() == {
            "AAA": "decline", "BBB": "increase", "CCC": "none",
        }

    def test_never_within_and_significant(self):
        """No record can be inside its interval and flagged at once."""
        rng = np.random.default_rng(11)
        mean = rng.uniform(0.5, 0.9, 100)
        fc = _forecasts([
            (f"C{i:03d}", 2020, m, m - 0.05, m + 0.05) for i, m in enumerate(mean)
        ])
        obs = _observations([
            (f"C{i:03d}", 2020, m + rng.normal(0, 0.06)) for i, m in enumerate(mean)
        ])
        labelled = classify_significance(compute_deltas(fc, obs))
        assert not (labelled["within_ci"] & (labelled["significance"] != "none")).any()
        assert ((~labelled["within_ci"]) == (labelled["significance"] != "none")).all()


# ---------------------------------------------------------------------------
#  compute_metrics
# ---------------------------------------------------------------------------

class TestComputeMetrics:
    """Tests for metric calculation."""

    def test_perfect_prediction(self):
        """Perfect prediction should give MSE=0, R2=1."""
        y = np.array([0.60, 0.70, 0.80, 0.90, 0.95])
        metrics = compute_metrics(y, y)
        assert metrics["mse"] == pytest.approx(0.0)
        assert metrics["rmse"] == pytest.approx(0.0)
        assert metrics["mae"] == pytest.approx(0.0)
        assert metrics["r2"] == pytest.approx(1.0)

    def test_constant_offset(self):
        """Constant offset should give MAE = offset."""
        y_true = np.array([0.60, 0.70, 0.80, 0.90, 0.95])
        y_pred = y_true - 0.05
        metrics = compute_metrics(y_true, y_pred)
        assert metrics["mae"] == pytest.approx(0.05)
        assert metrics["rmse"] == pytest.approx(0.05)

    def test_zero_coverage_masked_in_mape(self):
        """MAPE should handle zero reported coverage by masking it."""
        y_true = np.array([0.0, 0.5, 0.8])
        y_pred = np.array([0.1, 0.55, 0.8])
        metrics = compute_metrics(y_true, y_pred)
        assert metrics["mape"] == pytest.approx(5.0)

    def test_single_point_r2_nan(self):
        metrics = compute_metrics(np.array([0.8]), np.array([0.9]))
        assert np.isnan(metrics["r2"])

    def test_nan_raises(self):
        with pytest.raises(ValueError, match="NaN"):
            compute_metrics(np.array([0.8, np.nan]), np.array([0.8, 0.9]))


class TestDeltaMetrics:
    """Tests for delta-table summary metrics."""

    def test_empirical_coverage(self):
        fc = _forecasts([("AAA", 2020, 0.90, 0.85, 0.95), ("BBB", 2020, 0.90, 0.85, 0.95)])
        obs = _observations([("AAA", 2020, 0.90), ("BBB", 2020, 0.60)])
        metrics = delta_metrics(compute_deltas(fc, obs))
        assert metrics["n"] == 2
        assert metrics["empirical_coverage"] == pytest.approx(0.5)
        assert metrics["avg_ci_width"] == pytest.approx(0.10)
        assert metrics["mean_delta"] == pytest.approx(-0.15)

    def test_empty(self):
        assert delta_metrics(pd.DataFrame(columns=DELTA_COLUMNS)) == {"n": 0}
