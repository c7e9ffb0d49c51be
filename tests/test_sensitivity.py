"""Tests for the confidence-level sensitivity sweep."""

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from conftest import ZZZ_TRAIN
from src.data.preprocessing import prepare_country_series, split_holdout
from src.evaluation.sensitivity import (
    SENSITIVITY_COLUMNS,
    country_significance,
    evaluate_confidence_level,
    run_sensitivity_sweep,
    summarise_significance,
)
from src.models.arima import AutoARIMAForecaster
from src.training.country_batch import FAILURE_COLUMNS, CountryFitResult, fit_all_countries


def _labelled(rows: list[tuple]) -> pd.DataFrame:
    """Delta records from (iso_code, year, delta, significance) tuples."""
    return pd.DataFrame(rows, columns=["iso_code", "year", "delta", "significance"])


@pytest.fixture
def fitted_panel(panel_coverage_df, zzz_coverage_df, sample_config):
    """Fit results and held-out actuals for the panel plus ZZZ."""
    coverage = pd.concat([panel_coverage_df, zzz_coverage_df], ignore_index=True)
    train_df, actuals = split_holdout(coverage, 2019, 2)
    series = prepare_country_series(train_df, 2010, 2019)
    return fit_all_countries(series, sample_config), actuals


# ---------------------------------------------------------------------------
#  Country-level aggregation
# ---------------------------------------------------------------------------

class TestCountrySignificance:
    """Tests for collapsing yearly labels to one per country."""

    def test_any_year_flags_country(self):
        deltas = _labelled([
            ("AAA", 2020, -0.01, "none"),
            ("AAA", 2021, -0.10, "decline"),
            ("BBB", 2020, 0.00, "none"),
            ("BBB", 2021, 0.01, "none"),
        ])
        labels = country_significance(deltas)
        assert labels.to_dict() == {"AAA": "decline", "BBB": "none"}

    def test_largest_delta_decides_direction(self):
        """Opposite-direction years resolve to the larger absolute delta."""
        deltas = _labelled([
            ("AAA", 2020, -0.10, "decline"),
            ("AAA", 2021, 0.20, "increase"),
        ])
        assert country_significance(deltas)["AAA"] == "increase"

    def test_empty(self):
        assert country_significance(_labelled([])).empty


class TestSummariseSignificance:
    """Tests for per-level counts and calibration gap."""

    def test_counts_and_gap(self):
        deltas = _labelled([
            ("AAA", 2020, -0.10, "decline"),
            ("BBB", 2020, 0.10, "increase"),
            ("CCC", 2020, 0.00, "none"),
            ("DDD", 2020, 0.01, "none"),
        ])
        summary = summarise_significance(deltas, 0.90)
        assert summary["count_decline"] == 1
        assert summary["count_increase"] == 1
        assert summary["signed_difference"] == 0
        assert summary["proportion_significant"] == pytest.approx(0.5)
        assert summary["calibration_gap"] == pytest.approx(0.4)

    def test_no_countries(self):
        summary = summarise_significance(_labelled([]), 0.95)
        assert summary["count_decline"] == 0
        assert np.isnan(summary["proportion_significant"])


# ---------------------------------------------------------------------------
#  Sweep
# ---------------------------------------------------------------------------

class TestSensitivitySweep:
    """Tests for the multi-level sweep over fixed models."""

    def test_table_shape_and_order(self, fitted_panel):
        """One row per level, sorted ascending, with the documented columns."""
        results, actuals = fitted_panel
        table, _ = run_sensitivity_sweep(results, actuals, [0.99, 0.80, 0.95], horizon=2)
        assert list(table.columns) == SENSITIVITY_COLUMNS
        assert table["confidence_level"].tolist() == [0.80, 0.95, 0.99]

    def test_flagged_count_non_increasing(self, fitted_panel):
        """Wider intervals can only reduce the number of flagged countries."""
        results, actuals = fitted_panel
        table, _ = run_sensitivity_sweep(results, actuals, [0.30, 0.80, 0.95, 0.99], horizon=2)
        flagged = (table["count_decline"] + table["count_increase"]).tolist()
        assert flagged == sorted(flagged, reverse=True)

    def test_collapse_flagged_at_every_level(self, fitted_panel):
        """ZZZ's collapse is a significant decline even at 99%."""
        results, actuals = fitted_panel
        table, _ = run_sensitivity_sweep(results, actuals, [0.80, 0.99], horizon=2)
        assert (table["count_decline"] >= 1).all()

    def test_evaluate_single_level(self, fitted_panel):
        """Deltas at one level cover every fitted country and forecast year."""
        results, actuals = fitted_panel
        deltas, summary, failures = evaluate_confidence_level(results, actuals, 0.95, horizon=2)
        assert deltas["iso_code"].nunique() == 9
        assert sorted(deltas["year"].unique()) == [2020, 2021]
        assert (deltas["confidence_level"] == 0.95).all()
        zzz = deltas[deltas["iso_code"] == "ZZZ"]
        assert (zzz["significance"] == "decline").all()
        assert summary["confidence_level"] == 0.95
        assert failures.empty

    def test_failures_reported_once(self, fitted_panel, sample_config, monkeypatch):
        """Failed and fallback countries are listed once, not once per level."""
        results, actuals = fitted_panel
        base = results[0].series
        failed = CountryFitResult(series=replace(base, iso_code="BAD"), error="no usable model")

        monkeypatch.setattr(AutoARIMAForecaster, "_fit_candidate", lambda self, *a: None)
        fallback_model = AutoARIMAForecaster(sample_config).fit(np.array(ZZZ_TRAIN), iso_code="FBK")
        fallback = CountryFitResult(series=replace(base, iso_code="FBK"), model=fallback_model)

        table, failures = run_sensitivity_sweep(
            results + [failed, fallback], actuals, [0.50, 0.80, 0.95], horizon=2)

        assert len(table) == 3
        assert list(failures.columns) == FAILURE_COLUMNS
        assert failures.set_index("iso_code")["stage"].to_dict() == {
            "BAD": "non_convergence",
            "FBK": "fallback",
        }
        assert failures.loc[failures["iso_code"] == "BAD", "reason"].tolist() == ["no usable model"]
