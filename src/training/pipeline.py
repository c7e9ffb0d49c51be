"""End-to-end expected-coverage pipeline for one configuration.

Public API:
    ``run_coverage_pipeline()`` — coverage table -> fitted models, forecasts,
                                  deltas and the aggregated failure list
    ``insufficient_history_failures()`` — countries dropped for an incomplete window
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from src.data.preprocessing import (
    CountrySeries,
    country_metadata,
    find_incomplete_countries,
    prepare_country_series,
    split_holdout,
)
from src.evaluation.delta import classify_significance, compute_deltas, find_unmatched
from src.training.country_batch import (
    FAILURE_COLUMNS,
    CountryFitResult,
    fit_all_countries,
    forecast_all_countries,
)
from src.utils.config import training_window

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything one configuration run produces."""

    series: list[CountrySeries]
    fit_results: list[CountryFitResult]
    forecasts: pd.DataFrame
    deltas: pd.DataFrame
    actuals: pd.DataFrame
    failures: pd.DataFrame
    metadata: pd.DataFrame


def insufficient_history_failures(
    train_df: pd.DataFrame,
    year_start: int,
    train_end: int,
) -> pd.DataFrame:
    """Failure rows for countries excluded by series preparation."""
    return pd.DataFrame({
        "iso_code": find_incomplete_countries(train_df, year_start, train_end),
        "stage": "insufficient_history",
        "reason": f"incomplete {year_start}-{train_end} window",
    }, columns=FAILURE_COLUMNS)


def run_coverage_pipeline(coverage: pd.DataFrame, config: dict) -> PipelineResult:
    """Prepare, fit, forecast, normalize and compare one antigen.

    Args:
        coverage: Validated coverage table for the configured antigen.
        config: Merged configuration dictionary.

    Returns:
        PipelineResult. Country-level problems (incomplete history,
        fallback or failed fits, forecasts without a reported value) are
        collected in ``failures`` rather than raised.
    """
    data_cfg = config["data"]
    horizon = data_cfg["horizon"]
    cap = data_cfg.get("coverage_cap", 0.99)
    confidence_level = config["model"]["confidence_level"]
    year_start, train_end = training_window(config)

    logger.info(f"\n  Running {str(data_cfg['antigen']).upper()}: train {year_start}-{train_end}, "
                f"horizon={horizon}, ci={confidence_level}")

    train_df, actuals = split_holdout(coverage, train_end, horizon)
    series = prepare_country_series(train_df, year_start, train_end)

    failure_frames = [insufficient_history_failures(train_df, year_start, train_end)]

    fit_results = fit_all_countries(series, config)
    forecasts, fit_failures = forecast_all_countries(fit_results, horizon, confidence_level, cap=cap)
    failure_frames.append(fit_failures)

    unmatched = find_unmatched(forecasts, actuals)
    failure_frames.append(pd.DataFrame({
        "iso_code": unmatched["iso_code"],
        "stage": "join_mismatch",
        "reason": "no reported coverage for " + unmatched["year"].astype(str),
    }, columns=FAILURE_COLUMNS))

    deltas = classify_significance(compute_deltas(forecasts, actuals))
    failure_frames = [f for f in failure_frames if not f.empty]
    if failure_frames:
        failures = pd.concat(failure_frames, ignore_index=True)
    else:
        failures = pd.DataFrame(columns=FAILURE_COLUMNS)

    logger.info(f"  {len(forecasts)} forecast rows, {len(deltas)} delta rows, "
                f"{len(failures)} country issues recorded")

    return PipelineResult(
        series=series,
        fit_results=fit_results,
        forecasts=forecasts,
        deltas=deltas,
        actuals=actuals,
        failures=failures,
        metadata=country_metadata(coverage),
    )
