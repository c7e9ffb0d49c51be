"""Parallel per-country model fitting and forecasting.

Each country is an independent job: its series is fit, forecast and
reshaped without touching any other country's state, so the batch is a
plain parallel map over ``joblib``. A failure in one country is captured
in that country's result and never aborts the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd
from joblib import Parallel, delayed

from src.data.preprocessing import CountrySeries
from src.evaluation.normalization import FORECAST_COLUMNS, forecast_to_long, normalize_forecasts
from src.models.arima import AutoARIMAForecaster, FittedModel, ModelNonConvergenceError, forecast

logger = logging.getLogger(__name__)

FAILURE_COLUMNS: list[str] = ["iso_code", "stage", "reason"]


@dataclass(frozen=True)
class CountryFitResult:
    """Outcome of fitting one country: a model or the reason there is none."""

    series: CountrySeries
    model: FittedModel | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.model is not None


def fit_country(series: CountrySeries, config: dict) -> CountryFitResult:
    """Select and fit the ARIMA model for a single country.

    Args:
        series: Complete training series for the country.
        config: Merged configuration dictionary.

    Returns:
        CountryFitResult holding either the model or the error message.
    """
    forecaster = AutoARIMAForecaster(config)
    try:
        model = forecaster.fit(series.coverage, iso_code=series.iso_code)
    except (ModelNonConvergenceError, ValueError) as exc:
        return CountryFitResult(series=series, error=str(exc))
    return CountryFitResult(series=series, model=model)


def fit_all_countries(series: list[CountrySeries], config: dict) -> list[CountryFitResult]:
    """Fit every country's model in parallel.

    Args:
        series: Output of ``prepare_country_series``.
        config: Merged config; ``training.n_jobs`` sets the worker count
            (-1 uses all cores, 1 runs in-process).

    Returns:
        One CountryFitResult per input series, in input order.
    """
    if not series:
        return []

    n_jobs = config.get("training", {}).get("n_jobs", -1)
    logger.info(f"  Fitting ARIMA models for {len(series)} countries (n_jobs={n_jobs})...")
    results = Parallel(n_jobs=n_jobs)(delayed(fit_country)(s, config) for s in series)

    n_failed = sum(not r.ok for r in results)
    n_fallback = sum(r.ok and r.model.fallback for r in results)
    logger.info(f"  Fitted {len(results) - n_failed} models "
                f"({n_fallback} fallback, {n_failed} failed)")
    return list(results)


def forecast_country(
    result: CountryFitResult,
    horizon: int,
    confidence_level: float,
) -> pd.DataFrame:
    """Long-format, un-normalized forecast records for one fitted country."""
    raw = forecast(result.model, horizon, confidence_level)
    return forecast_to_long(
        raw,
        iso_code=result.series.iso_code,
        method=result.model.method,
        train_end=result.series.train_end,
        confidence_level=confidence_level,
    )


def forecast_all_countries(
    results: list[CountryFitResult],
    horizon: int,
    confidence_level: float,
    cap: float = 0.99,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Forecast every fitted country and clamp the output.

    Args:
        results: Output of ``fit_all_countries``.
        horizon: Years ahead (1 or 2).
        confidence_level: Interval level.
        cap: Coverage cap passed to ``normalize_forecasts``.

    Returns:
        Tuple of (forecasts, failures). ``forecasts`` has one row per
        (iso_code, year); ``failures`` lists countries that could not be
        fit or forecast, and countries that used the fallback model.
    """
    frames: list[pd.DataFrame] = []
    failures: list[dict[str, str]] = []

    for result in results:
        iso_code = result.series.iso_code
        if not result.ok:
            failures.append({"iso_code": iso_code, "stage": "non_convergence",
                             "reason": result.error or ""})
            continue
        if result.model.fallback:
            failures.append({"iso_code": iso_code, "stage": "fallback",
                             "reason": result.model.method})
        try:
            frames.append(forecast_country(result, horizon, confidence_level))
        except ModelNonConvergenceError as exc:
            logger.warning(f"  {iso_code}: forecast failed: {exc}")
            failures.append({"iso_code": iso_code, "stage": "non_convergence",
                             "reason": str(exc)})

    if frames:
        forecasts = normalize_forecasts(pd.concat(frames, ignore_index=True), cap=cap)
    else:
        forecasts = pd.DataFrame(columns=FORECAST_COLUMNS)
    return forecasts, pd.DataFrame(failures, columns=FAILURE_COLUMNS)


def models_table(results: list[CountryFitResult]) -> pd.DataFrame:
    """Selected order and AIC per successfully fitted country."""
    rows = []
    for r in results:
        if not r.ok:
            continue
        p, d, q = r.model.order
        rows.append({
            "iso_code": r.series.iso_code,
            "method": r.model.method,
            "p": p, "d": d, "q": q,
            "trend": r.model.trend,
            "aic": r.model.aic,
            "fallback": r.model.fallback,
            "n_candidates": r.model.n_candidates,
            "n_failed": r.model.n_failed,
        })
    return pd.DataFrame(rows, columns=["iso_code", "method", "p", "d", "q", "trend",
                                       "aic", "fallback", "n_candidates", "n_failed"])
