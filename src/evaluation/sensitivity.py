"""Sensitivity of significance counts to the chosen confidence level.

Under the null of no systematic shift, a calibrated interval at level c
leaves about (1 - c) of countries outside it by chance. The sweep
reports, per level, how many countries show a significant decline or
increase and how far the flagged proportion is from that nominal rate:

    proportion_significant = (count_decline + count_increase) / n_countries
    calibration_gap        = |proportion_significant - (1 - c)|

A country counts as significant at a level when any of its forecast
years falls outside the interval. If different years point in opposite
directions, the year with the largest absolute delta decides the
direction.

Models are fit once; only the interval level changes between runs, so
for a fixed model intervals are nested and the flagged count can only
shrink as c grows.
"""

import logging

import pandas as pd

from src.evaluation.delta import classify_significance, compute_deltas
from src.training.country_batch import FAILURE_COLUMNS, CountryFitResult, forecast_all_countries

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_LEVELS: list[float] = [0.30, 0.40, 0.50, 0.60, 0.70, 0.80, 0.90, 0.95, 0.99]

SENSITIVITY_COLUMNS: list[str] = [
    "confidence_level", "count_decline", "count_increase", "signed_difference",
    "proportion_significant", "calibration_gap",
]


def country_significance(deltas: pd.DataFrame) -> pd.Series:
    """Collapse per-year significance into one label per country.

    Args:
        deltas: Delta records with a ``significance`` column.

    Returns:
        Series indexed by iso_code with values "decline", "increase"
        or "none".
    """
    if deltas.empty:
        return pd.Series(dtype=object, name="significance")

    flagged = deltas[deltas["significance"] != "none"]
    labels = pd.Series("none", index=pd.Index(sorted(deltas["iso_code"].unique()), name="iso_code"),
                       name="significance", dtype=object)
    if not flagged.empty:
        strongest = flagged.loc[flagged["delta"].abs().groupby(flagged["iso_code"]).idxmax()]
        labels.loc[strongest["iso_code"].to_numpy()] = strongest["significance"].to_numpy()
    return labels


def summarise_significance(deltas: pd.DataFrame, confidence_level: float) -> dict[str, float]:
    """Counts and calibration diagnostic for one confidence level."""
    labels = country_significance(deltas)
    n_countries = len(labels)
    count_decline = int((labels == "decline").sum())
    count_increase = int((labels == "increase").sum())

    if n_countries:
        proportion = (count_decline + count_increase) / n_countries
    else:
        proportion = float("nan")

    return {
        "confidence_level": confidence_level,
        "count_decline": count_decline,
        "count_increase": count_increase,
        "signed_difference": count_decline - count_increase,
        "proportion_significant": proportion,
        "calibration_gap": abs(proportion - (1.0 - confidence_level)),
    }


def evaluate_confidence_level(
    results: list[CountryFitResult],
    observations: pd.DataFrame,
    confidence_level: float,
    horizon: int,
    cap: float = 0.99,
) -> tuple[pd.DataFrame, dict[str, float], pd.DataFrame]:
    """Forecast, normalize and compare against reported coverage at one level.

    Args:
        results: Fitted models from ``fit_all_countries``.
        observations: Reported coverage for the forecast years.
        confidence_level: Interval level.
        horizon: Years ahead.
        cap: Coverage cap.

    Returns:
        Tuple of (classified delta records, summary row, failures). The
        failures table lists countries that could not be fit or forecast,
        and countries that used the fallback model.
    """
    forecasts, failures = forecast_all_countries(results, horizon, confidence_level, cap=cap)
    deltas = classify_significance(compute_deltas(forecasts, observations))
    return deltas, summarise_significance(deltas, confidence_level), failures


def run_sensitivity_sweep(
    results: list[CountryFitResult],
    observations: pd.DataFrame,
    confidence_levels: list[float] | None = None,
    horizon: int = 1,
    cap: float = 0.99,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Repeat the delta analysis across confidence levels.

    Args:
        results: Fitted models, reused for every level.
        observations: Reported coverage for the forecast years.
        confidence_levels: Levels to sweep; defaults to 0.30 ... 0.99.
        horizon: Years ahead.
        cap: Coverage cap.

    Returns:
        Tuple of (table, failures). ``table`` has ``SENSITIVITY_COLUMNS``,
        one row per level, sorted by confidence level. ``failures`` holds
        the per-country fit and forecast problems, once per country and
        stage.
    """
    levels = sorted(confidence_levels or DEFAULT_CONFIDENCE_LEVELS)
    rows = []
    failure_frames = []
    for level in levels:
        _, summary, failures = evaluate_confidence_level(
            results, observations, level, horizon, cap=cap)
        failure_frames.append(failures)
        logger.info(
            f"  ci={level:.2f}: decline={summary['count_decline']}, "
            f"increase={summary['count_increase']}, "
            f"gap={summary['calibration_gap']:.3f}"
        )
        rows.append(summary)

    failure_frames = [f for f in failure_frames if not f.empty]
    if failure_frames:
        failures = pd.concat(failure_frames, ignore_index=True)
        failures = failures.drop_duplicates(subset=["iso_code", "stage"]).reset_index(drop=True)
    else:
        failures = pd.DataFrame(columns=FAILURE_COLUMNS)
    return pd.DataFrame(rows, columns=SENSITIVITY_COLUMNS), failures
