"""Reported-minus-expected deltas and significance classification.

For each (country, year) with both a forecast and a reported value:

    delta       = coverage - mean
    lower_delta = coverage - lower_ci
    upper_delta = coverage - upper_ci
    within_ci   = lower_ci <= coverage <= upper_ci
    ci_width    = upper_ci - lower_ci

A record outside its interval is a significant decline when the reported
value is below the expected mean, and a significant increase when above.
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DELTA_COLUMNS: list[str] = [
    "iso_code", "country", "region", "income_group", "year", "method",
    "confidence_level", "mean", "lower_ci", "upper_ci", "coverage",
    "delta", "lower_delta", "upper_delta", "within_ci", "ci_width",
]


def find_unmatched(forecasts: pd.DataFrame, observations: pd.DataFrame) -> pd.DataFrame:
    """Forecast rows without a reported value for the same (iso_code, year)."""
    if forecasts.empty:
        return forecasts.copy()
    reported = observations.dropna(subset=["coverage"])[["iso_code", "year"]]
    merged = forecasts.merge(reported, on=["iso_code", "year"], how="left", indicator=True)
    return merged.loc[merged["_merge"] == "left_only", forecasts.columns].reset_index(drop=True)


def compute_deltas(forecasts: pd.DataFrame, observations: pd.DataFrame) -> pd.DataFrame:
    """Join normalized forecasts with reported coverage and derive deltas.

    Forecast years without a reported value are dropped, not treated as
    zero coverage.

    Args:
        forecasts: Normalized forecast records (iso_code, year, mean,
            lower_ci, upper_ci, method, confidence_level).
        observations: Coverage table with iso_code, year, coverage and
            country metadata columns.

    Returns:
        DataFrame with ``DELTA_COLUMNS``, sorted by (iso_code, year).

    Raises:
        ValueError: If either table has more than one row per
            (iso_code, year) for a single confidence level.
    """
    for name, table in [("forecasts", forecasts), ("observations", observations)]:
        keys = ["iso_code", "year"]
        if name == "forecasts" and "confidence_level" in table.columns:
            keys = keys + ["confidence_level"]
        if table.duplicated(subset=keys).any():
            raise ValueError(f"{name} has duplicate rows for {keys}")

    if forecasts.empty:
        return pd.DataFrame(columns=DELTA_COLUMNS)

    reported = observations.dropna(subset=["coverage"])
    meta_cols = [c for c in ["country", "region", "income_group"] if c in reported.columns]
    right = reported[["iso_code", "year", "coverage"] + meta_cols]

    merged = forecasts.merge(right, on=["iso_code", "year"], how="inner")
    n_dropped = len(forecasts) - len(merged)
    if n_dropped:
        logger.warning(f"  {n_dropped} forecast rows had no reported coverage and were dropped")

    for col in ["country", "region", "income_group"]:
        if col not in merged.columns:
            merged[col] = np.nan

    merged["delta"] = merged["coverage"] - merged["mean"]
    merged["lower_delta"] = merged["coverage"] - merged["lower_ci"]
    merged["upper_delta"] = merged["coverage"] - merged["upper_ci"]
    merged["within_ci"] = (
        (merged["coverage"] >= merged["lower_ci"]) & (merged["coverage"] <= merged["upper_ci"])
    )
    merged["ci_width"] = merged["upper_ci"] - merged["lower_ci"]

    return merged[DELTA_COLUMNS].sort_values(["iso_code", "year"]).reset_index(drop=True)


def classify_significance(deltas: pd.DataFrame) -> pd.DataFrame:
    """Label each record "decline", "increase" or "none".

    ``within_ci`` decides significance; the sign of ``delta`` only picks
    the direction, so a record inside its interval is never significant.
    """
    out = deltas.copy()
    outside = ~out["within_ci"].astype(bool)
    out["significance"] = np.select(
        [outside & (out["coverage"] < out["mean"]), outside & (out["coverage"] > out["mean"])],
        ["decline", "increase"],
        default="none",
    )
    return out
