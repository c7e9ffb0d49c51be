"""Domain clamping and long-format reshaping of raw forecasts."""

import logging

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_COVERAGE_CAP = 0.99

FORECAST_COLUMNS: list[str] = [
    "iso_code", "method", "mean", "lower_ci", "upper_ci", "year",
    "confidence_level", "step",
]


def forecast_to_long(
    raw: pd.DataFrame,
    iso_code: str,
    method: str,
    train_end: int,
    confidence_level: float,
) -> pd.DataFrame:
    """Turn one country's step-indexed forecast into per-year records.

    The target year is ``train_end + step``, taken from each row's own
    step index, so the result does not depend on row order.

    Args:
        raw: Forecaster output with step, mean, lower_ci, upper_ci columns.
        iso_code: Country identifier.
        method: Model label.
        train_end: Last training year.
        confidence_level: Interval level used to build ``raw``.

    Returns:
        DataFrame with ``FORECAST_COLUMNS``, one row per step.
    """
    records = raw[["step", "mean", "lower_ci", "upper_ci"]].copy()
    records["step"] = records["step"].astype(int)
    records["year"] = train_end + records["step"]
    records["iso_code"] = iso_code
    records["method"] = method
    records["confidence_level"] = confidence_level
    return records[FORECAST_COLUMNS].sort_values("step").reset_index(drop=True)


def normalize_forecasts(
    forecasts: pd.DataFrame,
    cap: float = DEFAULT_COVERAGE_CAP,
) -> pd.DataFrame:
    """Clamp forecasts to the reportable coverage range.

    Reported coverage never reaches 100%, so mean and upper bound are
    capped at ``cap`` and the lower bound is floored at 0. Each column is
    clamped on its own; because clamping is monotone the ordering
    lower <= mean <= upper is preserved, and every value ends up in
    [0, cap].

    Args:
        forecasts: Long-format forecast records.
        cap: Upper bound on coverage values.

    Returns:
        Copy of ``forecasts`` with clamped mean, lower_ci and upper_ci.
    """
    out = forecasts.copy()
    n_capped = int((out["mean"] > cap).sum() + (out["upper_ci"] > cap).sum())
    n_floored = int((out["lower_ci"] < 0).sum())

    out["mean"] = out["mean"].clip(lower=0.0, upper=cap)
    out["upper_ci"] = out["upper_ci"].clip(lower=0.0, upper=cap)
    out["lower_ci"] = out["lower_ci"].clip(lower=0.0, upper=cap)

    if n_capped or n_floored:
        logger.info(f"  Normalized forecasts: {n_capped} values capped at {cap}, "
                    f"{n_floored} lower bounds floored at 0")
    return out
