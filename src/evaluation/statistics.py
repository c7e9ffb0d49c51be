"""Population-level statistics over delta records.

Consumes the delta table produced by ``delta.compute_deltas`` and never
modifies it. Covers the summaries reported alongside the country-level
results:

    - one-sample t-test of deltas against zero, per year
    - one-way ANOVA of deltas across income groups or regions
    - per-group mean delta, interval width and significance counts
    - missed immunisations: surviving infants x (expected - reported)
    - infant-weighted global coverage, reported vs expected
"""

import logging

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)


def delta_ttest(deltas: pd.DataFrame) -> pd.DataFrame:
    """Test whether the mean delta differs from zero, per year.

    Args:
        deltas: Delta records with year and delta columns.

    Returns:
        DataFrame with year, n, mean_delta, t_statistic, p_value.
    """
    rows = []
    for year, group in deltas.groupby("year", sort=True):
        values = group["delta"].to_numpy(dtype=float)
        if len(values) >= 2 and np.ptp(values) > 0:
            t_stat, p_value = stats.ttest_1samp(values, 0.0)
        else:
            t_stat, p_value = np.nan, np.nan
        rows.append({
            "year": int(year),
            "n": len(values),
            "mean_delta": float(values.mean()) if len(values) else np.nan,
            "t_statistic": float(t_stat),
            "p_value": float(p_value),
        })
    return pd.DataFrame(rows, columns=["year", "n", "mean_delta", "t_statistic", "p_value"])


def group_anova(deltas: pd.DataFrame, group_column: str = "income_group") -> pd.DataFrame:
    """One-way ANOVA of deltas across groups, per year.

    Groups with fewer than two countries are left out of the test.

    Args:
        deltas: Delta records.
        group_column: Grouping column, e.g. "income_group" or "region".

    Returns:
        DataFrame with year, group_column, n_groups, f_statistic, p_value.
    """
    rows = []
    for year, year_df in deltas.groupby("year", sort=True):
        samples = [
            g["delta"].to_numpy(dtype=float)
            for _, g in year_df.groupby(group_column, sort=True)
            if len(g) >= 2
        ]
        if len(samples) >= 2:
            f_stat, p_value = stats.f_oneway(*samples)
        else:
            f_stat, p_value = np.nan, np.nan
        rows.append({
            "year": int(year),
            "group_column": group_column,
            "n_groups": len(samples),
            "f_statistic": float(f_stat),
            "p_value": float(p_value),
        })
    return pd.DataFrame(rows, columns=["year", "group_column", "n_groups", "f_statistic", "p_value"])


def summarise_by_group(deltas: pd.DataFrame, group_column: str = "income_group") -> pd.DataFrame:
    """Mean delta, interval width and significance counts per group and year.

    Args:
        deltas: Delta records with a ``significance`` column (see
            ``delta.classify_significance``).
        group_column: Grouping column.

    Returns:
        Flat DataFrame, one row per (group, year).
    """
    grouped = deltas.groupby([group_column, "year"], sort=True)
    summary = grouped.agg(
        n_countries=("iso_code", "nunique"),
        mean_delta=("delta", "mean"),
        mean_lower_delta=("lower_delta", "mean"),
        mean_upper_delta=("upper_delta", "mean"),
        mean_ci_width=("ci_width", "mean"),
        count_decline=("significance", lambda s: int((s == "decline").sum())),
        count_increase=("significance", lambda s: int((s == "increase").sum())),
    )
    return summary.reset_index()


def estimate_missed_immunisations(
    deltas: pd.DataFrame,
    population: pd.DataFrame,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Children not immunised relative to the expected trend.

    missed = surviving_infants * (mean - coverage), with bounds from the
    interval ends (lower_ci gives the low estimate, upper_ci the high
    one). Negative values mean more children were reached than expected.

    Args:
        deltas: Delta records.
        population: Surviving infants per (iso_code, year).

    Returns:
        Tuple of (per-country table, per-year totals).
    """
    merged = deltas.merge(population, on=["iso_code", "year"], how="inner")
    n_missing = len(deltas) - len(merged)
    if n_missing:
        logger.warning(f"  {n_missing} delta rows have no population figure; "
                       "excluded from missed-immunisation totals")

    infants = merged["surviving_infants"]
    merged["missed"] = -merged["delta"] * infants
    merged["missed_lower"] = -merged["lower_delta"] * infants
    merged["missed_upper"] = -merged["upper_delta"] * infants

    per_country = merged[[
        "iso_code", "country", "year", "surviving_infants",
        "missed", "missed_lower", "missed_upper",
    ]].reset_index(drop=True)
    totals = (
        per_country.groupby("year", sort=True)[["missed", "missed_lower", "missed_upper"]]
        .sum()
        .reset_index()
    )
    return per_country, totals


def global_coverage(
    observations: pd.DataFrame,
    forecasts: pd.DataFrame,
    population: pd.DataFrame,
) -> pd.DataFrame:
    """Infant-weighted global coverage, reported and expected, per year.

    Both series are computed over the same countries (those with a
    forecast) so the forecast years compare like with like.

    Args:
        observations: Coverage table (all years).
        forecasts: Normalized forecast records.
        population: Surviving infants per (iso_code, year).

    Returns:
        DataFrame with year, type ("Reported" or "Expected"), coverage.
    """
    countries = forecasts["iso_code"].unique()
    reported = observations[observations["iso_code"].isin(countries)].dropna(subset=["coverage"])
    reported = reported.merge(population, on=["iso_code", "year"], how="inner")
    expected = forecasts.rename(columns={"mean": "coverage"})
    expected = expected.merge(population, on=["iso_code", "year"], how="inner")

    frames = []
    for label, df in [("Reported", reported), ("Expected", expected)]:
        if df.empty:
            continue
        weighted = df.assign(weighted=df["coverage"] * df["surviving_infants"])
        totals = weighted.groupby("year", sort=True)[["weighted", "surviving_infants"]].sum()
        frames.append(pd.DataFrame({
            "year": totals.index.to_numpy(dtype=int),
            "type": label,
            "coverage": (totals["weighted"] / totals["surviving_infants"]).to_numpy(),
        }))

    if not frames:
        return pd.DataFrame(columns=["year", "type", "coverage"])
    return pd.concat(frames, ignore_index=True)


def largest_population_countries(
    population: pd.DataFrame,
    iso_codes: list[str],
    n: int = 5,
) -> list[str]:
    """The ``n`` countries among ``iso_codes`` with most surviving infants.

    Uses each country's most recent population figure.
    """
    latest = (
        population[population["iso_code"].isin(iso_codes)]
        .sort_values("year")
        .drop_duplicates(subset=["iso_code"], keep="last")
    )
    ranked = latest.sort_values(["surviving_infants", "iso_code"], ascending=[False, True])
    return ranked["iso_code"].head(n).tolist()
