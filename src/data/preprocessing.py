"""Coverage table loading and per-country series preparation.

Handles loading the tidy coverage CSV, validating its schema, and turning
it into gap-free annual series, one per country, over a fixed training
window. Countries missing any year of the window are excluded whole.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

COVERAGE_COLUMNS: list[str] = [
    "country", "iso_code", "region", "income_group", "year", "coverage",
]
POPULATION_COLUMNS: list[str] = ["iso_code", "year", "surviving_infants"]


@dataclass(frozen=True)
class CountrySeries:
    """Complete annual coverage history for one country."""

    iso_code: str
    country: str
    region: str
    income_group: str
    years: np.ndarray
    coverage: np.ndarray

    @property
    def train_end(self) -> int:
        return int(self.years[-1])

    def __len__(self) -> int:
        return len(self.years)


def load_coverage_table(
    csv_path: Path,
    antigen: str | None = None,
) -> pd.DataFrame:
    """Load the tidy coverage CSV for one antigen.

    Args:
        csv_path: Path to the coverage CSV.
        antigen: Antigen to keep when the file has an ``antigen`` column
            (matched case-insensitively). Ignored otherwise.

    Returns:
        Validated DataFrame with the columns of ``COVERAGE_COLUMNS``.
    """
    df = pd.read_csv(csv_path)
    if "antigen" in df.columns and antigen is not None:
        df = df[df["antigen"].str.upper() == antigen.upper()]
        logger.info(f"  Selected {len(df)} {antigen.upper()} rows from {Path(csv_path).name}")
    return validate_coverage_table(df)


def load_population_table(csv_path: Path) -> pd.DataFrame:
    """Load surviving-infant counts per (iso_code, year).

    Raises:
        ValueError: If a required column is missing.
    """
    df = pd.read_csv(csv_path)
    missing = [c for c in POPULATION_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Population table is missing columns: {missing}")
    df = df[POPULATION_COLUMNS].copy()
    df["year"] = df["year"].astype(int)
    return df


def validate_coverage_table(df: pd.DataFrame) -> pd.DataFrame:
    """Check schema, uniqueness and value range of a coverage table.

    Args:
        df: Raw coverage DataFrame.

    Returns:
        Copy with only the expected columns, integer years, float coverage,
        sorted by (iso_code, year).

    Raises:
        ValueError: If columns are missing, a (iso_code, year) pair repeats,
            or a coverage value falls outside [0, 1].
    """
    missing = [c for c in COVERAGE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Coverage table is missing columns: {missing}")

    df = df[COVERAGE_COLUMNS].copy()
    df["year"] = df["year"].astype(int)
    df["coverage"] = pd.to_numeric(df["coverage"], errors="coerce").astype(float)

    duplicated = df.duplicated(subset=["iso_code", "year"], keep=False)
    if duplicated.any():
        pairs = df.loc[duplicated, ["iso_code", "year"]].drop_duplicates()
        raise ValueError(
            f"Duplicate (iso_code, year) rows: {pairs.head(5).values.tolist()}"
        )

    out_of_range = df["coverage"].notna() & ~df["coverage"].between(0.0, 1.0)
    if out_of_range.any():
        raise ValueError(
            f"{int(out_of_range.sum())} coverage values outside [0, 1]; "
            "expected fractions, not percentages"
        )

    return df.sort_values(["iso_code", "year"]).reset_index(drop=True)


def find_incomplete_countries(
    df: pd.DataFrame,
    year_start: int,
    year_end: int,
) -> list[str]:
    """List iso codes lacking a non-missing value for some year of the window."""
    window = df[df["year"].between(year_start, year_end)]
    n_years = year_end - year_start + 1
    observed = window.dropna(subset=["coverage"]).groupby("iso_code")["year"].nunique()
    observed = observed.reindex(sorted(df["iso_code"].unique()), fill_value=0)
    return observed[observed < n_years].index.tolist()


def prepare_country_series(
    df: pd.DataFrame,
    year_start: int,
    year_end: int,
) -> list[CountrySeries]:
    """Build one complete series per qualifying country.

    A country qualifies only when every year in ``[year_start, year_end]``
    has a non-missing coverage value. No imputation is done.

    Args:
        df: Validated coverage table.
        year_start: First year of the training window.
        year_end: Last year of the training window (inclusive).

    Returns:
        List of CountrySeries sorted by iso_code; empty if none qualify.
    """
    if year_start > year_end:
        raise ValueError(f"year_start {year_start} is after year_end {year_end}")

    excluded = set(find_incomplete_countries(df, year_start, year_end))
    window = df[df["year"].between(year_start, year_end) & ~df["iso_code"].isin(excluded)]

    series: list[CountrySeries] = []
    for iso_code, group in window.groupby("iso_code", sort=True):
        group = group.sort_values("year")
        first = group.iloc[0]
        series.append(CountrySeries(
            iso_code=str(iso_code),
            country=str(first["country"]),
            region=str(first["region"]),
            income_group=str(first["income_group"]),
            years=group["year"].to_numpy(dtype=int),
            coverage=group["coverage"].to_numpy(dtype=float),
        ))

    logger.info(
        f"  Series preparation {year_start}-{year_end}: {len(series)} complete countries, "
        f"{len(excluded)} excluded for insufficient history"
    )
    return series


def split_holdout(
    df: pd.DataFrame,
    train_end: int,
    horizon: int,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split a coverage table at the training cutoff.

    Args:
        df: Validated coverage table.
        train_end: Last training year (inclusive).
        horizon: Number of held-out years after ``train_end``.

    Returns:
        Tuple of (train_df, actual_df) where ``actual_df`` holds the
        non-missing observations for the forecast years.
    """
    train_df = df[df["year"] <= train_end].reset_index(drop=True)
    actual_df = df[df["year"].between(train_end + 1, train_end + horizon)]
    actual_df = actual_df.dropna(subset=["coverage"]).reset_index(drop=True)
    return train_df, actual_df


def country_metadata(df: pd.DataFrame) -> pd.DataFrame:
    """One row of (iso_code, country, region, income_group) per country."""
    return (
        df[["iso_code", "country", "region", "income_group"]]
        .drop_duplicates(subset=["iso_code"], keep="last")
        .sort_values("iso_code")
        .reset_index(drop=True)
    )
