"""Shared fixtures for the test suite.

Provides small synthetic coverage tables and configuration dicts that
mirror the project's real data schema, enabling fast, repeatable tests
without requiring the actual coverage registry.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root is on the path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# ---------------------------------------------------------------------------
#  Coverage tables
# ---------------------------------------------------------------------------

ZZZ_TRAIN = [0.80, 0.82, 0.81, 0.83, 0.85, 0.84, 0.86, 0.87, 0.88, 0.90]


def make_coverage_df(
    series: dict[str, list[float]],
    year_start: int = 2010,
    region: str = "AFR",
    income_group: str = "LMC",
) -> pd.DataFrame:
    """Build a tidy coverage table from {iso_code: [coverage per year]}."""
    rows = []
    for iso_code, values in series.items():
        for offset, value in enumerate(values):
            rows.append({
                "country": f"Country {iso_code}",
                "iso_code": iso_code,
                "region": region,
                "income_group": income_group,
                "year": year_start + offset,
                "coverage": value,
            })
    return pd.DataFrame(rows)


def _noisy_panel(n_countries: int = 8, n_years: int = 12, seed: int = 7) -> pd.DataFrame:
    """Countries with stable, noisy coverage; half income groups each."""
    rng = np.random.default_rng(seed)
    frames = []
    for i in range(n_countries):
        level = 0.70 + 0.02 * i
        values = np.clip(level + rng.normal(0, 0.015, n_years), 0, 0.99).round(3)
        frames.append(make_coverage_df(
            {f"C{i:02d}": values.tolist()},
            region="EUR" if i % 2 else "AFR",
            income_group="HIC" if i < n_countries // 2 else "LIC",
        ))
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def zzz_coverage_df() -> pd.DataFrame:
    """Trending country whose two held-out years collapse."""
    return make_coverage_df({"ZZZ": ZZZ_TRAIN + [0.70, 0.65]})


@pytest.fixture
def constant_coverage_df() -> pd.DataFrame:
    """Country reporting 95% every year, including the held-out years."""
    return make_coverage_df({"CST": [0.95] * 12})


@pytest.fixture
def panel_coverage_df() -> pd.DataFrame:
    """12-year panel of 8 noisy countries, 2010-2021."""
    return _noisy_panel()


# ---------------------------------------------------------------------------
#  Sample configurations
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_config() -> dict:
    """Minimal merged config dict matching the project schema."""
    return {
        "data": {
            "coverage_csv": "data/processed/coverage.csv",
            "population_csv": "data/processed/surviving_infants.csv",
            "antigen": "DTP3",
            "year_start": 2010,
            "train_end": 2019,
            "horizon": 2,
            "coverage_cap": 0.99,
        },
        "model": {
            "name": "ARIMA",
            "confidence_level": 0.95,
            "kpss_alpha": 0.05,
            "max_d": 2,
            "max_p": 2,          # small grid keeps tests fast
            "max_q": 2,
            "max_order": 3,
            "maxiter": 100,
        },
        "sensitivity": {
            "confidence_levels": [0.80, 0.95, 0.99],
        },
        "training": {
            "n_jobs": 1,
            "results_dir": "results",
            "largest_populations": 2,
        },
    }


@pytest.fixture
def population_df() -> pd.DataFrame:
    """Surviving infants for ZZZ, CST and the panel countries."""
    rows = []
    codes = ["ZZZ", "CST"] + [f"C{i:02d}" for i in range(8)]
    for rank, iso_code in enumerate(codes):
        for year in range(2010, 2022):
            rows.append({"iso_code": iso_code, "year": year,
                         "surviving_infants": 100_000 * (rank + 1)})
    return pd.DataFrame(rows)


@pytest.fixture
def tmp_coverage_csv(tmp_path, panel_coverage_df) -> Path:
    """Write panel_coverage_df to a temp CSV and return its path."""
    csv_path = tmp_path / "coverage.csv"
    panel_coverage_df.to_csv(csv_path, index=False)
    return csv_path
