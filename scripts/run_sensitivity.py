"""Sweep the interval confidence level and tabulate significance counts.

Models are fit once per antigen; every level reuses them, so only the
interval width changes between rows of the output table.

Usage:
    python scripts/run_sensitivity.py
    python scripts/run_sensitivity.py --antigen dtp3
    python scripts/run_sensitivity.py --antigen dtp3 --levels 0.8 0.9 0.95 0.99
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.data.preprocessing import load_coverage_table, prepare_country_series, split_holdout
from src.evaluation.sensitivity import run_sensitivity_sweep
from src.training.country_batch import fit_all_countries
from src.training.pipeline import insufficient_history_failures
from src.utils.config import load_config, training_window, validate_config

ANTIGEN_CONFIGS: dict[str, str] = {
    "dtp1": "configs/antigens/dtp1.yaml",
    "dtp3": "configs/antigens/dtp3.yaml",
    "mcv1": "configs/antigens/mcv1.yaml",
}


def sweep_antigen(config: dict) -> None:
    """Fit all countries once and sweep the configured confidence levels.

    Args:
        config: Merged, validated configuration dictionary.
    """
    data_cfg = config["data"]
    antigen = str(data_cfg["antigen"]).upper()
    year_start, train_end = training_window(config)
    levels = config["sensitivity"]["confidence_levels"]

    coverage = load_coverage_table(PROJECT_ROOT / data_cfg["coverage_csv"], antigen=antigen)
    train_df, actuals = split_holdout(coverage, train_end, data_cfg["horizon"])
    series = prepare_country_series(train_df, year_start, train_end)

    print(f"\n{'='*60}")
    print(f"  Sensitivity sweep: {antigen} {year_start}-{train_end}")
    print(f"  Countries: {len(series)}")
    print(f"  Levels: {levels}")
    print(f"{'='*60}\n")

    results = fit_all_countries(series, config)
    table, fit_failures = run_sensitivity_sweep(
        results,
        actuals,
        confidence_levels=levels,
        horizon=data_cfg["horizon"],
        cap=data_cfg.get("coverage_cap", 0.99),
    )

    results_dir = PROJECT_ROOT / config["training"]["results_dir"]
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    stem = f"sensitivity_{antigen}_{year_start}-{train_end}_{timestamp}"
    out_path = results_dir / f"{stem}.csv"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_path, index=False)

    excluded = insufficient_history_failures(train_df, year_start, train_end)
    failures = fit_failures if excluded.empty else pd.concat([excluded, fit_failures], ignore_index=True)
    failures_path = results_dir / f"{stem}_failures.csv"
    failures.to_csv(failures_path, index=False)

    print(table.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    print(f"\n  Countries with issues: {failures['iso_code'].nunique()}")
    print(f"  Saved to: {out_path}")
    print(f"  Failures saved to: {failures_path}")


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Confidence-level sensitivity sweep")
    parser.add_argument("--antigen", type=str, nargs="+", default=["dtp3"],
                        choices=list(ANTIGEN_CONFIGS.keys()),
                        help="Antigen(s) to sweep (default: dtp3)")
    parser.add_argument("--levels", type=float, nargs="+", default=None,
                        help="Confidence levels (default: from configs/arima.yaml)")
    parser.add_argument("--train-end", type=int, default=None,
                        help="Override last training year")
    parser.add_argument("--horizon", type=int, default=None, choices=[1, 2],
                        help="Override number of forecast years")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Override number of parallel workers")
    args = parser.parse_args()

    base_files = [
        str(PROJECT_ROOT / "configs" / "training.yaml"),
        str(PROJECT_ROOT / "configs" / "data.yaml"),
        str(PROJECT_ROOT / "configs" / "arima.yaml"),
    ]

    for antigen in args.antigen:
        config = load_config(base_files + [str(PROJECT_ROOT / ANTIGEN_CONFIGS[antigen])])
        if args.levels:
            config["sensitivity"]["confidence_levels"] = args.levels
        if args.train_end is not None:
            config["data"]["train_end"] = args.train_end
        if args.horizon is not None:
            config["data"]["horizon"] = args.horizon
        if args.n_jobs is not None:
            config["training"]["n_jobs"] = args.n_jobs
        validate_config(config)
        sweep_antigen(config)

    print("\nSensitivity sweep complete!")


if __name__ == "__main__":
    main()
