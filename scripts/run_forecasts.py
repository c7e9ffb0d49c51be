"""Estimate expected coverage and reported-minus-expected deltas.

Fits one ARIMA model per country on the pre-disruption window, forecasts
the held-out years, and compares the forecasts with reported coverage.
Each antigen is run independently with its own config override.

Usage:
    python scripts/run_forecasts.py
    python scripts/run_forecasts.py --antigen dtp3
    python scripts/run_forecasts.py --antigen dtp1 dtp3 mcv1 --confidence 0.95
    python scripts/run_forecasts.py --antigen dtp3 --train-end 2020 --horizon 1
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.data.preprocessing import load_coverage_table, load_population_table
from src.evaluation.metrics import delta_metrics, save_metrics
from src.evaluation.statistics import (
    delta_ttest,
    estimate_missed_immunisations,
    global_coverage,
    group_anova,
    largest_population_countries,
    summarise_by_group,
)
from src.evaluation.visualization import (
    plot_country_panels,
    plot_delta_by_group,
    plot_expected_vs_reported,
    plot_global_coverage,
)
from src.training.country_batch import models_table
from src.training.pipeline import run_coverage_pipeline
from src.utils.config import forecast_years, load_config, run_name, validate_config

logger = logging.getLogger(__name__)

ANTIGEN_CONFIGS: dict[str, str] = {
    "dtp1": "configs/antigens/dtp1.yaml",
    "dtp3": "configs/antigens/dtp3.yaml",
    "mcv1": "configs/antigens/mcv1.yaml",
}


def run_single_antigen(config: dict) -> dict:
    """Run the full pipeline for one antigen and save every output table.

    Args:
        config: Merged, validated configuration dictionary.

    Returns:
        Dict with the run directory and the global coverage table (used
        for the cross-antigen figure).
    """
    data_cfg = config["data"]
    label = run_name(config)

    coverage = load_coverage_table(PROJECT_ROOT / data_cfg["coverage_csv"], antigen=data_cfg["antigen"])
    population = None
    population_path = data_cfg.get("population_csv")
    if population_path and (PROJECT_ROOT / population_path).exists():
        population = load_population_table(PROJECT_ROOT / population_path)
    else:
        logger.warning("  No population table found; skipping missed-immunisation estimates")

    print(f"\n{'='*60}")
    print(f"  Run: {label}")
    print(f"  Countries in table: {coverage['iso_code'].nunique()}")
    print(f"  Forecast years: {forecast_years(config)}")
    print(f"{'='*60}\n")

    result = run_coverage_pipeline(coverage, config)

    results_dir = PROJECT_ROOT / config["training"]["results_dir"]
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = results_dir / f"{label}_{timestamp}"
    run_dir.mkdir(parents=True, exist_ok=True)

    result.forecasts.to_csv(run_dir / "forecasts.csv", index=False)
    result.deltas.to_csv(run_dir / "deltas.csv", index=False)
    result.failures.to_csv(run_dir / "failures.csv", index=False)
    models_table(result.fit_results).to_csv(run_dir / "models.csv", index=False)

    stats_dir = run_dir / "statistics"
    stats_dir.mkdir(exist_ok=True)
    delta_ttest(result.deltas).to_csv(stats_dir / "delta_ttest.csv", index=False)
    for group_column in ["income_group", "region"]:
        group_anova(result.deltas, group_column).to_csv(
            stats_dir / f"anova_{group_column}.csv", index=False)
        summarise_by_group(result.deltas, group_column).to_csv(
            stats_dir / f"summary_{group_column}.csv", index=False)

    global_cov = None
    plots_dir = run_dir / "plots"
    if population is not None:
        per_country, totals = estimate_missed_immunisations(result.deltas, population)
        per_country.to_csv(stats_dir / "missed_immunisations.csv", index=False)
        totals.to_csv(stats_dir / "missed_immunisations_total.csv", index=False)

        global_cov = global_coverage(coverage, result.forecasts, population)
        global_cov.to_csv(stats_dir / "global_coverage.csv", index=False)

        largest = largest_population_countries(
            population,
            result.deltas["iso_code"].unique().tolist(),
            n=config["training"].get("largest_populations", 5),
        )
        plot_country_panels(coverage, result.forecasts, largest,
                            f"{label}: largest birth cohorts", plots_dir / "largest_countries.png")

    if not result.deltas.empty:
        for group_column in ["income_group", "region"]:
            plot_delta_by_group(result.deltas, plots_dir / f"delta_by_{group_column}.png", group_column)
        for year in forecast_years(config):
            plot_expected_vs_reported(result.deltas, year, plots_dir / f"expected_vs_reported_{year}.png")

    save_metrics(delta_metrics(result.deltas), label, run_dir / "metrics.json",
                 experiment_info=config.get("experiment"))

    with open(run_dir / "config.json", "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)

    print(f"\nAll outputs saved to: {run_dir}")
    return {"run_dir": run_dir, "global_coverage": global_cov}


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Expected vs reported vaccination coverage")
    parser.add_argument("--antigen", type=str, nargs="+", default=list(ANTIGEN_CONFIGS.keys()),
                        choices=list(ANTIGEN_CONFIGS.keys()),
                        help="Antigen(s) to analyse (default: all)")
    parser.add_argument("--confidence", type=float, default=None,
                        help="Override interval confidence level (e.g. 0.95)")
    parser.add_argument("--year-start", type=int, default=None,
                        help="Override first training year")
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

    global_by_antigen = {}
    forecast_start = None
    results_dir = "results"
    for antigen in args.antigen:
        config = load_config(base_files + [str(PROJECT_ROOT / ANTIGEN_CONFIGS[antigen])])
        if args.confidence is not None:
            config["model"]["confidence_level"] = args.confidence
        if args.year_start is not None:
            config["data"]["year_start"] = args.year_start
        if args.train_end is not None:
            config["data"]["train_end"] = args.train_end
        if args.horizon is not None:
            config["data"]["horizon"] = args.horizon
        if args.n_jobs is not None:
            config["training"]["n_jobs"] = args.n_jobs
        validate_config(config)

        outputs = run_single_antigen(config)
        forecast_start = forecast_years(config)[0]
        results_dir = config["training"]["results_dir"]
        if outputs["global_coverage"] is not None:
            global_by_antigen[config["data"]["antigen"].upper()] = outputs["global_coverage"]

    if len(global_by_antigen) > 1:
        out_path = PROJECT_ROOT / results_dir / "global_coverage_by_antigen.png"
        plot_global_coverage(global_by_antigen, out_path, forecast_start=forecast_start)
        print(f"\nCross-antigen figure saved to: {out_path}")

    print("\nAll runs complete!")


if __name__ == "__main__":
    main()
