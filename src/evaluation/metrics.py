"""Agreement metrics between expected and reported coverage."""

import json
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score


def compute_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> dict[str, float]:
    """Compute regression metrics between reported and expected coverage.

    Args:
        y_true: Reported coverage.
        y_pred: Expected (forecast mean) coverage.

    Returns:
        Dictionary with keys: "mse", "rmse", "mae", "mape", "r2".

    Raises:
        ValueError: If inputs contain NaN or Inf values.
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    if np.isnan(y_true).any() or np.isnan(y_pred).any():
        raise ValueError(
            "NaN detected in metric inputs. "
            f"y_true NaNs: {np.isnan(y_true).sum()}, "
            f"y_pred NaNs: {np.isnan(y_pred).sum()}"
        )
    if np.isinf(y_true).any() or np.isinf(y_pred).any():
        raise ValueError(
            "Inf detected in metric inputs. "
            f"y_true Infs: {np.isinf(y_true).sum()}, "
            f"y_pred Infs: {np.isinf(y_pred).sum()}"
        )

    mse = mean_squared_error(y_true, y_pred)
    rmse = np.sqrt(mse)
    mae = mean_absolute_error(y_true, y_pred)

    # Reported coverage of 0 occurs in conflict years; mask it out of MAPE.
    _MAPE_EPS = 1e-8
    mask = np.abs(y_true) > _MAPE_EPS
    if mask.sum() > 0:
        mape = np.mean(np.abs((y_true[mask] - y_pred[mask]) / y_true[mask])) * 100
    else:
        mape = float("nan")

    r2 = r2_score(y_true, y_pred) if len(y_true) >= 2 else float("nan")

    return {
        "mse": float(mse),
        "rmse": float(rmse),
        "mae": float(mae),
        "mape": float(mape),
        "r2": float(r2),
    }


def delta_metrics(deltas: pd.DataFrame) -> dict[str, float]:
    """Metrics of a delta table plus its empirical interval coverage.

    Args:
        deltas: Delta records with coverage, mean, within_ci and ci_width.

    Returns:
        ``compute_metrics`` output extended with "n", "mean_delta",
        "empirical_coverage" and "avg_ci_width".
    """
    if deltas.empty:
        return {"n": 0}
    metrics = compute_metrics(deltas["coverage"].to_numpy(), deltas["mean"].to_numpy())
    metrics.update({
        "n": int(len(deltas)),
        "mean_delta": float(deltas["delta"].mean()),
        "empirical_coverage": float(deltas["within_ci"].mean()),
        "avg_ci_width": float(deltas["ci_width"].mean()),
    })
    return metrics


def save_metrics(
    metrics: dict[str, float],
    run_label: str,
    output_path: Path,
    experiment_info: dict | None = None,
) -> None:
    """Save metrics to JSON file and print summary.

    Args:
        metrics: Dictionary of metric name -> value.
        run_label: Name of the run (antigen, window, level).
        output_path: Path to save the JSON file.
        experiment_info: Optional experiment metadata dict (name, label).
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    payload: dict = {"run": run_label, "metrics": metrics}
    if experiment_info is not None:
        payload["experiment"] = experiment_info

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    print(f"\n{'='*50}")
    print(f"  {run_label} - Expected vs Reported")
    print(f"{'='*50}")
    for name, value in metrics.items():
        print(f"  {name.upper():>18s}: {value:.4f}")
    print(f"{'='*50}")
    print(f"  Saved to: {output_path}")
