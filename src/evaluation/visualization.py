"""Figures comparing expected and reported coverage."""

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.ticker import PercentFormatter

# Use a clean style
plt.style.use("seaborn-v0_8-whitegrid")

ARIMA_COLOR = "#ac3973"
ANTIGEN_COLORS = {"DTP1": "#DD8D29", "DTP3": "#E2D200", "MCV1": "#46ACC8"}


def plot_country_panels(
    observations: pd.DataFrame,
    forecasts: pd.DataFrame,
    iso_codes: list[str],
    title: str,
    output_path: Path,
) -> None:
    """One panel per country: reported series plus expected mean and interval.

    Args:
        observations: Coverage table (all years).
        forecasts: Normalized forecast records.
        iso_codes: Countries to draw, left to right.
        title: Figure title.
        output_path: Path to save the plot.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if not iso_codes:
        return

    fig, axes = plt.subplots(1, len(iso_codes), figsize=(4 * len(iso_codes), 4),
                             sharey=True, squeeze=False)
    for ax, iso_code in zip(axes[0], iso_codes):
        obs = observations[observations["iso_code"] == iso_code].sort_values("year")
        fc = forecasts[forecasts["iso_code"] == iso_code].sort_values("year")

        ax.plot(obs["year"], obs["coverage"], color="black", alpha=0.3, linewidth=1.0)
        ax.scatter(obs["year"], obs["coverage"], color="black", alpha=0.8, s=12)
        if not fc.empty:
            yerr = np.vstack([fc["mean"] - fc["lower_ci"], fc["upper_ci"] - fc["mean"]])
            ax.errorbar(fc["year"], fc["mean"], yerr=yerr, fmt="+", color=ARIMA_COLOR,
                        capsize=4, markersize=8, label="Expected")

        name = obs["country"].iloc[0] if not obs.empty else iso_code
        ax.set_title(str(name), fontsize=10)
        ax.set_ylim(top=1.0)
        ax.yaxis.set_major_formatter(PercentFormatter(xmax=1.0, decimals=0))

    axes[0][0].set_ylabel("Coverage (%)")
    fig.suptitle(title)
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_global_coverage(
    global_by_antigen: dict[str, pd.DataFrame],
    output_path: Path,
    forecast_start: int | None = None,
) -> None:
    """Reported (solid) and expected (dash-dot) global coverage per antigen.

    Args:
        global_by_antigen: Antigen -> output of ``statistics.global_coverage``.
        output_path: Path to save the plot.
        forecast_start: First forecast year; marked with a vertical line.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(12, 7))
    linestyles = {"Reported": "-", "Expected": "-."}
    for antigen, df in global_by_antigen.items():
        color = ANTIGEN_COLORS.get(antigen, None)
        for kind, group in df.groupby("type"):
            group = group.sort_values("year")
            ax.plot(group["year"], group["coverage"], linestyle=linestyles.get(kind, "-"),
                    color=color, linewidth=1.8, alpha=0.7, marker="o", markersize=4,
                    label=f"{antigen} ({kind.lower()})")

    if forecast_start is not None:
        ax.axvline(forecast_start - 0.5, color="grey", linestyle="--", linewidth=1.0)

    ax.set_xlabel("Year")
    ax.set_ylabel("Coverage (%)")
    ax.yaxis.set_major_formatter(PercentFormatter(xmax=1.0, decimals=0))
    ax.legend()
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_delta_by_group(
    deltas: pd.DataFrame,
    output_path: Path,
    group_column: str = "income_group",
) -> None:
    """Distribution of deltas per group, one box per forecast year.

    Args:
        deltas: Delta records.
        output_path: Path to save the plot.
        group_column: Grouping column, e.g. "income_group" or "region".
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(12, 6))
    sns.boxplot(data=deltas, x=group_column, y="delta", hue="year", ax=ax)
    ax.axhline(0, color="red", linestyle="--", linewidth=1.0)
    ax.set_xlabel(group_column.replace("_", " ").title())
    ax.set_ylabel("Reported - expected coverage")
    ax.yaxis.set_major_formatter(PercentFormatter(xmax=1.0, decimals=0))
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_expected_vs_reported(
    deltas: pd.DataFrame,
    year: int,
    output_path: Path,
) -> None:
    """Scatter of reported against expected coverage for one year.

    Points outside their interval are highlighted; the dashed line marks
    reported == expected.

    Args:
        deltas: Delta records with a ``significance`` column.
        year: Forecast year to draw.
        output_path: Path to save the plot.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = deltas[deltas["year"] == year]

    fig, ax = plt.subplots(figsize=(7, 7))
    palette = {"none": "#9E9E9E", "decline": "#D32F2F", "increase": "#1976D2"}
    for label, group in df.groupby("significance"):
        xerr = np.vstack([group["mean"] - group["lower_ci"], group["upper_ci"] - group["mean"]])
        ax.errorbar(group["mean"], group["coverage"], xerr=xerr, fmt="o", markersize=3,
                    alpha=0.6, elinewidth=0.6, color=palette.get(label, "#000000"), label=label)

    ax.plot([0, 1], [0, 1], "k--", linewidth=1.0)
    ax.set_xlabel("Expected coverage")
    ax.set_ylabel("Reported coverage")
    ax.set_title(f"Expected vs reported coverage, {year}")
    ax.xaxis.set_major_formatter(PercentFormatter(xmax=1.0, decimals=0))
    ax.yaxis.set_major_formatter(PercentFormatter(xmax=1.0, decimals=0))
    ax.legend(title="Outside interval")
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
