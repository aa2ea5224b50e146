from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .results import ResultTable

LOGGER = logging.getLogger("svcbench.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

PERCENTILE_COLORS = {
    "p50": "#2E86AB",
    "p95": "#F18F01",
    "p99": "#C73E1D",
}

THROUGHPUT_CHART = "throughput_vs_concurrency.png"
LATENCY_CHART = "latency_percentiles.png"


def render_charts(table: ResultTable, output_dir: Path) -> list[Path]:
    """Render every chart for the measured rows of ``table``; failed rows are skipped."""

    df = _measured_frame(table)
    if df.empty:
        LOGGER.warning("No measured scenarios available for charts")
        return []

    output_dir.mkdir(parents=True, exist_ok=True)
    paths = [
        _render_throughput_chart(df, output_dir / THROUGHPUT_CHART),
        _render_latency_chart(df, output_dir / LATENCY_CHART),
    ]
    for path in paths:
        LOGGER.info("Chart written to %s", path)
    return paths


def _measured_frame(table: ResultTable) -> pd.DataFrame:
    df = table.to_dataframe()
    if df.empty:
        return df
    df = df[df["status"] == "completed"].copy()
    for column in ("throughput", "p50", "p95", "p99"):
        df[column] = df[column].astype(float)
    df["concurrency"] = df["concurrency"].astype(int)
    df["series"] = df["name"] + " [" + df["mode"] + "]"
    return df


def _render_throughput_chart(df: pd.DataFrame, chart_path: Path) -> Path:
    """Throughput against worker count, one line per operation and configuration."""
    fig, ax = plt.subplots(figsize=(10, 6))

    sns.lineplot(
        data=df.sort_values("concurrency"),
        x="concurrency",
        y="throughput",
        hue="name",
        style="mode",
        markers=True,
        dashes=True,
        linewidth=2.5,
        markersize=8,
        ax=ax,
    )
    levels = sorted(df["concurrency"].unique())
    ax.set_xticks(levels)
    ax.set_xlabel("Concurrent workers", fontweight="semibold")
    ax.set_ylabel("Throughput (operations/s)", fontweight="semibold")
    ax.set_title("Throughput vs Concurrency", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--")
    ax.set_ylim(bottom=0)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return chart_path


def _render_latency_chart(df: pd.DataFrame, chart_path: Path) -> Path:
    """Grouped P50/P95/P99 bars per scenario."""
    df = df.sort_values(["name", "mode", "concurrency"])
    labels = [f"{series} x{conc}" for series, conc in zip(df["series"], df["concurrency"])]
    positions = np.arange(len(labels))
    width = 0.27

    fig, ax = plt.subplots(figsize=(max(10, len(labels) * 0.9), 6))
    for offset, (column, color) in zip((-width, 0.0, width), PERCENTILE_COLORS.items()):
        ax.bar(
            positions + offset,
            df[column].to_numpy(dtype=float),
            width=width,
            label=column.upper(),
            color=color,
            alpha=0.85,
            edgecolor="white",
            linewidth=1.0,
        )

    ax.set_xticks(positions)
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_ylabel("Latency (ms)", fontweight="semibold")
    ax.set_title("Latency Percentiles by Scenario", fontweight="bold", pad=15)
    ax.legend(loc="upper left", frameon=True, fancybox=True, title="Percentile")
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")
    ax.set_axisbelow(True)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return chart_path


__all__ = ["LATENCY_CHART", "THROUGHPUT_CHART", "render_charts"]
