"""Summary and visualization of sweep reports."""

import math
from pathlib import Path
from typing import Any

import matplotlib

# Use non-interactive backend for plotting in environments without display
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def summarize_report(df: pd.DataFrame) -> dict[str, Any]:
    """Compute summary statistics for a sweep report.

    Infinite PSNR values (lossless trials) are counted separately and left
    out of the PSNR range.

    Args:
        df: Report DataFrame as returned by ``load_report``

    Returns:
        Dictionary with row count, quality range, PSNR range, size range
        and the number of lossless rows
    """
    summary: dict[str, Any] = {
        "rows": len(df),
        "quality_min": None,
        "quality_max": None,
        "psnr_min": None,
        "psnr_max": None,
        "size_min": None,
        "size_max": None,
        "lossless_rows": 0,
    }
    if df.empty:
        return summary

    psnr = df["psnr"].astype("float64")
    finite = psnr[np.isfinite(psnr)]
    summary.update(
        {
            "quality_min": int(df["quality"].min()),
            "quality_max": int(df["quality"].max()),
            "size_min": int(df["size_bytes"].min()),
            "size_max": int(df["size_bytes"].max()),
            "lossless_rows": int(np.isposinf(psnr).sum()),
        }
    )
    if not finite.empty:
        summary["psnr_min"] = float(finite.min())
        summary["psnr_max"] = float(finite.max())
    return summary


def plot_rate_distortion(
    df: pd.DataFrame,
    output_path: Path,
    title: str | None = None,
) -> Path:
    """Plot PSNR against encoded size, one point per quality.

    Args:
        df: Report DataFrame
        output_path: Path to save the SVG plot
        title: Optional custom title

    Returns:
        Path of the written plot
    """
    psnr = df["psnr"].astype("float64")
    data = df[np.isfinite(psnr)].sort_values("size_bytes")

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(
        data["size_bytes"],
        data["psnr"],
        marker="o",
        linestyle="-",
        markersize=7,
    )
    for _, row in data.iterrows():
        ax.annotate(
            f"q{int(row['quality'])}",
            (row["size_bytes"], row["psnr"]),
            textcoords="offset points",
            xytext=(4, 4),
            fontsize=8,
        )

    lossless = int(np.isposinf(psnr).sum())
    if lossless:
        ax.text(
            0.01,
            0.98,
            f"{lossless} lossless point(s) not shown",
            transform=ax.transAxes,
            va="top",
            fontsize=8,
        )

    ax.set_xlabel("Encoded size (bytes)", fontsize=11)
    ax.set_ylabel("PSNR (dB, higher is better)", fontsize=11)
    ax.set_title(title or "PSNR vs Encoded Size", fontsize=12)
    ax.grid(True, alpha=0.3)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout()
    plt.savefig(output_path, format="svg")
    plt.close(fig)
    return output_path


def format_psnr(value: float) -> str:
    """Format a PSNR value for display."""
    if math.isinf(value):
        return "inf"
    return f"{value:.2f} dB"
