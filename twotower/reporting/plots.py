"""Plotting helpers for experiment artefacts."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

import matplotlib

# Force a non-interactive backend for headless environments (CI, servers, etc.).
matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402


def save_loss_curves(
    loss_history: Mapping[str, Sequence[float]],
    *,
    output_path: Path | str,
    xlabel: str = "Batch",
    ylabel: str = "Loss",
    title: str = "Training Loss",
) -> Path:
    """
    Save line plots for multiple loss series on the same axes.

    Parameters
    ----------
    loss_history:
        Mapping of series label to loss values ordered by step (1..N).
    output_path:
        Target image path. Directories are created automatically.
    xlabel, ylabel, title:
        Axis and chart annotations for readability.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(8, 5))
    has_data = False
    for label, values in loss_history.items():
        if not values:
            continue
        has_data = True
        ax.plot(range(1, len(values) + 1), values, linestyle="-", linewidth=1.2, label=label)

    if not has_data:
        plt.close(fig)
        raise ValueError("Loss history is empty; nothing to plot.")

    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.set_title(title)
    ax.grid(True, linestyle="--", linewidth=0.5, alpha=0.7)
    ax.legend()

    fig.tight_layout()
    fig.savefig(output_path, dpi=180)
    plt.close(fig)

    return output_path


def save_embedding_projection(
    coords: np.ndarray,
    *,
    output_path: Path | str,
    labels: Sequence[str] | None = None,
    annotate: int = 15,
    title: str = "Item embeddings (PCA)",
) -> Path:
    """
    Scatter 2D item coordinates, labelling the ``annotate`` points farthest from
    the origin so the extremes of the embedding space are identifiable.
    """
    coords = np.asarray(coords)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise ValueError("coords must have shape (N, 2).")
    if coords.shape[0] == 0:
        raise ValueError("No points to plot.")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.scatter(coords[:, 0], coords[:, 1], s=9, alpha=0.7, color="#2b6cb0")

    if labels is not None and annotate > 0:
        radius = np.linalg.norm(coords, axis=1)
        for idx in np.argsort(-radius)[:annotate]:
            ax.annotate(
                labels[int(idx)],
                (coords[idx, 0], coords[idx, 1]),
                fontsize=7,
                alpha=0.8,
                xytext=(3, 3),
                textcoords="offset points",
            )

    ax.set_xlabel("PC 1")
    ax.set_ylabel("PC 2")
    ax.set_title(title)
    ax.grid(True, linestyle="--", linewidth=0.5, alpha=0.5)

    fig.tight_layout()
    fig.savefig(output_path, dpi=180)
    plt.close(fig)

    return output_path
