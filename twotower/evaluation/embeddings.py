"""Embedding diagnostics and the 2D item projection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np
import torch
from loguru import logger

from twotower.session import Session


class DimensionalityReducer(Protocol):
    def reduce(self, matrix: torch.Tensor, target_dims: int = 2) -> torch.Tensor:
        ...


class PcaReducer:
    """Projects rows onto the leading principal components via SVD."""

    def reduce(self, matrix: torch.Tensor, target_dims: int = 2) -> torch.Tensor:
        if matrix.ndim != 2:
            raise ValueError("PCA expects a 2-D matrix.")
        num_rows, num_cols = matrix.shape
        if num_rows == 0:
            return torch.zeros((0, target_dims), dtype=matrix.dtype)

        centered = matrix - matrix.mean(dim=0, keepdim=True)
        # Right singular vectors are the principal axes.
        _, _, vh = torch.linalg.svd(centered, full_matrices=False)
        components = min(target_dims, vh.shape[0])
        coords = centered @ vh[:components].T
        if components < target_dims:
            padding = torch.zeros((num_rows, target_dims - components), dtype=coords.dtype)
            coords = torch.cat([coords, padding], dim=1)
        return coords


@dataclass(frozen=True)
class ItemProjection:
    item_indices: np.ndarray
    coords: np.ndarray
    titles: list[str]


def summarize_embedding_norms(embeddings: torch.Tensor, *, label: str) -> dict[str, float]:
    norms = torch.norm(embeddings, dim=-1).cpu().numpy()
    summary = {
        "label": label,
        "count": len(norms),
        "mean": float(np.mean(norms)) if norms.size else 0.0,
        "std": float(np.std(norms)) if norms.size else 0.0,
        "min": float(np.min(norms)) if norms.size else 0.0,
        "max": float(np.max(norms)) if norms.size else 0.0,
        "median": float(np.median(norms)) if norms.size else 0.0,
    }
    return summary


def project_item_embeddings(
    session: Session,
    *,
    reducer: DimensionalityReducer | None = None,
    sample_size: int = 1000,
    seed: int | None = None,
) -> ItemProjection:
    """
    Project a uniform sample of item embeddings to 2D.

    Parameters
    ----------
    session:
        Idle session whose item tower is projected.
    reducer:
        Dimensionality reducer; PCA when omitted.
    sample_size:
        Maximum number of items drawn without replacement.
    """
    session.ensure_idle()
    if sample_size < 1:
        raise ValueError("sample_size must be positive.")

    store = session.store
    rng = np.random.default_rng(seed)
    count = min(store.num_items, sample_size)
    sample = np.sort(rng.choice(store.num_items, size=count, replace=False)).astype(np.int64)

    model = session.model
    model.eval()
    with torch.no_grad():
        embeddings = model.embed_items(torch.from_numpy(sample)).detach().cpu()
    coords = (reducer or PcaReducer()).reduce(embeddings, target_dims=2)

    stats = summarize_embedding_norms(embeddings, label="item")
    logger.debug(
        "Projected {} item embeddings | norm mean={:.4f} std={:.4f}",
        stats["count"],
        stats["mean"],
        stats["std"],
    )
    return ItemProjection(
        item_indices=sample,
        coords=coords.numpy(),
        titles=[store.item_display_title(int(index)) for index in sample],
    )
