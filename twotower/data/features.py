"""
Feature engineering utilities for the deep scoring path.

Items are described by their binary genre flags; users get an auxiliary
vector pooled from the items they rated plus two rating statistics.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from .loaders import MAX_RATING, MIN_RATING


USER_STAT_FEATURES = ("mean_rating_scaled", "log_count_scaled")


def build_item_genre_matrix(
    genres: Sequence[Sequence[int] | None],
    *,
    genre_dim: int,
) -> np.ndarray:
    """
    Stack per-item genre flags into a ``(num_items, genre_dim)`` float32 matrix.

    Rows follow the order of ``genres`` (dense item index order). Missing or
    short genre vectors are zero-filled.
    """
    matrix = np.zeros((len(genres), genre_dim), dtype=np.float32)
    for row, flags in enumerate(genres):
        if flags is None:
            continue
        values = list(flags)[:genre_dim]
        if values:
            matrix[row, : len(values)] = np.asarray(values, dtype=np.float32)
    return matrix


def build_user_feature_matrix(
    interactions: pd.DataFrame,
    item_genre_matrix: np.ndarray,
    *,
    num_users: int,
) -> np.ndarray:
    """
    Aggregate item genres and rating statistics into user-side features.

    Parameters
    ----------
    interactions:
        Frame containing ``user_idx``, ``item_idx`` and ``rating`` columns.
    item_genre_matrix:
        Genre matrix aligned with dense item indices.
    num_users:
        Total number of distinct user indices.

    Returns
    -------
    Float32 matrix of shape ``(num_users, genre_dim + 2)``: mean genre vector of
    the rated items, mean rating scaled to [0, 1], and log interaction count
    scaled by the busiest user.
    """
    genre_dim = item_genre_matrix.shape[1]
    user_features = np.zeros((num_users, genre_dim + len(USER_STAT_FEATURES)), dtype=np.float32)
    if interactions.empty:
        return user_features

    counts = np.zeros(num_users, dtype=np.float64)
    for user_idx, group in interactions.groupby("user_idx"):
        item_indices = group["item_idx"].to_numpy(dtype=int, copy=False)
        if item_indices.size == 0:
            continue
        row = int(user_idx)
        user_features[row, :genre_dim] = item_genre_matrix[item_indices].mean(axis=0)
        mean_rating = float(group["rating"].mean())
        user_features[row, genre_dim] = (mean_rating - MIN_RATING) / (MAX_RATING - MIN_RATING)
        counts[row] = item_indices.size

    max_log = np.log1p(counts.max())
    if max_log > 0:
        user_features[:, genre_dim + 1] = (np.log1p(counts) / max_log).astype(np.float32)
    return user_features
