"""
In-memory interaction store keyed by dense user and item indices.

The store is built once per load and treated as immutable afterwards. Every
build gets a fresh ``generation`` token so models trained against one index
space can never be silently paired with another.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
import numpy as np
import pandas as pd
from loguru import logger

from twotower.errors import EmptyInputError, UnknownItemError, UnknownUserError

from .features import build_item_genre_matrix, build_user_feature_matrix
from .indexers import IndexSpace, build_index_space
from .loaders import GENRE_DIM


@dataclass(frozen=True)
class ProfileEntry:
    item_index: int
    rating: int
    timestamp: int


@dataclass(frozen=True)
class UserProfile:
    """All ratings of one user; insertion order carries no meaning."""

    user_index: int
    entries: tuple[ProfileEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def chronological(self) -> list[ProfileEntry]:
        return sorted(self.entries, key=lambda e: (e.timestamp, e.item_index))

    def by_rating_then_recency(self) -> list[ProfileEntry]:
        """Rating descending, then timestamp descending, then item index ascending."""
        return sorted(self.entries, key=lambda e: (-e.rating, -e.timestamp, e.item_index))

    def top_rated(self, k: int) -> list[ProfileEntry]:
        if k < 0:
            raise ValueError("k must be non-negative.")
        return self.by_rating_then_recency()[:k]

    def item_indices(self) -> frozenset[int]:
        return frozenset(entry.item_index for entry in self.entries)


@dataclass(frozen=True)
class InteractionStore:
    """
    Typed tables produced by ``load_interaction_store``.

    ``interactions`` carries ``user_id``, ``item_id``, ``rating``, ``timestamp``
    plus the dense ``user_idx`` / ``item_idx`` columns. ``items`` holds one row
    per dense item index, sorted by ``item_idx``.
    """

    interactions: pd.DataFrame
    items: pd.DataFrame
    user_index: IndexSpace
    item_index: IndexSpace
    item_genre_matrix: np.ndarray
    user_feature_matrix: np.ndarray
    profiles: dict[int, UserProfile]
    dropped_interactions: int = 0
    generation: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def num_users(self) -> int:
        return len(self.user_index)

    @property
    def num_items(self) -> int:
        return len(self.item_index)

    @property
    def num_interactions(self) -> int:
        return len(self.interactions)

    def check_user(self, user_index: int) -> int:
        index = int(user_index)
        if index < 0 or index >= self.num_users:
            raise UnknownUserError(index)
        return index

    def check_item(self, item_index: int) -> int:
        index = int(item_index)
        if index < 0 or index >= self.num_items:
            raise UnknownItemError(index)
        return index

    def user_profile(self, user_index: int) -> UserProfile:
        return self.profiles[self.check_user(user_index)]

    def rated_items(self, user_index: int) -> frozenset[int]:
        return self.user_profile(user_index).item_indices()

    def training_pairs(self) -> tuple[np.ndarray, np.ndarray]:
        """Return parallel int64 arrays of (user_idx, item_idx), one per interaction."""
        return (
            self.interactions["user_idx"].to_numpy(dtype=np.int64, copy=True),
            self.interactions["item_idx"].to_numpy(dtype=np.int64, copy=True),
        )

    def interaction_counts(self) -> np.ndarray:
        return np.bincount(
            self.interactions["user_idx"].to_numpy(dtype=np.int64), minlength=self.num_users
        )

    def eligible_users(self, min_ratings: int) -> list[int]:
        counts = self.interaction_counts()
        return [int(user) for user in np.flatnonzero(counts >= min_ratings)]

    def item_title(self, item_index: int) -> str:
        return str(self.items.iloc[self.check_item(item_index)]["title"])

    def item_year(self, item_index: int) -> int | None:
        year = self.items.iloc[self.check_item(item_index)]["year"]
        return None if pd.isna(year) else int(year)

    def item_display_title(self, item_index: int) -> str:
        title = self.item_title(item_index)
        year = self.item_year(item_index)
        return f"{title} ({year})" if year is not None else title


def _sample_interactions(
    interactions: pd.DataFrame, *, max_interactions: int, seed: int
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    positions = rng.choice(len(interactions), size=max_interactions, replace=False)
    return interactions.iloc[np.sort(positions)].reset_index(drop=True)


def _build_profiles(interactions: pd.DataFrame, num_users: int) -> dict[int, UserProfile]:
    grouped: dict[int, list[ProfileEntry]] = {user: [] for user in range(num_users)}
    for user_idx, item_idx, rating, timestamp in interactions[
        ["user_idx", "item_idx", "rating", "timestamp"]
    ].itertuples(index=False, name=None):
        grouped[int(user_idx)].append(
            ProfileEntry(item_index=int(item_idx), rating=int(rating), timestamp=int(timestamp))
        )
    return {
        user: UserProfile(user_index=user, entries=tuple(entries))
        for user, entries in grouped.items()
    }


def load_interaction_store(
    interactions: pd.DataFrame,
    items: pd.DataFrame,
    *,
    max_interactions: int | None = None,
    seed: int = 0,
    genre_dim: int = GENRE_DIM,
) -> InteractionStore:
    """
    Convert parsed interaction and item frames into an ``InteractionStore``.

    Parameters
    ----------
    interactions:
        Frame with ``user_id``, ``item_id``, ``rating`` and ``timestamp``.
    items:
        Frame with at least ``item_id``, ``title`` and ``genres``.
    max_interactions:
        When set and smaller than the number of usable interactions, a seeded
        uniform random sample of that size is kept (original row order is
        preserved within the sample).
    seed:
        Seed for the truncation sample.

    Raises
    ------
    EmptyInputError
        When no interaction survives metadata alignment.
    """
    if max_interactions is not None and max_interactions < 1:
        raise ValueError("max_interactions must be positive when provided.")

    items = items.drop_duplicates(subset=["item_id"]).copy()
    known_items = set(items["item_id"].astype("int64"))

    interactions = interactions.copy()
    # Drop interactions whose item has no metadata.
    with_metadata = interactions["item_id"].isin(known_items)
    dropped = int((~with_metadata).sum())
    interactions = interactions[with_metadata].reset_index(drop=True)
    if dropped > 0:
        logger.warning("Dropped {} interactions referencing items without metadata.", dropped)

    if interactions.empty:
        raise EmptyInputError("No interactions remain after metadata alignment.")

    if max_interactions is not None and len(interactions) > max_interactions:
        logger.info(
            "Sampling {} of {} interactions (seed={})",
            max_interactions,
            len(interactions),
            seed,
        )
        interactions = _sample_interactions(
            interactions, max_interactions=max_interactions, seed=seed
        )

    user_index = build_index_space(interactions["user_id"])
    item_index = build_index_space(interactions["item_id"])

    interactions["user_idx"] = user_index.to_dense_array(interactions["user_id"])
    interactions["item_idx"] = item_index.to_dense_array(interactions["item_id"])

    items = items[items["item_id"].isin(item_index.id_to_index)].copy()
    items["item_idx"] = item_index.to_dense_array(items["item_id"])
    items = items.sort_values("item_idx").reset_index(drop=True)

    item_genre_matrix = build_item_genre_matrix(items["genres"].tolist(), genre_dim=genre_dim)
    user_feature_matrix = build_user_feature_matrix(
        interactions, item_genre_matrix, num_users=len(user_index)
    )

    store = InteractionStore(
        interactions=interactions,
        items=items,
        user_index=user_index,
        item_index=item_index,
        item_genre_matrix=item_genre_matrix,
        user_feature_matrix=user_feature_matrix,
        profiles=_build_profiles(interactions, len(user_index)),
        dropped_interactions=dropped,
    )
    logger.info(
        "Loaded {} interactions, {} users, {} items.",
        store.num_interactions,
        store.num_users,
        store.num_items,
    )
    return store

