"""
Exhaustive, exclusion-aware top-K retrieval over the full item catalog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np
import torch
from loguru import logger

from twotower.data.store import ProfileEntry
from twotower.errors import NoEligibleUserError
from twotower.session import Session

DEFAULT_CHUNK_SIZE = 1024


@dataclass(frozen=True)
class ScoredItem:
    item_index: int
    score: float


class RecommendationServer:
    """
    Serves recommendations and rating history for one session.

    The catalog is scored in chunks of ``chunk_size`` items so per-item
    feature tensors never exist for the whole catalog at once.
    """

    def __init__(self, session: Session, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1.")
        self.session = session
        self.chunk_size = int(chunk_size)

    @property
    def store(self):
        return self.session.store

    def _check_items(self, item_indices: Iterable[int]) -> list[int]:
        checked = []
        for item in item_indices:
            checked.append(self.store.check_item(item))
        return checked

    def score_items(self, user_index: int, item_indices: Iterable[int]) -> np.ndarray:
        """Score specific items for a user; returns float64 scores in input order."""
        self.session.ensure_idle()
        user = self.store.check_user(user_index)
        items = self._check_items(item_indices)
        if not items:
            return np.empty(0, dtype=np.float64)

        model = self.session.model
        model.eval()
        with torch.no_grad():
            users = torch.tensor([user], dtype=torch.long)
            scores = model.score_matrix(users, torch.tensor(items, dtype=torch.long))[0]
            return scores.double().cpu().numpy()

    def recommend(
        self,
        user_index: int,
        exclude_item_indices: Iterable[int] | None = None,
        k: int = 10,
    ) -> list[ScoredItem]:
        """
        Return up to ``k`` highest-scoring items not in ``exclude_item_indices``.

        Excluded items are removed before truncation, so exactly ``k`` items are
        returned whenever at least ``k`` unexcluded items exist. Equal scores are
        ordered by ascending item index. When ``exclude_item_indices`` is None the
        user's own rated items are excluded.
        """
        self.session.ensure_idle()
        user = self.store.check_user(user_index)
        if k < 0:
            raise ValueError("k must be non-negative.")
        if exclude_item_indices is None:
            excluded = set(self.store.rated_items(user))
        else:
            excluded = set(self._check_items(exclude_item_indices))
        if k == 0:
            return []

        excluded_arr = np.fromiter(sorted(excluded), dtype=np.int64, count=len(excluded))
        best_items = np.empty(0, dtype=np.int64)
        best_scores = np.empty(0, dtype=np.float64)
        num_items = self.store.num_items

        model = self.session.model
        model.eval()
        with torch.no_grad():
            users = torch.tensor([user], dtype=torch.long)
            user_emb = model.embed_users(users)
            for start in range(0, num_items, self.chunk_size):
                end = min(start + self.chunk_size, num_items)
                candidates = np.arange(start, end, dtype=np.int64)
                keep = ~np.isin(candidates, excluded_arr)
                if not keep.any():
                    continue
                candidates = candidates[keep]
                scores = model.score_matrix(
                    users, torch.from_numpy(candidates), user_emb=user_emb
                )[0].double().cpu().numpy()

                merged_items = np.concatenate([best_items, candidates])
                merged_scores = np.concatenate([best_scores, scores])
                order = np.lexsort((merged_items, -merged_scores))[:k]
                best_items = merged_items[order]
                best_scores = merged_scores[order]

        logger.debug(
            "Recommended {} items for user {} ({} excluded)",
            len(best_items),
            user,
            len(excluded),
        )
        return [
            ScoredItem(item_index=int(item), score=float(score))
            for item, score in zip(best_items, best_scores)
        ]

    def historical_top_k(self, user_index: int, k: int = 10) -> list[ProfileEntry]:
        """The user's own ratings, by rating descending then timestamp descending."""
        return self.store.user_profile(user_index).top_rated(k)

    def choose_test_user(
        self, min_ratings: int, rng: np.random.Generator | None = None
    ) -> int:
        """Pick a random user with at least ``min_ratings`` interactions."""
        eligible = self.store.eligible_users(min_ratings)
        if not eligible:
            raise NoEligibleUserError(
                f"No user with >= {min_ratings} ratings in the loaded subset. "
                "Reduce the threshold or load more interactions."
            )
        rng = rng or np.random.default_rng()
        return int(rng.choice(eligible))

