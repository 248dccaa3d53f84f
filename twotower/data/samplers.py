"""Mini-batch and negative sampling utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np
import torch

from twotower.errors import BatchShapeError


@dataclass(frozen=True)
class LossBatch:
    """
    One training step worth of (user, positive item) pairs.

    ``negatives`` has shape ``(B, k)`` when explicit negatives were sampled and
    is None otherwise.
    """

    users: torch.Tensor
    positives: torch.Tensor
    negatives: torch.Tensor | None = None
    epoch: int = 0
    batch_index: int = 0

    def __len__(self) -> int:
        return int(self.users.shape[0])


def sample_negative_items(
    batch_size: int,
    *,
    num_items: int,
    num_negatives: int,
    generator: torch.Generator | None = None,
) -> torch.Tensor:
    """
    Draw ``num_negatives`` item indices per row, uniformly from ``[0, num_items)``.

    Draws are independent and may coincide with the row's positive item. With
    a catalog much larger than a batch this false-negative noise is rare and is
    accepted rather than filtered.
    """
    if num_negatives <= 0:
        raise BatchShapeError("num_negatives must be greater than zero.")
    if num_items <= 0:
        raise BatchShapeError("num_items must be greater than zero.")

    return torch.randint(
        low=0,
        high=num_items,
        size=(batch_size, num_negatives),
        generator=generator,
        dtype=torch.long,
    )


class BatchSampler:
    """
    Shuffles training pairs once per epoch and slices them into batches.

    Parameters
    ----------
    users, items:
        Parallel sequences of dense user and positive item indices.
    num_items:
        Size of the item index space, the range negatives are drawn from.
    seed:
        Seed of the sampler's private ``torch.Generator``.
    """

    def __init__(
        self,
        users: Sequence[int] | np.ndarray,
        items: Sequence[int] | np.ndarray,
        *,
        num_items: int,
        seed: int | None = None,
    ) -> None:
        self._users = torch.as_tensor(np.asarray(users), dtype=torch.long)
        self._items = torch.as_tensor(np.asarray(items), dtype=torch.long)
        if self._users.ndim != 1 or self._users.shape != self._items.shape:
            raise BatchShapeError(
                f"User and item arrays must be 1-D and equal length, got "
                f"{tuple(self._users.shape)} and {tuple(self._items.shape)}."
            )
        self.num_items = int(num_items)
        self.generator = torch.Generator()
        if seed is not None:
            self.generator.manual_seed(int(seed))
        else:
            self.generator.seed()

    def __len__(self) -> int:
        return int(self._users.shape[0])

    def num_batches(self, batch_size: int, *, min_batch_size: int = 1) -> int:
        """Number of batches one epoch yields after skipping undersized ones."""
        full, remainder = divmod(len(self), batch_size)
        return full + (1 if remainder >= max(min_batch_size, 1) else 0)

    def generate_batches(
        self,
        batch_size: int,
        negatives_per_positive: int = 0,
        *,
        epoch: int = 0,
        min_batch_size: int = 1,
    ) -> Iterator[LossBatch]:
        """
        Yield one epoch of shuffled batches.

        Every pair appears exactly once per epoch; only the final batch can be
        shorter than ``batch_size``. Batches with fewer than ``min_batch_size``
        pairs are skipped. Calling again draws a new permutation.
        """
        if batch_size < 1:
            raise BatchShapeError("batch_size must be at least 1.")
        if negatives_per_positive < 0:
            raise BatchShapeError("negatives_per_positive must be non-negative.")

        permutation = torch.randperm(len(self), generator=self.generator)
        batch_index = 0
        for start in range(0, len(self), batch_size):
            rows = permutation[start : start + batch_size]
            if rows.shape[0] < min_batch_size:
                continue
            negatives = None
            if negatives_per_positive > 0:
                negatives = sample_negative_items(
                    int(rows.shape[0]),
                    num_items=self.num_items,
                    num_negatives=negatives_per_positive,
                    generator=self.generator,
                )
            yield LossBatch(
                users=self._users[rows],
                positives=self._items[rows],
                negatives=negatives,
                epoch=epoch,
                batch_index=batch_index,
            )
            batch_index += 1
