"""
Retrieval loss formulations.

``in_batch_softmax_loss`` contrasts each pair against the other positives of
the batch; ``pairwise_ranking_loss`` is the BPR objective over explicit or
batch-derived negatives. Both return the mean over examples.
"""

from __future__ import annotations

from enum import Enum

import torch
import torch.nn.functional as F

from twotower.data.samplers import LossBatch
from twotower.errors import BatchShapeError
from twotower.models.two_tower import RetrievalModel

BPR_EPSILON = 1e-9


class LossMode(str, Enum):
    IN_BATCH_SOFTMAX = "in-batch-softmax"
    PAIRWISE = "pairwise"

    @classmethod
    def parse(cls, value: "str | LossMode") -> "LossMode":
        if isinstance(value, LossMode):
            return value
        key = str(value).strip().lower().replace("_", "-")
        aliases = {
            "in-batch-softmax": cls.IN_BATCH_SOFTMAX,
            "inbatch": cls.IN_BATCH_SOFTMAX,
            "in-batch": cls.IN_BATCH_SOFTMAX,
            "softmax": cls.IN_BATCH_SOFTMAX,
            "pairwise": cls.PAIRWISE,
            "bpr": cls.PAIRWISE,
        }
        try:
            return aliases[key]
        except KeyError as exc:
            raise ValueError(f"Unsupported loss mode: {value}") from exc


def validate_batch(batch: LossBatch) -> None:
    users, positives, negatives = batch.users, batch.positives, batch.negatives
    if users.ndim != 1 or positives.ndim != 1:
        raise BatchShapeError(
            f"Batch {batch.batch_index} (epoch {batch.epoch}): users and positives must be 1-D, "
            f"got {tuple(users.shape)} and {tuple(positives.shape)}."
        )
    if users.shape[0] != positives.shape[0]:
        raise BatchShapeError(
            f"Batch {batch.batch_index} (epoch {batch.epoch}): {users.shape[0]} users but "
            f"{positives.shape[0]} positive items."
        )
    if users.shape[0] == 0:
        raise BatchShapeError(f"Batch {batch.batch_index} (epoch {batch.epoch}) is empty.")
    if negatives is not None and (
        negatives.ndim != 2 or negatives.shape[0] != users.shape[0] or negatives.shape[1] < 1
    ):
        raise BatchShapeError(
            f"Batch {batch.batch_index} (epoch {batch.epoch}): negatives must have shape "
            f"({users.shape[0]}, k>=1), got {tuple(negatives.shape)}."
        )


def in_batch_softmax_loss(model: RetrievalModel, batch: LossBatch) -> torch.Tensor:
    """
    Softmax cross-entropy over the ``B x B`` user/positive score matrix.

    Row ``i`` targets column ``i``; the other columns act as negatives. Two rows
    sharing a positive item still target their own diagonal entry.
    """
    validate_batch(batch)
    logits = model.score_matrix(batch.users, batch.positives)
    targets = torch.arange(logits.shape[0], device=logits.device)
    return F.cross_entropy(logits, targets)


def pairwise_ranking_loss(
    model: RetrievalModel, batch: LossBatch, *, epsilon: float = BPR_EPSILON
) -> torch.Tensor:
    """
    Mean of ``-log(sigmoid(s_pos - s_neg) + epsilon)``.

    Without sampled negatives, pair ``i`` uses the positive item of pair
    ``(i + 1) mod B`` as its negative. With ``k`` sampled negatives per pair
    every (positive, negative) comparison contributes equally.
    """
    validate_batch(batch)
    users, positives = batch.users, batch.positives
    negatives = batch.negatives
    if negatives is None:
        negatives = torch.roll(positives, shifts=-1).unsqueeze(1)

    num_negatives = negatives.shape[1]
    pos_scores = model.score_pairs(users, positives)
    neg_scores = model.score_pairs(
        users.repeat_interleave(num_negatives), negatives.reshape(-1)
    ).view(-1, num_negatives)

    diff = pos_scores.unsqueeze(1) - neg_scores
    return -torch.log(torch.sigmoid(diff) + epsilon).mean()


def compute_loss(
    model: RetrievalModel, batch: LossBatch, loss_mode: LossMode | str
) -> torch.Tensor:
    mode = LossMode.parse(loss_mode)
    if mode is LossMode.IN_BATCH_SOFTMAX:
        return in_batch_softmax_loss(model, batch)
    return pairwise_ranking_loss(model, batch)
