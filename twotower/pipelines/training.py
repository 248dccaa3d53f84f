"""
Training orchestration for the retrieval models.

The loop is a generator of discrete batch steps so a host can interleave its
own work (UI refresh, cancellation, progress reporting) between batches
without threads. ``fit`` drives it synchronously and ``fit_async`` yields to
the running event loop after every batch.
"""

from __future__ import annotations

import asyncio
import math
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

import numpy as np
import torch
from loguru import logger
from torch.nn.utils import clip_grad_norm_

from twotower.data.samplers import BatchSampler, LossBatch
from twotower.errors import DivergenceError
from twotower.session import Session

from .losses import LossMode, compute_loss


@dataclass(frozen=True)
class TrainingConfig:
    epochs: int = 5
    batch_size: int = 256
    learning_rate: float = 0.01
    optimizer: str = "adam"
    weight_decay: float = 0.0
    momentum: float = 0.0
    loss_mode: LossMode = LossMode.IN_BATCH_SOFTMAX
    negatives_per_positive: int | None = None
    gradient_clip_norm: float | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "loss_mode", LossMode.parse(self.loss_mode))
        if self.epochs < 1:
            raise ValueError("epochs must be at least 1.")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive.")
        if self.optimizer.lower() not in {"adam", "adamw", "sgd"}:
            raise ValueError(f"Unsupported optimizer: {self.optimizer}")
        if self.negatives_per_positive is not None and self.negatives_per_positive < 0:
            raise ValueError("negatives_per_positive must be non-negative.")

    @property
    def resolved_negatives(self) -> int:
        """Explicit negatives per positive; in-batch softmax never samples any."""
        if self.loss_mode is LossMode.IN_BATCH_SOFTMAX:
            return 0
        if self.negatives_per_positive is None:
            return 1
        return int(self.negatives_per_positive)

    @property
    def min_batch_size(self) -> int:
        # Negatives taken from the batch itself need at least one other pair.
        return 2 if self.resolved_negatives == 0 else 1

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any], *, seed: int | None = None) -> "TrainingConfig":
        clip = section.get("gradient_clip_norm")
        negatives = section.get("negatives_per_positive")
        return cls(
            epochs=int(section.get("epochs", 5)),
            batch_size=int(section.get("batch_size", 256)),
            learning_rate=float(section.get("learning_rate", 0.01)),
            optimizer=str(section.get("optimizer", "adam")),
            weight_decay=float(section.get("weight_decay", 0.0)),
            momentum=float(section.get("momentum", 0.0)),
            loss_mode=LossMode.parse(section.get("loss_mode", LossMode.IN_BATCH_SOFTMAX)),
            negatives_per_positive=None if negatives is None else int(negatives),
            gradient_clip_norm=None if clip is None else float(clip),
            seed=seed,
        )


@dataclass
class TrainingHistory:
    batch_loss: list[float] = field(default_factory=list)
    epoch_loss: list[float] = field(default_factory=list)
    batches_per_epoch: list[int] = field(default_factory=list)
    cancelled: bool = False


@dataclass(frozen=True)
class BatchStep:
    epoch: int
    batch_index: int
    batch_size: int
    loss: float


class CancellationToken:
    """Cooperative cancellation flag, checked between batches only."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def seed_everything(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def build_optimizer(
    parameters: list[torch.nn.Parameter], config: TrainingConfig
) -> torch.optim.Optimizer:
    name = config.optimizer.lower()
    if name == "adam":
        return torch.optim.Adam(
            parameters, lr=config.learning_rate, weight_decay=config.weight_decay
        )
    if name == "adamw":
        return torch.optim.AdamW(
            parameters, lr=config.learning_rate, weight_decay=config.weight_decay
        )
    if name == "sgd":
        return torch.optim.SGD(
            parameters,
            lr=config.learning_rate,
            weight_decay=config.weight_decay,
            momentum=config.momentum,
        )
    raise ValueError(f"Unsupported optimizer: {config.optimizer}")


class TrainingLoop:
    """
    Runs epochs of mini-batch gradient descent on a session's model.

    Parameters
    ----------
    session:
        Store/model pair to train. The session stays in its training phase
        until the step generator is exhausted, cancelled, or closed.
    config:
        Epochs, batch size, loss mode, and optimiser settings.
    optimizer:
        Optional pre-built optimiser over ``session.model.trainable_parameters()``.
    """

    def __init__(
        self,
        session: Session,
        config: TrainingConfig,
        *,
        optimizer: torch.optim.Optimizer | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.parameters = session.model.trainable_parameters()
        if not self.parameters:
            raise ValueError("Model exposes no trainable parameters.")
        self.optimizer = optimizer or build_optimizer(self.parameters, config)
        users, items = session.store.training_pairs()
        self.sampler = BatchSampler(
            users, items, num_items=session.store.num_items, seed=config.seed
        )
        self.history = TrainingHistory()

    def _train_batch(self, batch: LossBatch) -> float:
        model = self.session.model
        self.optimizer.zero_grad()
        loss = compute_loss(model, batch, self.config.loss_mode)
        value = float(loss.detach().item())
        if not math.isfinite(value):
            logger.error(
                "Non-finite loss {} at epoch {} batch {}; aborting training.",
                value,
                batch.epoch,
                batch.batch_index,
            )
            raise DivergenceError(epoch=batch.epoch, batch_index=batch.batch_index, loss=value)

        loss.backward()
        if self.config.gradient_clip_norm is not None and self.config.gradient_clip_norm > 0:
            clip_grad_norm_(self.parameters, self.config.gradient_clip_norm)
        self.optimizer.step()
        return value

    def _record_epoch(self, epoch: int, epoch_losses: list[float]) -> None:
        avg_loss = float(np.mean(epoch_losses))
        self.history.batches_per_epoch.append(len(epoch_losses))
        self.history.epoch_loss.append(avg_loss)
        logger.info(
            "Epoch {:03d}/{:03d} | train_loss={:.4f}",
            epoch,
            self.config.epochs,
            avg_loss,
        )

    def iter_steps(self, cancel_token: CancellationToken | None = None) -> Iterator[BatchStep]:
        """Train for the configured epochs, yielding after every optimiser step."""
        config = self.config
        model = self.session.model
        logger.info(
            "Training '{}' ({}) | epochs={} batch_size={} loss={} negatives={}",
            self.session.name,
            getattr(model, "variant", type(model).__name__),
            config.epochs,
            config.batch_size,
            config.loss_mode.value,
            config.resolved_negatives,
        )
        expected = self.sampler.num_batches(config.batch_size, min_batch_size=config.min_batch_size)
        if expected < len(self.sampler) / config.batch_size:
            logger.warning(
                "Final batch of each epoch has fewer than {} pairs and will be skipped.",
                config.min_batch_size,
            )

        with self.session.training_phase():
            model.train()
            try:
                for epoch in range(1, config.epochs + 1):
                    epoch_losses: list[float] = []
                    for batch in self.sampler.generate_batches(
                        config.batch_size,
                        config.resolved_negatives,
                        epoch=epoch,
                        min_batch_size=config.min_batch_size,
                    ):
                        if cancel_token is not None and cancel_token.cancelled:
                            self.history.cancelled = True
                            logger.info(
                                "Training cancelled before epoch {} batch {}",
                                epoch,
                                batch.batch_index,
                            )
                            if epoch_losses:
                                self._record_epoch(epoch, epoch_losses)
                            return
                        value = self._train_batch(batch)
                        epoch_losses.append(value)
                        self.history.batch_loss.append(value)
                        logger.debug(
                            "Epoch {} batch {} | size={} loss={:.4f}",
                            epoch,
                            batch.batch_index,
                            len(batch),
                            value,
                        )
                        yield BatchStep(
                            epoch=epoch,
                            batch_index=batch.batch_index,
                            batch_size=len(batch),
                            loss=value,
                        )

                    if epoch_losses:
                        self._record_epoch(epoch, epoch_losses)
                    else:
                        self.history.batches_per_epoch.append(0)
                        logger.warning("Epoch {} produced no trainable batches.", epoch)
            finally:
                model.eval()

    def fit(
        self,
        cancel_token: CancellationToken | None = None,
        on_step: Callable[[BatchStep], None] | None = None,
    ) -> TrainingHistory:
        for step in self.iter_steps(cancel_token):
            if on_step is not None:
                on_step(step)
        return self.history

    async def fit_async(
        self,
        cancel_token: CancellationToken | None = None,
        on_step: Callable[[BatchStep], None] | None = None,
    ) -> TrainingHistory:
        for step in self.iter_steps(cancel_token):
            if on_step is not None:
                on_step(step)
            await asyncio.sleep(0)
        return self.history
