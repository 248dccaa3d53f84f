"""
Session aggregate pairing one interaction store with one retrieval model.

A session is created per load/train cycle and passed explicitly to the
training loop, the recommendation server, and the projection helpers.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from loguru import logger

from twotower.data.store import InteractionStore
from twotower.errors import IndexSpaceMismatchError, SessionBusyError
from twotower.models.two_tower import RetrievalModel

IDLE = "idle"
TRAINING = "training"


class Session:
    """
    Owns the store/model pair and the phase flag guarding parameter access.

    Parameters are mutated only while the session is in the ``training``
    phase; readers call ``ensure_idle`` first.
    """

    def __init__(self, store: InteractionStore, model: RetrievalModel, *, name: str = "session") -> None:
        if model.index_generation != store.generation:
            raise IndexSpaceMismatchError(
                f"Model built for index generation {model.index_generation!r} cannot be "
                f"used with store generation {store.generation!r}; rebuild the model."
            )
        if model.num_users != store.num_users or model.num_items != store.num_items:
            raise IndexSpaceMismatchError(
                f"Model tables ({model.num_users} users, {model.num_items} items) do not "
                f"match the store ({store.num_users} users, {store.num_items} items)."
            )
        self.store = store
        self.model = model
        self.name = name
        self._phase = IDLE

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def is_training(self) -> bool:
        return self._phase == TRAINING

    def ensure_idle(self) -> None:
        if self._phase != IDLE:
            raise SessionBusyError(
                f"Session '{self.name}' is {self._phase}; parameters cannot be read now."
            )

    @contextmanager
    def training_phase(self) -> Iterator[None]:
        """Mark the session as training for the duration of the block."""
        self.ensure_idle()
        self._phase = TRAINING
        logger.debug("Session '{}' entered training phase", self.name)
        try:
            yield
        finally:
            self._phase = IDLE
            logger.debug("Session '{}' returned to idle", self.name)
