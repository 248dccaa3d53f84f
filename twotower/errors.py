"""
Exception hierarchy shared by the data, training, and serving layers.

Parsing problems are recovered per record by the loaders; everything else
propagates to the caller unchanged.
"""

from __future__ import annotations


class TwoTowerError(Exception):
    """Base class for all errors raised by the package."""


class DataSourceError(TwoTowerError):
    """A named input could not be read from its data source."""


class MalformedRecordError(TwoTowerError):
    """A single interaction or item line failed to parse."""

    def __init__(self, reason: str, *, line_number: int | None = None) -> None:
        self.reason = reason
        self.line_number = line_number
        location = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{location}{reason}")


class EmptyInputError(TwoTowerError):
    """No users, items, or records remain after parsing and filtering."""


class BatchShapeError(TwoTowerError):
    """User/item tensors of a training batch disagree in shape."""


class DivergenceError(TwoTowerError):
    """A training batch produced a non-finite loss."""

    def __init__(self, *, epoch: int, batch_index: int, loss: float) -> None:
        self.epoch = epoch
        self.batch_index = batch_index
        self.loss = loss
        super().__init__(
            f"Non-finite loss {loss} at epoch {epoch}, batch {batch_index}; "
            "training aborted."
        )


class UnknownUserError(TwoTowerError, LookupError):
    """A dense user index outside the current user index space."""

    def __init__(self, user_index: int) -> None:
        self.user_index = user_index
        super().__init__(f"Unknown user index {user_index}")


class UnknownItemError(TwoTowerError, LookupError):
    """A dense item index outside the current item index space."""

    def __init__(self, item_index: int) -> None:
        self.item_index = item_index
        super().__init__(f"Unknown item index {item_index}")


class IndexSpaceMismatchError(TwoTowerError):
    """A model was paired with a store built from a different index space."""


class SessionBusyError(TwoTowerError):
    """Parameters were read while a training run was mutating them."""


class NoEligibleUserError(TwoTowerError):
    """No user has enough ratings to be picked for the recommendation demo."""
