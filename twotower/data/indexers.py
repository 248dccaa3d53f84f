"""
Indexing utilities that map raw identifiers to contiguous integer ranges.

Dense indices are assigned in ascending order of the external identifier, so
the same set of ids always produces the same mapping regardless of the order
in which the records were read.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from twotower.errors import EmptyInputError


@dataclass(frozen=True)
class IndexSpace:
    """Bidirectional mapping between external integer IDs and dense indices."""

    id_to_index: dict[int, int]
    index_to_id: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.index_to_id)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self.id_to_index

    def size(self) -> int:
        return len(self.index_to_id)

    def to_dense(self, external_id: object) -> int | None:
        """Return the dense index for ``external_id`` or None when it is unknown."""
        return self.id_to_index.get(external_id)

    def to_index(self, external_id: int) -> int:
        try:
            return self.id_to_index[external_id]
        except KeyError as exc:
            raise KeyError(f"ID '{external_id}' missing from index space") from exc

    def to_external(self, index: int) -> int:
        if index < 0 or index >= len(self.index_to_id):
            raise IndexError(f"Index {index} out of bounds for index space of size {len(self)}")
        return self.index_to_id[index]

    def to_dense_array(self, external_ids: Iterable[int]) -> np.ndarray:
        """Vectorised ``to_index`` over a sequence of known external ids."""
        return np.fromiter(
            (self.to_index(value) for value in external_ids), dtype=np.int64
        )


def build_index_space(values: Iterable[int]) -> IndexSpace:
    """
    Create an IndexSpace over the distinct values, sorted ascending.

    Parameters
    ----------
    values:
        Iterable of external identifiers (user IDs, item IDs). Duplicates are
        allowed and collapse to a single dense index.

    Raises
    ------
    EmptyInputError
        When ``values`` contains no identifiers at all.
    """
    distinct = sorted({int(value) for value in values})
    if not distinct:
        raise EmptyInputError("Cannot build an index space from zero identifiers.")

    id_to_index = {external_id: index for index, external_id in enumerate(distinct)}
    return IndexSpace(id_to_index=id_to_index, index_to_id=tuple(distinct))
