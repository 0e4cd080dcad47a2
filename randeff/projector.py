"""Per-entity linear subspace projection.

An entity observes only a handful of the global features. Its model is
trained in a compressed space holding just those features, and projected
back to the global space afterwards.
"""

# randeff/projector.py
from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import numpy as np

from randeff.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from randeff.core.linalg import Vector

__all__ = ["LinearSubspaceProjector"]


class LinearSubspaceProjector:
    """Bijection between an entity's observed global indices and ``0..d-1``.

    Parameters
    ----------
    original_indices : Iterable[int]
        Global feature indices observed for the entity. Duplicates are
        ignored; the compressed space keeps their sorted order.
    original_dimension : int
        Size of the global feature space.
    """

    __slots__ = (
        "_indices",
        "original_dimension",
        "original_to_projected_space_map",
        "projected_to_original_space_map",
    )

    def __init__(self, original_indices: Iterable[int], original_dimension: int):
        idx = np.unique(np.fromiter((int(i) for i in original_indices), dtype=np.int64))
        dim = int(original_dimension)
        if idx.size and (idx[0] < 0 or idx[-1] >= dim):
            raise ValueError(
                f"Observed indices must lie in [0, {dim}); got range [{idx[0]}, {idx[-1]}].",
            )
        idx.setflags(write=False)
        self._indices = idx
        self.original_dimension = dim
        self.original_to_projected_space_map: dict[int, int] = {int(o): p for p, o in enumerate(idx)}
        self.projected_to_original_space_map: dict[int, int] = {p: int(o) for p, o in enumerate(idx)}

    @classmethod
    def from_vectors(
        cls,
        vectors: Iterable[Vector],
        original_dimension: int,
        *,
        forced_indices: Iterable[int] = (),
    ) -> LinearSubspaceProjector:
        """Build a projector over the union of the vectors' non-zero positions.

        ``forced_indices`` are kept even when never observed (e.g. an
        intercept column that some pipelines leave implicit).
        """
        observed: set[int] = {int(i) for i in forced_indices}
        for v in vectors:
            if la.vector_length(v) != original_dimension:
                raise ValueError(
                    f"Vector of length {la.vector_length(v)} does not live in a space of "
                    f"dimension {original_dimension}.",
                )
            observed.update(int(i) for i in la.active_indices(v))
        return cls(observed, original_dimension)

    @property
    def projected_dimension(self) -> int:
        return int(self._indices.shape[0])

    @property
    def original_indices(self) -> NDArray[np.int64]:
        return self._indices

    def project_forward(self, vector: Vector) -> NDArray[np.float64]:
        """Original space to compressed space; unobserved positions are dropped."""
        n = la.vector_length(vector)
        if n != self.original_dimension:
            raise ValueError(
                f"Cannot project a vector of length {n} forward from a space of "
                f"dimension {self.original_dimension}.",
            )
        return la.gather(vector, self._indices)

    def project_backward(self, vector: Vector) -> NDArray[np.float64]:
        """Compressed space to original space; unobserved positions are zero."""
        n = la.vector_length(vector)
        if n != self.projected_dimension:
            raise ValueError(
                f"Cannot project a vector of length {n} backward from a space of "
                f"dimension {self.projected_dimension}.",
            )
        return la.scatter(vector, self._indices, self.original_dimension)

    # Data points use the same map as coefficients
    project_features = project_forward

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LinearSubspaceProjector):
            return NotImplemented
        return (
            other.original_dimension == self.original_dimension
            and np.array_equal(other.original_indices, self._indices)
        )

    def __hash__(self) -> int:
        return hash((self.original_dimension, self._indices.tobytes()))

    def __repr__(self) -> str:
        return (
            f"LinearSubspaceProjector(projected={self.projected_dimension}, "
            f"original={self.original_dimension})"
        )
