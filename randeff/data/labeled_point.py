"""A single labeled training example."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import numpy as np

from randeff.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["LabeledPoint"]


@dataclass(frozen=True, eq=False)
class LabeledPoint:
    """Label, feature vector, offset, and weight of one datum.

    ``features`` is a 1-D NumPy array or a single-row SciPy sparse matrix.
    """

    label: float
    features: Any
    offset: float = 0.0
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not np.isfinite(self.label):
            raise ValueError(f"Label must be finite; got {self.label!r}.")
        if not np.isfinite(self.offset):
            raise ValueError(f"Offset must be finite; got {self.offset!r}.")
        if not (np.isfinite(self.weight) and self.weight >= 0.0):
            raise ValueError(f"Weight must be finite and non-negative; got {self.weight!r}.")
        if not la.is_sparse(self.features):
            arr = np.array(self.features, dtype=np.float64).reshape(-1)
            arr.setflags(write=False)
            object.__setattr__(self, "features", arr)

    @property
    def dimension(self) -> int:
        return la.vector_length(self.features)

    def compute_margin(self, means: NDArray[np.float64]) -> float:
        """``features . means + offset``."""
        return la.dot(self.features, means) + float(self.offset)

    def with_offset(self, offset: float) -> LabeledPoint:
        return replace(self, offset=float(offset))

    def with_features(self, features: Any) -> LabeledPoint:
        return replace(self, features=features)
