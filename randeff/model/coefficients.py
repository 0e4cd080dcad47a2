"""Model coefficients (means with optional variances)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from randeff.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from randeff.core.linalg import Vector

__all__ = ["Coefficients"]


def _readonly(a: object, label: str) -> NDArray[np.float64]:
    arr = np.array(a, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Coefficient {label} must be a 1-D vector; got shape {arr.shape}.")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Coefficients:
    """Trained parameters of one linear model.

    ``means`` and ``variances`` are copied into read-only ``float64`` arrays,
    so a ``Coefficients`` value never changes after construction.
    """

    means: NDArray[np.float64]
    variances: NDArray[np.float64] | None = None

    def __post_init__(self) -> None:
        means = _readonly(self.means, "means")
        object.__setattr__(self, "means", means)
        if self.variances is not None:
            variances = _readonly(self.variances, "variances")
            if variances.shape != means.shape:
                raise ValueError(
                    f"variances length {variances.shape[0]} does not match means length {means.shape[0]}.",
                )
            object.__setattr__(self, "variances", variances)

    @classmethod
    def zeros(cls, length: int) -> Coefficients:
        return cls(np.zeros(int(length), dtype=np.float64))

    @property
    def length(self) -> int:
        return int(self.means.shape[0])

    def compute_score(self, features: Vector) -> float:
        """Raw dot product of ``features`` with the means."""
        return la.dot(features, self.means)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Coefficients):
            return NotImplemented
        if not np.array_equal(self.means, other.means):
            return False
        if self.variances is None or other.variances is None:
            return self.variances is None and other.variances is None
        return bool(np.array_equal(self.variances, other.variances))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        var = "" if self.variances is None else ", with variances"
        return f"Coefficients(length={self.length}{var})"
