"""Feature normalization contexts.

A normalization context describes the affine map applied to features before
optimization::

    x_t[j] = (x[j] - shifts[j]) * factors[j]

The intercept column is neither shifted nor scaled. Models trained in the
transformed space are mapped back to the original space (and vice versa)
exactly, so the rest of the system never sees normalized coefficients.
"""

# randeff/normalization.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from randeff.model.coefficients import Coefficients

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["FeatureSummary", "NormalizationContext", "NormalizationType"]


class NormalizationType(Enum):
    NONE = "NONE"
    SCALE_WITH_STANDARD_DEVIATION = "SCALE_WITH_STANDARD_DEVIATION"
    SCALE_WITH_MAX_MAGNITUDE = "SCALE_WITH_MAX_MAGNITUDE"
    STANDARDIZATION = "STANDARDIZATION"


@dataclass(frozen=True, eq=False)
class FeatureSummary:
    """Per-feature statistics of a design matrix.

    Attributes
    ----------
    mean : np.ndarray
        Column means.
    variance : np.ndarray
        Column variances (``ddof=1`` when more than one row).
    max_magnitude : np.ndarray
        Column maxima of ``|x|``.
    count : int
        Number of rows summarized.
    """

    mean: NDArray[np.float64]
    variance: NDArray[np.float64]
    max_magnitude: NDArray[np.float64]
    count: int

    @classmethod
    def from_matrix(cls, X: NDArray[np.float64]) -> FeatureSummary:
        A = np.asarray(X, dtype=np.float64)
        if A.ndim != 2 or A.shape[0] == 0:
            raise ValueError("FeatureSummary requires a non-empty 2-D design matrix.")
        ddof = 1 if A.shape[0] > 1 else 0
        return cls(
            mean=A.mean(axis=0),
            variance=A.var(axis=0, ddof=ddof),
            max_magnitude=np.abs(A).max(axis=0),
            count=int(A.shape[0]),
        )


def _safe_reciprocal(x: NDArray[np.float64]) -> NDArray[np.float64]:
    out = np.ones_like(x, dtype=np.float64)
    nz = x > 0.0
    out[nz] = 1.0 / x[nz]
    return out


def _frozen(a: NDArray[np.float64]) -> NDArray[np.float64]:
    arr = np.array(a, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class NormalizationContext:
    """Scaling factors and optional shifts with the intercept index.

    Parameters
    ----------
    factors : np.ndarray | None
        Multiplicative factors, one per feature.
    shifts_and_intercept : tuple[np.ndarray, int] | None
        Shift vector and the index of the intercept column. Shifting is only
        meaningful with an intercept that absorbs it.
    """

    factors: NDArray[np.float64] | None = None
    shifts_and_intercept: tuple[NDArray[np.float64], int] | None = None

    def __post_init__(self) -> None:
        if self.factors is not None:
            f = _frozen(self.factors)
            if f.ndim != 1:
                raise ValueError("factors must be a 1-D vector.")
            if not np.all(np.isfinite(f)) or np.any(f == 0.0):
                raise ValueError("factors must be finite and non-zero.")
            object.__setattr__(self, "factors", f)
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            s = _frozen(shifts)
            icpt = int(intercept)
            if s.ndim != 1 or not (0 <= icpt < s.shape[0]):
                raise ValueError(f"Intercept index {intercept} is outside the shift vector.")
            if s[icpt] != 0.0:
                raise ValueError("The intercept column must not be shifted.")
            object.__setattr__(self, "shifts_and_intercept", (s, icpt))
        if self.factors is not None and self.shifts_and_intercept is not None:
            if self.factors.shape != self.shifts_and_intercept[0].shape:
                raise ValueError("factors and shifts must have the same length.")

    @classmethod
    def identity(cls) -> NormalizationContext:
        return cls()

    @classmethod
    def build(
        cls,
        normalization_type: NormalizationType,
        summary: FeatureSummary,
        intercept_index: int | None = None,
    ) -> NormalizationContext:
        """Derive a context from feature statistics.

        Constant columns (zero variance or magnitude) keep a factor of 1. The
        intercept column always keeps factor 1 and shift 0.
        """
        if normalization_type is NormalizationType.NONE:
            return cls.identity()
        if normalization_type is NormalizationType.SCALE_WITH_MAX_MAGNITUDE:
            factors = _safe_reciprocal(np.asarray(summary.max_magnitude, dtype=np.float64))
        else:
            factors = _safe_reciprocal(np.sqrt(np.asarray(summary.variance, dtype=np.float64)))
        if intercept_index is not None:
            factors[int(intercept_index)] = 1.0
        if normalization_type is not NormalizationType.STANDARDIZATION:
            return cls(factors=factors)
        if intercept_index is None:
            raise ValueError("STANDARDIZATION requires an intercept column.")
        shifts = np.array(summary.mean, dtype=np.float64)
        shifts[int(intercept_index)] = 0.0
        return cls(factors=factors, shifts_and_intercept=(shifts, int(intercept_index)))

    # -----------------------------------------------------------------

    @property
    def size(self) -> int | None:
        """Dimension this context applies to, or None when unrestricted."""
        if self.factors is not None:
            return int(self.factors.shape[0])
        if self.shifts_and_intercept is not None:
            return int(self.shifts_and_intercept[0].shape[0])
        return None

    @property
    def is_identity(self) -> bool:
        return self.factors is None and self.shifts_and_intercept is None

    def _check_dim(self, n: int) -> None:
        size = self.size
        if size is not None and size != n:
            raise ValueError(f"Normalization context of size {size} applied to dimension {n}.")

    def transform_matrix(self, X: NDArray[np.float64]) -> NDArray[np.float64]:
        """Apply the feature transform to each row of ``X``."""
        A = np.asarray(X, dtype=np.float64)
        if self.is_identity:
            return A
        self._check_dim(A.shape[1])
        if self.shifts_and_intercept is not None:
            A = A - self.shifts_and_intercept[0]
        if self.factors is not None:
            A = A * self.factors
        return A

    def model_to_original_space(self, coefficients: Coefficients) -> Coefficients:
        """Map coefficients learned on transformed features to raw features."""
        if self.is_identity:
            return coefficients
        self._check_dim(coefficients.length)
        means = np.array(coefficients.means, dtype=np.float64)
        variances = None if coefficients.variances is None else np.array(coefficients.variances)
        if self.factors is not None:
            means = means * self.factors
            if variances is not None:
                variances = variances * self.factors**2
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            means[intercept] -= float(means @ shifts)
        return Coefficients(means, variances)

    def model_to_transformed_space(self, coefficients: Coefficients) -> Coefficients:
        """Inverse of :meth:`model_to_original_space`."""
        if self.is_identity:
            return coefficients
        self._check_dim(coefficients.length)
        means = np.array(coefficients.means, dtype=np.float64)
        variances = None if coefficients.variances is None else np.array(coefficients.variances)
        if self.shifts_and_intercept is not None:
            shifts, intercept = self.shifts_and_intercept
            means[intercept] += float(means @ shifts)
        if self.factors is not None:
            means = means / self.factors
            if variances is not None:
                variances = variances / self.factors**2
        return Coefficients(means, variances)
