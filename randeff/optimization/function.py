"""Objective functions for single-entity GLM problems.

The objective is stateless: a single instance is shared by every entity's
optimization problem and is never mutated while training.
"""

# randeff/optimization/function.py
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import expit

from randeff.core import linalg as la
from randeff.model.glm import TaskType

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from randeff.data.labeled_point import LabeledPoint
    from randeff.optimization.config import RandomEffectOptimizationConfiguration

__all__ = [
    "DesignBatch",
    "GLMObjectiveFunction",
    "LogisticLossFunction",
    "PointwiseLossFunction",
    "PoissonLossFunction",
    "SquaredLossFunction",
]


# ---------------------------------------------------------------------
# Pointwise losses l(z, y) of the margin z
# ---------------------------------------------------------------------


class PointwiseLossFunction(ABC):
    @abstractmethod
    def loss_and_derivative(
        self, margin: NDArray[np.float64], label: NDArray[np.float64],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return ``l(z, y)`` and ``dl/dz`` elementwise."""

    @abstractmethod
    def second_derivative(
        self, margin: NDArray[np.float64], label: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Return ``d2l/dz2`` elementwise."""


@dataclass(frozen=True)
class SquaredLossFunction(PointwiseLossFunction):
    def loss_and_derivative(self, margin, label):
        r = margin - label
        return 0.5 * r * r, r

    def second_derivative(self, margin, label):
        return np.ones_like(margin, dtype=np.float64)


@dataclass(frozen=True)
class LogisticLossFunction(PointwiseLossFunction):
    """Negative log-likelihood of a Bernoulli label in ``{0, 1}``."""

    def loss_and_derivative(self, margin, label):
        return np.logaddexp(0.0, margin) - label * margin, expit(margin) - label

    def second_derivative(self, margin, label):
        p = expit(margin)
        return p * (1.0 - p)


@dataclass(frozen=True)
class PoissonLossFunction(PointwiseLossFunction):
    def loss_and_derivative(self, margin, label):
        mu = np.exp(margin)
        return mu - label * margin, mu - label

    def second_derivative(self, margin, label):
        return np.exp(margin)


_LOSSES: dict[TaskType, PointwiseLossFunction] = {
    TaskType.LINEAR_REGRESSION: SquaredLossFunction(),
    TaskType.LOGISTIC_REGRESSION: LogisticLossFunction(),
    TaskType.POISSON_REGRESSION: PoissonLossFunction(),
}


# ---------------------------------------------------------------------
# Design batch
# ---------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class DesignBatch:
    """Dense design matrix with labels, offsets, and weights."""

    X: NDArray[np.float64]
    labels: NDArray[np.float64]
    offsets: NDArray[np.float64]
    weights: NDArray[np.float64]

    @classmethod
    def from_points(cls, points: Sequence[LabeledPoint], dimension: int) -> DesignBatch:
        if not points:
            raise ValueError("Cannot build a design batch from zero points.")
        return cls(
            X=la.to_dense_matrix([lp.features for lp in points], dimension),
            labels=np.array([lp.label for lp in points], dtype=np.float64),
            offsets=np.array([lp.offset for lp in points], dtype=np.float64),
            weights=np.array([lp.weight for lp in points], dtype=np.float64),
        )

    @property
    def dimension(self) -> int:
        return int(self.X.shape[1])

    def with_matrix(self, X: NDArray[np.float64]) -> DesignBatch:
        return DesignBatch(X, self.labels, self.offsets, self.weights)


# ---------------------------------------------------------------------
# Objective
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class GLMObjectiveFunction:
    """Weighted GLM loss with an optional L2 penalty ``0.5 * l2_weight * |w|^2``."""

    loss: PointwiseLossFunction
    l2_weight: float = 0.0

    def __post_init__(self) -> None:
        if float(self.l2_weight) < 0.0:
            raise ValueError("l2_weight must be non-negative.")

    @classmethod
    def for_task(
        cls,
        task_type: TaskType,
        configuration: RandomEffectOptimizationConfiguration | None = None,
    ) -> GLMObjectiveFunction:
        try:
            loss = _LOSSES[task_type]
        except KeyError:
            raise ValueError(f"Unsupported task type: {task_type!r}") from None
        l2 = 0.0 if configuration is None else configuration.l2_weight
        return cls(loss, l2)

    def _margins(self, coef: NDArray[np.float64], batch: DesignBatch) -> NDArray[np.float64]:
        w = np.asarray(coef, dtype=np.float64)
        if w.shape != (batch.dimension,):
            raise ValueError(f"Coefficient length {w.shape} does not match design dimension {batch.dimension}.")
        return batch.X @ w + batch.offsets

    def value(self, coef: NDArray[np.float64], batch: DesignBatch) -> float:
        return self.value_and_gradient(coef, batch)[0]

    def value_and_gradient(
        self, coef: NDArray[np.float64], batch: DesignBatch,
    ) -> tuple[float, NDArray[np.float64]]:
        w = np.asarray(coef, dtype=np.float64)
        losses, d1 = self.loss.loss_and_derivative(self._margins(w, batch), batch.labels)
        value = float(batch.weights @ losses) + 0.5 * self.l2_weight * float(w @ w)
        grad = batch.X.T @ (batch.weights * d1) + self.l2_weight * w
        return value, grad

    def _curvature(self, coef: NDArray[np.float64], batch: DesignBatch) -> NDArray[np.float64]:
        return batch.weights * self.loss.second_derivative(self._margins(coef, batch), batch.labels)

    def hessian_matrix(self, coef: NDArray[np.float64], batch: DesignBatch) -> NDArray[np.float64]:
        c = self._curvature(coef, batch)
        H = batch.X.T @ (batch.X * c[:, None])
        H[np.diag_indices_from(H)] += self.l2_weight
        return H

    def hessian_diagonal(self, coef: NDArray[np.float64], batch: DesignBatch) -> NDArray[np.float64]:
        c = self._curvature(coef, batch)
        return (batch.X * batch.X).T @ c + self.l2_weight
