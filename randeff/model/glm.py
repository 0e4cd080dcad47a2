"""Generalized linear models scored per datum."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from scipy.special import expit

from randeff.model.coefficients import Coefficients

if TYPE_CHECKING:
    from randeff.core.linalg import Vector

__all__ = [
    "GeneralizedLinearModel",
    "LinearRegressionModel",
    "LogisticRegressionModel",
    "PoissonRegressionModel",
    "TaskType",
    "glm_constructor_for",
]


class TaskType(Enum):
    LINEAR_REGRESSION = "LINEAR_REGRESSION"
    LOGISTIC_REGRESSION = "LOGISTIC_REGRESSION"
    POISSON_REGRESSION = "POISSON_REGRESSION"


@dataclass(frozen=True)
class GeneralizedLinearModel(ABC):
    """Linear predictor ``x . means`` with a task-specific inverse link."""

    coefficients: Coefficients
    task_type: ClassVar[TaskType]

    @abstractmethod
    def _inverse_link(self, margin: float) -> float:
        ...

    def compute_score(self, features: Vector) -> float:
        """Raw linear score; no link function is applied."""
        return self.coefficients.compute_score(features)

    def compute_mean(self, features: Vector, offset: float = 0.0) -> float:
        return self._inverse_link(self.compute_score(features) + float(offset))

    def update_coefficients(self, coefficients: Coefficients) -> GeneralizedLinearModel:
        """Same model family with new coefficients."""
        return replace(self, coefficients=coefficients)


@dataclass(frozen=True)
class LinearRegressionModel(GeneralizedLinearModel):
    task_type: ClassVar[TaskType] = TaskType.LINEAR_REGRESSION

    def _inverse_link(self, margin: float) -> float:
        return float(margin)


@dataclass(frozen=True)
class LogisticRegressionModel(GeneralizedLinearModel):
    task_type: ClassVar[TaskType] = TaskType.LOGISTIC_REGRESSION

    def _inverse_link(self, margin: float) -> float:
        return float(expit(margin))


@dataclass(frozen=True)
class PoissonRegressionModel(GeneralizedLinearModel):
    task_type: ClassVar[TaskType] = TaskType.POISSON_REGRESSION

    def _inverse_link(self, margin: float) -> float:
        return float(np.exp(margin))


_CONSTRUCTORS: dict[TaskType, type[GeneralizedLinearModel]] = {
    TaskType.LINEAR_REGRESSION: LinearRegressionModel,
    TaskType.LOGISTIC_REGRESSION: LogisticRegressionModel,
    TaskType.POISSON_REGRESSION: PoissonRegressionModel,
}


def glm_constructor_for(task_type: TaskType) -> Callable[[Coefficients], GeneralizedLinearModel]:
    """Return the coefficients-to-model constructor for ``task_type``."""
    try:
        return _CONSTRUCTORS[task_type]
    except KeyError:
        raise ValueError(f"Unsupported task type: {task_type!r}") from None
