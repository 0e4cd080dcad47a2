"""Optimization configuration."""

# randeff/optimization/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "OptimizerConfig",
    "OptimizerType",
    "RandomEffectOptimizationConfiguration",
    "RegularizationType",
    "VarianceComputationType",
]


class OptimizerType(Enum):
    LBFGS = "LBFGS"
    TRON = "TRON"

    @property
    def scipy_method(self) -> str:
        # TRON is a trust-region Newton method; trust-ncg is the scipy analogue
        return "L-BFGS-B" if self is OptimizerType.LBFGS else "trust-ncg"


class RegularizationType(Enum):
    NONE = "NONE"
    L2 = "L2"


class VarianceComputationType(Enum):
    """How coefficient variances are estimated after training.

    ``SIMPLE`` inverts the Hessian diagonal; ``FULL`` takes the diagonal of
    the inverse Hessian.
    """

    NONE = "NONE"
    SIMPLE = "SIMPLE"
    FULL = "FULL"


@dataclass(frozen=True)
class OptimizerConfig:
    optimizer_type: OptimizerType = OptimizerType.LBFGS
    maximum_iterations: int = 100
    tolerance: float = 1e-7

    def __post_init__(self) -> None:
        if not isinstance(self.optimizer_type, OptimizerType):
            raise TypeError(f"optimizer_type must be an OptimizerType; got {self.optimizer_type!r}.")
        if int(self.maximum_iterations) < 1:
            raise ValueError("maximum_iterations must be positive.")
        if not (float(self.tolerance) > 0.0):
            raise ValueError("tolerance must be positive.")


@dataclass(frozen=True)
class RandomEffectOptimizationConfiguration:
    """Solver settings shared by every entity of one random-effect type."""

    optimizer_config: OptimizerConfig = field(default_factory=OptimizerConfig)
    regularization_type: RegularizationType = RegularizationType.L2
    regularization_weight: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.regularization_type, RegularizationType):
            raise TypeError(
                f"regularization_type must be a RegularizationType; got {self.regularization_type!r}.",
            )
        if float(self.regularization_weight) < 0.0:
            raise ValueError("regularization_weight must be non-negative.")

    @property
    def l2_weight(self) -> float:
        """Effective L2 weight (zero unless L2 regularization is selected)."""
        if self.regularization_type is RegularizationType.L2:
            return float(self.regularization_weight)
        return 0.0
