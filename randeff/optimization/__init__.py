# randeff/optimization/__init__.py
"""Per-entity optimization problems, objectives, and trackers."""
from .config import (
    OptimizerConfig,
    OptimizerType,
    RandomEffectOptimizationConfiguration,
    RegularizationType,
    VarianceComputationType,
)
from .function import (
    GLMObjectiveFunction,
    LogisticLossFunction,
    PoissonLossFunction,
    SquaredLossFunction,
)
from .problem import (
    RandomEffectOptimizationProblem,
    SingleNodeOptimizationProblem,
    SingleNodeSolver,
)
from .tracker import (
    ConvergenceReason,
    OptimizationStatesTracker,
    OptimizerState,
    RandomEffectOptimizationTracker,
)

__all__ = [
    "ConvergenceReason",
    "GLMObjectiveFunction",
    "LogisticLossFunction",
    "OptimizationStatesTracker",
    "OptimizerConfig",
    "OptimizerState",
    "OptimizerType",
    "PoissonLossFunction",
    "RandomEffectOptimizationConfiguration",
    "RandomEffectOptimizationProblem",
    "RandomEffectOptimizationTracker",
    "RegularizationType",
    "SingleNodeOptimizationProblem",
    "SingleNodeSolver",
    "SquaredLossFunction",
    "VarianceComputationType",
]
