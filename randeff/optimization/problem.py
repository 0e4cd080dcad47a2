"""Per-entity optimization problems.

:class:`SingleNodeOptimizationProblem` adapts one entity's data to the
shared objective and hands it to :func:`scipy.optimize.minimize`. The
coordinate relies only on the :class:`SingleNodeSolver` contract, so any
object with the same two methods can take its place.
"""

# randeff/optimization/problem.py
from __future__ import annotations

import logging
import time
import warnings
from collections.abc import Callable, Hashable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np
import scipy.linalg as sla
from scipy.optimize import minimize

from randeff.core.partition import PartitionedCollection, StorageLevel
from randeff.model.coefficients import Coefficients
from randeff.optimization.config import (
    OptimizerType,
    RandomEffectOptimizationConfiguration,
    VarianceComputationType,
)
from randeff.optimization.function import DesignBatch, GLMObjectiveFunction
from randeff.optimization.tracker import (
    ConvergenceReason,
    OptimizationStatesTracker,
    OptimizerState,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from scipy.optimize import OptimizeResult

    from randeff.core.partition import Broadcast, HashPartitioner
    from randeff.data.labeled_point import LabeledPoint
    from randeff.model.glm import GeneralizedLinearModel
    from randeff.normalization import NormalizationContext

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "RandomEffectOptimizationProblem",
    "SingleNodeOptimizationProblem",
    "SingleNodeSolver",
]


@runtime_checkable
class SingleNodeSolver(Protocol):
    """What a coordinate needs from a per-entity solver."""

    def run(
        self,
        points: Sequence[LabeledPoint],
        initial_model: GeneralizedLinearModel | None = None,
    ) -> GeneralizedLinearModel:
        ...

    def get_states_tracker(self) -> OptimizationStatesTracker | None:
        ...


def _convergence_reason(result: OptimizeResult, method: str, max_iter: int) -> ConvergenceReason:
    if result.success:
        message = str(result.message).upper()
        if method == "trust-ncg" or "GRADIENT" in message:
            return ConvergenceReason.GRADIENT_CONVERGED
        return ConvergenceReason.FUNCTION_VALUES_CONVERGED
    if int(getattr(result, "nit", 0)) >= max_iter:
        return ConvergenceReason.MAX_ITERATIONS
    return ConvergenceReason.DID_NOT_CONVERGE


class SingleNodeOptimizationProblem:
    """Solver setup for one entity.

    Parameters
    ----------
    configuration : RandomEffectOptimizationConfiguration
        Optimizer settings.
    objective_function : GLMObjectiveFunction
        Shared, stateless objective.
    glm_constructor : Callable[[Coefficients], GeneralizedLinearModel]
        Wraps trained coefficients into a model.
    normalization_context : Broadcast[NormalizationContext]
        Normalization in this entity's compressed space.
    variance_computation_type : VarianceComputationType
        Whether and how to estimate coefficient variances.
    is_tracking_state : bool
        Record the optimizer trajectory of the last :meth:`run`.
    """

    def __init__(  # noqa: PLR0913
        self,
        configuration: RandomEffectOptimizationConfiguration,
        objective_function: GLMObjectiveFunction,
        glm_constructor: Callable[[Coefficients], GeneralizedLinearModel],
        normalization_context: Broadcast[NormalizationContext],
        variance_computation_type: VarianceComputationType = VarianceComputationType.NONE,
        is_tracking_state: bool = False,
    ):
        self.configuration = configuration
        self.objective_function = objective_function
        self.glm_constructor = glm_constructor
        self.normalization_context = normalization_context
        self.variance_computation_type = variance_computation_type
        self.is_tracking_state = bool(is_tracking_state)
        self._states_tracker: OptimizationStatesTracker | None = None

    def get_states_tracker(self) -> OptimizationStatesTracker | None:
        """Tracker of the most recent run (None when tracking is off)."""
        return self._states_tracker

    def _variances(self, means: NDArray[np.float64], batch: DesignBatch) -> NDArray[np.float64] | None:
        kind = self.variance_computation_type
        if kind is VarianceComputationType.NONE:
            return None
        if kind is VarianceComputationType.SIMPLE:
            d = self.objective_function.hessian_diagonal(means, batch)
            return np.divide(1.0, d, out=np.full_like(d, np.inf), where=d > 0.0)
        H = self.objective_function.hessian_matrix(means, batch)
        try:
            factor = sla.cho_factor(H, lower=True)
            H_inv = sla.cho_solve(factor, np.eye(H.shape[0]))
        except sla.LinAlgError:
            # singular without regularization; fall back to the pseudo-inverse
            H_inv = sla.pinvh(H)
        return np.array(np.diag(H_inv), dtype=np.float64)

    def run(
        self,
        points: Sequence[LabeledPoint],
        initial_model: GeneralizedLinearModel | None = None,
    ) -> GeneralizedLinearModel:
        """Train on ``points``, warm-started from ``initial_model`` when given."""
        points = list(points)
        if not points:
            raise ValueError("Cannot train on zero data points.")
        context = self.normalization_context.value
        dim = context.size if context.size is not None else points[0].dimension
        batch = DesignBatch.from_points(points, dim)
        batch = batch.with_matrix(context.transform_matrix(batch.X))

        if initial_model is None:
            x0 = np.zeros(dim, dtype=np.float64)
        else:
            if initial_model.coefficients.length != dim:
                raise ValueError(
                    f"Initial model has {initial_model.coefficients.length} coefficients; "
                    f"problem dimension is {dim}.",
                )
            x0 = np.array(context.model_to_transformed_space(initial_model.coefficients).means)

        objective = self.objective_function
        opt = self.configuration.optimizer_config
        method = opt.optimizer_type.scipy_method
        states: list[OptimizerState] = []

        def record(w: NDArray[np.float64]) -> None:
            value, grad = objective.value_and_gradient(w, batch)
            states.append(OptimizerState(len(states), float(value), float(np.linalg.norm(grad))))

        extra = {}
        if opt.optimizer_type is OptimizerType.TRON:
            extra["hess"] = lambda w: objective.hessian_matrix(w, batch)
        if self.is_tracking_state:
            record(x0)
        start = time.perf_counter()
        result = minimize(
            lambda w: objective.value_and_gradient(w, batch),
            x0,
            jac=True,
            method=method,
            tol=opt.tolerance,
            options={"maxiter": int(opt.maximum_iterations)},
            callback=record if self.is_tracking_state else None,
            **extra,
        )
        elapsed = time.perf_counter() - start

        reason = _convergence_reason(result, method, int(opt.maximum_iterations))
        if reason in (ConvergenceReason.MAX_ITERATIONS, ConvergenceReason.DID_NOT_CONVERGE):
            warnings.warn(
                f"{method} stopped without converging ({reason.value}): {result.message}",
                RuntimeWarning,
                stacklevel=2,
            )
        _LOGGER.debug("%s finished in %d iterations (%s)", method, int(result.nit), reason.value)

        means = np.asarray(result.x, dtype=np.float64)
        coefficients = context.model_to_original_space(
            Coefficients(means, self._variances(means, batch)),
        )
        self._states_tracker = (
            OptimizationStatesTracker(tuple(states), reason, elapsed) if self.is_tracking_state else None
        )
        return self.glm_constructor(coefficients)


class RandomEffectOptimizationProblem:
    """Entity id -> per-entity solver, co-partitioned with the active data."""

    def __init__(
        self,
        optimization_problems: PartitionedCollection[Hashable, SingleNodeSolver],
        glm_constructor: Callable[[Coefficients], GeneralizedLinearModel],
        is_tracking_state: bool = False,
    ):
        self.optimization_problems = optimization_problems
        self.glm_constructor = glm_constructor
        self.is_tracking_state = bool(is_tracking_state)

    @property
    def partitioner(self) -> HashPartitioner | None:
        return self.optimization_problems.partitioner

    def set_name(self, name: str) -> RandomEffectOptimizationProblem:
        self.optimization_problems.set_name(name)
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> RandomEffectOptimizationProblem:
        self.optimization_problems.persist(storage_level)
        return self

    def unpersist(self) -> RandomEffectOptimizationProblem:
        self.optimization_problems.unpersist()
        return self

    def materialize(self) -> RandomEffectOptimizationProblem:
        self.optimization_problems.materialize()
        return self
