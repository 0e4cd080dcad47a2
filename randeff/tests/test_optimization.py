import numpy as np
import pytest

from randeff.core.partition import Broadcast
from randeff.data.labeled_point import LabeledPoint
from randeff.model.coefficients import Coefficients
from randeff.model.glm import LinearRegressionModel, LogisticRegressionModel, TaskType, glm_constructor_for
from randeff.normalization import FeatureSummary, NormalizationContext, NormalizationType
from randeff.optimization import (
    ConvergenceReason,
    GLMObjectiveFunction,
    OptimizerConfig,
    OptimizerType,
    RandomEffectOptimizationConfiguration,
    RegularizationType,
    SingleNodeOptimizationProblem,
    SingleNodeSolver,
    VarianceComputationType,
)
from randeff.optimization.function import DesignBatch

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def regression_points(rng):
    X = np.column_stack([np.ones(40), rng.standard_normal((40, 2)) * [2.0, 0.5] + [1.0, -3.0]])
    w = np.array([0.5, -1.0, 2.0])
    offsets = rng.uniform(-0.5, 0.5, 40)
    y = X @ w + offsets
    points = [LabeledPoint(float(y[i]), X[i], offset=float(offsets[i])) for i in range(40)]
    return X, y, offsets, w, points


@pytest.fixture
def logistic_points(rng):
    X = np.column_stack([np.ones(60), rng.standard_normal((60, 2))])
    p = 1.0 / (1.0 + np.exp(-(X @ np.array([0.2, 1.0, -1.0]))))
    y = (rng.uniform(size=60) < p).astype(float)
    return [LabeledPoint(float(y[i]), X[i]) for i in range(60)]


def make_problem(task_type, configuration, context=None, **kwargs):
    return SingleNodeOptimizationProblem(
        configuration,
        GLMObjectiveFunction.for_task(task_type, configuration),
        glm_constructor_for(task_type),
        Broadcast(NormalizationContext.identity() if context is None else context),
        **kwargs,
    )


def unregularized(optimizer_type=OptimizerType.TRON):
    return RandomEffectOptimizationConfiguration(
        OptimizerConfig(optimizer_type, maximum_iterations=500, tolerance=1e-10),
        RegularizationType.NONE,
    )


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------


def test_configuration_validation():
    with pytest.raises(ValueError, match="maximum_iterations"):
        OptimizerConfig(maximum_iterations=0)
    with pytest.raises(ValueError, match="tolerance"):
        OptimizerConfig(tolerance=0.0)
    with pytest.raises(TypeError, match="OptimizerType"):
        OptimizerConfig(optimizer_type="LBFGS")
    with pytest.raises(ValueError, match="non-negative"):
        RandomEffectOptimizationConfiguration(regularization_weight=-1.0)


def test_l2_weight_only_for_l2():
    assert RandomEffectOptimizationConfiguration(regularization_weight=2.0).l2_weight == 2.0
    assert RandomEffectOptimizationConfiguration(
        regularization_type=RegularizationType.NONE, regularization_weight=2.0,
    ).l2_weight == 0.0
    assert OptimizerType.LBFGS.scipy_method == "L-BFGS-B"
    assert OptimizerType.TRON.scipy_method == "trust-ncg"


# ---------------------------------------------------------------------
# Objective
# ---------------------------------------------------------------------


@pytest.mark.parametrize("task_type", list(TaskType))
def test_gradient_matches_finite_differences(task_type, rng):
    X = rng.standard_normal((12, 3))
    labels = rng.poisson(1.0, 12).astype(float) if task_type is TaskType.POISSON_REGRESSION else (
        rng.uniform(size=12) < 0.5
    ).astype(float)
    batch = DesignBatch(X, labels, rng.uniform(-0.2, 0.2, 12), rng.uniform(0.5, 2.0, 12))
    objective = GLMObjectiveFunction.for_task(
        task_type, RandomEffectOptimizationConfiguration(regularization_weight=0.3),
    )
    w = rng.standard_normal(3) * 0.3
    _, grad = objective.value_and_gradient(w, batch)
    eps = 1e-6
    numeric = np.array([
        (objective.value(w + eps * e, batch) - objective.value(w - eps * e, batch)) / (2 * eps)
        for e in np.eye(3)
    ])
    assert np.allclose(grad, numeric, rtol=1e-5, atol=1e-6)
    assert np.allclose(objective.hessian_diagonal(w, batch), np.diag(objective.hessian_matrix(w, batch)))


def test_objective_rejects_bad_input():
    with pytest.raises(ValueError, match="non-negative"):
        GLMObjectiveFunction(GLMObjectiveFunction.for_task(TaskType.LINEAR_REGRESSION).loss, -1.0)
    batch = DesignBatch(np.ones((2, 2)), np.zeros(2), np.zeros(2), np.ones(2))
    with pytest.raises(ValueError, match="does not match"):
        GLMObjectiveFunction.for_task(TaskType.LINEAR_REGRESSION).value(np.ones(3), batch)
    with pytest.raises(ValueError, match="zero points"):
        DesignBatch.from_points([], 2)


# ---------------------------------------------------------------------
# Single-node problem
# ---------------------------------------------------------------------


def test_problem_satisfies_solver_protocol():
    problem = make_problem(TaskType.LINEAR_REGRESSION, unregularized())
    assert isinstance(problem, SingleNodeSolver)


@pytest.mark.parametrize("optimizer_type", [OptimizerType.TRON, OptimizerType.LBFGS])
def test_linear_regression_recovers_coefficients(regression_points, optimizer_type):
    _, _, _, w, points = regression_points
    model = make_problem(TaskType.LINEAR_REGRESSION, unregularized(optimizer_type)).run(points)
    assert isinstance(model, LinearRegressionModel)
    assert np.allclose(model.coefficients.means, w, atol=1e-4)


def test_ridge_matches_closed_form(regression_points):
    X, y, offsets, _, points = regression_points
    lam = 2.0
    config = RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.TRON, tolerance=1e-10), RegularizationType.L2, lam,
    )
    model = make_problem(TaskType.LINEAR_REGRESSION, config).run(points)
    expected = np.linalg.solve(X.T @ X + lam * np.eye(3), X.T @ (y - offsets))
    assert np.allclose(model.coefficients.means, expected, atol=1e-5)


def test_normalization_does_not_change_unregularized_solution(regression_points):
    X, _, _, w, points = regression_points
    context = NormalizationContext.build(
        NormalizationType.STANDARDIZATION, FeatureSummary.from_matrix(X), intercept_index=0,
    )
    model = make_problem(TaskType.LINEAR_REGRESSION, unregularized(), context).run(points)
    assert np.allclose(model.coefficients.means, w, atol=1e-6)


def test_warm_start_from_optimum_stays_put(logistic_points):
    config = RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.TRON, tolerance=1e-6), RegularizationType.L2, 1.0,
    )
    problem = make_problem(TaskType.LOGISTIC_REGRESSION, config)
    cold = problem.run(logistic_points)
    assert isinstance(cold, LogisticRegressionModel)
    warm = problem.run(logistic_points, cold)
    assert np.allclose(warm.coefficients.means, cold.coefficients.means, atol=1e-8)


def test_run_validates_inputs(regression_points):
    problem = make_problem(TaskType.LINEAR_REGRESSION, unregularized())
    with pytest.raises(ValueError, match="zero data points"):
        problem.run([])
    with pytest.raises(ValueError, match="Initial model has 2 coefficients"):
        problem.run(regression_points[4], LinearRegressionModel(Coefficients([0.0, 0.0])))


@pytest.mark.parametrize(
    "kind", [VarianceComputationType.SIMPLE, VarianceComputationType.FULL],
)
def test_variances(regression_points, kind):
    X, _, _, _, points = regression_points
    lam = 0.5
    config = RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.TRON, tolerance=1e-10), RegularizationType.L2, lam,
    )
    model = make_problem(
        TaskType.LINEAR_REGRESSION, config, variance_computation_type=kind,
    ).run(points)
    H = X.T @ X + lam * np.eye(3)
    expected = 1.0 / np.diag(H) if kind is VarianceComputationType.SIMPLE else np.diag(np.linalg.inv(H))
    assert np.allclose(model.coefficients.variances, expected)


def test_no_variances_by_default(regression_points):
    model = make_problem(TaskType.LINEAR_REGRESSION, unregularized()).run(regression_points[4])
    assert model.coefficients.variances is None


def test_state_tracking(logistic_points):
    config = RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.LBFGS, tolerance=1e-9), RegularizationType.L2, 1.0,
    )
    problem = make_problem(TaskType.LOGISTIC_REGRESSION, config, is_tracking_state=True)
    assert problem.get_states_tracker() is None
    problem.run(logistic_points)
    tracker = problem.get_states_tracker()
    assert tracker is not None
    assert tracker.states[0].iteration == 0
    assert tracker.num_iterations == len(tracker.states) - 1
    assert tracker.final_state.value <= tracker.states[0].value
    assert tracker.convergence_reason in (
        ConvergenceReason.FUNCTION_VALUES_CONVERGED, ConvergenceReason.GRADIENT_CONVERGED,
    )

    untracked = make_problem(TaskType.LOGISTIC_REGRESSION, config)
    untracked.run(logistic_points)
    assert untracked.get_states_tracker() is None


def test_iteration_cap_warns(logistic_points):
    config = RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.LBFGS, maximum_iterations=1, tolerance=1e-12),
    )
    problem = make_problem(TaskType.LOGISTIC_REGRESSION, config, is_tracking_state=True)
    with pytest.warns(RuntimeWarning, match="without converging"):
        problem.run(logistic_points)
    assert problem.get_states_tracker().convergence_reason is ConvergenceReason.MAX_ITERATIONS
