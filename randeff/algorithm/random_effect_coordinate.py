"""Random-effect coordinate: per-entity training and scoring.

Every entity trains its own small model in a compressed feature space that
holds only the features the entity observed. Models leave the coordinate in
the global feature space so that other coordinates can consume them.

Active data, projectors, and optimization problems share one entity
partitioner, so the joins below stay partition-local. Scores are re-keyed by
datum id and placed with the dataset's datum partitioner.
"""

# randeff/algorithm/random_effect_coordinate.py
from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Hashable
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from randeff.algorithm.coordinate import Coordinate
from randeff.core.partition import Broadcast, PartitionedCollection, StorageLevel, env_int
from randeff.data.random_effect_dataset import RandomEffectDataset
from randeff.data.scores import CoordinateDataScores
from randeff.errors import MissingEntityModelError, UnsupportedModelTypeError
from randeff.model.coefficients import Coefficients
from randeff.model.datum_scoring_model import RandomEffectModel
from randeff.normalization import NormalizationContext
from randeff.optimization.config import VarianceComputationType
from randeff.optimization.problem import RandomEffectOptimizationProblem, SingleNodeOptimizationProblem
from randeff.optimization.tracker import RandomEffectOptimizationTracker

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from randeff.model.datum_scoring_model import DatumScoringModel
    from randeff.model.glm import GeneralizedLinearModel
    from randeff.optimization.config import RandomEffectOptimizationConfiguration
    from randeff.optimization.function import GLMObjectiveFunction
    from randeff.projector import LinearSubspaceProjector

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "RandomEffectCoordinate",
    "build_random_effect_optimization_problem",
    "passive_gather_warning_threshold",
    "project_model_backward",
    "project_model_forward",
    "score_random_effect_dataset",
    "train_random_effect_model",
]


@lru_cache(maxsize=1)
def passive_gather_warning_threshold() -> int:
    """Passive-model gather size that triggers a warning (``RANDEFF_PASSIVE_GATHER_WARN``)."""
    return env_int("RANDEFF_PASSIVE_GATHER_WARN", 10_000)


# ---------------------------------------------------------------------
# Optimization problem construction
# ---------------------------------------------------------------------


def _project_normalization(
    context: NormalizationContext, projector: LinearSubspaceProjector,
) -> NormalizationContext:
    if context.is_identity:
        return context
    factors = None if context.factors is None else projector.project_forward(context.factors)
    shifts_and_intercept = None
    if context.shifts_and_intercept is not None:
        shifts, intercept = context.shifts_and_intercept
        shifts_and_intercept = (
            projector.project_forward(shifts),
            projector.original_to_projected_space_map[intercept],
        )
    return NormalizationContext(factors, shifts_and_intercept)


def build_random_effect_optimization_problem(  # noqa: PLR0913
    projectors: PartitionedCollection[Hashable, LinearSubspaceProjector],
    configuration: RandomEffectOptimizationConfiguration,
    objective_function: GLMObjectiveFunction,
    glm_constructor: Callable[[Coefficients], GeneralizedLinearModel],
    normalization_context: NormalizationContext,
    variance_computation_type: VarianceComputationType = VarianceComputationType.NONE,
    is_tracking_state: bool = False,
) -> RandomEffectOptimizationProblem:
    """One solver per entity, normalized in that entity's compressed space.

    Every solver shares ``objective_function``. The result keeps the
    projectors' partitioner, and hence the active data's. An intercept that
    an entity's projector does not map raises ``KeyError``.
    """

    def _problem_for(projector: LinearSubspaceProjector) -> SingleNodeOptimizationProblem:
        return SingleNodeOptimizationProblem(
            configuration,
            objective_function,
            glm_constructor,
            Broadcast(_project_normalization(normalization_context, projector)),
            variance_computation_type,
            is_tracking_state,
        )

    return RandomEffectOptimizationProblem(
        projectors.map_values(_problem_for),
        glm_constructor,
        is_tracking_state,
    )


# ---------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------


def _transform_model(
    model: GeneralizedLinearModel,
    transform: Callable[[Any], NDArray[Any]],
) -> GeneralizedLinearModel:
    old = model.coefficients
    return model.update_coefficients(Coefficients(
        transform(old.means),
        None if old.variances is None else transform(old.variances),
    ))


def _project_models(
    model: RandomEffectModel,
    projectors: PartitionedCollection[Hashable, LinearSubspaceProjector],
    forward: bool,
) -> RandomEffectModel:
    # Left join: a prior model may hold entities without data (hence without
    # a projector) this round; those pass through unchanged.
    def _apply(pair: tuple[GeneralizedLinearModel, LinearSubspaceProjector | None]) -> GeneralizedLinearModel:
        glm, projector = pair
        if projector is None:
            return glm
        return _transform_model(glm, projector.project_forward if forward else projector.project_backward)

    return model.update(model.models_rdd.left_outer_join(projectors).map_values(_apply))


def project_model_forward(
    model: RandomEffectModel,
    projectors: PartitionedCollection[Hashable, LinearSubspaceProjector],
) -> RandomEffectModel:
    """Global feature space to each entity's compressed space."""
    return _project_models(model, projectors, forward=True)


def project_model_backward(
    model: RandomEffectModel,
    projectors: PartitionedCollection[Hashable, LinearSubspaceProjector],
) -> RandomEffectModel:
    """Each entity's compressed space to the global feature space."""
    return _project_models(model, projectors, forward=False)


# ---------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------


def train_random_effect_model(
    dataset: RandomEffectDataset,
    optimization_problem: RandomEffectOptimizationProblem,
    initial_model: RandomEffectModel | None = None,
) -> tuple[RandomEffectModel, RandomEffectOptimizationTracker | None]:
    """Train one model per active entity.

    With ``initial_model``, the prior model decides which entities are
    trained: those with data are warm-started from their prior model, those
    without data keep it as is (and produce no tracker). Entities missing
    from the prior model are left out. Without ``initial_model``, every
    active entity is cold-started.

    Every active entity must have an optimization problem.
    """
    # All three collections share the entity partitioner
    data_and_problems = dataset.active_data.join(optimization_problem.optimization_problems)

    def _cold(pair):
        local_dataset, solver = pair
        model = solver.run(local_dataset.labeled_points)
        return model, solver.get_states_tracker()

    if initial_model is not None:

        def _warm(pair):
            prior, data_and_problem = pair
            if data_and_problem is None:
                return prior, None
            local_dataset, solver = data_and_problem
            model = solver.run(local_dataset.labeled_points, prior)
            return model, solver.get_states_tracker()

        models_and_trackers = initial_model.models_rdd.left_outer_join(data_and_problems).map_values(_warm)
    else:
        models_and_trackers = data_and_problems.map_values(_cold)

    models_and_trackers = models_and_trackers.set_name(
        f"Updated models and state trackers for random effect {dataset.random_effect_type}",
    ).persist(StorageLevel.MEMORY_ONLY)

    new_model = RandomEffectModel(
        models_and_trackers.map_values(lambda mt: mt[0]),
        dataset.random_effect_type,
        dataset.feature_shard_id,
    )

    tracker = None
    if optimization_problem.is_tracking_state:
        tracker = RandomEffectOptimizationTracker(
            models_and_trackers
            .filter(lambda kv: kv[1][1] is not None)
            .map_values(lambda mt: mt[1]),
        )
    return new_model, tracker


# ---------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------


def score_random_effect_dataset(
    dataset: RandomEffectDataset,
    model: RandomEffectModel,
) -> CoordinateDataScores:
    """Raw linear scores (no link function) for active and passive data.

    ``model`` must already be in the feature space of the dataset's points.
    The passive path gathers the models of passive entities into this
    process; it assumes few entities have passive data.
    """
    active_scores = (
        dataset.active_data
        .join(model.models_rdd)
        .flat_map(lambda kv: [
            (uid, kv[1][1].compute_score(lp.features)) for uid, lp in kv[1][0].data_points
        ])
        .partition_by(dataset.unique_id_partitioner)
    )

    passive_re_ids = dataset.passive_data_re_ids
    models_for_passive = (
        model.models_rdd
        .filter(lambda kv: kv[0] in passive_re_ids.value)
        .collect_as_map()
    )
    if len(models_for_passive) > passive_gather_warning_threshold():
        warnings.warn(
            f"Gathered {len(models_for_passive)} {dataset.random_effect_type} models for passive "
            "scoring into one process; passive data is expected to cover few entities.",
            RuntimeWarning,
            stacklevel=2,
        )
    random_effect_type = dataset.random_effect_type

    def _passive_score(pair) -> float:
        re_id, lp = pair
        if re_id not in models_for_passive:
            raise MissingEntityModelError(re_id, random_effect_type)
        return models_for_passive[re_id].compute_score(lp.features)

    passive_scores = dataset.passive_data.map_values(_passive_score)
    return CoordinateDataScores(active_scores.union(passive_scores))


# ---------------------------------------------------------------------
# Coordinate
# ---------------------------------------------------------------------


class RandomEffectCoordinate(Coordinate[RandomEffectDataset]):
    """Coordinate that trains and scores a :class:`RandomEffectModel`.

    Parameters
    ----------
    dataset : RandomEffectDataset
        The training dataset.
    optimization_problem : RandomEffectOptimizationProblem
        Per-entity solvers, co-partitioned with ``dataset.active_data``.
    """

    def __init__(
        self,
        dataset: RandomEffectDataset,
        optimization_problem: RandomEffectOptimizationProblem,
    ):
        super().__init__(dataset)
        self._optimization_problem = optimization_problem

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        dataset: RandomEffectDataset,
        configuration: RandomEffectOptimizationConfiguration,
        objective_function: GLMObjectiveFunction,
        glm_constructor: Callable[[Coefficients], GeneralizedLinearModel],
        normalization_context: NormalizationContext,
        variance_computation_type: VarianceComputationType = VarianceComputationType.NONE,
        is_tracking_state: bool = False,
    ) -> RandomEffectCoordinate:
        """Build the per-entity optimization problems and bind them to ``dataset``."""
        problem = build_random_effect_optimization_problem(
            dataset.projectors,
            configuration,
            objective_function,
            glm_constructor,
            normalization_context,
            variance_computation_type,
            is_tracking_state,
        )
        return cls(dataset, problem)

    @property
    def optimization_problem(self) -> RandomEffectOptimizationProblem:
        return self._optimization_problem

    def project_model_forward(self, model: RandomEffectModel) -> RandomEffectModel:
        return project_model_forward(model, self.dataset.projectors)

    def project_model_backward(self, model: RandomEffectModel) -> RandomEffectModel:
        return project_model_backward(model, self.dataset.projectors)

    def _require_random_effect_model(self, model: object, operation: str) -> RandomEffectModel:
        if isinstance(model, RandomEffectModel):
            return model
        raise UnsupportedModelTypeError(operation, type(model), RandomEffectModel, type(self))

    # Coordinate ------------------------------------------------------

    def update_coordinate_with_dataset(self, dataset: RandomEffectDataset) -> RandomEffectCoordinate:
        return RandomEffectCoordinate(dataset, self._optimization_problem)

    def train_model(
        self, model: DatumScoringModel | None = None,
    ) -> tuple[RandomEffectModel, RandomEffectOptimizationTracker | None]:
        """Train all entities; warm-start from ``model`` (global space) when given.

        The returned model is in the global feature space.
        """
        if model is None:
            _LOGGER.info("Training %s coordinate from scratch", self.dataset.random_effect_type)
            initial = None
        else:
            re_model = self._require_random_effect_model(model, "Updating model")
            _LOGGER.info("Training %s coordinate from a prior model", self.dataset.random_effect_type)
            initial = self.project_model_forward(re_model)
        new_model, tracker = train_random_effect_model(self.dataset, self._optimization_problem, initial)
        return self.project_model_backward(new_model), tracker

    def score(self, model: DatumScoringModel) -> CoordinateDataScores:
        """Score this coordinate's data with ``model`` (global space)."""
        re_model = self._require_random_effect_model(model, "Scoring")
        _LOGGER.info("Scoring %s coordinate", self.dataset.random_effect_type)
        return score_random_effect_dataset(self.dataset, self.project_model_forward(re_model))

    # Lifecycle: only the optimization problems are touched ----------

    def set_name(self, name: str) -> RandomEffectCoordinate:
        self._optimization_problem.set_name(name)
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> RandomEffectCoordinate:
        self._optimization_problem.persist(storage_level)
        return self

    def unpersist(self) -> RandomEffectCoordinate:
        self._optimization_problem.unpersist()
        return self

    def materialize(self) -> RandomEffectCoordinate:
        self._optimization_problem.materialize()
        return self
