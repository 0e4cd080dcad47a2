from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
import scipy.sparse as sp


def pytest_configure() -> None:
    """Ensure the repository root is on sys.path.

    Tests live inside the package, so pytest may pick `randeff/tests` as the
    import root. Importing `randeff` then fails unless the directory holding
    the package is on `sys.path`.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


# Global feature space of the toy dataset; column 0 is the intercept
DIM = 5


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def tron_config():
    from randeff.optimization.config import (
        OptimizerConfig,
        OptimizerType,
        RandomEffectOptimizationConfiguration,
        RegularizationType,
    )

    return RandomEffectOptimizationConfiguration(
        OptimizerConfig(OptimizerType.TRON, maximum_iterations=200, tolerance=1e-10),
        RegularizationType.L2,
        0.1,
    )


@pytest.fixture
def toy_active():
    """E1 has three points on features {0, 1, 2}; E3 one sparse point on {0, 3}."""
    from randeff.data.labeled_point import LabeledPoint
    from randeff.data.local_dataset import LocalDataset

    return {
        "E1": LocalDataset.from_points([
            ("u1", LabeledPoint(2.0, [1.0, 1.0, 0.0, 0.0, 0.0])),
            ("u2", LabeledPoint(-1.0, [1.0, 0.0, 2.0, 0.0, 0.0])),
            ("u3", LabeledPoint(0.5, [1.0, 1.0, 1.0, 0.0, 0.0], offset=0.25)),
        ]),
        "E3": LocalDataset.from_points([
            ("u4", LabeledPoint(1.0, sp.csr_matrix(np.array([[1.0, 0.0, 0.0, 3.0, 0.0]])))),
        ]),
    }


@pytest.fixture
def toy_passive():
    """u5 belongs to active entity E1; u6 to E2, which has no active data."""
    from randeff.data.labeled_point import LabeledPoint

    return {
        "u5": ("E1", LabeledPoint(0.0, [1.0, 2.0, 0.0, 0.0, 1.0])),
        "u6": ("E2", LabeledPoint(0.0, [1.0, 0.0, 0.0, 0.0, 4.0])),
    }


@pytest.fixture
def toy_dataset(toy_active, toy_passive):
    from randeff.core.partition import HashPartitioner
    from randeff.data.random_effect_dataset import RandomEffectDataset

    return RandomEffectDataset.build(
        toy_active,
        toy_passive,
        "userId",
        "shard",
        DIM,
        partitioner=HashPartitioner(3),
        unique_id_partitioner=HashPartitioner(2),
        intercept_index=0,
    )


@pytest.fixture
def make_coordinate(tron_config):
    """Factory for a linear-regression coordinate over a dataset."""
    from randeff.algorithm.random_effect_coordinate import RandomEffectCoordinate
    from randeff.model.glm import TaskType, glm_constructor_for
    from randeff.normalization import NormalizationContext
    from randeff.optimization.config import VarianceComputationType
    from randeff.optimization.function import GLMObjectiveFunction

    def _make(
        dataset,
        *,
        configuration=None,
        normalization_context=None,
        variance_computation_type=VarianceComputationType.NONE,
        is_tracking_state=True,
    ):
        configuration = tron_config if configuration is None else configuration
        return RandomEffectCoordinate.create(
            dataset,
            configuration,
            GLMObjectiveFunction.for_task(TaskType.LINEAR_REGRESSION, configuration),
            glm_constructor_for(TaskType.LINEAR_REGRESSION),
            NormalizationContext.identity() if normalization_context is None else normalization_context,
            variance_computation_type,
            is_tracking_state,
        )

    return _make
