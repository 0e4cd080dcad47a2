import numpy as np
import pytest
import scipy.sparse as sp
from scipy.special import expit

from randeff.core.partition import Broadcast, HashPartitioner, StorageLevel
from randeff.model import (
    Coefficients,
    FixedEffectModel,
    LinearRegressionModel,
    LogisticRegressionModel,
    PoissonRegressionModel,
    RandomEffectModel,
    TaskType,
    glm_constructor_for,
)

# ---------------------------------------------------------------------
# Coefficients
# ---------------------------------------------------------------------


def test_coefficients_are_read_only_copies():
    raw = np.array([1.0, 2.0])
    c = Coefficients(raw)
    raw[0] = 99.0
    assert c.means[0] == 1.0
    with pytest.raises(ValueError):
        c.means[0] = 5.0
    assert c.length == 2
    assert c.variances is None


def test_coefficients_validation_and_equality():
    with pytest.raises(ValueError, match="does not match"):
        Coefficients(np.ones(2), np.ones(3))
    with pytest.raises(ValueError, match="1-D"):
        Coefficients(np.ones((2, 2)))
    assert Coefficients([1.0, 2.0]) == Coefficients(np.array([1.0, 2.0]))
    assert Coefficients([1.0, 2.0]) != Coefficients([1.0, 2.0], [0.1, 0.1])
    assert Coefficients.zeros(3) == Coefficients([0.0, 0.0, 0.0])


# ---------------------------------------------------------------------
# Generalized linear models
# ---------------------------------------------------------------------


def test_raw_score_has_no_link():
    # w = [2, -1], x = [3, 4] -> 2*3 - 1*4 = 2
    for cls in (LinearRegressionModel, LogisticRegressionModel, PoissonRegressionModel):
        model = cls(Coefficients([2.0, -1.0]))
        assert model.compute_score(np.array([3.0, 4.0])) == pytest.approx(2.0)
        assert model.compute_score(sp.csr_matrix([[3.0, 4.0]])) == pytest.approx(2.0)


def test_compute_mean_applies_inverse_link():
    x = np.array([1.0, 0.5])
    c = Coefficients([0.3, -0.2])
    assert LinearRegressionModel(c).compute_mean(x, offset=1.0) == pytest.approx(1.2)
    assert LogisticRegressionModel(c).compute_mean(x) == pytest.approx(expit(0.2))
    assert PoissonRegressionModel(c).compute_mean(x) == pytest.approx(np.exp(0.2))


def test_update_coefficients_keeps_family():
    model = LogisticRegressionModel(Coefficients([1.0]))
    updated = model.update_coefficients(Coefficients([2.0]))
    assert isinstance(updated, LogisticRegressionModel)
    assert updated.coefficients == Coefficients([2.0])
    assert model.coefficients == Coefficients([1.0])


def test_glm_constructor_for():
    assert glm_constructor_for(TaskType.POISSON_REGRESSION) is PoissonRegressionModel
    built = glm_constructor_for(TaskType.LINEAR_REGRESSION)(Coefficients([1.0]))
    assert built.task_type is TaskType.LINEAR_REGRESSION
    with pytest.raises(ValueError, match="Unsupported task type"):
        glm_constructor_for("RANKING")


# ---------------------------------------------------------------------
# Coordinate models
# ---------------------------------------------------------------------


def test_fixed_effect_model_wraps_broadcast():
    glm = LinearRegressionModel(Coefficients([1.0, 2.0]))
    fe = FixedEffectModel(Broadcast(glm), "global")
    assert fe.glm is glm
    assert fe.feature_shard_id == "global"


def test_random_effect_model_update_keeps_tags():
    models = {
        "a": LinearRegressionModel(Coefficients([1.0])),
        "b": LinearRegressionModel(Coefficients([2.0])),
    }
    re_model = RandomEffectModel.from_models(models, "userId", "shard", HashPartitioner(2))
    assert re_model.models_rdd.partitioner == HashPartitioner(2)

    doubled = re_model.update(
        re_model.models_rdd.map_values(lambda m: m.update_coefficients(Coefficients(2 * m.coefficients.means))),
    )
    assert doubled.random_effect_type == "userId"
    assert doubled.feature_shard_id == "shard"
    assert doubled.to_dict()["b"].coefficients == Coefficients([4.0])
    assert re_model.to_dict()["b"].coefficients == Coefficients([2.0])


def test_random_effect_model_lifecycle():
    re_model = RandomEffectModel.from_models(
        {"a": LinearRegressionModel(Coefficients([1.0]))}, "itemId", "shard",
    )
    assert re_model.set_name("item models") is re_model
    assert re_model.models_rdd.name == "item models"
    assert re_model.persist(StorageLevel.MEMORY_ONLY).materialize() is re_model
    assert re_model.models_rdd.is_cached
    assert re_model.unpersist() is re_model
    assert not re_model.models_rdd.is_cached
