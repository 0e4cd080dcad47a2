import numpy as np
import pytest

from randeff.model.coefficients import Coefficients
from randeff.normalization import FeatureSummary, NormalizationContext, NormalizationType


@pytest.fixture
def design(rng):
    X = rng.standard_normal((50, 4)) * np.array([1.0, 3.0, 0.5, 10.0]) + np.array([0.0, 2.0, -1.0, 5.0])
    X[:, 0] = 1.0  # intercept
    return X


# ---------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------


def test_identity():
    ctx = NormalizationContext.identity()
    assert ctx.is_identity
    assert ctx.size is None
    c = Coefficients(np.array([1.0, 2.0]))
    assert ctx.model_to_original_space(c) is c
    X = np.ones((2, 2))
    assert np.array_equal(ctx.transform_matrix(X), X)


def test_none_type_builds_identity(design):
    ctx = NormalizationContext.build(NormalizationType.NONE, FeatureSummary.from_matrix(design))
    assert ctx.is_identity


def test_standardization_centers_and_scales(design):
    ctx = NormalizationContext.build(
        NormalizationType.STANDARDIZATION, FeatureSummary.from_matrix(design), intercept_index=0,
    )
    Xt = ctx.transform_matrix(design)
    assert np.allclose(Xt[:, 0], 1.0)
    assert np.allclose(Xt[:, 1:].mean(axis=0), 0.0)
    assert np.allclose(Xt[:, 1:].std(axis=0, ddof=1), 1.0)


def test_max_magnitude_scaling(design):
    ctx = NormalizationContext.build(
        NormalizationType.SCALE_WITH_MAX_MAGNITUDE, FeatureSummary.from_matrix(design), intercept_index=0,
    )
    assert ctx.shifts_and_intercept is None
    assert np.allclose(np.abs(ctx.transform_matrix(design)).max(axis=0), 1.0)


def test_constant_column_keeps_unit_factor():
    X = np.column_stack([np.ones(5), np.full(5, 3.0), np.arange(5.0)])
    ctx = NormalizationContext.build(
        NormalizationType.SCALE_WITH_STANDARD_DEVIATION, FeatureSummary.from_matrix(X),
    )
    assert ctx.factors[0] == 1.0
    assert ctx.factors[1] == 1.0


def test_validation_errors():
    with pytest.raises(ValueError, match="non-zero"):
        NormalizationContext(factors=np.array([1.0, 0.0]))
    with pytest.raises(ValueError, match="must not be shifted"):
        NormalizationContext(shifts_and_intercept=(np.array([1.0, 2.0]), 0))
    with pytest.raises(ValueError, match="outside"):
        NormalizationContext(shifts_and_intercept=(np.array([0.0, 2.0]), 5))
    with pytest.raises(ValueError, match="same length"):
        NormalizationContext(factors=np.ones(3), shifts_and_intercept=(np.zeros(2), 0))
    X = np.ones((3, 2))
    with pytest.raises(ValueError, match="intercept"):
        NormalizationContext.build(NormalizationType.STANDARDIZATION, FeatureSummary.from_matrix(X))


# ---------------------------------------------------------------------
# Coefficient space conversions
# ---------------------------------------------------------------------


def test_original_space_model_scores_raw_features(design, rng):
    ctx = NormalizationContext.build(
        NormalizationType.STANDARDIZATION, FeatureSummary.from_matrix(design), intercept_index=0,
    )
    w_t = rng.standard_normal(4)
    w = ctx.model_to_original_space(Coefficients(w_t)).means
    assert np.allclose(ctx.transform_matrix(design) @ w_t, design @ w)


def test_space_conversions_are_inverse(design, rng):
    ctx = NormalizationContext.build(
        NormalizationType.STANDARDIZATION, FeatureSummary.from_matrix(design), intercept_index=0,
    )
    c = Coefficients(rng.standard_normal(4), rng.uniform(0.1, 1.0, 4))
    back = ctx.model_to_original_space(ctx.model_to_transformed_space(c))
    assert np.allclose(back.means, c.means)
    assert np.allclose(back.variances, c.variances)


def test_dimension_mismatch():
    ctx = NormalizationContext(factors=np.ones(3))
    with pytest.raises(ValueError, match="size 3"):
        ctx.model_to_original_space(Coefficients(np.ones(2)))
    with pytest.raises(ValueError, match="size 3"):
        ctx.transform_matrix(np.ones((4, 2)))
