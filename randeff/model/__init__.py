# randeff/model/__init__.py
"""Coefficients, generalized linear models, and coordinate models."""
from .coefficients import Coefficients
from .datum_scoring_model import DatumScoringModel, FixedEffectModel, RandomEffectModel
from .glm import (
    GeneralizedLinearModel,
    LinearRegressionModel,
    LogisticRegressionModel,
    PoissonRegressionModel,
    TaskType,
    glm_constructor_for,
)

__all__ = [
    "Coefficients",
    "DatumScoringModel",
    "FixedEffectModel",
    "GeneralizedLinearModel",
    "LinearRegressionModel",
    "LogisticRegressionModel",
    "PoissonRegressionModel",
    "RandomEffectModel",
    "TaskType",
    "glm_constructor_for",
]
