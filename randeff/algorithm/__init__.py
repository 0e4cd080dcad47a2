# randeff/algorithm/__init__.py
"""Coordinates of a coordinate-descent model fit."""
from .coordinate import Coordinate
from .random_effect_coordinate import (
    RandomEffectCoordinate,
    build_random_effect_optimization_problem,
    project_model_backward,
    project_model_forward,
    score_random_effect_dataset,
    train_random_effect_model,
)

__all__ = [
    "Coordinate",
    "RandomEffectCoordinate",
    "build_random_effect_optimization_problem",
    "project_model_backward",
    "project_model_forward",
    "score_random_effect_dataset",
    "train_random_effect_model",
]
