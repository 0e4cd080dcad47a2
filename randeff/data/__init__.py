# randeff/data/__init__.py
"""Labeled points, per-entity datasets, and coordinate scores."""
from .labeled_point import LabeledPoint
from .local_dataset import LocalDataset
from .random_effect_dataset import RandomEffectDataset
from .scores import CoordinateDataScores

__all__ = [
    "CoordinateDataScores",
    "LabeledPoint",
    "LocalDataset",
    "RandomEffectDataset",
]
