"""randeff: per-entity random-effect models trained over partitioned data.

Each entity (user, item, ...) gets its own small generalized linear model,
trained in the feature subspace that entity actually observed and scored
against both its own and held-out data.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "Broadcast",
    "Coefficients",
    "CoordinateDataScores",
    "FixedEffectModel",
    "HashPartitioner",
    "LabeledPoint",
    "LinearSubspaceProjector",
    "LocalDataset",
    "MissingEntityModelError",
    "NormalizationContext",
    "NormalizationType",
    "PartitionedCollection",
    "RandomEffectCoordinate",
    "RandomEffectDataset",
    "RandomEffectModel",
    "RandomEffectOptimizationConfiguration",
    "StorageLevel",
    "TaskType",
    "UnsupportedModelTypeError",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Broadcast": ("randeff.core.partition", "Broadcast"),
    "HashPartitioner": ("randeff.core.partition", "HashPartitioner"),
    "PartitionedCollection": ("randeff.core.partition", "PartitionedCollection"),
    "StorageLevel": ("randeff.core.partition", "StorageLevel"),
    "Coefficients": ("randeff.model.coefficients", "Coefficients"),
    "FixedEffectModel": ("randeff.model.datum_scoring_model", "FixedEffectModel"),
    "RandomEffectModel": ("randeff.model.datum_scoring_model", "RandomEffectModel"),
    "TaskType": ("randeff.model.glm", "TaskType"),
    "LabeledPoint": ("randeff.data.labeled_point", "LabeledPoint"),
    "LocalDataset": ("randeff.data.local_dataset", "LocalDataset"),
    "RandomEffectDataset": ("randeff.data.random_effect_dataset", "RandomEffectDataset"),
    "CoordinateDataScores": ("randeff.data.scores", "CoordinateDataScores"),
    "LinearSubspaceProjector": ("randeff.projector", "LinearSubspaceProjector"),
    "NormalizationContext": ("randeff.normalization", "NormalizationContext"),
    "NormalizationType": ("randeff.normalization", "NormalizationType"),
    "RandomEffectOptimizationConfiguration": (
        "randeff.optimization.config", "RandomEffectOptimizationConfiguration",
    ),
    "RandomEffectCoordinate": ("randeff.algorithm.random_effect_coordinate", "RandomEffectCoordinate"),
    "MissingEntityModelError": ("randeff.errors", "MissingEntityModelError"),
    "UnsupportedModelTypeError": ("randeff.errors", "UnsupportedModelTypeError"),
}


def __getattr__(name: str) -> Any:
    """Resolve a top-level name from its home module and cache it here."""
    target = _LAZY_IMPORTS.get(name)
    if target is None:
        raise AttributeError(f"module 'randeff' has no attribute '{name}'")
    module_name, attr_name = target
    attr = getattr(import_module(module_name), attr_name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:
    """Module globals plus the names resolved on demand."""
    return sorted(set(globals()) | set(__all__))
