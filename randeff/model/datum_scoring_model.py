"""Models that score data for one coordinate.

``DatumScoringModel`` is the closed set of model kinds exchanged between
coordinates: a single shared model (fixed effect) or a collection of
per-entity models (random effect). Coordinates check the kind they receive
and reject every other kind.
"""

# randeff/model/datum_scoring_model.py
from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from randeff.core.partition import Broadcast, HashPartitioner, PartitionedCollection, StorageLevel

if TYPE_CHECKING:
    from randeff.model.glm import GeneralizedLinearModel

REId = Hashable

__all__ = [
    "DatumScoringModel",
    "FixedEffectModel",
    "REId",
    "RandomEffectModel",
]


@dataclass(frozen=True)
class FixedEffectModel:
    """One model shared by every datum of a feature shard."""

    model: Broadcast[GeneralizedLinearModel]
    feature_shard_id: str

    @property
    def glm(self) -> GeneralizedLinearModel:
        return self.model.value


class RandomEffectModel:
    """Per-entity models of one random-effect type.

    Immutable: :meth:`update` returns a new instance carrying the same
    random-effect type and feature shard.

    Parameters
    ----------
    models_rdd : PartitionedCollection
        Entity id -> :class:`GeneralizedLinearModel`.
    random_effect_type : str
        Name of the entity kind (e.g. ``"userId"``).
    feature_shard_id : str
        Feature shard the coefficients are expressed in.
    """

    __slots__ = ("_models", "_random_effect_type", "_feature_shard_id")

    def __init__(
        self,
        models_rdd: PartitionedCollection[REId, GeneralizedLinearModel],
        random_effect_type: str,
        feature_shard_id: str,
    ):
        self._models = models_rdd
        self._random_effect_type = str(random_effect_type)
        self._feature_shard_id = str(feature_shard_id)

    @classmethod
    def from_models(
        cls,
        models: Mapping[REId, GeneralizedLinearModel],
        random_effect_type: str,
        feature_shard_id: str,
        partitioner: HashPartitioner | None = None,
    ) -> RandomEffectModel:
        return cls(
            PartitionedCollection.from_pairs(models.items(), partitioner),
            random_effect_type,
            feature_shard_id,
        )

    @property
    def models_rdd(self) -> PartitionedCollection[REId, GeneralizedLinearModel]:
        return self._models

    @property
    def random_effect_type(self) -> str:
        return self._random_effect_type

    @property
    def feature_shard_id(self) -> str:
        return self._feature_shard_id

    def update(
        self, updated_models: PartitionedCollection[REId, GeneralizedLinearModel],
    ) -> RandomEffectModel:
        """New model over ``updated_models`` with this model's tags."""
        return RandomEffectModel(updated_models, self._random_effect_type, self._feature_shard_id)

    def to_dict(self) -> dict[REId, GeneralizedLinearModel]:
        return self._models.collect_as_map()

    def __repr__(self) -> str:
        return (
            f"RandomEffectModel(random_effect_type={self._random_effect_type!r}, "
            f"feature_shard_id={self._feature_shard_id!r})"
        )

    # Lifecycle -------------------------------------------------------

    def set_name(self, name: str) -> RandomEffectModel:
        self._models.set_name(name)
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> RandomEffectModel:
        self._models.persist(storage_level)
        return self

    def unpersist(self) -> RandomEffectModel:
        self._models.unpersist()
        return self

    def materialize(self) -> RandomEffectModel:
        self._models.materialize()
        return self


DatumScoringModel = Union[FixedEffectModel, RandomEffectModel]
