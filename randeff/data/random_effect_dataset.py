"""Partitioned per-entity training and scoring data.

A random-effect dataset splits the data of one random-effect type into

* active data: entity id -> :class:`LocalDataset`, in each entity's
  compressed feature space, partitioned by entity id;
* passive data: datum id -> (entity id, point), partitioned by datum id like
  the scores of every other coordinate; used for scoring only;
* projectors: entity id -> :class:`LinearSubspaceProjector`, partitioned
  exactly like the active data.

Which entities are active is decided upstream; :meth:`RandomEffectDataset.build`
only lays out an already decided split.
"""

# randeff/data/random_effect_dataset.py
from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Mapping
from typing import TYPE_CHECKING

from randeff.core.partition import Broadcast, HashPartitioner, PartitionedCollection, StorageLevel
from randeff.data.local_dataset import LocalDataset, UniqueId
from randeff.projector import LinearSubspaceProjector

if TYPE_CHECKING:
    from randeff.data.labeled_point import LabeledPoint
    from randeff.data.scores import CoordinateDataScores

REId = Hashable

_LOGGER = logging.getLogger(__name__)

__all__ = ["RandomEffectDataset"]


class RandomEffectDataset:
    """Active data, passive data, and projectors of one random-effect type.

    Parameters
    ----------
    active_data : PartitionedCollection
        Entity id -> :class:`LocalDataset` (compressed space).
    passive_data : PartitionedCollection
        Datum id -> ``(entity id, LabeledPoint)``.
    passive_data_re_ids : Broadcast[frozenset]
        Entity ids occurring in ``passive_data``.
    projectors : PartitionedCollection
        Entity id -> :class:`LinearSubspaceProjector`; same partitioner as
        ``active_data``.
    random_effect_type : str
        Entity kind, e.g. ``"userId"``.
    feature_shard_id : str
        Feature shard the points are drawn from.
    unique_id_partitioner : HashPartitioner
        Datum partitioner shared with every coordinate's scores.
    """

    def __init__(  # noqa: PLR0913
        self,
        active_data: PartitionedCollection[REId, LocalDataset],
        passive_data: PartitionedCollection[UniqueId, tuple[REId, LabeledPoint]],
        passive_data_re_ids: Broadcast[frozenset[REId]],
        projectors: PartitionedCollection[REId, LinearSubspaceProjector],
        random_effect_type: str,
        feature_shard_id: str,
        unique_id_partitioner: HashPartitioner,
    ):
        if active_data.partitioner is None or active_data.partitioner != projectors.partitioner:
            _LOGGER.debug(
                "Active data (%r) and projectors (%r) are not co-partitioned; joins will shuffle.",
                active_data.partitioner,
                projectors.partitioner,
            )
        self.active_data = active_data
        self.passive_data = passive_data
        self.passive_data_re_ids = passive_data_re_ids
        self.projectors = projectors
        self.random_effect_type = str(random_effect_type)
        self.feature_shard_id = str(feature_shard_id)
        self.unique_id_partitioner = unique_id_partitioner

    @property
    def partitioner(self) -> HashPartitioner | None:
        """Entity partitioner shared by active data and projectors."""
        return self.active_data.partitioner

    # -----------------------------------------------------------------
    # Construction
    # -----------------------------------------------------------------

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        active: Mapping[REId, LocalDataset],
        passive: Mapping[UniqueId, tuple[REId, LabeledPoint]] | Iterable[tuple[UniqueId, tuple[REId, LabeledPoint]]],
        random_effect_type: str,
        feature_shard_id: str,
        original_dimension: int,
        *,
        partitioner: HashPartitioner | None = None,
        unique_id_partitioner: HashPartitioner | None = None,
        intercept_index: int | None = None,
    ) -> RandomEffectDataset:
        """Lay out an already decided active/passive split.

        Active points are given in the global feature space and are projected
        into a projector built from each entity's observed features (plus the
        intercept, when given). Passive points of an entity that also has a
        projector are projected the same way; the others stay global.

        Raises
        ------
        ValueError
            If an active entity has no points, or a datum id occurs twice.
        """
        entity_part = partitioner if partitioner is not None else HashPartitioner()
        datum_part = unique_id_partitioner if unique_id_partitioner is not None else HashPartitioner()
        forced = () if intercept_index is None else (int(intercept_index),)

        seen: set[UniqueId] = set()
        projectors: dict[REId, LinearSubspaceProjector] = {}
        projected_active: dict[REId, LocalDataset] = {}
        for re_id, local in active.items():
            if local.num_data_points == 0:
                raise ValueError(f"Active entity {re_id!r} has no data points.")
            for uid in local.unique_ids:
                if uid in seen:
                    raise ValueError(f"Datum id {uid!r} occurs more than once.")
                seen.add(uid)
            projector = LinearSubspaceProjector.from_vectors(
                (lp.features for lp in local.labeled_points),
                original_dimension,
                forced_indices=forced,
            )
            projectors[re_id] = projector
            projected_active[re_id] = local.project(projector)

        passive_items = passive.items() if isinstance(passive, Mapping) else passive
        passive_pairs: list[tuple[UniqueId, tuple[REId, LabeledPoint]]] = []
        for uid, (re_id, lp) in passive_items:
            if uid in seen:
                raise ValueError(f"Datum id {uid!r} occurs more than once.")
            seen.add(uid)
            projector = projectors.get(re_id)
            if projector is not None:
                lp = lp.with_features(projector.project_features(lp.features))
            passive_pairs.append((uid, (re_id, lp)))

        _LOGGER.debug(
            "Built %s dataset: %d active entities, %d passive points",
            random_effect_type,
            len(projected_active),
            len(passive_pairs),
        )
        return cls(
            PartitionedCollection.from_pairs(projected_active.items(), entity_part),
            PartitionedCollection.from_pairs(passive_pairs, datum_part),
            Broadcast(frozenset(re_id for _, (re_id, _lp) in passive_pairs)),
            PartitionedCollection.from_pairs(projectors.items(), entity_part),
            random_effect_type,
            feature_shard_id,
            datum_part,
        )

    # -----------------------------------------------------------------
    # Updates
    # -----------------------------------------------------------------

    def _with(
        self,
        active_data: PartitionedCollection[REId, LocalDataset],
        passive_data: PartitionedCollection[UniqueId, tuple[REId, LabeledPoint]],
    ) -> RandomEffectDataset:
        return RandomEffectDataset(
            active_data,
            passive_data,
            self.passive_data_re_ids,
            self.projectors,
            self.random_effect_type,
            self.feature_shard_id,
            self.unique_id_partitioner,
        )

    def add_scores_to_offsets(self, scores: CoordinateDataScores) -> RandomEffectDataset:
        """Dataset whose offsets include ``scores`` (e.g. other coordinates' residuals).

        Datums without a score keep their offset.
        """
        scores_rdd = scores.scores_rdd
        uid_to_re_id = self.active_data.flat_map(
            lambda kv: [(uid, kv[0]) for uid in kv[1].unique_ids],
        )
        scores_by_re_id = (
            uid_to_re_id
            .join(scores_rdd)
            .flat_map(lambda kv: [(kv[1][0], (kv[0], kv[1][1]))])
            .group_by_key(self.partitioner)
        )
        active = self.active_data.left_outer_join(scores_by_re_id).map_values(
            lambda pair: pair[0] if pair[1] is None else pair[0].add_scores_to_offsets(dict(pair[1])),
        )

        def _shift(pair: tuple[tuple[REId, LabeledPoint], float | None]) -> tuple[REId, LabeledPoint]:
            (re_id, lp), score = pair
            if score is None:
                return re_id, lp
            return re_id, lp.with_offset(lp.offset + float(score))

        passive = self.passive_data.left_outer_join(scores_rdd).map_values(_shift)
        return self._with(active, passive)

    def __repr__(self) -> str:
        return (
            f"RandomEffectDataset(random_effect_type={self.random_effect_type!r}, "
            f"feature_shard_id={self.feature_shard_id!r}, partitioner={self.partitioner!r})"
        )

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def set_name(self, name: str) -> RandomEffectDataset:
        self.active_data.set_name(f"{name}: active data")
        self.passive_data.set_name(f"{name}: passive data")
        self.projectors.set_name(f"{name}: projectors")
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> RandomEffectDataset:
        self.active_data.persist(storage_level)
        self.passive_data.persist(storage_level)
        self.projectors.persist(storage_level)
        return self

    def unpersist(self) -> RandomEffectDataset:
        self.active_data.unpersist()
        self.passive_data.unpersist()
        self.projectors.unpersist()
        return self

    def materialize(self) -> RandomEffectDataset:
        self.active_data.materialize()
        self.passive_data.materialize()
        self.projectors.materialize()
        return self
