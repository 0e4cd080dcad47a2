"""Per-datum scores produced by one coordinate."""

from __future__ import annotations

from collections.abc import Hashable, Mapping

import pandas as pd

from randeff.core.partition import HashPartitioner, PartitionedCollection, StorageLevel

__all__ = ["CoordinateDataScores"]


class CoordinateDataScores:
    """Datum id -> score, partitioned by datum id.

    Scores of different coordinates combine with ``+`` and ``-``; a datum
    missing on one side counts as zero there.
    """

    __slots__ = ("_scores",)

    def __init__(self, scores: PartitionedCollection[Hashable, float]):
        self._scores = scores

    @classmethod
    def from_mapping(
        cls, scores: Mapping[Hashable, float], partitioner: HashPartitioner | None = None,
    ) -> CoordinateDataScores:
        return cls(PartitionedCollection.from_pairs(
            ((uid, float(s)) for uid, s in scores.items()), partitioner,
        ))

    @property
    def scores_rdd(self) -> PartitionedCollection[Hashable, float]:
        return self._scores

    def _combine(self, other: CoordinateDataScores, sign: float) -> CoordinateDataScores:
        joined = self._scores.full_outer_join(other.scores_rdd)
        return CoordinateDataScores(
            joined.map_values(lambda ab: (ab[0] or 0.0) + sign * (ab[1] or 0.0)),
        )

    def __add__(self, other: CoordinateDataScores) -> CoordinateDataScores:
        return self._combine(other, 1.0)

    def __sub__(self, other: CoordinateDataScores) -> CoordinateDataScores:
        return self._combine(other, -1.0)

    def count(self) -> int:
        return self._scores.count()

    def to_dict(self) -> dict[Hashable, float]:
        return self._scores.collect_as_map()

    def to_series(self) -> pd.Series:
        """Scores as a ``pandas.Series`` indexed by datum id (sorted)."""
        items = self._scores.collect()
        series = pd.Series(
            [s for _, s in items],
            index=[uid for uid, _ in items],
            dtype="float64",
            name="score",
        )
        try:
            return series.sort_index()
        except TypeError:
            # mixed, unorderable ids
            return series

    def __repr__(self) -> str:
        return f"CoordinateDataScores({self._scores!r})"

    # Lifecycle -------------------------------------------------------

    def set_name(self, name: str) -> CoordinateDataScores:
        self._scores.set_name(name)
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> CoordinateDataScores:
        self._scores.persist(storage_level)
        return self

    def unpersist(self) -> CoordinateDataScores:
        self._scores.unpersist()
        return self

    def materialize(self) -> CoordinateDataScores:
        self._scores.materialize()
        return self
