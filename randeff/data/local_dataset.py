"""The training points of a single entity."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from randeff.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from randeff.data.labeled_point import LabeledPoint
    from randeff.projector import LinearSubspaceProjector

UniqueId = Hashable

__all__ = ["LocalDataset", "UniqueId"]


@dataclass(frozen=True)
class LocalDataset:
    """Ordered ``(unique id, point)`` pairs belonging to one entity.

    The entity id is the key this dataset is stored under; it is not
    repeated here.
    """

    data_points: tuple[tuple[UniqueId, LabeledPoint], ...]

    def __post_init__(self) -> None:
        points = tuple((uid, lp) for uid, lp in self.data_points)
        seen: set[UniqueId] = set()
        for uid, _ in points:
            if uid in seen:
                raise ValueError(f"Duplicate unique id {uid!r} in local dataset.")
            seen.add(uid)
        object.__setattr__(self, "data_points", points)

    @classmethod
    def from_points(cls, points: Iterable[tuple[UniqueId, LabeledPoint]]) -> LocalDataset:
        return cls(tuple(points))

    @property
    def num_data_points(self) -> int:
        return len(self.data_points)

    @property
    def unique_ids(self) -> tuple[UniqueId, ...]:
        return tuple(uid for uid, _ in self.data_points)

    @property
    def labeled_points(self) -> tuple[LabeledPoint, ...]:
        return tuple(lp for _, lp in self.data_points)

    def observed_features(self) -> NDArray[np.int64]:
        """Sorted indices that are non-zero in at least one point."""
        if not self.data_points:
            return np.zeros(0, dtype=np.int64)
        return np.unique(
            np.concatenate([la.active_indices(lp.features) for _, lp in self.data_points]),
        ).astype(np.int64)

    def project(self, projector: LinearSubspaceProjector) -> LocalDataset:
        """Express every point's features in the projector's compressed space."""
        return LocalDataset(
            tuple(
                (uid, lp.with_features(projector.project_features(lp.features)))
                for uid, lp in self.data_points
            ),
        )

    def add_scores_to_offsets(self, scores: Mapping[UniqueId, float]) -> LocalDataset:
        """Add each point's score to its offset; points without a score are kept."""
        return LocalDataset(
            tuple(
                (uid, lp.with_offset(lp.offset + float(scores[uid])) if uid in scores else lp)
                for uid, lp in self.data_points
            ),
        )
