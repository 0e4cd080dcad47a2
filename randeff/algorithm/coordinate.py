"""Base class for one block of a coordinate-descent model fit."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from randeff.data.scores import CoordinateDataScores
    from randeff.model.datum_scoring_model import DatumScoringModel

D = TypeVar("D")

__all__ = ["Coordinate"]


class Coordinate(ABC, Generic[D]):
    """A dataset plus the means to train and score a model on it.

    Coordinates are immutable; :meth:`update_coordinate_with_dataset`
    returns a new coordinate.
    """

    def __init__(self, dataset: D):
        self._dataset = dataset

    @property
    def dataset(self) -> D:
        return self._dataset

    @abstractmethod
    def update_coordinate_with_dataset(self, dataset: D) -> Coordinate[D]:
        """Same optimization setup bound to a new dataset."""

    @abstractmethod
    def train_model(self, model: DatumScoringModel | None = None):
        """Return ``(model, tracker or None)``; warm-start from ``model`` when given."""

    @abstractmethod
    def score(self, model: DatumScoringModel) -> CoordinateDataScores:
        """Score this coordinate's data with ``model``."""
