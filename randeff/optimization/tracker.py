"""Optimizer state tracking.

A states tracker records one entity's optimizer trajectory. The random-effect
tracker aggregates the trackers of every entity trained in one coordinate
update and summarizes them.
"""

# randeff/optimization/tracker.py
from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd
from tabulate import tabulate

from randeff.core.partition import PartitionedCollection

__all__ = [
    "ConvergenceReason",
    "OptimizationStatesTracker",
    "OptimizerState",
    "RandomEffectOptimizationTracker",
]


class ConvergenceReason(Enum):
    FUNCTION_VALUES_CONVERGED = "FUNCTION_VALUES_CONVERGED"
    GRADIENT_CONVERGED = "GRADIENT_CONVERGED"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    DID_NOT_CONVERGE = "DID_NOT_CONVERGE"


@dataclass(frozen=True)
class OptimizerState:
    iteration: int
    value: float
    gradient_norm: float


@dataclass(frozen=True)
class OptimizationStatesTracker:
    """Trajectory of one optimizer run."""

    states: tuple[OptimizerState, ...]
    convergence_reason: ConvergenceReason
    elapsed_seconds: float = 0.0

    @property
    def num_iterations(self) -> int:
        return max((s.iteration for s in self.states), default=0)

    @property
    def final_state(self) -> OptimizerState | None:
        return self.states[-1] if self.states else None


class RandomEffectOptimizationTracker:
    """Entity id -> :class:`OptimizationStatesTracker` for one coordinate update."""

    __slots__ = ("_trackers",)

    def __init__(self, trackers: PartitionedCollection[Hashable, OptimizationStatesTracker]):
        self._trackers = trackers

    @property
    def trackers_rdd(self) -> PartitionedCollection[Hashable, OptimizationStatesTracker]:
        return self._trackers

    def entity_ids(self) -> set[Hashable]:
        return set(self._trackers.keys())

    def count(self) -> int:
        return self._trackers.count()

    def to_frame(self) -> pd.DataFrame:
        """One row per entity: iterations, final value, reason, elapsed time."""
        rows = []
        for re_id, tracker in self._trackers.collect():
            final = tracker.final_state
            rows.append({
                "entity": re_id,
                "iterations": tracker.num_iterations,
                "final_value": np.nan if final is None else final.value,
                "convergence_reason": tracker.convergence_reason.value,
                "elapsed_seconds": tracker.elapsed_seconds,
            })
        return pd.DataFrame(
            rows,
            columns=["entity", "iterations", "final_value", "convergence_reason", "elapsed_seconds"],
        )

    def convergence_reason_counts(self) -> dict[str, int]:
        frame = self.to_frame()
        return {str(k): int(v) for k, v in frame["convergence_reason"].value_counts().items()}

    def iteration_summary(self) -> pd.Series:
        """``describe()`` of the per-entity iteration counts."""
        return self.to_frame()["iterations"].astype("float64").describe()

    def to_summary_string(self, tablefmt: str = "simple") -> str:
        summary = self.iteration_summary()
        rows = [[str(k), f"{v:.4g}"] for k, v in summary.items()]
        reasons = [[k, v] for k, v in sorted(self.convergence_reason_counts().items())]
        parts = [
            "Iterations",
            tabulate(rows, headers=["stat", "value"], tablefmt=tablefmt),
            "",
            "Convergence reasons",
            tabulate(reasons, headers=["reason", "entities"], tablefmt=tablefmt),
        ]
        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"RandomEffectOptimizationTracker({self._trackers!r})"
