"""Partitioned key-value collections.

This module provides a small, lazily evaluated, partitioned collection of
``(key, value)`` pairs with the join/map/repartition primitives needed to
train and score per-entity models. Partitions are evaluated in parallel on a
thread pool; NumPy releases the GIL for the heavy per-entity work.
"""

# randeff/core/partition.py
from __future__ import annotations

import logging
import multiprocessing
import numbers
import operator
import os
import zlib
from collections.abc import Callable, Hashable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
W = TypeVar("W")
T = TypeVar("T")

Partition = list[tuple[Any, Any]]

__all__ = [
    "Broadcast",
    "HashPartitioner",
    "PartitionedCollection",
    "StorageLevel",
    "default_parallelism",
    "env_int",
    "num_workers",
    "portable_hash",
]


# ---------------------------------------------------------------------
# Environment knobs
# ---------------------------------------------------------------------


def env_int(name: str, default: int) -> int:
    """Positive integer from the environment, or ``default`` when unset or invalid."""
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        _LOGGER.debug("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default
    return value if value > 0 else default


@lru_cache(maxsize=1)
def num_workers() -> int:
    """Thread pool size used to evaluate partitions (``RANDEFF_NUM_WORKERS``)."""
    return env_int("RANDEFF_NUM_WORKERS", min(multiprocessing.cpu_count(), 4))


@lru_cache(maxsize=1)
def default_parallelism() -> int:
    """Default number of partitions (``RANDEFF_DEFAULT_PARALLELISM``)."""
    return env_int("RANDEFF_DEFAULT_PARALLELISM", 4)


# ---------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------


def portable_hash(key: Hashable) -> int:
    """Hash that is stable across interpreter runs.

    Python's ``hash`` of ``str`` is salted per process; partition assignment
    must not depend on it. Keys that compare equal hash equal: NumPy integers
    and integral floats hash as the matching ``int``.
    """
    if isinstance(key, numbers.Integral):
        return operator.index(key)
    if isinstance(key, numbers.Real) and float(key).is_integer():
        return int(key)
    if isinstance(key, tuple):
        h = 0x345678
        for item in key:
            h = (h * 1000003) ^ portable_hash(item)
            h &= 0xFFFFFFFFFFFF
        return h
    if isinstance(key, bytes):
        return zlib.crc32(key)
    return zlib.crc32(str(key).encode("utf-8"))


class HashPartitioner:
    """Assign keys to ``num_partitions`` buckets by :func:`portable_hash`."""

    __slots__ = ("_num_partitions",)

    def __init__(self, num_partitions: int | None = None):
        n = default_parallelism() if num_partitions is None else int(num_partitions)
        if n < 1:
            raise ValueError(f"num_partitions must be positive; got {num_partitions!r}.")
        self._num_partitions = n

    @property
    def num_partitions(self) -> int:
        return self._num_partitions

    def partition(self, key: Hashable) -> int:
        return portable_hash(key) % self._num_partitions

    def __eq__(self, other: object) -> bool:
        return isinstance(other, HashPartitioner) and other.num_partitions == self.num_partitions

    def __hash__(self) -> int:
        return hash(("HashPartitioner", self._num_partitions))

    def __repr__(self) -> str:
        return f"HashPartitioner({self._num_partitions})"


class StorageLevel(Enum):
    """Durability tier requested for a materialized collection.

    All tiers keep evaluated partitions in process memory; the tier is kept
    as a hint for the surrounding runtime and for diagnostics.
    """

    NONE = "NONE"
    MEMORY_ONLY = "MEMORY_ONLY"
    MEMORY_AND_DISK = "MEMORY_AND_DISK"
    DISK_ONLY = "DISK_ONLY"


@dataclass(frozen=True)
class Broadcast(Generic[T]):
    """Read-only value shared by every partition task."""

    value: T


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------


def _run_partitions(n: int, fn: Callable[[int], Partition]) -> list[Partition]:
    if n <= 1 or num_workers() <= 1:
        return [fn(i) for i in range(n)]
    with ThreadPoolExecutor(max_workers=min(num_workers(), n)) as ex:
        # ex.map preserves partition order and re-raises task exceptions here
        return list(ex.map(fn, range(n)))


def _bucket(partitions: Iterable[Partition], partitioner: HashPartitioner) -> list[Partition]:
    out: list[Partition] = [[] for _ in range(partitioner.num_partitions)]
    for part in partitions:
        for k, v in part:
            out[partitioner.partition(k)].append((k, v))
    return out


def _group(part: Partition) -> dict[Any, list[Any]]:
    grouped: dict[Any, list[Any]] = {}
    for k, v in part:
        grouped.setdefault(k, []).append(v)
    return grouped


def _inner(left: Partition, right: Partition) -> Partition:
    rmap = _group(right)
    return [(k, (v, w)) for k, v in left for w in rmap.get(k, ())]


def _left_outer(left: Partition, right: Partition) -> Partition:
    rmap = _group(right)
    out: Partition = []
    for k, v in left:
        matches = rmap.get(k)
        if matches:
            out.extend((k, (v, w)) for w in matches)
        else:
            out.append((k, (v, None)))
    return out


def _full_outer(left: Partition, right: Partition) -> Partition:
    out = _left_outer(left, right)
    lkeys = {k for k, _ in left}
    out.extend((k, (None, w)) for k, w in right if k not in lkeys)
    return out


class PartitionedCollection(Generic[K, V]):
    """Immutable, lazily evaluated collection of ``(key, value)`` pairs.

    A collection is a node in a transformation graph: it knows its parent
    collections and a function producing partition ``i`` from the parents'
    evaluated partitions. Nothing is computed until an action (``collect``,
    ``count``, ...) or :meth:`materialize` runs. :meth:`persist` caches the
    evaluated partitions so that downstream collections reuse them.

    Parameters
    ----------
    parents : tuple[PartitionedCollection, ...]
        Collections whose partitions feed this one.
    compute : Callable
        ``compute(i, parent_partitions)`` returning partition ``i``.
    num_partitions : int
        Number of output partitions.
    partitioner : HashPartitioner | None
        Set when keys are known to be placed by this partitioner.
    """

    def __init__(
        self,
        parents: tuple[PartitionedCollection[Any, Any], ...],
        compute: Callable[[int, tuple[list[Partition], ...]], Partition],
        num_partitions: int,
        partitioner: HashPartitioner | None = None,
        name: str | None = None,
    ):
        self._parents = parents
        self._compute = compute
        self._num_partitions = int(num_partitions)
        self._partitioner = partitioner
        self._name = name
        self._storage_level = StorageLevel.NONE
        self._cache: list[Partition] | None = None

    # -----------------------------------------------------------------
    # Construction
    # -----------------------------------------------------------------

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[tuple[K, V]],
        partitioner: HashPartitioner | None = None,
    ) -> PartitionedCollection[K, V]:
        """Place in-memory pairs into partitions by key."""
        part = partitioner if partitioner is not None else HashPartitioner()
        buckets = _bucket([list(pairs)], part)
        return cls((), lambda i, _: buckets[i], part.num_partitions, part)

    @classmethod
    def empty(cls, partitioner: HashPartitioner | None = None) -> PartitionedCollection[Any, Any]:
        return cls.from_pairs((), partitioner)

    # -----------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------

    @property
    def partitioner(self) -> HashPartitioner | None:
        return self._partitioner

    @property
    def num_partitions(self) -> int:
        return self._num_partitions

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def storage_level(self) -> StorageLevel:
        return self._storage_level

    @property
    def is_cached(self) -> bool:
        return self._cache is not None

    def __repr__(self) -> str:
        return (
            f"PartitionedCollection(name={self._name!r}, partitions={self._num_partitions}, "
            f"partitioner={self._partitioner!r}, storage={self._storage_level.value})"
        )

    # -----------------------------------------------------------------
    # Evaluation
    # -----------------------------------------------------------------

    def _evaluate(self) -> list[Partition]:
        if self._cache is not None:
            return self._cache
        parent_parts = tuple(p._evaluate() for p in self._parents)  # noqa: SLF001
        result = _run_partitions(self._num_partitions, lambda i: self._compute(i, parent_parts))
        if self._storage_level is not StorageLevel.NONE:
            self._cache = result
        return result

    def _derive(
        self,
        compute: Callable[[int, tuple[list[Partition], ...]], Partition],
        *,
        parents: tuple[PartitionedCollection[Any, Any], ...] | None = None,
        num_partitions: int | None = None,
        partitioner: HashPartitioner | None = None,
    ) -> PartitionedCollection[Any, Any]:
        return PartitionedCollection(
            (self,) if parents is None else parents,
            compute,
            self._num_partitions if num_partitions is None else num_partitions,
            partitioner,
        )

    # -----------------------------------------------------------------
    # Transformations
    # -----------------------------------------------------------------

    def map_values(self, fn: Callable[[V], W]) -> PartitionedCollection[K, W]:
        """Apply ``fn`` to every value; keys and partitioning are kept."""
        return self._derive(
            lambda i, pp: [(k, fn(v)) for k, v in pp[0][i]],
            partitioner=self._partitioner,
        )

    def filter(self, predicate: Callable[[tuple[K, V]], bool]) -> PartitionedCollection[K, V]:
        return self._derive(
            lambda i, pp: [kv for kv in pp[0][i] if predicate(kv)],
            partitioner=self._partitioner,
        )

    def flat_map(
        self, fn: Callable[[tuple[K, V]], Iterable[tuple[Any, Any]]],
    ) -> PartitionedCollection[Any, Any]:
        """Expand each pair into zero or more new pairs; partitioning is lost."""
        return self._derive(lambda i, pp: [out for kv in pp[0][i] for out in fn(kv)])

    def keys(self) -> list[K]:
        return [k for k, _ in self.collect()]

    def values(self) -> list[V]:
        return [v for _, v in self.collect()]

    def partition_by(self, partitioner: HashPartitioner) -> PartitionedCollection[K, V]:
        """Redistribute pairs by ``partitioner`` (no-op when already placed by it)."""
        if self._partitioner == partitioner:
            return self
        _LOGGER.debug("Shuffling %r into %r", self, partitioner)

        def compute(i: int, pp: tuple[list[Partition], ...]) -> Partition:
            return [(k, v) for part in pp[0] for k, v in part if partitioner.partition(k) == i]

        return self._derive(compute, num_partitions=partitioner.num_partitions, partitioner=partitioner)

    def group_by_key(self, partitioner: HashPartitioner | None = None) -> PartitionedCollection[K, list[V]]:
        part = partitioner or self._partitioner or HashPartitioner(self._num_partitions)
        placed = self.partition_by(part)
        return placed._derive(  # noqa: SLF001
            lambda i, pp: list(_group(pp[0][i]).items()),
            partitioner=part,
        )

    def _co_partitioned(
        self, other: PartitionedCollection[Any, Any],
    ) -> tuple[PartitionedCollection[Any, Any], PartitionedCollection[Any, Any], HashPartitioner]:
        if self._partitioner is not None and self._partitioner == other.partitioner:
            return self, other, self._partitioner
        part = self._partitioner or other.partitioner or HashPartitioner(
            max(self._num_partitions, other.num_partitions),
        )
        _LOGGER.debug("Join inputs are not co-partitioned; shuffling to %r", part)
        return self.partition_by(part), other.partition_by(part), part

    def _join_with(
        self,
        other: PartitionedCollection[Any, Any],
        how: Callable[[Partition, Partition], Partition],
    ) -> PartitionedCollection[Any, Any]:
        left, right, part = self._co_partitioned(other)
        return PartitionedCollection(
            (left, right),
            lambda i, pp: how(pp[0][i], pp[1][i]),
            part.num_partitions,
            part,
        )

    def join(self, other: PartitionedCollection[K, W]) -> PartitionedCollection[K, tuple[V, W]]:
        """Inner join by key."""
        return self._join_with(other, _inner)

    def left_outer_join(
        self, other: PartitionedCollection[K, W],
    ) -> PartitionedCollection[K, tuple[V, W | None]]:
        """Left outer join by key; unmatched left values pair with ``None``."""
        return self._join_with(other, _left_outer)

    def full_outer_join(
        self, other: PartitionedCollection[K, W],
    ) -> PartitionedCollection[K, tuple[V | None, W | None]]:
        return self._join_with(other, _full_outer)

    def union(self, other: PartitionedCollection[K, V]) -> PartitionedCollection[K, V]:
        """Concatenate two collections without deduplication."""
        if self._partitioner is not None and self._partitioner == other.partitioner:
            return PartitionedCollection(
                (self, other),
                lambda i, pp: pp[0][i] + pp[1][i],
                self._num_partitions,
                self._partitioner,
            )
        n_left = self._num_partitions

        def compute(i: int, pp: tuple[list[Partition], ...]) -> Partition:
            return list(pp[0][i]) if i < n_left else list(pp[1][i - n_left])

        return PartitionedCollection(
            (self, other), compute, n_left + other.num_partitions, None,
        )

    # -----------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------

    def collect(self) -> list[tuple[K, V]]:
        return [kv for part in self._evaluate() for kv in part]

    def collect_as_map(self) -> dict[K, V]:
        return dict(self.collect())

    def count(self) -> int:
        return sum(len(part) for part in self._evaluate())

    def __iter__(self) -> Iterator[tuple[K, V]]:
        return iter(self.collect())

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def set_name(self, name: str) -> PartitionedCollection[K, V]:
        self._name = str(name)
        return self

    def persist(self, storage_level: StorageLevel = StorageLevel.MEMORY_ONLY) -> PartitionedCollection[K, V]:
        """Keep evaluated partitions once computed. Idempotent."""
        if storage_level is StorageLevel.NONE:
            return self.unpersist()
        if self._storage_level is not storage_level:
            _LOGGER.debug("Persisting %s at %s", self._name or "<unnamed>", storage_level.value)
        self._storage_level = storage_level
        return self

    def unpersist(self) -> PartitionedCollection[K, V]:
        self._storage_level = StorageLevel.NONE
        self._cache = None
        return self

    def materialize(self) -> PartitionedCollection[K, V]:
        """Force evaluation (kept only when persisted)."""
        self._evaluate()
        return self
