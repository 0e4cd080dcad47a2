"""Vector helpers shared by projection, scoring, and optimization.

Feature vectors are either 1-D NumPy arrays or single-row SciPy sparse
matrices. Coefficient vectors are always dense ``float64`` arrays.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Union

import numpy as np
import scipy.sparse as sp

if TYPE_CHECKING:
    from numpy.typing import NDArray
else:
    NDArray = np.ndarray  # type: ignore[misc,assignment]

# Dense 1-D array or a (1, n) sparse row
Vector = Union[NDArray[np.float64], Any]

__all__ = [
    "Vector",
    "active_indices",
    "as_dense",
    "dot",
    "gather",
    "is_sparse",
    "scatter",
    "to_dense_matrix",
    "vector_length",
]


def is_sparse(x: Any) -> bool:
    return bool(sp.issparse(x))


def _sparse_row(x: Any) -> sp.csr_matrix:
    """Return ``x`` as a canonical (1, n) CSR row with duplicates summed."""
    row = sp.csr_matrix(x, dtype=np.float64, copy=True)
    if row.shape[0] != 1:
        if row.shape[1] == 1:
            row = sp.csr_matrix(row.T)
        else:
            raise ValueError(f"Sparse feature vectors must be a single row; got shape {row.shape}.")
    row.sum_duplicates()
    return row


def _dense_1d(x: Any) -> NDArray[np.float64]:
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim != 1:
        if arr.ndim == 2 and 1 in arr.shape:
            return arr.reshape(-1)
        raise ValueError(f"Expected a 1-D vector; got shape {arr.shape}.")
    return arr


def vector_length(x: Vector) -> int:
    """Declared dimension of a feature or coefficient vector."""
    if is_sparse(x):
        shape = x.shape
        return int(shape[1] if shape[0] == 1 else shape[0])
    return int(_dense_1d(x).shape[0])


def as_dense(x: Vector) -> NDArray[np.float64]:
    if is_sparse(x):
        return np.asarray(_sparse_row(x).toarray(), dtype=np.float64).reshape(-1)
    return _dense_1d(x)


def active_indices(x: Vector) -> NDArray[np.int64]:
    """Sorted positions holding non-zero values."""
    if is_sparse(x):
        row = _sparse_row(x)
        row.eliminate_zeros()
        return np.sort(row.indices.astype(np.int64))
    return np.flatnonzero(_dense_1d(x)).astype(np.int64)


def dot(features: Vector, coefficients: Sequence[float] | NDArray[np.float64]) -> float:
    """Raw inner product; lengths must agree."""
    coef = _dense_1d(coefficients)
    n = vector_length(features)
    if n != coef.shape[0]:
        raise ValueError(
            f"Feature vector length {n} does not match coefficient length {coef.shape[0]}.",
        )
    if is_sparse(features):
        row = _sparse_row(features)
        return float(row.data @ coef[row.indices])
    return float(_dense_1d(features) @ coef)


def gather(x: Vector, indices: NDArray[np.int64]) -> NDArray[np.float64]:
    """Select ``x[indices]`` into a new dense vector."""
    idx = np.asarray(indices, dtype=np.int64)
    if is_sparse(x):
        row = _sparse_row(x)
        out = np.zeros(idx.shape[0], dtype=np.float64)
        if idx.size == 0 or row.nnz == 0:
            return out
        # idx is sorted and unique, so searchsorted locates each stored entry
        pos = np.minimum(np.searchsorted(idx, row.indices), idx.shape[0] - 1)
        hit = idx[pos] == row.indices
        out[pos[hit]] = row.data[hit]
        return out
    return np.array(_dense_1d(x)[idx], dtype=np.float64)


def scatter(values: Vector, indices: NDArray[np.int64], length: int) -> NDArray[np.float64]:
    """Place ``values`` at ``indices`` of a zero vector of size ``length``."""
    vals = as_dense(values)
    idx = np.asarray(indices, dtype=np.int64)
    if vals.shape[0] != idx.shape[0]:
        raise ValueError(f"Expected {idx.shape[0]} values; got {vals.shape[0]}.")
    out = np.zeros(int(length), dtype=np.float64)
    out[idx] = vals
    return out


def to_dense_matrix(rows: Sequence[Vector], dim: int) -> NDArray[np.float64]:
    """Stack feature vectors into an ``(n, dim)`` dense design matrix."""
    X = np.zeros((len(rows), int(dim)), dtype=np.float64)
    for i, r in enumerate(rows):
        if vector_length(r) != dim:
            raise ValueError(f"Row {i} has length {vector_length(r)}; expected {dim}.")
        if is_sparse(r):
            row = _sparse_row(r)
            X[i, row.indices] = row.data
        else:
            X[i] = _dense_1d(r)
    return X
