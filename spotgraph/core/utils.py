"""Small pure helpers for core computations."""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from spotgraph.errors import InvalidParameterError


def finite_2d(name: str, values: np.ndarray, min_cols: int = 1) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2 or arr.shape[1] < int(min_cols):
        raise ValueError(f"{name} must have shape (N, {min_cols}+), received {arr.shape}.")
    if arr.shape[0] == 0:
        raise ValueError(f"{name} must include at least one row.")
    if not np.isfinite(arr).all():
        raise ValueError(f"{name} contains NaN/inf values.")
    return arr


def check_positive_int(name: str, value: int, minimum: int = 1) -> int:
    try:
        out = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameterError(f"{name} must be an integer, got {value!r}.") from exc
    if out < int(minimum):
        raise InvalidParameterError(f"{name} must be >= {minimum}, got {value!r}.")
    return out


def dense_column(X, idx: int) -> np.ndarray:
    col = X[:, int(idx)]
    if sp.issparse(col):
        return col.toarray().ravel().astype(float)
    return np.asarray(col).ravel().astype(float)


def dense_block(X, start: int, stop: int) -> np.ndarray:
    """Columns `start:stop` of `X` as a dense float array."""
    block = X[:, int(start) : int(stop)]
    if sp.issparse(block):
        return np.asarray(block.toarray(), dtype=float)
    return np.asarray(block, dtype=float)


def as_csr(w) -> sp.csr_matrix:
    if not sp.issparse(w):
        raise TypeError("w must be a scipy sparse matrix.")
    return sp.csr_matrix(w, dtype=float)


class ChoiceMixin:
    """`parse` for closed string enums; unknown names are parameter errors."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise InvalidParameterError(
            f"Unsupported {cls.__name__} {value!r}. "
            f"Use one of: {', '.join(m.value for m in cls)}."
        )
