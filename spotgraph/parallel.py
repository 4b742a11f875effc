"""Order-stable worker pool for per-feature and per-domain tasks."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TypeVar

from joblib import Parallel, delayed

T = TypeVar("T")
R = TypeVar("R")


def ordered_map(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    n_jobs: int = 1,
    chunk_size: int = 16,
) -> list[R]:
    """Apply `func` to items; output order always matches input order.

    Tasks run on joblib's threading backend, so `func` may be a closure over
    shared read-only inputs. Exceptions raised by `func` propagate to the
    caller.
    """
    seq = list(items)
    if not seq:
        return []
    jobs = max(1, int(n_jobs))
    if jobs == 1 or len(seq) == 1:
        return [func(item) for item in seq]

    return Parallel(
        n_jobs=jobs,
        backend="threading",
        batch_size=max(1, int(chunk_size)),
    )(delayed(func)(item) for item in seq)
