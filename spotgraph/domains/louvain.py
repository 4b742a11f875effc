"""Multilevel modularity optimisation (Louvain local moving + aggregation)."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from spotgraph.core.utils import as_csr
from spotgraph.errors import EmptyGraphError, InvalidParameterError

DEFAULT_TOL = 1e-7


@dataclass(frozen=True)
class LouvainResult:
    labels: np.ndarray
    modularity: float
    n_levels: int
    n_iterations: int
    converged: bool


def check_resolution(resolution: float) -> float:
    r = float(resolution)
    if not np.isfinite(r) or r <= 0.0:
        raise InvalidParameterError(f"resolution must be > 0, got {resolution!r}.")
    return r


def check_max_iterations(max_iterations: int) -> int:
    if int(max_iterations) < 1:
        raise InvalidParameterError(f"max_iterations must be >= 1, got {max_iterations!r}.")
    return int(max_iterations)


def prepare_adjacency(adjacency: sp.spmatrix) -> sp.csr_matrix:
    """Square, loop-free, symmetric CSR copy of `adjacency`."""
    a = as_csr(adjacency)
    if a.shape[0] != a.shape[1]:
        raise ValueError(f"adjacency must be square, received {a.shape}.")
    a = sp.csr_matrix(a - sp.diags(a.diagonal()))
    a.eliminate_zeros()
    if a.nnz == 0:
        raise EmptyGraphError(f"Graph has no edges (N={a.shape[0]}).")
    if np.any(a.data < 0.0):
        raise ValueError("adjacency weights must be non-negative.")
    if (abs(a - a.T) > 1e-12).nnz:
        a = sp.csr_matrix((a + a.T) * 0.5)
    a.sort_indices()
    return a


def modularity(adjacency: sp.spmatrix, labels: np.ndarray, resolution: float = 1.0) -> float:
    """Q = sum_c [in_c / 2m - r (tot_c / 2m)^2] for a symmetric adjacency."""
    a = as_csr(adjacency)
    lab = np.asarray(labels).ravel()
    if lab.size != a.shape[0]:
        raise ValueError("labels length must match adjacency size.")
    m2 = float(a.sum())
    if m2 <= 0.0:
        raise EmptyGraphError("Adjacency has no edges; modularity undefined.")
    _, comm = np.unique(lab, return_inverse=True)
    n_comm = int(comm.max()) + 1
    p = sp.csr_matrix(
        (np.ones(lab.size), (np.arange(lab.size), comm)), shape=(lab.size, n_comm)
    )
    internal = np.asarray((p.T @ a @ p).diagonal()).ravel()
    tot = np.asarray(p.T @ np.asarray(a.sum(axis=1)).ravel()).ravel()
    return float(np.sum(internal / m2 - float(resolution) * (tot / m2) ** 2))


def _own_key(community: np.ndarray, own: int, i: int, size: np.ndarray, low: np.ndarray) -> int:
    """Lowest index in `own` other than `i`; `i` itself when it is alone."""
    if size[own] == 1:
        return i
    if low[own] != i:
        return int(low[own])
    members = np.flatnonzero(community == own)
    return int(members[members != i].min())


def _local_moving(
    a: sp.csr_matrix,
    resolution: float,
    order: np.ndarray,
    max_iterations: int,
    tol: float,
) -> tuple[np.ndarray, int, bool]:
    """Move single nodes between communities until no gain exceeds `tol`.

    Equal gains go to the community whose lowest member index is smallest.
    Returns community ids (not renumbered), passes used, and whether the
    level converged before `max_iterations`.
    """
    n = a.shape[0]
    m2 = float(a.sum())
    degree = np.asarray(a.sum(axis=1)).ravel()
    community = np.arange(n, dtype=np.int64)
    tot = degree.copy()
    size = np.ones(n, dtype=np.int64)
    low = np.arange(n, dtype=np.int64)
    indptr, indices, data = a.indptr, a.indices, a.data

    passes = 0
    while passes < max_iterations:
        passes += 1
        moved = 0
        for i in order:
            i = int(i)
            start, end = indptr[i], indptr[i + 1]
            nbrs = indices[start:end]
            wts = data[start:end]
            not_self = nbrs != i
            nbrs = nbrs[not_self]
            wts = wts[not_self]
            if nbrs.size == 0:
                continue

            own = int(community[i])
            k_i = degree[i]
            tot[own] -= k_i

            cand, inv = np.unique(community[nbrs], return_inverse=True)
            w_to = np.bincount(inv, weights=wts, minlength=cand.size)
            if own not in cand:
                cand = np.append(cand, own)
                w_to = np.append(w_to, 0.0)
            gain = w_to - resolution * k_i * tot[cand] / m2
            own_pos = int(np.flatnonzero(cand == own)[0])
            own_low = _own_key(community, own, i, size, low)
            keys = low[cand].copy()
            keys[own_pos] = own_low

            tied = np.flatnonzero(gain >= gain.max() - 1e-12 * max(1.0, abs(gain.max())))
            best = int(tied[np.argmin(keys[tied])])
            target = own
            if cand[best] != own and 2.0 * (gain[best] - gain[own_pos]) / m2 > tol:
                target = int(cand[best])
                moved += 1
                size[own] -= 1
                size[target] += 1
                low[own] = own_low if size[own] else n
                low[target] = min(int(low[target]), i)
            community[i] = target
            tot[target] += k_i
        if moved == 0:
            return community, passes, True
    return community, passes, False


def _aggregate(a: sp.csr_matrix, community: np.ndarray) -> tuple[sp.csr_matrix, np.ndarray]:
    """Collapse communities into super-nodes ordered by lowest member index.

    Internal weight becomes self-loops.
    """
    _, comm = np.unique(community, return_inverse=True)
    n_comm = int(comm.max()) + 1
    first = np.full(n_comm, comm.size, dtype=np.int64)
    np.minimum.at(first, comm, np.arange(comm.size))
    rank = np.empty(n_comm, dtype=np.int64)
    rank[np.argsort(first, kind="mergesort")] = np.arange(n_comm)
    comm = rank[comm]
    p = sp.csr_matrix(
        (np.ones(comm.size), (np.arange(comm.size), comm)), shape=(comm.size, n_comm)
    )
    coarse = sp.csr_matrix(p.T @ a @ p)
    coarse.sort_indices()
    return coarse, comm


def renumber_by_size(labels: np.ndarray) -> np.ndarray:
    """0 is the largest community; equal sizes go to the smallest member index."""
    uniq, first, counts = np.unique(labels, return_index=True, return_counts=True)
    rank = np.lexsort((first, -counts))
    mapping = np.empty(uniq.size, dtype=np.int64)
    mapping[rank] = np.arange(uniq.size)
    _, inv = np.unique(labels, return_inverse=True)
    return mapping[inv]


def louvain(
    adjacency: sp.spmatrix,
    resolution: float = 1.0,
    seed: int = 0,
    *,
    max_iterations: int = 100,
    tol: float = DEFAULT_TOL,
) -> LouvainResult:
    """Partition a symmetric weighted graph by multilevel modularity ascent.

    Node visiting order at each level is a permutation drawn from
    `numpy.random.default_rng(seed)`, so identical inputs and seed give
    identical labels. `resolution` scales the null-model term: larger values
    yield more, smaller communities.
    """
    r = check_resolution(resolution)
    check_max_iterations(max_iterations)
    a = prepare_adjacency(adjacency)

    rng = np.random.default_rng(int(seed))
    membership = np.arange(a.shape[0], dtype=np.int64)
    level_graph = a
    n_levels = 0
    n_iterations = 0
    converged = True
    while True:
        order = rng.permutation(level_graph.shape[0])
        community, passes, level_converged = _local_moving(
            level_graph, r, order, int(max_iterations), float(tol)
        )
        n_levels += 1
        n_iterations += passes
        converged = converged and level_converged
        coarse, comm = _aggregate(level_graph, community)
        membership = comm[membership]
        if coarse.shape[0] == level_graph.shape[0] or not level_converged:
            break
        level_graph = coarse

    labels = renumber_by_size(membership)
    return LouvainResult(
        labels=labels,
        modularity=modularity(a, labels, r),
        n_levels=n_levels,
        n_iterations=n_iterations,
        converged=converged,
    )
