"""Coordinate index and k-nearest-neighbor graph construction."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import scipy.sparse as sp
from sklearn.neighbors import NearestNeighbors

from spotgraph.core.types import NeighborGraph
from spotgraph.core.utils import as_csr, check_positive_int, finite_2d
from spotgraph.errors import EmptyGraphError, InvalidParameterError

TIE_RTOL = 1e-9


class CoordinateIndex:
    """Euclidean nearest-neighbor index over N x D points."""

    def __init__(self, points: np.ndarray, min_dims: int = 1):
        self.points = finite_2d("points", points, min_cols=min_dims)
        self._nn = NearestNeighbors(metric="euclidean").fit(self.points)

    @property
    def n_obs(self) -> int:
        return int(self.points.shape[0])

    def _exact_distances(self, i: int, cand: np.ndarray) -> np.ndarray:
        diff = self.points[cand] - self.points[i]
        return np.sqrt(np.sum(diff * diff, axis=1))

    def _ordered_within(self, i: int, radius: float) -> tuple[np.ndarray, np.ndarray]:
        cand = self._nn.radius_neighbors(
            self.points[i : i + 1], radius=radius, return_distance=False
        )[0]
        cand = np.asarray(cand, dtype=np.int64)
        cand = cand[cand != i]
        d = self._exact_distances(i, cand)
        order = np.lexsort((cand, d))
        return cand[order], d[order]

    def query(self, k: int) -> tuple[np.ndarray, np.ndarray]:
        """Return `(indices, distances)` of the k nearest other points.

        Rows are ordered by increasing distance; equal distances, including a
        tie straddling the k-th position, resolve to the lower index.
        """
        n = self.n_obs
        k = check_positive_int("k", k)
        if k >= n:
            raise InvalidParameterError(f"k must be < N; got k={k}, N={n}.")

        m = min(n, k + 2)
        _, ind = self._nn.kneighbors(self.points, n_neighbors=m)
        ind = np.asarray(ind, dtype=np.int64)
        diff = self.points[ind] - self.points[:, None, :]
        dist = np.sqrt(np.sum(diff * diff, axis=2))

        # Push self to the end of every row.
        is_self = ind == np.arange(n)[:, None]
        dist = np.where(is_self, np.inf, dist)
        ind_key = np.where(is_self, n, ind)
        order = np.lexsort((ind_key, dist), axis=-1)
        ind = np.take_along_axis(ind, order, axis=1)
        dist = np.take_along_axis(dist, order, axis=1)

        out_idx = ind[:, :k].copy()
        out_dist = dist[:, :k].copy()
        if m == n:
            return out_idx, out_dist

        kth = out_dist[:, k - 1]
        tol = TIE_RTOL * np.maximum(1.0, kth)
        boundary_tie = dist[:, k] <= kth + tol
        for i in np.flatnonzero(boundary_tie):
            cand, d = self._ordered_within(int(i), float(kth[i] + tol[i]))
            out_idx[i] = cand[:k]
            out_dist[i] = d[:k]
        return out_idx, out_dist


def build_knn_graph(
    points: np.ndarray,
    k: int,
    *,
    kind: str = "spatial",
    weighted: bool = False,
) -> NeighborGraph:
    """Build a kNN graph; weights are 1, or 1 / (1 + d) when `weighted`."""
    index = CoordinateIndex(points, min_dims=2 if kind == "spatial" else 1)
    indices, distances = index.query(k)
    if weighted:
        weights = 1.0 / (1.0 + distances)
    else:
        weights = np.ones_like(distances, dtype=float)
    return NeighborGraph(indices=indices, distances=distances, weights=weights, kind=kind)


def build_spatial_graph(coords: np.ndarray, k: int, weighted: bool = False) -> NeighborGraph:
    xy = finite_2d("coords", coords, min_cols=2)
    if xy.shape[1] != 2:
        raise ValueError(f"coords must have shape (N, 2), received {xy.shape}.")
    return build_knn_graph(xy, k, kind="spatial", weighted=weighted)


def build_embedding_graph(
    embedding: np.ndarray, k: int, weighted: bool = False
) -> NeighborGraph:
    return build_knn_graph(embedding, k, kind="embedding", weighted=weighted)


def row_standardize(w: sp.spmatrix) -> sp.csr_matrix:
    """Scale each row to sum to 1; all-zero rows stay zero."""
    w_csr = as_csr(w)
    row_sum = np.asarray(w_csr.sum(axis=1)).ravel()
    scale = np.zeros_like(row_sum, dtype=float)
    nz = row_sum > 0
    scale[nz] = 1.0 / row_sum[nz]
    if np.any(nz):
        w_csr = sp.csr_matrix(sp.diags(scale).dot(w_csr))
    return w_csr


def spatial_weights(graph: NeighborGraph) -> sp.csr_matrix:
    if graph.n_edges == 0:
        raise EmptyGraphError(f"{graph.kind} graph has no edges (N={graph.n_obs}).")
    return row_standardize(graph.to_sparse())


def symmetrize(w: sp.spmatrix) -> sp.csr_matrix:
    w_csr = as_csr(w)
    return sp.csr_matrix(w_csr.maximum(w_csr.T))


def fuse_graphs(
    graphs: Sequence[NeighborGraph],
    weights: Sequence[float] | None = None,
) -> sp.csr_matrix:
    """Weighted union of symmetrized neighbor graphs over the same N."""
    graphs = [g for g in graphs if g is not None]
    if not graphs:
        raise InvalidParameterError("At least one neighbor graph is required.")
    n = graphs[0].n_obs
    if any(g.n_obs != n for g in graphs):
        raise InvalidParameterError(
            f"Graphs disagree on N: {[g.n_obs for g in graphs]}."
        )
    if weights is None:
        weights = [1.0] * len(graphs)
    w_arr = np.asarray(list(weights), dtype=float)
    if w_arr.size != len(graphs) or np.any(w_arr < 0.0) or float(w_arr.sum()) <= 0.0:
        raise InvalidParameterError(f"Invalid graph weights: {list(weights)!r}.")
    w_arr = w_arr / float(w_arr.sum())

    fused = sp.csr_matrix((n, n), dtype=float)
    for g, share in zip(graphs, w_arr):
        if share == 0.0:
            continue
        fused = fused + float(share) * symmetrize(g.to_sparse())
    fused = sp.csr_matrix(fused - sp.diags(fused.diagonal()))
    fused.eliminate_zeros()
    fused.sort_indices()
    return fused
