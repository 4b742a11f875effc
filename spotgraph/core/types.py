"""Typed containers passed between spotgraph engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp

from spotgraph.core.utils import dense_column

AUTOCORRELATION_COLUMNS: tuple[str, ...] = (
    "feature",
    "statistic",
    "expected",
    "variance",
    "z_score",
    "p_value",
    "valid",
)
MARKER_COLUMNS: tuple[str, ...] = (
    "domain",
    "feature",
    "log_fold_change",
    "percent_in",
    "percent_out",
    "p_value",
    "adjusted_p_value",
)
GRAPH_KINDS: tuple[str, ...] = ("spatial", "embedding")


def _unique_names(name: str, values: Sequence[Any], expected: int) -> tuple[str, ...]:
    out = tuple(str(v) for v in values)
    if len(out) != int(expected):
        raise ValueError(f"{name} length {len(out)} does not match matrix axis {expected}.")
    if len(set(out)) != len(out):
        raise ValueError(f"{name} must be unique.")
    return out


@dataclass(frozen=True)
class FeatureMatrix:
    """Observations x named features, dense or sparse.

    `X` is shared with consumers by reference and must not be mutated.
    Missing values are encoded as NaN in dense matrices.
    """

    X: Any
    obs_names: tuple[str, ...]
    feature_names: tuple[str, ...]

    def __post_init__(self) -> None:
        if sp.issparse(self.X):
            mat = sp.csc_matrix(self.X, dtype=float)
        else:
            mat = np.asarray(self.X, dtype=float)
            if mat.ndim != 2:
                raise ValueError(f"X must be 2D, received shape {mat.shape}.")
        object.__setattr__(self, "X", mat)
        object.__setattr__(
            self, "obs_names", _unique_names("obs_names", self.obs_names, mat.shape[0])
        )
        object.__setattr__(
            self,
            "feature_names",
            _unique_names("feature_names", self.feature_names, mat.shape[1]),
        )

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame) -> "FeatureMatrix":
        return cls(
            X=frame.to_numpy(dtype=float),
            obs_names=tuple(frame.index),
            feature_names=tuple(frame.columns),
        )

    @property
    def n_obs(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.X.shape[1])

    def feature_index(self, feature: str) -> int:
        key = str(feature)
        try:
            return self.feature_names.index(key)
        except ValueError:
            raise KeyError(f"Feature '{feature}' not found in feature_names.") from None

    def column(self, feature: str | int) -> np.ndarray:
        idx = feature if isinstance(feature, (int, np.integer)) else self.feature_index(feature)
        return dense_column(self.X, int(idx))

    def variances(self) -> np.ndarray:
        """Per-feature variance, ignoring missing values."""
        if sp.issparse(self.X):
            mean = np.asarray(self.X.mean(axis=0)).ravel()
            mean_sq = np.asarray(self.X.multiply(self.X).mean(axis=0)).ravel()
            return np.maximum(mean_sq - mean**2, 0.0)
        with np.errstate(invalid="ignore"):
            var = np.nanvar(self.X, axis=0)
        return np.where(np.isfinite(var), var, 0.0)


@dataclass(frozen=True)
class NeighborGraph:
    """k nearest neighbors per observation.

    Row i of `indices` lists neighbors of observation i by increasing
    distance, ties broken by ascending index. `weights` are non-negative.
    """

    indices: np.ndarray
    distances: np.ndarray
    weights: np.ndarray
    kind: str = "spatial"

    def __post_init__(self) -> None:
        idx = np.asarray(self.indices, dtype=np.int64)
        dist = np.asarray(self.distances, dtype=float)
        wts = np.asarray(self.weights, dtype=float)
        if idx.ndim != 2 or idx.shape != dist.shape or idx.shape != wts.shape:
            raise ValueError("indices, distances, and weights must share one (N, k) shape.")
        if self.kind not in GRAPH_KINDS:
            raise ValueError(f"kind must be one of {GRAPH_KINDS}, got {self.kind!r}.")
        if np.any(wts < 0.0):
            raise ValueError("Neighbor weights must be non-negative.")
        if idx.size and np.any(idx == np.arange(idx.shape[0])[:, None]):
            raise ValueError("Neighbor graph contains self-loops.")
        object.__setattr__(self, "indices", idx)
        object.__setattr__(self, "distances", dist)
        object.__setattr__(self, "weights", wts)

    @property
    def n_obs(self) -> int:
        return int(self.indices.shape[0])

    @property
    def k(self) -> int:
        return int(self.indices.shape[1])

    @property
    def n_edges(self) -> int:
        return int(np.count_nonzero(self.weights))

    def to_sparse(self) -> sp.csr_matrix:
        """Directed N x N adjacency with one stored entry per neighbor edge."""
        n = self.n_obs
        rows = np.repeat(np.arange(n), self.k)
        w = sp.csr_matrix(
            (self.weights.ravel(), (rows, self.indices.ravel())),
            shape=(n, n),
        )
        w.eliminate_zeros()
        return w


@dataclass(frozen=True)
class AutocorrelationTable:
    """Per-feature Moran's I results.

    `frame` holds one row per evaluated feature, invalid rows included.
    """

    frame: pd.DataFrame
    n_skipped: int = 0

    def valid(self) -> pd.DataFrame:
        keep = self.frame[self.frame["valid"].astype(bool)]
        return keep.sort_values(
            ["statistic", "feature"], ascending=[False, True], kind="mergesort"
        ).reset_index(drop=True)

    def top(self, n: int) -> list[str]:
        return self.valid()["feature"].head(int(n)).astype(str).tolist()


@dataclass(frozen=True)
class DomainResult:
    """Frozen domain assignment; `<NA>` marks unclustered observations."""

    labels: pd.Series
    resolution: float
    seed: int
    method: str
    modularity: float
    n_levels: int
    n_iterations: int
    converged: bool
    n_unassigned: int = 0

    @property
    def n_domains(self) -> int:
        return int(self.labels.dropna().nunique())

    def sizes(self) -> pd.Series:
        return self.labels.value_counts(dropna=True).sort_index()


@dataclass(frozen=True)
class MarkerTable:
    """Retained (domain, feature) records plus the domains left out."""

    frame: pd.DataFrame
    excluded_domains: tuple[int, ...] = ()
    n_tested: int = 0

    @property
    def n_skipped(self) -> int:
        return len(self.excluded_domains)

    def for_domain(self, domain: int) -> pd.DataFrame:
        return self.frame[self.frame["domain"] == int(domain)].reset_index(drop=True)


@dataclass(frozen=True)
class AnalysisResult:
    autocorrelation: AutocorrelationTable | None
    domains: DomainResult | None
    markers: MarkerTable | None
    skipped: dict[str, int] = field(default_factory=dict)
