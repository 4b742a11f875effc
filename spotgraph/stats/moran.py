"""Moran's I spatial autocorrelation statistics."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy.stats import norm

from spotgraph.core.neighbors import row_standardize, spatial_weights
from spotgraph.core.types import (
    AUTOCORRELATION_COLUMNS,
    AutocorrelationTable,
    FeatureMatrix,
    NeighborGraph,
)
from spotgraph.core.utils import ChoiceMixin, as_csr
from spotgraph.errors import DegenerateFeatureError, EmptyGraphError, InvalidParameterError
from spotgraph.parallel import ordered_map
from spotgraph.stats.scoring import bh_fdr

logger = logging.getLogger(__name__)


class FeatureSubsetPolicy(ChoiceMixin, str, enum.Enum):
    """How the features passed to the autocorrelation engine are chosen."""

    ALL = "all"
    TOP_VARIANCE = "top_variance"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class MoranTest:
    statistic: float
    expected: float
    variance: float
    z_score: float
    p_value: float


def _check_weights(x_arr: np.ndarray, w: sp.spmatrix) -> sp.csr_matrix:
    w_csr = as_csr(w)
    n = int(x_arr.size)
    if w_csr.shape != (n, n):
        raise ValueError(f"w shape {w_csr.shape} does not match x length {n}.")
    return w_csr


def morans_i(x: np.ndarray, w: sp.spmatrix, row_standardize_w: bool = True) -> float:
    """Compute the Moran's I statistic for one vector.

    Args:
        x: Finite numeric vector of length N.
        w: Sparse weights matrix (N x N).
        row_standardize_w: Whether to row-standardize w first.

    Returns:
        Moran's I value.
    """
    x_arr = np.asarray(x, dtype=float).ravel()
    if x_arr.size == 0:
        raise ValueError("x must be non-empty 1D.")
    if not np.isfinite(x_arr).all():
        raise ValueError("x contains NaN/inf.")
    w_use = _check_weights(x_arr, w)
    if row_standardize_w:
        w_use = row_standardize(w_use)

    if float(np.ptp(x_arr)) == 0.0:
        raise DegenerateFeatureError("x", "Variance of x is zero; Moran's I undefined.")
    z = x_arr - float(np.mean(x_arr))
    den = float(np.sum(z**2))
    if den <= 0.0:
        raise DegenerateFeatureError("x", "Variance of x is zero; Moran's I undefined.")

    s0 = float(w_use.sum())
    if s0 <= 0.0:
        raise EmptyGraphError("Sum of weights S0 is zero; Moran's I undefined.")

    num = float(np.dot(z, w_use.dot(z)))
    return float((x_arr.size / s0) * (num / den))


def moran_test(
    x: np.ndarray,
    w: sp.spmatrix,
    *,
    feature: str = "x",
    row_standardize_w: bool = False,
) -> MoranTest:
    """Moran's I with its moments under the normality assumption.

    Missing (NaN) entries are dropped together with their rows and columns of
    `w`, which is then row-standardized again so the mean and weights cover
    only observations that carry a value.
    """
    x_arr = np.asarray(x, dtype=float).ravel()
    w_use = _check_weights(x_arr, w)
    present = np.isfinite(x_arr)
    reduced = not present.all()
    if reduced:
        x_arr = x_arr[present]
        w_use = row_standardize(w_use[present][:, present])
    elif row_standardize_w:
        w_use = row_standardize(w_use)

    n = int(x_arr.size)
    if n < 2:
        raise DegenerateFeatureError(feature, f"Feature '{feature}' has fewer than 2 values.")
    if float(np.ptp(x_arr)) == 0.0:
        raise DegenerateFeatureError(feature)

    z = x_arr - float(np.mean(x_arr))
    den = float(np.sum(z**2))
    if den <= 0.0:
        raise DegenerateFeatureError(feature)

    s0 = float(w_use.sum())
    if s0 <= 0.0 and reduced:
        raise DegenerateFeatureError(
            feature, f"Feature '{feature}' has no edges among observed values."
        )
    if s0 <= 0.0:
        raise EmptyGraphError(f"Sum of weights S0 is zero for feature '{feature}'.")

    statistic = (n / s0) * float(np.dot(z, w_use.dot(z))) / den
    expected = -1.0 / (n - 1.0)

    w_sym = w_use + w_use.T
    s1 = 0.5 * float(w_sym.multiply(w_sym).sum())
    row_sum = np.asarray(w_use.sum(axis=1)).ravel()
    col_sum = np.asarray(w_use.sum(axis=0)).ravel()
    s2 = float(np.sum((row_sum + col_sum) ** 2))
    n2 = float(n) * float(n)
    variance = (n2 * s1 - n * s2 + 3.0 * s0 * s0) / ((n2 - 1.0) * s0 * s0) - expected**2

    if variance > 0.0:
        z_score = (statistic - expected) / float(np.sqrt(variance))
        p_value = float(2.0 * norm.sf(abs(z_score)))
    else:
        z_score = float("nan")
        p_value = float("nan")
    return MoranTest(
        statistic=float(statistic),
        expected=float(expected),
        variance=float(variance),
        z_score=float(z_score),
        p_value=p_value,
    )


def select_features(
    features: FeatureMatrix,
    policy: "str | FeatureSubsetPolicy" = FeatureSubsetPolicy.TOP_VARIANCE,
    *,
    n_features: int | None = None,
    explicit: Sequence[str] | None = None,
) -> list[str]:
    """Choose the features handed to the autocorrelation engine."""
    policy = FeatureSubsetPolicy.parse(policy)
    if policy is FeatureSubsetPolicy.EXPLICIT:
        if not explicit:
            raise InvalidParameterError("Explicit feature subset is empty.")
        return [str(f) for f in explicit]
    if policy is FeatureSubsetPolicy.ALL:
        return list(features.feature_names)

    if n_features is None or int(n_features) < 1:
        raise InvalidParameterError(
            f"n_features must be >= 1 for top_variance, got {n_features!r}."
        )
    var = features.variances()
    # Stable sort keeps feature order for equal variances.
    order = np.argsort(-var, kind="mergesort")[: int(n_features)]
    return [features.feature_names[i] for i in order]


def _resolve_subset(features: FeatureMatrix, subset: Iterable[str]) -> list[str]:
    names: list[str] = []
    seen: set[str] = set()
    for f in subset:
        key = str(f)
        if key not in seen:
            seen.add(key)
            names.append(key)
    if not names:
        raise InvalidParameterError("Feature subset is empty.")
    known = set(features.feature_names)
    missing = [f for f in names if f not in known]
    if missing:
        head = ", ".join(missing[:5])
        raise InvalidParameterError(
            f"Unknown features in subset ({len(missing)}): {head}"
            f"{'...' if len(missing) > 5 else ''}"
        )
    return names


def _invalid_row(feature: str) -> dict:
    nan = float("nan")
    return {
        "feature": feature,
        "statistic": nan,
        "expected": nan,
        "variance": nan,
        "z_score": nan,
        "p_value": nan,
        "valid": False,
    }


def spatial_autocorrelation(
    features: FeatureMatrix,
    weights: NeighborGraph | sp.spmatrix,
    feature_subset: Iterable[str],
    *,
    n_jobs: int = 1,
    log: logging.Logger | None = None,
) -> AutocorrelationTable:
    """Global Moran's I for each feature in `feature_subset`.

    Constant features produce `valid=False` rows and are counted in
    `n_skipped`. The returned frame keeps the subset order; use
    `AutocorrelationTable.valid()` for the ranked view.
    """
    log = log or logger
    if isinstance(weights, NeighborGraph):
        w = spatial_weights(weights)
    else:
        w = as_csr(weights)
    if w.shape != (features.n_obs, features.n_obs):
        raise InvalidParameterError(
            f"Weights shape {w.shape} does not match n_obs={features.n_obs}."
        )
    if w.nnz == 0:
        raise EmptyGraphError("Spatial weights have no edges.")

    names = _resolve_subset(features, feature_subset)
    index = {name: features.feature_index(name) for name in names}

    def _evaluate(name: str) -> dict:
        try:
            res = moran_test(features.column(index[name]), w, feature=name)
        except DegenerateFeatureError as exc:
            log.warning("Moran skipped: feature=%s reason=%s", name, exc)
            return _invalid_row(name)
        return {
            "feature": name,
            "statistic": res.statistic,
            "expected": res.expected,
            "variance": res.variance,
            "z_score": res.z_score,
            "p_value": res.p_value,
            "valid": True,
        }

    rows = ordered_map(_evaluate, names, n_jobs=n_jobs)
    frame = pd.DataFrame(rows, columns=list(AUTOCORRELATION_COLUMNS))
    frame["valid"] = frame["valid"].astype(bool)
    q = np.full(len(frame), np.nan, dtype=float)
    valid = frame["valid"].to_numpy()
    if np.any(valid):
        q[valid] = bh_fdr(frame.loc[valid, "p_value"].to_numpy(dtype=float))
    frame["adjusted_p_value"] = q

    n_skipped = int((~valid).sum())
    log.info(
        "Moran's I evaluated: features=%d valid=%d skipped=%d",
        len(frame),
        len(frame) - n_skipped,
        n_skipped,
    )
    return AutocorrelationTable(frame=frame, n_skipped=n_skipped)
