"""Per-domain differential feature ranking."""

from __future__ import annotations

import enum
import logging

import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu

from spotgraph.core.types import MARKER_COLUMNS, DomainResult, FeatureMatrix, MarkerTable
from spotgraph.core.utils import ChoiceMixin, check_positive_int, dense_block
from spotgraph.errors import InsufficientObservationsError, InvalidParameterError
from spotgraph.parallel import ordered_map
from spotgraph.stats.scoring import bh_fdr

logger = logging.getLogger(__name__)

PSEUDO_COUNT_FLOOR = 1e-9
FEATURE_CHUNK = 512


class MarkerSort(ChoiceMixin, str, enum.Enum):
    LOG_FOLD_CHANGE = "log_fold_change"
    P_VALUE = "p_value"


def _label_array(features: FeatureMatrix, labels: DomainResult | pd.Series) -> np.ndarray:
    """Domain labels aligned to `features.obs_names`, with -1 for missing."""
    series = labels.labels if isinstance(labels, DomainResult) else labels
    if not isinstance(series, pd.Series):
        series = pd.Series(series)
    if len(series) != features.n_obs:
        raise InvalidParameterError(
            f"labels length {len(series)} does not match n_obs={features.n_obs}."
        )
    index = pd.Index(series.index.astype(str))
    if index.equals(pd.Index(features.obs_names)):
        aligned = series
    elif set(index) == set(features.obs_names):
        aligned = pd.Series(series.to_numpy(), index=index).reindex(list(features.obs_names))
    elif series.index.equals(pd.RangeIndex(features.n_obs)):
        aligned = series
    else:
        raise InvalidParameterError(
            "labels index matches neither obs_names nor a default positional index."
        )

    missing = aligned.isna().to_numpy()
    numeric = pd.to_numeric(aligned.astype(object), errors="coerce").astype("Float64")
    unparsed = numeric.isna().to_numpy() & ~missing
    if np.any(unparsed):
        raise InvalidParameterError(
            "Domain labels must be non-negative integers or null, "
            f"got {aligned[unparsed].iloc[0]!r}."
        )
    out = numeric.fillna(-1).to_numpy(dtype=float)
    present = out[~missing]
    if np.any((present != np.floor(present)) | (present < 0)):
        raise InvalidParameterError("Domain labels must be non-negative integers or null.")
    return out.astype(np.int64)


def check_domain_size(domain: int, n_obs: int, minimum: int) -> None:
    if int(n_obs) < int(minimum):
        raise InsufficientObservationsError(domain, n_obs, minimum)


def _group_stats(block: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    present = np.isfinite(block)
    n_present = np.maximum(present.sum(axis=0), 1)
    detected = np.sum(np.where(present, block, 0.0) > 0.0, axis=0)
    with np.errstate(invalid="ignore"):
        mean = np.nanmean(np.where(present, block, np.nan), axis=0)
    mean = np.where(np.isfinite(mean), mean, 0.0)
    return mean, detected / n_present


def _rank_sum_pvalues(inside: np.ndarray, outside: np.ndarray) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore"):
        res = mannwhitneyu(
            inside,
            outside,
            alternative="two-sided",
            axis=0,
            nan_policy="omit",
        )
    p = np.asarray(res.pvalue, dtype=float).reshape(-1)
    # All-tied columns have no defined test; report no evidence.
    return np.where(np.isfinite(p), np.clip(p, 0.0, 1.0), 1.0)


def _sort_domain(frame: pd.DataFrame, sort_by: MarkerSort) -> pd.DataFrame:
    if sort_by is MarkerSort.P_VALUE:
        keys, ascending = ["p_value", "log_fold_change", "feature"], [True, False, True]
    else:
        keys, ascending = ["log_fold_change", "p_value", "feature"], [False, True, True]
    return frame.sort_values(keys, ascending=ascending, kind="mergesort")


def rank_domain_features(
    features: FeatureMatrix,
    labels: DomainResult | pd.Series,
    *,
    min_observations: int = 10,
    min_percent_in: float = 0.1,
    min_log_fold_change: float = 0.25,
    pseudo_count: float = PSEUDO_COUNT_FLOOR,
    sort_by: "str | MarkerSort" = MarkerSort.LOG_FOLD_CHANGE,
    n_jobs: int = 1,
    chunk_size: int = FEATURE_CHUNK,
    log: logging.Logger | None = None,
) -> MarkerTable:
    """Rank features that distinguish each domain from all other observations.

    Domains smaller than `min_observations` are left out and listed in
    `MarkerTable.excluded_domains`. Observations without a label count as
    outside every domain. Sparse matrices are densified `chunk_size` feature
    columns at a time.
    """
    log = log or logger
    if int(min_observations) < 1:
        raise InvalidParameterError(f"min_observations must be >= 1, got {min_observations!r}.")
    if not 0.0 <= float(min_percent_in) <= 1.0:
        raise InvalidParameterError(f"min_percent_in must lie in [0, 1], got {min_percent_in!r}.")
    if float(pseudo_count) < 0.0:
        raise InvalidParameterError(f"pseudo_count must be >= 0, got {pseudo_count!r}.")
    pc = max(float(pseudo_count), PSEUDO_COUNT_FLOOR)
    order = MarkerSort.parse(sort_by)
    width = check_positive_int("chunk_size", chunk_size)

    lab = _label_array(features, labels)
    domains = [int(d) for d in np.unique(lab[lab >= 0])]
    names = np.asarray(features.feature_names, dtype=object)
    n_features = features.n_features

    eligible: list[int] = []
    excluded: list[int] = []
    for d in domains:
        try:
            check_domain_size(d, int(np.sum(lab == d)), int(min_observations))
        except InsufficientObservationsError as exc:
            log.warning("Marker ranking skipped: domain=%d reason=%s", d, exc)
            excluded.append(d)
            continue
        if np.all(lab == d):
            log.warning(
                "Marker ranking skipped: domain=%d reason=no observations outside domain", d
            )
            excluded.append(d)
            continue
        eligible.append(d)

    def _rank(d: int) -> pd.DataFrame:
        in_mask = lab == d
        stats = []
        for start in range(0, n_features, width):
            block = dense_block(features.X, start, start + width)
            inside = block[in_mask]
            outside = block[~in_mask]
            mean_in, pct_in = _group_stats(inside)
            mean_out, pct_out = _group_stats(outside)
            stats.append((mean_in, pct_in, mean_out, pct_out, _rank_sum_pvalues(inside, outside)))
        mean_in, pct_in, mean_out, pct_out, pvals = (np.concatenate(s) for s in zip(*stats))
        lfc = np.log2((np.maximum(mean_in, 0.0) + pc) / (np.maximum(mean_out, 0.0) + pc))
        frame = pd.DataFrame(
            {
                "domain": d,
                "feature": names,
                "log_fold_change": lfc,
                "percent_in": pct_in,
                "percent_out": pct_out,
                "p_value": pvals,
                "adjusted_p_value": bh_fdr(pvals),
            },
            columns=list(MARKER_COLUMNS),
        )
        keep = (frame["percent_in"] >= float(min_percent_in)) & (
            frame["log_fold_change"] >= float(min_log_fold_change)
        )
        return _sort_domain(frame[keep], order)

    parts = ordered_map(_rank, eligible, n_jobs=n_jobs)
    if parts:
        out = pd.concat(parts, ignore_index=True)
    else:
        out = pd.DataFrame(columns=list(MARKER_COLUMNS))
    out["domain"] = out["domain"].astype(np.int64)
    out["feature"] = out["feature"].astype(str)
    for col in MARKER_COLUMNS[2:]:
        out[col] = out[col].astype(float)

    n_tested = len(eligible) * n_features
    log.info(
        "Marker ranking: domains=%d excluded=%d tested=%d retained=%d",
        len(domains),
        len(excluded),
        n_tested,
        len(out),
    )
    return MarkerTable(frame=out, excluded_domains=tuple(excluded), n_tested=n_tested)
