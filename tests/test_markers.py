import logging

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from spotgraph.core.types import MARKER_COLUMNS, FeatureMatrix
from spotgraph.errors import InvalidParameterError
from spotgraph.stats.markers import rank_domain_features


def _toy(sparse=False):
    n_a, n_rest = 10, 20
    n = n_a + n_rest
    high = np.r_[np.full(n_a, 10.0), np.full(n_rest, 1.0)]
    rare = np.zeros(n)
    rare[0] = 100.0
    flat = np.ones(n)
    other = np.r_[np.zeros(n_a), np.linspace(1.0, 3.0, n_rest)]
    X = np.column_stack([high, rare, flat, other])
    if sparse:
        X = sp.csr_matrix(X)
    feats = FeatureMatrix(
        X=X,
        obs_names=tuple(f"s{i}" for i in range(n)),
        feature_names=("HIGH", "RARE", "FLAT", "OTHER"),
    )
    labels = pd.Series(
        pd.array([0] * n_a + [1] * n_rest, dtype="Int64"),
        index=list(feats.obs_names),
        name="domain",
    )
    return feats, labels


@pytest.mark.parametrize("sparse", [False, True])
def test_high_feature_has_positive_fold_change(sparse):
    feats, labels = _toy(sparse)
    table = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.2, min_log_fold_change=0.25
    )
    assert list(table.frame.columns) == list(MARKER_COLUMNS)
    dom0 = table.for_domain(0)
    row = dom0[dom0["feature"] == "HIGH"].iloc[0]
    assert row["log_fold_change"] == pytest.approx(np.log2(10.0), rel=1e-6)
    assert row["percent_in"] == pytest.approx(1.0)
    assert row["percent_out"] == pytest.approx(1.0)
    assert row["p_value"] < 1e-3
    assert row["adjusted_p_value"] >= row["p_value"]


def test_low_percent_in_is_filtered_even_with_large_fold_change():
    feats, labels = _toy()
    table = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.2, min_log_fold_change=0.25
    )
    assert "RARE" not in table.for_domain(0)["feature"].tolist()

    permissive = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.05, min_log_fold_change=0.25
    )
    rare = permissive.for_domain(0).set_index("feature").loc["RARE"]
    assert rare["percent_in"] == pytest.approx(0.1)
    assert rare["log_fold_change"] > 10.0


def test_flat_feature_is_not_retained_and_pvalue_is_one():
    feats, labels = _toy()
    table = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.0, min_log_fold_change=-100.0
    )
    flat = table.for_domain(0).set_index("feature").loc["FLAT"]
    assert flat["log_fold_change"] == pytest.approx(0.0)
    assert flat["p_value"] == pytest.approx(1.0)


def test_each_pair_tested_once_and_sorted():
    feats, labels = _toy()
    table = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.0, min_log_fold_change=-100.0
    )
    frame = table.frame
    assert not frame.duplicated(["domain", "feature"]).any()
    assert table.n_tested == 2 * feats.n_features
    assert frame["domain"].tolist() == sorted(frame["domain"].tolist())
    for _, part in frame.groupby("domain"):
        assert np.all(np.diff(part["log_fold_change"].to_numpy()) <= 0.0)


def test_sort_by_p_value():
    feats, labels = _toy()
    table = rank_domain_features(
        feats,
        labels,
        min_observations=5,
        min_percent_in=0.0,
        min_log_fold_change=-100.0,
        sort_by="p_value",
    )
    for _, part in table.frame.groupby("domain"):
        assert np.all(np.diff(part["p_value"].to_numpy()) >= 0.0)


def test_small_domain_excluded_with_warning(caplog):
    caplog.set_level(logging.WARNING)
    feats, labels = _toy()
    labels = labels.copy()
    labels.iloc[[28, 29]] = 2
    table = rank_domain_features(feats, labels, min_observations=5)
    assert table.excluded_domains == (2,)
    assert table.n_skipped == 1
    assert 2 not in set(table.frame["domain"])
    assert "Marker ranking skipped" in caplog.text


def test_null_labels_count_as_outside():
    feats, labels = _toy()
    labels = labels.copy()
    labels.iloc[:2] = pd.NA
    table = rank_domain_features(
        feats, labels, min_observations=5, min_percent_in=0.0, min_log_fold_change=-100.0
    )
    assert set(table.frame["domain"]) == {0, 1}
    high = table.for_domain(1).set_index("feature").loc["HIGH"]
    # Outside domain 1: eight 10s from domain 0 plus two unlabeled 10s.
    assert high["log_fold_change"] == pytest.approx(np.log2(1.0 / 10.0), rel=1e-6)


def test_invalid_parameters():
    feats, labels = _toy()
    with pytest.raises(InvalidParameterError):
        rank_domain_features(feats, labels, min_observations=0)
    with pytest.raises(InvalidParameterError):
        rank_domain_features(feats, labels, min_percent_in=1.5)
    with pytest.raises(InvalidParameterError):
        rank_domain_features(feats, labels, sort_by="effect")
    with pytest.raises(InvalidParameterError):
        rank_domain_features(feats, labels.iloc[:5])


def test_parallel_matches_serial():
    feats, labels = _toy()
    serial = rank_domain_features(feats, labels, min_observations=5, n_jobs=1)
    threaded = rank_domain_features(feats, labels, min_observations=5, n_jobs=2)
    pd.testing.assert_frame_equal(serial.frame, threaded.frame)


def test_chunked_sparse_matches_dense(monkeypatch):
    import spotgraph.stats.markers as markers

    widths = []
    original = markers.dense_block

    def _recording(X, start, stop):
        block = original(X, start, stop)
        widths.append(block.shape[1])
        return block

    monkeypatch.setattr(markers, "dense_block", _recording)
    dense_feats, labels = _toy(sparse=False)
    sparse_feats, _ = _toy(sparse=True)
    kwargs = dict(min_observations=5, min_percent_in=0.0, min_log_fold_change=-100.0)
    full = rank_domain_features(dense_feats, labels, **kwargs)
    chunked = rank_domain_features(sparse_feats, labels, chunk_size=3, **kwargs)
    pd.testing.assert_frame_equal(full.frame, chunked.frame)
    assert max(widths[-4:]) <= 3


def test_non_integer_labels_are_rejected():
    feats, _ = _toy()
    labels = pd.Series(["A"] * 10 + ["B"] * 20, index=list(feats.obs_names))
    with pytest.raises(InvalidParameterError, match="'A'"):
        rank_domain_features(feats, labels, min_observations=5)


def test_negative_labels_are_rejected():
    feats, labels = _toy()
    labels = labels.copy()
    labels.iloc[0] = -1
    with pytest.raises(InvalidParameterError):
        rank_domain_features(feats, labels, min_observations=5)


def test_labels_index_must_match_obs_names():
    feats, labels = _toy()
    renamed = pd.Series(labels.to_numpy(), index=[f"x{i}" for i in range(feats.n_obs)])
    with pytest.raises(InvalidParameterError, match="obs_names"):
        rank_domain_features(feats, renamed, min_observations=5)

    positional = pd.Series(labels.to_numpy())
    table = rank_domain_features(feats, positional, min_observations=5)
    expected = rank_domain_features(feats, labels, min_observations=5)
    pd.testing.assert_frame_equal(table.frame, expected.frame)
