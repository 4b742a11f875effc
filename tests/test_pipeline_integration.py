from __future__ import annotations

import json
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

from spotgraph.config import (
    AnalysisConfig,
    DomainConfig,
    GraphConfig,
    MarkerConfig,
    MoranConfig,
)
from spotgraph.core.types import AUTOCORRELATION_COLUMNS, MARKER_COLUMNS
from spotgraph.pipeline.adata import (
    annotate_anndata,
    coords_from_anndata,
    embedding_from_anndata,
    features_from_anndata,
)
from spotgraph.pipeline.io import read_domain_labels, read_markers
from spotgraph.pipeline.run import run_analysis, write_analysis


def _make_adata(seed: int = 0) -> ad.AnnData:
    rng = np.random.default_rng(seed)
    side = 6
    xx, yy = np.meshgrid(np.arange(side, dtype=float), np.arange(side, dtype=float))
    block = np.c_[yy.ravel(), xx.ravel()]
    coords = np.vstack([block, block + 40.0])
    n = coords.shape[0]
    in_a = np.arange(n) < side * side

    X = np.zeros((n, 5), dtype=float)
    X[in_a, 0] = rng.poisson(8.0, size=int(in_a.sum())) + 1.0
    X[~in_a, 0] = rng.poisson(0.5, size=int((~in_a).sum()))
    X[~in_a, 1] = rng.poisson(8.0, size=int((~in_a).sum())) + 1.0
    X[:, 2] = 3.0
    X[:, 3] = rng.normal(size=n) + 5.0
    X[:, 4] = coords[:, 0]

    obs = pd.DataFrame(index=[f"spot{i}" for i in range(n)])
    var = pd.DataFrame(index=["MARK_A", "MARK_B", "CONST", "NOISE", "GRADIENT"])
    adata = ad.AnnData(X=sp.csr_matrix(X), obs=obs, var=var)
    adata.obsm["spatial"] = coords
    adata.obsm["X_pca"] = np.c_[in_a * 10.0, ~in_a * 10.0] + rng.normal(scale=0.5, size=(n, 2))
    return adata


def _config() -> AnalysisConfig:
    return AnalysisConfig(
        graph=GraphConfig(spatial_k=4, embedding_k=6),
        moran=MoranConfig(policy="all"),
        domains=DomainConfig(resolution=0.5, seed=0),
        markers=MarkerConfig(min_observations=5, min_percent_in=0.2, min_log_fold_change=0.5),
    )


def test_anndata_adapters():
    adata = _make_adata()
    feats = features_from_anndata(adata)
    assert feats.n_obs == adata.n_obs
    assert feats.feature_names == tuple(adata.var_names)
    assert coords_from_anndata(adata).shape == (adata.n_obs, 2)
    assert embedding_from_anndata(adata).shape == (adata.n_obs, 2)
    assert embedding_from_anndata(adata, key="X_umap") is None


def test_run_analysis_end_to_end(tmp_path: Path):
    adata = _make_adata()
    feats = features_from_anndata(adata)
    cfg = _config()
    result = run_analysis(
        feats, coords_from_anndata(adata), embedding_from_anndata(adata), cfg
    )

    moran = result.autocorrelation.frame.set_index("feature")
    assert list(result.autocorrelation.frame.columns[:7]) == list(AUTOCORRELATION_COLUMNS)
    assert not bool(moran.loc["CONST", "valid"])
    assert moran.loc["MARK_A", "statistic"] > moran.loc["NOISE", "statistic"]
    assert result.skipped["degenerate_features"] == 1

    labels = result.domains.labels
    assert labels.index.tolist() == list(feats.obs_names)
    assert result.domains.n_domains >= 2
    in_a = np.arange(feats.n_obs) < 36
    lab = labels.to_numpy(dtype=np.int64)
    for d in np.unique(lab):
        assert np.unique(in_a[lab == d]).size == 1

    frame = result.markers.frame
    assert list(frame.columns) == list(MARKER_COLUMNS)
    domains_a = set(np.unique(lab[in_a]))
    mark_a = frame[frame["feature"] == "MARK_A"]
    assert set(mark_a["domain"]) <= domains_a
    assert (mark_a["log_fold_change"] > 0).all()

    paths = write_analysis(result, tmp_path / "out", cfg)
    summary = json.loads(paths["summary"].read_text(encoding="utf-8"))
    assert summary["skipped"]["degenerate_features"] == 1
    assert summary["config"]["domains"]["resolution"] == 0.5

    back = read_domain_labels(paths["domains"])
    assert back.tolist() == labels.tolist()
    markers_back = read_markers(paths["markers"])
    assert markers_back["feature"].tolist() == frame["feature"].tolist()
    assert markers_back["log_fold_change"].tolist() == frame["log_fold_change"].tolist()


def test_run_is_reproducible():
    adata = _make_adata()
    feats = features_from_anndata(adata)
    cfg = _config()
    a = run_analysis(feats, coords_from_anndata(adata), embedding_from_anndata(adata), cfg)
    b = run_analysis(feats, coords_from_anndata(adata), embedding_from_anndata(adata), cfg)
    assert a.domains.labels.equals(b.domains.labels)
    pd.testing.assert_frame_equal(a.markers.frame, b.markers.frame)


def test_annotate_anndata():
    adata = _make_adata()
    feats = features_from_anndata(adata)
    result = run_analysis(
        feats, coords_from_anndata(adata), embedding_from_anndata(adata), _config()
    )
    annotate_anndata(adata, result)
    assert "spatial_domain" in adata.obs.columns
    assert adata.obs["spatial_domain"].tolist() == result.domains.labels.tolist()
    assert adata.uns["spatial_domain"]["seed"] == 0
    assert "moranI" in adata.uns
    assert "spatial_domain_markers" in adata.uns
