"""Statistical engines for spotgraph."""

from spotgraph.stats.markers import MarkerSort, rank_domain_features
from spotgraph.stats.moran import (
    FeatureSubsetPolicy,
    MoranTest,
    moran_test,
    morans_i,
    select_features,
    spatial_autocorrelation,
)
from spotgraph.stats.scoring import bh_fdr

__all__ = [
    "FeatureSubsetPolicy",
    "MarkerSort",
    "MoranTest",
    "bh_fdr",
    "moran_test",
    "morans_i",
    "rank_domain_features",
    "select_features",
    "spatial_autocorrelation",
]
