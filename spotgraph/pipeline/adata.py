"""AnnData adapters: pull inputs out of an AnnData and write results back."""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from spotgraph.core.types import AnalysisResult, FeatureMatrix
from spotgraph.core.utils import finite_2d

SPATIAL_KEYS: tuple[str, ...] = ("spatial", "X_spatial")


def features_from_anndata(adata, layer: str | None = None) -> FeatureMatrix:
    if layer is None:
        X = adata.X
    else:
        if layer not in adata.layers:
            raise KeyError(f"adata.layers['{layer}'] not found.")
        X = adata.layers[layer]
    return FeatureMatrix(
        X=X,
        obs_names=tuple(adata.obs_names),
        feature_names=tuple(adata.var_names),
    )


def coords_from_anndata(adata, key: str | None = None) -> np.ndarray:
    """Return (N, 2) coordinates from `adata.obsm`."""
    keys = (key,) if key else SPATIAL_KEYS
    for k in keys:
        if k in adata.obsm:
            return finite_2d(f"adata.obsm['{k}']", np.asarray(adata.obsm[k])[:, :2], min_cols=2)
    raise KeyError(f"Spatial coordinates not found in adata.obsm. Tried: {', '.join(keys)}")


def embedding_from_anndata(adata, key: str = "X_pca") -> np.ndarray | None:
    if key not in adata.obsm:
        return None
    return finite_2d(f"adata.obsm['{key}']", np.asarray(adata.obsm[key]))


def annotate_anndata(
    adata,
    result: AnalysisResult,
    key_added: str = "spatial_domain",
) -> Any:
    """Write domain labels to `adata.obs` and result tables to `adata.uns`."""
    if result.domains is not None:
        labels = result.domains.labels.reindex([str(o) for o in adata.obs_names])
        adata.obs[key_added] = pd.Series(labels.astype("Int64").array, index=adata.obs.index)
        adata.uns[key_added] = {
            "resolution": float(result.domains.resolution),
            "seed": int(result.domains.seed),
            "method": result.domains.method,
            "modularity": float(result.domains.modularity),
        }
    if result.autocorrelation is not None:
        adata.uns["moranI"] = result.autocorrelation.frame.set_index("feature")
    if result.markers is not None:
        adata.uns[f"{key_added}_markers"] = result.markers.frame.copy()
    return adata
