"""End-to-end spotgraph analysis: graphs, Moran's I, domains, markers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

from spotgraph._version import __version__
from spotgraph.config import AnalysisConfig
from spotgraph.core.neighbors import build_embedding_graph, build_spatial_graph
from spotgraph.core.types import AnalysisResult, FeatureMatrix
from spotgraph.domains.detector import detect_domains
from spotgraph.errors import InvalidParameterError
from spotgraph.pipeline.io import (
    ensure_dir,
    write_autocorrelation,
    write_domain_labels,
    write_markers,
    write_run_summary,
)
from spotgraph.stats.markers import rank_domain_features
from spotgraph.stats.moran import select_features, spatial_autocorrelation

logger = logging.getLogger(__name__)


def run_analysis(
    features: FeatureMatrix,
    coords: np.ndarray,
    embedding: np.ndarray | None = None,
    config: AnalysisConfig | None = None,
    *,
    domain_mask: np.ndarray | None = None,
    log: logging.Logger | None = None,
) -> AnalysisResult:
    """Run every engine over one immutable snapshot of the inputs."""
    cfg = config or AnalysisConfig()
    log = log or logger

    xy = np.asarray(coords, dtype=float)
    if xy.ndim != 2 or xy.shape[0] != features.n_obs:
        raise InvalidParameterError(
            f"coords shape {xy.shape} does not match n_obs={features.n_obs}."
        )
    if embedding is not None and np.asarray(embedding).shape[0] != features.n_obs:
        raise InvalidParameterError(
            f"embedding rows {np.asarray(embedding).shape[0]} do not match n_obs={features.n_obs}."
        )

    spatial_graph = build_spatial_graph(
        xy, cfg.graph.spatial_k, weighted=cfg.graph.weighted
    )
    log.info(
        "Spatial graph: n_obs=%d k=%d edges=%d",
        spatial_graph.n_obs,
        spatial_graph.k,
        spatial_graph.n_edges,
    )

    subset = select_features(
        features,
        cfg.moran.policy,
        n_features=min(int(cfg.moran.n_features), features.n_features),
        explicit=cfg.moran.features,
    )
    autocorrelation = spatial_autocorrelation(
        features, spatial_graph, subset, n_jobs=cfg.moran.n_jobs, log=log
    )

    embedding_graph = None
    if embedding is not None:
        embedding_graph = build_embedding_graph(
            embedding, cfg.graph.embedding_k, weighted=cfg.graph.weighted
        )
        log.info(
            "Embedding graph: n_obs=%d k=%d edges=%d",
            embedding_graph.n_obs,
            embedding_graph.k,
            embedding_graph.n_edges,
        )

    dc = cfg.domains
    domains = detect_domains(
        spatial_graph,
        embedding_graph,
        obs_names=features.obs_names,
        method=dc.method,
        fusion=dc.fusion,
        resolution=dc.resolution,
        seed=dc.seed,
        max_iterations=dc.max_iterations,
        tol=dc.tol,
        spatial_weight=dc.spatial_weight,
        mask=domain_mask,
        log=log,
    )

    mc = cfg.markers
    markers = rank_domain_features(
        features,
        domains,
        min_observations=mc.min_observations,
        min_percent_in=mc.min_percent_in,
        min_log_fold_change=mc.min_log_fold_change,
        pseudo_count=mc.pseudo_count,
        sort_by=mc.sort_by,
        n_jobs=mc.n_jobs,
        log=log,
    )

    skipped = {
        "degenerate_features": int(autocorrelation.n_skipped),
        "excluded_domains": int(markers.n_skipped),
        "unassigned_observations": int(domains.n_unassigned),
    }
    if any(skipped.values()):
        log.warning(
            "Skipped units: degenerate_features=%d excluded_domains=%d unassigned_observations=%d",
            skipped["degenerate_features"],
            skipped["excluded_domains"],
            skipped["unassigned_observations"],
        )
    return AnalysisResult(
        autocorrelation=autocorrelation,
        domains=domains,
        markers=markers,
        skipped=skipped,
    )


def write_analysis(
    result: AnalysisResult,
    outdir: str | Path,
    config: AnalysisConfig | None = None,
) -> dict[str, Path]:
    """Write result tables and `summary.json` under `outdir`."""
    root = Path(outdir)
    ensure_dir(root)
    paths: dict[str, Path] = {}
    if result.autocorrelation is not None:
        paths["autocorrelation"] = write_autocorrelation(
            root / "autocorrelation.csv", result.autocorrelation.frame
        )
    if result.domains is not None:
        paths["domains"] = write_domain_labels(root / "domains.csv", result.domains.labels)
    if result.markers is not None:
        paths["markers"] = write_markers(root / "markers.csv", result.markers.frame)

    summary = {
        "version": __version__,
        "created_utc": datetime.now(timezone.utc).isoformat(),
        "config": (config or AnalysisConfig()).to_dict(),
        "skipped": dict(result.skipped),
        "tables": {k: v.name for k, v in paths.items()},
    }
    if result.domains is not None:
        summary["domains"] = {
            "n_domains": result.domains.n_domains,
            "modularity": result.domains.modularity,
            "n_levels": result.domains.n_levels,
            "n_iterations": result.domains.n_iterations,
            "converged": result.domains.converged,
        }
    if result.markers is not None:
        summary["excluded_domains"] = list(result.markers.excluded_domains)
    paths["summary"] = write_run_summary(root / "summary.json", summary)
    return paths
