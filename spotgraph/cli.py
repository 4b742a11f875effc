"""Command-line interface for spotgraph."""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Iterable

import scanpy as sc

from spotgraph.config import AnalysisConfig, load_analysis_config
from spotgraph.core.neighbors import build_spatial_graph
from spotgraph.pipeline.adata import (
    annotate_anndata,
    coords_from_anndata,
    embedding_from_anndata,
    features_from_anndata,
)
from spotgraph.pipeline.io import ensure_dir, setup_logger, write_autocorrelation
from spotgraph.pipeline.run import run_analysis, write_analysis
from spotgraph.stats.moran import select_features, spatial_autocorrelation


def _read_adata(h5ad_path: str):
    path = Path(h5ad_path)
    if not path.exists():
        raise FileNotFoundError(f"Input file '{h5ad_path}' not found.")
    return sc.read_h5ad(path)


def _load_config(path: str | None) -> AnalysisConfig:
    if path is None:
        return AnalysisConfig()
    return load_analysis_config(path)


def _common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--h5ad", required=True, help="Path to .h5ad file")
    parser.add_argument("--outdir", default="spotgraph_out", help="Output directory")
    parser.add_argument("--config", default=None, help="JSON config file")
    parser.add_argument("--layer", default=None, help="adata.layers key (default: X)")
    parser.add_argument("--spatial-key", default=None, help="adata.obsm coordinate key")


def run_main(argv: Iterable[str] | None = None) -> int:
    """Full analysis: Moran's I, spatial domains, and domain markers."""
    parser = argparse.ArgumentParser(description="spotgraph spatial domain analysis")
    _common_args(parser)
    parser.add_argument("--embedding-key", default="X_pca", help="adata.obsm embedding key")
    parser.add_argument("--resolution", type=float, default=None, help="Override resolution")
    parser.add_argument("--seed", type=int, default=None, help="Override random seed")
    parser.add_argument(
        "--write-h5ad", action="store_true", help="Also write an annotated .h5ad"
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    ensure_dir(outdir)
    logger = setup_logger(outdir / "spotgraph.log", "spotgraph")

    cfg = _load_config(args.config)
    overrides = {}
    if args.resolution is not None:
        overrides["resolution"] = args.resolution
    if args.seed is not None:
        overrides["seed"] = args.seed
    if overrides:
        cfg = replace(cfg, domains=replace(cfg.domains, **overrides))

    adata = _read_adata(args.h5ad)
    features = features_from_anndata(adata, layer=args.layer)
    coords = coords_from_anndata(adata, key=args.spatial_key)
    embedding = embedding_from_anndata(adata, key=args.embedding_key)
    if embedding is None:
        logger.warning("adata.obsm['%s'] not found; using spatial graph only.", args.embedding_key)

    logger.info("Input: n_obs=%d n_features=%d", features.n_obs, features.n_features)
    result = run_analysis(features, coords, embedding, cfg, log=logger)
    paths = write_analysis(result, outdir, cfg)
    if args.write_h5ad:
        annotate_anndata(adata, result)
        out_h5ad = outdir / "annotated.h5ad"
        adata.write_h5ad(out_h5ad)
        paths["h5ad"] = out_h5ad
    for name, path in sorted(paths.items()):
        logger.info("Wrote %s: %s", name, path.as_posix())
    return 0


def moran_main(argv: Iterable[str] | None = None) -> int:
    """Moran's I only, over the configured feature subset."""
    parser = argparse.ArgumentParser(description="spotgraph Moran's I")
    _common_args(parser)
    parser.add_argument("--top", type=int, default=20, help="Features to print")
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    ensure_dir(outdir)
    logger = setup_logger(outdir / "spotgraph_moran.log", "spotgraph")
    cfg = _load_config(args.config)

    adata = _read_adata(args.h5ad)
    features = features_from_anndata(adata, layer=args.layer)
    graph = build_spatial_graph(
        coords_from_anndata(adata, key=args.spatial_key),
        cfg.graph.spatial_k,
        weighted=cfg.graph.weighted,
    )
    subset = select_features(
        features,
        cfg.moran.policy,
        n_features=min(int(cfg.moran.n_features), features.n_features),
        explicit=cfg.moran.features,
    )
    table = spatial_autocorrelation(
        features, graph, subset, n_jobs=cfg.moran.n_jobs, log=logger
    )
    write_autocorrelation(outdir / "autocorrelation.csv", table.frame)
    top = table.valid().head(int(args.top))
    for row in top.itertuples(index=False):
        print(f"feature={row.feature} I={row.statistic:.4f} p={row.p_value:.3g}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="spotgraph CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run Moran's I, domain detection, and marker ranking")
    sub.add_parser("moran", help="Run Moran's I only")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "run":
        return run_main(remainder)
    if args.command == "moran":
        return moran_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
