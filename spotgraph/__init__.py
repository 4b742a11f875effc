"""spotgraph public API."""

from spotgraph._version import __version__
from spotgraph.config import AnalysisConfig, load_analysis_config
from spotgraph.core.neighbors import build_embedding_graph, build_spatial_graph
from spotgraph.core.types import FeatureMatrix
from spotgraph.domains.detector import detect_domains
from spotgraph.stats.markers import rank_domain_features
from spotgraph.stats.moran import spatial_autocorrelation


def run_analysis(*args, **kwargs):
    """Lazy wrapper to keep `import spotgraph` light."""
    from spotgraph.pipeline.run import run_analysis as _run_analysis

    return _run_analysis(*args, **kwargs)


__all__ = [
    "__version__",
    "AnalysisConfig",
    "FeatureMatrix",
    "build_embedding_graph",
    "build_spatial_graph",
    "detect_domains",
    "load_analysis_config",
    "rank_domain_features",
    "run_analysis",
    "spatial_autocorrelation",
]
