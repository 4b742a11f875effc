"""Core containers and neighbor-graph construction."""

from spotgraph.core.neighbors import (
    CoordinateIndex,
    build_embedding_graph,
    build_knn_graph,
    build_spatial_graph,
    fuse_graphs,
    row_standardize,
    spatial_weights,
)
from spotgraph.core.types import (
    AUTOCORRELATION_COLUMNS,
    MARKER_COLUMNS,
    AnalysisResult,
    AutocorrelationTable,
    DomainResult,
    FeatureMatrix,
    MarkerTable,
    NeighborGraph,
)

__all__ = [
    "AUTOCORRELATION_COLUMNS",
    "MARKER_COLUMNS",
    "AnalysisResult",
    "AutocorrelationTable",
    "CoordinateIndex",
    "DomainResult",
    "FeatureMatrix",
    "MarkerTable",
    "NeighborGraph",
    "build_embedding_graph",
    "build_knn_graph",
    "build_spatial_graph",
    "fuse_graphs",
    "row_standardize",
    "spatial_weights",
]
