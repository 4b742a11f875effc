"""Spatial domain detection."""

from spotgraph.domains.detector import (
    DomainMethod,
    GraphFusion,
    build_domain_graph,
    detect_domains,
)
from spotgraph.domains.leiden import leiden
from spotgraph.domains.louvain import LouvainResult, louvain, modularity

__all__ = [
    "DomainMethod",
    "GraphFusion",
    "LouvainResult",
    "build_domain_graph",
    "detect_domains",
    "leiden",
    "louvain",
    "modularity",
]
