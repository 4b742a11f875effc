"""Run orchestration, persistence, and AnnData adapters."""

from spotgraph.pipeline.run import run_analysis, write_analysis

__all__ = ["run_analysis", "write_analysis"]
