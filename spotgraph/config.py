"""Configuration loading and typed parameter containers for spotgraph runs."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from spotgraph.domains.detector import DomainMethod, GraphFusion
from spotgraph.errors import InvalidParameterError
from spotgraph.stats.markers import MarkerSort
from spotgraph.stats.moran import FeatureSubsetPolicy


@dataclass(frozen=True)
class GraphConfig:
    """Neighbor counts for the spatial and embedding graphs."""

    spatial_k: int = 6
    embedding_k: int = 15
    weighted: bool = False

    def __post_init__(self) -> None:
        for name in ("spatial_k", "embedding_k"):
            if int(getattr(self, name)) < 1:
                raise InvalidParameterError(f"{name} must be >= 1, got {getattr(self, name)!r}.")


@dataclass(frozen=True)
class MoranConfig:
    policy: str = FeatureSubsetPolicy.TOP_VARIANCE.value
    n_features: int = 2000
    features: tuple[str, ...] | None = None
    n_jobs: int = 1

    def __post_init__(self) -> None:
        FeatureSubsetPolicy.parse(self.policy)
        if self.features is not None:
            object.__setattr__(self, "features", tuple(str(f) for f in self.features))
        if int(self.n_features) < 1:
            raise InvalidParameterError(f"n_features must be >= 1, got {self.n_features!r}.")


@dataclass(frozen=True)
class DomainConfig:
    method: str = DomainMethod.LOUVAIN.value
    fusion: str = GraphFusion.UNION.value
    resolution: float = 1.0
    seed: int = 0
    max_iterations: int = 100
    tol: float = 1e-7
    spatial_weight: float = 0.5

    def __post_init__(self) -> None:
        DomainMethod.parse(self.method)
        GraphFusion.parse(self.fusion)
        if not float(self.resolution) > 0.0:
            raise InvalidParameterError(f"resolution must be > 0, got {self.resolution!r}.")
        if int(self.max_iterations) < 1:
            raise InvalidParameterError(
                f"max_iterations must be >= 1, got {self.max_iterations!r}."
            )
        if not 0.0 <= float(self.spatial_weight) <= 1.0:
            raise InvalidParameterError(
                f"spatial_weight must lie in [0, 1], got {self.spatial_weight!r}."
            )


@dataclass(frozen=True)
class MarkerConfig:
    min_observations: int = 10
    min_percent_in: float = 0.1
    min_log_fold_change: float = 0.25
    pseudo_count: float = 1e-9
    sort_by: str = MarkerSort.LOG_FOLD_CHANGE.value
    n_jobs: int = 1

    def __post_init__(self) -> None:
        MarkerSort.parse(self.sort_by)
        if int(self.min_observations) < 1:
            raise InvalidParameterError(
                f"min_observations must be >= 1, got {self.min_observations!r}."
            )


@dataclass(frozen=True)
class AnalysisConfig:
    graph: GraphConfig = field(default_factory=GraphConfig)
    moran: MoranConfig = field(default_factory=MoranConfig)
    domains: DomainConfig = field(default_factory=DomainConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if out["moran"]["features"] is not None:
            out["moran"]["features"] = list(out["moran"]["features"])
        return out


_SECTIONS: dict[str, type] = {
    "graph": GraphConfig,
    "moran": MoranConfig,
    "domains": DomainConfig,
    "markers": MarkerConfig,
}


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a config mapping from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def analysis_config_from_dict(data: dict[str, Any]) -> AnalysisConfig:
    """Build an `AnalysisConfig`; unknown sections or keys are rejected."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise InvalidParameterError(f"Unknown config sections: {', '.join(unknown)}")
    parts: dict[str, Any] = {}
    for name, cls in _SECTIONS.items():
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise InvalidParameterError(
                f"Config section '{name}' must be an object, got {type(section).__name__}."
            )
        allowed = {f.name for f in fields(cls)}
        bad = sorted(set(section) - allowed)
        if bad:
            raise InvalidParameterError(f"Unknown keys in '{name}': {', '.join(bad)}")
        parts[name] = cls(**section)
    return AnalysisConfig(**parts)


def load_analysis_config(path: str | Path) -> AnalysisConfig:
    return analysis_config_from_dict(load_json_config(path))
