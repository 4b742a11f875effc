from __future__ import annotations

import json
from pathlib import Path

import pytest

from spotgraph.config import (
    AnalysisConfig,
    DomainConfig,
    GraphConfig,
    analysis_config_from_dict,
    load_analysis_config,
    load_json_config,
)
from spotgraph.errors import InvalidParameterError


def test_load_analysis_config(tmp_path: Path):
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text(
        json.dumps(
            {
                "graph": {"spatial_k": 8, "embedding_k": 20},
                "moran": {"policy": "explicit", "features": ["A", "B"]},
                "domains": {"resolution": 1.5, "seed": 3},
                "markers": {"min_observations": 4, "sort_by": "p_value"},
            }
        ),
        encoding="utf-8",
    )
    cfg = load_analysis_config(cfg_path)
    assert cfg.graph.spatial_k == 8
    assert cfg.moran.features == ("A", "B")
    assert cfg.domains.resolution == 1.5
    assert cfg.domains.seed == 3
    assert cfg.markers.sort_by == "p_value"
    assert cfg.to_dict()["moran"]["features"] == ["A", "B"]


def test_defaults_fill_missing_sections():
    cfg = analysis_config_from_dict({})
    assert cfg == AnalysisConfig()


def test_unknown_keys_rejected():
    with pytest.raises(InvalidParameterError, match="Unknown config sections"):
        analysis_config_from_dict({"plots": {}})
    with pytest.raises(InvalidParameterError, match="Unknown keys in 'domains'"):
        analysis_config_from_dict({"domains": {"n_domains": 4}})


def test_bad_values_rejected():
    with pytest.raises(InvalidParameterError, match="resolution"):
        DomainConfig(resolution=0.0)
    with pytest.raises(InvalidParameterError, match="spatial_k"):
        GraphConfig(spatial_k=0)
    with pytest.raises(InvalidParameterError):
        analysis_config_from_dict({"domains": {"method": "kmeans"}})


def test_invalid_json_reports_line_and_column(tmp_path: Path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"a": 1,}\n', encoding="utf-8")
    with pytest.raises(ValueError, match=r"line \d+, column \d+"):
        load_json_config(bad)


def test_non_object_json_config_rejected(tmp_path: Path):
    bad = tmp_path / "list.json"
    bad.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError, match="expected JSON object"):
        load_json_config(bad)


def test_non_json_extension_rejected(tmp_path: Path):
    bad = tmp_path / "cfg.yaml"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError, match="Use a .json config file"):
        load_json_config(bad)


def test_missing_file_rejected(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_json_config(tmp_path / "absent.json")
