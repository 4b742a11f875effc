"""Table persistence and logging helpers for spotgraph runs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from spotgraph.core.types import AUTOCORRELATION_COLUMNS, MARKER_COLUMNS

LABEL_COLUMNS: tuple[str, ...] = ("obs", "domain")


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=_json_default)


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


NA_TOKENS: tuple[str, ...] = ("", "nan", "NaN")


def _read_table(
    path: str | Path,
    required: tuple[str, ...],
    numeric: tuple[str, ...] = (),
    **kwargs,
) -> pd.DataFrame:
    """Read a CSV table; only `numeric` columns parse missing-value tokens."""
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"Table not found: {src}")
    frame = pd.read_csv(
        src,
        float_precision="round_trip",
        keep_default_na=False,
        na_values={col: list(NA_TOKENS) for col in numeric},
        **kwargs,
    )
    missing = [c for c in required if c not in frame.columns]
    if missing:
        raise ValueError(f"Table '{src}' is missing columns: {', '.join(missing)}")
    return frame


def write_autocorrelation(path: str | Path, frame: pd.DataFrame) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    extra = [c for c in frame.columns if c not in AUTOCORRELATION_COLUMNS]
    frame[list(AUTOCORRELATION_COLUMNS) + extra].to_csv(out, index=False)
    return out


def read_autocorrelation(path: str | Path) -> pd.DataFrame:
    frame = _read_table(
        path,
        AUTOCORRELATION_COLUMNS,
        numeric=AUTOCORRELATION_COLUMNS[1:-1] + ("adjusted_p_value",),
        dtype={"feature": str},
    )
    frame["valid"] = frame["valid"].astype(bool)
    return frame


def write_domain_labels(path: str | Path, labels: pd.Series) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    frame = pd.DataFrame(
        {
            "obs": labels.index.astype(str),
            "domain": labels.astype("Int64").to_numpy(),
        },
        columns=list(LABEL_COLUMNS),
    )
    frame.to_csv(out, index=False)
    return out


def read_domain_labels(path: str | Path) -> pd.Series:
    frame = _read_table(
        path, LABEL_COLUMNS, numeric=("domain",), dtype={"obs": str, "domain": "Int64"}
    )
    return pd.Series(
        frame["domain"].to_numpy(),
        index=pd.Index(frame["obs"].tolist()),
        name="domain",
        dtype="Int64",
    )


def write_markers(path: str | Path, frame: pd.DataFrame) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    frame[list(MARKER_COLUMNS)].to_csv(out, index=False)
    return out


def read_markers(path: str | Path) -> pd.DataFrame:
    frame = _read_table(
        path,
        MARKER_COLUMNS,
        numeric=MARKER_COLUMNS[2:],
        dtype={"feature": str, "domain": np.int64},
    )
    return frame[list(MARKER_COLUMNS)]


def write_run_summary(path: str | Path, summary: dict[str, Any]) -> Path:
    out = Path(path)
    write_json(out, summary)
    return out
