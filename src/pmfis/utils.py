"""
pmfis.utils

Small shared helpers (JSON / YAML / paths).

Keep this module free of pmfis imports so any module can use it without
circular imports.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import yaml


def ensure_dir(path: str | Path) -> Path:
    """
    Ensure a directory exists and return it as a Path.
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def read_json(path: str | Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json(
    obj: Dict[str, Any],
    path: str | Path,
    indent: int = 2,
    sort_keys: bool = True,
) -> None:
    """
    Write a dict to JSON, creating parent directories.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=indent, sort_keys=sort_keys)


def load_yaml(path: str | Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_csv_list(s: Optional[str]) -> Optional[List[str]]:
    """
    "a, b,,c" -> ["a", "b", "c"]; None or blank -> None.
    """
    if s is None:
        return None
    parts = [p.strip() for p in s.split(",") if p.strip()]
    return parts if parts else None


def chunk_bounds(n: int, chunk_size: int) -> List[tuple]:
    """
    [(start, stop), ...] covering range(n) in chunks of chunk_size.
    """
    chunk_size = max(1, int(chunk_size))
    return [(i, min(i + chunk_size, n)) for i in range(0, n, chunk_size)]


def nan_to_none(values) -> List[Optional[float]]:
    """
    Float sequence -> JSON-friendly list (NaN becomes None).
    """
    return [None if not np.isfinite(v) else float(v) for v in np.asarray(values, dtype=np.float64)]
