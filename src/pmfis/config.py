"""
pmfis.config

Run configuration for rule-reduction experiments.

A config can be built in code, from a dict, or from a YAML file. Without
feature_names the system's input names are used as dataset columns:

  feature_names: [pm2p5_x, relative_humidity, temperature, pressure]
  floor_rule_count: 2
  activation_method: weighted
  retrain: true
  epoch_budget: 100

display_results only controls verbosity; it never changes results.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .activation import resolve_method
from .data import GROUP_COL, TARGET_COL, TIME_COL
from .errors import ConfigurationError
from .utils import load_yaml


@dataclass
class ReductionConfig:
    feature_names: Optional[List[str]] = None  # None: use the system's input names
    target_col: str = TARGET_COL
    group_col: str = GROUP_COL
    time_col: str = TIME_COL

    floor_rule_count: int = 2
    exact_rule_count: Optional[int] = None  # set to evaluate a single rule count instead of a sweep

    activation_method: str = "binary"  # "binary" (BAM) or "weighted" (WAM)
    normalize_importance: bool = False

    retrain: bool = False
    epoch_budget: int = 100
    warm_start: bool = False

    display_results: bool = False
    n_jobs: int = 1

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.feature_names is not None:
            if not self.feature_names:
                raise ConfigurationError("feature_names must list at least one column.")
            if self.target_col in self.feature_names:
                raise ConfigurationError("target_col cannot be used as a feature.")
            self.feature_names = list(self.feature_names)
        if self.floor_rule_count < 1:
            raise ConfigurationError("floor_rule_count must be >= 1.")
        if self.exact_rule_count is not None and self.exact_rule_count < 1:
            raise ConfigurationError("exact_rule_count must be >= 1.")
        if self.epoch_budget < 1:
            raise ConfigurationError("epoch_budget must be >= 1.")
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero (use -1 for all cores).")
        self.activation_method = resolve_method(self.activation_method)

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "ReductionConfig":
        known = {f.name for f in fields(ReductionConfig)}
        unknown = sorted(set(obj) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return ReductionConfig(**obj)

    @staticmethod
    def from_yaml(path: str | Path) -> "ReductionConfig":
        return ReductionConfig.from_dict(load_yaml(path))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
