"""
PMFIS: fuzzy-rule calibration of low-cost PM2.5 sensors.

This package provides:
  - Sugeno fuzzy inference (min conjunction, weighted-average defuzzification)
  - Rule importance from firing strengths (binary / weighted activation)
  - Importance-ranked rule pruning with optional ANFIS-style re-tuning
  - Per-sensor and overall accuracy metrics along the pruning sweep
  - A CLI for the common workflows (see `pmfis --help`)
"""

from .activation import ActivationAnalyzer
from .engine import FuzzyInferenceEngine
from .errors import ConfigurationError, PmfisError, TrainerFailure
from .fis import FuzzyInferenceSystem, InputVariable, OutputFunction, OutputVariable, Rule
from .membership import MembershipFunction
from .metrics import Evaluator, MetricsRow, MetricsTable
from .reduction import ReductionStep, RulePruner
from .sweep import PruningOrchestrator, ReductionTrajectory

__all__ = [
    "__version__",
    "ActivationAnalyzer",
    "ConfigurationError",
    "Evaluator",
    "FuzzyInferenceEngine",
    "FuzzyInferenceSystem",
    "InputVariable",
    "MembershipFunction",
    "MetricsRow",
    "MetricsTable",
    "OutputFunction",
    "OutputVariable",
    "PmfisError",
    "PruningOrchestrator",
    "ReductionStep",
    "ReductionTrajectory",
    "Rule",
    "RulePruner",
    "TrainerFailure",
]

__version__ = "0.1.0"
