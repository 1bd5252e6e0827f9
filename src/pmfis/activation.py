"""
pmfis.activation

Rule importance from firing strengths.

Two policies over an (N, R) firing matrix:
  - binary   (BAM): each sample adds 1 to every rule that fires (strength > 0)
  - weighted (WAM): each sample adds the firing strength itself to every rule that fires

Example: a rule firing with strength 0.7 in 3 samples scores 3 under BAM and
2.1 under WAM. Because strengths are <= 1, WAM never exceeds BAM for a rule.

With normalize=True the scores are divided by the number of samples
(BAM -> activation frequency, WAM -> mean contribution per sample).
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .engine import FuzzyInferenceEngine
from .errors import ConfigurationError
from .fis import FuzzyInferenceSystem
from .utils import chunk_bounds

logger = logging.getLogger(__name__)

METHODS = ("binary", "weighted")

_ALIASES = {
    "binary": "binary",
    "bam": "binary",
    "weighted": "weighted",
    "wam": "weighted",
}


def resolve_method(method: str) -> str:
    key = str(method).strip().lower()
    if key not in _ALIASES:
        raise ConfigurationError(f"Unknown activation method '{method}'. Use one of {list(METHODS)}.")
    return _ALIASES[key]


def _partial_scores(firing: np.ndarray, method: str) -> np.ndarray:
    fired = firing > 0.0
    if method == "binary":
        return fired.sum(axis=0).astype(np.float64)
    return np.where(fired, firing, 0.0).sum(axis=0)


class ActivationAnalyzer:
    """
    Accumulates per-rule activation scores.

    Parallel accumulation computes one partial vector per sample chunk and sums
    them afterwards; workers never write to a shared counter.
    """

    def __init__(
        self,
        method: str = "binary",
        normalize: bool = False,
        n_jobs: int = 1,
        chunk_size: int = 8192,
        display_results: bool = False,
    ):
        self.method = resolve_method(method)
        self.normalize = normalize
        self.n_jobs = n_jobs
        self.chunk_size = chunk_size
        self.display_results = display_results

    def importance(
        self,
        firing: np.ndarray,
        method: Optional[str] = None,
        normalize: Optional[bool] = None,
    ) -> np.ndarray:
        """
        (N, R) firing matrix -> (R,) importance vector, same rule order.

        method / normalize override the analyzer settings for this call.
        """
        method = self.method if method is None else resolve_method(method)
        normalize = self.normalize if normalize is None else normalize
        firing = np.asarray(firing, dtype=np.float64)
        if firing.ndim != 2:
            raise ConfigurationError(f"firing must be a 2-D (samples, rules) matrix, got shape {firing.shape}.")

        n_samples = firing.shape[0]
        bounds = chunk_bounds(n_samples, self.chunk_size)
        if self.n_jobs == 1 or len(bounds) <= 1:
            scores = _partial_scores(firing, method)
        else:
            partials = Parallel(n_jobs=self.n_jobs)(
                delayed(_partial_scores)(firing[start:stop], method) for start, stop in bounds
            )
            scores = np.sum(partials, axis=0)

        if self.display_results:
            log_activation_report(activation_report(scores, n_samples))

        if normalize and n_samples > 0:
            scores = scores / n_samples
        scores.setflags(write=False)
        return scores

    def analyze(
        self,
        fis: FuzzyInferenceSystem,
        X,
        method: Optional[str] = None,
        engine: Optional[FuzzyInferenceEngine] = None,
    ) -> np.ndarray:
        """
        Evaluate `fis` on X and return the importance of each of its rules.
        """
        engine = engine or FuzzyInferenceEngine(n_jobs=self.n_jobs, chunk_size=self.chunk_size)
        _y, firing = engine.evaluate(fis, X)
        return self.importance(firing, method=method)


def binary_activation(firing: np.ndarray, normalize: bool = False) -> np.ndarray:
    return ActivationAnalyzer("binary", normalize=normalize).importance(firing)


def weighted_activation(firing: np.ndarray, normalize: bool = False) -> np.ndarray:
    return ActivationAnalyzer("weighted", normalize=normalize).importance(firing)


def activation_report(scores: np.ndarray, n_samples: int) -> pd.DataFrame:
    """
    One row per rule (1-based numbering, as rules are usually presented):
      rule, activation_count, frequency_pct
    """
    scores = np.asarray(scores, dtype=np.float64)
    freq = scores / n_samples * 100.0 if n_samples > 0 else np.full_like(scores, np.nan)
    return pd.DataFrame(
        {
            "rule": np.arange(1, scores.shape[0] + 1),
            "activation_count": scores,
            "frequency_pct": freq,
        }
    )


def log_activation_report(report: pd.DataFrame) -> None:
    logger.info("Rule usage frequency analysis:")
    for row in report.itertuples(index=False):
        logger.info(
            "Rule %d: %.2f%% (Activation Count: %.6g)",
            row.rule,
            row.frequency_pct,
            row.activation_count,
        )
