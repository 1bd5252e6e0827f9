"""
pmfis.engine

Batch evaluation of a FuzzyInferenceSystem.

For each sample and rule:
  1) membership of each non-"don't care" input in the MF the rule references
     (0 when the index is out of range for that input)
  2) firing strength = min over those memberships (1 if every input is "don't care")

Prediction (weighted average defuzzification):
  y = sum_r(w_r * weight_r * z_r) / sum_r(w_r * weight_r)

If no rule fires for a sample the prediction is NaN. The engine never raises
for malformed rule indices or empty firing; only for a wrongly shaped input
matrix.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from .errors import ConfigurationError
from .fis import FuzzyInferenceSystem
from .utils import chunk_bounds

logger = logging.getLogger(__name__)


def membership_table(fis: FuzzyInferenceSystem, X: np.ndarray) -> list:
    """
    Per input j: (N, num_mfs_j) membership degrees of X[:, j] in each MF.
    """
    tables = []
    for j, var in enumerate(fis.inputs):
        if var.num_mfs == 0:
            tables.append(np.zeros((X.shape[0], 0), dtype=np.float64))
            continue
        cols = [mf.evaluate(X[:, j]) for mf in var.membership_functions]
        tables.append(np.stack(cols, axis=1))
    return tables


def firing_strengths(fis: FuzzyInferenceSystem, X: np.ndarray) -> np.ndarray:
    """
    (N, R) min-conjunction firing strength of every rule for every sample.
    """
    n = X.shape[0]
    tables = membership_table(fis, X)
    firing = np.ones((n, fis.num_rules), dtype=np.float64)
    for r, rule in enumerate(fis.rules):
        for j, mf_index in enumerate(rule.antecedent):
            if mf_index == 0:
                continue
            if 1 <= mf_index <= fis.inputs[j].num_mfs:
                degree = tables[j][:, mf_index - 1]
            else:
                degree = 0.0
            firing[:, r] = np.minimum(firing[:, r], degree)
    return firing


def defuzzify(fis: FuzzyInferenceSystem, X: np.ndarray, firing: np.ndarray) -> np.ndarray:
    """
    Weighted average of rule outputs. NaN where the total firing is zero.
    """
    weights = np.array([r.weight for r in fis.rules], dtype=np.float64)
    w = firing * weights
    total = w.sum(axis=1)
    z = fis.rule_outputs(X)
    numer = (w * z).sum(axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        y = np.where(total > 0.0, numer / np.where(total > 0.0, total, 1.0), np.nan)
    return y


def _evaluate_block(fis: FuzzyInferenceSystem, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    firing = firing_strengths(fis, X)
    return defuzzify(fis, X, firing), firing


class FuzzyInferenceEngine:
    """
    Evaluates systems on sample matrices.

    With n_jobs != 1 the samples are split into chunks evaluated by joblib
    workers and concatenated back in sample order.
    """

    def __init__(self, n_jobs: int = 1, chunk_size: int = 8192):
        self.n_jobs = n_jobs
        self.chunk_size = chunk_size

    def _check_input(self, fis: FuzzyInferenceSystem, X) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1 and fis.num_inputs == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2 or X.shape[1] != fis.num_inputs:
            raise ConfigurationError(
                f"Expected a (n_samples, {fis.num_inputs}) input matrix, got shape {X.shape}."
            )
        return X

    def evaluate(self, fis: FuzzyInferenceSystem, X) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns:
          predictions: (N,) with NaN where no rule fired
          firing     : (N, R) firing strength per sample and rule
        """
        X = self._check_input(fis, X)
        bounds = chunk_bounds(X.shape[0], self.chunk_size)

        if self.n_jobs == 1 or len(bounds) <= 1:
            y, firing = _evaluate_block(fis, X)
        else:
            parts = Parallel(n_jobs=self.n_jobs)(
                delayed(_evaluate_block)(fis, X[start:stop]) for start, stop in bounds
            )
            y = np.concatenate([p[0] for p in parts])
            firing = np.concatenate([p[1] for p in parts], axis=0)

        n_undefined = int(np.isnan(y).sum())
        if n_undefined:
            logger.debug("%d of %d samples fired no rule (prediction is NaN).", n_undefined, y.shape[0])
        return y, firing

    def predict(self, fis: FuzzyInferenceSystem, X) -> np.ndarray:
        y, _firing = self.evaluate(fis, X)
        return y

    def evaluate_subset(
        self,
        fis: FuzzyInferenceSystem,
        indices: Iterable[int],
        X,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate only the rules at `indices`; `fis` itself is left untouched.
        """
        return self.evaluate(fis.subset(indices), X)


def evaluate(fis: FuzzyInferenceSystem, X, n_jobs: Optional[int] = 1) -> Tuple[np.ndarray, np.ndarray]:
    return FuzzyInferenceEngine(n_jobs=n_jobs or 1).evaluate(fis, X)
