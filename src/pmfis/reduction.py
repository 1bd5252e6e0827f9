"""
pmfis.reduction

Importance-ranked rule pruning.

Rules are ranked by importance (descending, ties keep the original order).
A sweep from N rules down to `floor` yields one step per rule count:

  iteration 1 -> top N rules (the full system)
  iteration 2 -> top N-1 rules
  ...
  iteration N-floor+1 -> top `floor` rules

so each step drops the single least important survivor of the previous one
and the kept sets are nested. A reduced system holds its rules in their
original relative order, not in importance order.

Optionally each reduced system is re-tuned by a Trainer. A trainer error does
not stop the sweep: it is attached to the step as a TrainerFailure.
ConfigurationError raised by the trainer (bad inputs, unsupported system)
propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol, Tuple

import numpy as np

from .errors import ConfigurationError, TrainerFailure
from .fis import FuzzyInferenceSystem

logger = logging.getLogger(__name__)


class Trainer(Protocol):
    """
    Re-optimizes the numeric parameters of a system with fixed rule structure.
    """

    def tune(self, fis: FuzzyInferenceSystem, X: np.ndarray, y: np.ndarray, epochs: int) -> FuzzyInferenceSystem:
        ...


@dataclass(frozen=True)
class ReductionStep:
    """
    One pruning iteration.

    kept_indices: indices into the base system, ascending
    fis         : the reduced system (parameters as in the base system)
    tuned_fis   : the re-tuned system, None if no trainer ran or it failed
    failure     : TrainerFailure if re-tuning failed
    """
    iteration: int
    kept_indices: Tuple[int, ...]
    fis: FuzzyInferenceSystem
    tuned_fis: Optional[FuzzyInferenceSystem] = None
    failure: Optional[TrainerFailure] = None

    @property
    def num_rules(self) -> int:
        return len(self.kept_indices)

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @property
    def final_fis(self) -> Optional[FuzzyInferenceSystem]:
        """
        The system to evaluate: tuned if a trainer ran, None if it failed.
        """
        if self.failure is not None:
            return None
        return self.tuned_fis if self.tuned_fis is not None else self.fis


def rank_rules(importance) -> np.ndarray:
    """
    Rule indices sorted by importance, most important first.

    Stable: equal scores keep ascending index order. NaN ranks last.
    """
    imp = np.asarray(importance, dtype=np.float64)
    if imp.ndim != 1:
        raise ConfigurationError("importance must be a 1-D vector.")
    key = np.where(np.isnan(imp), np.inf, -imp)
    return np.argsort(key, kind="stable")


class RulePruner:
    """
    Builds nested rule subsets from an importance vector.

    trainer / X / y / epochs enable re-tuning of every reduced system.
    warm_start=True re-tunes starting from the previous iteration's tuned
    system instead of the base system's parameters.
    """

    def __init__(
        self,
        trainer: Optional[Trainer] = None,
        X: Optional[np.ndarray] = None,
        y: Optional[np.ndarray] = None,
        epochs: int = 100,
        warm_start: bool = False,
    ):
        if trainer is not None:
            if X is None or y is None:
                raise ConfigurationError("Retraining needs training inputs X and targets y.")
            X = np.asarray(X, dtype=np.float64)
            y = np.asarray(y, dtype=np.float64).reshape(-1)
            if X.shape[0] != y.shape[0]:
                raise ConfigurationError(
                    f"Input/output size mismatch: {X.shape[0]} samples vs {y.shape[0]} targets."
                )
        if epochs < 1:
            raise ConfigurationError("epochs must be >= 1.")
        self.trainer = trainer
        self.X = X
        self.y = y
        self.epochs = int(epochs)
        self.warm_start = warm_start

    rank = staticmethod(rank_rules)

    @staticmethod
    def _check(fis: FuzzyInferenceSystem, importance, count: int, what: str) -> np.ndarray:
        imp = np.asarray(importance, dtype=np.float64)
        n = fis.num_rules
        if imp.shape != (n,):
            raise ConfigurationError(f"importance has shape {imp.shape}, expected ({n},).")
        if not 1 <= count <= n:
            raise ConfigurationError(f"{what} must be within [1, {n}], got {count}.")
        return imp

    def sweep(self, fis: FuzzyInferenceSystem, importance, floor: int = 2) -> Iterator[ReductionStep]:
        """
        Yield N-floor+1 steps keeping N, N-1, ..., floor rules.

        Arguments are validated immediately; steps are built lazily.
        """
        imp = self._check(fis, importance, floor, "floor")
        return self._iter_sweep(fis, rank_rules(imp), floor)

    def _iter_sweep(self, fis: FuzzyInferenceSystem, order: np.ndarray, floor: int) -> Iterator[ReductionStep]:
        n = fis.num_rules
        previous: Optional[ReductionStep] = None
        for iteration, keep in enumerate(range(n, floor - 1, -1), start=1):
            kept = tuple(sorted(int(i) for i in order[:keep]))
            step = self._reduce(fis, kept, iteration, previous)
            if step.failure is None:
                previous = step
            yield step

    def exact(self, fis: FuzzyInferenceSystem, importance, n_rules: int) -> ReductionStep:
        """
        Single step keeping the `n_rules` most important rules.
        """
        imp = self._check(fis, importance, n_rules, "n_rules")
        kept = tuple(sorted(int(i) for i in rank_rules(imp)[:n_rules]))
        return self._reduce(fis, kept, 1, None)

    def _reduce(
        self,
        fis: FuzzyInferenceSystem,
        kept: Tuple[int, ...],
        iteration: int,
        previous: Optional[ReductionStep],
    ) -> ReductionStep:
        reduced = fis.subset(kept)
        if self.trainer is None:
            return ReductionStep(iteration=iteration, kept_indices=kept, fis=reduced)

        start = reduced
        if self.warm_start and previous is not None and previous.tuned_fis is not None:
            positions = np.searchsorted(np.asarray(previous.kept_indices), np.asarray(kept))
            start = previous.tuned_fis.subset(positions.tolist())

        logger.info("Retraining system with %d rules...", len(kept))
        try:
            tuned = self.trainer.tune(start, self.X, self.y, self.epochs)
        except ConfigurationError:
            # caller error, not a tuning failure
            raise
        except Exception as exc:
            if isinstance(exc, TrainerFailure):
                failure = exc
                failure.iteration = iteration
            else:
                failure = TrainerFailure(f"{type(exc).__name__}: {exc}", iteration)
                failure.__cause__ = exc
            logger.warning("Retraining failed at iteration %d (%d rules): %s", iteration, len(kept), exc)
            return ReductionStep(iteration=iteration, kept_indices=kept, fis=reduced, failure=failure)

        if not isinstance(tuned, FuzzyInferenceSystem) or not tuned.same_structure(reduced):
            failure = TrainerFailure("Trainer changed the rule structure of the system.", iteration)
            logger.warning("Retraining failed at iteration %d: %s", iteration, failure)
            return ReductionStep(iteration=iteration, kept_indices=kept, fis=reduced, failure=failure)

        return ReductionStep(iteration=iteration, kept_indices=kept, fis=reduced, tuned_fis=tuned)
