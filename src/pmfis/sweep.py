"""
pmfis.sweep

Accuracy trajectory of a rule-reduction sweep.

For every step produced by RulePruner, the (possibly re-tuned) reduced system
is evaluated on the training and the held-out dataset, and the overall ("all")
row of each metrics table is recorded:

  rule_counts[k], r2_train[k], r2_test[k], mae_train[k], mae_test[k],
  mse_train[k], mse_test[k], rmse_train[k], rmse_test[k]

Iterations whose retraining failed are recorded with NaN metrics and listed in
failed_iterations; the sweep carries on with the next rule count.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import ReductionConfig
from .data import CalibrationDataset
from .engine import FuzzyInferenceEngine
from .errors import ConfigurationError
from .fis import FuzzyInferenceSystem
from .metrics import Evaluator, MetricsTable
from .reduction import ReductionStep, RulePruner, Trainer
from .utils import nan_to_none

logger = logging.getLogger(__name__)

METRICS = ("r2", "mae", "mse", "rmse")
SPLITS = ("train", "test")


@dataclass
class ReductionTrajectory:
    """
    Parallel arrays indexed by iteration (0-based; iteration k+1 of the sweep).
    """
    rule_counts: np.ndarray
    r2_train: np.ndarray
    r2_test: np.ndarray
    mae_train: np.ndarray
    mae_test: np.ndarray
    mse_train: np.ndarray
    mse_test: np.ndarray
    rmse_train: np.ndarray
    rmse_test: np.ndarray
    kept_indices: List[Tuple[int, ...]] = field(default_factory=list)
    failed_iterations: List[int] = field(default_factory=list)
    final_fis: Optional[FuzzyInferenceSystem] = None

    def __len__(self) -> int:
        return int(self.rule_counts.shape[0])

    @staticmethod
    def empty(n: int) -> "ReductionTrajectory":
        arrays = {f"{m}_{s}": np.full(n, np.nan) for m in METRICS for s in SPLITS}
        return ReductionTrajectory(rule_counts=np.zeros(n, dtype=np.int64), **arrays)

    def record(self, k: int, step: ReductionStep, train: Optional[MetricsTable], test: Optional[MetricsTable]) -> None:
        self.rule_counts[k] = step.num_rules
        self.kept_indices.append(step.kept_indices)
        for split, table in (("train", train), ("test", test)):
            if table is None:
                continue
            overall = table.overall
            for m in METRICS:
                getattr(self, f"{m}_{split}")[k] = getattr(overall, m)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(
            {
                "iteration": np.arange(1, len(self) + 1),
                "num_rules": self.rule_counts,
                "rules_removed": self.rule_counts[0] - self.rule_counts if len(self) else self.rule_counts,
            }
        )
        for m in METRICS:
            for s in SPLITS:
                df[f"{m}_{s}"] = getattr(self, f"{m}_{s}")
        df["failed"] = df["iteration"].isin(self.failed_iterations)
        df["kept_rules"] = [" ".join(str(i) for i in kept) for kept in self.kept_indices]
        return df

    def to_dict(self) -> dict:
        out = {"rule_counts": self.rule_counts.tolist(), "failed_iterations": list(self.failed_iterations)}
        for m in METRICS:
            for s in SPLITS:
                out[f"{m}_{s}"] = nan_to_none(getattr(self, f"{m}_{s}"))
        return out


class PruningOrchestrator:
    """
    Drives RulePruner -> FuzzyInferenceEngine -> Evaluator for each rule count.
    """

    def __init__(
        self,
        engine: Optional[FuzzyInferenceEngine] = None,
        evaluator: Optional[Evaluator] = None,
        trainer: Optional[Trainer] = None,
        epoch_budget: int = 100,
        warm_start: bool = False,
        display_results: bool = False,
    ):
        self.engine = engine or FuzzyInferenceEngine()
        self.evaluator = evaluator or Evaluator(display_results=display_results)
        self.trainer = trainer
        self.epoch_budget = epoch_budget
        self.warm_start = warm_start
        self.display_results = display_results

    @staticmethod
    def from_config(cfg: ReductionConfig, trainer: Optional[Trainer] = None) -> "PruningOrchestrator":
        if cfg.retrain and trainer is None:
            raise ConfigurationError("retrain is enabled but no trainer was given.")
        return PruningOrchestrator(
            engine=FuzzyInferenceEngine(n_jobs=cfg.n_jobs),
            evaluator=Evaluator(display_results=cfg.display_results),
            trainer=trainer if cfg.retrain else None,
            epoch_budget=cfg.epoch_budget,
            warm_start=cfg.warm_start,
            display_results=cfg.display_results,
        )

    def _pruner(self, train: CalibrationDataset) -> RulePruner:
        if self.trainer is None:
            return RulePruner(epochs=self.epoch_budget)
        return RulePruner(
            trainer=self.trainer,
            X=train.X,
            y=train.y,
            epochs=self.epoch_budget,
            warm_start=self.warm_start,
        )

    def _check_datasets(self, fis: FuzzyInferenceSystem, *datasets: CalibrationDataset) -> None:
        for ds in datasets:
            if ds.X.shape[1] != fis.num_inputs:
                raise ConfigurationError(
                    f"Dataset has {ds.X.shape[1]} features, the system expects {fis.num_inputs}."
                )

    def score(self, fis: FuzzyInferenceSystem, dataset: CalibrationDataset) -> MetricsTable:
        predictions = self.engine.predict(fis, dataset.X)
        return self.evaluator.score_dataset(dataset, predictions)

    def _collect(
        self,
        steps: Iterable[ReductionStep],
        n_steps: int,
        train: CalibrationDataset,
        test: CalibrationDataset,
    ) -> ReductionTrajectory:
        traj = ReductionTrajectory.empty(n_steps)
        for k, step in enumerate(steps):
            if self.display_results:
                logger.info("Iteration %d: Evaluating with %d rules", step.iteration, step.num_rules)
                logger.info("Selected rules: %s", list(step.kept_indices))

            fis = step.final_fis
            if fis is None:
                traj.failed_iterations.append(step.iteration)
                traj.record(k, step, None, None)
                continue

            traj.record(k, step, self.score(fis, train), self.score(fis, test))
            traj.final_fis = fis
        return traj

    def run(
        self,
        fis: FuzzyInferenceSystem,
        importance,
        train: CalibrationDataset,
        test: CalibrationDataset,
        floor: int = 2,
    ) -> ReductionTrajectory:
        """
        Full sweep from fis.num_rules down to `floor` rules (N - floor + 1 entries).
        """
        self._check_datasets(fis, train, test)
        pruner = self._pruner(train)
        steps = pruner.sweep(fis, importance, floor=floor)
        return self._collect(steps, fis.num_rules - floor + 1, train, test)

    def run_exact(
        self,
        fis: FuzzyInferenceSystem,
        importance,
        train: CalibrationDataset,
        test: CalibrationDataset,
        n_rules: int,
    ) -> ReductionTrajectory:
        """
        Single evaluation keeping the `n_rules` most important rules.
        """
        self._check_datasets(fis, train, test)
        step = self._pruner(train).exact(fis, importance, n_rules)
        return self._collect([step], 1, train, test)
