"""
pmfis.metrics

Per-sensor and overall regression metrics.

For each group (sorted group order) and finally for all samples together:
  - R2  : Pearson correlation between predictions and targets
  - MAE : mean absolute error
  - MSE : mean squared error
  - RMSE: sqrt(MSE)

The overall row is labelled "all" and is always the last row of the table.

Samples whose prediction (or target) is NaN, e.g. because no rule fired, are
left out of every sum and counted in `n_undefined`. A group without any valid
sample gets NaN metrics; correlation is NaN when either series is constant or
fewer than two valid samples exist.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

OVERALL_LABEL = "all"


@dataclass(frozen=True)
class MetricsRow:
    group_id: str
    r2: float
    mae: float
    mse: float
    rmse: float
    n_samples: int = 0
    n_undefined: int = 0


@dataclass(frozen=True)
class MetricsTable:
    rows: tuple

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __getitem__(self, i) -> MetricsRow:
        return self.rows[i]

    @property
    def overall(self) -> MetricsRow:
        return self.rows[-1]

    @property
    def groups(self) -> List[MetricsRow]:
        return list(self.rows[:-1])

    def row(self, group_id: str) -> MetricsRow:
        for r in self.rows:
            if r.group_id == str(group_id):
                return r
        raise KeyError(group_id)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "SensorID": [r.group_id for r in self.rows],
                "R2": [r.r2 for r in self.rows],
                "MAE": [r.mae for r in self.rows],
                "MSE": [r.mse for r in self.rows],
                "RMSE": [r.rmse for r in self.rows],
                "N": [r.n_samples for r in self.rows],
                "NUndefined": [r.n_undefined for r in self.rows],
            }
        )

    def to_records(self) -> List[dict]:
        """
        JSON-ready rows; undefined metrics become None.
        """
        records = []
        for r in self.rows:
            rec = asdict(r)
            for key in ("r2", "mae", "mse", "rmse"):
                if not np.isfinite(rec[key]):
                    rec[key] = None
            records.append(rec)
        return records


def pearson_r(pred: np.ndarray, true: np.ndarray) -> float:
    """
    cov(pred, true) / (std(pred) * std(true)); NaN if undefined.
    """
    if pred.shape[0] < 2:
        return float("nan")
    dp = pred - pred.mean()
    dt = true - true.mean()
    denom = np.sqrt((dp * dp).sum() * (dt * dt).sum())
    if not np.isfinite(denom) or denom == 0.0:
        return float("nan")
    return float((dp * dt).sum() / denom)


def compute_row(group_id: str, pred: np.ndarray, true: np.ndarray) -> MetricsRow:
    valid = np.isfinite(pred) & np.isfinite(true)
    n_undefined = int((~valid).sum())
    p = pred[valid]
    t = true[valid]
    if p.shape[0] == 0:
        nan = float("nan")
        return MetricsRow(str(group_id), nan, nan, nan, nan, n_samples=int(pred.shape[0]), n_undefined=n_undefined)

    err = t - p
    mae = float(np.mean(np.abs(err)))
    mse = float(np.mean(err * err))
    return MetricsRow(
        group_id=str(group_id),
        r2=pearson_r(p, t),
        mae=mae,
        mse=mse,
        rmse=float(np.sqrt(mse)),
        n_samples=int(pred.shape[0]),
        n_undefined=n_undefined,
    )


class Evaluator:
    """
    Builds a MetricsTable from predictions, targets and group labels.
    """

    def __init__(self, display_results: bool = False):
        self.display_results = display_results

    def score(self, predictions, targets, group_ids: Optional[Sequence] = None) -> MetricsTable:
        pred = np.asarray(predictions, dtype=np.float64).reshape(-1)
        true = np.asarray(targets, dtype=np.float64).reshape(-1)
        if pred.shape[0] != true.shape[0]:
            raise ConfigurationError(
                f"predictions ({pred.shape[0]}) and targets ({true.shape[0]}) differ in length."
            )

        rows = []
        if group_ids is not None:
            groups = np.asarray(group_ids).astype(str).reshape(-1)
            if groups.shape[0] != pred.shape[0]:
                raise ConfigurationError(
                    f"group_ids ({groups.shape[0]}) and predictions ({pred.shape[0]}) differ in length."
                )
            for g in np.unique(groups):
                mask = groups == g
                rows.append(compute_row(g, pred[mask], true[mask]))

        rows.append(compute_row(OVERALL_LABEL, pred, true))
        table = MetricsTable(rows=tuple(rows))

        if self.display_results:
            logger.info("Metrics:\n%s", table.to_frame().to_string(index=False))
        return table

    def score_dataset(self, dataset, predictions) -> MetricsTable:
        """
        Score predictions against a CalibrationDataset's targets and sensor ids.
        """
        return self.score(predictions, dataset.y, dataset.groups)
