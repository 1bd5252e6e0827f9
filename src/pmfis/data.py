"""
pmfis.data

Calibration datasets: loading, preprocessing and the fixed-schema record the
inference core consumes.

Expected columns:
  valid_at   timestamp of the measurement
  sensor_id  low-cost sensor identifier (group)
  <features> numeric inputs of the fuzzy system, e.g. pm2p5_x,
             relative_humidity, temperature, pressure
  pm2p5_y    reference PM2.5 (ground truth)

The schema is checked once, when a CalibrationDataset is built; its arrays are
read-only afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

TIME_COL = "valid_at"
GROUP_COL = "sensor_id"
TARGET_COL = "pm2p5_y"
PREDICTION_COL = "pm2p5_pred"
RAW_SENSOR_COL = "pm2p5_x"

DEFAULT_FEATURES = ["pm2p5_x", "relative_humidity", "temperature", "pressure"]

# Readings above this (ug/m3) are treated as sensor faults.
MAX_PM25 = 500.0


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class CalibrationDataset:
    """
    Samples as parallel read-only arrays.

      X          (N, D) float64 feature matrix, columns in feature_names order
      y          (N,)   reference values
      groups     (N,)   sensor ids as strings
      timestamps (N,)   datetime64 values
    """
    X: np.ndarray
    y: np.ndarray
    groups: np.ndarray
    timestamps: np.ndarray
    feature_names: Tuple[str, ...]

    def __post_init__(self):
        X = np.asarray(self.X, dtype=np.float64)
        if X.ndim != 2 or X.shape[1] != len(self.feature_names):
            raise ConfigurationError(
                f"X must have shape (n, {len(self.feature_names)}), got {X.shape}."
            )
        n = X.shape[0]
        for name in ("y", "groups", "timestamps"):
            if np.asarray(getattr(self, name)).shape[0] != n:
                raise ConfigurationError(f"'{name}' length does not match the {n} samples of X.")
        object.__setattr__(self, "X", _readonly(X))
        object.__setattr__(self, "y", _readonly(np.asarray(self.y, dtype=np.float64).reshape(-1)))
        object.__setattr__(self, "groups", _readonly(np.asarray(self.groups).astype(str)))
        object.__setattr__(self, "timestamps", _readonly(np.asarray(self.timestamps)))
        object.__setattr__(self, "feature_names", tuple(self.feature_names))

    def __len__(self) -> int:
        return self.X.shape[0]

    @staticmethod
    def from_frame(
        df: pd.DataFrame,
        feature_names: Sequence[str],
        target_col: str = TARGET_COL,
        group_col: str = GROUP_COL,
        time_col: str = TIME_COL,
    ) -> "CalibrationDataset":
        missing = [c for c in [time_col, group_col, *feature_names, target_col] if c not in df.columns]
        if missing:
            raise ConfigurationError(f"Dataset is missing required columns: {missing}")
        if target_col in feature_names:
            raise ConfigurationError("target column cannot be used as a feature.")

        X = df.loc[:, list(feature_names)].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=np.float64)
        y = pd.to_numeric(df[target_col], errors="coerce").to_numpy(dtype=np.float64)
        return CalibrationDataset(
            X=X,
            y=y,
            groups=df[group_col].astype(str).to_numpy(),
            timestamps=pd.to_datetime(df[time_col]).to_numpy(),
            feature_names=tuple(feature_names),
        )


def load_csv(path: str | Path, time_col: str = TIME_COL) -> pd.DataFrame:
    df = pd.read_csv(path)
    if time_col in df.columns:
        df[time_col] = pd.to_datetime(df[time_col])
    return df


def _minmax_fit(arr: np.ndarray) -> Tuple[float, float]:
    finite = arr[np.isfinite(arr)]
    if finite.size == 0:
        return 0.0, 1.0
    return float(np.min(finite)), float(np.max(finite))


def _minmax_transform(arr: np.ndarray, mn: float, mx: float) -> np.ndarray:
    if not np.isfinite(mn) or not np.isfinite(mx) or mx <= mn:
        # constant column -> zeros
        out = np.zeros_like(arr, dtype=np.float64)
        out[~np.isfinite(arr)] = np.nan
        return out
    return (arr - mn) / (mx - mn)


def _numeric_with_keys(df: pd.DataFrame, time_col: str, group_col: str) -> pd.DataFrame:
    numeric = df.select_dtypes(include="number").copy()
    # fill gaps linearly, also at the edges
    numeric = numeric.interpolate(method="linear", limit_direction="both")
    numeric[time_col] = pd.to_datetime(df[time_col]).to_numpy()
    numeric[group_col] = df[group_col].to_numpy()
    return numeric


def _drop_faulty_readings(df: pd.DataFrame, target_col: str) -> pd.DataFrame:
    mask = pd.Series(True, index=df.index)
    for col in (RAW_SENSOR_COL, target_col):
        if col in df.columns:
            mask &= ~(df[col] > MAX_PM25)
    return df.loc[mask]


def _move_extremes_to_train(
    train: pd.DataFrame,
    test: pd.DataFrame,
    feature_names: Sequence[str],
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Move the test rows holding each feature's min and max into the training set,
    so the fitted membership functions cover the whole test range.
    """
    moved = []
    for feat in feature_names:
        col = test[feat]
        if not col.notna().any():
            continue
        for idx in (col.idxmin(), col.idxmax()):
            if idx not in test.index:
                continue
            moved.append(test.loc[[idx]])
            test = test.drop(index=idx)
    if moved:
        train = pd.concat([train, *moved], ignore_index=True)
    return train.reset_index(drop=True), test.reset_index(drop=True)


@dataclass
class ScalerParams:
    """
    Per-feature min/max fitted on train+test; needed to map predictions or new
    data back onto the same scale.
    """
    scaler_min: Dict[str, float]
    scaler_max: Dict[str, float]

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        for feat, mn in self.scaler_min.items():
            out[feat] = _minmax_transform(out[feat].to_numpy(dtype=np.float64), mn, self.scaler_max[feat])
        return out


def prepare_calibration_data(
    train_df: pd.DataFrame,
    test_df: pd.DataFrame,
    feature_names: Optional[Sequence[str]] = None,
    target_col: str = TARGET_COL,
    group_col: str = GROUP_COL,
    time_col: str = TIME_COL,
) -> Tuple[pd.DataFrame, pd.DataFrame, ScalerParams]:
    """
    Clean and normalize a train/test pair:
      - keep numeric columns plus timestamp and sensor id
      - fill missing numeric values by linear interpolation
      - drop rows with raw or reference PM2.5 above 500
      - move each feature's extreme test rows into the training set
      - min-max normalize the features to [0, 1] over train and test together
      - keep the unscaled sensor reading as pm2p5_x_original

    Returns new frames; the inputs are not modified.
    """
    feature_names = list(feature_names or DEFAULT_FEATURES)
    for name, df in (("train", train_df), ("test", test_df)):
        missing = [c for c in [time_col, group_col, *feature_names, target_col] if c not in df.columns]
        if missing:
            raise ConfigurationError(f"{name} data is missing required columns: {missing}")

    logger.info("Keeping numeric columns and filling missing values")
    train = _numeric_with_keys(train_df, time_col, group_col)
    test = _numeric_with_keys(test_df, time_col, group_col)

    train = _drop_faulty_readings(train, target_col)
    test = _drop_faulty_readings(test, target_col)

    train, test = _move_extremes_to_train(train, test, feature_names)

    logger.info("Normalizing %d feature columns", len(feature_names))
    both = pd.concat([train[feature_names], test[feature_names]], ignore_index=True)
    scaler = ScalerParams(scaler_min={}, scaler_max={})
    for feat in feature_names:
        mn, mx = _minmax_fit(both[feat].to_numpy(dtype=np.float64))
        scaler.scaler_min[feat] = mn
        scaler.scaler_max[feat] = mx

    keep_cols: List[str] = [time_col, group_col, *feature_names, target_col]
    frames = []
    for df in (train, test):
        if RAW_SENSOR_COL in df.columns:
            original = df[RAW_SENSOR_COL].to_numpy(copy=True)
        else:
            original = None
        out = scaler.transform(df)[keep_cols]
        if original is not None:
            out[f"{RAW_SENSOR_COL}_original"] = original
        frames.append(out.reset_index(drop=True))

    logger.info("Prepared %d training and %d test rows", len(frames[0]), len(frames[1]))
    return frames[0], frames[1], scaler


def append_predictions(
    df: pd.DataFrame,
    predictions,
    target_col: str = TARGET_COL,
    time_col: str = TIME_COL,
    prediction_col: str = PREDICTION_COL,
) -> pd.DataFrame:
    """
    New frame with the predictions inserted right after the target column,
    sorted by timestamp (stable, so equal timestamps keep their order).
    """
    pred = np.asarray(predictions, dtype=np.float64).reshape(-1)
    if pred.shape[0] != len(df):
        raise ConfigurationError(f"{pred.shape[0]} predictions for {len(df)} rows.")
    out = df.copy()
    if prediction_col in out.columns:
        out = out.drop(columns=[prediction_col])
    pos = out.columns.get_loc(target_col) + 1 if target_col in out.columns else len(out.columns)
    out.insert(pos, prediction_col, pred)
    if time_col in out.columns:
        out = out.sort_values(time_col, kind="stable").reset_index(drop=True)
    return out
