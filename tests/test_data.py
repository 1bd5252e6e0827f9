import numpy as np
import pandas as pd
import pytest

from pmfis.data import (
    CalibrationDataset,
    append_predictions,
    load_csv,
    prepare_calibration_data,
)
from pmfis.errors import ConfigurationError

FEATURES = ["pm2p5_x", "relative_humidity"]


def _raw(values, start="2024-01-01"):
    n = len(values)
    return pd.DataFrame(
        {
            "valid_at": pd.date_range(start, periods=n, freq="h"),
            "sensor_id": ["a"] * n,
            "pm2p5_x": values,
            "relative_humidity": np.linspace(20.0, 80.0, n),
            "pm2p5_y": np.asarray(values, dtype=float) * 0.8,
            "note": ["x"] * n,
        }
    )


def test_dataset_from_frame(frame):
    ds = CalibrationDataset.from_frame(frame, FEATURES)
    assert len(ds) == 12
    assert ds.X.shape == (12, 2)
    assert ds.feature_names == tuple(FEATURES)
    assert set(ds.groups) == {"s1", "s2"}
    with pytest.raises(ValueError):
        ds.X[0, 0] = 1.0


def test_dataset_missing_column(frame):
    with pytest.raises(ConfigurationError):
        CalibrationDataset.from_frame(frame.drop(columns=["sensor_id"]), FEATURES)


def test_target_cannot_be_a_feature(frame):
    with pytest.raises(ConfigurationError):
        CalibrationDataset.from_frame(frame, ["pm2p5_x", "pm2p5_y"])


def test_prepare_normalizes_and_cleans():
    train = _raw([10.0, np.nan, 30.0, 40.0, 600.0])
    test = _raw([5.0, 20.0, 50.0, 25.0], start="2024-02-01")
    train_out, test_out, scaler = prepare_calibration_data(train, test, feature_names=FEATURES)

    # the 600 reading is dropped as faulty
    assert 600.0 not in train_out["pm2p5_x_original"].tolist()
    assert list(train_out.columns[:5]) == ["valid_at", "sensor_id", "pm2p5_x", "relative_humidity", "pm2p5_y"]
    assert "note" not in train_out.columns

    both = pd.concat([train_out, test_out])
    assert both["pm2p5_x"].min() == pytest.approx(0.0)
    assert both["pm2p5_x"].max() == pytest.approx(1.0)
    assert not both[FEATURES].isna().any().any()

    # the test extremes (5 and 50) were moved to the training set
    assert {5.0, 50.0} <= set(train_out["pm2p5_x_original"])
    assert not {5.0, 50.0} & set(test_out["pm2p5_x_original"])
    assert scaler.scaler_min["pm2p5_x"] == 5.0
    assert scaler.scaler_max["pm2p5_x"] == 50.0


def test_prepare_does_not_modify_inputs():
    train = _raw([10.0, 20.0, 30.0])
    test = _raw([15.0, 25.0, 35.0], start="2024-02-01")
    before = train.copy()
    prepare_calibration_data(train, test, feature_names=FEATURES)
    pd.testing.assert_frame_equal(train, before)


def test_prepare_missing_column():
    train = _raw([1.0, 2.0]).drop(columns=["pm2p5_y"])
    with pytest.raises(ConfigurationError):
        prepare_calibration_data(train, _raw([1.0, 2.0]), feature_names=FEATURES)


def test_append_predictions_places_and_sorts():
    df = pd.DataFrame(
        {
            "valid_at": pd.to_datetime(["2024-01-02", "2024-01-01", "2024-01-02"]),
            "pm2p5_y": [1.0, 2.0, 3.0],
            "other": [0, 0, 0],
        }
    )
    out = append_predictions(df, [10.0, 20.0, 30.0])
    assert list(out.columns) == ["valid_at", "pm2p5_y", "pm2p5_pred", "other"]
    assert list(out["pm2p5_pred"]) == [20.0, 10.0, 30.0]
    with pytest.raises(ConfigurationError):
        append_predictions(df, [1.0])


def test_load_csv_parses_timestamps(tmp_path, frame):
    path = tmp_path / "data.csv"
    frame.to_csv(path, index=False)
    loaded = load_csv(path)
    assert pd.api.types.is_datetime64_any_dtype(loaded["valid_at"])
