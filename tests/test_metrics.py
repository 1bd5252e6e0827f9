import numpy as np
import pytest

from pmfis.errors import ConfigurationError
from pmfis.metrics import OVERALL_LABEL, Evaluator, pearson_r


def test_perfect_predictions_per_sensor():
    y = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    groups = ["b", "a", "b", "a", "b", "a"]
    table = Evaluator().score(y, y, groups)
    assert [r.group_id for r in table] == ["a", "b", OVERALL_LABEL]
    for row in table:
        assert row.r2 == pytest.approx(1.0)
        assert row.mae == 0.0
        assert row.mse == 0.0
        assert row.rmse == 0.0


def test_known_values():
    pred = np.array([1.0, 2.0, 3.0])
    true = np.array([1.0, 2.0, 5.0])
    row = Evaluator().score(pred, true).overall
    assert row.mae == pytest.approx(2.0 / 3.0)
    assert row.mse == pytest.approx(4.0 / 3.0)
    assert row.rmse == pytest.approx(np.sqrt(4.0 / 3.0))
    assert row.r2 == pytest.approx(np.corrcoef(pred, true)[0, 1])


def test_overall_row_matches_direct_computation():
    rng = np.random.default_rng(5)
    true = rng.random(40)
    pred = true + rng.normal(0, 0.1, 40)
    groups = np.repeat(["s1", "s2", "s3", "s4"], 10)
    table = Evaluator().score(pred, true, groups)
    assert len(table) == 5
    assert table.overall.group_id == OVERALL_LABEL
    assert table.overall.mae == pytest.approx(np.mean(np.abs(true - pred)))
    assert table.overall.mse == pytest.approx(np.mean((true - pred) ** 2))
    assert table.overall.rmse == pytest.approx(np.sqrt(np.mean((true - pred) ** 2)))
    assert table.overall.r2 == pytest.approx(np.corrcoef(pred, true)[0, 1])
    assert table.row("s3").n_samples == 10


def test_nan_predictions_are_excluded_and_counted():
    pred = np.array([1.0, np.nan, 3.0, 4.0])
    true = np.array([1.0, 2.0, 3.0, 5.0])
    row = Evaluator().score(pred, true).overall
    assert row.n_samples == 4
    assert row.n_undefined == 1
    assert row.mae == pytest.approx(1.0 / 3.0)
    assert np.isfinite(row.r2)


def test_group_without_valid_samples_is_nan():
    pred = np.array([np.nan, np.nan, 1.0, 2.0])
    true = np.array([1.0, 2.0, 1.0, 2.0])
    table = Evaluator().score(pred, true, ["a", "a", "b", "b"])
    assert np.isnan(table.row("a").mae)
    assert table.row("a").n_undefined == 2
    assert table.overall.mae == 0.0


def test_correlation_undefined_cases():
    assert np.isnan(pearson_r(np.array([1.0, 1.0, 1.0]), np.array([1.0, 2.0, 3.0])))
    assert np.isnan(pearson_r(np.array([1.0]), np.array([2.0])))


def test_length_mismatch_raises():
    with pytest.raises(ConfigurationError):
        Evaluator().score([1.0, 2.0], [1.0])
    with pytest.raises(ConfigurationError):
        Evaluator().score([1.0, 2.0], [1.0, 2.0], ["a"])


def test_frame_layout():
    df = Evaluator().score([1.0, 2.0], [1.0, 3.0], ["x", "x"]).to_frame()
    assert list(df.columns) == ["SensorID", "R2", "MAE", "MSE", "RMSE", "N", "NUndefined"]
    assert list(df["SensorID"]) == ["x", OVERALL_LABEL]


def test_score_dataset(dataset):
    table = Evaluator().score_dataset(dataset, dataset.y)
    assert [r.group_id for r in table] == ["s1", "s2", OVERALL_LABEL]
    assert table.overall.mse == 0.0


def test_records_are_json_ready():
    records = Evaluator().score([np.nan, 1.0], [1.0, 2.0], ["a", "b"]).to_records()
    assert [r["group_id"] for r in records] == ["a", "b", OVERALL_LABEL]
    assert records[0]["mae"] is None
    assert records[0]["n_undefined"] == 1
    assert records[1]["mae"] == 1.0
