import numpy as np
import pytest

from builders import grid_fis, linear_fis, two_mf_input
from pmfis.engine import FuzzyInferenceEngine, evaluate, firing_strengths
from pmfis.errors import ConfigurationError
from pmfis.fis import FuzzyInferenceSystem, OutputFunction, OutputVariable, Rule


def test_firing_is_min_of_memberships(fis):
    firing = firing_strengths(fis, np.array([[0.25, 0.5]]))
    np.testing.assert_allclose(firing[0], [0.5, 0.5, 0.25, 0.25])


def test_weighted_average_prediction(fis):
    y, firing = FuzzyInferenceEngine().evaluate(fis, [[0.25, 0.5]])
    assert firing.shape == (1, 4)
    assert y[0] == pytest.approx(3.25 / 1.5)


def test_no_rule_fires_gives_nan(fis):
    y, firing = FuzzyInferenceEngine().evaluate(fis, [[5.0, 5.0], [0.0, 0.0]])
    assert np.isnan(y[0])
    assert not np.isnan(y[1])
    assert np.all(firing[0] == 0.0)


def test_linear_consequent():
    y = FuzzyInferenceEngine().predict(linear_fis(), np.array([0.5]))
    # both rules fire at 0.5: z = 0.5 and 2.0
    assert y[0] == pytest.approx(1.25)


def test_out_of_range_index_never_fires():
    fis = FuzzyInferenceSystem(
        inputs=(two_mf_input("x"),),
        output=OutputVariable("y", (OutputFunction("constant", (1.0,)), OutputFunction("constant", (9.0,)))),
        rules=(Rule((1,), 0), Rule((3,), 1)),
    )
    y, firing = FuzzyInferenceEngine().evaluate(fis, [[0.0], [0.5]])
    np.testing.assert_array_equal(firing[:, 1], [0.0, 0.0])
    np.testing.assert_allclose(y, [1.0, 1.0])


def test_dont_care_inputs_are_skipped():
    fis = FuzzyInferenceSystem(
        inputs=(two_mf_input("a"), two_mf_input("b")),
        output=OutputVariable("y", (OutputFunction("constant", (2.0,)), OutputFunction("constant", (4.0,)))),
        rules=(Rule((1, 0), 0), Rule((0, 0), 1)),
    )
    firing = firing_strengths(fis, np.array([[0.5, 100.0]]))
    np.testing.assert_allclose(firing[0], [0.5, 1.0])


def test_rule_weight_scales_contribution():
    fis = FuzzyInferenceSystem(
        inputs=(two_mf_input("x"),),
        output=OutputVariable("y", (OutputFunction("constant", (0.0,)), OutputFunction("constant", (1.0,)))),
        rules=(Rule((1,), 0, weight=1.0), Rule((2,), 1, weight=3.0)),
    )
    y, firing = FuzzyInferenceEngine().evaluate(fis, [[0.5]])
    np.testing.assert_allclose(firing[0], [0.5, 0.5])
    assert y[0] == pytest.approx(0.75)


def test_wrong_shape_raises(fis):
    with pytest.raises(ConfigurationError):
        FuzzyInferenceEngine().evaluate(fis, np.zeros((3, 3)))
    with pytest.raises(ConfigurationError):
        FuzzyInferenceEngine().evaluate(fis, np.zeros(4))


def test_evaluate_subset_leaves_base_untouched(fis):
    X = np.array([[0.25, 0.5]])
    before = fis.to_dict()
    y, firing = FuzzyInferenceEngine().evaluate_subset(fis, [0, 3], X)
    assert firing.shape == (1, 2)
    assert y[0] == pytest.approx((0.5 * 1.0 + 0.25 * 4.0) / 0.75)
    assert fis.to_dict() == before


def test_parallel_matches_serial():
    rng = np.random.default_rng(3)
    X = rng.uniform(-0.5, 1.5, size=(257, 2))
    fis = grid_fis()
    y1, f1 = FuzzyInferenceEngine().evaluate(fis, X)
    y2, f2 = FuzzyInferenceEngine(n_jobs=2, chunk_size=50).evaluate(fis, X)
    np.testing.assert_array_equal(f1, f2)
    np.testing.assert_array_equal(np.isnan(y1), np.isnan(y2))
    np.testing.assert_allclose(y1[~np.isnan(y1)], y2[~np.isnan(y2)])


def test_module_level_evaluate(fis):
    y, _firing = evaluate(fis, [[0.25, 0.5]])
    assert y[0] == pytest.approx(3.25 / 1.5)
